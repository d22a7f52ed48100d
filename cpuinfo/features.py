"""CPU vendors, feature identifiers and compact feature sets."""

from __future__ import annotations

from enum import IntEnum, auto
from typing import Iterable, Iterator, Union


class Vendor(IntEnum):
    """A CPU or hypervisor vendor."""

    UNKNOWN = 0
    INTEL = auto()
    AMD = auto()
    VIA = auto()
    TRANSMETA = auto()
    NSC = auto()
    KVM = auto()  # Kernel-based Virtual Machine
    MSVM = auto()  # Microsoft Hyper-V or Windows Virtual PC
    VMWARE = auto()
    XENHVM = auto()
    BHYVE = auto()
    HYGON = auto()
    SIS = auto()
    RDC = auto()

    AMPERE = auto()
    ARM = auto()
    BROADCOM = auto()
    CAVIUM = auto()
    DEC = auto()
    FUJITSU = auto()
    INFINEON = auto()
    MOTOROLA = auto()
    NVIDIA = auto()
    AMCC = auto()
    QUALCOMM = auto()
    MARVELL = auto()

    QEMU = auto()
    QNX = auto()
    ACRN = auto()
    SRE = auto()
    APPLE = auto()

    @property
    def label(self) -> str:
        """The display name of the vendor."""
        return _VENDOR_LABELS[self]

    def __str__(self) -> str:
        return self.label


_VENDOR_LABELS = {
    Vendor.UNKNOWN: "VendorUnknown",
    Vendor.INTEL: "Intel",
    Vendor.AMD: "AMD",
    Vendor.VIA: "VIA",
    Vendor.TRANSMETA: "Transmeta",
    Vendor.NSC: "NSC",
    Vendor.KVM: "KVM",
    Vendor.MSVM: "MSVM",
    Vendor.VMWARE: "VMware",
    Vendor.XENHVM: "XenHVM",
    Vendor.BHYVE: "Bhyve",
    Vendor.HYGON: "Hygon",
    Vendor.SIS: "SiS",
    Vendor.RDC: "RDC",
    Vendor.AMPERE: "Ampere",
    Vendor.ARM: "ARM",
    Vendor.BROADCOM: "Broadcom",
    Vendor.CAVIUM: "Cavium",
    Vendor.DEC: "DEC",
    Vendor.FUJITSU: "Fujitsu",
    Vendor.INFINEON: "Infineon",
    Vendor.MOTOROLA: "Motorola",
    Vendor.NVIDIA: "NVIDIA",
    Vendor.AMCC: "AMCC",
    Vendor.QUALCOMM: "Qualcomm",
    Vendor.MARVELL: "Marvell",
    Vendor.QEMU: "QEMU",
    Vendor.QNX: "QNX",
    Vendor.ACRN: "ACRN",
    Vendor.SRE: "SRE",
    Vendor.APPLE: "Apple",
}


class FeatureID(IntEnum):
    """Identifier of a single CPU feature. UNKNOWN marks an unrecognised name."""

    UNKNOWN = -1

    # x86 features
    ADX = 1
    AESNI = auto()
    AMD3DNOW = auto()
    AMD3DNOWEXT = auto()
    AMXBF16 = auto()
    AMXFP16 = auto()
    AMXINT8 = auto()
    AMXFP8 = auto()
    AMXTILE = auto()
    AMXTF32 = auto()
    AMXCOMPLEX = auto()
    AMXTRANSPOSE = auto()
    APX_F = auto()
    AVX = auto()
    AVX10 = auto()
    AVX10_128 = auto()
    AVX10_256 = auto()
    AVX10_512 = auto()
    AVX2 = auto()
    AVX512BF16 = auto()
    AVX512BITALG = auto()
    AVX512BW = auto()
    AVX512CD = auto()
    AVX512DQ = auto()
    AVX512ER = auto()
    AVX512F = auto()
    AVX512FP16 = auto()
    AVX512IFMA = auto()
    AVX512PF = auto()
    AVX512VBMI = auto()
    AVX512VBMI2 = auto()
    AVX512VL = auto()
    AVX512VNNI = auto()
    AVX512VP2INTERSECT = auto()
    AVX512VPOPCNTDQ = auto()
    AVXIFMA = auto()
    AVXNECONVERT = auto()
    AVXSLOW = auto()
    AVXVNNI = auto()
    AVXVNNIINT8 = auto()
    AVXVNNIINT16 = auto()
    BHI_CTRL = auto()
    BMI1 = auto()
    BMI2 = auto()
    CETIBT = auto()
    CETSS = auto()
    CLDEMOTE = auto()
    CLMUL = auto()
    CLZERO = auto()
    CMOV = auto()
    CMPCCXADD = auto()
    CMPSB_SCADBS_SHORT = auto()
    CMPXCHG8 = auto()
    CPBOOST = auto()
    CPPC = auto()
    CX16 = auto()
    EFER_LMSLE_UNS = auto()
    ENQCMD = auto()
    ERMS = auto()
    F16C = auto()
    FLUSH_L1D = auto()
    FMA3 = auto()
    FMA4 = auto()
    FP128 = auto()
    FP256 = auto()
    FSRM = auto()
    FXSR = auto()
    FXSROPT = auto()
    GFNI = auto()
    HLE = auto()
    HRESET = auto()
    HTT = auto()
    HWA = auto()
    HYBRID_CPU = auto()
    HYPERVISOR = auto()
    IA32_ARCH_CAP = auto()
    IA32_CORE_CAP = auto()
    IBPB = auto()
    IBPB_BRTYPE = auto()
    IBRS = auto()
    IBRS_PREFERRED = auto()
    IBRS_PROVIDES_SMP = auto()
    IBS = auto()
    IBSBRNTRGT = auto()
    IBSFETCHSAM = auto()
    IBSFFV = auto()
    IBSOPCNT = auto()
    IBSOPCNTEXT = auto()
    IBSOPSAM = auto()
    IBSRDWROPCNT = auto()
    IBSRIPINVALIDCHK = auto()
    IBS_FETCH_CTLX = auto()
    IBS_OPDATA4 = auto()
    IBS_OPFUSE = auto()
    IBS_PREVENTHOST = auto()
    IBS_ZEN4 = auto()
    IDPRED_CTRL = auto()
    INT_WBINVD = auto()
    INVLPGB = auto()
    KEYLOCKER = auto()
    KEYLOCKERW = auto()
    LAHF = auto()
    LAM = auto()
    LBRVIRT = auto()
    LZCNT = auto()
    MCAOVERFLOW = auto()
    MCDT_NO = auto()
    MCOMMIT = auto()
    MD_CLEAR = auto()
    MMX = auto()
    MMXEXT = auto()
    MOVBE = auto()
    MOVDIR64B = auto()
    MOVDIRI = auto()
    MOVSB_ZL = auto()
    MOVU = auto()
    MPX = auto()
    MSRIRC = auto()
    MSRLIST = auto()
    MSR_PAGEFLUSH = auto()
    NRIPS = auto()
    NX = auto()
    OSXSAVE = auto()
    PCONFIG = auto()
    POPCNT = auto()
    PPIN = auto()
    PREFETCHI = auto()
    PSFD = auto()
    RDPRU = auto()
    RDRAND = auto()
    RDSEED = auto()
    RDTSCP = auto()
    RRSBA_CTRL = auto()
    RTM = auto()
    RTM_ALWAYS_ABORT = auto()
    SBPB = auto()
    SERIALIZE = auto()
    SEV = auto()
    SEV_64BIT = auto()
    SEV_ALTERNATIVE = auto()
    SEV_DEBUGSWAP = auto()
    SEV_ES = auto()
    SEV_RESTRICTED = auto()
    SEV_SNP = auto()
    SGX = auto()
    SGXLC = auto()
    SGXPQC = auto()
    SHA = auto()
    SME = auto()
    SME_COHERENT = auto()
    SM3_X86 = auto()
    SM4_X86 = auto()
    SPEC_CTRL_SSBD = auto()
    SRBDS_CTRL = auto()
    SRSO_MSR_FIX = auto()
    SRSO_NO = auto()
    SRSO_USER_KERNEL_NO = auto()
    SSE = auto()
    SSE2 = auto()
    SSE3 = auto()
    SSE4 = auto()
    SSE42 = auto()
    SSE4A = auto()
    SSSE3 = auto()
    STIBP = auto()
    STIBP_ALWAYSON = auto()
    STOSB_SHORT = auto()
    SUCCOR = auto()
    SVM = auto()
    SVMDA = auto()
    SVMFBASID = auto()
    SVML = auto()
    SVMNP = auto()
    SVMPF = auto()
    SVMPFT = auto()
    SYSCALL = auto()
    SYSEE = auto()
    TBM = auto()
    TDX_GUEST = auto()
    TLB_FLUSH_NESTED = auto()
    TME = auto()
    TOPEXT = auto()
    TSA_L1_NO = auto()
    TSA_SQ_NO = auto()
    TSA_VERW_CLEAR = auto()
    TSCRATEMSR = auto()
    TSXLDTRK = auto()
    VAES = auto()
    VMCBCLEAN = auto()
    VMPL = auto()
    VMSA_REGPROT = auto()
    VMX = auto()
    VPCLMULQDQ = auto()
    VTE = auto()
    WAITPKG = auto()
    WBNOINVD = auto()
    WRMSRNS = auto()
    X87 = auto()
    XGETBV1 = auto()
    XOP = auto()
    XSAVE = auto()
    XSAVEC = auto()
    XSAVEOPT = auto()
    XSAVES = auto()

    # ARM features
    AESARM = auto()
    ARMCPUID = auto()
    ASIMD = auto()
    ASIMDDP = auto()
    ASIMDHP = auto()
    ASIMDRDM = auto()
    ATOMICS = auto()
    CRC32 = auto()
    DCPOP = auto()
    EVTSTRM = auto()
    FCMA = auto()
    FHM = auto()
    FP = auto()
    FPHP = auto()
    GPA = auto()
    JSCVT = auto()
    LRCPC = auto()
    PMULL = auto()
    RNDR = auto()
    TLB = auto()
    TS = auto()
    SHA1 = auto()
    SHA2 = auto()
    SHA3 = auto()
    SHA512 = auto()
    SM3 = auto()
    SM4 = auto()
    SVE = auto()

    # Performance monitoring fixed counters
    PMU_FIXEDCOUNTER_CYCLES = auto()
    PMU_FIXEDCOUNTER_REFCYCLES = auto()
    PMU_FIXEDCOUNTER_INSTRUCTIONS = auto()
    PMU_FIXEDCOUNTER_TOPDOWN_SLOTS = auto()


FeatureLike = Union["FeatureSet", Iterable[FeatureID]]


def _bit(feature: int) -> int:
    if feature < 0:
        raise ValueError(f"cannot use feature {feature!r} in a feature set")
    return 1 << int(feature)


class FeatureSet:
    """A mutable set of CPU features stored as a bit mask."""

    __slots__ = ("_mask",)

    def __init__(self, features: Iterable[FeatureID] = ()) -> None:
        self._mask = 0
        self.set(*features)

    @staticmethod
    def _mask_of(other: FeatureLike) -> int:
        if isinstance(other, FeatureSet):
            return other._mask
        return FeatureSet(other)._mask

    def set(self, *features: FeatureID) -> None:
        """Add the given features."""
        for feature in features:
            self._mask |= _bit(feature)

    def set_if(self, condition: bool, *features: FeatureID) -> None:
        """Add the given features when condition is true."""
        if condition:
            self.set(*features)

    def unset(self, *features: FeatureID) -> None:
        """Remove the given features."""
        for feature in features:
            self._mask &= ~_bit(feature)

    def update(self, other: FeatureLike) -> None:
        """Add every feature of other."""
        self._mask |= self._mask_of(other)

    def has_all(self, other: FeatureLike) -> bool:
        """Whether every feature of other is present."""
        mask = self._mask_of(other)
        return self._mask & mask == mask

    def has_any(self, other: FeatureLike) -> bool:
        """Whether at least one feature of other is present."""
        return self._mask & self._mask_of(other) != 0

    def copy(self) -> "FeatureSet":
        result = FeatureSet()
        result._mask = self._mask
        return result

    def __contains__(self, feature: object) -> bool:
        if not isinstance(feature, int) or feature < 0:
            return False
        return bool(self._mask >> int(feature) & 1)

    def __len__(self) -> int:
        return self._mask.bit_count()

    def __iter__(self) -> Iterator[FeatureID]:
        mask = self._mask
        while mask:
            lowest = mask & -mask
            yield FeatureID(lowest.bit_length() - 1)
            mask ^= lowest

    def __eq__(self, other: object) -> bool:
        if isinstance(other, FeatureSet):
            return self._mask == other._mask
        return NotImplemented

    __hash__ = None  # type: ignore[assignment]

    def names(self) -> list[str]:
        """Names of the present features, in identifier order."""
        return [feature.name for feature in self]

    def __repr__(self) -> str:
        return f"FeatureSet({self.names()!r})"


def parse_feature(name: str) -> FeatureID:
    """Return the feature with the given name (any case), or FeatureID.UNKNOWN."""
    feature = FeatureID.__members__.get(name.upper())
    if feature is None:
        return FeatureID.UNKNOWN
    return feature


def combine_features(*features: FeatureID) -> FeatureSet:
    """Combine features into one set for a fast combined lookup."""
    return FeatureSet(features)