"""Detection of x86 CPU features from CPUID leaves."""

from __future__ import annotations

from typing import Callable, Iterable, Optional, Tuple

from .features import FeatureID as F
from .features import FeatureSet, Vendor
from .registers import CpuidSource, registers_as_string
from .x86 import family_model, max_extended_function, max_function_id, threads_per_core, vendor_id

BitMap = Iterable[Tuple[int, F]]

_LEAF1_EDX: BitMap = (
    (0, F.X87),
    (8, F.CMPXCHG8),
    (11, F.SYSEE),
    (15, F.CMOV),
    (23, F.MMX),
    (24, F.FXSR),
    (25, F.FXSROPT),
    (25, F.SSE),
    (26, F.SSE2),
)

_LEAF1_ECX: BitMap = (
    (0, F.SSE3),
    (5, F.VMX),
    (9, F.SSSE3),
    (19, F.SSE4),
    (20, F.SSE42),
    (25, F.AESNI),
    (1, F.CLMUL),
    (22, F.MOVBE),
    (23, F.POPCNT),
    (30, F.RDRAND),
    (31, F.HYPERVISOR),
    (29, F.F16C),
    (13, F.CX16),
)

_LEAF7_EBX: BitMap = (
    (2, F.SGX),
    (4, F.HLE),
    (9, F.ERMS),
    (11, F.RTM),
    (14, F.MPX),
    (18, F.RDSEED),
    (19, F.ADX),
    (29, F.SHA),
)

_LEAF7_ECX: BitMap = (
    (5, F.WAITPKG),
    (7, F.CETSS),
    (8, F.GFNI),
    (9, F.VAES),
    (10, F.VPCLMULQDQ),
    (13, F.TME),
    (25, F.CLDEMOTE),
    (23, F.KEYLOCKER),
    (27, F.MOVDIRI),
    (28, F.MOVDIR64B),
    (29, F.ENQCMD),
    (30, F.SGXLC),
)

_LEAF7_EDX: BitMap = (
    (4, F.FSRM),
    (9, F.SRBDS_CTRL),
    (10, F.MD_CLEAR),
    (11, F.RTM_ALWAYS_ABORT),
    (14, F.SERIALIZE),
    (15, F.HYBRID_CPU),
    (16, F.TSXLDTRK),
    (18, F.PCONFIG),
    (20, F.CETIBT),
    (26, F.IBPB),
    (27, F.STIBP),
    (28, F.FLUSH_L1D),
    (29, F.IA32_ARCH_CAP),
    (30, F.IA32_CORE_CAP),
    (31, F.SPEC_CTRL_SSBD),
)

_LEAF7_1_EAX: BitMap = (
    (1, F.SM3_X86),
    (2, F.SM4_X86),
    (7, F.CMPCCXADD),
    (10, F.MOVSB_ZL),
    (11, F.STOSB_SHORT),
    (12, F.CMPSB_SCADBS_SHORT),
    (22, F.HRESET),
    (23, F.AVXIFMA),
    (26, F.LAM),
)

_LEAF7_1_EDX: BitMap = (
    (4, F.AVXVNNIINT8),
    (5, F.AVXNECONVERT),
    (6, F.AMXTRANSPOSE),
    (7, F.AMXTF32),
    (8, F.AMXCOMPLEX),
    (10, F.AVXVNNIINT16),
    (14, F.PREFETCHI),
    (19, F.AVX10),
    (21, F.APX_F),
)

_AVX512_EBX: BitMap = (
    (16, F.AVX512F),
    (17, F.AVX512DQ),
    (21, F.AVX512IFMA),
    (26, F.AVX512PF),
    (27, F.AVX512ER),
    (28, F.AVX512CD),
    (30, F.AVX512BW),
    (31, F.AVX512VL),
)

_AVX512_ECX: BitMap = (
    (1, F.AVX512VBMI),
    (3, F.AMXFP8),
    (6, F.AVX512VBMI2),
    (11, F.AVX512VNNI),
    (12, F.AVX512BITALG),
    (14, F.AVX512VPOPCNTDQ),
)

_AVX512_EDX: BitMap = (
    (8, F.AVX512VP2INTERSECT),
    (22, F.AMXBF16),
    (23, F.AVX512FP16),
    (24, F.AMXTILE),
    (25, F.AMXINT8),
)

_AVX512_LEAF7_1_EAX: BitMap = (
    (5, F.AVX512BF16),
    (19, F.WRMSRNS),
    (21, F.AMXFP16),
    (27, F.MSRLIST),
)

_LEAF7_2_EDX: BitMap = (
    (0, F.PSFD),
    (1, F.IDPRED_CTRL),
    (2, F.RRSBA_CTRL),
    (4, F.BHI_CTRL),
    (5, F.MCDT_NO),
)

_LEAF_D_1_EAX: BitMap = (
    (0, F.XSAVEOPT),
    (1, F.XSAVEC),
    (2, F.XGETBV1),
    (3, F.XSAVES),
)

_EXT1_ECX: BitMap = (
    (0, F.LAHF),
    (2, F.SVM),
    (6, F.SSE4A),
    (10, F.IBS),
    (22, F.TOPEXT),
)

_EXT1_EDX: BitMap = (
    (11, F.SYSCALL),
    (20, F.NX),
    (22, F.MMXEXT),
    (23, F.MMX),
    (24, F.FXSR),
    (25, F.FXSROPT),
    (27, F.RDTSCP),
    (30, F.AMD3DNOWEXT),
    (31, F.AMD3DNOW),
)

_EXT7_EBX: BitMap = (
    (0, F.MCAOVERFLOW),
    (1, F.SUCCOR),
    (2, F.HWA),
)

_EXT8_EBX: BitMap = (
    (28, F.PSFD),
    (27, F.CPPC),
    (24, F.SPEC_CTRL_SSBD),
    (23, F.PPIN),
    (21, F.TLB_FLUSH_NESTED),
    (20, F.EFER_LMSLE_UNS),
    (19, F.IBRS_PROVIDES_SMP),
    (18, F.IBRS_PREFERRED),
    (17, F.STIBP_ALWAYSON),
    (15, F.STIBP),
    (14, F.IBRS),
    (13, F.INT_WBINVD),
    (12, F.IBPB),
    (9, F.WBNOINVD),
    (8, F.MCOMMIT),
    (4, F.RDPRU),
    (3, F.INVLPGB),
    (1, F.MSRIRC),
    (0, F.CLZERO),
)

_SVM_EDX: BitMap = (
    (0, F.SVMNP),
    (1, F.LBRVIRT),
    (2, F.SVML),
    (3, F.NRIPS),
    (4, F.TSCRATEMSR),
    (5, F.VMCBCLEAN),
    (6, F.SVMFBASID),
    (7, F.SVMDA),
    (10, F.SVMPF),
    (12, F.SVMPFT),
)

_EXT1A_EAX: BitMap = (
    (0, F.FP128),
    (1, F.MOVU),
    (2, F.FP256),
)

_IBS_EAX: BitMap = (
    (0, F.IBSFFV),
    (1, F.IBSFETCHSAM),
    (2, F.IBSOPSAM),
    (3, F.IBSRDWROPCNT),
    (4, F.IBSOPCNT),
    (5, F.IBSBRNTRGT),
    (6, F.IBSOPCNTEXT),
    (7, F.IBSRIPINVALIDCHK),
    (8, F.IBS_OPFUSE),
    (9, F.IBS_FETCH_CTLX),
    (10, F.IBS_OPDATA4),
    (11, F.IBS_ZEN4),
)

_MEM_ENCRYPTION_EAX: BitMap = (
    (0, F.SME),
    (1, F.SEV),
    (2, F.MSR_PAGEFLUSH),
    (3, F.SEV_ES),
    (4, F.SEV_SNP),
    (5, F.VMPL),
    (10, F.SME_COHERENT),
    (11, F.SEV_64BIT),
    (12, F.SEV_RESTRICTED),
    (13, F.SEV_ALTERNATIVE),
    (14, F.SEV_DEBUGSWAP),
    (15, F.IBS_PREVENTHOST),
    (16, F.VTE),
    (24, F.VMSA_REGPROT),
)

_EXT21_EAX: BitMap = (
    (31, F.SRSO_MSR_FIX),
    (30, F.SRSO_USER_KERNEL_NO),
    (29, F.SRSO_NO),
    (28, F.IBPB_BRTYPE),
    (27, F.SBPB),
    (5, F.TSA_VERW_CLEAR),
)

_EXT21_ECX: BitMap = (
    (1, F.TSA_L1_NO),
    (2, F.TSA_SQ_NO),
)

_AVX_CHECK = (1 << 26) | (1 << 27) | (1 << 28)
_FMA3_CHECK = (1 << 12) | (1 << 27)
_XGETBV_CHECK = (1 << 26) | (1 << 27)
_HYPERV_TDX_EBX = 0xBE3
_TDX_IDENTITY = "IntelTDX    "


def _set_bits(features: FeatureSet, register: int, mapping: BitMap) -> None:
    for bit, feature in mapping:
        features.set_if(bool((register >> bit) & 1), feature)


def _leaf7_features(
    source: CpuidSource,
    features: FeatureSet,
    mfi: int,
    ecx1: int,
    is_darwin: bool,
    darwin_has_avx512: Optional[Callable[[], bool]],
) -> None:
    regs = source.cpuidex(7, 0)
    ebx, ecx, edx = regs.ebx, regs.ecx, regs.edx
    if F.AVX in features and ebx & 0x20:
        features.set(F.AVX2)
    # BMI1/2 need no OS support.
    if ebx & 0x08:
        features.set(F.BMI1)
        features.set_if(bool(ebx & 0x100), F.BMI2)
    _set_bits(features, ebx, _LEAF7_EBX)
    _set_bits(features, ecx, _LEAF7_ECX)
    _set_bits(features, edx, _LEAF7_EDX)

    sub1 = source.cpuidex(7, 1)
    eax1 = sub1.eax
    features.set_if(F.AVX in features and bool(eax1 & (1 << 4)), F.AVXVNNI)
    _set_bits(features, eax1, _LEAF7_1_EAX)
    _set_bits(features, sub1.edx, _LEAF7_1_EDX)

    if ecx1 & _XGETBV_CHECK == _XGETBV_CHECK:
        xcr0, _ = source.xgetbv(0)
        # XCR0[7:5] (opmask and ZMM state) and XCR0[2:1] (XMM and YMM state).
        has_avx512 = (xcr0 >> 5) & 7 == 7 and (xcr0 >> 1) & 3 == 3
        if is_darwin:
            has_avx512 = F.AVX in features and darwin_has_avx512 is not None and bool(
                darwin_has_avx512()
            )
        if has_avx512:
            _set_bits(features, ebx, _AVX512_EBX)
            _set_bits(features, ecx, _AVX512_ECX)
            _set_bits(features, edx, _AVX512_EDX)
            _set_bits(features, eax1, _AVX512_LEAF7_1_EAX)

    _set_bits(features, source.cpuidex(7, 2).edx, _LEAF7_2_EDX)

    if F.SGX in features:
        features.set_if(bool(source.cpuidex(0x12, 0).eax & (1 << 12)), F.SGXPQC)

    if F.KEYLOCKER in features and mfi >= 0x19:
        features.set_if(source.cpuidex(0x19, 0).ebx & 5 == 5, F.KEYLOCKERW)

    if F.AVX10 in features and mfi >= 0x24:
        avx10 = source.cpuidex(0x24, 0).ebx
        features.set_if(bool(avx10 & (1 << 16)), F.AVX10_128)
        features.set_if(bool(avx10 & (1 << 17)), F.AVX10_256)
        features.set_if(bool(avx10 & (1 << 18)), F.AVX10_512)


def _extended_features(source: CpuidSource, features: FeatureSet, vendor: Vendor) -> None:
    max_ext = max_extended_function(source)

    if max_ext >= 0x80000001:
        regs = source.cpuid(0x80000001)
        if regs.ecx & (1 << 5):
            features.set(F.LZCNT, F.POPCNT)
        _set_bits(features, regs.ecx, _EXT1_ECX)
        _set_bits(features, regs.edx, _EXT1_EDX)
        # XOP and FMA4 use the AVX encoding and need OS AVX support.
        if F.AVX in features:
            features.set_if(bool(regs.ecx & (1 << 11)), F.XOP)
            features.set_if(bool(regs.ecx & (1 << 16)), F.FMA4)

    if max_ext >= 0x80000007:
        regs = source.cpuid(0x80000007)
        _set_bits(features, regs.ebx, _EXT7_EBX)
        features.set_if(bool(regs.edx & (1 << 9)), F.CPBOOST)

    if max_ext >= 0x80000008:
        _set_bits(features, source.cpuid(0x80000008).ebx, _EXT8_EBX)

    if F.SVM in features and max_ext >= 0x8000000A:
        _set_bits(features, source.cpuid(0x8000000A).edx, _SVM_EDX)

    if max_ext >= 0x8000001A:
        _set_bits(features, source.cpuid(0x8000001A).eax, _EXT1A_EAX)

    if max_ext >= 0x8000001B and F.IBS in features:
        _set_bits(features, source.cpuid(0x8000001B).eax, _IBS_EAX)

    if max_ext >= 0x8000001F and vendor == Vendor.AMD:
        _set_bits(features, source.cpuid(0x8000001F).eax, _MEM_ENCRYPTION_EAX)

    if max_ext >= 0x80000021 and vendor == Vendor.AMD:
        regs = source.cpuid(0x80000021)
        _set_bits(features, regs.eax, _EXT21_EAX)
        _set_bits(features, regs.ecx, _EXT21_ECX)


def detect_features(
    source: CpuidSource,
    is_darwin: bool = False,
    darwin_has_avx512: Optional[Callable[[], bool]] = None,
) -> FeatureSet:
    """Decode every x86 feature the CPUID source reports.

    On Darwin the OS is asked through ``darwin_has_avx512`` whether AVX-512
    state is usable, instead of trusting XCR0.
    """
    features = FeatureSet()
    mfi = max_function_id(source)
    vendor, _ = vendor_id(source)
    if mfi < 1:
        return features
    family, model, _ = family_model(source)

    leaf1 = source.cpuid(1)
    c, d = leaf1.ecx, leaf1.edx
    _set_bits(features, d, _LEAF1_EDX)
    _set_bits(features, c, _LEAF1_ECX)

    if vendor in (Vendor.INTEL, Vendor.AMD) and d & (1 << 28) and mfi >= 4:
        features.set_if(threads_per_core(source) > 1, F.HTT)

    # Both flags are taken from ECX bit 0, as the detection has always read them.
    features.set_if(bool(c & 1), F.XSAVE)
    features.set_if(bool(c & 1), F.OSXSAVE)

    if c & _AVX_CHECK == _AVX_CHECK:
        xcr0, _ = source.xgetbv(0)
        if xcr0 & 0x6 == 0x6:
            features.set(F.AVX)
            if vendor == Vendor.INTEL:
                # Older than Haswell.
                features.set_if(family == 6 and model < 60, F.AVXSLOW)
            elif vendor == Vendor.AMD:
                # Older than Zen 2.
                features.set_if(family < 23 or (family == 23 and model < 49), F.AVXSLOW)

    # FMA3 works on SSE registers, so no OS support is needed.
    features.set_if(c & _FMA3_CHECK == _FMA3_CHECK, F.FMA3)

    if mfi >= 7:
        _leaf7_features(source, features, mfi, c, is_darwin, darwin_has_avx512)

    if mfi >= 0xD and F.XSAVE in features:
        _set_bits(features, source.cpuidex(0xD, 1).eax, _LEAF_D_1_EAX)

    _extended_features(source, features, vendor)

    if vendor == Vendor.AMD:
        if family < 0x19:
            # Older families are not vulnerable to TSA but do not report it.
            features.set(F.TSA_L1_NO, F.TSA_SQ_NO)
        elif family == 0x1A:
            not_vulnerable = model <= 0x4F or 0x60 <= model <= 0x7F
            features.set_if(not_vulnerable, F.TSA_L1_NO, F.TSA_SQ_NO)

    if mfi >= 0x20:
        # Hyper-V hides the guest TEE; its feature leaf reports TDX instead.
        features.set_if(source.cpuid(0x4000000C).ebx == _HYPERV_TDX_EBX, F.TDX_GUEST)

    if mfi >= 0x21:
        regs = source.cpuid(0x21)
        identity = registers_as_string(regs.ebx, regs.edx, regs.ecx)
        features.set_if(identity == _TDX_IDENTITY, F.TDX_GUEST)

    return features


def avx10_level(source: CpuidSource, max_function: int, features: FeatureSet) -> int:
    """The AVX10 converged vector ISA version, or 0 when unsupported."""
    if max_function >= 0x24 and F.AVX10 in features:
        return source.cpuidex(0x24, 0).ebx & 0xFF
    return 0