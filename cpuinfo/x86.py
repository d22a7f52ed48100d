"""Decoding of x86 CPUID leaves into CPU properties."""

from __future__ import annotations

import itertools

from .features import FeatureID, FeatureSet, Vendor
from .model import (
    AMDMemEncryptionSupport,
    CacheInfo,
    PerformanceMonitoringInfo,
    SGXEPCSection,
    SGXSupport,
)
from .registers import CpuidSource, registers_as_string

_MASK32 = 0xFFFFFFFF

VENDOR_MAPPING: dict[str, Vendor] = {
    "AMDisbetter!": Vendor.AMD,
    "AuthenticAMD": Vendor.AMD,
    "CentaurHauls": Vendor.VIA,
    "GenuineIntel": Vendor.INTEL,
    "TransmetaCPU": Vendor.TRANSMETA,
    "GenuineTMx86": Vendor.TRANSMETA,
    "Geode by NSC": Vendor.NSC,
    "VIA VIA VIA ": Vendor.VIA,
    "KVMKVMKVM": Vendor.KVM,
    "Linux KVM Hv": Vendor.KVM,
    "TCGTCGTCGTCG": Vendor.QEMU,
    "Microsoft Hv": Vendor.MSVM,
    "VMwareVMware": Vendor.VMWARE,
    "XenVMMXenVMM": Vendor.XENHVM,
    "bhyve bhyve ": Vendor.BHYVE,
    "HygonGenuine": Vendor.HYGON,
    "Vortex86 SoC": Vendor.SIS,
    "SiS SiS SiS ": Vendor.SIS,
    "RiseRiseRise": Vendor.SIS,
    "Genuine  RDC": Vendor.RDC,
    "QNXQVMBSQG": Vendor.QNX,
    "ACRNACRNACRN": Vendor.ACRN,
    "SRESRESRESRE": Vendor.SRE,
    "Apple VZ": Vendor.APPLE,
}

_FREQUENCY_MULTIPLIERS = {
    "M": 1000**2,
    "G": 1000**3,
    "T": 1000**4,
}


def max_function_id(source: CpuidSource) -> int:
    """Highest supported basic leaf."""
    return source.cpuid(0).eax


def max_extended_function(source: CpuidSource) -> int:
    """Highest supported extended leaf."""
    return source.cpuid(0x80000000).eax


def brand_name(source: CpuidSource) -> str:
    """The processor brand string, or "unknown"."""
    if max_extended_function(source) < 0x80000004:
        return "unknown"
    values = [value for leaf in range(3) for value in source.cpuid(0x80000002 + leaf)]
    return registers_as_string(*values).strip(" ")


def _lookup_vendor(raw: str) -> tuple[Vendor, str]:
    return VENDOR_MAPPING.get(raw, Vendor.UNKNOWN), raw


def vendor_id(source: CpuidSource) -> tuple[Vendor, str]:
    """The CPU vendor and its raw identification string."""
    regs = source.cpuid(0)
    return _lookup_vendor(registers_as_string(regs.ebx, regs.edx, regs.ecx))


def hypervisor_vendor_id(source: CpuidSource) -> tuple[Vendor, str]:
    """The hypervisor vendor and its raw identification string."""
    regs = source.cpuid(0x40000000)
    return _lookup_vendor(registers_as_string(regs.ebx, regs.ecx, regs.edx))


def family_model(source: CpuidSource) -> tuple[int, int, int]:
    """Return (family, model, stepping), including the extended fields."""
    if max_function_id(source) < 1:
        return 0, 0, 0
    eax = source.cpuid(1).eax
    family = (eax >> 8) & 0xF
    extended = family == 0x6
    if family == 0xF:
        family += (eax >> 20) & 0xFF
        extended = True
    model = (eax >> 4) & 0xF
    if extended:
        model += (eax >> 12) & 0xF0
    stepping = eax & 0xF
    return family, model, stepping


def threads_per_core(source: CpuidSource) -> int:
    """Hardware threads per physical core; 1 when undetectable."""
    mfi = max_function_id(source)
    vendor, _ = vendor_id(source)
    if mfi < 0x4 or vendor not in (Vendor.INTEL, Vendor.AMD):
        return 1

    if mfi < 0xB:
        if vendor != Vendor.INTEL:
            return 1
        leaf1 = source.cpuid(1)
        if leaf1.edx & (1 << 28):
            logical = (leaf1.ebx >> 16) & 0xFF
            if logical > 1:
                cores = (source.cpuid(4).eax >> 26) + 1
                if cores > 0:
                    return logical // cores
        return 1

    ebx = source.cpuidex(0xB, 0).ebx
    if ebx & 0xFFFF == 0:
        if vendor == Vendor.AMD:
            family, _, _ = family_model(source)
            edx = source.cpuid(1).edx
            if edx & (1 << 28) and family >= 23:
                if max_extended_function(source) >= 0x8000001E:
                    return ((source.cpuid(0x8000001E).ebx >> 8) & 0xFF) + 1
                return 2
        return 1
    return ebx & 0xFFFF


def logical_cores(source: CpuidSource) -> int:
    """Number of logical processors; 0 when undetectable."""
    mfi = max_function_id(source)
    vendor, _ = vendor_id(source)
    if vendor == Vendor.INTEL:
        if mfi < 0xB:
            if mfi < 1:
                return 0
            return (source.cpuid(1).ebx >> 16) & 0xFF
        return source.cpuidex(0xB, 1).ebx & 0xFFFF
    if vendor in (Vendor.AMD, Vendor.HYGON):
        return (source.cpuid(1).ebx >> 16) & 0xFF
    return 0


def physical_cores(source: CpuidSource) -> int:
    """Number of physical cores; 0 when undetectable."""
    vendor, _ = vendor_id(source)
    if vendor not in (Vendor.INTEL, Vendor.AMD, Vendor.HYGON):
        return 0
    logical = logical_cores(source)
    threads = threads_per_core(source)
    if logical > 0 and threads > 0:
        return logical // threads
    if vendor == Vendor.INTEL:
        return 0
    if max_extended_function(source) >= 0x80000008:
        count = source.cpuid(0x80000008).ecx & 0xFF
        if count > 0:
            return count + 1
    return 0


def cache_line(source: CpuidSource) -> int:
    """Cache line size in bytes; 0 when undetectable."""
    if max_function_id(source) < 1:
        return 0
    cache = (source.cpuid(1).ebx & 0xFF00) >> 5
    if cache == 0 and max_extended_function(source) >= 0x80000006:
        cache = source.cpuid(0x80000006).ecx & 0xFF
    return cache


def _store_cache(cache: CacheInfo, level: int, kind: int, size: int) -> None:
    if level == 1:
        if kind == 1:
            cache.l1d = size
        elif kind == 2:
            cache.l1i = size
        else:
            if cache.l1d < 0:
                cache.l1i = size
            if cache.l1i < 0:
                cache.l1i = size
    elif level == 2:
        cache.l2 = size
    elif level == 3:
        cache.l3 = size


def _intel_cache_sizes(source: CpuidSource, cache: CacheInfo) -> None:
    if max_function_id(source) < 4:
        return
    cache.l1i = cache.l1d = cache.l2 = cache.l3 = 0
    for subleaf in itertools.count():
        regs = source.cpuidex(4, subleaf)
        kind = regs.eax & 15
        if kind == 0:
            break
        level = (regs.eax >> 5) & 7
        coherency = (regs.ebx & 0xFFF) + 1
        partitions = ((regs.ebx >> 12) & 0x3FF) + 1
        associativity = ((regs.ebx >> 22) & 0x3FF) + 1
        sets = regs.ecx + 1
        _store_cache(cache, level, kind, associativity * partitions * coherency * sets)


def _amd_cache_sizes(source: CpuidSource, cache: CacheInfo, has_topext: bool) -> None:
    if max_extended_function(source) < 0x80000005:
        return
    regs = source.cpuid(0x80000005)
    cache.l1d = ((regs.ecx >> 24) & 0xFF) * 1024
    cache.l1i = ((regs.edx >> 24) & 0xFF) * 1024

    if max_extended_function(source) < 0x80000006:
        return
    cache.l2 = ((source.cpuid(0x80000006).ecx >> 16) & 0xFFFF) * 1024

    if max_extended_function(source) < 0x8000001D or not has_topext:
        return

    # Some hypervisors return the same entry for every sub-leaf; give up
    # after seeing one repeated a hundred times.
    repeats = 0
    last = 0
    for subleaf in range(_MASK32):
        regs = source.cpuidex(0x8000001D, subleaf)
        level = (regs.eax >> 5) & 7
        sets = regs.ecx + 1
        line_size = 1 + (regs.ebx & 2047)
        partitions = 1 + ((regs.ebx >> 12) & 511)
        ways = 1 + ((regs.ebx >> 22) & 511)
        kind = regs.eax & 15
        size = (sets * line_size * partitions * ways) & _MASK32
        if kind == 0:
            return
        combined = regs.eax ^ regs.ebx ^ regs.ecx
        if combined == last:
            repeats += 1
            if repeats == 100:
                return
        last = combined
        _store_cache(cache, level, kind, size)


def cache_sizes(source: CpuidSource, has_topext: bool) -> CacheInfo:
    """Cache sizes in bytes; levels that cannot be read stay at -1."""
    cache = CacheInfo()
    vendor, _ = vendor_id(source)
    if vendor == Vendor.INTEL:
        _intel_cache_sizes(source, cache)
    elif vendor in (Vendor.AMD, Vendor.HYGON):
        _amd_cache_sizes(source, cache, has_topext)
    return cache


def _signed_power_of_two(exponent: int) -> int:
    if exponent >= 64:
        return 0
    if exponent == 63:
        return -(1 << 63)
    return 1 << exponent


def sgx_support(source: CpuidSource, available: bool, launch_control: bool) -> SGXSupport:
    """Decode SGX capabilities from leaf 0x12."""
    support = SGXSupport(available=available)
    if not available:
        return support
    support.launch_control = launch_control

    regs = source.cpuidex(0x12, 0)
    support.sgx1_supported = bool(regs.eax & 0x01)
    support.sgx2_supported = bool(regs.eax & 0x02)
    support.max_enclave_size_not64 = _signed_power_of_two(regs.edx & 0xFF)
    support.max_enclave_size64 = _signed_power_of_two((regs.edx >> 8) & 0xFF)

    for subleaf in range(2, 10):
        section = source.cpuidex(0x12, subleaf)
        kind = section.eax & 0xF
        if kind == 0:
            break
        if kind == 1:
            base = (section.eax & 0xFFFFF000) + ((section.ebx & 0x000FFFFF) << 32)
            size = (section.ecx & 0xFFFFF000) + ((section.edx & 0x000FFFFF) << 32)
            support.epc_sections.append(SGXEPCSection(base_address=base, epc_size=size))
    return support


def amd_mem_encryption(source: CpuidSource, available: bool) -> AMDMemEncryptionSupport:
    """Decode AMD memory encryption capabilities from leaf 0x8000001F."""
    support = AMDMemEncryptionSupport(available=available)
    if not available:
        return support
    regs = source.cpuidex(0x8000001F, 0)
    support.c_bit_position = regs.ebx & 0x3F
    support.phys_addr_reduction = (regs.ebx >> 6) & 0x3F
    support.num_vmpl = (regs.ebx >> 12) & 0xF
    support.num_encrypted_guests = regs.ecx
    support.min_sev_no_es_asid = regs.edx
    return support


def _frequency_from_brand(brand: str) -> int:
    """Rated clock speed parsed from a brand string such as "... @ 2.50GHz"."""
    hz_index = brand.rfind("Hz")
    if hz_index < 3:
        return 0
    multiplier = _FREQUENCY_MULTIPLIERS.get(brand[hz_index - 1], 0)
    if multiplier == 0:
        return 0
    space = brand.rfind(" ", 0, hz_index - 1)
    if space < 0:
        return 0
    token = brand[space + 1 : hz_index - 1]
    if any(ch not in "0123456789." for ch in token) or token.count(".") > 1:
        return 0
    whole, dot, fraction = token.partition(".")
    digits = whole + fraction
    freq = int(digits) if digits else 0
    if dot:
        return (freq * multiplier) // (10 ** len(fraction))
    return freq * multiplier


def frequencies(source: CpuidSource, brand: str) -> tuple[int, int]:
    """Return (base, boost) clock speed in Hz; 0 where unknown."""
    hz = boost = 0
    mfi = max_function_id(source)
    if mfi >= 0x15:
        regs = source.cpuid(0x15)
        if regs.eax and regs.ebx and regs.ecx:
            hz = (regs.ecx * regs.ebx) // regs.eax
    if mfi >= 0x16:
        regs = source.cpuid(0x16)
        if regs.eax & 0xFFFF:
            hz = (regs.eax & 0xFFFF) * 1_000_000
        if regs.ebx & 0xFFFF:
            boost = (regs.ebx & 0xFFFF) * 1_000_000
    if hz > 0:
        return hz, boost
    return _frequency_from_brand(brand), boost


def parse_leaf_0ah(features: FeatureSet, eax: int, ebx: int, edx: int) -> PerformanceMonitoringInfo:
    """Decode leaf 0x0A and add the fixed-counter features it reports."""
    info = PerformanceMonitoringInfo(
        version_id=eax & 0xFF,
        num_gp_counters=(eax >> 8) & 0xFF,
        gp_pmc_width=(eax >> 16) & 0xFF,
        raw_ebx=ebx,
        raw_eax=eax,
        raw_edx=edx,
    )
    if info.version_id > 1:
        info.num_fixed_pmc = edx & 0x1F
        info.fixed_pmc_width = (edx >> 5) & 0xFF
    if info.version_id > 0:
        basic = (
            FeatureID.PMU_FIXEDCOUNTER_INSTRUCTIONS,
            FeatureID.PMU_FIXEDCOUNTER_CYCLES,
            FeatureID.PMU_FIXEDCOUNTER_REFCYCLES,
        )
        if ebx == 0:
            features.set_if(info.num_fixed_pmc in (3, 4), *basic)
            features.set_if(info.num_fixed_pmc == 4, FeatureID.PMU_FIXEDCOUNTER_TOPDOWN_SLOTS)
        else:
            counters = basic + (FeatureID.PMU_FIXEDCOUNTER_TOPDOWN_SLOTS,)
            for bit, feature in enumerate(counters):
                features.set_if(not (ebx >> bit) & 1, feature)
    return info