import pytest

from cpuinfo.features import FeatureID, FeatureSet, Vendor
from cpuinfo.model import CacheInfo, PerformanceMonitoringInfo, SGXEPCSection
from cpuinfo.registers import DumpSource, NullSource
from cpuinfo import x86

INTEL_LEAF0 = (0x0000000D, 0x756E6547, 0x6C65746E, 0x49656E69)
AMD_LEAF0 = (0x0000000D, 0x68747541, 0x444D4163, 0x69746E65)


def _words(text, count):
    raw = text.encode("ascii").ljust(4 * count, b"\x00")
    return [int.from_bytes(raw[i : i + 4], "little") for i in range(0, 4 * count, 4)]


def _brand_leaves(brand):
    words = _words(brand, 12)
    return {0x80000002 + n: [tuple(words[4 * n : 4 * n + 4])] for n in range(3)}


def test_max_functions():
    source = DumpSource({0: [INTEL_LEAF0], 0x80000000: [(0x80000008, 0, 0, 0)]})
    assert x86.max_function_id(source) == 0xD
    assert x86.max_extended_function(source) == 0x80000008


def test_vendor_intel_and_amd():
    assert x86.vendor_id(DumpSource({0: [INTEL_LEAF0]})) == (Vendor.INTEL, "GenuineIntel")
    assert x86.vendor_id(DumpSource({0: [AMD_LEAF0]})) == (Vendor.AMD, "AuthenticAMD")


def test_null_source_vendor_is_unknown_empty():
    assert x86.vendor_id(NullSource()) == (Vendor.UNKNOWN, "")


def test_hypervisor_vendor():
    b, c, d = _words("KVMKVMKVM", 3)
    source = DumpSource({0x40000000: [(0x40000001, b, c, d)]})
    assert x86.hypervisor_vendor_id(source) == (Vendor.KVM, "KVMKVMKVM")


def test_brand_name_trimmed():
    leaves = {0: [INTEL_LEAF0], 0x80000000: [(0x80000004, 0, 0, 0)]}
    leaves.update(_brand_leaves("  Intel(R) Core(TM) i7-8700K CPU @ 3.70GHz  "))
    name = x86.brand_name(DumpSource(leaves))
    assert name == "Intel(R) Core(TM) i7-8700K CPU @ 3.70GHz"
    assert not name.endswith(" ") and "\x00" not in name


def test_brand_name_unknown_without_leaves():
    assert x86.brand_name(NullSource()) == "unknown"


def test_family_model_intel():
    source = DumpSource({0: [INTEL_LEAF0], 1: [(0x000906EA, 0, 0, 0)]})
    assert x86.family_model(source) == (6, 158, 10)


def test_family_model_amd_extended_family():
    source = DumpSource({0: [AMD_LEAF0], 1: [(0x00830F10, 0, 0, 0)]})
    assert x86.family_model(source) == (23, 49, 0)


def test_family_model_without_leaf1():
    assert x86.family_model(NullSource()) == (0, 0, 0)


def test_intel_topology_from_leaf_b():
    source = DumpSource(
        {0: [INTEL_LEAF0], 0xB: [(1, 2, 0x100, 0), (4, 12, 0x201, 0)]}
    )
    assert x86.threads_per_core(source) == 2
    assert x86.logical_cores(source) == 12
    assert x86.physical_cores(source) == 6


def test_intel_topology_old_cpu():
    leaf0 = (0x5,) + INTEL_LEAF0[1:]
    source = DumpSource(
        {0: [leaf0], 1: [(0, 8 << 16, 0, 1 << 28)], 4: [(3 << 26, 0, 0, 0)]}
    )
    assert x86.threads_per_core(source) == 2
    assert x86.logical_cores(source) == 8
    assert x86.physical_cores(source) == 4


def test_amd_zen_topology():
    source = DumpSource(
        {
            0: [AMD_LEAF0],
            1: [(0x00830F10, 16 << 16, 0, 1 << 28)],
            0x80000000: [(0x8000001E, 0, 0, 0)],
            0x8000001E: [(0, 1 << 8, 0, 0)],
        }
    )
    assert x86.threads_per_core(source) == 2
    assert x86.logical_cores(source) == 16
    assert x86.physical_cores(source) == 8


def test_topology_unknown_vendor():
    source = DumpSource({0: [(0xD, 0, 0, 0)]})
    assert x86.threads_per_core(source) == 1
    assert x86.logical_cores(source) == 0
    assert x86.physical_cores(source) == 0


def test_cache_line():
    source = DumpSource({0: [INTEL_LEAF0], 1: [(0, 8 << 8, 0, 0)]})
    assert x86.cache_line(source) == 64
    amd = DumpSource(
        {0: [AMD_LEAF0], 0x80000000: [(0x80000006, 0, 0, 0)], 0x80000006: [(0, 0, 0x40, 0)]}
    )
    assert x86.cache_line(amd) == 64
    assert x86.cache_line(NullSource()) == 0


def test_intel_cache_sizes():
    source = DumpSource(
        {
            0: [INTEL_LEAF0],
            4: [
                (1 | 1 << 5, (7 << 22) | 63, 63, 0),
                (2 | 1 << 5, (7 << 22) | 63, 63, 0),
                (3 | 2 << 5, (3 << 22) | 63, 1023, 0),
                (3 | 3 << 5, (15 << 22) | 63, 8191, 0),
            ],
        }
    )
    assert x86.cache_sizes(source, False) == CacheInfo(
        l1i=32768, l1d=32768, l2=262144, l3=8388608
    )


def test_amd_cache_sizes_without_topext():
    source = DumpSource(
        {
            0: [AMD_LEAF0],
            0x80000000: [(0x80000006, 0, 0, 0)],
            0x80000005: [(0, 0, 32 << 24, 64 << 24)],
            0x80000006: [(0, 0, 512 << 16, 0)],
        }
    )
    assert x86.cache_sizes(source, False) == CacheInfo(l1i=65536, l1d=32768, l2=524288, l3=-1)


def test_amd_cache_sizes_with_topext_l3():
    source = DumpSource(
        {
            0: [AMD_LEAF0],
            0x80000000: [(0x8000001D, 0, 0, 0)],
            0x80000005: [(0, 0, 32 << 24, 32 << 24)],
            0x80000006: [(0, 0, 512 << 16, 0)],
            0x8000001D: [(3 | 3 << 5, (15 << 22) | 63, 16383, 0)],
        }
    )
    assert x86.cache_sizes(source, True).l3 == 16 * 1024 * 1024


def test_cache_sizes_unknown_vendor():
    assert x86.cache_sizes(NullSource(), True) == CacheInfo()


def test_sgx_not_available():
    support = x86.sgx_support(NullSource(), False, True)
    assert support.available is False
    assert support.launch_control is False
    assert support.epc_sections == []


def test_sgx_available():
    source = DumpSource(
        {
            0: [(0x12,) + INTEL_LEAF0[1:]],
            0x12: [
                (3, 0, 0, 0x2420),
                (0, 0, 0, 0),
                (0x70200001, 0x1, 0x05D80001, 0),
            ],
        }
    )
    support = x86.sgx_support(source, True, True)
    assert support.available and support.launch_control
    assert support.sgx1_supported and support.sgx2_supported
    assert support.max_enclave_size_not64 == 1 << 0x20
    assert support.max_enclave_size64 == 1 << 0x24
    assert support.epc_sections == [
        SGXEPCSection(base_address=0x70200000 + (1 << 32), epc_size=0x05D80000)
    ]


def test_amd_mem_encryption():
    source = DumpSource(
        {0x80000000: [(0x8000001F, 0, 0, 0)], 0x8000001F: [(3, 47 | 5 << 6 | 1 << 12, 509, 1)]}
    )
    info = x86.amd_mem_encryption(source, True)
    assert info.available
    assert info.c_bit_position == 47
    assert info.phys_addr_reduction == 5
    assert info.num_vmpl == 1
    assert info.num_encrypted_guests == 509
    assert info.min_sev_no_es_asid == 1
    assert x86.amd_mem_encryption(source, False).c_bit_position == 0


@pytest.mark.parametrize(
    "brand, expected",
    [
        ("Intel(R) Core(TM) i7-8700K CPU @ 3.70GHz", 3_700_000_000),
        ("Some CPU 1300MHz", 1_300_000_000),
        ("Odd CPU @ 2THz", 2_000_000_000_000),
        ("CPU @ 3.7.0GHz", 0),
        ("3.70GHz", 0),
        ("CPU @ 3.70KHz", 0),
        ("CPU @ 3,70GHz", 0),
        ("No frequency", 0),
    ],
)
def test_frequency_from_brand(brand, expected):
    source = DumpSource({0: [INTEL_LEAF0]})
    assert x86.frequencies(source, brand) == (expected, 0)


def test_frequency_from_leaf_16():
    source = DumpSource({0: [(0x16,) + INTEL_LEAF0[1:]], 0x16: [(3700, 4700, 100, 0)]})
    assert x86.frequencies(source, "CPU @ 1.00GHz") == (3_700_000_000, 4_700_000_000)


def test_frequency_from_leaf_15():
    source = DumpSource({0: [(0x15,) + INTEL_LEAF0[1:]], 0x15: [(2, 200, 24_000_000, 0)]})
    assert x86.frequencies(source, "CPU") == (2_400_000_000, 0)


def test_parse_leaf_0ah_zero():
    features = FeatureSet()
    assert x86.parse_leaf_0ah(features, 0, 0, 0) == PerformanceMonitoringInfo()
    assert len(features) == 0


@pytest.mark.parametrize(
    "eax, ebx, edx, want, want_features",
    [
        (
            0x7300404,
            0x0,
            0x603,
            PerformanceMonitoringInfo(
                version_id=4, gp_pmc_width=48, num_gp_counters=4, num_fixed_pmc=3, fixed_pmc_width=48
            ),
            [
                FeatureID.PMU_FIXEDCOUNTER_CYCLES,
                FeatureID.PMU_FIXEDCOUNTER_INSTRUCTIONS,
                FeatureID.PMU_FIXEDCOUNTER_REFCYCLES,
            ],
        ),
        (
            0x8300802,
            0x0,
            0x604,
            PerformanceMonitoringInfo(
                version_id=2, gp_pmc_width=48, num_gp_counters=8, num_fixed_pmc=4, fixed_pmc_width=48
            ),
            [
                FeatureID.PMU_FIXEDCOUNTER_CYCLES,
                FeatureID.PMU_FIXEDCOUNTER_INSTRUCTIONS,
                FeatureID.PMU_FIXEDCOUNTER_REFCYCLES,
                FeatureID.PMU_FIXEDCOUNTER_TOPDOWN_SLOTS,
            ],
        ),
    ],
)
def test_parse_leaf_0ah_cases(eax, ebx, edx, want, want_features):
    want.raw_eax, want.raw_ebx, want.raw_edx = eax, ebx, edx
    features = FeatureSet()
    assert x86.parse_leaf_0ah(features, eax, ebx, edx) == want
    assert features.has_all(want_features)


def test_parse_leaf_0ah_unavailable_counter_bits():
    features = FeatureSet()
    x86.parse_leaf_0ah(features, 0x8300805, 0b1010, 0x604)
    assert FeatureID.PMU_FIXEDCOUNTER_INSTRUCTIONS in features
    assert FeatureID.PMU_FIXEDCOUNTER_REFCYCLES in features
    assert FeatureID.PMU_FIXEDCOUNTER_CYCLES not in features
    assert FeatureID.PMU_FIXEDCOUNTER_TOPDOWN_SLOTS not in features


def test_parse_leaf_0ah_version1_has_no_fixed_counters():
    info = x86.parse_leaf_0ah(FeatureSet(), 0x7300401, 0, 0x603)
    assert info.num_fixed_pmc == 0
    assert info.fixed_pmc_width == 0