"""Data model describing a detected CPU."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from .features import FeatureID, FeatureSet, Vendor, combine_features


@dataclass
class CacheInfo:
    """Cache sizes in bytes; -1 means undetected."""

    l1i: int = -1
    l1d: int = -1
    l2: int = -1
    l3: int = -1


@dataclass
class SGXEPCSection:
    """An SGX enclave page cache section."""

    base_address: int = 0
    epc_size: int = 0


@dataclass
class SGXSupport:
    """Intel Software Guard Extensions capabilities."""

    available: bool = False
    launch_control: bool = False
    sgx1_supported: bool = False
    sgx2_supported: bool = False
    max_enclave_size_not64: int = 0
    max_enclave_size64: int = 0
    epc_sections: list[SGXEPCSection] = field(default_factory=list)


@dataclass
class AMDMemEncryptionSupport:
    """AMD memory encryption capabilities."""

    available: bool = False
    c_bit_position: int = 0
    num_vmpl: int = 0
    phys_addr_reduction: int = 0
    num_encrypted_guests: int = 0
    min_sev_no_es_asid: int = 0


@dataclass
class PerformanceMonitoringInfo:
    """Performance monitoring unit capabilities."""

    version_id: int = 0
    num_gp_counters: int = 0
    gp_pmc_width: int = 0
    num_fixed_pmc: int = 0
    fixed_pmc_width: int = 0
    raw_ebx: int = 0
    raw_eax: int = 0
    raw_edx: int = 0


_ONE_OF_LEVEL = combine_features(FeatureID.SYSEE, FeatureID.SYSCALL)
_LEVEL1 = (
    FeatureID.CMOV,
    FeatureID.CMPXCHG8,
    FeatureID.X87,
    FeatureID.FXSR,
    FeatureID.MMX,
    FeatureID.SSE,
    FeatureID.SSE2,
)
_LEVEL2 = _LEVEL1 + (
    FeatureID.CX16,
    FeatureID.LAHF,
    FeatureID.POPCNT,
    FeatureID.SSE3,
    FeatureID.SSE4,
    FeatureID.SSE42,
    FeatureID.SSSE3,
)
_LEVEL3 = _LEVEL2 + (
    FeatureID.AVX,
    FeatureID.AVX2,
    FeatureID.BMI1,
    FeatureID.BMI2,
    FeatureID.F16C,
    FeatureID.FMA3,
    FeatureID.LZCNT,
    FeatureID.MOVBE,
    FeatureID.OSXSAVE,
)
_LEVEL4 = _LEVEL3 + (
    FeatureID.AVX512F,
    FeatureID.AVX512BW,
    FeatureID.AVX512CD,
    FeatureID.AVX512DQ,
    FeatureID.AVX512VL,
)
_LEVELS = (
    (4, combine_features(*_LEVEL4)),
    (3, combine_features(*_LEVEL3)),
    (2, combine_features(*_LEVEL2)),
    (1, combine_features(*_LEVEL1)),
)


@dataclass
class CPUInfo:
    """Information about a CPU."""

    brand_name: str = ""
    vendor_id: Vendor = Vendor.UNKNOWN
    vendor_string: str = ""
    hypervisor_vendor_id: Vendor = Vendor.UNKNOWN
    hypervisor_vendor_string: str = ""
    features: FeatureSet = field(default_factory=FeatureSet)
    physical_cores: int = 0
    threads_per_core: int = 1
    logical_cores: int = 0
    family: int = 0
    model: int = 0
    stepping: int = 0
    cache_line: int = 0
    hz: int = 0
    boost_freq: int = 0
    cache: CacheInfo = field(default_factory=CacheInfo)
    sgx: SGXSupport = field(default_factory=SGXSupport)
    amd_mem_encryption: AMDMemEncryptionSupport = field(default_factory=AMDMemEncryptionSupport)
    avx10_level: int = 0
    pmu: PerformanceMonitoringInfo = field(default_factory=PerformanceMonitoringInfo)
    max_func: int = 0
    max_ex_func: int = 0

    def supports(self, *features: FeatureID) -> bool:
        """Whether every given feature is present."""
        return all(feature in self.features for feature in features)

    def has(self, feature: FeatureID) -> bool:
        """Whether a single feature is present."""
        return feature in self.features

    def any_of(self, *features: FeatureID) -> bool:
        """Whether at least one of the given features is present."""
        return any(feature in self.features for feature in features)

    def has_all(self, features: FeatureSet) -> bool:
        """Whether every feature of a combined set is present."""
        return self.features.has_all(features)

    def x64_level(self) -> int:
        """The x86-64 microarchitecture level, or 0 when none applies."""
        if not self.features.has_any(_ONE_OF_LEVEL):
            return 0
        for level, required in _LEVELS:
            if self.features.has_all(required):
                return level
        return 0

    def disable(self, *features: FeatureID) -> None:
        """Mark the given features as unavailable."""
        self.features.unset(*features)

    def enable(self, *features: FeatureID) -> None:
        """Mark the given features as available, even if undetected."""
        self.features.set(*features)

    def is_vendor(self, vendor: Vendor) -> bool:
        return self.vendor_id == vendor

    def feature_names(self) -> list[str]:
        """Names of all available features."""
        return self.features.names()

    def is_vm(self) -> bool:
        """Whether the CPU reports running under a hypervisor."""
        return FeatureID.HYPERVISOR in self.features

    def to_dict(self) -> dict[str, Any]:
        """A JSON-ready mapping of the public fields."""
        sgx = self.sgx
        amd = self.amd_mem_encryption
        pmu = self.pmu
        return {
            "BrandName": self.brand_name,
            "VendorID": int(self.vendor_id),
            "VendorString": self.vendor_string,
            "HypervisorVendorID": int(self.hypervisor_vendor_id),
            "HypervisorVendorString": self.hypervisor_vendor_string,
            "PhysicalCores": self.physical_cores,
            "ThreadsPerCore": self.threads_per_core,
            "LogicalCores": self.logical_cores,
            "Family": self.family,
            "Model": self.model,
            "Stepping": self.stepping,
            "CacheLine": self.cache_line,
            "Hz": self.hz,
            "BoostFreq": self.boost_freq,
            "Cache": {
                "L1I": self.cache.l1i,
                "L1D": self.cache.l1d,
                "L2": self.cache.l2,
                "L3": self.cache.l3,
            },
            "SGX": {
                "Available": sgx.available,
                "LaunchControl": sgx.launch_control,
                "SGX1Supported": sgx.sgx1_supported,
                "SGX2Supported": sgx.sgx2_supported,
                "MaxEnclaveSizeNot64": sgx.max_enclave_size_not64,
                "MaxEnclaveSize64": sgx.max_enclave_size64,
                "EPCSections": (
                    [
                        {"BaseAddress": s.base_address, "EPCSize": s.epc_size}
                        for s in sgx.epc_sections
                    ]
                    if sgx.available
                    else None
                ),
            },
            "AMDMemEncryption": {
                "Available": amd.available,
                "CBitPossition": amd.c_bit_position,
                "NumVMPL": amd.num_vmpl,
                "PhysAddrReduction": amd.phys_addr_reduction,
                "NumEntryptedGuests": amd.num_encrypted_guests,
                "MinSevNoEsAsid": amd.min_sev_no_es_asid,
            },
            "AVX10Level": self.avx10_level,
            "PMU": {
                "VersionID": pmu.version_id,
                "NumGPCounters": pmu.num_gp_counters,
                "GPPMCWidth": pmu.gp_pmc_width,
                "NumFixedPMC": pmu.num_fixed_pmc,
                "FixedPMCWidth": pmu.fixed_pmc_width,
                "RawEBX": pmu.raw_ebx,
                "RawEAX": pmu.raw_eax,
                "RawEDX": pmu.raw_edx,
            },
        }