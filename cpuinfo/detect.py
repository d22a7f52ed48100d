"""Detection of the CPU running the current process."""

from __future__ import annotations

import functools
import platform
import sys
from typing import Iterable, Iterator, Optional, Union

from .arm64 import ARM64_CACHE_LINE, vendor_from_midr
from .arm_os import detect_darwin, detect_linux, detect_other
from .features import FeatureID, parse_feature
from .model import CPUInfo
from .registers import CpuidSource
from .x86 import (
    amd_mem_encryption,
    brand_name,
    cache_line,
    cache_sizes,
    family_model,
    frequencies,
    hypervisor_vendor_id,
    logical_cores,
    max_extended_function,
    max_function_id,
    parse_leaf_0ah,
    physical_cores,
    sgx_support,
    threads_per_core,
    vendor_id,
)
from .x86_features import avx10_level, detect_features

_ARM64_MACHINES = frozenset({"arm64", "aarch64"})
_MIDR_PATH = "/sys/devices/system/cpu/cpu0/regs/identification/midr_el1"

DisableSpec = Union[str, Iterable[str], None]


def add_x86_info(info: CPUInfo, source: CpuidSource, is_darwin: bool = False) -> None:
    """Fill info from the CPUID leaves answered by source."""
    info.max_func = max_function_id(source)
    info.max_ex_func = max_extended_function(source)
    info.brand_name = brand_name(source)
    info.cache_line = cache_line(source)
    info.family, info.model, info.stepping = family_model(source)
    info.features = detect_features(source, is_darwin)
    info.sgx = sgx_support(
        source, FeatureID.SGX in info.features, FeatureID.SGXLC in info.features
    )
    info.amd_mem_encryption = amd_mem_encryption(
        source, FeatureID.SME in info.features or FeatureID.SEV in info.features
    )
    info.threads_per_core = threads_per_core(source)
    info.logical_cores = logical_cores(source)
    info.physical_cores = physical_cores(source)
    info.vendor_id, info.vendor_string = vendor_id(source)
    info.hypervisor_vendor_id, info.hypervisor_vendor_string = hypervisor_vendor_id(source)
    info.avx10_level = avx10_level(source, info.max_func, info.features)
    info.cache = cache_sizes(source, FeatureID.TOPEXT in info.features)
    info.hz, info.boost_freq = frequencies(source, info.brand_name)
    if info.max_func >= 0x0A:
        regs = source.cpuid(0x0A)
        info.pmu = parse_leaf_0ah(info.features, regs.eax, regs.ebx, regs.edx)


def _read_midr(path: str = _MIDR_PATH) -> Optional[int]:
    try:
        with open(path, encoding="ascii") as handle:
            return int(handle.read().strip(), 16)
    except (OSError, ValueError):
        return None


def _add_arm64_info(info: CPUInfo, safe: bool) -> None:
    info.cache_line = ARM64_CACHE_LINE
    if sys.platform.startswith("linux"):
        detect_linux(info, is_android=hasattr(sys, "getandroidapilevel"))
    elif sys.platform in ("darwin", "ios"):
        detect_darwin(info, is_ios=sys.platform == "ios")
    else:
        detect_other(info)

    if (
        safe
        and FeatureID.ARMCPUID not in info.features
        and not sys.platform.startswith("freebsd")
    ):
        return
    midr = _read_midr()
    if midr is None:
        return
    vendor = vendor_from_midr(midr)
    if vendor is not None:
        info.vendor_id, info.vendor_string = vendor
    info.family = (midr >> 16) & 0xFF
    info.model = midr & 0xFFFF


def _disabled_features(disable: DisableSpec) -> Iterator[FeatureID]:
    if disable is None:
        return
    names = disable.split(",") if isinstance(disable, str) else disable
    for name in names:
        feature = parse_feature(name.strip())
        if feature != FeatureID.UNKNOWN:
            yield feature


def detect(
    source: Optional[CpuidSource] = None,
    disable: DisableSpec = None,
    safe: bool = True,
) -> CPUInfo:
    """Detect the CPU and return a fresh description of it.

    With a CPUID source the x86 leaves it answers are decoded. Without one
    the running machine is inspected through what the OS exposes.
    ``disable`` names features (a comma separated string or an iterable)
    to remove; unknown names are ignored. ``safe=False`` allows reading
    ARM identification registers even when the OS does not advertise them.
    """
    info = CPUInfo()
    if source is not None:
        add_x86_info(info, source, sys.platform == "darwin")
    elif platform.machine().lower() in _ARM64_MACHINES:
        _add_arm64_info(info, safe)
    info.disable(*_disabled_features(disable))
    return info


@functools.lru_cache(maxsize=None)
def get_cpu() -> CPUInfo:
    """The CPU of this machine, detected once and shared."""
    return detect()