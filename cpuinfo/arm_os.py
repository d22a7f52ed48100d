"""Operating-system based ARM64 feature and topology detection."""

from __future__ import annotations

import os
import struct
import subprocess
from typing import Callable, Optional

from .features import FeatureID, FeatureSet
from .model import CPUInfo

AT_HWCAP = 16
AT_HWCAP2 = 26

HWCAP_FP = 1 << 0
HWCAP_ASIMD = 1 << 1
HWCAP_EVTSTRM = 1 << 2
HWCAP_AES = 1 << 3
HWCAP_PMULL = 1 << 4
HWCAP_SHA1 = 1 << 5
HWCAP_SHA2 = 1 << 6
HWCAP_CRC32 = 1 << 7
HWCAP_ATOMICS = 1 << 8
HWCAP_FPHP = 1 << 9
HWCAP_ASIMDHP = 1 << 10
HWCAP_CPUID = 1 << 11
HWCAP_ASIMDRDM = 1 << 12
HWCAP_JSCVT = 1 << 13
HWCAP_FCMA = 1 << 14
HWCAP_LRCPC = 1 << 15
HWCAP_DCPOP = 1 << 16
HWCAP_SHA3 = 1 << 17
HWCAP_SM3 = 1 << 18
HWCAP_SM4 = 1 << 19
HWCAP_ASIMDDP = 1 << 20
HWCAP_SHA512 = 1 << 21
HWCAP_SVE = 1 << 22
HWCAP_ASIMDFHM = 1 << 23
HWCAP2_RNG = 1 << 16

DEFAULT_AUXV_PATH = "/proc/self/auxv"

# RNDR is read from the HWCAP word with the HWCAP2 bit position.
_HWCAP_FEATURES = (
    (HWCAP_AES, FeatureID.AESARM),
    (HWCAP_ASIMD, FeatureID.ASIMD),
    (HWCAP_ASIMDDP, FeatureID.ASIMDDP),
    (HWCAP_ASIMDHP, FeatureID.ASIMDHP),
    (HWCAP_ASIMDRDM, FeatureID.ASIMDRDM),
    (HWCAP_CPUID, FeatureID.ARMCPUID),
    (HWCAP_CRC32, FeatureID.CRC32),
    (HWCAP_DCPOP, FeatureID.DCPOP),
    (HWCAP_EVTSTRM, FeatureID.EVTSTRM),
    (HWCAP_FCMA, FeatureID.FCMA),
    (HWCAP_ASIMDFHM, FeatureID.FHM),
    (HWCAP_FP, FeatureID.FP),
    (HWCAP_FPHP, FeatureID.FPHP),
    (HWCAP_JSCVT, FeatureID.JSCVT),
    (HWCAP_LRCPC, FeatureID.LRCPC),
    (HWCAP_PMULL, FeatureID.PMULL),
    (HWCAP2_RNG, FeatureID.RNDR),
    (HWCAP_SHA1, FeatureID.SHA1),
    (HWCAP_SHA2, FeatureID.SHA2),
    (HWCAP_SHA3, FeatureID.SHA3),
    (HWCAP_SHA512, FeatureID.SHA512),
    (HWCAP_SM3, FeatureID.SM3),
    (HWCAP_SM4, FeatureID.SM4),
    (HWCAP_SVE, FeatureID.SVE),
)

# Each feature is available when any of its sysctl names reports true.
_DARWIN_FEATURES = (
    (FeatureID.AESARM, ("hw.optional.arm.FEAT_AES",)),
    (FeatureID.ASIMD, ("hw.optional.arm.AdvSIMD", "hw.optional.neon")),
    (FeatureID.ASIMDDP, ("hw.optional.arm.FEAT_DotProd",)),
    (FeatureID.ASIMDHP, ("hw.optional.arm.AdvSIMD_HPFPCvt", "hw.optional.neon_hpfp")),
    (FeatureID.ASIMDRDM, ("hw.optional.arm.FEAT_RDM",)),
    (FeatureID.ATOMICS, ("hw.optional.arm.FEAT_LSE", "hw.optional.armv8_1_atomics")),
    (FeatureID.CRC32, ("hw.optional.arm.FEAT_CRC32", "hw.optional.armv8_crc32")),
    (FeatureID.DCPOP, ("hw.optional.arm.FEAT_DPB",)),
    (FeatureID.EVTSTRM, ("hw.optional.arm.FEAT_ECV",)),
    (FeatureID.FCMA, ("hw.optional.arm.FEAT_FCMA", "hw.optional.armv8_3_compnum")),
    (FeatureID.FHM, ("hw.optional.armv8_2_fhm", "hw.optional.arm.FEAT_FHM")),
    (FeatureID.FP, ("hw.optional.floatingpoint",)),
    (FeatureID.FPHP, ("hw.optional.arm.FEAT_FP16", "hw.optional.neon_fp16")),
    (FeatureID.GPA, ("hw.optional.arm.FEAT_PAuth",)),
    (FeatureID.JSCVT, ("hw.optional.arm.FEAT_JSCVT",)),
    (FeatureID.LRCPC, ("hw.optional.arm.FEAT_LRCPC",)),
    (FeatureID.PMULL, ("hw.optional.arm.FEAT_PMULL",)),
    (FeatureID.RNDR, ("hw.optional.arm.FEAT_RNG",)),
    (FeatureID.TLB, ("hw.optional.arm.FEAT_TLBIOS", "hw.optional.arm.FEAT_TLBIRANGE")),
    (FeatureID.TS, ("hw.optional.arm.FEAT_FlagM", "hw.optional.arm.FEAT_FlagM2")),
    (FeatureID.SHA1, ("hw.optional.arm.FEAT_SHA1",)),
    (FeatureID.SHA2, ("hw.optional.arm.FEAT_SHA256",)),
    (FeatureID.SHA3, ("hw.optional.arm.FEAT_SHA3",)),
    (FeatureID.SHA512, ("hw.optional.arm.FEAT_SHA512",)),
    (FeatureID.SM3, ("hw.optional.arm.FEAT_SM3",)),
    (FeatureID.SM4, ("hw.optional.arm.FEAT_SM4",)),
    (FeatureID.SVE, ("hw.optional.arm.FEAT_SVE",)),
)

# Features every Apple Silicon macOS system provides without a sysctl.
_DARWIN_BASELINE = (FeatureID.AESARM, FeatureID.PMULL, FeatureID.SHA1, FeatureID.SHA2)

Sysctl = Callable[[str], Optional[str]]


def _cpu_count() -> int:
    return os.cpu_count() or 1


def parse_auxv(data: bytes, word_size: int = struct.calcsize("P")) -> dict[int, int]:
    """Parse a little-endian auxiliary vector into a tag to value mapping.

    word_size is the size of one entry word in bytes, 4 or 8.
    """
    formats = {4: "<II", 8: "<QQ"}
    fmt = formats.get(word_size)
    if fmt is None:
        raise ValueError(f"unsupported auxv word size: {word_size}")
    entry = 2 * word_size
    usable = len(data) - len(data) % entry
    return {tag: value for tag, value in struct.iter_unpack(fmt, data[:usable])}


def hwcap_features(hwcap: int, is_android: bool = False) -> FeatureSet:
    """Features reported by the Linux HWCAP word."""
    found = FeatureSet()
    for bit, feature in _HWCAP_FEATURES:
        found.set_if(bool(hwcap & bit), feature)
    # Some Android kernels report atomics that not every core supports.
    found.set_if(bool(hwcap & HWCAP_ATOMICS) and not is_android, FeatureID.ATOMICS)
    return found


def detect_linux(
    info: CPUInfo, auxv_path: str = DEFAULT_AUXV_PATH, is_android: bool = False
) -> bool:
    """Fill core counts and features from the auxiliary vector.

    Returns False when no HWCAP value could be read.
    """
    info.logical_cores = _cpu_count()
    info.physical_cores = info.logical_cores
    info.threads_per_core = 1
    try:
        with open(auxv_path, "rb") as handle:
            data = handle.read()
    except OSError:
        return False
    hwcap = parse_auxv(data).get(AT_HWCAP, 0)
    if hwcap == 0:
        return False
    info.features.update(hwcap_features(hwcap, is_android))
    return True


def read_sysctl(name: str) -> Optional[str]:
    """Value of a sysctl as text, or None when it cannot be read."""
    try:
        result = subprocess.run(
            ["sysctl", "-n", name],
            capture_output=True,
            text=True,
            check=False,
        )
    except OSError:
        return None
    if result.returncode != 0:
        return None
    return result.stdout.rstrip("\r\n")


def _read_unsigned(sysctl: Sysctl, name: str, limit: int) -> Optional[int]:
    text = sysctl(name)
    if text is None:
        return None
    try:
        value = int(text.strip())
    except ValueError:
        return None
    if value < 0 or value > limit:
        return None
    return value


def _get_bool(sysctl: Sysctl, name: str) -> bool:
    value = _read_unsigned(sysctl, name, 0xFFFFFFFF)
    return bool(value)


def _get_int(sysctl: Sysctl, unknown: int, *names: str) -> int:
    for name in names:
        value = _read_unsigned(sysctl, name, 0xFFFFFFFF)
        if value:
            return value
    return unknown


def _get_int64(sysctl: Sysctl, unknown: int, *names: str) -> int:
    for name in names:
        value = _read_unsigned(sysctl, name, 0xFFFFFFFFFFFFFFFF)
        if value is not None and value != unknown:
            return value
    return unknown


def _fill_from_sysctl(info: CPUInfo, sysctl: Sysctl) -> None:
    info.brand_name = sysctl("machdep.cpu.brand_string") or ""
    words = info.brand_name.split()
    if words:
        info.vendor_string = words[0]

    cpus = _cpu_count()
    info.physical_cores = _get_int(sysctl, cpus, "hw.physicalcpu")
    info.threads_per_core = _get_int(
        sysctl, 1, "machdep.cpu.thread_count", "kern.num_threads"
    ) // _get_int(sysctl, 1, "hw.physicalcpu")
    info.logical_cores = _get_int(sysctl, cpus, "machdep.cpu.core_count")
    info.family = _get_int(sysctl, 0, "machdep.cpu.family", "hw.cpufamily")
    info.model = _get_int(sysctl, 0, "machdep.cpu.model")
    info.cache_line = _get_int64(sysctl, 0, "hw.cachelinesize")
    info.cache.l1i = _get_int64(sysctl, -1, "hw.l1icachesize")
    info.cache.l1d = _get_int64(sysctl, -1, "hw.l1dcachesize")
    info.cache.l2 = _get_int64(sysctl, -1, "hw.l2cachesize")
    info.cache.l3 = _get_int64(sysctl, -1, "hw.l3cachesize")

    for feature, aliases in _DARWIN_FEATURES:
        if any(_get_bool(sysctl, alias) for alias in aliases):
            info.features.set(feature)


def detect_darwin(info: CPUInfo, sysctl: Sysctl = read_sysctl, is_ios: bool = False) -> bool:
    """Fill info from sysctl values on Apple systems."""
    if not is_ios:
        _fill_from_sysctl(info, sysctl)
    info.features.set_if(not is_ios, *_DARWIN_BASELINE)
    return True


def detect_other(info: CPUInfo) -> bool:
    """Fill core counts on systems without an ARM feature interface."""
    info.physical_cores = _cpu_count()
    info.threads_per_core = 1
    info.logical_cores = info.physical_cores
    return False