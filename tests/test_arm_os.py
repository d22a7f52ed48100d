import os
import struct
import subprocess
from unittest import mock

import pytest

from cpuinfo.arm_os import (
    AT_HWCAP,
    AT_HWCAP2,
    HWCAP_ASIMD,
    HWCAP_ATOMICS,
    HWCAP_CPUID,
    HWCAP_DCPOP,
    HWCAP_FP,
    HWCAP_SVE,
    detect_darwin,
    detect_linux,
    detect_other,
    hwcap_features,
    parse_auxv,
    read_sysctl,
)
from cpuinfo.features import FeatureID
from cpuinfo.model import CPUInfo


def _auxv64(*pairs):
    return b"".join(struct.pack("<QQ", tag, value) for tag, value in pairs)


def test_parse_auxv_64bit():
    data = _auxv64((AT_HWCAP, HWCAP_FP), (AT_HWCAP2, 5), (0, 0))
    result = parse_auxv(data, 8)
    assert result[AT_HWCAP] == HWCAP_FP
    assert result[AT_HWCAP2] == 5


def test_parse_auxv_32bit_ignores_trailing_bytes():
    data = struct.pack("<II", AT_HWCAP, HWCAP_ASIMD) + b"\x01\x02\x03"
    assert parse_auxv(data, 4) == {AT_HWCAP: HWCAP_ASIMD}


def test_parse_auxv_rejects_word_size():
    with pytest.raises(ValueError):
        parse_auxv(b"", 2)


def test_hwcap_features_basic():
    found = hwcap_features(HWCAP_FP | HWCAP_ASIMD | HWCAP_SVE)
    assert set(found) == {FeatureID.FP, FeatureID.ASIMD, FeatureID.SVE}


def test_hwcap_cpuid_bit():
    assert FeatureID.ARMCPUID in hwcap_features(HWCAP_CPUID)


def test_hwcap_dcpop_bit_also_reports_rndr():
    found = hwcap_features(HWCAP_DCPOP)
    assert set(found) == {FeatureID.DCPOP, FeatureID.RNDR}


def test_atomics_suppressed_on_android():
    assert FeatureID.ATOMICS in hwcap_features(HWCAP_ATOMICS)
    assert FeatureID.ATOMICS not in hwcap_features(HWCAP_ATOMICS, is_android=True)


def test_detect_linux_reads_auxv(tmp_path):
    path = tmp_path / "auxv"
    path.write_bytes(struct.pack("<QQ", AT_HWCAP, HWCAP_FP | HWCAP_CPUID))
    info = CPUInfo()
    with mock.patch("cpuinfo.arm_os.struct.calcsize", return_value=8):
        pass
    # parse with native word size only works where it is 8; build accordingly
    if struct.calcsize("P") == 4:
        path.write_bytes(struct.pack("<II", AT_HWCAP, HWCAP_FP | HWCAP_CPUID))
    assert detect_linux(info, str(path)) is True
    assert info.supports(FeatureID.FP, FeatureID.ARMCPUID)
    assert info.threads_per_core == 1
    assert info.logical_cores == info.physical_cores == (os.cpu_count() or 1)


def test_detect_linux_missing_file(tmp_path):
    info = CPUInfo()
    assert detect_linux(info, str(tmp_path / "missing")) is False
    assert info.logical_cores == info.physical_cores == (os.cpu_count() or 1)
    assert len(info.features) == 0


def test_detect_linux_without_hwcap(tmp_path):
    path = tmp_path / "auxv"
    path.write_bytes(b"")
    info = CPUInfo()
    assert detect_linux(info, str(path)) is False
    assert len(info.features) == 0


def _fake_sysctl(values):
    return values.get


def test_detect_darwin_fills_info():
    values = {
        "machdep.cpu.brand_string": "Apple M1",
        "hw.physicalcpu": "8",
        "machdep.cpu.thread_count": "8",
        "machdep.cpu.core_count": "8",
        "hw.cpufamily": "458787763",
        "hw.cachelinesize": "128",
        "hw.l1icachesize": "131072",
        "hw.l1dcachesize": "65536",
        "hw.l2cachesize": "4194304",
        "hw.optional.arm.AdvSIMD": "0",
        "hw.optional.neon": "1",
        "hw.optional.floatingpoint": "1",
        "hw.optional.arm.FEAT_LSE": "1",
        "hw.optional.arm.FEAT_SVE": "0",
    }
    info = CPUInfo()
    assert detect_darwin(info, _fake_sysctl(values), is_ios=False) is True
    assert info.brand_name == "Apple M1"
    assert info.vendor_string == "Apple"
    assert info.physical_cores == 8
    assert info.logical_cores == 8
    assert info.threads_per_core == 1
    assert info.family == 458787763
    assert info.cache_line == 128
    assert info.cache.l1i == 131072
    assert info.cache.l1d == 65536
    assert info.cache.l2 == 4194304
    assert info.cache.l3 == -1
    assert info.supports(
        FeatureID.ASIMD,
        FeatureID.FP,
        FeatureID.ATOMICS,
        FeatureID.AESARM,
        FeatureID.PMULL,
        FeatureID.SHA1,
        FeatureID.SHA2,
    )
    assert not info.has(FeatureID.SVE)


def test_detect_darwin_defaults_when_sysctl_fails():
    info = CPUInfo()
    detect_darwin(info, lambda name: None, is_ios=False)
    assert info.brand_name == ""
    assert info.vendor_string == ""
    assert info.physical_cores == (os.cpu_count() or 1)
    assert info.logical_cores == (os.cpu_count() or 1)
    assert info.family == 0
    assert info.cache_line == 0
    assert info.cache.l1d == -1


def test_detect_darwin_ios_does_not_query():
    calls = []

    def sysctl(name):
        calls.append(name)
        return "1"

    info = CPUInfo()
    assert detect_darwin(info, sysctl, is_ios=True) is True
    assert calls == []
    assert len(info.features) == 0


def test_read_sysctl_success():
    completed = subprocess.CompletedProcess(["sysctl"], 0, stdout="42\n", stderr="")
    with mock.patch("cpuinfo.arm_os.subprocess.run", return_value=completed) as run:
        assert read_sysctl("hw.ncpu") == "42"
    assert run.call_args[0][0][-1] == "hw.ncpu"


def test_read_sysctl_missing_program():
    with mock.patch("cpuinfo.arm_os.subprocess.run", side_effect=FileNotFoundError):
        assert read_sysctl("hw.ncpu") is None


def test_read_sysctl_failure_status():
    completed = subprocess.CompletedProcess(["sysctl"], 1, stdout="", stderr="unknown oid")
    with mock.patch("cpuinfo.arm_os.subprocess.run", return_value=completed):
        assert read_sysctl("hw.bogus") is None


def test_detect_other():
    info = CPUInfo(threads_per_core=4)
    assert detect_other(info) is False
    assert info.threads_per_core == 1
    assert info.physical_cores == info.logical_cores == (os.cpu_count() or 1)