import pytest

from cpuinfo.arm64 import decode_arm_registers, vendor_from_midr
from cpuinfo.features import FeatureID, Vendor
from cpuinfo.model import CPUInfo


@pytest.mark.parametrize(
    "implementer, vendor, name",
    [
        (0x41, Vendor.ARM, "Arm Limited"),
        (0xC0, Vendor.AMPERE, "Ampere Computing"),
        (0x51, Vendor.QUALCOMM, "Qualcomm Inc"),
        (0x69, Vendor.INTEL, "Intel Corporation"),
        (0x4E, Vendor.NVIDIA, "NVIDIA Corporation"),
    ],
)
def test_vendor_from_midr(implementer, vendor, name):
    assert vendor_from_midr(implementer << 24) == (vendor, name)


def test_vendor_from_midr_unknown():
    assert vendor_from_midr(0x12 << 24) is None


def test_decode_sets_vendor_family_model():
    info = CPUInfo()
    decode_arm_registers(info, 0x410FD0C1, 0, 0, 0)
    assert info.vendor_id == Vendor.ARM
    assert info.vendor_string == "Arm Limited"
    assert info.family == 0x0F
    assert info.model == 0xD0C1


def test_decode_unknown_vendor_keeps_previous():
    info = CPUInfo(vendor_id=Vendor.APPLE, vendor_string="Apple")
    decode_arm_registers(info, 0x12000000, 0, 0, 0)
    assert info.vendor_id == Vendor.APPLE
    assert info.vendor_string == "Apple"


def test_zero_registers_report_asimd_and_gpa_only():
    info = CPUInfo()
    decode_arm_registers(info, 0, 0, 0, 0)
    assert set(info.features) == {FeatureID.ASIMD, FeatureID.GPA}


def test_simd_not_implemented():
    info = CPUInfo()
    decode_arm_registers(info, 0, 0xF << 20, 0, 0)
    assert not info.has(FeatureID.ASIMD)
    assert not info.has(FeatureID.ASIMDHP)


def test_half_precision_and_fp_and_sve():
    info = CPUInfo()
    decode_arm_registers(info, 0, (1 << 20) | (1 << 16) | (1 << 32), 0, 0)
    assert info.supports(
        FeatureID.ASIMD, FeatureID.FPHP, FeatureID.ASIMDHP, FeatureID.FP, FeatureID.SVE
    )


def test_sha512_needs_field_value_two():
    one = CPUInfo()
    decode_arm_registers(one, 0, 0, 1 << 12, 0)
    assert one.has(FeatureID.SHA2)
    assert not one.has(FeatureID.SHA512)

    two = CPUInfo()
    decode_arm_registers(two, 0, 0, 2 << 12, 0)
    assert two.supports(FeatureID.SHA2, FeatureID.SHA512)


def test_pmull_needs_field_value_two():
    one = CPUInfo()
    decode_arm_registers(one, 0, 0, 1 << 4, 0)
    assert one.has(FeatureID.AESARM)
    assert not one.has(FeatureID.PMULL)

    two = CPUInfo()
    decode_arm_registers(two, 0, 0, 2 << 4, 0)
    assert two.supports(FeatureID.AESARM, FeatureID.PMULL)


@pytest.mark.parametrize(
    "shift, feature",
    [
        (60, FeatureID.RNDR),
        (56, FeatureID.TLB),
        (52, FeatureID.TS),
        (48, FeatureID.FHM),
        (44, FeatureID.ASIMDDP),
        (40, FeatureID.SM4),
        (36, FeatureID.SM3),
        (32, FeatureID.SHA3),
        (28, FeatureID.ASIMDRDM),
        (20, FeatureID.ATOMICS),
        (16, FeatureID.CRC32),
        (8, FeatureID.SHA1),
    ],
)
def test_isar0_fields(shift, feature):
    info = CPUInfo()
    decode_arm_registers(info, 0, 0, 1 << shift, 0)
    assert info.has(feature)


@pytest.mark.parametrize(
    "shift, feature",
    [
        (20, FeatureID.LRCPC),
        (16, FeatureID.FCMA),
        (12, FeatureID.JSCVT),
        (0, FeatureID.DCPOP),
    ],
)
def test_isar1_fields(shift, feature):
    info = CPUInfo()
    decode_arm_registers(info, 0, 0, 0, 1 << shift)
    assert info.has(feature)


def test_decode_adds_to_existing_features():
    info = CPUInfo()
    info.enable(FeatureID.EVTSTRM)
    decode_arm_registers(info, 0, 0, 1 << 16, 0)
    assert info.supports(FeatureID.EVTSTRM, FeatureID.CRC32)