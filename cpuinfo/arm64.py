"""Decoding of ARM64 identification and feature registers."""

from __future__ import annotations

from typing import Optional, Tuple

from .features import FeatureID, FeatureSet, Vendor
from .model import CPUInfo

# The cache line size assumed on every ARM64 system.
ARM64_CACHE_LINE = 64

_IMPLEMENTERS: dict[int, Tuple[Vendor, str]] = {
    0xC0: (Vendor.AMPERE, "Ampere Computing"),
    0x41: (Vendor.ARM, "Arm Limited"),
    0x42: (Vendor.BROADCOM, "Broadcom Corporation"),
    0x43: (Vendor.CAVIUM, "Cavium Inc"),
    0x44: (Vendor.DEC, "Digital Equipment Corporation"),
    0x46: (Vendor.FUJITSU, "Fujitsu Ltd"),
    0x49: (Vendor.INFINEON, "Infineon Technologies AG"),
    0x4D: (Vendor.MOTOROLA, "Motorola or Freescale Semiconductor Inc"),
    0x4E: (Vendor.NVIDIA, "NVIDIA Corporation"),
    0x50: (Vendor.AMCC, "Applied Micro Circuits Corporation"),
    0x51: (Vendor.QUALCOMM, "Qualcomm Inc"),
    0x56: (Vendor.MARVELL, "Marvell International Ltd"),
    0x69: (Vendor.INTEL, "Intel Corporation"),
}

# ID_AA64ISAR0_EL1 fields: any non-zero value means the feature is present.
_ISAR0_FIELDS = (
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
    (12, FeatureID.SHA2),
    (8, FeatureID.SHA1),
    (4, FeatureID.AESARM),
)

# ID_AA64ISAR1_EL1 fields.
_ISAR1_FIELDS = (
    (20, FeatureID.LRCPC),
    (16, FeatureID.FCMA),
    (12, FeatureID.JSCVT),
    (0, FeatureID.DCPOP),
)


def _field(register: int, shift: int) -> int:
    return (register >> shift) & 0xF


def vendor_from_midr(midr: int) -> Optional[Tuple[Vendor, str]]:
    """The vendor and its name from the MIDR_EL1 implementer, or None if unknown."""
    return _IMPLEMENTERS.get((midr >> 24) & 0xFF)


def decode_arm_registers(
    info: CPUInfo,
    midr: int,
    proc_features: int,
    inst_attr0: int,
    inst_attr1: int,
) -> None:
    """Fill info from MIDR_EL1, ID_AA64PFR0_EL1 and ID_AA64ISAR0/1_EL1 values."""
    vendor = vendor_from_midr(midr)
    if vendor is not None:
        info.vendor_id, info.vendor_string = vendor

    # Variant and architecture, then part number and revision.
    info.family = (midr >> 16) & 0xFF
    info.model = midr & 0xFFFF

    found = FeatureSet()
    found.set_if(_field(proc_features, 32) != 0, FeatureID.SVE)
    simd = _field(proc_features, 20)
    if simd != 0xF:
        found.set(FeatureID.ASIMD)
        # 0b0001 adds half-precision floating-point arithmetic.
        found.set_if(simd == 1, FeatureID.FPHP, FeatureID.ASIMDHP)
    found.set_if(_field(proc_features, 16) != 0, FeatureID.FP)

    for shift, feature in _ISAR0_FIELDS:
        found.set_if(_field(inst_attr0, shift) != 0, feature)
    # 0b0010 in the SHA2 field adds the SHA512 instructions.
    found.set_if(_field(inst_attr0, 12) == 2, FeatureID.SHA512)
    # 0b0010 in the AES field adds PMULL on 64-bit data.
    found.set_if(_field(inst_attr0, 4) == 2, FeatureID.PMULL)

    # The GPA field is never consulted: generic pointer authentication is
    # always reported once the registers are readable.
    found.set(FeatureID.GPA)
    for shift, feature in _ISAR1_FIELDS:
        found.set_if(_field(inst_attr1, shift) != 0, feature)

    info.features.update(found)