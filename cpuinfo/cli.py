"""Command line report of the detected CPU."""

from __future__ import annotations

import argparse
import dataclasses
import json
import sys
from typing import Any, Optional, Sequence

from .detect import detect, get_cpu
from .model import CPUInfo


def _describe(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        parts = (
            f"{f.name}:{_describe(getattr(value, f.name))}" for f in dataclasses.fields(value)
        )
        return "{" + " ".join(parts) + "}"
    if isinstance(value, list):
        return "[" + " ".join(_describe(item) for item in value) + "]"
    return str(value)


def format_report(info: CPUInfo) -> str:
    """A human readable description of info."""
    lines = [
        f"Name: {info.brand_name}",
        f"Vendor String: {info.vendor_string}",
        f"Vendor ID: {str(info.vendor_id)}",
        f"PhysicalCores: {info.physical_cores}",
        f"Threads Per Core: {info.threads_per_core}",
        f"Logical Cores: {info.logical_cores}",
        f"CPU Family {info.family} Model: {info.model} Stepping: {info.stepping}",
        f"Features: {','.join(info.feature_names())}",
        f"Microarchitecture level: {info.x64_level()}",
    ]
    if info.avx10_level > 0:
        lines.append(f"AVX10 level: {info.avx10_level}")
    lines += [
        f"Cacheline bytes: {info.cache_line}",
        f"L1 Instruction Cache: {info.cache.l1i} bytes",
        f"L1 Data Cache: {info.cache.l1d} bytes",
        f"L2 Cache: {info.cache.l2} bytes",
        f"L3 Cache: {info.cache.l3} bytes",
    ]
    if info.hz > 0:
        lines.append(f"Frequency: {info.hz} Hz")
    if info.boost_freq > 0:
        lines.append(f"Boost Frequency: {info.boost_freq} Hz")
    if info.sgx.available:
        lines.append(f"SGX: {_describe(info.sgx)}")
    if info.amd_mem_encryption.available:
        lines.append(f"AMD Memory Encryption: {_describe(info.amd_mem_encryption)}")
    if info.pmu.version_id != 0:
        lines.append(
            f"PMU version: {info.pmu.version_id} "
            f"Fixed Counters: {info.pmu.num_fixed_pmc} "
            f"General Purpose Counters: {info.pmu.num_gp_counters}"
        )
    return "\n".join(lines)


def _json_document(info: CPUInfo) -> dict[str, Any]:
    document = info.to_dict()
    document["Features"] = info.feature_names()
    document["X64Level"] = info.x64_level()
    return document


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cpuinfo", description="Show information about the CPU."
    )
    parser.add_argument("-json", "--json", dest="json", action="store_true", help="Output as JSON")
    parser.add_argument(
        "-check-level",
        "--check-level",
        dest="check_level",
        type=int,
        default=0,
        help="Check microarchitecture level. Exit code will be 0 if supported",
    )
    parser.add_argument(
        "--cpu.disable",
        dest="cpu_disable",
        default="",
        help="disable cpu features; comma separated list",
    )
    parser.add_argument(
        "--cpu.features",
        dest="cpu_features",
        action="store_true",
        help="lists cpu features and exits",
    )
    parser.add_argument(
        "--cpu.arm",
        dest="cpu_arm",
        action="store_true",
        help="allow ARM features to be detected",
    )
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Run the command; returns the process exit code."""
    args = _build_parser().parse_args(argv)
    if args.cpu_disable or args.cpu_arm:
        info = detect(disable=args.cpu_disable, safe=not args.cpu_arm)
    else:
        info = get_cpu()

    if args.cpu_features:
        print("cpu features:", ",".join(info.feature_names()))
        return 1

    level = args.check_level
    if level > 0:
        if level > 4:
            print("Supply CPU level 1-4 to test as argument", file=sys.stderr)
            return 1
        print(info.brand_name, file=sys.stderr)
        max_level = info.x64_level()
        if max_level < level:
            print(
                f"Microarchitecture level {level} not supported. Max level is {max_level}.",
                file=sys.stderr,
            )
            return 1
        print(
            f"Microarchitecture level {level} is supported. Max level is {max_level}.",
            file=sys.stderr,
        )
        return 0

    if args.json:
        print(json.dumps(_json_document(info), indent=2))
        return 0

    print(format_report(info))
    return 0


if __name__ == "__main__":
    sys.exit(main())