"""CPUID register values and the sources that supply them."""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from typing import Iterable, Mapping, NamedTuple, Sequence

_MASK32 = 0xFFFFFFFF

# Leaves whose absence from a dump is never an error.
_OPTIONAL_LEAVES = frozenset({0x0, 0x80000000, 0x40000000, 0x4000000C})

_ID_PATTERN = re.compile(r"CPUID\s+([0-9A-Fa-f]+)")
_DASHED_VALUES = re.compile(
    r"([0-9A-Fa-f]+)-([0-9A-Fa-f]+)-([0-9A-Fa-f]+)-([0-9A-Fa-f]+)"
)
_SPACED_VALUES = re.compile(
    r"([0-9A-Fa-f]+)\s+([0-9A-Fa-f]+)\s+([0-9A-Fa-f]+)\s+([0-9A-Fa-f]+)"
)


class Registers(NamedTuple):
    """The four registers returned by a CPUID query."""

    eax: int = 0
    ebx: int = 0
    ecx: int = 0
    edx: int = 0


class CpuidSource(ABC):
    """Something that answers CPUID and XGETBV queries."""

    @abstractmethod
    def cpuid(self, leaf: int) -> Registers:
        """Query a CPUID leaf."""

    @abstractmethod
    def cpuidex(self, leaf: int, subleaf: int) -> Registers:
        """Query a CPUID leaf with a sub-leaf in ECX."""

    @abstractmethod
    def xgetbv(self, index: int) -> tuple[int, int]:
        """Read an extended control register as (eax, edx)."""


class NullSource(CpuidSource):
    """A source for machines without CPUID: every query yields zeros."""

    def cpuid(self, leaf: int) -> Registers:
        return Registers()

    def cpuidex(self, leaf: int, subleaf: int) -> Registers:
        return Registers()

    def xgetbv(self, index: int) -> tuple[int, int]:
        return 0, 0


def _parse_values(text: str) -> Registers | None:
    match = _DASHED_VALUES.match(text) or _SPACED_VALUES.match(text)
    if match is None:
        return None
    values = [int(group, 16) for group in match.groups()]
    if any(value > _MASK32 for value in values):
        return None
    return Registers(*values)


def _split_line(line: str) -> list[str] | None:
    items = line.split(":")
    if len(items) >= 2:
        return items[:2]
    if len(line) in (50, 51):
        return [line[0:14], line[15:]]
    items = line.split("\t")
    if len(items) == 2:
        return items
    return None


class DumpSource(CpuidSource):
    """Answers queries from recorded CPUID output of a real machine."""

    def __init__(self, leaves: Mapping[int, Iterable[Sequence[int]]]) -> None:
        self._leaves: dict[int, list[Registers]] = {
            int(leaf): [Registers(*(value & _MASK32 for value in regs)) for regs in entries]
            for leaf, entries in leaves.items()
        }

    @classmethod
    def from_text(cls, text: str) -> "DumpSource":
        """Parse a CPUID dump; only the first processor in the text is read."""
        leaves: dict[int, list[Registers]] = {}
        found_any = False
        for raw in text.split("\n"):
            line = raw.strip("\r\t ")
            if not line.startswith("CPUID"):
                continue
            if line.startswith("CPUID 00000000") and found_any:
                break
            items = _split_line(line)
            if items is None:
                continue
            head, values_text = items[0], items[1].strip("\r\n ")
            id_match = _ID_PATTERN.match(head)
            if id_match is None:
                continue
            leaf = int(id_match.group(1), 16)
            if leaf > _MASK32:
                continue
            registers = _parse_values(values_text)
            if registers is None:
                continue
            leaves.setdefault(leaf, []).append(registers)
            found_any = True
        return cls(leaves)

    @property
    def leaves(self) -> dict[int, list[Registers]]:
        """A copy of the recorded leaves and their sub-leaves."""
        return {leaf: list(entries) for leaf, entries in self._leaves.items()}

    def _max_function(self) -> int:
        return self.cpuid(0).eax

    def _max_extended_function(self) -> int:
        return self.cpuid(0x80000000).eax

    def cpuid(self, leaf: int) -> Registers:
        entries = self._leaves.get(leaf)
        if entries:
            return entries[0]
        if leaf in _OPTIONAL_LEAVES or leaf <= self._max_function():
            return Registers()
        raise LookupError(f"no CPUID data for leaf {leaf:#010x}")

    def cpuidex(self, leaf: int, subleaf: int) -> Registers:
        entries = self._leaves.get(leaf)
        if not entries:
            if leaf == 0x80000000 or leaf <= self._max_extended_function():
                return Registers()
            raise LookupError(f"no CPUID data for leaf {leaf:#010x}, sub-leaf {subleaf}")
        if subleaf >= len(entries):
            return Registers()
        return entries[subleaf]

    def xgetbv(self, index: int) -> tuple[int, int]:
        entries = self._leaves.get(1)
        if not entries or not entries[0].ecx & (1 << 26):
            raise LookupError("XGETBV is not supported by the recorded CPU")
        # The dump holds no XCR0 value; report every state as enabled.
        return _MASK32, _MASK32

    def __str__(self) -> str:
        lines = sorted(
            f"CPUID {leaf:08x}: [{r.eax:08x}, {r.ebx:08x}, {r.ecx:08x}, {r.edx:08x}]"
            for leaf, entries in self._leaves.items()
            for r in entries
        )
        return "\n".join(lines)


def registers_as_string(*values: int) -> str:
    """Decode register values as little-endian text, stopping at the first zero byte."""
    raw = b"".join((value & _MASK32).to_bytes(4, "little") for value in values)
    end = raw.find(b"\x00")
    if end >= 0:
        raw = raw[:end]
    return raw.decode("utf-8", errors="replace")