"""LoongArch64 multi-level page table entries."""

from __future__ import annotations

import enum
import functools
import operator

from .entry import GenericPTE, MappingFlags


class LAPTEFlags(enum.IntFlag):
    """LoongArch64 page table entry flags."""

    V = 1 << 0
    D = 1 << 1
    PLVL = 1 << 2
    PLVH = 1 << 3
    # Memory access type: 0 strongly-ordered uncached, 1 coherent cached,
    # 2 weakly-ordered uncached.
    MATL = 1 << 4
    MATH = 1 << 5
    GH = 1 << 6
    P = 1 << 7
    W = 1 << 8
    G = 1 << 12
    NR = 1 << 61
    NX = 1 << 62
    RPLV = 1 << 63


_ALL_FLAG_BITS = functools.reduce(
    operator.or_, (member.value for member in LAPTEFlags.__members__.values()), 0
)


def _truncate(bits: int) -> LAPTEFlags:
    return LAPTEFlags(bits & _ALL_FLAG_BITS)


def la_flags_to_mapping(flags: LAPTEFlags) -> MappingFlags:
    """Convert LoongArch64 entry flags into generic mapping flags."""
    flags = LAPTEFlags(flags)
    result = MappingFlags(0)
    if LAPTEFlags.V not in flags:
        return result
    if LAPTEFlags.NR not in flags:
        result |= MappingFlags.READ
    if LAPTEFlags.W in flags:
        result |= MappingFlags.WRITE
    if LAPTEFlags.NX not in flags:
        result |= MappingFlags.EXECUTE
    if (LAPTEFlags.PLVL | LAPTEFlags.PLVH) in flags:
        result |= MappingFlags.USER
    if LAPTEFlags.MATL not in flags:
        if LAPTEFlags.MATH in flags:
            result |= MappingFlags.UNCACHED
        else:
            result |= MappingFlags.DEVICE
    return result


def mapping_to_la_flags(flags: MappingFlags) -> LAPTEFlags:
    """Convert generic mapping flags into LoongArch64 entry flags."""
    flags = MappingFlags(flags)
    if not flags:
        return LAPTEFlags(0)
    result = LAPTEFlags.V | LAPTEFlags.P
    if MappingFlags.READ not in flags:
        result |= LAPTEFlags.NR
    if MappingFlags.WRITE in flags:
        result |= LAPTEFlags.W
    if MappingFlags.EXECUTE not in flags:
        result |= LAPTEFlags.NX
    if MappingFlags.USER in flags:
        result |= LAPTEFlags.PLVH | LAPTEFlags.PLVL
    if MappingFlags.DEVICE not in flags:
        if MappingFlags.UNCACHED in flags:
            result |= LAPTEFlags.MATH
        else:
            result |= LAPTEFlags.MATL
    return result


class LA64PTE(GenericPTE):
    """Page table entry for LoongArch64 systems."""

    PHYS_ADDR_MASK = 0x0000_FFFF_FFFF_F000

    @staticmethod
    def _leaf_flags(flags: MappingFlags, is_huge: bool) -> LAPTEFlags:
        la_flags = mapping_to_la_flags(flags) | LAPTEFlags.D
        if is_huge:
            la_flags |= LAPTEFlags.GH
        return la_flags

    @classmethod
    def new_page(cls, paddr: int, flags: MappingFlags, is_huge: bool) -> LA64PTE:
        return cls(int(cls._leaf_flags(flags, is_huge)) | cls._encode_paddr(paddr))

    @classmethod
    def new_table(cls, paddr: int) -> LA64PTE:
        return cls(cls._encode_paddr(paddr))

    @property
    def la_flags(self) -> LAPTEFlags:
        """The LoongArch64 flag bits of this entry."""
        return _truncate(self.bits)

    @property
    def flags(self) -> MappingFlags:
        return la_flags_to_mapping(self.la_flags)

    def set_flags(self, flags: MappingFlags, is_huge: bool) -> None:
        self.bits = (self.bits & self.PHYS_ADDR_MASK) | int(self._leaf_flags(flags, is_huge))

    def is_unused(self) -> bool:
        return self.bits == 0

    def is_present(self) -> bool:
        return LAPTEFlags.P in self.la_flags

    def is_huge(self) -> bool:
        return LAPTEFlags.GH in self.la_flags

    def clear(self) -> None:
        self.bits = 0