"""x86 page table entries for 64-bit paging."""

from __future__ import annotations

import enum
import functools
import operator

from .entry import GenericPTE, MappingFlags


class PTF(enum.IntFlag):
    """x86_64 page table entry flags."""

    PRESENT = 1 << 0
    WRITABLE = 1 << 1
    USER_ACCESSIBLE = 1 << 2
    WRITE_THROUGH = 1 << 3
    NO_CACHE = 1 << 4
    ACCESSED = 1 << 5
    DIRTY = 1 << 6
    HUGE_PAGE = 1 << 7
    GLOBAL = 1 << 8
    BIT_9 = 1 << 9
    BIT_10 = 1 << 10
    BIT_11 = 1 << 11
    BIT_52 = 1 << 52
    BIT_53 = 1 << 53
    BIT_54 = 1 << 54
    BIT_55 = 1 << 55
    BIT_56 = 1 << 56
    BIT_57 = 1 << 57
    BIT_58 = 1 << 58
    BIT_59 = 1 << 59
    BIT_60 = 1 << 60
    BIT_61 = 1 << 61
    BIT_62 = 1 << 62
    NO_EXECUTE = 1 << 63


_ALL_FLAG_BITS = functools.reduce(
    operator.or_, (member.value for member in PTF.__members__.values()), 0
)


def _truncate(bits: int) -> PTF:
    return PTF(bits & _ALL_FLAG_BITS)


def ptf_to_mapping(flags: PTF) -> MappingFlags:
    """Convert x86_64 entry flags into generic mapping flags."""
    flags = PTF(flags)
    if PTF.PRESENT not in flags:
        return MappingFlags(0)
    result = MappingFlags.READ
    if PTF.WRITABLE in flags:
        result |= MappingFlags.WRITE
    if PTF.NO_EXECUTE not in flags:
        result |= MappingFlags.EXECUTE
    if PTF.USER_ACCESSIBLE in flags:
        result |= MappingFlags.USER
    if PTF.NO_CACHE in flags:
        result |= MappingFlags.UNCACHED
    return result


def mapping_to_ptf(flags: MappingFlags) -> PTF:
    """Convert generic mapping flags into x86_64 entry flags."""
    flags = MappingFlags(flags)
    if not flags:
        return PTF(0)
    result = PTF.PRESENT
    if MappingFlags.WRITE in flags:
        result |= PTF.WRITABLE
    if MappingFlags.EXECUTE not in flags:
        result |= PTF.NO_EXECUTE
    if MappingFlags.USER in flags:
        result |= PTF.USER_ACCESSIBLE
    if flags & (MappingFlags.DEVICE | MappingFlags.UNCACHED):
        result |= PTF.NO_CACHE | PTF.WRITE_THROUGH
    return result


class X64PTE(GenericPTE):
    """An x86_64 page table entry."""

    PHYS_ADDR_MASK = 0x000F_FFFF_FFFF_F000

    @staticmethod
    def _leaf_flags(flags: MappingFlags, is_huge: bool) -> PTF:
        ptf = mapping_to_ptf(flags)
        if is_huge:
            ptf |= PTF.HUGE_PAGE
        return ptf

    @classmethod
    def new_page(cls, paddr: int, flags: MappingFlags, is_huge: bool) -> X64PTE:
        return cls(int(cls._leaf_flags(flags, is_huge)) | cls._encode_paddr(paddr))

    @classmethod
    def new_table(cls, paddr: int) -> X64PTE:
        ptf = PTF.PRESENT | PTF.WRITABLE | PTF.USER_ACCESSIBLE
        return cls(int(ptf) | cls._encode_paddr(paddr))

    @property
    def ptf(self) -> PTF:
        """The x86_64 flag bits of this entry."""
        return _truncate(self.bits)

    @property
    def flags(self) -> MappingFlags:
        return ptf_to_mapping(self.ptf)

    def set_flags(self, flags: MappingFlags, is_huge: bool) -> None:
        self.bits = (self.bits & self.PHYS_ADDR_MASK) | int(self._leaf_flags(flags, is_huge))

    def is_unused(self) -> bool:
        return self.bits == 0

    def is_present(self) -> bool:
        return PTF.PRESENT in self.ptf

    def is_huge(self) -> bool:
        return PTF.HUGE_PAGE in self.ptf

    def clear(self) -> None:
        self.bits = 0