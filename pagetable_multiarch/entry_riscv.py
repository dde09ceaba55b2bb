"""RISC-V Sv39 and Sv48 page table entries."""

from __future__ import annotations

import enum

from .entry import GenericPTE, MappingFlags


class RvPTEFlags(enum.IntFlag):
    """RISC-V page table entry flags."""

    V = 1 << 0
    R = 1 << 1
    W = 1 << 2
    X = 1 << 3
    U = 1 << 4
    G = 1 << 5
    A = 1 << 6
    D = 1 << 7


_ALL_FLAG_BITS = 0xFF


def _truncate(bits: int) -> RvPTEFlags:
    return RvPTEFlags(bits & _ALL_FLAG_BITS)


def rv_flags_to_mapping(flags: RvPTEFlags) -> MappingFlags:
    """Convert RISC-V entry flags into generic mapping flags."""
    flags = RvPTEFlags(flags)
    result = MappingFlags(0)
    if RvPTEFlags.V not in flags:
        return result
    pairs = (
        (RvPTEFlags.R, MappingFlags.READ),
        (RvPTEFlags.W, MappingFlags.WRITE),
        (RvPTEFlags.X, MappingFlags.EXECUTE),
        (RvPTEFlags.U, MappingFlags.USER),
    )
    for rv_flag, mapping_flag in pairs:
        if rv_flag in flags:
            result |= mapping_flag
    return result


def mapping_to_rv_flags(flags: MappingFlags) -> RvPTEFlags:
    """Convert generic mapping flags into RISC-V entry flags."""
    flags = MappingFlags(flags)
    if not flags:
        return RvPTEFlags(0)
    result = RvPTEFlags.V
    pairs = (
        (MappingFlags.READ, RvPTEFlags.R),
        (MappingFlags.WRITE, RvPTEFlags.W),
        (MappingFlags.EXECUTE, RvPTEFlags.X),
        (MappingFlags.USER, RvPTEFlags.U),
    )
    for mapping_flag, rv_flag in pairs:
        if mapping_flag in flags:
            result |= rv_flag
    return result


class Rv64PTE(GenericPTE):
    """Sv39 and Sv48 page table entry for RV64 systems.

    The physical page number lives in bits 10..54, so the physical address
    is stored shifted right by two.
    """

    PHYS_ADDR_MASK = (1 << 54) - (1 << 10)
    PADDR_SHIFT = 2

    @staticmethod
    def _leaf_flags(flags: MappingFlags) -> RvPTEFlags:
        rv_flags = mapping_to_rv_flags(flags) | RvPTEFlags.A | RvPTEFlags.D
        assert rv_flags & (RvPTEFlags.R | RvPTEFlags.X), "leaf entry must be readable or executable"
        return rv_flags

    @classmethod
    def new_page(cls, paddr: int, flags: MappingFlags, is_huge: bool) -> Rv64PTE:
        return cls(int(cls._leaf_flags(flags)) | cls._encode_paddr(paddr))

    @classmethod
    def new_table(cls, paddr: int) -> Rv64PTE:
        return cls(int(RvPTEFlags.V) | cls._encode_paddr(paddr))

    @property
    def rv_flags(self) -> RvPTEFlags:
        """The RISC-V flag bits of this entry."""
        return _truncate(self.bits)

    @property
    def flags(self) -> MappingFlags:
        return rv_flags_to_mapping(self.rv_flags)

    def set_flags(self, flags: MappingFlags, is_huge: bool) -> None:
        self.bits = (self.bits & self.PHYS_ADDR_MASK) | int(self._leaf_flags(flags))

    def is_unused(self) -> bool:
        return self.bits == 0

    def is_present(self) -> bool:
        return RvPTEFlags.V in self.rv_flags

    def is_huge(self) -> bool:
        return bool(self.rv_flags & (RvPTEFlags.R | RvPTEFlags.X))

    def clear(self) -> None:
        self.bits = 0