"""Architecture-independent page table entry definitions."""

from __future__ import annotations

import enum
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import ClassVar

_U64_MASK = (1 << 64) - 1


class MappingFlags(enum.IntFlag):
    """Permissions and attributes of a mapped memory region."""

    READ = 1 << 0
    WRITE = 1 << 1
    EXECUTE = 1 << 2
    USER = 1 << 3
    DEVICE = 1 << 4
    UNCACHED = 1 << 5


@dataclass(repr=False)
class GenericPTE(ABC):
    """A raw 64-bit page table entry.

    Subclasses describe one architecture's layout by setting
    ``PHYS_ADDR_MASK`` (the bits of the entry holding the address) and
    ``PADDR_SHIFT`` (how far the physical address is shifted right before
    it is stored), and by implementing the flag conversions.
    """

    bits: int = 0

    PHYS_ADDR_MASK: ClassVar[int] = 0
    PADDR_SHIFT: ClassVar[int] = 0

    def __post_init__(self) -> None:
        self.bits &= _U64_MASK

    @classmethod
    def _encode_paddr(cls, paddr: int) -> int:
        return (paddr >> cls.PADDR_SHIFT) & cls.PHYS_ADDR_MASK

    @classmethod
    @abstractmethod
    def new_page(cls, paddr: int, flags: MappingFlags, is_huge: bool) -> GenericPTE:
        """Create an entry pointing to a terminal page or block."""

    @classmethod
    @abstractmethod
    def new_table(cls, paddr: int) -> GenericPTE:
        """Create an entry pointing to a next-level page table."""

    @property
    def paddr(self) -> int:
        """The physical address mapped by this entry."""
        return (self.bits & self.PHYS_ADDR_MASK) << self.PADDR_SHIFT

    @paddr.setter
    def paddr(self, value: int) -> None:
        keep = self.bits & ~self.PHYS_ADDR_MASK & _U64_MASK
        self.bits = keep | self._encode_paddr(value)

    @property
    @abstractmethod
    def flags(self) -> MappingFlags:
        """The generic mapping flags of this entry."""

    @abstractmethod
    def set_flags(self, flags: MappingFlags, is_huge: bool) -> None:
        """Replace the flags of this entry, keeping its physical address."""

    def is_unused(self) -> bool:
        """Whether every bit of the entry is zero."""
        return self.bits == 0

    @abstractmethod
    def is_present(self) -> bool:
        """Whether the entry's flags mark it present."""

    @abstractmethod
    def is_huge(self) -> bool:
        """For a non-last level, whether the entry maps a huge frame."""

    def clear(self) -> None:
        """Set the entry to zero."""
        self.bits = 0

    def _extra_repr(self) -> dict[str, object]:
        return {}

    def __repr__(self) -> str:
        fields = {"raw": f"{self.bits:#x}", "paddr": f"{self.paddr:#x}"}
        fields.update({name: repr(value) for name, value in self._extra_repr().items()})
        fields["flags"] = repr(self.flags)
        body = ", ".join(f"{name}={value}" for name, value in fields.items())
        return f"{type(self).__name__}({body})"