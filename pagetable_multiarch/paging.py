"""Paging errors, page sizes, and the metadata and handler interfaces."""

from __future__ import annotations

import enum
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Callable, ClassVar, Optional

PAGE_SIZE_4K = 0x1000

_U64_MASK = (1 << 64) - 1

FlushHook = Callable[[Optional[int]], None]


class PagingError(Exception):
    """A page table operation failed."""


class NoMemoryError(PagingError):
    """A frame for a page table could not be allocated."""


class NotAlignedError(PagingError):
    """The address is not aligned to the page size."""


class NotMappedError(PagingError):
    """The mapping is not present."""


class AlreadyMappedError(PagingError):
    """The mapping is already present."""


class MappedToHugePageError(PagingError):
    """The entry maps a huge page where a next-level table was expected."""


class PageSize(enum.IntEnum):
    """Page sizes supported by the hardware page table."""

    SIZE_4K = 0x1000
    SIZE_2M = 0x20_0000
    SIZE_1G = 0x4000_0000

    def is_huge(self) -> bool:
        """Whether this page size is larger than 4K."""
        return self is not PageSize.SIZE_4K

    def is_aligned(self, addr_or_size: int) -> bool:
        """Whether an address or size is aligned to this page size."""
        return addr_or_size & (self.value - 1) == 0

    def align_offset(self, addr: int) -> int:
        """The offset of an address within a page of this size."""
        return addr & (self.value - 1)


class PagingMetaData:
    """Architecture-dependent description of a hardware page table.

    Subclasses set ``LEVELS``, ``PA_MAX_BITS`` and ``VA_MAX_BITS``. TLB
    flushes are handed to ``on_flush`` with the virtual address, or None
    for a full flush.
    """

    LEVELS: ClassVar[int]
    PA_MAX_BITS: ClassVar[int]
    VA_MAX_BITS: ClassVar[int]

    def __init__(self, on_flush: FlushHook | None = None) -> None:
        self.on_flush = on_flush

    @property
    def pa_max_addr(self) -> int:
        """The largest valid physical address."""
        return (1 << self.PA_MAX_BITS) - 1

    def paddr_is_valid(self, paddr: int) -> bool:
        """Whether a physical address is within range."""
        return paddr <= self.pa_max_addr

    def vaddr_is_valid(self, vaddr: int) -> bool:
        """Whether a virtual address has its top bits sign-extended."""
        top_mask = (_U64_MASK << (self.VA_MAX_BITS - 1)) & _U64_MASK
        top = vaddr & top_mask
        return top == 0 or top == top_mask

    def flush_tlb(self, vaddr: int | None) -> None:
        """Flush the TLB entry for ``vaddr``, or the whole TLB when None."""
        if self.on_flush is not None:
            self.on_flush(vaddr)


class PagingHandler(ABC):
    """Operating-system services a page table needs."""

    @abstractmethod
    def alloc_frame(self) -> int | None:
        """Allocate a 4K physical frame and return its address, or None."""

    @abstractmethod
    def dealloc_frame(self, paddr: int) -> None:
        """Free a previously allocated frame."""

    @abstractmethod
    def frame(self, paddr: int) -> bytearray:
        """Return the writable memory of the frame holding ``paddr``."""


class MemoryPagingHandler(PagingHandler):
    """Frames kept in process memory, handed out from ``base`` upwards."""

    def __init__(self, base: int = 0x8000_0000, max_frames: int | None = None) -> None:
        if base == 0 or base % PAGE_SIZE_4K:
            raise ValueError("base must be a non-zero 4K-aligned address")
        self._base = base
        self._max_frames = max_frames
        self._next = base
        self._free: list[int] = []
        self._frames: dict[int, bytearray] = {}

    @property
    def allocated_frames(self) -> frozenset[int]:
        """Addresses of the frames currently allocated."""
        return frozenset(self._frames)

    def alloc_frame(self) -> int | None:
        if self._max_frames is not None and len(self._frames) >= self._max_frames:
            return None
        if self._free:
            paddr = self._free.pop()
        else:
            paddr = self._next
            self._next += PAGE_SIZE_4K
        self._frames[paddr] = bytearray(PAGE_SIZE_4K)
        return paddr

    def dealloc_frame(self, paddr: int) -> None:
        try:
            del self._frames[paddr]
        except KeyError:
            raise ValueError(f"frame {paddr:#x} is not allocated") from None
        self._free.append(paddr)

    def frame(self, paddr: int) -> bytearray:
        start = paddr & ~(PAGE_SIZE_4K - 1)
        try:
            return self._frames[start]
        except KeyError:
            raise ValueError(f"frame {start:#x} is not allocated") from None


@dataclass
class TlbFlush:
    """The mapping of one virtual address has changed.

    ``handled`` becomes true once the change is flushed or ignored.
    """

    metadata: PagingMetaData
    vaddr: int
    handled: bool = field(default=False, init=False, compare=False)

    def flush(self) -> None:
        """Flush the TLB entry for the changed address."""
        self.metadata.flush_tlb(self.vaddr)
        self.handled = True

    def ignore(self) -> None:
        """Leave the TLB alone; the caller flushes it later."""
        self.handled = True


@dataclass
class TlbFlushAll:
    """Page table mappings have changed.

    ``handled`` becomes true once the change is flushed or ignored.
    """

    metadata: PagingMetaData
    handled: bool = field(default=False, init=False, compare=False)

    def flush_all(self) -> None:
        """Flush the entire TLB."""
        self.metadata.flush_tlb(None)
        self.handled = True

    def ignore(self) -> None:
        """Leave the TLB alone; the caller flushes it later."""
        self.handled = True