"""A generic multi-level page table for 64-bit platforms."""

from __future__ import annotations

import logging
import struct
from typing import Callable, Optional

from .entry import GenericPTE, MappingFlags
from .entry_aarch64 import A64PTE
from .entry_loongarch64 import LA64PTE
from .entry_riscv import Rv64PTE
from .entry_x86_64 import X64PTE
from .metadata import (
    A64PagingMetaData,
    LA64MetaData,
    Sv39MetaData,
    Sv48MetaData,
    X64PagingMetaData,
)
from .paging import (
    PAGE_SIZE_4K,
    AlreadyMappedError,
    MappedToHugePageError,
    NoMemoryError,
    NotAlignedError,
    NotMappedError,
    PageSize,
    PagingError,
    PagingHandler,
    PagingMetaData,
    TlbFlush,
    TlbFlushAll,
)

logger = logging.getLogger(__name__)

ENTRY_COUNT = 512
_ENTRY = struct.Struct("<Q")

WalkFunc = Callable[[int, int, int, GenericPTE], None]


def _p4_index(vaddr: int) -> int:
    return (vaddr >> (12 + 27)) & (ENTRY_COUNT - 1)


def _p3_index(vaddr: int) -> int:
    return (vaddr >> (12 + 18)) & (ENTRY_COUNT - 1)


def _p2_index(vaddr: int) -> int:
    return (vaddr >> (12 + 9)) & (ENTRY_COUNT - 1)


def _p1_index(vaddr: int) -> int:
    return (vaddr >> 12) & (ENTRY_COUNT - 1)


class PageTable64:
    """A page table with 3 or 4 levels of 512 64-bit entries each.

    Tables live in frames obtained from ``handler``. All intermediate
    tables are tracked through the entries and freed by :meth:`close`.
    """

    def __init__(
        self,
        metadata: PagingMetaData,
        pte_type: type[GenericPTE],
        handler: PagingHandler,
    ) -> None:
        if metadata.LEVELS not in (3, 4):
            raise ValueError(f"unsupported number of levels: {metadata.LEVELS}")
        self._metadata = metadata
        self._pte_type = pte_type
        self._handler = handler
        self._root = self._alloc_table()
        self._closed = False

    @property
    def root_paddr(self) -> int:
        """Physical address of the root table."""
        return self._root

    @property
    def metadata(self) -> PagingMetaData:
        """The architecture metadata of this table."""
        return self._metadata

    # Public operations

    def map(
        self, vaddr: int, target: int, page_size: PageSize, flags: MappingFlags
    ) -> TlbFlush:
        """Map the page at ``vaddr`` to the frame at ``target``.

        Both addresses are aligned down to ``page_size``.
        """
        page_size = PageSize(page_size)
        table, idx, pte = self._lookup_or_create(vaddr, page_size)
        if not pte.is_unused():
            raise AlreadyMappedError(f"{vaddr:#x} is already mapped")
        aligned = target & ~(page_size.value - 1)
        self._write(table, idx, self._pte_type.new_page(aligned, flags, page_size.is_huge()))
        return TlbFlush(self._metadata, vaddr)

    def remap(
        self, vaddr: int, paddr: int, flags: MappingFlags
    ) -> tuple[PageSize, TlbFlush]:
        """Replace the target frame and flags of the mapping at ``vaddr``."""
        table, idx, pte, size = self._lookup(vaddr)
        pte.paddr = paddr
        pte.set_flags(flags, size.is_huge())
        self._write(table, idx, pte)
        return size, TlbFlush(self._metadata, vaddr)

    def protect(self, vaddr: int, flags: MappingFlags) -> tuple[PageSize, TlbFlush]:
        """Replace the flags of the mapping at ``vaddr``."""
        table, idx, pte, size = self._lookup(vaddr)
        if not pte.is_present():
            raise NotMappedError(f"{vaddr:#x} is not mapped")
        pte.set_flags(flags, size.is_huge())
        self._write(table, idx, pte)
        return size, TlbFlush(self._metadata, vaddr)

    def unmap(self, vaddr: int) -> tuple[int, PageSize, TlbFlush]:
        """Remove the mapping at ``vaddr``; return its frame and page size."""
        table, idx, pte, size = self._lookup(vaddr)
        if not pte.is_present():
            self._write(table, idx, self._pte_type(0))
            raise NotMappedError(f"{vaddr:#x} is not mapped")
        paddr = pte.paddr
        self._write(table, idx, self._pte_type(0))
        return paddr, size, TlbFlush(self._metadata, vaddr)

    def query(self, vaddr: int) -> tuple[int, MappingFlags, PageSize]:
        """Translate ``vaddr``; return physical address, flags and page size."""
        _, _, pte, size = self._lookup(vaddr)
        if not pte.is_present():
            raise NotMappedError(f"{vaddr:#x} is not mapped")
        return pte.paddr + size.align_offset(vaddr), pte.flags, size

    def map_region(
        self,
        vaddr: int,
        get_paddr: Callable[[int], int],
        size: int,
        flags: MappingFlags,
        allow_huge: bool,
        flush_tlb_by_page: bool,
    ) -> TlbFlushAll:
        """Map ``size`` bytes from ``vaddr``, asking ``get_paddr`` for each frame.

        Huge pages are used where alignment and the remaining size allow it
        and ``allow_huge`` is set.
        """
        if not PageSize.SIZE_4K.is_aligned(vaddr) or not PageSize.SIZE_4K.is_aligned(size):
            raise NotAlignedError(f"region {vaddr:#x}+{size:#x} is not 4K aligned")
        logger.debug(
            "map_region(%#x): [%#x, %#x) %r", self._root, vaddr, vaddr + size, flags
        )
        while size > 0:
            paddr = get_paddr(vaddr)
            page_size = self._choose_page_size(vaddr, paddr, size) if allow_huge else PageSize.SIZE_4K
            try:
                tlb = self.map(vaddr, paddr, page_size, flags)
            except PagingError as exc:
                logger.error(
                    "failed to map page: %#x(%s) -> %#x, %r", vaddr, page_size.name, paddr, exc
                )
                raise
            if flush_tlb_by_page:
                self._metadata.flush_tlb(vaddr)
                tlb.flush()
            else:
                tlb.ignore()
            vaddr += page_size.value
            size -= page_size.value
        return TlbFlushAll(self._metadata)

    def unmap_region(self, vaddr: int, size: int, flush_tlb_by_page: bool) -> TlbFlushAll:
        """Unmap ``size`` bytes from ``vaddr``, following huge pages."""
        logger.debug("unmap_region(%#x) [%#x, %#x)", self._root, vaddr, vaddr + size)
        while size > 0:
            try:
                _, page_size, tlb = self.unmap(vaddr)
            except PagingError as exc:
                logger.error("failed to unmap page: %#x, %r", vaddr, exc)
                raise
            self._finish_page(tlb, flush_tlb_by_page)
            size = self._advance_check(vaddr, size, page_size)
            vaddr += page_size.value
        return TlbFlushAll(self._metadata)

    def protect_region(
        self, vaddr: int, size: int, flags: MappingFlags, flush_tlb_by_page: bool
    ) -> TlbFlushAll:
        """Change the flags of ``size`` bytes from ``vaddr``, following huge pages."""
        logger.debug(
            "protect_region(%#x) [%#x, %#x) %r", self._root, vaddr, vaddr + size, flags
        )
        while size > 0:
            try:
                page_size, tlb = self.protect(vaddr, flags)
            except PagingError as exc:
                logger.error("failed to protect page: %#x, %r", vaddr, exc)
                raise
            self._finish_page(tlb, flush_tlb_by_page)
            size = self._advance_check(vaddr, size, page_size)
            vaddr += page_size.value
        return TlbFlushAll(self._metadata)

    def walk(
        self,
        limit: Optional[int] = None,
        pre_func: Optional[WalkFunc] = None,
        post_func: Optional[WalkFunc] = None,
    ) -> None:
        """Visit present entries depth first.

        ``pre_func`` and ``post_func`` are called as ``(level, index, vaddr,
        entry)`` before and after descending into an entry. At most
        ``limit`` present entries are visited in each table; None means all.
        """
        self._walk(self._root, 0, 0, limit, pre_func, post_func)

    def copy_from(self, other: PageTable64, start: int, size: int) -> PageTableMapping:
        """Share ``other``'s top-level entries covering ``[start, start+size)``.

        The returned mapping clears the shared entries again on release.
        """
        if size == 0:
            return PageTableMapping(self, 0, 0, 0)
        index_fn = _p3_index if self._metadata.LEVELS == 3 else _p4_index
        start_idx = index_fn(start)
        end_idx = index_fn(start + size - 1) + 1
        if start_idx >= end_idx:
            raise ValueError(f"range {start:#x}+{size:#x} wraps around the root table")
        for idx in range(start_idx, end_idx):
            self._write(self._root, idx, other._read(other._root, idx))
        return PageTableMapping(self, other._root, start_idx, end_idx)

    def close(self) -> None:
        """Free the root table and every intermediate table."""
        if self._closed:
            return
        last = self._metadata.LEVELS - 1

        def release(level: int, _index: int, _vaddr: int, pte: GenericPTE) -> None:
            if level < last and pte.is_present() and not pte.is_huge():
                self._handler.dealloc_frame(pte.paddr)

        try:
            self.walk(None, None, release)
        except PagingError:
            pass
        self._handler.dealloc_frame(self._root)
        self._closed = True

    def __enter__(self) -> PageTable64:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # Internals

    @staticmethod
    def _choose_page_size(vaddr: int, paddr: int, size: int) -> PageSize:
        for page_size in (PageSize.SIZE_1G, PageSize.SIZE_2M):
            if (
                page_size.is_aligned(vaddr)
                and page_size.is_aligned(paddr)
                and size >= page_size.value
            ):
                return page_size
        return PageSize.SIZE_4K

    @staticmethod
    def _finish_page(tlb: TlbFlush, flush: bool) -> None:
        if flush:
            tlb.flush()
        else:
            tlb.ignore()

    @staticmethod
    def _advance_check(vaddr: int, size: int, page_size: PageSize) -> int:
        if not page_size.is_aligned(vaddr):
            raise AssertionError(f"{vaddr:#x} is not aligned to {page_size.name}")
        if page_size.value > size:
            raise AssertionError(f"{page_size.name} page exceeds the remaining region")
        return size - page_size.value

    def _alloc_table(self) -> int:
        paddr = self._handler.alloc_frame()
        if paddr is None:
            raise NoMemoryError("cannot allocate a page table frame")
        frame = self._handler.frame(paddr)
        frame[:PAGE_SIZE_4K] = bytes(PAGE_SIZE_4K)
        return paddr

    def _read(self, table: int, idx: int) -> GenericPTE:
        (bits,) = _ENTRY.unpack_from(self._handler.frame(table), idx * _ENTRY.size)
        return self._pte_type(bits)

    def _write(self, table: int, idx: int, pte: GenericPTE) -> None:
        _ENTRY.pack_into(self._handler.frame(table), idx * _ENTRY.size, pte.bits)

    def _entries(self, table: int) -> list[GenericPTE]:
        data = memoryview(self._handler.frame(table))[: ENTRY_COUNT * _ENTRY.size]
        return [self._pte_type(bits) for (bits,) in _ENTRY.iter_unpack(data)]

    @staticmethod
    def _next_table(pte: GenericPTE) -> int:
        if pte.paddr == 0:
            raise NotMappedError("intermediate table is not present")
        if pte.is_huge():
            raise MappedToHugePageError("entry maps a huge page")
        return pte.paddr

    def _next_table_or_create(self, table: int, idx: int) -> int:
        pte = self._read(table, idx)
        if pte.is_unused():
            paddr = self._alloc_table()
            self._write(table, idx, self._pte_type.new_table(paddr))
            return paddr
        return self._next_table(pte)

    def _p3_table(self, vaddr: int) -> int:
        if self._metadata.LEVELS == 3:
            return self._root
        return self._next_table(self._read(self._root, _p4_index(vaddr)))

    def _lookup(self, vaddr: int) -> tuple[int, int, GenericPTE, PageSize]:
        table = self._p3_table(vaddr)
        idx = _p3_index(vaddr)
        pte = self._read(table, idx)
        if pte.is_huge():
            return table, idx, pte, PageSize.SIZE_1G

        table = self._next_table(pte)
        idx = _p2_index(vaddr)
        pte = self._read(table, idx)
        if pte.is_huge():
            return table, idx, pte, PageSize.SIZE_2M

        table = self._next_table(pte)
        idx = _p1_index(vaddr)
        return table, idx, self._read(table, idx), PageSize.SIZE_4K

    def _lookup_or_create(
        self, vaddr: int, page_size: PageSize
    ) -> tuple[int, int, GenericPTE]:
        if self._metadata.LEVELS == 3:
            table = self._root
        else:
            table = self._next_table_or_create(self._root, _p4_index(vaddr))
        idx = _p3_index(vaddr)
        if page_size is PageSize.SIZE_1G:
            return table, idx, self._read(table, idx)

        table = self._next_table_or_create(table, idx)
        idx = _p2_index(vaddr)
        if page_size is PageSize.SIZE_2M:
            return table, idx, self._read(table, idx)

        table = self._next_table_or_create(table, idx)
        idx = _p1_index(vaddr)
        return table, idx, self._read(table, idx)

    def _walk(
        self,
        table: int,
        level: int,
        start_vaddr: int,
        limit: Optional[int],
        pre_func: Optional[WalkFunc],
        post_func: Optional[WalkFunc],
    ) -> None:
        levels = self._metadata.LEVELS
        shift = 12 + (levels - 1 - level) * 9
        visited = 0
        for i, pte in enumerate(self._entries(table)):
            if not pte.is_present():
                continue
            vaddr = start_vaddr + (i << shift)
            if pre_func is not None:
                pre_func(level, i, vaddr, pte)
            if level < levels - 1 and not pte.is_huge():
                child = self._next_table(pte)
                self._walk(child, level + 1, vaddr, limit, pre_func, post_func)
            if post_func is not None:
                post_func(level, i, vaddr, pte)
            visited += 1
            if limit is not None and visited >= limit:
                break


class PageTableMapping:
    """Top-level entries shared into a page table by :meth:`PageTable64.copy_from`.

    :meth:`release` clears those entries in the destination table again.
    """

    def __init__(self, dest: PageTable64, source_paddr: int, start_idx: int, end_idx: int) -> None:
        self.dest = dest
        self.source_paddr = source_paddr
        self.start_idx = start_idx
        self.end_idx = end_idx
        self._released = False

    def release(self) -> None:
        """Clear the shared entries in the destination table."""
        if self._released:
            return
        empty = self.dest._pte_type(0)
        for idx in range(self.start_idx, self.end_idx):
            self.dest._write(self.dest.root_paddr, idx, empty)
        self._released = True

    def __enter__(self) -> PageTableMapping:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.release()


def x64_page_table(handler: PagingHandler) -> PageTable64:
    """Create an x86_64 page table."""
    return PageTable64(X64PagingMetaData(), X64PTE, handler)


def a64_page_table(handler: PagingHandler) -> PageTable64:
    """Create an AArch64 VMSAv8-64 translation table."""
    return PageTable64(A64PagingMetaData(), A64PTE, handler)


def la64_page_table(handler: PagingHandler) -> PageTable64:
    """Create a four-level LoongArch64 page table."""
    return PageTable64(LA64MetaData(), LA64PTE, handler)


def sv39_page_table(handler: PagingHandler) -> PageTable64:
    """Create a RISC-V Sv39 (three-level) page table."""
    return PageTable64(Sv39MetaData(), Rv64PTE, handler)


def sv48_page_table(handler: PagingHandler) -> PageTable64:
    """Create a RISC-V Sv48 (four-level) page table."""
    return PageTable64(Sv48MetaData(), Rv64PTE, handler)