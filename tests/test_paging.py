import pytest

from pagetable_multiarch.paging import (
    PAGE_SIZE_4K,
    MemoryPagingHandler,
    PageSize,
    PagingMetaData,
    TlbFlush,
    TlbFlushAll,
)


class _Meta48(PagingMetaData):
    LEVELS = 4
    PA_MAX_BITS = 48
    VA_MAX_BITS = 48


@pytest.mark.parametrize(
    "value, member",
    [
        (0x1000, PageSize.SIZE_4K),
        (0x20_0000, PageSize.SIZE_2M),
        (0x4000_0000, PageSize.SIZE_1G),
    ],
)
def test_page_size_values(value, member):
    assert PageSize(value) is member
    assert PageSize.is_aligned(member, value)


def test_is_huge():
    assert not PageSize.SIZE_4K.is_huge()
    assert PageSize.SIZE_2M.is_huge()
    assert PageSize.SIZE_1G.is_huge()


@pytest.mark.parametrize("size", list(PageSize))
def test_alignment_invariants(size):
    assert PageSize.is_aligned(size, 0)
    assert PageSize.is_aligned(size, size * 3)
    assert not PageSize.is_aligned(size, size + 1)
    assert PageSize.align_offset(size, size * 5 + 7) == 7
    assert PageSize.align_offset(size, size * 2) == 0


def test_2m_not_aligned_at_4k():
    assert not PageSize.SIZE_2M.is_aligned(PageSize.SIZE_4K)


def test_paddr_is_valid():
    meta = _Meta48()
    assert meta.pa_max_addr == (1 << 48) - 1
    assert PagingMetaData.paddr_is_valid(meta, (1 << 48) - 1)
    assert not PagingMetaData.paddr_is_valid(meta, 1 << 48)


def test_vaddr_is_valid_sign_extension():
    meta = _Meta48()
    assert PagingMetaData.vaddr_is_valid(meta, 0)
    assert PagingMetaData.vaddr_is_valid(meta, (1 << 47) - 1)
    assert not PagingMetaData.vaddr_is_valid(meta, 1 << 47)
    assert PagingMetaData.vaddr_is_valid(meta, ((1 << 64) - 1) ^ ((1 << 47) - 1))
    assert PagingMetaData.vaddr_is_valid(meta, (1 << 64) - 1)


def test_flush_hooks():
    seen = []
    meta = _Meta48(on_flush=seen.append)
    assert meta.on_flush == seen.append
    TlbFlush(meta, 0x4000).flush()
    TlbFlushAll(meta).flush_all()
    assert seen == [0x4000, None]


def test_ignore_does_not_flush():
    seen = []
    meta = _Meta48(on_flush=seen.append)
    assert meta.on_flush == seen.append
    TlbFlush(meta, 0x4000).ignore()
    TlbFlushAll(meta).ignore()
    assert seen == []


def test_flush_without_hook_is_noop():
    meta = _Meta48()
    assert PagingMetaData.flush_tlb(meta, None) is None
    assert meta.on_flush is None


def test_handler_allocates_zeroed_aligned_frames():
    handler = MemoryPagingHandler()
    first = handler.alloc_frame()
    second = handler.alloc_frame()
    assert first != second
    for paddr in (first, second):
        assert paddr != 0
        assert paddr % PAGE_SIZE_4K == 0
        frame = handler.frame(paddr)
        assert len(frame) == PAGE_SIZE_4K
        assert not any(frame)
    assert handler.allocated_frames == {first, second}


def test_handler_limit():
    handler = MemoryPagingHandler(max_frames=2)
    assert handler.alloc_frame() is not None
    assert handler.alloc_frame() is not None
    assert handler.alloc_frame() is None


def test_handler_reuses_freed_frame():
    handler = MemoryPagingHandler(max_frames=1)
    paddr = handler.alloc_frame()
    handler.frame(paddr)[0] = 0xAA
    handler.dealloc_frame(paddr)
    assert handler.allocated_frames == frozenset()
    again = handler.alloc_frame()
    assert again == paddr
    assert handler.frame(again)[0] == 0


def test_frame_lookup_aligns_down():
    handler = MemoryPagingHandler()
    paddr = handler.alloc_frame()
    assert handler.frame(paddr + 0x10) is handler.frame(paddr)


def test_unknown_frame_errors():
    handler = MemoryPagingHandler()
    with pytest.raises(ValueError):
        handler.frame(0x1000)
    with pytest.raises(ValueError):
        handler.dealloc_frame(0x1000)


def test_double_free_errors():
    handler = MemoryPagingHandler()
    paddr = handler.alloc_frame()
    handler.dealloc_frame(paddr)
    with pytest.raises(ValueError):
        handler.dealloc_frame(paddr)


@pytest.mark.parametrize("base", [0, 0x1001])
def test_bad_base(base):
    with pytest.raises(ValueError):
        MemoryPagingHandler(base=base)