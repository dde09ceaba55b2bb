# pagetable-multiarch

A model of hardware multi-level page tables for several 64-bit architectures,
with bit-exact page table entry encodings. Page tables live in 4K frames
handed out by a `PagingHandler` and are read and written as little-endian
64-bit entries, 512 to a table.

Supported formats:

| Architecture | Entry type | Metadata             | Levels | Factory             |
|--------------|------------|----------------------|--------|---------------------|
| x86_64       | `X64PTE`   | `X64PagingMetaData`  | 4      | `x64_page_table`    |
| AArch64      | `A64PTE`   | `A64PagingMetaData`  | 4      | `a64_page_table`    |
| LoongArch64  | `LA64PTE`  | `LA64MetaData`       | 4      | `la64_page_table`   |
| RISC-V Sv39  | `Rv64PTE`  | `Sv39MetaData`       | 3      | `sv39_page_table`   |
| RISC-V Sv48  | `Rv64PTE`  | `Sv48MetaData`       | 4      | `sv48_page_table`   |

## Installation

```
pip install pagetable-multiarch
```

The package has no runtime dependencies.

## Modules

- `pagetable_multiarch.entry` — `MappingFlags` (`READ`, `WRITE`, `EXECUTE`,
  `USER`, `DEVICE`, `UNCACHED`) and the abstract `GenericPTE`: `new_page`,
  `new_table`, the `paddr` and `flags` properties, `set_flags`, `is_unused`,
  `is_present`, `is_huge`, `clear`, and the raw `bits` field.
- `pagetable_multiarch.entry_x86_64` — `PTF`, `X64PTE`, `ptf_to_mapping`,
  `mapping_to_ptf`.
- `pagetable_multiarch.entry_aarch64` — `DescriptorAttr`, `MemAttr`,
  `MAIR_VALUE`, `A64PTE`, `descriptor_attr_from_mem_attr`, `mem_attr_of`,
  `descriptor_attr_to_flags`, `flags_to_descriptor_attr`. The conversions take
  an `el2` argument selecting the EL2 permission layout; a subclass of
  `A64PTE` with `el2 = True` uses it for its entries.
- `pagetable_multiarch.entry_loongarch64` — `LAPTEFlags`, `LA64PTE`,
  `la_flags_to_mapping`, `mapping_to_la_flags`.
- `pagetable_multiarch.entry_riscv` — `RvPTEFlags`, `Rv64PTE`,
  `rv_flags_to_mapping`, `mapping_to_rv_flags`.
- `pagetable_multiarch.paging` — `PageSize` (`SIZE_4K`, `SIZE_2M`,
  `SIZE_1G`), the `PagingMetaData` base class, the `PagingHandler` interface
  and its in-memory `MemoryPagingHandler`, `TlbFlush`, `TlbFlushAll`, and the
  errors: `PagingError` with subclasses `NoMemoryError`, `NotAlignedError`,
  `NotMappedError`, `AlreadyMappedError`, `MappedToHugePageError`.
- `pagetable_multiarch.metadata` — the per-architecture metadata classes.
  `LA64MetaData` also carries `PWCL_VALUE` and `PWCH_VALUE`.
- `pagetable_multiarch.pagetable` — `PageTable64`, `PageTableMapping` and the
  factory functions.

## Example

```python
from pagetable_multiarch.entry import MappingFlags
from pagetable_multiarch.paging import MemoryPagingHandler, PageSize, NotMappedError
from pagetable_multiarch.pagetable import x64_page_table

handler = MemoryPagingHandler()
with x64_page_table(handler) as table:
    flags = MappingFlags.READ | MappingFlags.WRITE
    table.map(0x4000_0000, 0x20_0000, PageSize.SIZE_2M, flags).flush()

    paddr, got_flags, size = table.query(0x4000_1234)
    assert paddr == 0x20_1234
    assert size is PageSize.SIZE_2M

    # Map a region, using huge pages where alignment and size allow it.
    table.map_region(
        0x8000_0000,
        lambda vaddr: vaddr - 0x8000_0000 + 0x1_0000_0000,
        0x40_0000,
        flags,
        True,   # allow_huge
        False,  # flush_tlb_by_page
    ).flush_all()

    paddr, size, tlb = table.unmap(0x4000_0000)
    tlb.ignore()
    try:
        table.query(0x4000_0000)
    except NotMappedError:
        pass
# Leaving the block calls close(), which returns the root and every
# intermediate table frame to the handler.
```

`walk(limit, pre_func, post_func)` visits present entries depth first,
calling the functions with `(level, index, vaddr, entry)`; `limit=None`
visits every entry. `copy_from(other, start, size)` copies the top-level
entries of another table covering the range and returns a `PageTableMapping`
whose `release()` (or leaving its `with` block) clears them again.

## TLB flushes

Operations that change mappings return `TlbFlush` or `TlbFlushAll`. Their
`flush()` / `flush_all()` call the metadata's `flush_tlb`, which passes the
virtual address (or `None` for a full flush) to the `on_flush` callable given
to the metadata, if any:

```python
from pagetable_multiarch.metadata import Sv39MetaData
from pagetable_multiarch.paging import MemoryPagingHandler
from pagetable_multiarch.pagetable import PageTable64
from pagetable_multiarch.entry_riscv import Rv64PTE

flushed = []
table = PageTable64(Sv39MetaData(on_flush=flushed.append), Rv64PTE, MemoryPagingHandler())
```

## Entry encodings

Each entry type can be used on its own to encode or decode raw descriptors:

```python
from pagetable_multiarch.entry import MappingFlags
from pagetable_multiarch.entry_riscv import Rv64PTE

pte = Rv64PTE.new_page(0x8020_0000, MappingFlags.READ | MappingFlags.EXECUTE, False)
assert pte.is_present() and pte.is_huge()
assert pte.paddr == 0x8020_0000
```

## What it does not do

The package only models page tables in memory. It does not program any MMU,
issue real TLB invalidations, or reach physical memory: frames come from the
`PagingHandler` you supply, and TLB flushes go only to the `on_flush` callable.

## Running the tests

```
pip install -e ".[test]"
pytest
```