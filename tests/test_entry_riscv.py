import pytest

from pagetable_multiarch.entry import MappingFlags
from pagetable_multiarch.entry_riscv import (
    Rv64PTE,
    RvPTEFlags,
    mapping_to_rv_flags,
    rv_flags_to_mapping,
)

R = MappingFlags.READ
W = MappingFlags.WRITE
X = MappingFlags.EXECUTE
U = MappingFlags.USER


@pytest.mark.parametrize("flags", [R, R | W, X, R | X, R | W | X, R | W | X | U, W])
def test_flags_round_trip(flags):
    assert rv_flags_to_mapping(mapping_to_rv_flags(flags)) == flags


def test_device_and_uncached_are_dropped():
    rv = mapping_to_rv_flags(R | MappingFlags.DEVICE | MappingFlags.UNCACHED)
    assert rv_flags_to_mapping(rv) == R


def test_empty_flags():
    assert mapping_to_rv_flags(MappingFlags(0)) == RvPTEFlags(0)
    assert rv_flags_to_mapping(RvPTEFlags(0)) == MappingFlags(0)


def test_invalid_entry_has_no_flags():
    assert rv_flags_to_mapping(RvPTEFlags.R | RvPTEFlags.W) == MappingFlags(0)


def test_new_table_encoding():
    pte = Rv64PTE.new_table(0x1000)
    assert pte.bits == 0x401
    assert pte.paddr == 0x1000
    assert pte.is_present()
    assert not pte.is_huge()


@pytest.mark.parametrize("is_huge", [False, True])
def test_new_page_round_trip(is_huge):
    pte = Rv64PTE.new_page(0x8020_0000, R | W | U, is_huge)
    assert pte.paddr == 0x8020_0000
    assert pte.flags == R | W | U
    assert pte.is_present()
    assert pte.is_huge()
    assert RvPTEFlags.A in pte.rv_flags
    assert RvPTEFlags.D in pte.rv_flags


def test_new_page_requires_read_or_execute():
    assert mapping_to_rv_flags(W) == RvPTEFlags.V | RvPTEFlags.W
    with pytest.raises(AssertionError):
        Rv64PTE.new_page(0x1000, W, False)


def test_set_flags_requires_read_or_execute():
    pte = Rv64PTE.new_page(0x8000_0000, R, False)
    assert mapping_to_rv_flags(U) == RvPTEFlags.V | RvPTEFlags.U
    with pytest.raises(AssertionError):
        pte.set_flags(U, False)


def test_set_flags_keeps_paddr():
    pte = Rv64PTE.new_page(0x8000_0000, R | W, False)
    pte.set_flags(R | X, False)
    assert pte.paddr == 0x8000_0000
    assert pte.flags == R | X


def test_paddr_setter_keeps_flags():
    pte = Rv64PTE.new_page(0x8000_0000, R | W, False)
    pte.paddr = 0x9000_0000
    assert pte.paddr == 0x9000_0000
    assert pte.flags == R | W


def test_paddr_drops_low_bits():
    pte = Rv64PTE.new_table(0x2FFF)
    assert pte.paddr == 0x2000


def test_clear():
    pte = Rv64PTE.new_page(0x1000, R, False)
    pte.clear()
    assert pte.is_unused()
    assert not pte.is_present()
    assert pte.flags == MappingFlags(0)


def test_repr_names_class():
    assert repr(Rv64PTE.new_table(0x1000)).startswith("Rv64PTE(raw=0x401")