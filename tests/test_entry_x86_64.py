import pytest

from pagetable_multiarch.entry import MappingFlags
from pagetable_multiarch.entry_x86_64 import PTF, X64PTE, mapping_to_ptf, ptf_to_mapping

M = MappingFlags


def test_empty_flags():
    assert mapping_to_ptf(M(0)) == PTF(0)
    assert ptf_to_mapping(PTF(0)) == M(0)


def test_not_present_gives_no_flags():
    assert ptf_to_mapping(PTF.WRITABLE | PTF.USER_ACCESSIBLE) == M(0)


def test_non_executable_sets_nx():
    ptf = mapping_to_ptf(M.READ | M.WRITE)
    assert (PTF.PRESENT | PTF.WRITABLE | PTF.NO_EXECUTE) in ptf
    assert PTF.USER_ACCESSIBLE not in ptf


def test_device_sets_cache_bits():
    ptf = mapping_to_ptf(M.READ | M.DEVICE)
    assert (PTF.NO_CACHE | PTF.WRITE_THROUGH) in ptf
    assert ptf_to_mapping(ptf) == M.READ | M.UNCACHED


@pytest.mark.parametrize(
    "flags",
    [
        M.READ,
        M.READ | M.WRITE,
        M.READ | M.EXECUTE,
        M.READ | M.WRITE | M.EXECUTE | M.USER,
        M.READ | M.UNCACHED,
    ],
)
def test_round_trip(flags):
    assert ptf_to_mapping(mapping_to_ptf(flags)) == flags


def test_new_page():
    pte = X64PTE.new_page(0x1234_5000, M.READ | M.WRITE | M.USER, False)
    assert pte.paddr == 0x1234_5000
    assert pte.flags == M.READ | M.WRITE | M.USER
    assert pte.is_present()
    assert not pte.is_huge()


def test_new_huge_page():
    pte = X64PTE.new_page(0x20_0000, M.READ, True)
    assert pte.is_huge()
    assert PTF.HUGE_PAGE in pte.ptf


def test_new_table_flags():
    pte = X64PTE.new_table(0x3000)
    assert pte.paddr == 0x3000
    assert pte.flags == M.READ | M.WRITE | M.EXECUTE | M.USER
    assert pte.is_present()
    assert not pte.is_huge()


def test_paddr_beyond_mask_is_dropped():
    pte = X64PTE.new_page((1 << 52) | 0x4000, M.READ, False)
    assert pte.paddr == 0x4000


def test_set_flags_keeps_paddr():
    pte = X64PTE.new_page(0x8000, M.READ, False)
    pte.set_flags(M.READ | M.WRITE, True)
    assert pte.paddr == 0x8000
    assert pte.flags == M.READ | M.WRITE
    assert pte.is_huge()


def test_paddr_setter_keeps_flags():
    pte = X64PTE.new_page(0x8000, M.READ | M.EXECUTE, False)
    pte.paddr = 0xA000
    assert pte.paddr == 0xA000
    assert pte.flags == M.READ | M.EXECUTE


def test_clear():
    pte = X64PTE.new_table(0x3000)
    pte.clear()
    assert pte.is_unused()
    assert pte.bits == 0