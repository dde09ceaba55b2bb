import pytest

from pagetable_multiarch.entry import GenericPTE, MappingFlags


class _DemoPTE(GenericPTE):
    PHYS_ADDR_MASK = 0xF000
    PADDR_SHIFT = 0
    _PRESENT = 1
    _HUGE = 2

    @classmethod
    def new_page(cls, paddr, flags, is_huge):
        low = cls._PRESENT if flags else 0
        if is_huge:
            low |= cls._HUGE
        return cls(low | cls._encode_paddr(paddr))

    @classmethod
    def new_table(cls, paddr):
        return cls(cls._PRESENT | cls._encode_paddr(paddr))

    @property
    def flags(self):
        return MappingFlags.READ if self.is_present() else MappingFlags(0)

    def set_flags(self, flags, is_huge):
        self.bits = (self.bits & self.PHYS_ADDR_MASK) | (self._PRESENT if flags else 0)

    def is_present(self):
        return bool(self.bits & self._PRESENT)

    def is_huge(self):
        return bool(self.bits & self._HUGE)


def test_generic_pte_is_abstract():
    with pytest.raises(TypeError):
        GenericPTE()


def test_paddr_is_masked_on_creation():
    pte = _DemoPTE.new_page(0x3ABC, MappingFlags.READ, False)
    assert pte.paddr == 0x3000
    assert pte.is_present()
    assert not GenericPTE.is_unused(pte)


def test_paddr_setter_keeps_other_bits():
    pte = _DemoPTE.new_page(0x1000, MappingFlags.READ, True)
    pte.paddr = 0x7000
    assert pte.paddr == 0x7000
    assert pte.is_huge()
    assert pte.is_present()
    assert not GenericPTE.is_unused(pte)


def test_clear_makes_entry_unused():
    pte = _DemoPTE.new_table(0x2000)
    assert not GenericPTE.is_unused(pte)
    GenericPTE.clear(pte)
    assert GenericPTE.is_unused(pte)
    assert pte.bits == 0


def test_bits_are_truncated_to_64_bits():
    pte = _DemoPTE((1 << 64) | 5)
    assert pte.bits == 5
    assert GenericPTE.is_unused(_DemoPTE(1 << 64))


def test_equality_compares_bits():
    assert _DemoPTE.new_table(0x2000) == _DemoPTE.new_table(0x2000)
    assert not _DemoPTE.new_table(0x2000) == _DemoPTE.new_table(0x3000)
    cleared = _DemoPTE.new_table(0x2000)
    GenericPTE.clear(cleared)
    assert cleared == _DemoPTE()


def test_default_entry_is_unused():
    assert GenericPTE.is_unused(_DemoPTE())


def test_repr_names_class_and_address():
    pte = _DemoPTE.new_table(0x2000)
    text = repr(pte)
    assert text.startswith("_DemoPTE(")
    assert "paddr=0x2000" in text
    assert not GenericPTE.is_unused(pte)


def test_mapping_flags_combine():
    flags = MappingFlags.READ | MappingFlags.WRITE
    assert MappingFlags.READ in flags
    assert MappingFlags.EXECUTE not in flags
    assert not MappingFlags(0)
    assert MappingFlags(flags.value) == flags