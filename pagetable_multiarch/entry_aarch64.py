"""AArch64 VMSAv8-64 translation table format descriptors."""

from __future__ import annotations

import enum
import functools
import operator
from typing import ClassVar

from .entry import GenericPTE, MappingFlags


class DescriptorAttr(enum.IntFlag):
    """Attribute fields of VMSAv8-64 translation table descriptors."""

    VALID = 1 << 0
    NON_BLOCK = 1 << 1
    ATTR_INDX = 0b111 << 2
    NS = 1 << 5
    AP_EL0 = 1 << 6
    AP_RO = 1 << 7
    INNER = 1 << 8
    SHAREABLE = 1 << 9
    AF = 1 << 10
    NG = 1 << 11
    CONTIGUOUS = 1 << 52
    PXN = 1 << 53
    UXN = 1 << 54
    PXN_TABLE = 1 << 59
    XN_TABLE = 1 << 60
    AP_NO_EL0_TABLE = 1 << 61
    AP_NO_WRITE_TABLE = 1 << 62
    NS_TABLE = 1 << 63


_ATTR_INDEX_MASK = 0b111_00
_ALL_ATTR_BITS = functools.reduce(
    operator.or_, (member.value for member in DescriptorAttr.__members__.values()), 0
)


def _truncate(bits: int) -> DescriptorAttr:
    return DescriptorAttr(bits & _ALL_ATTR_BITS)


class MemAttr(enum.IntEnum):
    """Memory attribute index, selecting an entry of the MAIR register."""

    DEVICE = 0
    NORMAL = 1
    NORMAL_NON_CACHEABLE = 2


# Value for MAIR_ELx matching MemAttr: Device-nGnRE, Normal write-back,
# Normal non-cacheable.
MAIR_VALUE = 0x44_FF_04


def descriptor_attr_from_mem_attr(idx: MemAttr) -> DescriptorAttr:
    """Build attributes holding only the memory attribute index."""
    idx = MemAttr(idx)
    bits = idx.value << 2
    if idx in (MemAttr.NORMAL, MemAttr.NORMAL_NON_CACHEABLE):
        bits |= DescriptorAttr.INNER | DescriptorAttr.SHAREABLE
    return DescriptorAttr(bits)


def mem_attr_of(attr: DescriptorAttr) -> MemAttr | None:
    """Return the memory attribute index field, or None if it is reserved."""
    idx = (int(attr) & _ATTR_INDEX_MASK) >> 2
    try:
        return MemAttr(idx)
    except ValueError:
        return None


def descriptor_attr_to_flags(attr: DescriptorAttr, el2: bool = False) -> MappingFlags:
    """Convert descriptor attributes into generic mapping flags."""
    attr = DescriptorAttr(attr)
    if DescriptorAttr.VALID not in attr:
        return MappingFlags(0)
    flags = MappingFlags.READ
    if DescriptorAttr.AP_RO not in attr:
        flags |= MappingFlags.WRITE
    if el2:
        if DescriptorAttr.UXN not in attr:
            flags |= MappingFlags.EXECUTE
    elif DescriptorAttr.AP_EL0 in attr:
        flags |= MappingFlags.USER
        if DescriptorAttr.UXN not in attr:
            flags |= MappingFlags.EXECUTE
    elif DescriptorAttr.PXN not in attr:
        flags |= MappingFlags.EXECUTE
    mem_attr = mem_attr_of(attr)
    if mem_attr is MemAttr.DEVICE:
        flags |= MappingFlags.DEVICE
    elif mem_attr is MemAttr.NORMAL_NON_CACHEABLE:
        flags |= MappingFlags.UNCACHED
    return flags


def flags_to_descriptor_attr(flags: MappingFlags, el2: bool = False) -> DescriptorAttr:
    """Convert generic mapping flags into descriptor attributes."""
    flags = MappingFlags(flags)
    if not flags:
        return DescriptorAttr(0)
    if MappingFlags.DEVICE in flags:
        attr = descriptor_attr_from_mem_attr(MemAttr.DEVICE)
    elif MappingFlags.UNCACHED in flags:
        attr = descriptor_attr_from_mem_attr(MemAttr.NORMAL_NON_CACHEABLE)
    else:
        attr = descriptor_attr_from_mem_attr(MemAttr.NORMAL)
    if MappingFlags.READ in flags:
        attr |= DescriptorAttr.VALID
    if MappingFlags.WRITE not in flags:
        attr |= DescriptorAttr.AP_RO
    executable = MappingFlags.EXECUTE in flags
    if el2:
        if not executable:
            attr |= DescriptorAttr.UXN
    elif MappingFlags.USER in flags:
        attr |= DescriptorAttr.AP_EL0 | DescriptorAttr.PXN
        if not executable:
            attr |= DescriptorAttr.UXN
    else:
        attr |= DescriptorAttr.UXN
        if not executable:
            attr |= DescriptorAttr.PXN
    return attr


class A64PTE(GenericPTE):
    """A VMSAv8-64 translation table descriptor.

    AttrIndx is 0 for device memory, 1 for normal memory and 2 for normal
    non-cacheable memory; MAIR_ELx must be set to ``MAIR_VALUE``. Set the
    class attribute ``el2`` in a subclass to use the EL2 permission layout.
    """

    PHYS_ADDR_MASK = 0x0000_FFFF_FFFF_F000
    el2: ClassVar[bool] = False

    @classmethod
    def _leaf_attr(cls, flags: MappingFlags, is_huge: bool) -> DescriptorAttr:
        attr = flags_to_descriptor_attr(flags, cls.el2) | DescriptorAttr.AF
        if not is_huge:
            attr |= DescriptorAttr.NON_BLOCK
        return attr

    @classmethod
    def new_page(cls, paddr: int, flags: MappingFlags, is_huge: bool) -> A64PTE:
        return cls(int(cls._leaf_attr(flags, is_huge)) | cls._encode_paddr(paddr))

    @classmethod
    def new_table(cls, paddr: int) -> A64PTE:
        attr = DescriptorAttr.NON_BLOCK | DescriptorAttr.VALID
        return cls(int(attr) | cls._encode_paddr(paddr))

    @property
    def attr(self) -> DescriptorAttr:
        """The known descriptor attribute bits of this entry."""
        return _truncate(self.bits)

    @property
    def flags(self) -> MappingFlags:
        return descriptor_attr_to_flags(self.attr, self.el2)

    def set_flags(self, flags: MappingFlags, is_huge: bool) -> None:
        self.bits = (self.bits & self.PHYS_ADDR_MASK) | int(self._leaf_attr(flags, is_huge))

    def is_unused(self) -> bool:
        return self.bits == 0

    def is_present(self) -> bool:
        return DescriptorAttr.VALID in self.attr

    def is_huge(self) -> bool:
        return DescriptorAttr.NON_BLOCK not in self.attr

    def clear(self) -> None:
        self.bits = 0

    def _extra_repr(self) -> dict[str, object]:
        return {"attr": self.attr}