"""Multi-level page tables and bit-exact page table entries for x86_64, AArch64, LoongArch64 and RISC-V."""

__version__ = "0.5.3"