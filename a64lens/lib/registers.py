"""AArch64 register model."""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class RegisterKind(Enum):
    GENERAL = "general"
    FRAME = "frame"
    LINK = "link"
    STACK = "stack"
    ZERO = "zero"
    PROGRAM_COUNTER = "pc"
    VECTOR = "vector"


@dataclass(frozen=True)
class Register:
    """
    A named AArch64 register.

    alias_of names the full width register this one is a view of, for
    example w3 -> x3, fp -> x29 or s0 -> v0. Zero registers are never aliases
    of a general register.
    """
    name: str
    index: Optional[int]
    width: int
    kind: RegisterKind
    alias_of: Optional[str] = None

    def __str__(self):
        return self.name

    @property
    def is_zero(self) -> bool:
        return self.kind == RegisterKind.ZERO

    @property
    def is_vector(self) -> bool:
        return self.kind == RegisterKind.VECTOR

    @property
    def is_32bit(self) -> bool:
        return self.width == 32


# Widths of the scalar views of the SIMD&FP register file
VECTOR_VIEW_WIDTHS = {"b": 8, "h": 16, "s": 32, "d": 64, "q": 128, "v": 128}


def _kind_for_index(index):
    if index == 29:
        return RegisterKind.FRAME
    if index == 30:
        return RegisterKind.LINK
    return RegisterKind.GENERAL


def _build_registers():
    regs = {}
    for i in range(31):
        kind = _kind_for_index(i)
        regs[f"x{i}"] = Register(f"x{i}", i, 64, kind)
        regs[f"w{i}"] = Register(f"w{i}", i, 32, kind, alias_of=f"x{i}")
    regs["fp"] = Register("fp", 29, 64, RegisterKind.FRAME, alias_of="x29")
    regs["lr"] = Register("lr", 30, 64, RegisterKind.LINK, alias_of="x30")
    regs["sp"] = Register("sp", 31, 64, RegisterKind.STACK)
    regs["wsp"] = Register("wsp", 31, 32, RegisterKind.STACK, alias_of="sp")
    regs["xzr"] = Register("xzr", 31, 64, RegisterKind.ZERO)
    regs["wzr"] = Register("wzr", 31, 32, RegisterKind.ZERO)
    regs["pc"] = Register("pc", None, 64, RegisterKind.PROGRAM_COUNTER)
    for prefix, width in VECTOR_VIEW_WIDTHS.items():
        for i in range(32):
            alias = None if prefix == "v" else f"v{i}"
            regs[f"{prefix}{i}"] = Register(
                f"{prefix}{i}", i, width, RegisterKind.VECTOR, alias_of=alias
            )
    return regs


REGISTERS = _build_registers()

# Role names appended when a register has an ABI meaning worth mentioning
REGISTER_ROLES = {
    "x29": "frame pointer",
    "x30": "link register",
    "sp": "stack pointer",
}


def lookup_register(name):
    """Returns the Register for a name such as X0, w5 or sp, or None."""
    if not name:
        return None
    return REGISTERS.get(name.strip().lower())


def resolve_alias(register):
    """
    Returns the full width register that the given register is a view of.

    w-registers resolve to their x-register, fp and lr to x29 and x30, wsp to
    sp and the scalar SIMD&FP views to their v-register. Registers without an
    alias resolve to themselves. The zero registers resolve to xzr.
    """
    if register.kind == RegisterKind.ZERO:
        return REGISTERS["xzr"]
    if register.alias_of:
        return REGISTERS[register.alias_of]
    return register


def is_zero_register(register) -> bool:
    return isinstance(register, Register) and register.kind == RegisterKind.ZERO


def full_width_name(register) -> str:
    return resolve_alias(register).name


def register_role(register):
    """Returns the ABI role of a register (frame pointer, link register...) or None."""
    return REGISTER_ROLES.get(full_width_name(register))
