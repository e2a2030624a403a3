"""
Operand grammar for AArch64 disassembly text.

An instruction's operand text is split on top level commas and every piece is
turned into one of the operand types below. Pieces that fit no operand form
raise MalformedLine, which the dump parser recovers from.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

from a64lens.lib.errors import MalformedLine
from a64lens.lib.registers import Register, RegisterKind, lookup_register


class Condition(Enum):
    """Condition codes with the flag test they perform and a plain reading."""

    EQ = ("eq", "Z set", "the compared values are equal")
    NE = ("ne", "Z clear", "the compared values are not equal")
    CS = ("cs", "C set", "the unsigned comparison result is higher or same")
    CC = ("cc", "C clear", "the unsigned comparison result is lower")
    MI = ("mi", "N set", "the result is negative")
    PL = ("pl", "N clear", "the result is positive or zero")
    VS = ("vs", "V set", "a signed overflow occurred")
    VC = ("vc", "V clear", "no signed overflow occurred")
    HI = ("hi", "C set and Z clear", "the unsigned comparison result is higher")
    LS = ("ls", "C clear or Z set", "the unsigned comparison result is lower or same")
    GE = ("ge", "N == V", "the signed comparison result is greater than or equal")
    LT = ("lt", "N != V", "the signed comparison result is less than")
    GT = ("gt", "Z clear and N == V", "the signed comparison result is greater than")
    LE = ("le", "Z set or N != V", "the signed comparison result is less than or equal")
    AL = ("al", "any flags", "always")
    NV = ("nv", "any flags", "always")

    def __init__(self, token, flags, phrase):
        self.token = token
        self.flags = flags
        self.phrase = phrase

    @property
    def is_always(self) -> bool:
        return self in (Condition.AL, Condition.NV)

    @classmethod
    def lookup(cls, token):
        """Returns the Condition for eq, NE, hs, lo... or None."""
        if not token:
            return None
        return _CONDITIONS.get(token.strip().lower())


_CONDITIONS = {c.token: c for c in Condition}
_CONDITIONS.update({"hs": Condition.CS, "lo": Condition.CC})


class ShiftKind(Enum):
    LSL = "lsl"
    LSR = "lsr"
    ASR = "asr"
    ROR = "ror"
    MSL = "msl"
    UXTB = "uxtb"
    UXTH = "uxth"
    UXTW = "uxtw"
    UXTX = "uxtx"
    SXTB = "sxtb"
    SXTH = "sxth"
    SXTW = "sxtw"
    SXTX = "sxtx"

    @property
    def is_extend(self) -> bool:
        return self.value[1:3] == "xt"

    @property
    def signed(self) -> bool:
        return self.value.startswith("s")

    @property
    def source_width(self) -> int:
        """Width in bits of the value an extend reads."""
        return {"b": 8, "h": 16, "w": 32, "x": 64}.get(self.value[-1], 64)


class IndexMode(Enum):
    BASE = "base"
    BASE_OFFSET = "base-offset"
    PRE_INDEX = "pre-index"
    POST_INDEX = "post-index"
    REGISTER_OFFSET = "register-offset"
    EXTENDED_REGISTER = "extended-register"


@dataclass(frozen=True)
class Immediate:
    """
    An immediate value. value is None for symbolic immediates such as
    #:lo12:counter which are only known after relocation.
    """
    value: Optional[Union[int, float]]
    text: str

    @property
    def display(self) -> str:
        return self.text[1:] if self.text.startswith("#") else self.text


@dataclass(frozen=True)
class ShiftOrExtend:
    kind: ShiftKind
    amount: int = 0
    text: str = ""


@dataclass(frozen=True)
class AddressingExpression:
    base: Register
    mode: IndexMode
    offset: Optional[Immediate] = None
    index: Optional[Register] = None
    extend: Optional[ShiftOrExtend] = None
    text: str = ""

    @property
    def writeback(self) -> bool:
        return self.mode in (IndexMode.PRE_INDEX, IndexMode.POST_INDEX)


@dataclass(frozen=True)
class ConditionOperand:
    condition: Condition
    text: str = ""


@dataclass(frozen=True)
class Target:
    """A branch or PC-relative target as printed by objdump: 1c <main+0x1c>."""
    address: Optional[int]
    symbol: Optional[str]
    text: str

    @property
    def base_symbol(self):
        """The symbol without any +0x.. offset."""
        if not self.symbol:
            return None
        return re.split(r"[+-]0x", self.symbol, maxsplit=1)[0]


@dataclass(frozen=True)
class Label:
    name: str


@dataclass(frozen=True)
class RawOperand:
    """
    Syntactically valid operand outside the modeled set, such as SIMD
    arrangements (v0.4s), lanes (v1.s[2]) and register lists ({v0.16b, v1.16b}).
    """
    text: str


Operand = Union[
    Register, Immediate, AddressingExpression, ConditionOperand, ShiftOrExtend, Target, Label, RawOperand
]


class OperandKind(Enum):
    REGISTER = "reg"
    IMMEDIATE = "imm"
    ADDRESS = "mem"
    CONDITION = "cond"
    SHIFT = "shift"
    TARGET = "target"
    LABEL = "label"
    RAW = "raw"


_KIND_BY_TYPE = {
    Register: OperandKind.REGISTER,
    Immediate: OperandKind.IMMEDIATE,
    AddressingExpression: OperandKind.ADDRESS,
    ConditionOperand: OperandKind.CONDITION,
    ShiftOrExtend: OperandKind.SHIFT,
    Target: OperandKind.TARGET,
    Label: OperandKind.LABEL,
    RawOperand: OperandKind.RAW,
}


def operand_kind(operand) -> OperandKind:
    return _KIND_BY_TYPE[type(operand)]


def operand_signature(operands) -> str:
    """Comma separated operand kinds, e.g. reg,reg,imm."""
    return ",".join(operand_kind(op).value for op in operands)


SHIFT_RE = re.compile(
    r"^(?P<kind>lsl|lsr|asr|ror|msl|[us]xt[bhwx])(?:\s+#?(?P<amount>-?(?:0x[0-9a-f]+|\d+)))?$",
    re.IGNORECASE,
)
TARGET_RE = re.compile(
    r"^(?P<addr>0x[0-9a-f]+|[0-9][0-9a-f]*|[0-9a-f]+(?=\s+<))(?:\s+<(?P<sym>.+)>)?$",
    re.IGNORECASE,
)
SYMBOL_ONLY_RE = re.compile(r"^<(?P<sym>.+)>$")
RAW_RE = re.compile(
    r"^(?:\{.*\}(?:\[\d+\])?|[vzp]\d+\.\w+(?:\[\d+\])?|[bhsdqvz]\d+\[\d+\]|p\d+/[zm])$",
    re.IGNORECASE,
)
LABEL_RE = re.compile(r"^[A-Za-z_.$][\w.$@]*$")
SYMBOLIC_IMMEDIATE_RE = re.compile(r"^:[\w]+:.+$")

_OPENERS = "[{<("
_CLOSERS = "]}>)"


def split_operands(text):
    """
    Splits operand text on commas that are not nested inside brackets,
    braces or angle brackets. Both ", " and "," separators are accepted.

    Raises:
        MalformedLine: when brackets are unbalanced.
    """
    if not text or not text.strip():
        return []
    parts = []
    current = []
    depth = 0
    for ch in text:
        if ch in _OPENERS:
            depth += 1
        elif ch in _CLOSERS:
            depth -= 1
            if depth < 0:
                raise MalformedLine("unbalanced brackets", text)
        if ch == "," and depth == 0:
            parts.append("".join(current).strip())
            current = []
            continue
        current.append(ch)
    if depth != 0:
        raise MalformedLine("unbalanced brackets", text)
    parts.append("".join(current).strip())
    return parts


def parse_number(text):
    """
    Parses an integer literal in decimal, hex (0x) or binary (0b) notation,
    with an optional sign. Falls back to a float for literals such as 1.5e+00.

    Raises:
        ValueError: when the text is not a number.
    """
    s = text.strip().lower()
    sign = 1
    if s[:1] in ("+", "-"):
        sign = -1 if s[0] == "-" else 1
        s = s[1:]
    if s.startswith("0x"):
        return sign * int(s[2:], 16)
    if s.startswith("0b"):
        return sign * int(s[2:], 2)
    if s.isdigit():
        return sign * int(s, 10)
    return sign * float(s)


def parse_immediate(text):
    literal = text.strip()
    body = literal[1:].strip() if literal.startswith("#") else literal
    if SYMBOLIC_IMMEDIATE_RE.match(body):
        return Immediate(None, literal)
    try:
        return Immediate(parse_number(body), literal)
    except ValueError as e:
        raise MalformedLine("invalid immediate", literal) from e


def parse_shift(text):
    """Parses lsl #3, sxtw #2 or a bare uxtw. An omitted amount is 0."""
    m = SHIFT_RE.match(text.strip())
    if not m:
        return None
    amount = m.group("amount")
    return ShiftOrExtend(
        ShiftKind(m.group("kind").lower()),
        int(parse_number(amount)) if amount else 0,
        text.strip(),
    )


def _address_register(text, literal):
    reg = lookup_register(text)
    if reg is None or reg.kind in (RegisterKind.VECTOR, RegisterKind.PROGRAM_COUNTER):
        raise MalformedLine("invalid address register", literal)
    return reg


def parse_address(text):
    """
    Parses a bracketed addressing expression: [xn], [xn, #imm], [xn, #imm]!,
    [xn, xm], [xn, xm, lsl #3] or [xn, wm, sxtw #2]. Post-indexed forms are
    folded in by parse_operands since the offset follows the brackets.
    """
    literal = text.strip()
    pre_index = literal.endswith("!")
    body = literal[:-1].rstrip() if pre_index else literal
    if not (body.startswith("[") and body.endswith("]")):
        raise MalformedLine("invalid addressing expression", literal)
    parts = split_operands(body[1:-1])
    if not parts or any(not p for p in parts) or len(parts) > 3:
        raise MalformedLine("invalid addressing expression", literal)
    base = _address_register(parts[0], literal)
    if len(parts) == 1:
        if pre_index:
            raise MalformedLine("pre-index without offset", literal)
        return AddressingExpression(base, IndexMode.BASE, text=literal)
    second = parts[1]
    if second.startswith("#"):
        if len(parts) != 2:
            raise MalformedLine("invalid addressing expression", literal)
        mode = IndexMode.PRE_INDEX if pre_index else IndexMode.BASE_OFFSET
        return AddressingExpression(base, mode, offset=parse_immediate(second), text=literal)
    if pre_index:
        raise MalformedLine("pre-index with register offset", literal)
    index = _address_register(second, literal)
    if len(parts) == 2:
        return AddressingExpression(base, IndexMode.REGISTER_OFFSET, index=index, text=literal)
    extend = parse_shift(parts[2])
    if extend is None:
        raise MalformedLine("invalid index extend", literal)
    mode = IndexMode.EXTENDED_REGISTER if extend.kind.is_extend else IndexMode.REGISTER_OFFSET
    return AddressingExpression(base, mode, index=index, extend=extend, text=literal)


def parse_operand(text):
    """
    Turns one operand piece into an operand object.

    Raises:
        MalformedLine: when the piece fits no operand form.
    """
    token = text.strip()
    if not token:
        raise MalformedLine("empty operand", text)
    if token.startswith("["):
        return parse_address(token)
    if token.startswith("#"):
        return parse_immediate(token)
    if reg := lookup_register(token):
        return reg
    if cond := Condition.lookup(token):
        return ConditionOperand(cond, token)
    if shift := parse_shift(token):
        return shift
    if m := TARGET_RE.match(token):
        return Target(int(m.group("addr"), 16), m.group("sym"), token)
    if m := SYMBOL_ONLY_RE.match(token):
        return Target(None, m.group("sym"), token)
    if RAW_RE.match(token):
        return RawOperand(token)
    if LABEL_RE.match(token):
        return Label(token)
    raise MalformedLine("unrecognized operand", token)


def parse_operands(text):
    """
    Parses a complete operand list.

    A post-indexed access prints its offset after the brackets, as in
    [sp], #16 or [x0], x2. That trailing piece is folded into the preceding
    addressing expression with mode POST_INDEX.
    """
    operands = [parse_operand(p) for p in split_operands(text)]
    if (
        len(operands) >= 2
        and isinstance(operands[-2], AddressingExpression)
        and operands[-2].mode == IndexMode.BASE
        and isinstance(operands[-1], (Immediate, Register))
    ):
        addr, post = operands[-2], operands[-1]
        if isinstance(post, Immediate):
            folded = AddressingExpression(
                addr.base, IndexMode.POST_INDEX, offset=post, text=f"{addr.text}, {post.text}"
            )
        else:
            folded = AddressingExpression(
                addr.base, IndexMode.POST_INDEX, index=post, text=f"{addr.text}, {post.name}"
            )
        operands[-2:] = [folded]
    return tuple(operands)
