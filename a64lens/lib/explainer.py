"""
Deterministic English explanations of classified instructions.

explain_operands() is a pure function of (mnemonic, condition, operands): it
dispatches on the instruction category and each handler reads the facts of the
mnemonic from the instruction table. Handlers raise UnmodeledOperandShape when
the operand pattern is outside what they describe, and a fallback sentence is
produced instead.
"""

from a64lens.lib.errors import UnmodeledOperandShape
from a64lens.lib.isa import Category, classify, load_instruction_set
from a64lens.lib.model import Explanation, ExplanationIssue
from a64lens.lib.operands import (
    AddressingExpression,
    ConditionOperand,
    Immediate,
    IndexMode,
    Label,
    RawOperand,
    ShiftKind,
    ShiftOrExtend,
    Target,
    operand_signature,
)
from a64lens.lib.registers import Register, RegisterKind, is_zero_register, register_role, resolve_alias
from a64lens.logger import LOG

SIZE_NAMES = {
    1: "1-byte (byte)",
    2: "2-byte (halfword)",
    4: "4-byte (word)",
    8: "8-byte (doubleword)",
    16: "16-byte (quadword)",
}

ORDERING_NOTES = {
    "acquire": "with acquire ordering, so later memory accesses are not performed before it",
    "release": "with release ordering, so earlier memory accesses are performed before it",
    "acquire-release": "with acquire and release ordering",
}

SHIFT_PHRASES = {
    ShiftKind.LSL: "shifted left by",
    ShiftKind.LSR: "shifted right logically by",
    ShiftKind.ASR: "shifted right arithmetically by",
    ShiftKind.ROR: "rotated right by",
    ShiftKind.MSL: "shifted left, filling with ones, by",
}

LINK_REGISTER = "x30 (link register)"


def operand_text(operand):
    """Original text of an operand."""
    if isinstance(operand, Register):
        return operand.name
    if isinstance(operand, Label):
        return operand.name
    return operand.text


def operands_text(operands):
    return ", ".join(operand_text(op) for op in operands)


def _unmodeled(idef, operands):
    return UnmodeledOperandShape(idef.mnemonic, operands_text(operands))


def _hex(value):
    return f"{value:#x}" if value >= 0 else f"-{-value:#x}"


def render_target(operand):
    if isinstance(operand, Target):
        if operand.symbol and operand.address is not None:
            return f"{operand.address:#x} <{operand.symbol}>"
        if operand.symbol:
            return f"<{operand.symbol}>"
        return f"{operand.address:#x}"
    if isinstance(operand, Label):
        return operand.name
    return operand_text(operand)


def render_shift(shift):
    """Describes a shift or extend qualifier, for example 'sign-extended from 32 bits'."""
    kind = shift.kind
    if kind.is_extend:
        text = f"{'sign' if kind.signed else 'zero'}-extended from {kind.source_width} bits"
        if shift.amount:
            text += f" and shifted left by {shift.amount}"
        return text
    return f"{SHIFT_PHRASES[kind]} {shift.amount}"


def render(operand):
    """Renders an operand that is read. Zero registers read as 0."""
    if isinstance(operand, Register):
        return "0" if is_zero_register(operand) else operand.name
    if isinstance(operand, Immediate):
        return operand.display
    if isinstance(operand, ConditionOperand):
        return operand.condition.token
    if isinstance(operand, ShiftOrExtend):
        return render_shift(operand)
    if isinstance(operand, (Target, Label)):
        return render_target(operand)
    if isinstance(operand, AddressingExpression):
        return effective_address(operand)
    return operand_text(operand)


def render_shifted(operand, shift):
    if shift is None:
        return render(operand)
    if not isinstance(shift, ShiftOrExtend):
        raise ValueError("not a shift")
    return f"({render(operand)} {render_shift(shift)})"


def render_destination(operand):
    """
    Names a written register. A w-register destination notes that the upper
    half of its x-register is cleared.
    """
    if isinstance(operand, RawOperand):
        return operand.text
    if not isinstance(operand, Register):
        raise ValueError("not a register")
    name = operand.name
    if role := register_role(operand):
        name = f"{name} ({role})"
    if (
        operand.is_32bit
        and operand.alias_of
        and operand.kind not in (RegisterKind.VECTOR, RegisterKind.ZERO)
    ):
        name = f"{name} (the upper 32 bits of {resolve_alias(operand).name} are cleared)"
    return name


def _register_bytes(register):
    return register.width // 8


def _offset_text(immediate):
    display = immediate.display
    return display if display.startswith("-") else f"+{display}"


def _index_text(addr):
    index = render(addr.index)
    extend = addr.extend
    if extend is None:
        return index
    if extend.kind.is_extend:
        index = f"({index} {'sign' if extend.kind.signed else 'zero'}-extended from {extend.kind.source_width} bits)"
    if extend.amount:
        return f"{index}*{1 << extend.amount}"
    return index


def effective_address(addr):
    """Address computed by an addressing expression, before any write-back."""
    base = addr.base.name
    if addr.mode == IndexMode.BASE_OFFSET:
        if addr.offset.value == 0:
            return base
        return f"{base}{_offset_text(addr.offset)}"
    if addr.mode in (IndexMode.REGISTER_OFFSET, IndexMode.EXTENDED_REGISTER):
        return f"{base}+{_index_text(addr)}"
    return base


def _update_text(addr):
    base = addr.base.name
    if addr.offset is not None:
        return f"{base}{_offset_text(addr.offset)}"
    return f"{base}+{render(addr.index)}"


def describe_access(address_operand, access):
    """
    Wraps a memory access phrase with the address computation.

    Args:
        address_operand: AddressingExpression, or a Target/Label for PC-relative
            literal accesses.
        access: Callable taking the address text and returning the access phrase.

    Returns:
        str. Pre-indexed forms update the base first, post-indexed forms after
        the access.
    """
    if isinstance(address_operand, (Target, Label)):
        return access(f"PC-relative address {render_target(address_operand)}")
    if not isinstance(address_operand, AddressingExpression):
        raise ValueError("not an address")
    base = address_operand.base.name
    if address_operand.mode == IndexMode.PRE_INDEX:
        return f"first update {base} to {_update_text(address_operand)}, then {access(f'address {base}')}"
    if address_operand.mode == IndexMode.POST_INDEX:
        return f"{access(f'address {base}')}, then update {base} to {_update_text(address_operand)}"
    return access(f"address {effective_address(address_operand)}")


def _condition_text(condition):
    return f"{condition.phrase} ({condition.flags})"


def _with_note(expr, idef):
    if extra := idef.fact("extra"):
        expr = f"{expr} {extra}"
    if note := idef.fact("note"):
        expr = f"{expr} ({note})"
    return expr


def _store_result(idef, dest, expr):
    flags = idef.fact("flags", False)
    if is_zero_register(dest):
        if flags:
            return f"update the condition flags from {expr}; the result is discarded by {dest.name}"
        return f"no observable effect: {expr} is discarded by {dest.name}"
    text = f"compute {expr}, store into {render_destination(dest)}"
    if flags:
        text += " and update the condition flags"
    return text


def _destination(idef, operands):
    dest = operands[0]
    if not isinstance(dest, (Register, RawOperand)):
        raise _unmodeled(idef, operands)
    return dest


def _trailing_shift(idef, operands, count):
    """Returns the optional shift/extend qualifier following count operands."""
    if len(operands) == count:
        return None
    if len(operands) == count + 1 and isinstance(operands[-1], ShiftOrExtend):
        return operands[-1]
    raise _unmodeled(idef, operands)


def _explain_data_processing(idef, condition, operands):
    form = idef.form
    if not operands:
        raise _unmodeled(idef, operands)
    dest = _destination(idef, operands)
    if form == "binary":
        if len(operands) < 3:
            raise _unmodeled(idef, operands)
        shift = _trailing_shift(idef, operands, 3)
        expr = f"{render(operands[1])} {idef.fact('verb')} {render_shifted(operands[2], shift)}"
        return _store_result(idef, dest, _with_note(expr, idef))
    if form == "unary":
        if len(operands) < 2:
            raise _unmodeled(idef, operands)
        shift = _trailing_shift(idef, operands, 2)
        expr = f"{idef.fact('verb')} {render_shifted(operands[1], shift)}"
        return _store_result(idef, dest, _with_note(expr, idef))
    if form == "multiply_accumulate":
        if len(operands) != 4:
            raise _unmodeled(idef, operands)
        a, b, c = (render(op) for op in operands[1:])
        expr = f"{c} {idef.fact('verb')} {a} multiplied by {b}"
        return _store_result(idef, dest, _with_note(expr, idef))
    if form in ("select", "set", "conditional_unary"):
        return _explain_conditional_select(idef, dest, operands)
    raise _unmodeled(idef, operands)


def _explain_conditional_select(idef, dest, operands):
    cond_operand = operands[-1]
    if not isinstance(cond_operand, ConditionOperand):
        raise _unmodeled(idef, operands)
    cond = _condition_text(cond_operand.condition)
    form = idef.form
    if form == "select" and len(operands) == 4:
        chosen = render(operands[1])
        alternative = idef.fact("alternative", "{}").format(render(operands[2]))
    elif form == "conditional_unary" and len(operands) == 3:
        alternative = render(operands[1])
        chosen = idef.fact("result", "{}").format(alternative)
    elif form == "set" and len(operands) == 2:
        chosen, alternative = idef.fact("value", "1"), "0"
    else:
        raise _unmodeled(idef, operands)
    if is_zero_register(dest):
        return f"no observable effect: the selected value is discarded by {dest.name}"
    return f"if {cond}, store {chosen} into {render_destination(dest)}, otherwise store {alternative}"


def _explain_move(idef, condition, operands):
    form = idef.form
    if not operands:
        raise _unmodeled(idef, operands)
    dest = _destination(idef, operands)
    if is_zero_register(dest):
        return f"no observable effect: writes to {dest.name} are discarded"
    target = render_destination(dest)
    if form == "copy":
        if len(operands) != 2:
            raise _unmodeled(idef, operands)
        src = operands[1]
        if isinstance(src, Immediate) or is_zero_register(src):
            return f"set {target} to {render(src)}"
        return f"copy {render(src)} into {target}"
    if form == "not":
        shift = _trailing_shift(idef, operands, 2)
        return f"store the bitwise NOT of {render_shifted(operands[1], shift)} into {target}"
    if form in ("movz", "movk", "movn"):
        return _explain_move_wide(idef, dest, target, operands)
    raise _unmodeled(idef, operands)


def _explain_move_wide(idef, dest, target, operands):
    imm = operands[1] if len(operands) > 1 else None
    if not isinstance(imm, Immediate) or not isinstance(imm.value, int) or not isinstance(dest, Register):
        raise _unmodeled(idef, operands)
    shift = _trailing_shift(idef, operands, 2)
    amount = shift.amount if shift else 0
    if shift is not None and shift.kind != ShiftKind.LSL:
        raise _unmodeled(idef, operands)
    value = imm.value << amount
    shifted = f"{imm.display} shifted left by {amount}" if amount else imm.display
    if idef.form == "movz":
        if amount:
            return f"set {target} to {_hex(value)} ({shifted}), clearing all other bits"
        return f"set {target} to {imm.display}, clearing all other bits"
    if idef.form == "movk":
        return f"insert {imm.display} into bits {amount} to {amount + 15} of {target}, keeping the other bits"
    mask = (1 << dest.width) - 1
    inverted = ~value & mask
    signed = inverted - (1 << dest.width) if inverted >> (dest.width - 1) else inverted
    return f"set {target} to the bitwise NOT of {shifted}, which is {_hex(inverted)} ({signed})"


def _explain_load_store(idef, condition, operands):
    form = idef.form
    if form == "single":
        return _explain_single(idef, operands)
    if form == "pair":
        return _explain_pair(idef, operands)
    if form == "exclusive":
        return _explain_exclusive(idef, operands)
    if form == "atomic":
        return _explain_atomic(idef, operands)
    if form == "compare_swap":
        return _explain_compare_swap(idef, operands)
    if form == "prefetch":
        if len(operands) != 2:
            raise _unmodeled(idef, operands)
        hint = render(operands[0])
        return describe_access(
            operands[1], lambda where: f"prefetch ({hint}) the memory at {where}; no register is written"
        )
    raise _unmodeled(idef, operands)


def _access_size(idef, register):
    size = idef.fact("size") or _register_bytes(register)
    if size not in SIZE_NAMES:
        raise ValueError(f"unsupported access size {size}")
    return size


def _ordered(idef, text):
    if note := ORDERING_NOTES.get(idef.fact("ordering")):
        return f"{text}, {note}"
    return text


def _load_phrase(idef, register, size, where):
    size_name = SIZE_NAMES[size]
    if is_zero_register(register):
        return f"load the {size_name} value at {where} and discard it ({register.name})"
    dest = render_destination(register)
    if idef.fact("signed"):
        return f"load the {size_name} value at {where}, sign-extend it to {register.width} bits and store into {dest}"
    if size * 8 < register.width and not register.is_vector:
        return f"load the {size_name} value at {where}, zero-extend it and store into {dest}"
    return f"load the {size_name} value at {where} into {dest}"


def _store_phrase(register, size, where):
    size_name = SIZE_NAMES[size]
    if is_zero_register(register):
        return f"store the {size_name} value 0 to {where}"
    if size * 8 < register.width:
        return f"store the low {size_name} part of {register.name} to {where}"
    return f"store the {size_name} value of {register.name} to {where}"


def _memory_operands(idef, operands, count):
    """Checks for count registers followed by one address operand."""
    if len(operands) != count + 1:
        raise _unmodeled(idef, operands)
    registers = operands[:count]
    if not all(isinstance(r, Register) for r in registers):
        raise _unmodeled(idef, operands)
    address = operands[count]
    if not isinstance(address, (AddressingExpression, Target, Label)):
        raise _unmodeled(idef, operands)
    return registers, address


def _explain_single(idef, operands):
    (register,), address = _memory_operands(idef, operands, 1)
    size = _access_size(idef, register)
    if idef.fact("direction") == "load":
        text = describe_access(address, lambda where: _load_phrase(idef, register, size, where))
    else:
        text = describe_access(address, lambda where: _store_phrase(register, size, where))
    return _ordered(idef, text)


def _explain_pair(idef, operands):
    (first, second), address = _memory_operands(idef, operands, 2)
    size = _access_size(idef, first)
    size_name = SIZE_NAMES[size]
    if idef.fact("direction") == "load":
        extend = f", sign-extend them to {first.width} bits" if idef.fact("signed") else ""
        names = " and ".join(
            f"{r.name} (discarded)" if is_zero_register(r) else render_destination(r) for r in (first, second)
        )
        text = describe_access(
            address,
            lambda where: f"load two consecutive {size_name} values at {where}{extend} and store them into {names}",
        )
    else:
        values = f"{render(first)} and {render(second)}"
        text = describe_access(
            address, lambda where: f"store the {size_name} values of {values} to consecutive locations at {where}"
        )
    return _ordered(idef, text)


def _explain_exclusive(idef, operands):
    if idef.fact("direction") == "load":
        (register,), address = _memory_operands(idef, operands, 1)
        size = _access_size(idef, register)
        text = describe_access(address, lambda where: _load_phrase(idef, register, size, where))
        return _ordered(idef, f"{text}, and mark the address for exclusive access")
    (status, register), address = _memory_operands(idef, operands, 2)
    size = _access_size(idef, register)
    text = describe_access(
        address,
        lambda where: f"if the address is still marked for exclusive access, {_store_phrase(register, size, where)}",
    )
    return _ordered(idef, f"{text}; write 0 to {status.name} on success or 1 on failure")


def _explain_atomic(idef, operands):
    if len(operands) == 3:
        (source, result), address = _memory_operands(idef, operands, 2)
    else:
        (source,), address = _memory_operands(idef, operands, 1)
        result = None
    size_name = SIZE_NAMES[_access_size(idef, source)]
    verb = idef.fact("verb", "update {value} with {src}")
    text = describe_access(
        address,
        lambda where: "atomically " + verb.format(src=render(source), value=f"the {size_name} value at {where}"),
    )
    if result is None or is_zero_register(result):
        text += "; the previous value is discarded"
    else:
        text += f"; the previous value is written to {render_destination(result)}"
    return _ordered(idef, text)


def _explain_compare_swap(idef, operands):
    (expected, new), address = _memory_operands(idef, operands, 2)
    size_name = SIZE_NAMES[_access_size(idef, expected)]
    text = describe_access(
        address,
        lambda where: (
            f"atomically compare the {size_name} value at {where} with {render(expected)} and, "
            f"if equal, replace it with {render(new)}"
        ),
    )
    if not is_zero_register(expected):
        text += f"; the previous value is written to {expected.name}"
    return _ordered(idef, text)


def _explain_branch(idef, condition, operands):
    form = idef.form
    if form == "jump" and len(operands) == 1:
        target = render_target(operands[0])
        if condition is not None and not condition.is_always:
            return f"if {_condition_text(condition)}, jump to {target}"
        return f"jump to {target}"
    if form == "call" and len(operands) == 1:
        return f"call {render_target(operands[0])}, saving the return address in {LINK_REGISTER}"
    if form in ("register_jump", "register_call") and len(operands) == 1 and isinstance(operands[0], Register):
        if form == "register_jump":
            return f"jump to the address in {operands[0].name}"
        return f"call the function at the address in {operands[0].name}, saving the return address in {LINK_REGISTER}"
    if form == "return":
        if not operands:
            return f"return to the address in {LINK_REGISTER}"
        if len(operands) == 1 and isinstance(operands[0], Register):
            return f"return to the address in {render_destination(operands[0])}"
    if form == "compare_branch" and len(operands) == 2 and isinstance(operands[0], Register):
        return _explain_zero_branch(idef, operands[0], None, operands[1])
    if form == "test_branch" and len(operands) == 3 and isinstance(operands[0], Register):
        bit = operands[1]
        if not isinstance(bit, Immediate) or not isinstance(bit.value, int):
            raise _unmodeled(idef, operands)
        return _explain_zero_branch(idef, operands[0], bit.value, operands[2])
    raise _unmodeled(idef, operands)


def _explain_zero_branch(idef, register, bit, target_operand):
    target = render_target(target_operand)
    on_zero = idef.fact("zero", True)
    tested = register.name if bit is None else f"bit {bit} of {register.name}"
    if is_zero_register(register):
        if on_zero:
            return f"always jump to {target} ({tested} is always zero)"
        return f"never jumps ({tested} is always zero); no observable effect"
    return f"if {tested} is {'zero' if on_zero else 'not zero'}, jump to {target}"


def _explain_compare(idef, condition, operands):
    verb = idef.fact("verb")
    if idef.form == "conditional_compare":
        if len(operands) != 4 or not isinstance(operands[3], ConditionOperand):
            raise _unmodeled(idef, operands)
        a, b, nzcv = (render(op) for op in operands[:3])
        cond = _condition_text(operands[3].condition)
        return (
            f"if {cond}, compare {a} with {b} (computes {a} {verb} {b}) and update the condition flags, "
            f"otherwise set the condition flags to {nzcv}; no register is written"
        )
    if len(operands) < 2:
        raise _unmodeled(idef, operands)
    shift = _trailing_shift(idef, operands, 2)
    a = render(operands[0])
    b = render_shifted(operands[1], shift)
    computed = f"{a} {verb} {b}"
    if note := idef.fact("note"):
        computed = f"{computed}, {note}"
    if idef.fact("action") == "test":
        lead = f"test {a} against {b}"
    else:
        lead = f"compare {a} with {b}"
    return f"{lead} (computes {computed}), update the condition flags; no register is written"


def _pick_summary(idef, operands):
    summary = idef.fact("summary")
    if isinstance(summary, dict):
        summary = summary.get(operand_signature(operands), summary.get("*"))
    if not summary:
        raise _unmodeled(idef, operands)
    return summary


def _explain_template(idef, condition, operands):
    summary = _pick_summary(idef, operands)
    rendered = [render(op) for op in operands]
    if idef.fact("writes_dest", False) and operands and isinstance(operands[0], Register):
        if is_zero_register(operands[0]):
            return f"no observable effect: the result is discarded by {operands[0].name}"
        rendered[0] = render_destination(operands[0])
    try:
        return summary.format(*rendered)
    except (IndexError, KeyError) as e:
        raise _unmodeled(idef, operands) from e


HANDLERS = {
    Category.DATA_PROCESSING: _explain_data_processing,
    Category.LOAD_STORE: _explain_load_store,
    Category.BRANCH: _explain_branch,
    Category.COMPARE: _explain_compare,
    Category.MOVE: _explain_move,
    Category.OTHER: _explain_template,
}


def _mnemonic_text(mnemonic, condition):
    return f"{mnemonic}.{condition.token}" if condition else mnemonic


def explain_operands(mnemonic, condition=None, operands=(), isa=None):
    """
    Explains an instruction from its mnemonic, condition suffix and operands.

    Args:
        mnemonic (str): Base mnemonic.
        condition (Condition): Condition suffix or None.
        operands (tuple): Parsed operands.
        isa (InstructionSet): Instruction table. Defaults to the bundled table.

    Returns:
        Explanation
    """
    isa = isa or load_instruction_set()
    shown = _mnemonic_text(mnemonic, condition)
    idef = isa.lookup(mnemonic)
    if idef is None:
        text = f"{shown} {operands_text(operands)}".rstrip()
        return Explanation(
            f"{text}: instruction not in the modeled set", ExplanationIssue.UNKNOWN_MNEMONIC
        )
    classification = classify(mnemonic, condition, operands, isa)
    handler = HANDLERS.get(classification.category, _explain_template)
    if idef.form == "template":
        handler = _explain_template
    try:
        return Explanation(handler(idef, condition, operands))
    except (UnmodeledOperandShape, ValueError) as e:
        LOG.debug(f"{shown}: {e}")
        ops = operands_text(operands) or "no operands"
        return Explanation(
            f"{shown} ({idef.name}) with {ops}: operand shape not modeled",
            ExplanationIssue.UNMODELED_SHAPE,
        )


def explain(instruction, isa=None):
    """Explains a parsed Instruction. Malformed lines get a raw marker sentence."""
    if instruction.is_malformed:
        return Explanation(f"unparsed instruction line: {instruction.text}", ExplanationIssue.MALFORMED)
    return explain_operands(instruction.mnemonic, instruction.condition, instruction.operands, isa)


def annotate(dump, isa=None):
    """
    Attaches an explanation to every instruction of a dump that has none yet
    and records the fallback counts in dump.stats.

    Returns:
        The same Dump.
    """
    isa = isa or load_instruction_set()
    unmodeled = unknown = 0
    for insn in dump.instructions():
        if insn.explanation is None:
            insn.set_explanation(explain(insn, isa))
        issue = insn.explanation.issue
        if issue == ExplanationIssue.UNMODELED_SHAPE:
            unmodeled += 1
        elif issue == ExplanationIssue.UNKNOWN_MNEMONIC:
            unknown += 1
    dump.stats.unmodeled_operands = unmodeled
    dump.stats.unknown_mnemonics = unknown
    return dump
