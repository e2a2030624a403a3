import pytest

from a64lens.lib.explainer import annotate, explain, explain_operands
from a64lens.lib.isa import InstructionSet, split_mnemonic
from a64lens.lib.model import ExplanationIssue
from a64lens.lib.operands import Condition, parse_operands
from a64lens.lib.parser import parse_dump, parse_instruction


def explain_text(line):
    """Explains 'mnemonic operands' text with the bundled table."""
    token, _, operand_text = line.partition(" ")
    mnemonic, condition = split_mnemonic(token)
    return explain_operands(mnemonic, condition, parse_operands(operand_text)).text


def test_store_base_offset():
    assert explain_text("str x0, [sp, #24]") == "store the 8-byte (doubleword) value of x0 to address sp+24"


def test_conditional_branch():
    text = explain_operands("b", Condition.LE, parse_operands("loop")).text
    assert text == "if the signed comparison result is less than or equal (Z set or N != V), jump to loop"


def test_conditional_branch_to_known_label():
    dump = annotate(parse_dump("0000000000001000 <loop>:\n    1000:\t54ffffed \tb.le\tloop"))
    (insn,) = dump.function("loop").instructions
    assert insn.explanation.text == (
        "if the signed comparison result is less than or equal (Z set or N != V), jump to 0x1000 <loop>"
    )


def test_pre_index_updates_base_before_access():
    text = explain_text("str x0, [sp, #-16]!")
    assert text == "first update sp to sp-16, then store the 8-byte (doubleword) value of x0 to address sp"
    assert text.index("update sp") < text.index("store")


def test_post_index_updates_base_after_access():
    text = explain_text("str x0, [sp], #16")
    assert text == "store the 8-byte (doubleword) value of x0 to address sp, then update sp to sp+16"
    assert text.index("store") < text.index("update sp")


def test_pair_accesses():
    assert explain_text("stp x29, x30, [sp, #-16]!") == (
        "first update sp to sp-16, then store the 8-byte (doubleword) values of x29 and x30 "
        "to consecutive locations at address sp"
    )
    assert explain_text("ldp x29, x30, [sp], #16") == (
        "load two consecutive 8-byte (doubleword) values at address sp and store them into "
        "x29 (frame pointer) and x30 (link register), then update sp to sp+16"
    )


@pytest.mark.parametrize(
    "line, expected",
    [
        ("ldrb w0, [x1]", "load the 1-byte (byte) value at address x1, zero-extend it and store into "
                          "w0 (the upper 32 bits of x0 are cleared)"),
        ("ldrsw x0, [x1, #4]", "load the 4-byte (word) value at address x1+4, sign-extend it to 64 bits "
                               "and store into x0"),
        ("ldr x2, [x0, x1, lsl #3]", "load the 8-byte (doubleword) value at address x0+x1*8 into x2"),
        ("ldr w2, [x0, w1, sxtw #2]", "load the 4-byte (word) value at address "
                                      "x0+(w1 sign-extended from 32 bits)*4 into w2 (the upper 32 bits "
                                      "of x2 are cleared)"),
        ("ldr x0, 1000 <table>", "load the 8-byte (doubleword) value at PC-relative address "
                                 "0x1000 <table> into x0"),
        ("strb w1, [x0]", "store the low 1-byte (byte) part of w1 to address x0"),
        ("stlr x1, [x0]", "store the 8-byte (doubleword) value of x1 to address x0, with release "
                          "ordering, so earlier memory accesses are performed before it"),
        ("stxr w2, x1, [x0]", "if the address is still marked for exclusive access, store the 8-byte "
                              "(doubleword) value of x1 to address x0; write 0 to w2 on success or 1 on failure"),
        ("ldadd w1, w2, [x0]", "atomically add w1 to the 4-byte (word) value at address x0; the previous "
                               "value is written to w2 (the upper 32 bits of x2 are cleared)"),
    ],
)
def test_load_store_forms(line, expected):
    assert explain_text(line) == expected


@pytest.mark.parametrize(
    "line, expected",
    [
        ("add w0, w1, w0", "compute w1 plus w0, store into w0 (the upper 32 bits of x0 are cleared)"),
        ("sub sp, sp, #0x10", "compute sp minus 0x10, store into sp (stack pointer)"),
        ("add x0, x1, x2, lsl #2", "compute x1 plus (x2 shifted left by 2), store into x0"),
        ("udiv x0, x1, x2", "compute x1 divided by x2 (unsigned, rounded toward zero), store into x0"),
        ("madd x0, x1, x2, x3", "compute x3 plus x1 multiplied by x2, store into x0"),
        ("cset w0, eq", "if the compared values are equal (Z set), store 1 into w0 (the upper 32 bits "
                        "of x0 are cleared), otherwise store 0"),
        ("ubfx w0, w1, #4, #8", "extract 8 bits of w1 starting at bit 4, zero-extend them and store into w0 "
                                "(the upper 32 bits of x0 are cleared)"),
    ],
)
def test_data_processing(line, expected):
    assert explain_text(line) == expected


def test_conditional_select_reads_zero_register_as_zero():
    assert explain_text("csel w0, w0, wzr, ge") == (
        "if the signed comparison result is greater than or equal (N == V), store w0 into "
        "w0 (the upper 32 bits of x0 are cleared), otherwise store 0"
    )


def test_zero_register_reads_and_writes():
    assert explain_text("add x0, x1, xzr") == "compute x1 plus 0, store into x0"
    assert explain_text("str xzr, [x0]") == "store the 8-byte (doubleword) value 0 to address x0"
    assert explain_text("add xzr, x1, x2") == "no observable effect: x1 plus x2 is discarded by xzr"
    assert explain_text("subs wzr, w0, #0x1") == (
        "update the condition flags from w0 minus 0x1; the result is discarded by wzr"
    )
    assert explain_text("mov wzr, w1") == "no observable effect: writes to wzr are discarded"
    assert explain_text("mov w0, wzr") == "set w0 (the upper 32 bits of x0 are cleared) to 0"
    for line in ("add xzr, x1, x2", "mov w0, wzr", "str xzr, [x0]"):
        assert "x31" not in explain_text(line)
        assert "sp" not in explain_text(line)


def test_template_destinations():
    assert explain_text("sxtw xzr, w0") == "no observable effect: the result is discarded by xzr"
    assert explain_text("uxtb wzr, w1") == "no observable effect: the result is discarded by wzr"
    assert explain_text("adr xzr, 1000 <f>") == "no observable effect: the result is discarded by xzr"
    assert explain_text("ubfx wzr, w1, #4, #8") == "no observable effect: the result is discarded by wzr"
    assert explain_text("uxth w0, w1") == (
        "zero-extend the low 16 bits of w1 and store into w0 (the upper 32 bits of x0 are cleared)"
    )
    assert explain_text("mrs x30, tpidr_el0") == "read the system register tpidr_el0 into x30 (link register)"
    assert explain_text("fcvtzs w0, d1") == (
        "convert the floating-point value d1 to a signed integer, rounding toward zero, "
        "and store into w0 (the upper 32 bits of x0 are cleared)"
    )
    assert explain_text("msr tpidr_el0, xzr") == "write 0 into the system register tpidr_el0"


def test_moves():
    assert explain_text("mov x29, sp") == "copy sp into x29 (frame pointer)"
    assert explain_text("mov w0, #0x64") == "set w0 (the upper 32 bits of x0 are cleared) to 0x64"
    assert explain_text("movk x0, #0x1234, lsl #16") == (
        "insert 0x1234 into bits 16 to 31 of x0, keeping the other bits"
    )
    assert explain_text("movz x0, #0x1, lsl #16") == (
        "set x0 to 0x10000 (0x1 shifted left by 16), clearing all other bits"
    )
    assert explain_text("movn x0, #0x0") == (
        "set x0 to the bitwise NOT of 0x0, which is 0xffffffffffffffff (-1)"
    )


@pytest.mark.parametrize(
    "line, expected",
    [
        ("bl 0 <add_numbers>", "call 0x0 <add_numbers>, saving the return address in x30 (link register)"),
        ("b 8 <clamp.part.0>", "jump to 0x8 <clamp.part.0>"),
        ("ret", "return to the address in x30 (link register)"),
        ("br x16", "jump to the address in x16"),
        ("cbz w0, 20 <f+0x20>", "if w0 is zero, jump to 0x20 <f+0x20>"),
        ("cbnz w0, 20 <f+0x20>", "if w0 is not zero, jump to 0x20 <f+0x20>"),
        ("tbz w0, #3, 20 <f+0x20>", "if bit 3 of w0 is zero, jump to 0x20 <f+0x20>"),
        ("cbz xzr, 10 <f+0x10>", "always jump to 0x10 <f+0x10> (xzr is always zero)"),
        ("cbnz wzr, 10 <f+0x10>", "never jumps (wzr is always zero); no observable effect"),
    ],
)
def test_branches(line, expected):
    assert explain_text(line) == expected


def test_compares():
    assert explain_text("cmp w0, #0x64") == (
        "compare w0 with 0x64 (computes w0 minus 0x64), update the condition flags; no register is written"
    )
    assert explain_text("tst w0, #0x1") == (
        "test w0 against 0x1 (computes w0 AND 0x1), update the condition flags; no register is written"
    )
    assert explain_text("ccmp x0, #0x2, #0x4, ne") == (
        "if the compared values are not equal (Z clear), compare x0 with 0x2 (computes x0 minus 0x2) "
        "and update the condition flags, otherwise set the condition flags to 0x4; no register is written"
    )


def test_templates():
    assert explain_text("nop") == "do nothing"
    assert explain_text("adrp x0, 11000 <counter>") == (
        "set x0 to the address of the 4KB page containing 0x11000 <counter>"
    )
    assert explain_text("sxtw x0, w1") == "sign-extend the 32-bit value of w1 to 64 bits and store into x0"


def test_unknown_mnemonic_fallback():
    explanation = explain_operands("frobnicate", None, parse_operands("x0"))
    assert explanation.text == "frobnicate x0: instruction not in the modeled set"
    assert explanation.issue == ExplanationIssue.UNKNOWN_MNEMONIC
    assert explanation.is_fallback


def test_unmodeled_operand_shape_fallback():
    explanation = explain_operands("add", None, parse_operands("x0"))
    assert explanation.text == "add (Add) with x0: operand shape not modeled"
    assert explanation.issue == ExplanationIssue.UNMODELED_SHAPE
    explanation = explain_operands("ubfx", None, parse_operands("w0, w1"))
    assert explanation.issue == ExplanationIssue.UNMODELED_SHAPE
    assert explain_operands("ret", None, parse_operands("#1")).issue == ExplanationIssue.UNMODELED_SHAPE


def test_explanation_is_deterministic():
    operands = parse_operands("x29, x30, [sp, #-32]!")
    assert explain_operands("stp", None, operands) == explain_operands("stp", None, operands)


def test_malformed_instruction_explanation():
    dump = parse_dump("   0:\tzzzz \tnop")
    insn = next(dump.instructions())
    explanation = explain(insn)
    assert explanation.issue == ExplanationIssue.MALFORMED
    assert explanation.text.startswith("unparsed instruction line:")


def test_set_explanation_only_once():
    insn = parse_instruction(0, "\td503201f \tnop")
    insn.set_explanation(explain(insn))
    assert insn.explanation.text == "do nothing"
    with pytest.raises(AttributeError):
        insn.set_explanation("something else")


def test_annotate_is_idempotent():
    text = "\n".join(
        [
            "0 <f>:",
            "   0:\t8b020020 \tadd\tx0, x1, x2",
            "   4:\t12345678 \tadd\tx0",
            "   8:\t12345678 \tfrobnicate\tx0",
            "   c:\td65f03c0 \tret",
        ]
    )
    dump = annotate(parse_dump(text))
    first = [i.explanation for i in dump.instructions()]
    assert dump.stats.unmodeled_operands == 1
    assert dump.stats.unknown_mnemonics == 1
    assert dump.stats.coverage == 0.5
    annotate(dump)
    assert [i.explanation for i in dump.instructions()] == first
    assert dump.stats.unmodeled_operands == 1
    assert dump.stats.unknown_mnemonics == 1


def test_substituted_instruction_set_explanations():
    isa = InstructionSet.from_entries(
        [{"mnemonic": "nop", "category": "other", "group": "hint", "summary": "idle for a cycle"}]
    )
    assert explain_operands("nop", isa=isa).text == "idle for a cycle"
    assert explain_operands("ret", isa=isa).issue == ExplanationIssue.UNKNOWN_MNEMONIC
