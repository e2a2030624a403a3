import pytest

from a64lens.lib.isa import (
    MALFORMED,
    UNCLASSIFIED,
    Category,
    Classification,
    InstructionSet,
    classify,
    load_instruction_set,
    split_mnemonic,
)
from a64lens.lib.operands import Condition, parse_operands


@pytest.fixture
def isa():
    return load_instruction_set()


def test_bundled_table_loads(isa):
    assert len(isa) > 150
    assert "ldr" in isa
    assert "LDR" in isa
    assert "frobnicate" not in isa
    for category in (
        Category.DATA_PROCESSING,
        Category.LOAD_STORE,
        Category.BRANCH,
        Category.COMPARE,
        Category.MOVE,
        Category.OTHER,
    ):
        assert isa.by_category(category)


def test_bundled_table_is_cached():
    assert load_instruction_set() is load_instruction_set()


def test_every_entry_has_a_form_or_summary(isa):
    for idef in isa:
        assert idef.form or idef.fact("summary"), idef.mnemonic


@pytest.mark.parametrize(
    "token, mnemonic, condition",
    [
        ("b.le", "b", Condition.LE),
        ("B.EQ", "b", Condition.EQ),
        ("b.hs", "b", Condition.CS),
        ("ldr", "ldr", None),
        (".inst", ".inst", None),
        ("fmov", "fmov", None),
    ],
)
def test_split_mnemonic(token, mnemonic, condition):
    assert split_mnemonic(token) == (mnemonic, condition)


def test_classify_categories(isa):
    assert classify("add", operands=parse_operands("x0, x1, x2"), isa=isa) == Classification(
        Category.DATA_PROCESSING, "arithmetic"
    )
    assert classify("str", operands=parse_operands("x0, [sp, #24]"), isa=isa).category == Category.LOAD_STORE
    assert classify("cmp", operands=parse_operands("w0, #1"), isa=isa).category == Category.COMPARE
    assert classify("mov", operands=parse_operands("x0, x1"), isa=isa).category == Category.MOVE
    assert classify("nop", isa=isa).category == Category.OTHER


def test_classify_conditional_branch(isa):
    cls = classify("b", Condition.LE, parse_operands("loop"), isa)
    assert cls == Classification(Category.BRANCH, "conditional")
    assert str(cls) == "Branch/conditional"
    assert classify("b", None, parse_operands("loop"), isa).group == "unconditional"


def test_classify_shape_override(isa):
    literal = classify("ldr", operands=parse_operands("x0, 1000 <table>"), isa=isa)
    assert literal == Classification(Category.LOAD_STORE, "literal")
    assert classify("ldr", operands=parse_operands("x0, [x1]"), isa=isa).group == "load"


def test_classify_unknown_mnemonic(isa):
    assert classify("frobnicate", isa=isa) == UNCLASSIFIED
    assert UNCLASSIFIED != MALFORMED


def test_substituted_instruction_set():
    isa = InstructionSet.from_entries(
        [
            {"mnemonic": "add", "name": "Add", "category": "data_processing", "group": "sum", "form": "binary"},
            {"mnemonic": "add", "name": "Duplicate", "category": "other", "group": "ignored"},
        ]
    )
    assert len(isa) == 1
    assert isa.lookup("add").name == "Add"
    assert classify("add", isa=isa) == Classification(Category.DATA_PROCESSING, "sum")
    assert classify("sub", isa=isa) == UNCLASSIFIED


def test_instruction_set_from_mapping_and_text():
    isa = InstructionSet.from_entries({"nop": {"category": "other", "group": "hint", "summary": "idle"}})
    assert isa.lookup("nop").fact("summary") == "idle"
    text = """
- mnemonic: nop
  category: other
  group: hint
---
- mnemonic: ret
  category: branch
  group: return
  form: return
"""
    isa = InstructionSet.from_text(text)
    assert isa.mnemonics() == ["nop", "ret"]
    assert isa.lookup("ret").form == "return"
    assert isa.lookup("nop").name == "NOP"


def test_invalid_category_rejected():
    with pytest.raises(ValueError):
        InstructionSet.from_entries([{"mnemonic": "add", "category": "arithmetic"}])
    with pytest.raises(ValueError):
        InstructionSet.from_entries([{"category": "other"}])


def test_definition_is_immutable(isa):
    idef = isa.lookup("add")
    with pytest.raises(TypeError):
        idef.facts["verb"] = "times"


def test_instruction_set_from_yaml_file(tmp_path):
    table = tmp_path / "custom.yml"
    table.write_text(
        "- mnemonic: nop\n  category: other\n  group: hint\n  summary: idle\n"
        "---\n"
        "- mnemonic: b\n  category: branch\n  group: unconditional\n  form: jump\n",
        encoding="utf-8",
    )
    isa = InstructionSet.from_yaml(table)
    assert isa.mnemonics() == ["nop", "b"]
    assert [d.mnemonic for d in isa.by_category(Category.BRANCH)] == ["b"]
    assert isa.by_category(Category.LOAD_STORE) == []
