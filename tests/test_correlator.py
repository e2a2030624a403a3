import pytest

from a64lens.lib.correlator import build_index, common_functions, correlate, correlate_common
from a64lens.lib.errors import FunctionNotFound
from a64lens.lib.model import Dump, Function


def make_dump(label, *names):
    return Dump(label=label, functions=[Function(name=n, label=label) for n in names])


@pytest.fixture
def dumps():
    return [make_dump("O0", "f", "g"), make_dump("O1", "f", "g", "h"), make_dump("O2", "f")]


def test_common_functions(dumps):
    assert common_functions(dumps) == ["f"]
    assert common_functions(dumps[:2]) == ["f", "g"]
    assert common_functions([]) == []


def test_common_functions_follow_first_dump_order():
    first = make_dump("a", "zeta", "alpha", "mid")
    second = make_dump("b", "mid", "alpha", "zeta")
    assert common_functions([first, second]) == ["zeta", "alpha", "mid"]


def test_common_functions_exact_name_match():
    assert common_functions([make_dump("a", "clamp"), make_dump("b", "clamp.part.0")]) == []


def test_correlate_reports_missing_per_dump(dumps):
    comparison = correlate(dumps, "g")
    assert comparison.labels == ["O0", "O1", "O2"]
    assert comparison.present_labels() == ["O0", "O1"]
    assert comparison.missing_labels() == ["O2"]
    assert comparison.functions["O2"] is None
    assert comparison.functions["O0"] is dumps[0].function("g")
    assert not comparison.in_all()


def test_correlate_absent_everywhere(dumps):
    comparison = correlate(dumps, "nope")
    assert comparison.present_labels() == []
    with pytest.raises(FunctionNotFound) as exc:
        correlate(dumps, "nope", require_match=True)
    assert exc.value.name == "nope"
    assert exc.value.labels == ("O0", "O1", "O2")


def test_duplicate_names_first_wins():
    first = Function(name="f", label="a")
    second = Function(name="f", label="a")
    dump = Dump(label="a", functions=[first, second])
    assert build_index([dump])["f"]["a"] is first
    assert correlate([dump], "f").functions["a"] is first


def test_correlate_common(dumps):
    comparisons = correlate_common(dumps)
    assert [c.name for c in comparisons] == ["f"]
    assert comparisons[0].in_all()
    assert comparisons[0].instruction_counts() == {"O0": 0, "O1": 0, "O2": 0}


def test_repeated_dump_labels_rejected():
    repeated = [make_dump("O2", "f", "g"), make_dump("O2", "f")]
    with pytest.raises(ValueError):
        common_functions(repeated)
    with pytest.raises(ValueError):
        build_index(repeated)
    with pytest.raises(ValueError):
        correlate(repeated, "f")
    with pytest.raises(ValueError):
        correlate_common(repeated)
