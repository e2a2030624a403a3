"""
Closed AArch64 instruction-set model and table driven classifier.

The instruction set is read once from the bundled instructions.yml (one YAML
document per category, like the rule files) into an immutable InstructionSet.
Callers pass an InstructionSet explicitly where they need a different one;
load_instruction_set() is only the default.
"""

import contextlib
import importlib.resources
from dataclasses import dataclass, field
from enum import Enum
from functools import lru_cache
from types import MappingProxyType
from typing import Optional

import yaml

from a64lens.lib.operands import Condition, operand_signature
from a64lens.logger import LOG


class Category(Enum):
    DATA_PROCESSING = "data_processing"
    LOAD_STORE = "load_store"
    BRANCH = "branch"
    COMPARE = "compare"
    MOVE = "move"
    OTHER = "other"
    MALFORMED = "malformed"

    @property
    def title(self) -> str:
        return {
            Category.DATA_PROCESSING: "DataProcessing",
            Category.LOAD_STORE: "LoadStore",
            Category.BRANCH: "Branch",
            Category.COMPARE: "Compare",
            Category.MOVE: "Move",
            Category.OTHER: "Other",
            Category.MALFORMED: "Malformed",
        }[self]


@dataclass(frozen=True)
class Classification:
    category: Category
    group: str

    def __str__(self):
        return f"{self.category.title}/{self.group}"


UNCLASSIFIED = Classification(Category.OTHER, "unclassified")
MALFORMED = Classification(Category.MALFORMED, "raw")

# Keys of an instruction entry that are not explanation facts
_ENTRY_KEYS = ("mnemonic", "name", "category", "group", "shapes")


@dataclass(frozen=True)
class InstructionDef:
    """
    One row of the instruction table.

    Attributes:
        mnemonic (str): Base mnemonic, lower case.
        name (str): Human readable instruction name.
        category (Category): Primary category.
        group (str): Group inside the category.
        facts (Mapping): Template facts read by the explainer (form, verb,
            direction, size, signed, flags, summary...).
        shapes (Mapping): Operand signature to Classification overrides for
            mnemonics whose meaning depends on the operand shape.
    """
    mnemonic: str
    name: str
    category: Category
    group: str
    facts: MappingProxyType = field(default_factory=lambda: MappingProxyType({}), compare=False)
    shapes: MappingProxyType = field(default_factory=lambda: MappingProxyType({}), compare=False)

    @property
    def classification(self) -> Classification:
        return Classification(self.category, self.group)

    @property
    def form(self) -> str:
        return self.facts.get("form", "")

    def fact(self, key, default=None):
        return self.facts.get(key, default)


def _parse_category(value, mnemonic):
    try:
        return Category(str(value).lower())
    except ValueError as e:
        raise ValueError(f"Unknown category {value!r} for instruction {mnemonic!r}") from e


def _parse_shapes(shapes, category, mnemonic):
    parsed = {}
    for signature, override in (shapes or {}).items():
        if isinstance(override, str):
            override = {"group": override}
        parsed[str(signature)] = Classification(
            _parse_category(override.get("category", category.value), mnemonic),
            override.get("group", "unclassified"),
        )
    return MappingProxyType(parsed)


def make_definition(entry):
    """Builds an InstructionDef from one table entry."""
    mnemonic = str(entry.get("mnemonic", "")).strip().lower()
    if not mnemonic:
        raise ValueError(f"Instruction entry without mnemonic: {entry!r}")
    category = _parse_category(entry.get("category", "other"), mnemonic)
    facts = {k: v for k, v in entry.items() if k not in _ENTRY_KEYS}
    return InstructionDef(
        mnemonic=mnemonic,
        name=entry.get("name", mnemonic.upper()),
        category=category,
        group=entry.get("group", "unclassified"),
        facts=MappingProxyType(facts),
        shapes=_parse_shapes(entry.get("shapes"), category, mnemonic),
    )


class InstructionSet:
    """Immutable mnemonic to InstructionDef table."""

    def __init__(self, definitions):
        table = {}
        for idef in definitions:
            if idef.mnemonic in table:
                LOG.debug(f"Duplicate instruction entry {idef.mnemonic}. Keeping the first one.")
                continue
            table[idef.mnemonic] = idef
        self._table = MappingProxyType(table)

    @classmethod
    def from_entries(cls, entries):
        """
        Builds an instruction set from raw entries.

        Args:
            entries: Iterable of dicts, or a mapping of mnemonic to dict.

        Returns:
            InstructionSet
        """
        if isinstance(entries, dict):
            entries = [{"mnemonic": k, **(v or {})} for k, v in entries.items()]
        return cls(make_definition(e) for e in entries)

    @classmethod
    def from_text(cls, text):
        """Builds an instruction set from multi-document YAML text."""
        entries = []
        for tmp_data in text.split("---"):
            if not tmp_data.strip():
                continue
            doc_entries = yaml.safe_load(tmp_data)
            if doc_entries:
                entries.extend(doc_entries)
        return cls.from_entries(entries)

    @classmethod
    def from_yaml(cls, path):
        with open(path, encoding="utf-8") as fp:
            return cls.from_text(fp.read())

    def lookup(self, mnemonic) -> Optional[InstructionDef]:
        if not mnemonic:
            return None
        return self._table.get(mnemonic.lower())

    def by_category(self, category):
        return [s for s in self._table.values() if s.category == category]

    def mnemonics(self):
        return list(self._table)

    def __contains__(self, mnemonic):
        return self.lookup(mnemonic) is not None

    def __len__(self):
        return len(self._table)

    def __iter__(self):
        return iter(self._table.values())


def get_resource(package, resource):
    """Return a file handle on a named resource in a Package."""
    return importlib.resources.files(package).joinpath(resource).open("r", encoding="utf-8")


@lru_cache(maxsize=1)
def load_instruction_set():
    """Loads the bundled instruction table. Built once per process."""
    with get_resource("a64lens.data", "instructions.yml") as fp:
        isa = InstructionSet.from_text(fp.read())
    LOG.debug(f"Loaded {len(isa)} instruction definitions")
    return isa


def split_mnemonic(token):
    """
    Splits a mnemonic token into its base mnemonic and condition suffix.

    b.le gives ("b", Condition.LE) and B.EQ gives ("b", Condition.EQ). Tokens
    without a dotted condition suffix, such as ldr or .inst, are returned
    lower-cased with no condition.
    """
    token = token.strip().lower()
    base, sep, suffix = token.rpartition(".")
    if sep and base and (cond := Condition.lookup(suffix)):
        return base, cond
    return token, None


def classify(mnemonic, condition=None, operands=(), isa=None):
    """
    Returns the Classification of an instruction.

    Unknown mnemonics are classified as Other/unclassified.
    """
    isa = isa or load_instruction_set()
    idef = isa.lookup(mnemonic)
    if idef is None:
        return UNCLASSIFIED
    if idef.shapes:
        with contextlib.suppress(KeyError):
            return idef.shapes[operand_signature(operands)]
    if condition is not None and (cond_group := idef.fact("conditional_group")):
        return Classification(idef.category, cond_group)
    return idef.classification
