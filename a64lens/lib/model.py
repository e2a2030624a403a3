"""Instructions, functions and dumps produced by the parser."""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

from a64lens.lib.isa import MALFORMED, UNCLASSIFIED, Category, Classification
from a64lens.lib.operands import Condition, Label, Target

# Compiler generated clones and split-off parts of a function
HELPER_SUFFIX_RE = re.compile(r"\.(?:part|isra|constprop|cold)(?:\.\d+)?")


class ExplanationIssue(Enum):
    UNMODELED_SHAPE = "unmodeled-shape"
    UNKNOWN_MNEMONIC = "unknown-mnemonic"
    MALFORMED = "malformed"


@dataclass(frozen=True)
class Explanation:
    text: str
    issue: Optional[ExplanationIssue] = None

    def __str__(self):
        return self.text

    @property
    def is_fallback(self) -> bool:
        return self.issue is not None


@dataclass(frozen=True)
class SourceLine:
    """Source text interleaved by objdump -S, with its file:line marker if any."""
    text: str
    path: Optional[str] = None
    line_number: Optional[int] = None

    def to_dict(self):
        return {"text": self.text, "path": self.path, "line_number": self.line_number}


@dataclass(frozen=True)
class Relocation:
    address: int
    kind: str
    symbol: str = ""

    def __str__(self):
        return f"{self.kind} {self.symbol}".rstrip()


@dataclass
class Instruction:
    """
    A single disassembled instruction.

    The explanation is attached once, after classification, with
    set_explanation. Later attempts raise AttributeError.
    """
    address: int
    encoding: str
    mnemonic: str
    condition: Optional[Condition] = None
    operands: tuple = ()
    operand_text: str = ""
    classification: Classification = UNCLASSIFIED
    source: Optional[SourceLine] = None
    comment: Optional[str] = None
    relocations: List[Relocation] = field(default_factory=list)
    raw: str = ""
    text: str = ""
    _explanation: Optional[Explanation] = field(default=None, init=False, repr=False, compare=False)

    @property
    def explanation(self) -> Optional[Explanation]:
        return self._explanation

    def set_explanation(self, explanation):
        if self._explanation is not None:
            raise AttributeError(f"Explanation of the instruction at {self.address:#x} is already set")
        if isinstance(explanation, str):
            explanation = Explanation(explanation)
        self._explanation = explanation

    @property
    def category(self) -> Category:
        return self.classification.category

    @property
    def is_malformed(self) -> bool:
        return self.classification == MALFORMED

    @property
    def is_unknown(self) -> bool:
        return self.classification == UNCLASSIFIED

    def to_dict(self):
        return {
            "address": f"{self.address:#x}",
            "encoding": self.encoding,
            "mnemonic": self.mnemonic,
            "condition": self.condition.token if self.condition else None,
            "text": self.text,
            "category": self.classification.category.value,
            "group": self.classification.group,
            "source": self.source.to_dict() if self.source else None,
            "comment": self.comment,
            "relocations": [str(r) for r in self.relocations],
            "explanation": self.explanation.text if self.explanation else None,
            "issue": self.explanation.issue.value if self.explanation and self.explanation.issue else None,
        }


@dataclass
class Function:
    name: str
    address: Optional[int] = None
    label: str = ""
    instructions: List[Instruction] = field(default_factory=list)

    def __len__(self):
        return len(self.instructions)

    @property
    def helper_calls(self):
        """Names of compiler generated helpers (foo.part.0, foo.isra.1...) this function branches to."""
        helpers = []
        for insn in self.instructions:
            if insn.category != Category.BRANCH:
                continue
            for op in insn.operands:
                if isinstance(op, Target):
                    name = op.base_symbol
                elif isinstance(op, Label):
                    name = op.name
                else:
                    continue
                if name and HELPER_SUFFIX_RE.search(name) and name not in helpers:
                    helpers.append(name)
        return helpers

    @property
    def malformed_count(self) -> int:
        return sum(1 for i in self.instructions if i.is_malformed)

    def to_dict(self):
        return {
            "name": self.name,
            "address": f"{self.address:#x}" if self.address is not None else None,
            "label": self.label,
            "helper_calls": self.helper_calls,
            "instructions": [i.to_dict() for i in self.instructions],
        }


@dataclass
class ParseStats:
    """
    Parse coverage counters of a dump.

    Attributes:
        lines (int): Lines read.
        instruction_lines (int): Lines recognized as instructions, malformed ones included.
        malformed_lines (int): Instruction lines kept as raw markers.
        unknown_mnemonics (int): Instructions with a mnemonic outside the table.
        unmodeled_operands (int): Instructions explained with the fallback sentence
            because their operand shape is not modeled.
        source_lines (int): Interleaved source lines.
        relocations (int): Relocation records.
    """
    lines: int = 0
    instruction_lines: int = 0
    malformed_lines: int = 0
    unknown_mnemonics: int = 0
    unmodeled_operands: int = 0
    source_lines: int = 0
    relocations: int = 0

    @property
    def modeled(self) -> int:
        return max(
            self.instruction_lines - self.malformed_lines - self.unknown_mnemonics - self.unmodeled_operands,
            0,
        )

    @property
    def coverage(self) -> float:
        """Fraction of instructions that were parsed, classified and explained without fallback."""
        if not self.instruction_lines:
            return 1.0
        return self.modeled / self.instruction_lines

    def to_dict(self):
        return {
            "lines": self.lines,
            "instruction_lines": self.instruction_lines,
            "malformed_lines": self.malformed_lines,
            "unknown_mnemonics": self.unknown_mnemonics,
            "unmodeled_operands": self.unmodeled_operands,
            "source_lines": self.source_lines,
            "relocations": self.relocations,
            "coverage": round(self.coverage, 4),
        }


@dataclass
class Dump:
    label: str
    functions: List[Function] = field(default_factory=list)
    stats: ParseStats = field(default_factory=ParseStats)

    def function(self, name) -> Optional[Function]:
        """Returns the first function with the given name or None."""
        for f in self.functions:
            if f.name == name:
                return f
        return None

    def function_names(self):
        return [f.name for f in self.functions]

    def instructions(self):
        for f in self.functions:
            yield from f.instructions

    def to_dict(self):
        return {
            "label": self.label,
            "stats": self.stats.to_dict(),
            "functions": [f.to_dict() for f in self.functions],
        }


@dataclass
class ComparisonSet:
    """
    One function name aligned across several dumps.

    functions maps each supplied dump label to its Function, or None where the
    dump has no function of that name.
    """
    name: str
    labels: List[str] = field(default_factory=list)
    functions: Dict[str, Optional[Function]] = field(default_factory=dict)

    def present_labels(self):
        return [label for label in self.labels if self.functions.get(label) is not None]

    def missing_labels(self):
        return [label for label in self.labels if self.functions.get(label) is None]

    def in_all(self) -> bool:
        return bool(self.labels) and not self.missing_labels()

    def instruction_counts(self):
        return {label: len(self.functions[label]) for label in self.present_labels()}

    def to_dict(self):
        return {
            "name": self.name,
            "labels": list(self.labels),
            "missing": self.missing_labels(),
            "instruction_counts": self.instruction_counts(),
            "functions": {
                label: f.to_dict() if f is not None else None for label, f in self.functions.items()
            },
        }
