"""
Line oriented parser for objdump style AArch64 disassembly.

Accepted input is the output of objdump -d, optionally with -S (interleaved
source) and -l (file:line markers) and -r (relocations), as printed by both
GNU objdump and llvm-objdump.
"""

import re

from a64lens.config import DUMP_BANNER_PREFIXES, UNNAMED_FUNCTION
from a64lens.lib.errors import MalformedLine, NoInstructionsFound
from a64lens.lib.isa import MALFORMED, UNCLASSIFIED, Category, classify, load_instruction_set, split_mnemonic
from a64lens.lib.model import Dump, Function, Instruction, ParseStats, Relocation, SourceLine
from a64lens.lib.operands import Label, Target, parse_operands
from a64lens.logger import LOG

FUNCTION_RE = re.compile(r"^(?:0x)?(?P<addr>[0-9a-fA-F]+)\s+<(?P<name>.+)>:\s*$")
ADDRESS_LINE_RE = re.compile(r"^\s*(?:0x)?(?P<addr>[0-9a-fA-F]+):(?P<rest>\s.*)?$")
RELOCATION_RE = re.compile(r"^\s*(?P<kind>R_[A-Z0-9_]+)(?:\s+(?P<symbol>.*))?$")
ENCODING_RE = re.compile(r"^(?:[0-9a-fA-F]{2,8})(?:\s[0-9a-fA-F]{2,8})*$")
# Without tab separators only a single word or four bytes are accepted, so
# hex-looking mnemonics such as fadd are not swallowed into the encoding
SPACED_LINE_RE = re.compile(
    r"^\s*(?P<enc>[0-9a-fA-F]{8}|(?:[0-9a-fA-F]{2}\s){3}[0-9a-fA-F]{2})\s+(?P<body>\S.*)$"
)
MNEMONIC_RE = re.compile(r"^(?P<mnemonic>\.?[A-Za-z][\w.]*)(?:\s+(?P<operands>.*))?$")
COMMENT_RES = (
    re.compile(r"\s+//\s?(?P<comment>.*)$"),
    re.compile(r"\s*;\s?(?P<comment>.*)$"),
    re.compile(r"\s+#\s(?P<comment>.*)$"),
)
LOCATION_RE = re.compile(r"^(?P<path>[^\s:]*[^\s:\d][^\s:]*):(?P<line>\d+)(?:\s+\(discriminator \d+\))?$")
# objdump -l prints "name():" before the location of each function
FUNCTION_MARKER_RE = re.compile(r"^[\w.$@~]+\(\):$")
SEPARATOR_RE = re.compile(r"^[-=_*~.\s]+$")
# non-branch groups whose bare label operands name a code address
ADDRESS_GROUPS = ("literal", "address")


def _is_banner(stripped):
    return stripped.startswith(DUMP_BANNER_PREFIXES) or "file format" in stripped


def split_comment(text):
    """Splits trailing disassembler comments (//, ; or '# ') off an instruction body."""
    for comment_re in COMMENT_RES:
        if m := comment_re.search(text):
            return text[: m.start()].rstrip(), m.group("comment").strip()
    return text.rstrip(), None


def tokenize_instruction(rest):
    """
    Splits the part of an instruction line after "addr:" into encoding,
    mnemonic token, operand text and comment.

    Raises:
        MalformedLine: when the encoding or mnemonic cannot be found.
    """
    body_text = rest.strip()
    if "\t" in body_text:
        fields = [f.strip() for f in body_text.split("\t")]
        encoding = fields[0]
        body = " ".join(f for f in fields[1:] if f)
        if not ENCODING_RE.match(encoding):
            raise MalformedLine("invalid encoding", body_text)
    else:
        m = SPACED_LINE_RE.match(body_text)
        if not m:
            raise MalformedLine("missing encoding or mnemonic", body_text)
        encoding, body = m.group("enc"), m.group("body")
    body, comment = split_comment(body)
    m = MNEMONIC_RE.match(body)
    if not m:
        raise MalformedLine("missing mnemonic", body_text)
    return encoding, m.group("mnemonic"), (m.group("operands") or "").strip(), comment


def parse_instruction(address, rest, isa=None, raw=""):
    """
    Parses and classifies the body of one instruction line.

    Raises:
        MalformedLine: when the line cannot be tokenized or its operands fit
            no operand form.
    """
    encoding, token, operand_text, comment = tokenize_instruction(rest)
    mnemonic, condition = split_mnemonic(token)
    operands = parse_operands(operand_text)
    return Instruction(
        address=address,
        encoding=encoding,
        mnemonic=mnemonic,
        condition=condition,
        operands=operands,
        operand_text=operand_text,
        classification=classify(mnemonic, condition, operands, isa),
        comment=comment,
        raw=raw,
        text=f"{token.lower()} {operand_text}".rstrip(),
    )


def _malformed_instruction(address, rest, raw):
    body = (rest or "").strip()
    mnemonic = ""
    try:
        _, token, _, _ = tokenize_instruction(body)
        mnemonic = split_mnemonic(token)[0]
    except MalformedLine:
        pass
    return Instruction(
        address=address,
        encoding="",
        mnemonic=mnemonic,
        classification=MALFORMED,
        raw=raw,
        text=body,
    )


class _DumpBuilder:
    """Line by line state of a single parse."""

    def __init__(self, label, isa):
        self.label = label
        self.isa = isa
        self.stats = ParseStats()
        self.functions = []
        self.current = None
        self.recognized = 0
        self.source_buffer = []
        self.location = None
        self.current_source = None
        self.last_instruction = None

    def close_function(self):
        self.current = None
        self.last_instruction = None
        self.current_source = None
        self.source_buffer = []
        self.location = None

    def open_function(self, name, address):
        self.close_function()
        self.current = Function(name=name, address=address, label=self.label)
        self.functions.append(self.current)
        self.recognized += 1

    def add_source(self, text):
        if self.current is None:
            return
        self.source_buffer.append(text)
        self.stats.source_lines += 1

    def set_location(self, path, line_number):
        if self.current is None:
            return
        # merged source blocks keep the location of their first line
        if not self.source_buffer or self.location is None:
            self.location = (path, line_number)

    def _take_source(self):
        if self.source_buffer or self.location:
            path, line_number = self.location or (None, None)
            self.current_source = SourceLine("\n".join(self.source_buffer), path, line_number)
            self.source_buffer = []
            self.location = None
        return self.current_source

    def add_instruction(self, address, rest, raw, line_number):
        if self.current is None:
            self.current = Function(name=UNNAMED_FUNCTION, address=None, label=self.label)
            self.functions.append(self.current)
        self.recognized += 1
        self.stats.instruction_lines += 1
        try:
            insn = parse_instruction(address, rest or "", self.isa, raw)
        except MalformedLine as e:
            LOG.debug(f"{self.label or 'dump'}: line {line_number}: {e.reason}: {raw.strip()!r}")
            self.stats.malformed_lines += 1
            insn = _malformed_instruction(address, rest, raw)
        else:
            if insn.classification == UNCLASSIFIED:
                self.stats.unknown_mnemonics += 1
        insn.source = self._take_source()
        self.current.instructions.append(insn)
        self.last_instruction = insn

    def add_relocation(self, address, kind, symbol):
        self.recognized += 1
        if self.last_instruction is None:
            return
        self.last_instruction.relocations.append(Relocation(address, kind, (symbol or "").strip()))
        self.stats.relocations += 1

    def resolve_labels(self):
        """Rewrites bare label operands that name a function of this dump into targets."""
        symbols = {}
        for function in self.functions:
            if function.address is not None:
                symbols.setdefault(function.name, function.address)
        if not symbols:
            return
        for function in self.functions:
            for insn in function.instructions:
                if insn.is_malformed:
                    continue
                if insn.category != Category.BRANCH and insn.classification.group not in ADDRESS_GROUPS:
                    continue
                if not any(isinstance(op, Label) and op.name in symbols for op in insn.operands):
                    continue
                insn.operands = tuple(
                    Target(symbols[op.name], op.name, op.name)
                    if isinstance(op, Label) and op.name in symbols
                    else op
                    for op in insn.operands
                )
                insn.classification = classify(insn.mnemonic, insn.condition, insn.operands, self.isa)

    def build(self):
        if not self.recognized:
            raise NoInstructionsFound(self.label, self.stats.lines)
        self.resolve_labels()
        return Dump(label=self.label, functions=self.functions, stats=self.stats)


def parse_dump(text, label="", isa=None):
    """
    Parses the complete text of one disassembly dump.

    Args:
        text (str): Dump text.
        label (str): Display label of the dump, such as O2 or a file name.
        isa (InstructionSet): Instruction table used for classification.
            Defaults to the bundled table.

    Returns:
        Dump with the functions in file order.

    Raises:
        NoInstructionsFound: when the text has no function header and no
            instruction line.
    """
    isa = isa or load_instruction_set()
    builder = _DumpBuilder(label, isa)
    for line_number, line in enumerate((text or "").splitlines(), start=1):
        builder.stats.lines += 1
        stripped = line.strip()
        if not stripped or SEPARATOR_RE.match(stripped):
            continue
        if m := FUNCTION_RE.match(stripped):
            builder.open_function(m.group("name"), int(m.group("addr"), 16))
            continue
        if _is_banner(stripped):
            if stripped.startswith("Disassembly of section"):
                builder.close_function()
            continue
        if m := ADDRESS_LINE_RE.match(line):
            address = int(m.group("addr"), 16)
            rest = m.group("rest") or ""
            if r := RELOCATION_RE.match(rest):
                builder.add_relocation(address, r.group("kind"), r.group("symbol"))
            else:
                builder.add_instruction(address, rest, line, line_number)
            continue
        if m := LOCATION_RE.match(stripped):
            builder.set_location(m.group("path"), int(m.group("line")))
            continue
        if FUNCTION_MARKER_RE.match(stripped):
            continue
        builder.add_source(stripped)
    dump = builder.build()
    LOG.debug(
        f"Parsed {len(dump.functions)} functions and {dump.stats.instruction_lines} instructions"
        f" from {label or 'dump'} ({dump.stats.malformed_lines} malformed)"
    )
    return dump


def list_functions(text):
    """Returns the function names of a dump in file order, without parsing instructions."""
    names = []
    for line in (text or "").splitlines():
        if m := FUNCTION_RE.match(line.strip()):
            names.append(m.group("name"))
    return names
