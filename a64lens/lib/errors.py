"""
Exceptions raised by the a64lens core.

Only NoInstructionsFound and FunctionNotFound ever reach a caller. The other
errors are raised close to a single line or instruction and recovered there:
the parser keeps a raw marker for a MalformedLine and the explainer falls back
to a generic sentence for an UnmodeledOperandShape.
"""


class A64LensError(Exception):
    """Base class for all a64lens errors."""


class ParseError(A64LensError):
    """Problems reading disassembly text."""


class NoInstructionsFound(ParseError):
    """The input does not look like a disassembly dump at all."""

    def __init__(self, label="", lines=0):
        self.label = label
        self.lines = lines
        where = f" in {label}" if label else ""
        super().__init__(
            f"No function headers or instruction lines found{where} ({lines} lines read)"
        )

    def __reduce__(self):
        return self.__class__, (self.label, self.lines)


class MalformedLine(ParseError):
    """A single line could not be tokenized into an instruction."""

    def __init__(self, reason, text="", line_number=None):
        self.reason = reason
        self.text = text
        self.line_number = line_number
        msg = f"{reason}: {text!r}" if text else reason
        if line_number is not None:
            msg = f"line {line_number}: {msg}"
        super().__init__(msg)

    def __reduce__(self):
        return self.__class__, (self.reason, self.text, self.line_number)


class SemanticError(A64LensError):
    """Problems explaining an instruction."""


class UnmodeledOperandShape(SemanticError):
    """The mnemonic is known but its operand pattern is not covered."""

    def __init__(self, mnemonic, operand_text=""):
        self.mnemonic = mnemonic
        self.operand_text = operand_text
        super().__init__(f"Operand shape not modeled for {mnemonic} {operand_text}".rstrip())

    def __reduce__(self):
        return self.__class__, (self.mnemonic, self.operand_text)


class CorrelationError(A64LensError):
    """Problems aligning functions across dumps."""


class FunctionNotFound(CorrelationError):
    """A requested function is absent from every supplied dump."""

    def __init__(self, name, labels=()):
        self.name = name
        self.labels = tuple(labels)
        searched = ", ".join(self.labels) if self.labels else "no dumps"
        super().__init__(f"Function {name!r} not found in {searched}")

    def __reduce__(self):
        return self.__class__, (self.name, self.labels)
