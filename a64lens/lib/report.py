"""
Markdown and console rendering of parsed dumps and comparisons.

Everything here reads the structured model only. No parsing or explanation
happens in this module.
"""

from rich import box
from rich.markup import escape
from rich.table import Table

from a64lens.config import SOURCE_WIDTH
from a64lens.logger import console

LEVEL_TITLES = {
    "O0": "no optimization",
    "O1": "basic optimization",
    "O2": "full optimization",
    "O3": "aggressive optimization",
    "Os": "size optimization",
    "Oz": "aggressive size optimization",
    "Og": "debug optimization",
}

TABLE_HEADER = "| Source | Address | Instruction | Explanation |\n|--------|---------|-------------|-------------|\n"


def escape_cell(text):
    """Escapes text for a Markdown table cell."""
    if not text:
        return ""
    return text.replace("|", "\\|").replace("\n", "<br>")


def format_source(source, width=SOURCE_WIDTH):
    """
    Formats interleaved source for a table cell.

    Consecutive lines are joined with spaces and text wider than width is cut
    at the last comma, semicolon, parenthesis or space before the limit.
    """
    if source is None:
        return ""
    text = " ".join(source.text.split())
    if not text:
        if source.path and source.line_number is not None:
            return f"{source.path}:{source.line_number}"
        return ""
    if len(text) <= width:
        return text
    head = text[:width]
    cut = max(head.rfind(c) for c in ",;) ")
    if cut > 0:
        return f"{head[: cut + 1].strip()}..."
    return f"{text[: max(width - 3, 0)]}..."


def level_title(label):
    if title := LEVEL_TITLES.get(label):
        return f"{label} ({title})"
    return label


def function_table(function, width=SOURCE_WIDTH):
    """
    Renders the instructions of a function as a Markdown table.

    Source text is shown on the first instruction it belongs to. Calls to
    compiler generated helpers are listed as note rows first.
    """
    rows = [TABLE_HEADER]
    for helper in function.helper_calls:
        note = f"note: calls the compiler generated helper {helper}, shown as a separate function"
        rows.append(f"| {escape_cell(note)} | | | |\n")
    previous = None
    for insn in function.instructions:
        source = ""
        if insn.source is not None and insn.source is not previous:
            source = format_source(insn.source, width)
            previous = insn.source
        explanation = insn.explanation.text if insn.explanation else ""
        rows.append(
            f"| {escape_cell(source)} | `{insn.address:x}` | `{escape_cell(insn.text)}` "
            f"| {escape_cell(explanation)} |\n"
        )
    return "".join(rows)


def render_function(function, width=SOURCE_WIDTH, heading="##"):
    title = function.name if not function.label else f"{function.name} ({function.label})"
    out = [f"{heading} {title}\n\n"]
    if function.address is not None:
        out.append(f"Start address: `{function.address:#x}`, {len(function)} instructions")
    else:
        out.append(f"{len(function)} instructions")
    if function.malformed_count:
        out.append(f", {function.malformed_count} unparsed")
    out.append("\n\n")
    out.append(function_table(function, width))
    out.append("\n")
    return "".join(out)


def render_stats(stats, heading="###"):
    return (
        f"{heading} Parse coverage\n\n"
        f"- Lines read: {stats.lines}\n"
        f"- Instructions: {stats.instruction_lines}\n"
        f"- Unparsed lines: {stats.malformed_lines}\n"
        f"- Unknown mnemonics: {stats.unknown_mnemonics}\n"
        f"- Unmodeled operand shapes: {stats.unmodeled_operands}\n"
        f"- Coverage: {stats.coverage:.1%}\n\n"
    )


def render_dump(dump, functions=None, width=SOURCE_WIDTH):
    """
    Renders the analysis document of one dump.

    Args:
        dump (Dump): Annotated dump.
        functions (list): Functions to include. All when None.
        width (int): Source column width.
    """
    functions = dump.functions if functions is None else functions
    out = [f"# Analysis of {dump.label or 'dump'}\n\n"]
    for function in functions:
        out.append(render_function(function, width))
    out.append(render_stats(dump.stats, "##"))
    return "".join(out)


def render_comparison(comparison, width=SOURCE_WIDTH):
    """Renders one function across all supplied dumps, one section per label."""
    out = [f"## Optimization level comparison: {comparison.name}\n\n"]
    for label in comparison.labels:
        out.append(f"### {level_title(label)}\n\n")
        function = comparison.functions.get(label)
        if function is None:
            out.append(f"_{comparison.name} is not present in {label}._\n\n")
            continue
        out.append(function_table(function, width))
        out.append("\n")
    out.append("### Statistics\n\n")
    counts = comparison.instruction_counts()
    for label in comparison.labels:
        if label in counts:
            out.append(f"- {label}: {counts[label]} instructions\n")
        else:
            out.append(f"- {label}: not present\n")
    out.append("\n")
    return "".join(out)


def render_comparisons(comparisons, title="", width=SOURCE_WIDTH):
    out = [f"# {title}\n\n"] if title else []
    for comparison in comparisons:
        out.append(render_comparison(comparison, width))
    return "".join(out)


def create_table(title, columns):
    table = Table(
        title=title,
        box=box.DOUBLE_EDGE,
        header_style="bold magenta",
        show_lines=True,
    )
    for c in columns:
        table.add_column(c)
    return table


def print_stats_table(dumps):
    """Prints the parse coverage of each dump."""
    table = create_table(
        "Parse coverage",
        ["Dump", "Functions", "Instructions", "Unparsed", "Unknown", "Unmodeled", "Coverage"],
    )
    for dump in dumps:
        stats = dump.stats
        coverage = f"{stats.coverage:.1%}"
        if stats.coverage < 0.9:
            coverage = f"[warning]{coverage}[/warning]"
        table.add_row(
            dump.label,
            str(len(dump.functions)),
            str(stats.instruction_lines),
            str(stats.malformed_lines),
            str(stats.unknown_mnemonics),
            str(stats.unmodeled_operands),
            coverage,
        )
    console.print(table)


def print_functions_table(dumps, names=None):
    """
    Prints the instruction count of every function per dump. Functions missing
    from a dump are shown as -.
    """
    labels = [d.label for d in dumps]
    table = create_table("Functions", ["Function", *labels])
    if names is None:
        names = []
        for dump in dumps:
            for name in dump.function_names():
                if name not in names:
                    names.append(name)
    for name in names:
        row = [escape(name)]
        for dump in dumps:
            function = dump.function(name)
            row.append(str(len(function)) if function is not None else "[muted]-[/muted]")
        table.add_row(*row)
    console.print(table)
