import os

from rich.markup import escape
from rich.progress import Progress

from a64lens.config import A64LensOptions
from a64lens.lib.analysis import analyze_dumps, compare_dumps
from a64lens.lib.correlator import common_functions, correlate
from a64lens.lib.model import Dump, Function
from a64lens.lib.parser import list_functions
from a64lens.lib.report import (
    create_table,
    print_functions_table,
    print_stats_table,
    render_comparisons,
    render_dump,
)
from a64lens.lib.utils import (
    export_metadata,
    find_level_dumps,
    label_for,
    read_dump,
    strip_level_suffix,
    unique_labels,
    write_report,
)
from a64lens.logger import LOG, console


class AnalysisRunner:
    """Reads dump files with a progress bar."""

    def __init__(self, quiet_mode=False):
        self.progress = Progress(
            transient=True,
            redirect_stderr=True,
            redirect_stdout=True,
            refresh_per_second=1,
            disable=quiet_mode,
        )
        self.task = None

    def read(self, files, labels=None):
        """
        Reads the given dump files.

        Args:
            files (list): Dump file paths.
            labels (list): Labels of the files. Derived from the file names when empty.

        Returns:
            list of (label, text) tuples.
        """
        labels = unique_labels(labels or [label_for(f) for f in files])
        sources = []
        with self.progress:
            self.task = self.progress.add_task(
                f"[green] Reading {len(files)} dumps",
                total=len(files),
                start=True,
            )
            for label, f in zip(labels, files):
                self.progress.update(self.task, description=f"Reading [bold]{f}[/bold]")
                sources.append((label, read_dump(f)))
                self.progress.advance(self.task)
        return sources


def emit_report(options: A64LensOptions, name, content):
    """Writes a Markdown report, or prints it in stdout mode."""
    if options.stdout_mode:
        print(content)
        return None
    return write_report(options.reports_dir, name, content)


def run_analyze_mode(options: A64LensOptions):
    """
    Analyzes each dump on its own and writes one report per dump.

    Returns:
        list of Dump
    """
    sources = AnalysisRunner(options.quiet_mode).read(options.src_files, options.labels)
    dumps = analyze_dumps(sources)
    for dump in dumps:
        functions = None
        name = f"{dump.label}_analysis"
        if options.function_name:
            comparison = correlate([dump], options.function_name, require_match=True)
            functions = [comparison.functions[dump.label]]
            name = f"{options.function_name}_analysis"
            if len(dumps) > 1:
                name = f"{options.function_name}_{dump.label}_analysis"
        emit_report(options, name, render_dump(dump, functions))
        if options.json_mode:
            export_metadata(options.reports_dir, dump.to_dict(), f"{dump.label}-analysis")
    if not options.quiet_mode and not options.stdout_mode:
        print_stats_table(dumps)
    return dumps


def _compare_inputs(options: A64LensOptions):
    if options.prefix:
        found = find_level_dumps(options.prefix, options.opt_levels)
        if len(found) < len(options.opt_levels):
            found_levels = {lv for lv, _ in found}
            missing = [lv for lv in options.opt_levels if lv not in found_levels]
            LOG.warning(f"No dump found for {', '.join(missing)} with prefix {options.prefix}")
        return [p for _, p in found], [lv for lv, _ in found]
    return options.src_files, options.labels


def run_compare_mode(options: A64LensOptions):
    """
    Aligns the functions of several dumps, usually one per optimization level,
    and writes the comparison report.

    Returns:
        list of ComparisonSet
    """
    files, labels = _compare_inputs(options)
    if not files:
        LOG.error("No dump files to compare. Expected files named <prefix>_O0.dump, <prefix>_O1.dump...")
        return []
    sources = AnalysisRunner(options.quiet_mode).read(files, labels)
    dumps, comparisons = compare_dumps(sources, options.function_name)
    if not comparisons:
        LOG.warning("No function is present in every dump.")
    if options.function_name:
        base = options.function_name
    elif options.prefix:
        base = os.path.basename(strip_level_suffix(options.prefix, options.opt_levels))
    else:
        base = "functions"
    title = f"Comparison of {', '.join(d.label for d in dumps)}"
    emit_report(options, f"{base}_comparison", render_comparisons(comparisons, title))
    if options.json_mode:
        export_metadata(
            options.reports_dir,
            {
                "labels": [d.label for d in dumps],
                "stats": {d.label: d.stats.to_dict() for d in dumps},
                "comparisons": [c.to_dict() for c in comparisons],
            },
            f"{base}-comparison",
        )
    if not options.quiet_mode and not options.stdout_mode:
        print_functions_table(dumps, [c.name for c in comparisons])
        print_stats_table(dumps)
    return comparisons


def run_list_mode(options: A64LensOptions):
    """
    Lists the functions of each dump and the ones common to all of them.

    Returns:
        list of names common to all dumps
    """
    sources = AnalysisRunner(options.quiet_mode).read(options.src_files, options.labels)
    outlines = []
    for label, text in sources:
        names = list_functions(text)
        if not names:
            LOG.warning(f"No function headers found in {label}")
        outlines.append(Dump(label=label, functions=[Function(name=n, label=label) for n in names]))
    common = common_functions(outlines)
    if options.json_mode:
        export_metadata(
            options.reports_dir,
            {"functions": {d.label: d.function_names() for d in outlines}, "common": common},
            "functions",
        )
    if options.quiet_mode:
        return common
    for dump in outlines:
        table = create_table(f"Functions in {dump.label}", ["#", "Function", "Common"])
        for i, name in enumerate(dump.function_names(), start=1):
            table.add_row(str(i), escape(name), "✓" if name in common else "")
        console.print(table)
    if len(outlines) > 1:
        LOG.info(f"{len(common)} functions are present in every dump")
    return common
