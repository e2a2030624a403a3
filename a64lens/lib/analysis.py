"""Parse + explain pipeline over one or several dumps."""

import concurrent
import concurrent.futures

from a64lens.config import MAX_WORKERS
from a64lens.lib.correlator import correlate, correlate_common
from a64lens.lib.explainer import annotate
from a64lens.lib.parser import parse_dump
from a64lens.lib.utils import unique_labels
from a64lens.logger import LOG


def analyze_text(text, label="", isa=None):
    """Parses a dump and explains every instruction in it."""
    return annotate(parse_dump(text, label, isa), isa)


def analyze_dumps(sources, isa=None, max_workers=MAX_WORKERS):
    """
    Parses and explains several dumps, one isolated task per dump.

    Args:
        sources (list): (label, text) pairs. Repeated labels get #2, #3... suffixes.
        isa (InstructionSet): Substituted instruction table. Dumps are
            processed in this process when given.
        max_workers (int): Worker processes to use.

    Returns:
        list of Dump in the order of sources.
    """
    sources = list(sources)
    labels = unique_labels([label for label, _ in sources])
    sources = [(label, text) for label, (_, text) in zip(labels, sources)]
    if isa is not None or max_workers <= 1 or len(sources) <= 1:
        return [analyze_text(text, label, isa) for label, text in sources]
    results = {}
    with concurrent.futures.ProcessPoolExecutor(max_workers=min(max_workers, len(sources))) as executor:
        futures_dumps = {
            executor.submit(analyze_text, text, label): i for i, (label, text) in enumerate(sources)
        }
        for future in concurrent.futures.as_completed(futures_dumps):
            dump = future.result()
            LOG.debug(f"Finished {dump.label}")
            results[futures_dumps[future]] = dump
    return [results[i] for i in range(len(sources))]


def compare_dumps(sources, function_name=None, isa=None, max_workers=MAX_WORKERS):
    """
    Analyzes several dumps and aligns their functions.

    Returns:
        tuple of the dumps and the list of ComparisonSet. With a function
        name, the list holds that one function and FunctionNotFound is raised
        when no dump has it. Without one, it holds every function common to
        all dumps.
    """
    dumps = analyze_dumps(sources, isa, max_workers)
    if function_name:
        return dumps, [correlate(dumps, function_name, require_match=True)]
    return dumps, correlate_common(dumps)
