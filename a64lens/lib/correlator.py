"""Aligns same-named functions across several parsed dumps."""

from a64lens.lib.errors import FunctionNotFound
from a64lens.lib.model import ComparisonSet
from a64lens.logger import LOG


def dump_labels(dumps):
    """Returns the labels of the dumps. Raises ValueError when two dumps share a label."""
    labels = [d.label for d in dumps]
    if len(set(labels)) != len(labels):
        repeated = sorted({label for label in labels if labels.count(label) > 1})
        raise ValueError(f"Dump labels must be unique. Repeated: {', '.join(repeated)}")
    return labels


def build_index(dumps):
    """
    Builds a name -> label -> Function index in a single pass.

    When a dump holds several functions of the same name, the first one wins.
    """
    dumps = list(dumps)
    dump_labels(dumps)
    index = {}
    for dump in dumps:
        for function in dump.functions:
            by_label = index.setdefault(function.name, {})
            if dump.label in by_label:
                LOG.debug(f"Duplicate function {function.name} in {dump.label}. Keeping the first one.")
                continue
            by_label[dump.label] = function
    return index


def common_functions(dumps, index=None):
    """
    Returns the function names present in every dump, in the order they
    appear in the first dump.
    """
    dumps = list(dumps)
    if not dumps:
        return []
    index = index if index is not None else build_index(dumps)
    labels = set(dump_labels(dumps))
    common = []
    for name in dumps[0].function_names():
        if name in common:
            continue
        if labels <= index.get(name, {}).keys():
            common.append(name)
    return common


def correlate(dumps, name, require_match=False, index=None):
    """
    Returns the ComparisonSet of one function name.

    Args:
        dumps (list): Parsed dumps, in display order.
        name (str): Exact function name.
        require_match (bool): Raise FunctionNotFound when no dump has the function.
        index (dict): Index from build_index, rebuilt when not given.

    Returns:
        ComparisonSet where dumps without the function map to None.
    """
    dumps = list(dumps)
    index = index if index is not None else build_index(dumps)
    by_label = index.get(name, {})
    labels = dump_labels(dumps)
    comparison = ComparisonSet(
        name=name, labels=labels, functions={label: by_label.get(label) for label in labels}
    )
    if require_match and not comparison.present_labels():
        raise FunctionNotFound(name, labels)
    if missing := comparison.missing_labels():
        LOG.debug(f"Function {name} is missing from {', '.join(missing)}")
    return comparison


def correlate_common(dumps):
    """Returns one ComparisonSet for every function common to all dumps."""
    dumps = list(dumps)
    index = build_index(dumps)
    return [correlate(dumps, name, index=index) for name in common_functions(dumps, index)]
