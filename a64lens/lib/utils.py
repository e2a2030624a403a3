import os
import re
from enum import Enum
from pathlib import Path
from typing import Dict

import orjson
from custom_json_diff.lib.utils import file_write

from a64lens.config import DUMP_EXTENSION, OPT_LEVELS
from a64lens.logger import LOG


def read_dump(path):
    """Reads a dump file. Undecodable bytes are replaced."""
    with open(path, encoding="utf-8", errors="replace") as fp:
        return fp.read()


def strip_level_suffix(prefix, levels=OPT_LEVELS):
    """
    Reduces a dump path or prefix to the bare prefix.

    spark_matrix_O2.dump, spark_matrix_O2 and spark_matrix all give
    spark_matrix.
    """
    if prefix.endswith(DUMP_EXTENSION):
        prefix = prefix[: -len(DUMP_EXTENSION)]
    for level in levels:
        if prefix.endswith(f"_{level}"):
            return prefix[: -len(level) - 1]
    return prefix


def find_level_dumps(prefix, levels=OPT_LEVELS):
    """
    Locates the <prefix>_<level>.dump files of a prefix.

    Args:
        prefix (str): Dump prefix. May carry a level suffix or the .dump extension.
        levels (tuple): Levels to look for, in order.

    Returns:
        list of (level, path) tuples for the files that exist.
    """
    real_prefix = strip_level_suffix(prefix, levels)
    found = []
    for level in levels:
        path = f"{real_prefix}_{level}{DUMP_EXTENSION}"
        if os.path.isfile(path):
            found.append((level, path))
        else:
            LOG.debug(f"{path} not found")
    return found


def label_for(path, levels=OPT_LEVELS):
    """Returns the level of a <prefix>_<level>.dump file, or the file stem."""
    stem = Path(path).name
    if stem.endswith(DUMP_EXTENSION):
        stem = stem[: -len(DUMP_EXTENSION)]
    for level in levels:
        if stem.endswith(f"_{level}"):
            return level
    return stem


def unique_labels(labels):
    """Suffixes repeated labels with #2, #3... so every dump keeps its own column."""
    seen = {}
    result = []
    for label in labels:
        count = seen.get(label, 0) + 1
        seen[label] = count
        result.append(label if count == 1 else f"{label}#{count}")
    return result


def safe_file_name(name):
    """Makes a function name usable as a file name."""
    return re.sub(r"[^\w.+-]", "_", name).strip("_") or "unnamed"


def write_report(directory, name, content):
    """
    Writes a Markdown report into the reports directory.

    Returns:
        str: Path of the written file.
    """
    if not os.path.exists(directory):
        os.makedirs(directory)
    outfile = str(Path(directory) / f"{safe_file_name(name)}.md")
    file_write(outfile, content, success_msg=f"Report written to {outfile}", log=LOG)
    return outfile


def export_metadata(directory: str, metadata: Dict, mtype: str):
    """
    Exports metadata to file.
    """
    if not os.path.exists(directory):
        os.makedirs(directory)
    outfile = str(Path(directory) / f"{safe_file_name(mtype.lower())}.json")
    output = orjson.dumps(
        metadata, default=json_serializer, option=orjson.OPT_PASSTHROUGH_DATACLASS
    ).decode("utf-8", "ignore")
    file_write(outfile, output, success_msg="", log=LOG)
    return outfile


def json_serializer(obj):
    """JSON serializer to help serialize problematic types such as enums and bytes"""
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, bytes):
        try:
            return obj.decode("utf-8")
        except UnicodeDecodeError:
            return ""
    if hasattr(obj, "to_dict"):
        return obj.to_dict()
    return str(obj)
