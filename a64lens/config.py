import os
from dataclasses import dataclass, field
from typing import List, Optional


def get_int_from_env(name, default):
    """
    Retrieves a value from an environment variable and converts it to an
    integer. If the value cannot be converted, the default is returned.
    """
    value = os.getenv(name, default)
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def get_list_from_env(name, default):
    """Reads a comma separated environment variable into a tuple of strings."""
    value = os.getenv(name)
    if not value:
        return tuple(default)
    return tuple(v.strip() for v in value.split(",") if v.strip())


# Optimization levels looked up for the <prefix>_<level>.dump convention
OPT_LEVELS = get_list_from_env("A64LENS_OPT_LEVELS", ("O0", "O1", "O2"))

DUMP_EXTENSION = ".dump"

# Source text wider than this is truncated in the Markdown tables
SOURCE_WIDTH = get_int_from_env("A64LENS_SOURCE_WIDTH", 80)

# Number of worker processes used when parsing several dumps
MAX_WORKERS = get_int_from_env("A64LENS_MAX_WORKERS", min(4, os.cpu_count() or 1))

# Name given to instructions that appear before any function header
UNNAMED_FUNCTION = "<unnamed>"

# objdump banner lines that carry no source information
DUMP_BANNER_PREFIXES = (
    "Disassembly of section",
    "objdump",
    "llvm-objdump",
    "In archive",
)


@dataclass
class A64LensOptions:
    """
    Options for a single a64lens invocation, built from the command line.

    Attributes:
        mode (str): One of analyze, compare or list.
        src_files (list): Dump files to read.
        labels (list): Display labels for the dump files. Derived from the
            file names when not supplied.
        prefix (str): Dump prefix used by compare mode to locate the
            <prefix>_<level>.dump files.
        function_name (str): Function to report. All functions (analyze) or
            all common functions (compare) when empty.
        reports_dir (str): Directory where reports are written.
        json_mode (bool): Also export the structured result as JSON.
        stdout_mode (bool): Print the Markdown report instead of writing it.
        quiet_mode (bool): Disable logging and progress bars.
        no_banner (bool): Do not print the banner.
        opt_levels (tuple): Levels searched for in compare mode.
    """
    mode: str = "analyze"
    src_files: List[str] = field(default_factory=list)
    labels: List[str] = field(default_factory=list)
    prefix: Optional[str] = None
    function_name: Optional[str] = None
    reports_dir: str = field(default_factory=lambda: os.path.join(os.getcwd(), "reports"))
    json_mode: bool = False
    stdout_mode: bool = False
    quiet_mode: bool = False
    no_banner: bool = False
    opt_levels: tuple = OPT_LEVELS

    def __post_init__(self):
        if self.labels and len(self.labels) != len(self.src_files):
            raise ValueError(
                f"Got {len(self.labels)} labels for {len(self.src_files)} dump files."
            )
        self.reports_dir = os.path.abspath(self.reports_dir)
