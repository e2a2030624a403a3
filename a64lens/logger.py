import logging
import os

from rich.console import Console
from rich.logging import RichHandler
from rich.theme import Theme

custom_theme = Theme(
    {"info": "cyan", "warning": "purple4", "danger": "bold red", "muted": "grey50"}
)
console = Console(
    log_time=False,
    log_path=False,
    theme=custom_theme,
    color_system="256",
    highlight=True,
    record=True,
)

logging.basicConfig(
    level=logging.INFO,
    format="%(message)s",
    datefmt="[%X]",
    handlers=[
        RichHandler(
            console=console,
            markup=True,
            show_path=False,
            enable_link_path=False,
        )
    ],
)
LOG = logging.getLogger(__name__)


def default_level():
    """DEBUG when A64LENS_DEBUG_MODE=debug, INFO otherwise."""
    return logging.DEBUG if os.getenv("A64LENS_DEBUG_MODE") == "debug" else logging.INFO


def apply_output_mode(quiet=False, stdout=False):
    """
    Applies the CLI output flags to LOG. Quiet mode silences the logger and
    stdout mode keeps only errors, so a report printed to stdout is not
    interleaved with log lines.
    """
    LOG.disabled = quiet
    LOG.setLevel(logging.ERROR if stdout else default_level())


LOG.setLevel(default_level())
