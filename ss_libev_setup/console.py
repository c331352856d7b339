"""
Nord-themed console output and logging setup shared by every command.
"""

import logging
import os
import shutil
from pathlib import Path
from typing import Iterable, Optional, Union

import pyfiglet
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.panel import Panel
from rich.style import Style
from rich.table import Table
from rich.text import Text

from .config import APP_NAME, APP_SUBTITLE, VERSION


# ----------------------------------------------------------------
# Nord-Themed Colors
# ----------------------------------------------------------------
class NordColors:
    POLAR_NIGHT_1 = "#2E3440"
    SNOW_STORM_1 = "#D8DEE9"
    FROST_1 = "#8FBCBB"
    FROST_2 = "#88C0D0"
    FROST_3 = "#81A1C1"
    FROST_4 = "#5E81AC"
    RED = "#BF616A"
    YELLOW = "#EBCB8B"
    GREEN = "#A3BE8C"
    PURPLE = "#B48EAD"


console: Console = Console()
err_console: Console = Console(stderr=True)

LOGGER_NAME = "ss_libev_setup"
LOG_FORMAT = "[%(asctime)s] [%(levelname)s] %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


# ----------------------------------------------------------------
# UI Helper Functions
# ----------------------------------------------------------------
def print_message(
    text: str, style: str = NordColors.FROST_2, prefix: str = "•"
) -> None:
    console.print(f"[{style}]{prefix} {escape(text)}[/{style}]", highlight=False)


def print_step(text: str) -> None:
    """Print a step description."""
    console.print(f"\n[bold {NordColors.FROST_2}]» {escape(text)}[/]", highlight=False)


def print_success(text: str) -> None:
    print_message(text, NordColors.GREEN, "✓")


def print_warning(text: str) -> None:
    print_message(text, NordColors.YELLOW, "⚠")


def print_error(text: str) -> None:
    """Print an error message to stderr."""
    err_console.print(f"[bold {NordColors.RED}]✗ {escape(text)}[/]", highlight=False)


def create_header(no_banner: bool = False) -> Panel:
    term_width = shutil.get_terminal_size().columns
    adjusted_width = min(term_width - 4, 80)
    ascii_art = APP_NAME
    if not no_banner:
        try:
            ascii_art = pyfiglet.figlet_format(
                APP_NAME, font="slant", width=adjusted_width
            )
        except pyfiglet.FigletError:
            pass
    return Panel(
        Text.from_markup(f"[bold {NordColors.FROST_2}]{escape(ascii_art)}[/]"),
        border_style=Style(color=NordColors.FROST_1),
        padding=(1, 2),
        title=f"[bold {NordColors.SNOW_STORM_1}]v{VERSION}[/]",
        title_align="right",
        subtitle=f"[bold {NordColors.SNOW_STORM_1}]{APP_SUBTITLE}[/]",
        subtitle_align="center",
    )


def print_output(title: str, lines: Iterable[str]) -> None:
    """Show captured command output in a bordered pane."""
    body = "\n".join(lines).rstrip()
    console.print(
        Panel(
            Text(body or "(no output)", style=NordColors.SNOW_STORM_1),
            title=f"[bold {NordColors.FROST_3}]{title}[/]",
            border_style=NordColors.FROST_4,
            padding=(0, 1),
        )
    )


def results_table(rows: Iterable[tuple]) -> Table:
    table = Table(
        title=f"[bold {NordColors.FROST_2}]Installation Summary[/]",
        border_style=NordColors.FROST_4,
        header_style=f"bold {NordColors.FROST_1}",
    )
    table.add_column("Stage", style=NordColors.SNOW_STORM_1)
    table.add_column("Result")
    table.add_column("Time", justify="right", style=NordColors.FROST_3)
    table.add_column("Details", style="dim")
    for row in rows:
        table.add_row(*row)
    return table


# ----------------------------------------------------------------
# Logging
# ----------------------------------------------------------------
def setup_logger(
    log_file: Optional[Union[str, Path]] = None, debug: bool = False
) -> logging.Logger:
    """
    Configure the package logger.

    The file handler records everything at DEBUG. Terminal output is
    normally produced by the print helpers above, so the RichHandler is
    only attached when ``debug`` is set.
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(logging.DEBUG)
    logger.propagate = False
    for h in logger.handlers[:]:
        logger.removeHandler(h)
        h.close()

    if debug:
        console_handler = RichHandler(console=err_console, rich_tracebacks=True)
        console_handler.setLevel(logging.DEBUG)
        logger.addHandler(console_handler)

    if log_file:
        log_path = Path(log_file)
        try:
            log_path.parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(log_path)
        except OSError as e:
            print_warning(f"Could not open log file {log_path}: {e}")
        else:
            file_handler.setLevel(logging.DEBUG)
            file_handler.setFormatter(logging.Formatter(LOG_FORMAT, LOG_DATE_FORMAT))
            logger.addHandler(file_handler)
            try:
                os.chmod(str(log_path), 0o600)
            except OSError as e:
                logger.warning(f"Could not set permissions on log file {log_path}: {e}")

    if not logger.handlers:
        logger.addHandler(logging.NullHandler())
    return logger
