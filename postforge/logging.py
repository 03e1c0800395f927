# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.
"""Logging configuration with the Postforge console palette.

Structured context passed as keyword arguments to loguru calls
(``logger.info("Job created", job_id=...)``) is rendered as key=value pairs
after the message.
"""

import sys
from typing import TYPE_CHECKING

from loguru import logger


if TYPE_CHECKING:
    from loguru import Record


COLORS = {
    "amber": "#F2A541",  # Warnings, checkpoints
    "moss": "#6A994E",  # Success, completed
    "slate": "#8D99AE",  # Secondary text, debug
    "paper": "#F4F1DE",  # Primary text
    "brick": "#BC4749",  # Errors, failed jobs
    "ink": "#4A7BA7",  # Info, identifiers
    "dim": "#5C6672",  # Separators
}

RESET = "\033[0m"


def _log_format(record: "Record") -> str:
    """Build the loguru format string for a record.

    Args:
        record: Loguru record containing log metadata, message, and level.

    Returns:
        Format string with loguru color tags.
    """
    level = record["level"].name

    level_colors = {
        "TRACE": f"<fg {COLORS['dim']}>",
        "DEBUG": f"<fg {COLORS['slate']}>",
        "INFO": f"<fg {COLORS['ink']}>",
        "SUCCESS": f"<fg {COLORS['moss']}>",
        "WARNING": f"<fg {COLORS['amber']}>",
        "ERROR": f"<fg {COLORS['brick']}>",
        "CRITICAL": f"<fg {COLORS['brick']}><bold>",
    }

    color = level_colors.get(level, f"<fg {COLORS['paper']}>")
    close = "</>"

    fmt = (
        f"<fg {COLORS['slate']}>{{time:HH:mm:ss}}{close}"
        f" <fg {COLORS['dim']}>│{close} "
        f"{color}{{level: <8}}{close}"
        f"<fg {COLORS['dim']}>│{close} "
        f"<fg {COLORS['slate']}>{{name}}{close}"
        f"<fg {COLORS['dim']}>:{close}"
        f"<fg {COLORS['paper']}>{{message}}{close}"
    )

    extra = record["extra"]
    if extra:
        extra_str = " ".join(f"{k}={v!r}" for k, v in extra.items())
        # Escape braces to prevent loguru format string injection
        extra_str = extra_str.replace("{", "{{").replace("}", "}}").replace("<", r"\<")
        fmt += f" <fg {COLORS['slate']}>│ {extra_str}{close}"

    fmt += "\n"

    if record["exception"]:
        fmt += "{exception}\n"

    return fmt


def configure_logging(level: str = "INFO") -> None:
    """Replace loguru's default handler with the Postforge formatted one.

    Args:
        level: Minimum log level to display (e.g., "DEBUG", "INFO", "WARNING").
    """
    logger.remove()
    logger.add(
        sys.stderr,
        level=level,
        format=_log_format,
        colorize=True,
    )


def log_server_startup(
    host: str,
    port: int,
    database_path: str,
    version: str,
    handlers: str,
) -> None:
    """Print the server configuration summary to stderr.

    Args:
        host: Server bind host address.
        port: Server bind port number.
        database_path: Path to SQLite database file.
        version: Application version string.
        handlers: Stage handler factory path in use.
    """
    amber = "\033[38;2;242;165;65m"
    moss = "\033[38;2;106;153;78m"
    ink = "\033[38;2;74;123;167m"
    slate = "\033[38;2;141;153;174m"

    config_lines = [
        f"  {slate}Version:{RESET}  {amber}v{version}{RESET}",
        f"  {slate}Server:{RESET}   {ink}http://{host}:{port}{RESET}",
        f"  {slate}Database:{RESET} {moss}{database_path}{RESET}",
        f"  {slate}Handlers:{RESET} {moss}{handlers}{RESET}",
        "",
    ]
    sys.stderr.write("\n".join(config_lines) + "\n")
    sys.stderr.flush()
