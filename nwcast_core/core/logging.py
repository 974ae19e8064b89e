import logging
import sys
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler

LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}

PLAIN_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


_installed: Optional[logging.Handler] = None


def resolve_level(level: str) -> int:
    try:
        return LEVELS[(level or "info").strip().lower()]
    except KeyError:
        raise ValueError(f"unknown log level {level!r}") from None


def setup_logging(level: str = "info", fmt: str = "console", output_file: str = "") -> None:
    """
    Configure the root logger.
    - ``console`` renders through rich on stderr so stdout stays free for reports.
    - ``plain`` or an output file uses a timestamped text formatter.
    Calling it again replaces the handler installed by the previous call.
    """
    global _installed
    root_logger = logging.getLogger()
    if _installed is not None:
        root_logger.removeHandler(_installed)
        _installed.close()

    if output_file:
        handler: logging.Handler = logging.FileHandler(output_file, encoding="utf-8")
        handler.setFormatter(logging.Formatter(PLAIN_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    elif fmt == "console":
        handler = RichHandler(console=Console(stderr=True), show_path=False, rich_tracebacks=True)
        handler.setFormatter(logging.Formatter("%(message)s"))
    else:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(PLAIN_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))

    root_logger.addHandler(handler)
    root_logger.setLevel(resolve_level(level))
    _installed = handler
