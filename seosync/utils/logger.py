"""
SEO Sync - Logging
==================

Loguru sinks built from the ``logging`` section of settings.yaml:
- Console sink
- Rotating file sink plus a separate error file
- Optional serialized JSON sink for log shipping

Every module logs through ``get_logger(__name__)``; the bound name shows up
as ``{extra[name]}`` in the format.
"""

import copy
import sys
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from loguru import logger

from seosync.core.config import config_path

DEFAULT_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{extra[name]}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
)

DEFAULT_LOGGING: Dict[str, Any] = {
    "level": "INFO",
    "format": DEFAULT_FORMAT,
    "console": {"enabled": True, "colorize": True},
    "file": {
        "enabled": True,
        "path": "./logs/seosync.log",
        "rotation": "100 MB",
        "retention": "30 days",
        "compression": "zip",
    },
    "error_file": {
        "enabled": True,
        "path": "./logs/errors.log",
        "level": "ERROR",
        "rotation": "50 MB",
        "retention": "90 days",
    },
    "json": {"enabled": False, "path": "./logs/seosync.json"},
}

_configured = False


def load_logging_config(path: Optional[str] = None) -> Dict[str, Any]:
    """Defaults overlaid with the YAML ``logging`` section, one level deep."""
    merged = copy.deepcopy(DEFAULT_LOGGING)
    try:
        with open(Path(path) if path else config_path(), "r") as f:
            section = (yaml.safe_load(f) or {}).get("logging") or {}
    except FileNotFoundError:
        section = {}

    for key, value in section.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key].update(value)
        else:
            merged[key] = value
    return merged


def _add_file_sink(options: Dict[str, Any], fmt: str, level: str, serialize: bool = False) -> None:
    path = Path(options["path"])
    path.parent.mkdir(parents=True, exist_ok=True)
    logger.add(
        path,
        format=fmt,
        level=options.get("level", level),
        rotation=options.get("rotation", "100 MB"),
        retention=options.get("retention", "30 days"),
        compression=options.get("compression"),
        serialize=serialize,
        backtrace=True,
        diagnose=False,
    )


def setup_logging(config_path: Optional[str] = None):
    """
    (Re)build all sinks.

    Args:
        config_path: settings.yaml to read instead of the default location
    """
    global _configured
    config = load_logging_config(config_path)
    level = config.get("level", "INFO")
    fmt = config.get("format") or DEFAULT_FORMAT

    logger.remove()
    # records logged without get_logger() still render {extra[name]}
    logger.configure(extra={"name": "seosync"})

    console = config.get("console", {})
    if console.get("enabled", True):
        logger.add(
            sys.stderr,
            format=fmt,
            level=level,
            colorize=console.get("colorize", True),
            backtrace=True,
            diagnose=False,
        )

    if config.get("file", {}).get("enabled", True):
        _add_file_sink(config["file"], fmt, level)

    if config.get("error_file", {}).get("enabled", True):
        _add_file_sink(config["error_file"], fmt, "ERROR")

    json_sink = config.get("json", {})
    if json_sink.get("enabled", False):
        # rotation/retention follow the main file sink
        options = {**config.get("file", {}), **json_sink, "compression": None}
        _add_file_sink(options, "{message}", level, serialize=True)

    _configured = True
    logger.info("Logging system initialized")


def get_logger(name: Optional[str] = None):
    """
    Logger bound to ``name``; configures sinks on first use.

    Example:
        >>> from seosync.utils.logger import get_logger
        >>> log = get_logger(__name__)
        >>> log.info("Refreshing tenant")
    """
    if not _configured:
        setup_logging()
    return logger.bind(name=name or "seosync")
