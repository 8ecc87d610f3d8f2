"""Node start-up helpers: log configuration and persistent configuration."""

from __future__ import annotations

import logging
import sys
from typing import Union

from .model import Address, DefaultBlock, NodePersistentConfig, hex_to_address
from .reads import ReadRepository
from .writes import RepositoryError

logger = logging.getLogger(__name__)

_RESET = "\033[0m"
_LEVEL_COLORS = {
    logging.DEBUG: "\033[2m",
    logging.INFO: "\033[92m",
    logging.WARNING: "\033[93m",
    logging.ERROR: "\033[91m",
    logging.CRITICAL: "\033[91m",
}


class _NodeLogHandler(logging.StreamHandler):
    """Stream handler installed by ``config_logs``."""


class _ColorFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        text = super().format(record)
        color = _LEVEL_COLORS.get(record.levelno, "")
        return f"{color}{text}{_RESET}" if color else text


def _parse_level(level: Union[int, str]) -> int:
    if isinstance(level, int):
        return level
    name = str(level).strip().upper()
    if name == "WARN":
        name = "WARNING"
    value = logging.getLevelName(name)
    if not isinstance(value, int):
        raise ValueError(f"unknown log level: {level!r}")
    return value


def config_logs(log_level: Union[int, str], log_pretty_enabled: bool) -> logging.Handler:
    """Send the root logger to stdout at ``log_level``; colour only on a terminal."""
    level = _parse_level(log_level)
    stream = sys.stdout
    is_terminal = hasattr(stream, "isatty") and stream.isatty()
    colored = log_pretty_enabled and is_terminal

    fmt = "%(asctime)s.%(msecs)03d %(levelname)s"
    if level == logging.DEBUG:
        fmt += " %(pathname)s:%(lineno)d"
    fmt += " %(message)s"
    formatter_class = _ColorFormatter if colored else logging.Formatter
    handler = _NodeLogHandler(stream)
    handler.setFormatter(formatter_class(fmt, datefmt="%Y-%m-%dT%H:%M:%S"))

    root = logging.getLogger()
    for existing in [h for h in root.handlers if isinstance(h, _NodeLogHandler)]:
        root.removeHandler(existing)
        existing.close()
    root.addHandler(handler)
    root.setLevel(level)
    return handler


def setup_node_persistent_config(
    database: ReadRepository,
    default_block: Union[DefaultBlock, str],
    input_box_deployment_block: int,
    input_box_address: Union[Address, str],
    chain_id: int,
) -> NodePersistentConfig:
    """Return the stored node configuration, storing the given one if none exists."""
    try:
        config = database.get_node_config()
    except RepositoryError as exc:
        raise RepositoryError(
            f"Could not retrieve persistent config from Database. {exc}"
        ) from exc

    if config is not None:
        logger.info("Node was already configured. Using previous persistent config %s", config)
        return config

    address = (
        hex_to_address(input_box_address)
        if isinstance(input_box_address, str)
        else bytes(input_box_address)
    )
    config = NodePersistentConfig(
        default_block=DefaultBlock(default_block),
        input_box_deployment_block=int(input_box_deployment_block),
        input_box_address=address,
        chain_id=int(chain_id),
    )
    logger.info("No persistent config found at the database. Setting it up %s", config)
    try:
        database.insert_node_config(config)
    except RepositoryError as exc:
        raise RepositoryError(f"Couldn't insert database config. Error : {exc}") from exc
    return config