"""Logging configuration for legend-ranker."""

import logging
import sys

_ROOT = "legend_ranker"


def setup_logger(name: str = _ROOT, level: str | None = None) -> logging.Logger:
    """Create and configure a logger under the ``legend_ranker`` namespace.

    The level defaults to ``app.log_level`` from settings.yaml.
    """
    if level is None:
        from legend_ranker.config import setting

        level = setting("app", "log_level", "INFO")

    full_name = name if name == _ROOT or name.startswith(_ROOT + ".") else f"{_ROOT}.{name}"
    logger = logging.getLogger(full_name)
    if not logger.handlers:
        handler = logging.StreamHandler(sys.stderr)
        fmt = logging.Formatter(
            "%(asctime)s | %(name)-28s | %(levelname)-7s | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
        handler.setFormatter(fmt)
        logger.addHandler(handler)
    logger.setLevel(getattr(logging, str(level).upper(), logging.INFO))
    return logger
