"""Logger namespace for the conference backend.

Every module logs under the ``CMS`` logger so a single ``CMS_LOG_LEVEL`` controls
the application's verbosity; handlers and formatting come from the dictConfig
installed by ``CMS.main`` (JSON on stdout) or from gunicorn's ``logconfig_dict``.
"""
import logging
import os

ROOT_NAME = "CMS"


def _level() -> int:
    level = getattr(logging, os.getenv("CMS_LOG_LEVEL", "INFO").upper(), None)
    return level if isinstance(level, int) else logging.INFO


def setup_logging() -> logging.Logger:
    root = logging.getLogger(ROOT_NAME)
    root.setLevel(_level())
    return root


def get_logger(name: str | None = None) -> logging.Logger:
    """``get_logger("outbox")`` and ``get_logger("CMS.services.outbox")`` both land under ``CMS``."""
    if not name or name == ROOT_NAME:
        return logging.getLogger(ROOT_NAME)
    if name.startswith(ROOT_NAME + "."):
        name = name[len(ROOT_NAME) + 1:]
    return logging.getLogger(ROOT_NAME).getChild(name)


logger = setup_logging()
