# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Idempotent ``.env`` loading for a2ha.

Mailbox and SMTP credentials are usually referenced from the YAML config
with ``!env`` tags.  This loader fills the environment from two files,
in order:

1. ``~/.config/a2ha/.env`` (XDG config directory)
2. ``.env`` in the current working directory

``python-dotenv`` never overwrites variables that are already set, so
the real environment wins over both files and the XDG file wins over
the working-directory one.
"""

import logging
from pathlib import Path

from dotenv import load_dotenv


logger = logging.getLogger(__name__)

_dotenv_loaded = False


def load_dotenv_once() -> list[Path]:
    """Load ``.env`` files on first call; later calls do nothing.

    Returns:
        Files loaded by this call (empty after the first call).
    """
    global _dotenv_loaded
    if _dotenv_loaded:
        return []

    from a2ha.config import get_dotenv_path

    loaded: list[Path] = []
    for candidate in (get_dotenv_path(), Path.cwd() / ".env"):
        if candidate.exists():
            load_dotenv(candidate)
            loaded.append(candidate)
            logger.debug("Loaded .env from %s", candidate)

    _dotenv_loaded = True
    return loaded


def reset_dotenv_state() -> None:
    """Reset the loaded flag. For testing only."""
    global _dotenv_loaded
    _dotenv_loaded = False
