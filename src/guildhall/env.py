from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

from dotenv import dotenv_values

ENV_PREFIX = "GUILDHALL_"

_LOADED = False


def load_dotenv_if_present(dotenv_path: Optional[str] = None) -> bool:
    """Load GUILDHALL_* settings from a .env file, once per process.

    The file is `dotenv_path`, else $GUILDHALL_DOTENV_PATH, else ./.env.
    Only GUILDHALL_-prefixed keys are imported and variables already set in
    the environment always win, so a stray .env cannot change PATH & co.

    Returns True if a file was found and read.
    """
    global _LOADED
    if _LOADED:
        return False
    _LOADED = True

    path = Path(dotenv_path or os.getenv("GUILDHALL_DOTENV_PATH", ".env")).expanduser()
    if not path.is_file():
        return False

    for key, value in dotenv_values(str(path)).items():
        if key.startswith(ENV_PREFIX) and value is not None and key not in os.environ:
            os.environ[key] = value
    return True
