"""Stored-name utilities.

All blob keys are built by generate_stored_name() so a stored name is
always a bare file name: no directories, no reserved characters.
"""

import os
import re
from uuid import uuid4

MAX_BASE_NAME_LENGTH = 180

_RESERVED_CHARS = re.compile(r'[\\/\0<>:"|?*]')


def safe_base_name(name: str | None) -> str:
    """Strip path components and reserved characters from a client file name.

    Returns "file" when nothing usable is left.
    """
    base = os.path.basename((name or "file").replace("\\", "/"))
    cleaned = _RESERVED_CHARS.sub("_", base)[:MAX_BASE_NAME_LENGTH]
    if cleaned in ("", ".", ".."):
        return "file"
    return cleaned


def generate_stored_name(original_name: str | None) -> str:
    """Build a unique stored name: "<uuid4>-<safe base name>"."""
    return f"{uuid4()}-{safe_base_name(original_name)}"
