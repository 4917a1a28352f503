"""
Environment-file loading.

Reads simple ``KEY=VALUE`` files (the ``.env`` convention) used to hold the
mail relay credentials::

    # SendGrid
    SENDGRID_API_KEY="SG.xxxxx"
    SENDGRID_FROM = reports@example.com

Rules:
- blank lines and lines starting with ``#`` are skipped
- lines without ``=`` or with an empty key are skipped with a warning
- whitespace around keys and values is trimmed
- one pair of matching single or double quotes around a value is removed

Parsing never touches ``os.environ``. ``apply_env`` merges parsed values
into an environment mapping WITHOUT overwriting variables already set, so
the real environment always wins over the file.
"""

import logging
import os
from typing import Dict, Iterable, MutableMapping, Optional


logger = logging.getLogger(__name__)

# Searched in order by the mail relay; the first readable file wins.
DEFAULT_ENV_PATHS = ("../../.env", "../.env", ".env")


def parse_env_lines(lines: Iterable[str], source: str = "<string>") -> Dict[str, str]:
    values: Dict[str, str] = {}

    for line_num, raw in enumerate(lines, start=1):
        line = raw.rstrip("\r\n").strip(" \t")

        if not line or line.startswith("#"):
            continue

        if "=" not in line:
            logger.warning(f"{source}: line {line_num}: no '=' found, skipping")
            continue

        key, value = line.split("=", 1)
        key = key.strip(" \t")
        if not key:
            logger.warning(f"{source}: line {line_num}: empty key, skipping")
            continue

        value = value.strip(" \t\r\n")
        if len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
            value = value[1:-1]

        values[key] = value

    return values


def parse_env_file(path: str) -> Dict[str, str]:
    """
    Parse an env file.

    Raises:
        OSError: If the file cannot be opened or read.
    """
    logger.debug(f"Loading environment file {path}")
    with open(path, "r", encoding="utf-8") as f:
        values = parse_env_lines(f, source=path)

    if not values:
        logger.warning(f"No variables loaded from {path}")
    else:
        logger.debug(f"Loaded {len(values)} variables from {path}")
    return values


def apply_env(values: Dict[str, str], environ: Optional[MutableMapping[str, str]] = None) -> int:
    """
    Merge values into environ without overwriting. Returns how many were set.
    """
    env = os.environ if environ is None else environ
    applied = 0
    for key, value in values.items():
        if key not in env:
            env[key] = value
            applied += 1
    return applied


def find_env_file(paths: Iterable[str] = DEFAULT_ENV_PATHS) -> Optional[str]:
    """Return the first path that is a readable file, or None."""
    for path in paths:
        logger.debug(f"Trying env file {path}")
        if os.path.isfile(path) and os.access(path, os.R_OK):
            return path
    return None


def load_env_file(path: str, environ: Optional[MutableMapping[str, str]] = None) -> int:
    """Parse ``path`` and merge it into the environment (no overwrite)."""
    applied = apply_env(parse_env_file(path), environ)
    logger.info(f"Applied {applied} variables from {path}")
    return applied
