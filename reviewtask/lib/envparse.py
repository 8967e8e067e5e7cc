"""
KEY=value settings file parser.

Reads .pr-review/config.env without ever handing it to a shell. Values that
look like shell constructs are rejected outright, so a copied-in snippet
cannot smuggle a command into anything that later shells out.
"""

import re
from pathlib import Path

FORBIDDEN_PATTERNS = [
    r'`',
    r'\$\(',
    r'\$\{',
    r';',
    r'&&',
    r'\|\|',
]

KEY_PATTERN = re.compile(r'^[A-Z][A-Z0-9_]*$')

TRUE_VALUES = {"1", "true", "yes", "on"}
FALSE_VALUES = {"0", "false", "no", "off", ""}


def parse_env_text(text: str, source: str = "<string>") -> dict[str, str]:
    """Parse KEY=value lines into a dict.

    Raises:
        ValueError: on malformed lines, bad keys or forbidden value content
    """
    result = {}
    for lineno, raw in enumerate(text.splitlines(), 1):
        line = raw.strip()
        if not line or line.startswith('#'):
            continue

        if '=' not in line:
            raise ValueError(f"{source}:{lineno}: expected KEY=value")

        key, _, value = line.partition('=')
        key = key.strip()
        value = value.strip()

        if not KEY_PATTERN.match(key):
            raise ValueError(f"{source}:{lineno}: invalid key '{key}'")

        if len(value) >= 2 and value[0] == value[-1] and value[0] in ('"', "'"):
            value = value[1:-1]

        for pattern in FORBIDDEN_PATTERNS:
            if re.search(pattern, value):
                raise ValueError(f"{source}:{lineno}: forbidden pattern in value of {key}")

        result[key] = value
    return result


def load_env(filepath: Path) -> dict[str, str]:
    """
    Parse a settings file.

    Raises:
        FileNotFoundError: if the file doesn't exist
        ValueError: if syntax is invalid or a forbidden pattern is found
    """
    path = Path(filepath)
    if not path.exists():
        raise FileNotFoundError(f"Settings file not found: {path}")
    return parse_env_text(path.read_text(), source=str(path))


def get_bool(env: dict[str, str], key: str, default: bool) -> bool:
    if key not in env:
        return default
    value = env[key].strip().lower()
    if value in TRUE_VALUES:
        return True
    if value in FALSE_VALUES:
        return False
    raise ValueError(f"{key}: expected a boolean, got '{env[key]}'")


def get_int(env: dict[str, str], key: str, default: int) -> int:
    if key not in env or env[key] == "":
        return default
    try:
        return int(env[key])
    except ValueError:
        raise ValueError(f"{key}: expected an integer, got '{env[key]}'") from None


def get_float(env: dict[str, str], key: str, default: float) -> float:
    if key not in env or env[key] == "":
        return default
    try:
        return float(env[key])
    except ValueError:
        raise ValueError(f"{key}: expected a number, got '{env[key]}'") from None


def get_list(env: dict[str, str], key: str, default: list[str]) -> list[str]:
    """Comma-separated list. An explicitly empty value means an empty list."""
    if key not in env:
        return list(default)
    return [item.strip() for item in env[key].split(",") if item.strip()]
