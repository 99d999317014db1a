import os
import re
from typing import Iterable, Optional, Union


_TRUTHY_ENV_VALUES = frozenset({"1", "true", "yes", "on"})
_SAFE_ID_PATTERN = re.compile(r"^[a-zA-Z0-9._:-]{1,128}$")


def env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in _TRUTHY_ENV_VALUES


def positive_int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return value if value > 0 else default


def non_negative_int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return value if value >= 0 else default


def optional_positive_int_env(name: str) -> Optional[int]:
    # Unset, blank, zero and garbage all mean "not configured".
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return None
    try:
        value = int(raw)
    except ValueError:
        return None
    return value if value > 0 else None


def positive_float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        value = float(raw)
    except ValueError:
        return default
    return value if value > 0 else default


def split_csv(value: Union[str, Iterable, None]) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        parts = value.split(",")
    elif isinstance(value, (int, float)):
        parts = [str(value)]
    elif isinstance(value, Iterable):
        parts = [str(part) for part in value]
    else:
        raise ValueError(f"expected a comma separated string or a list, got {type(value).__name__}")
    return [part.strip() for part in parts if part is not None and str(part).strip()]


def sanitize_identifier(raw: Optional[str], *, fallback: str, max_len: int = 128) -> str:
    if raw is None:
        return fallback
    value = raw.strip()[:max_len]
    if not value:
        return fallback
    if _SAFE_ID_PATTERN.match(value) is None:
        return fallback
    return value
