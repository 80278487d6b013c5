import re
from typing import Optional

SENTINEL_VALUES = {
    "not provided", "n/a", "na", "unknown", "none", "null", "tbd", "",
    "name", "preferred_time", "preferred time", "...",
}

E164_PATTERN = re.compile(r"^\+[1-9]\d{6,14}$")


def _clean(value) -> Optional[str]:
    if not isinstance(value, str):
        return None
    cleaned = value.strip()
    if cleaned.lower() in SENTINEL_VALUES:
        return None
    # Reject template variables echoed back from the prompt
    if "{{" in cleaned or "}}" in cleaned:
        return None
    return cleaned


def validate_name(value) -> Optional[str]:
    cleaned = _clean(value)
    if cleaned is None:
        return None
    # Reject phone numbers used as names
    if re.match(r"^[\d+\-() ]{7,}$", cleaned):
        return None
    if not re.search(r"[^\W\d_]", cleaned):
        return None
    return cleaned


def validate_preferred_time(value) -> Optional[str]:
    return _clean(value)


def is_e164(number: str) -> bool:
    return bool(E164_PATTERN.match((number or "").strip()))
