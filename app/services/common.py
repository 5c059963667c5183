import re
from typing import Any

_DELIMITERS = re.compile(r"[,;]")
_TRUE_VALUES = {"1", "true", "yes", "on"}


def split_delimited(value: Any) -> list[str]:
    if isinstance(value, (list, tuple, set)):
        tokens = [str(item).strip() for item in value if item]
    elif isinstance(value, str):
        tokens = [token.strip() for token in _DELIMITERS.split(value)]
    else:
        return []
    return list(dict.fromkeys(token for token in tokens if token))


def parse_flag(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in _TRUE_VALUES
    return bool(value)
