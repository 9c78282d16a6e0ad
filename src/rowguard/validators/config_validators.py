"""Normalisers applied to raw environment values before pydantic validation."""


def _clean(value: str | None) -> str | None:
    # Environment values often carry stray whitespace (e.g. `LOG_LEVEL=debug ` in .env)
    if value is None:
        return None
    return value.strip()


def to_uppercase(value: str | None) -> str | None:
    """Strip and upper-case a setting value (`" debug"` -> `"DEBUG"`)."""
    value = _clean(value)
    return value.upper() if value is not None else None


def to_lowercase(value: str | None) -> str | None:
    """Strip and lower-case a setting value (`"JSON"` -> `"json"`)."""
    value = _clean(value)
    return value.lower() if value is not None else None
