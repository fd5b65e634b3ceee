def clean_optional(value: str | None) -> str | None:
    """Trim free text; blank becomes None."""
    if value is None:
        return None
    value = value.strip()
    return value or None
