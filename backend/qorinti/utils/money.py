from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def to_decimal(value) -> Decimal:
    """Coerce int/float/str/Decimal to a finite Decimal without float artefacts."""
    if isinstance(value, float):
        value = str(value)
    try:
        result = value if isinstance(value, Decimal) else Decimal(value)
    except (InvalidOperation, TypeError) as exc:
        raise ValueError(f"Not a monetary amount: {value!r}") from exc
    if not result.is_finite():
        raise ValueError(f"Not a monetary amount: {value!r}")
    return result


def round2(value) -> Decimal:
    """Quantize to cents, half up. Applied at every write boundary."""
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def clamp_non_negative(value: Decimal) -> Decimal:
    return value if value > ZERO else ZERO
