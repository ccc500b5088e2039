from decimal import Decimal, InvalidOperation
from typing import Optional, Tuple

from app.core.exceptions import ValidationError


def _parse(value, name: str, limit: int) -> str:
    text = str(value).strip() if value is not None else ""
    if not text:
        raise ValidationError(f"{name} is required")
    try:
        number = Decimal(text)
    except InvalidOperation:
        raise ValidationError(f"{name} must be a decimal number, got {value!r}")
    if not number.is_finite() or abs(number) > limit:
        raise ValidationError(f"{name} must be between -{limit} and {limit}")
    # The original text is kept, not the normalised Decimal
    return text


def validate_coordinates(latitude, longitude) -> Tuple[str, str]:
    """
    Check a latitude/longitude pair and return them as the strings to store.
    Values are preserved verbatim (no rounding or renormalisation).
    """
    return _parse(latitude, "latitude", 90), _parse(longitude, "longitude", 180)


def optional_coordinates(latitude, longitude) -> Tuple[Optional[str], Optional[str]]:
    """Both or neither: a lone latitude or longitude is a validation error"""
    if latitude in (None, "") and longitude in (None, ""):
        return None, None
    return validate_coordinates(latitude, longitude)
