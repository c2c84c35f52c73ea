"""
Validation utilities
"""
import re
from decimal import Decimal, InvalidOperation


def normalize_decimal_input(value: str) -> str:
    """
    Normalize an amount typed by a user: comma decimal separator -> dot

    Example:
        >>> normalize_decimal_input("100,50")
        "100.50"
    """
    return value.strip().replace(",", ".")


def validate_decimal_amount(value: str, max_decimal_places: int = 2) -> tuple[bool, str | None]:
    """
    Validate a money amount string

    Args:
        value: amount as text
        max_decimal_places: maximum digits after the decimal point

    Returns:
        (is_valid, error_message)

    Example:
        >>> validate_decimal_amount("100.50")
        (True, None)
        >>> validate_decimal_amount("100.505")
        (False, "At most 2 decimal places allowed")
    """
    normalized = normalize_decimal_input(value)

    try:
        Decimal(normalized)
    except (InvalidOperation, ValueError):
        return False, "Invalid amount"

    pattern = rf"^-?\d+(\.\d{{1,{max_decimal_places}}})?$"
    if not re.match(pattern, normalized):
        return False, f"At most {max_decimal_places} decimal places allowed"

    return True, None


def parse_amount(value: str | int | Decimal, max_decimal_places: int = 2) -> Decimal:
    """
    Validate and convert an amount to Decimal (raise on error)

    Raises:
        ValueError: if the value is not a valid amount
    """
    if isinstance(value, Decimal):
        return value
    is_valid, error = validate_decimal_amount(str(value), max_decimal_places)
    if not is_valid:
        raise ValueError(error)
    return Decimal(normalize_decimal_input(str(value)))
