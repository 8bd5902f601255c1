"""Shared validation utilities"""

import re
from typing import Optional


def validate_se_phone(phone: Optional[str]) -> Optional[str]:
    """
    Validate and normalize a Swedish phone number to E.164 format.

    Args:
        phone: Phone number string, national ("070-123 45 67") or international

    Returns:
        Normalized phone number in E.164 format (+46XXXXXXXXX)

    Raises:
        ValueError: If phone number is invalid
    """
    if not phone:
        return phone

    # Remove all non-digit characters
    digits = re.sub(r"\D", "", phone)

    # Handle 0046 / 46 / leading trunk zero
    if digits.startswith("0046"):
        digits = digits[4:]
    elif digits.startswith("46") and phone.strip().startswith("+"):
        digits = digits[2:]
    elif digits.startswith("0"):
        digits = digits[1:]

    # Swedish subscriber numbers are 7-9 digits after the country code
    if not 7 <= len(digits) <= 9:
        raise ValueError("Phone number must be a Swedish number")

    return f"+46{digits}"


def validate_email(email: Optional[str]) -> Optional[str]:
    """
    Validate email format.

    Args:
        email: Email address string

    Returns:
        Lowercase email address

    Raises:
        ValueError: If email format is invalid
    """
    if not email:
        return email

    email = email.strip().lower()

    email_pattern = r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$"

    if not re.match(email_pattern, email):
        raise ValueError("Invalid email format")

    return email
