"""Phone number normalization for imported users."""

from typing import Iterable, Optional

from directory_import.config import DEFAULT_COUNTRY_CODE

NO_BREAK_SPACE = '\u00a0'


def select_phone_number(phones: Iterable) -> Optional[str]:
    """
    Pick the phone value to import.

    Entries are ordered by their ``primary`` flag ascending and the first value
    wins, so a non-primary number is selected ahead of the primary one when
    both exist.
    """
    ordered = sorted(phones or (), key=lambda phone: bool(phone.primary))
    if not ordered:
        return None
    return ordered[0].value


def normalize_phone_number(phones: Iterable, country_code: str = DEFAULT_COUNTRY_CODE) -> Optional[str]:
    """
    Normalize a user's phone entries to a single E.164-like string.

    Args:
        phones: Remote phone entries with ``value`` and ``primary`` attributes
        country_code: Prefix used when the number carries no country code

    Returns:
        Normalized number, or the selected value unchanged when it is empty
    """
    phone_number = select_phone_number(phones)

    if not phone_number:
        return phone_number

    # Numbers without a country code are assumed to be local to the default country.
    if not phone_number.startswith('+'):
        phone_number = country_code + phone_number

    # Some directory entries use non-breaking spaces as digit group separators.
    return phone_number.replace(NO_BREAK_SPACE, ' ').replace(' ', '')
