import re

_EMAIL_RE = re.compile(r"\S+@\S+\.\S+")
_PHONE_RE = re.compile(r"^\+?\d{10,15}$")


def is_email(identifier: str) -> bool:
    return bool(identifier) and _EMAIL_RE.search(identifier) is not None


def is_phone(identifier: str) -> bool:
    return bool(identifier) and _PHONE_RE.match(identifier.strip()) is not None


def normalize_msisdn(phone: str, default_country_code: str = "91") -> str:
    """Normalize a phone number to the digits-only international form.

    A 10-digit local number gets the deployment's country code; anything
    else (already prefixed, with or without ``+``) passes through as digits.
    """
    if not phone:
        return ""
    digits = re.sub(r"\D", "", phone)
    if len(digits) == 10:
        return f"{default_country_code}{digits}"
    return digits


def mask_phone(phone: str, visible_digits: int = 2) -> str:
    if not phone:
        return ""
    digits = re.sub(r"\D", "", phone)
    if len(digits) <= visible_digits:
        return digits
    return "*" * (len(digits) - visible_digits) + digits[-visible_digits:]


def mask_identifier(identifier: str) -> str:
    """Mask an email or phone for log lines."""
    if not identifier:
        return ""
    if "@" in identifier:
        local, _, domain = identifier.partition("@")
        return (local[:1] or "*") + "***@" + domain
    return mask_phone(identifier)
