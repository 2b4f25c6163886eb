"""Canonical forms for comparable entity fields.

Every function here is pure and never raises: on unusable input it returns
the best-effort value (usually the input unchanged).
"""

import re
from typing import Any, Mapping
from urllib.parse import urlsplit, urlunsplit

SOCIAL_KEYS = ("twitter", "instagram", "facebook", "linkedin", "tiktok", "github")

# Attribute keys that may carry each comparable field, first match wins
EMAIL_KEYS = ("email", "mail", "e_mail")
PHONE_KEYS = ("phone", "telephone", "tel", "msisdn")
URL_KEYS = ("url", "website", "site", "link")

_NON_DIGITS = re.compile(r"\D")


def normalize_email(value: Any) -> Any:
    if not isinstance(value, str):
        return value
    return value.strip().lower()


def normalize_phone(value: Any) -> Any:
    """Keep digits only, restoring a leading '+' when the input had one."""
    if not value or not isinstance(value, str):
        return value
    digits = _NON_DIGITS.sub("", value)
    return f"+{digits}" if value.strip().startswith("+") else digits


def normalize_url(value: Any) -> Any:
    """Drop the fragment and trailing slashes, lowercase scheme and host.

    Values without a scheme or host (``example.com/about``) are not treated as
    URLs and fall back to trim + lowercase.
    """
    if not value or not isinstance(value, str):
        return value
    raw = value.strip()
    try:
        parts = urlsplit(raw)
    except ValueError:
        return raw.lower()
    if not parts.scheme or not parts.netloc:
        return raw.lower()
    path = parts.path.rstrip("/") or "/"
    return urlunsplit((parts.scheme.lower(), parts.netloc.lower(), path, parts.query, ""))


def normalize_social_handles(data: Mapping[str, Any]) -> dict[str, str]:
    """Trim + lowercase the known social handle keys; absent keys are omitted."""
    return {
        key: str(data[key]).strip().lower()
        for key in SOCIAL_KEYS
        if data.get(key)
    }


def _first_present(data: Mapping[str, Any], keys: tuple[str, ...]) -> Any:
    for key in keys:
        if data.get(key):
            return data[key]
    return None


def extract_match_keys(attributes: Mapping[str, Any]) -> dict[str, Any]:
    """Build the normalized comparison signature of an attribute bag.

    Returns a dict with any of ``email``, ``phone``, ``url`` and ``socials``.
    """
    keys: dict[str, Any] = {}
    if not isinstance(attributes, Mapping):
        return keys

    email = _first_present(attributes, EMAIL_KEYS)
    if email:
        keys["email"] = normalize_email(email)
    phone = _first_present(attributes, PHONE_KEYS)
    if phone:
        keys["phone"] = normalize_phone(phone)
    url = _first_present(attributes, URL_KEYS)
    if url:
        keys["url"] = normalize_url(url)
    socials = normalize_social_handles(attributes)
    if socials:
        keys["socials"] = socials
    return keys
