"""
Address fingerprinting for providers that withhold buyer email and phone.

Marketplace orders frequently arrive with redacted PII; the shipping address
is then the only stable signal. The fingerprint is a truncated SHA-256 over
the normalized address fields, stored as the pseudo external id
``address_hash:<hash>`` on the identity it creates.
"""

from __future__ import annotations

import hashlib
import string
import unicodedata
from dataclasses import dataclass
from typing import Any, Mapping

ADDRESS_HASH_LENGTH = 16
ADDRESS_EXTERNAL_ID_PREFIX = "address_hash:"
DEFAULT_COUNTRY = "us"

# Apostrophes join a word ("O'Brien"); any other punctuation separates tokens
_SEPARATORS = string.punctuation.replace("'", "")
_PUNCTUATION_TABLE = str.maketrans(_SEPARATORS, " " * len(_SEPARATORS), "'\u2019")

# Accepted spellings for each field when a raw provider payload is passed in.
_FIELD_ALIASES: dict[str, tuple[str, ...]] = {
    "name": ("name", "full_name", "fullName"),
    "address1": ("address1", "address_line1", "addressLine1", "line1", "street"),
    "address2": ("address2", "address_line2", "addressLine2", "line2"),
    "city": ("city",),
    "state": ("state", "province", "state_or_region", "stateOrRegion", "region"),
    "postal_code": ("postal_code", "postalCode", "zip", "zip_code", "postal"),
    "country": ("country", "country_code", "countryCode"),
}


@dataclass(frozen=True)
class AddressInput:
    """Loosely structured shipping address as reported by a provider."""

    name: str | None = None
    address1: str | None = None
    address2: str | None = None
    city: str | None = None
    state: str | None = None
    postal_code: str | None = None
    country: str | None = None


@dataclass(frozen=True)
class NormalizedAddress:
    name: str
    address1: str
    address2: str
    city: str
    state: str
    postal_code: str
    country: str

    def as_tuple(self) -> tuple[str, ...]:
        return (
            self.name,
            self.address1,
            self.address2,
            self.city,
            self.state,
            self.postal_code,
            self.country,
        )

    @property
    def has_identifying_signal(self) -> bool:
        """Require someone (name or street) somewhere (city or postal code)."""

        return bool((self.name or self.address1) and (self.city or self.postal_code))


def normalize_address_part(value: object | None) -> str:
    """Lower-case, fold accents, turn punctuation into spaces and collapse whitespace."""

    if value is None:
        return ""
    text = unicodedata.normalize("NFKD", str(value))
    text = "".join(ch for ch in text if not unicodedata.combining(ch))
    text = text.lower().translate(_PUNCTUATION_TABLE)
    return " ".join(text.split())


def _read_field(address: AddressInput | Mapping[str, Any] | None, field: str) -> object | None:
    if address is None:
        return None
    if isinstance(address, Mapping):
        for alias in _FIELD_ALIASES[field]:
            value = address.get(alias)
            if value not in (None, ""):
                return value
        return None
    return getattr(address, field, None)


def normalize_address(address: AddressInput | Mapping[str, Any] | None) -> NormalizedAddress:
    """Normalize every field, treating anything missing as empty."""

    parts = {field: normalize_address_part(_read_field(address, field)) for field in _FIELD_ALIASES}
    parts["postal_code"] = parts["postal_code"].replace(" ", "").lstrip("0")
    parts["country"] = parts["country"] or DEFAULT_COUNTRY
    return NormalizedAddress(**parts)


def address_fingerprint(address: AddressInput | Mapping[str, Any] | None) -> str:
    """
    Deterministic hash of a normalized address.

    Never raises: missing fields hash as empty strings. Unit numbers
    (``address2``) are part of the fingerprint, so two apartments in the same
    building stay distinct.
    """

    canonical = "|".join(normalize_address(address).as_tuple())
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:ADDRESS_HASH_LENGTH]


def compute_address_hash(address: AddressInput | Mapping[str, Any] | None) -> str | None:
    """Fingerprint suitable for identity matching, or ``None`` when too sparse."""

    if not normalize_address(address).has_identifying_signal:
        return None
    return address_fingerprint(address)


def address_external_id(address_hash: str) -> str:
    return f"{ADDRESS_EXTERNAL_ID_PREFIX}{address_hash}"


def is_address_external_id(external_id: str | None) -> bool:
    return bool(external_id) and external_id.startswith(ADDRESS_EXTERNAL_ID_PREFIX)


__all__ = [
    "ADDRESS_EXTERNAL_ID_PREFIX",
    "AddressInput",
    "NormalizedAddress",
    "address_external_id",
    "address_fingerprint",
    "compute_address_hash",
    "is_address_external_id",
    "normalize_address",
    "normalize_address_part",
]
