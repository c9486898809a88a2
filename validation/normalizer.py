"""
Identifier and record normalization for scraped services.

The portal listing is best-effort: references come with dots, dashes, padding
and the occasional header cell ("SERVICIO"). Everything downstream keys on the
normalized identifier, so this module is the single place where raw
references and raw detail fields are turned into canonical values.
"""

import re
from typing import Any, Optional

from shared_lib.records import DetailFields
from validation.sanitizers import sanitize_text

MIN_ID_DIGITS = 4

# Spanish mobile numbers: 9 digits starting with 6, 7, 8 or 9
MOBILE_PHONE_RE = re.compile(r'^[6789][0-9]{8}$')

MIN_CLIENT_NAME_LENGTH = 3
MIN_ADDRESS_LENGTH = 8

UNKNOWN_CLIENT = "Desconocido"
UNKNOWN_PHONE = "Sin teléfono"

# Values the portal (or an earlier normalization) uses for "nothing here".
# They must never count as data.
PLACEHOLDERS = frozenset({
    UNKNOWN_CLIENT.lower(),
    UNKNOWN_PHONE.lower(),
    'sin telefono',
    'n/a',
    '-',
})

# Canonical ids and phones hold ASCII digits only
_NON_DIGITS = re.compile(r'[^0-9]')


def normalize_id(raw: Any) -> Optional[str]:
    """Canonicalize an external service reference.

    Strips every character other than ASCII 0-9 and returns the remaining
    digits, or None when fewer than 4 digits remain. Never raises.

    >>> normalize_id("14.852-976 ")
    '14852976'
    >>> normalize_id("SERVICIO") is None
    True
    """
    if raw is None or isinstance(raw, bool):
        return None
    try:
        text = raw if isinstance(raw, str) else str(raw)
    except Exception:
        return None
    digits = _NON_DIGITS.sub('', text)
    if len(digits) < MIN_ID_DIGITS:
        return None
    return digits


def _is_placeholder(value: str) -> bool:
    return value.strip().lower() in PLACEHOLDERS


def normalize_phone(raw: Any) -> str:
    """Digits-only phone number without the Spanish country prefix."""
    text = sanitize_text(raw)
    if not text or _is_placeholder(text):
        return ''
    digits = _NON_DIGITS.sub('', text)
    if len(digits) == 13 and digits.startswith('0034'):
        digits = digits[4:]
    elif len(digits) == 11 and digits.startswith('34'):
        digits = digits[2:]
    return digits


def has_minimum_data(detail: DetailFields) -> bool:
    """Check whether a scraped detail is complete enough to stage.

    A detail qualifies if its phone is a 9-digit mobile number, OR it has
    both a client name (at least 3 chars) and a combined address (at least
    8 chars). Partial pages pass on either branch; empty or garbage
    extractions fail both.
    """
    if MOBILE_PHONE_RE.match(normalize_phone(detail.phone)):
        return True

    name = sanitize_text(detail.client_name)
    if not name or _is_placeholder(name) or len(name) < MIN_CLIENT_NAME_LENGTH:
        return False

    address = detail.address
    return bool(address) and len(address) >= MIN_ADDRESS_LENGTH


def normalize_company_label(company: Any, provider_name: str) -> str:
    """Prefix the company label with the provider name unless already present.

    Examples (provider "HomeServe"):
        "Mapfre"            -> "HomeServe - Mapfre"
        "HOMESERVE Mapfre"  -> "HOMESERVE Mapfre"
        ""                  -> "HomeServe"
    """
    label = sanitize_text(company)
    provider = provider_name.strip()
    if not provider:
        return label
    if not label:
        return provider
    if provider.lower() in label.lower():
        return label
    return f"{provider} - {label}"


def to_record_fields(detail: DetailFields, provider_name: str) -> dict[str, str]:
    """Content fields of a PendingRecord built from a scraped detail.

    Returns a camelCase dict ready to merge into a staging document. This is
    the only place where missing-value placeholders are introduced.
    """
    client_name = sanitize_text(detail.client_name, max_length=200)
    if not client_name or _is_placeholder(client_name):
        client_name = UNKNOWN_CLIENT

    phone = normalize_phone(detail.phone)
    if not phone:
        phone = UNKNOWN_PHONE

    return {
        'clientName': client_name,
        'address': detail.address,
        'phone': phone,
        'company': normalize_company_label(detail.company, provider_name),
        'description': sanitize_text(detail.description, max_length=2000),
        'externalStatus': sanitize_text(detail.external_status, max_length=100),
        'dateLabel': sanitize_text(detail.date_label, max_length=100),
    }
