from decimal import Decimal

from django.conf import settings

DEFAULTS = {
    "INVOICE_EDIT_WINDOW_DAYS": 2,
    "COLLECTION_EDIT_WINDOW_DAYS": 2,
    "BACKDATED_DAYS": 2,
    "COMPANY_COMMISSION_RATE": Decimal("6"),
    "NUMBER_PREFIXES": {
        "invoice": "INV-",
        "collection": "COL-",
        "shipment": "SHP-",
        "expense": "EXP-",
        "return": "RET-",
        "transfer": "TRF-",
        "credit_note": "CN-",
        "debit_note": "DN-",
        "adjustment": "ADJ-",
    },
    "NUMBER_DIGITS": 5,
    "ENFORCE_MANUAL_SUM": True,
}


def get_setting(name):
    """
    Read a business knob from settings.SOUQ, falling back to DEFAULTS.
    Looked up on every call so override_settings works in tests.
    """
    if name not in DEFAULTS:
        raise KeyError(f"Unknown souq setting: {name}")
    overrides = getattr(settings, "SOUQ", None) or {}
    return overrides.get(name, DEFAULTS[name])
