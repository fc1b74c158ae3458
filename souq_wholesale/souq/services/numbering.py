from django.db import transaction
from django.db.models import F

from ..conf import get_setting
from ..models import NumberSequence

FIFO_KEY = "fifo"


def next_value(key):
    """
    Increment and return the counter for `key` inside the caller's
    transaction. The row lock serialises concurrent callers.
    """
    with transaction.atomic():
        seq, _ = NumberSequence.objects.select_for_update().get_or_create(key=key)
        NumberSequence.objects.filter(pk=seq.pk).update(last_value=F("last_value") + 1)
        seq.refresh_from_db(fields=["last_value"])
        return seq.last_value


def next_number(doc_type):
    """INV-00001 style document number for one of NUMBER_PREFIXES."""
    prefixes = get_setting("NUMBER_PREFIXES")
    digits = get_setting("NUMBER_DIGITS")
    return f"{prefixes[doc_type]}{next_value(doc_type):0{digits}d}"
