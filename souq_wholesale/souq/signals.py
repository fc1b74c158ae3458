import logging

from django.db import transaction
from django.dispatch import Signal, receiver

audit_logger = logging.getLogger("souq.audit")

# Sent after commit with entity_type, entity_id, action, actor.
ledger_event = Signal()


def emit_ledger_event(entity_type, entity_id, action, actor=None):
    """
    Queue an audit notification for after the surrounding transaction
    commits. Rolled-back operations never notify.
    """
    def _send():
        ledger_event.send_robust(
            sender=entity_type,
            entity_type=entity_type,
            entity_id=entity_id,
            action=action,
            actor=actor,
        )

    transaction.on_commit(_send)


@receiver(ledger_event)
def log_ledger_event(sender, entity_type, entity_id, action, actor=None, **kwargs):
    audit_logger.info(
        "%s %s #%s by %s",
        action, entity_type, entity_id, getattr(actor, "username", None) or "system",
    )
