import logging

logger = logging.getLogger("dispatch.events")

OFFER_ISSUED = "offer_issued"
OFFER_RESPONDED = "offer_responded"
OFFER_EXPIRED = "offer_expired"
ROUND_STARTED = "round_started"
REQUEST_ASSIGNED = "request_assigned"
REQUEST_EXHAUSTED = "request_exhausted"
ACCEPT_VOIDED = "accept_voided"


def emit(event: str, **fields) -> None:
    """
    Structured dispatch event. Handlers can read `record.dispatch_event`
    and `record.event_fields`; the message keeps a readable key=value form.
    """
    rendered = " ".join(f"{key}={value}" for key, value in sorted(fields.items()))
    logger.info(
        "%s %s",
        event,
        rendered,
        extra={"dispatch_event": event, "event_fields": fields},
    )
