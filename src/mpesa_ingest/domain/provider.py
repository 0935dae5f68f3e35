from mpesa_ingest.models import Direction, RawMessage

PROVIDER_NAME = "M-Pesa"
BODY_MARKER = "M-PESA"
ORIGIN_MARKERS = ("M-PESA", "MPESA")


def is_provider_message(message: RawMessage) -> bool:
    origin = message.origin or ""
    if any(marker in origin for marker in ORIGIN_MARKERS):
        return True
    return BODY_MARKER in (message.body or "")


def uncategorized_name(direction: Direction) -> str:
    return f"Uncategorized {direction.value.capitalize()}"
