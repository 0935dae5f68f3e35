from typing import Annotated

from fastapi import APIRouter, Depends

from mpesa_ingest.api.dependencies import get_coordinator
from mpesa_ingest.api.schemas import InboundMessage
from mpesa_ingest.logger import get_logger
from mpesa_ingest.models import IngestResult, RawMessage
from mpesa_ingest.services.ingestion import IngestionCoordinator

logger = get_logger(__name__)

router = APIRouter()


@router.post("/webhook/sms", response_model=IngestResult)
async def sms_webhook(
    inbound: InboundMessage,
    coordinator: Annotated[IngestionCoordinator, Depends(get_coordinator)],
) -> IngestResult:
    logger.info("[WEBHOOK] Message received from '%s'.", inbound.origin or "unknown")
    result = await coordinator.ingest(
        RawMessage(body=inbound.body, origin=inbound.origin),
        inbound.user_id,
    )
    logger.debug("[WEBHOOK] Outcome for user %s: %s", inbound.user_id, result.status)
    return result
