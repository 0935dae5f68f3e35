from fastapi import HTTPException, Request

from mpesa_ingest.services.ingestion import IngestionCoordinator
from mpesa_ingest.services.unmatched import UnmatchedMessageLog


def get_coordinator(request: Request) -> IngestionCoordinator:
    coordinator = getattr(request.app.state, "coordinator", None)
    if not coordinator:
        raise HTTPException(status_code=500, detail="Service not initialized")
    return coordinator


def get_unmatched_log(request: Request) -> UnmatchedMessageLog:
    coordinator = get_coordinator(request)
    return coordinator.unmatched_log
