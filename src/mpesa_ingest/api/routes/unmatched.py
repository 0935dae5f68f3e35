from typing import Annotated

from fastapi import APIRouter, Depends, Query

from mpesa_ingest.api.dependencies import get_unmatched_log
from mpesa_ingest.services.unmatched import UnmatchedCluster, UnmatchedEntry, UnmatchedMessageLog

router = APIRouter()


@router.get("/api/unmatched", response_model=list[UnmatchedEntry])
async def list_unmatched(
    log: Annotated[UnmatchedMessageLog, Depends(get_unmatched_log)],
    limit: Annotated[int | None, Query(ge=1)] = None,
) -> list[UnmatchedEntry]:
    return log.recent(limit)


@router.get("/api/unmatched/clusters", response_model=list[UnmatchedCluster])
async def list_unmatched_clusters(
    log: Annotated[UnmatchedMessageLog, Depends(get_unmatched_log)],
    threshold: Annotated[float | None, Query(ge=0, le=100)] = None,
) -> list[UnmatchedCluster]:
    return log.clusters(threshold)
