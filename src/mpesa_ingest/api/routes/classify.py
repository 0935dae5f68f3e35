from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException

from mpesa_ingest.api.dependencies import get_coordinator
from mpesa_ingest.api.schemas import ClassifyRequest, ClassifyResponse, TemplateInfo
from mpesa_ingest.parsing.normalizer import NormalizationError, normalize
from mpesa_ingest.services.ingestion import IngestionCoordinator

router = APIRouter()


@router.post("/api/classify", response_model=ClassifyResponse)
async def classify_message(
    req: ClassifyRequest,
    coordinator: Annotated[IngestionCoordinator, Depends(get_coordinator)],
) -> ClassifyResponse:
    """Dry run: parse a body without touching the store."""
    match = coordinator.classifier.classify(req.body)
    if match is None:
        return ClassifyResponse()
    try:
        candidate = normalize(match)
    except NormalizationError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    return ClassifyResponse(template=match.template.name, candidate=candidate)


@router.get("/api/templates", response_model=list[TemplateInfo])
async def list_templates(
    coordinator: Annotated[IngestionCoordinator, Depends(get_coordinator)],
) -> list[TemplateInfo]:
    return [
        TemplateInfo(name=template.name, direction=template.direction)
        for template in coordinator.classifier.catalog
    ]
