from pydantic import BaseModel

from mpesa_ingest.models import Direction, ParsedCandidate


class InboundMessage(BaseModel):
    body: str
    origin: str = ""
    user_id: str


class ClassifyRequest(BaseModel):
    body: str


class ClassifyResponse(BaseModel):
    template: str | None = None
    candidate: ParsedCandidate | None = None


class TemplateInfo(BaseModel):
    name: str
    direction: Direction
