import re
from collections import deque
from datetime import datetime

from pydantic import BaseModel, Field
from rapidfuzz import fuzz, process

from mpesa_ingest.logger import get_logger

logger = get_logger(__name__)

_DIGITS = re.compile(r"\d+")


class UnmatchedEntry(BaseModel):
    body: str
    origin: str = ""
    received_at: datetime = Field(default_factory=datetime.now)


class UnmatchedCluster(BaseModel):
    exemplar: str
    count: int
    bodies: list[str]


def _shape(body: str) -> str:
    # Amounts, codes and phone numbers differ between otherwise identical messages
    return _DIGITS.sub("#", body)


class UnmatchedMessageLog:
    """Bounded record of provider messages that no template recognised."""

    def __init__(self, max_entries: int = 200, cluster_threshold: float = 80.0):
        self.entries: deque[UnmatchedEntry] = deque(maxlen=max_entries)
        self.cluster_threshold = cluster_threshold

    def record(self, body: str, origin: str = "") -> UnmatchedEntry:
        entry = UnmatchedEntry(body=body, origin=origin)
        self.entries.append(entry)
        logger.info("[UNMATCHED] No template matched message from '%s': %s", origin, body)
        return entry

    def recent(self, limit: int | None = None) -> list[UnmatchedEntry]:
        items = list(reversed(self.entries))
        return items[:limit] if limit is not None else items

    def clear(self) -> None:
        self.entries.clear()

    def clusters(self, threshold: float | None = None) -> list[UnmatchedCluster]:
        """Group similar bodies so a new template can cover a whole group."""
        cutoff = self.cluster_threshold if threshold is None else threshold
        shapes: list[str] = []
        groups: list[list[str]] = []

        for entry in self.entries:
            shape = _shape(entry.body)
            result = process.extractOne(
                shape,
                shapes,
                scorer=fuzz.token_sort_ratio,
                score_cutoff=cutoff,
            )
            if result:
                _, _, index = result
                groups[index].append(entry.body)
            else:
                shapes.append(shape)
                groups.append([entry.body])

        clusters = [
            UnmatchedCluster(exemplar=bodies[0], count=len(bodies), bodies=bodies)
            for bodies in groups
        ]
        clusters.sort(key=lambda cluster: cluster.count, reverse=True)
        return clusters
