from datetime import timedelta

from mpesa_ingest.integration.store import LedgerStore
from mpesa_ingest.logger import get_logger
from mpesa_ingest.models import ParsedCandidate, StoredTransaction

logger = get_logger(__name__)

DEFAULT_WINDOW_SECONDS = 60


class DedupResolver:
    """Finds an already-stored transaction that a candidate duplicates.

    A provider reference code is authoritative: when the candidate has one,
    only the exact lookup runs. Candidates without a code fall back to
    matching amount and counterparty within ``window_seconds`` either side of
    the candidate timestamp (bounds inclusive).
    """

    def __init__(self, store: LedgerStore, window_seconds: int = DEFAULT_WINDOW_SECONDS):
        self.store = store
        self.window = timedelta(seconds=window_seconds)

    async def find_duplicate(
        self, candidate: ParsedCandidate, user_id: str
    ) -> StoredTransaction | None:
        if candidate.reference_code:
            existing = await self.store.find_transaction_by_reference_code(
                user_id, candidate.reference_code
            )
            if existing:
                logger.info(
                    "[DEDUP] Reference %s already recorded as %s.",
                    candidate.reference_code,
                    existing.id,
                )
            return existing

        if not candidate.counterparty:
            return None

        existing = await self.store.find_transaction_by_amount_and_counterparty_in_window(
            user_id,
            candidate.amount,
            candidate.counterparty,
            candidate.timestamp - self.window,
            candidate.timestamp + self.window,
        )
        if existing:
            logger.info(
                "[DEDUP] %s to '%s' at %s matches %s within %ss.",
                candidate.amount,
                candidate.counterparty,
                candidate.timestamp.isoformat(),
                existing.id,
                int(self.window.total_seconds()),
            )
        return existing
