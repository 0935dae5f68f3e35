import asyncio
from collections.abc import Callable, Hashable

from mpesa_ingest.domain.provider import PROVIDER_NAME, is_provider_message, uncategorized_name
from mpesa_ingest.integration.store import LedgerStore
from mpesa_ingest.logger import get_logger
from mpesa_ingest.models import (
    Committed,
    IngestResult,
    NewTransaction,
    ParsedCandidate,
    RawMessage,
    Rejected,
    RejectReason,
    Skipped,
    SkipReason,
    StoredTransaction,
)
from mpesa_ingest.parsing.classifier import TemplateClassifier
from mpesa_ingest.parsing.normalizer import NormalizationError, normalize
from mpesa_ingest.services.dedup import DEFAULT_WINDOW_SECONDS, DedupResolver
from mpesa_ingest.services.locks import KeyedLock
from mpesa_ingest.services.unmatched import UnmatchedMessageLog

logger = get_logger(__name__)

TransactionObserver = Callable[[ParsedCandidate], None]


class IngestionCoordinator:
    """Turns one raw notification into at most one stored transaction.

    ``ingest`` always returns a typed outcome; message content and store
    failures never escape as exceptions.
    """

    def __init__(
        self,
        store: LedgerStore,
        *,
        classifier: TemplateClassifier | None = None,
        unmatched_log: UnmatchedMessageLog | None = None,
        dedup_window_seconds: int = DEFAULT_WINDOW_SECONDS,
        serialize_commits: bool = True,
    ) -> None:
        self.store = store
        self.classifier = classifier or TemplateClassifier()
        self.unmatched_log = unmatched_log or UnmatchedMessageLog()
        self.dedup = DedupResolver(store, window_seconds=dedup_window_seconds)
        self.serialize_commits = serialize_commits
        self._commit_locks = KeyedLock()
        self._observers: list[TransactionObserver] = []

    def add_observer(self, observer: TransactionObserver) -> None:
        self._observers.append(observer)

    def remove_observer(self, observer: TransactionObserver) -> None:
        if observer in self._observers:
            self._observers.remove(observer)

    async def ingest(self, message: RawMessage, user_id: str) -> IngestResult:
        if not is_provider_message(message):
            logger.debug("[INGEST] Ignoring message from '%s'.", message.origin)
            return Skipped(reason=SkipReason.NOT_PROVIDER)

        match = self.classifier.classify(message.body)
        if match is None:
            self.unmatched_log.record(message.body, message.origin)
            return Skipped(reason=SkipReason.UNMATCHED)

        try:
            candidate = normalize(match)
        except NormalizationError as exc:
            logger.warning(
                "[INGEST] Template '%s' matched but normalization failed: %s",
                match.template.name,
                exc,
            )
            return Rejected(reason=RejectReason.PARSE_ERROR, detail=str(exc))

        if self.serialize_commits:
            async with self._commit_locks.hold(self._commit_key(candidate, user_id)):
                result = await self._commit(candidate, message, user_id)
        else:
            result = await self._commit(candidate, message, user_id)

        if isinstance(result, Committed):
            self._notify(candidate)
        return result

    def _commit_key(self, candidate: ParsedCandidate, user_id: str) -> Hashable:
        if candidate.reference_code:
            return (user_id, candidate.reference_code)
        return (user_id, candidate.amount, candidate.counterparty)

    async def _commit(
        self, candidate: ParsedCandidate, message: RawMessage, user_id: str
    ) -> IngestResult:
        try:
            source, category = await asyncio.gather(
                self.store.get_or_create_source(user_id, PROVIDER_NAME),
                self.store.get_or_create_category(
                    user_id,
                    uncategorized_name(candidate.direction),
                    candidate.direction,
                ),
            )

            duplicate = await self.dedup.find_duplicate(candidate, user_id)
            if duplicate:
                logger.info(
                    "[INGEST] Duplicate %s transaction skipped (existing %s).",
                    candidate.direction.value,
                    duplicate.id,
                )
                return Skipped(reason=SkipReason.DUPLICATE, transaction_id=duplicate.id)

            stored = await self.store.create_transaction(
                NewTransaction(
                    **candidate.model_dump(),
                    user_id=user_id,
                    source_id=source.id,
                    category_id=category.id,
                    metadata={
                        "rawBody": message.body,
                        "referenceCode": candidate.reference_code,
                    },
                )
            )
        except Exception as exc:
            logger.exception("[INGEST] Store failure while committing transaction: %s", exc)
            return Rejected(reason=RejectReason.STORE_ERROR, detail=str(exc))

        self._log_committed(stored)
        return Committed(transaction_id=stored.id)

    def _log_committed(self, stored: StoredTransaction) -> None:
        logger.info(
            "[INGEST] Recorded %s of %s %s (%s) as %s.",
            stored.direction.value,
            stored.amount,
            stored.currency,
            stored.description,
            stored.id,
        )

    def _notify(self, candidate: ParsedCandidate) -> None:
        for observer in list(self._observers):
            try:
                observer(candidate)
            except Exception:
                logger.exception("[INGEST] Observer %r failed.", observer)
