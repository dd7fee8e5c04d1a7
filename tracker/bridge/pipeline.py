"""
Bridge pipeline: the one resolve-and-persist routine shared by every
source adapter.

Per record: extract -> dedup check -> resolve -> contractor/fact ->
indicators, inside its own SAVEPOINT so a failing record never takes
its neighbours down. Commits every chunk_size records; re-running a
batch is a no-op for records already committed.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Optional

from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session

from config.logging import get_logger
from config.settings import settings
from tracker.bridge.base import (
    ContractorDraft,
    FilingDraft,
    ObservationWithFact,
    RawRecord,
    SourceAdapter,
    iter_records,
)
from tracker.entity_resolution import EntityResolver, Resolution
from tracker.errors import RecordValidationError
from tracker.fraud_analyzer import AnalyzerConfig, detect_grant_mismatch
from tracker.indicators import save_indicators
from tracker.models import (
    Contractor,
    FactType,
    FinancialFact,
    FundingStream,
    Provider,
    RawDocument,
    utcnow,
)
from tracker.normalize import normalize

logger = get_logger("bridge")


@dataclass
class BridgeConfig:
    # Records per commit
    chunk_size: int = 100

    @classmethod
    def from_settings(cls) -> "BridgeConfig":
        return cls(chunk_size=settings.BRIDGE_CHUNK_SIZE)


@dataclass
class BridgeResult:
    """Statistics from a bridge run."""
    source_key: str = ""
    documents: int = 0
    documents_processed: int = 0
    records: int = 0
    imported: int = 0
    updated: int = 0
    skipped: int = 0
    duplicates: int = 0
    errors: int = 0
    fraud_indicators_created: int = 0
    pending_review: int = 0
    providers_created: int = 0
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None

    def log_summary(self):
        """Log summary statistics."""
        duration = (self.end_time - self.start_time).total_seconds() if self.end_time and self.start_time else 0
        logger.info("=" * 60)
        logger.info(f"BRIDGE COMPLETE: {self.source_key}")
        logger.info("=" * 60)
        logger.info(f"Duration: {duration:.1f} seconds")
        logger.info(f"Documents: {self.documents} ({self.documents_processed} marked processed)")
        logger.info(f"Records: {self.records}")
        logger.info(f"  - Imported: {self.imported}")
        logger.info(f"  - Updated: {self.updated}")
        logger.info(f"  - Skipped: {self.skipped}")
        logger.info(f"  - Duplicates: {self.duplicates}")
        logger.info(f"Providers created: {self.providers_created}")
        logger.info(f"Pending review: {self.pending_review}")
        logger.info(f"Fraud indicators created: {self.fraud_indicators_created}")
        logger.info(f"Errors: {self.errors}")
        logger.info("=" * 60)


@dataclass
class _RecordOutcome:
    imported: int = 0
    updated: int = 0
    indicators: int = 0
    pending_review: int = 0
    providers_created: int = 0


def store_raw_document(db: Session, source_key: str, content, url: Optional[str] = None) -> RawDocument:
    """Store a scraped document for later bridging. Flushes; caller commits."""
    document = RawDocument(source_key=source_key, url=url, raw_content=content, processed=False)
    db.add(document)
    db.flush()
    return document


class BridgePipeline:
    """
    Bridges raw documents of one source into the unified ledger.

    Usage:
        pipeline = BridgePipeline(db, get_adapter("transparent_nh"))
        result = pipeline.run()
        result.log_summary()
    """

    def __init__(
        self,
        db: Session,
        adapter: SourceAdapter,
        resolver: Optional[EntityResolver] = None,
        config: Optional[BridgeConfig] = None,
        analyzer_config: Optional[AnalyzerConfig] = None,
    ):
        self.db = db
        self.adapter = adapter
        self.resolver = resolver or EntityResolver(db)
        self.config = config or BridgeConfig.from_settings()
        self.analyzer_config = analyzer_config or AnalyzerConfig.from_settings()

    def run(self) -> BridgeResult:
        """Bridge every unprocessed raw document for this adapter's source."""
        documents = (
            self.db.query(RawDocument)
            .filter(
                RawDocument.source_key == self.adapter.source_key,
                RawDocument.processed.is_(False),
            )
            .order_by(RawDocument.id)
            .all()
        )
        logger.info(f"[{self.adapter.source_key}] {len(documents)} unprocessed documents")
        return self.bridge(documents)

    def bridge(self, documents: Iterable[RawDocument]) -> BridgeResult:
        """
        Bridge a batch of raw documents.

        Returns a summary; only systemic storage failures raise.
        """
        result = BridgeResult(source_key=self.adapter.source_key, start_time=datetime.now())
        for document in documents:
            result.documents += 1
            errors_before = result.errors
            self._process_rows(iter_records(document.raw_content), result, document)

            if result.errors == errors_before:
                document.processed = True
                document.processed_at = utcnow()
                result.documents_processed += 1
            else:
                logger.warning(
                    f"[{self.adapter.source_key}] Document {document.id} had "
                    f"{result.errors - errors_before} failed records; left unprocessed"
                )
            self.db.commit()

        result.end_time = datetime.now()
        return result

    def bridge_records(self, rows: Iterable) -> BridgeResult:
        """Bridge rows that were never stored as a raw document."""
        result = BridgeResult(source_key=self.adapter.source_key, start_time=datetime.now())
        self._process_rows(rows, result, None)
        self.db.commit()
        result.end_time = datetime.now()
        return result

    def _process_rows(self, rows: Iterable, result: BridgeResult, document: Optional[RawDocument]):
        pending_commit = 0
        for row in rows:
            result.records += 1
            self._process_record(row, result, document)
            pending_commit += 1
            if pending_commit >= self.config.chunk_size:
                self.db.commit()
                pending_commit = 0
        if pending_commit:
            self.db.commit()

    def _process_record(self, row, result: BridgeResult, document: Optional[RawDocument]):
        source_key = self.adapter.source_key

        if not isinstance(row, dict):
            result.skipped += 1
            logger.warning(f"[{source_key}] Skipping record: not an object ({type(row).__name__})")
            return

        record = RawRecord(row)
        if not self.adapter.is_relevant(record):
            result.skipped += 1
            return

        try:
            extracted = self.adapter.extract(record)
        except RecordValidationError as e:
            result.skipped += 1
            logger.warning(f"[{source_key}] Skipping record: {e}")
            return

        dedup_key = None
        if extracted.fact is not None:
            dedup_key = f"{self.adapter.source_system}:{extracted.fact.natural_key}"
            if self._fact_exists(dedup_key):
                result.duplicates += 1
                return

        name = extracted.observation.name
        try:
            with self.db.begin_nested():
                outcome = self._persist(extracted, dedup_key, document)
        except OperationalError:
            raise
        except IntegrityError as e:
            # Unique key written by an earlier run: already processed
            result.duplicates += 1
            logger.debug(f"[{source_key}] '{name}' already processed: {e.orig}")
            return
        except Exception as e:
            result.errors += 1
            logger.error(f"[{source_key}] Error processing record '{name}': {e}")
            return

        result.imported += outcome.imported
        result.updated += outcome.updated
        result.fraud_indicators_created += outcome.indicators
        result.pending_review += outcome.pending_review
        result.providers_created += outcome.providers_created

    def _persist(
        self,
        extracted: ObservationWithFact,
        dedup_key: Optional[str],
        document: Optional[RawDocument],
    ) -> _RecordOutcome:
        outcome = _RecordOutcome()

        resolution = self.resolver.resolve(extracted.observation)
        provider_id = resolution.provider_id
        if resolution.needs_review:
            outcome.pending_review = 1
        if resolution.created:
            outcome.providers_created = 1

        attributes_applied = self._apply_provider_attributes(provider_id, extracted.provider_attributes)

        contractor = self._upsert_contractor(extracted.contractor) if extracted.contractor else None

        fact = None
        if extracted.fact is not None:
            fact = self._write_fact(extracted, resolution, contractor, dedup_key, document)
            outcome.imported = 1
        elif resolution.created:
            outcome.imported = 1
        elif attributes_applied:
            outcome.updated = 1

        drafts = []
        if extracted.filing is not None and provider_id:
            mismatch = self._check_filing(provider_id, extracted.filing)
            if mismatch is not None:
                drafts.append(mismatch)
        for draft in extracted.indicators:
            if draft.provider_id is None:
                draft.provider_id = provider_id
            if draft.financial_fact_id is None and fact is not None:
                draft.financial_fact_id = fact.id
            drafts.append(draft)
        if drafts:
            outcome.indicators = save_indicators(self.db, drafts).created

        return outcome

    def _check_filing(self, provider_id: int, filing: FilingDraft):
        """Reported government grants against recorded state payments for the filing year."""
        payments = [
            amount for (amount,) in self.db.query(FinancialFact.amount).filter(
                FinancialFact.provider_id == provider_id,
                FinancialFact.fiscal_year == filing.fiscal_year,
                FinancialFact.fact_type == FactType.PAYMENT,
                FinancialFact.funding_stream == FundingStream.STATE,
            )
        ]
        provider = self.db.get(Provider, provider_id)
        return detect_grant_mismatch(
            provider_id=provider_id,
            provider_name=provider.name_display,
            fiscal_year=filing.fiscal_year,
            government_grants=filing.government_grants,
            state_payments=payments,
            config=self.analyzer_config,
            reference=filing.reference,
        )

    def _fact_exists(self, dedup_key: str) -> bool:
        return (
            self.db.query(FinancialFact.id)
            .filter(FinancialFact.dedup_key == dedup_key)
            .first()
        ) is not None

    def _apply_provider_attributes(self, provider_id: Optional[int], attributes: dict) -> bool:
        """Write authoritative roster attributes onto the resolved provider."""
        if not provider_id or not attributes:
            return False
        provider = self.db.get(Provider, provider_id)
        changed = False
        for attr, value in attributes.items():
            if getattr(provider, attr) != value:
                setattr(provider, attr, value)
                changed = True
        if changed:
            provider.last_verified_date = utcnow()
        return changed

    def _upsert_contractor(self, draft: ContractorDraft) -> Optional[Contractor]:
        normalized = normalize(draft.name)
        if not normalized:
            return None

        contractor = (
            self.db.query(Contractor)
            .filter(Contractor.normalized_name == normalized)
            .first()
        )
        if contractor is None:
            contractor = Contractor(
                name=draft.name.strip(),
                normalized_name=normalized,
                vendor_code=draft.vendor_code,
                city=draft.city,
                state=(draft.state or "")[:2].upper() or None,
                is_immigrant_related=draft.is_immigrant_related,
            )
            self.db.add(contractor)
            self.db.flush()
        else:
            if draft.vendor_code and not contractor.vendor_code:
                contractor.vendor_code = draft.vendor_code
            if draft.city and not contractor.city:
                contractor.city = draft.city
            if draft.is_immigrant_related:
                contractor.is_immigrant_related = True
        return contractor

    def _write_fact(
        self,
        extracted: ObservationWithFact,
        resolution: Resolution,
        contractor: Optional[Contractor],
        dedup_key: str,
        document: Optional[RawDocument],
    ) -> FinancialFact:
        draft = extracted.fact
        fact = FinancialFact(
            fact_type=draft.fact_type,
            funding_stream=draft.funding_stream,
            provider_id=resolution.provider_id,
            contractor_id=contractor.id if contractor else None,
            source_system=extracted.observation.source_system,
            source_identifier=extracted.observation.source_identifier,
            raw_document_id=document.id if document else None,
            dedup_key=dedup_key,
            fiscal_year=draft.fiscal_year,
            amount=draft.amount,
            payment_date=draft.payment_date,
            vendor_name=draft.vendor_name,
            contract_number=draft.contract_number,
            description=draft.description,
            source_url=draft.source_url,
            procurement_type=draft.procurement_type,
            amendment_count=draft.amendment_count,
            original_amount=draft.original_amount,
        )
        self.db.add(fact)
        self.db.flush()
        return fact
