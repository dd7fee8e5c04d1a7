"""
Fraud indicator persistence.

Detectors and adapters produce IndicatorDraft values; save_indicators is
the single step that writes them, skipping any draft whose
(indicator_type, fingerprint, provider) already exists.
"""

import hashlib
import re
from dataclasses import dataclass, field
from typing import Iterable, Optional

from sqlalchemy.orm import Session

from config.logging import get_logger
from tracker.errors import InvalidStatusTransition
from tracker.models import FraudIndicator, IndicatorStatus, Severity

logger = get_logger("indicators")

# Indicator type constants
INDICATOR_STRUCTURING = "structuring"
INDICATOR_NEAR_THRESHOLD = "near_threshold"
INDICATOR_DUPLICATE_PAYMENTS = "duplicate_payments"
INDICATOR_VENDOR_CONCENTRATION = "vendor_concentration"
INDICATOR_FEDERAL_STATE_OVERLAP = "federal_state_overlap"
INDICATOR_RAPID_GROWTH = "rapid_growth"
INDICATOR_OVER_CAPACITY = "over_capacity"
INDICATOR_AUDIT_FINDING = "audit_finding"
INDICATOR_SOLE_SOURCE = "sole_source"
INDICATOR_RAPID_AMENDMENTS = "rapid_amendments"
INDICATOR_LARGE_INCREASE = "large_increase"
INDICATOR_NO_COMPETITION = "no_competition"
INDICATOR_REVENUE_PAYMENT_MISMATCH = "revenue_payment_mismatch"

ALLOWED_TRANSITIONS = {
    IndicatorStatus.OPEN: {
        IndicatorStatus.INVESTIGATING,
        IndicatorStatus.RESOLVED,
        IndicatorStatus.DISMISSED,
    },
    IndicatorStatus.INVESTIGATING: {
        IndicatorStatus.OPEN,
        IndicatorStatus.RESOLVED,
        IndicatorStatus.DISMISSED,
    },
    IndicatorStatus.RESOLVED: set(),
    IndicatorStatus.DISMISSED: set(),
}

_WHITESPACE = re.compile(r"\s+")


@dataclass
class IndicatorDraft:
    """An indicator not yet persisted."""
    indicator_type: str
    severity: Severity
    description: str
    provider_id: Optional[int] = None
    financial_fact_id: Optional[int] = None
    # Stable identity of the finding (e.g. "structuring:12:2024")
    natural_key: Optional[str] = None
    evidence: dict = field(default_factory=dict)

    @property
    def fingerprint(self) -> str:
        return fingerprint(self.indicator_type, self.description, self.natural_key)


@dataclass
class SaveResult:
    created: int = 0
    skipped: int = 0
    indicators: list = field(default_factory=list)


def fingerprint(indicator_type: str, description: str, natural_key: Optional[str] = None) -> str:
    """
    SHA-256 identity of a finding.

    Keyed on the natural key when the producer has one, so wording changes
    in the description do not defeat deduplication; otherwise on the
    whitespace/case-folded description.
    """
    if natural_key:
        basis = f"{indicator_type}|{natural_key}"
    else:
        basis = f"{indicator_type}|{_WHITESPACE.sub(' ', description or '').strip().lower()}"
    return hashlib.sha256(basis.encode("utf-8")).hexdigest()


def save_indicators(db: Session, drafts: Iterable[IndicatorDraft]) -> SaveResult:
    """
    Insert drafts that do not already exist.

    Existing indicators (any status) are left untouched: a dismissed
    finding stays dismissed on re-runs. Flushes; the caller commits.
    """
    result = SaveResult()
    seen = set()

    for draft in drafts:
        fp = draft.fingerprint
        key = (draft.indicator_type, fp, draft.provider_id)
        if key in seen:
            result.skipped += 1
            continue
        seen.add(key)

        query = db.query(FraudIndicator.id).filter(
            FraudIndicator.indicator_type == draft.indicator_type,
            FraudIndicator.fingerprint == fp,
        )
        if draft.provider_id is None:
            query = query.filter(FraudIndicator.provider_id.is_(None))
        else:
            query = query.filter(FraudIndicator.provider_id == draft.provider_id)

        if query.first() is not None:
            result.skipped += 1
            continue

        indicator = FraudIndicator(
            provider_id=draft.provider_id,
            financial_fact_id=draft.financial_fact_id,
            indicator_type=draft.indicator_type,
            severity=draft.severity,
            description=draft.description,
            evidence=draft.evidence or None,
            fingerprint=fp,
            status=IndicatorStatus.OPEN,
        )
        db.add(indicator)
        result.indicators.append(indicator)
        result.created += 1

    db.flush()
    if result.created:
        logger.debug(f"Saved {result.created} indicators ({result.skipped} already present)")
    return result


def transition_status(
    db: Session,
    indicator_id: int,
    new_status: IndicatorStatus,
    notes: Optional[str] = None,
) -> FraudIndicator:
    """
    Move an indicator through the review workflow.

    Raises:
        InvalidStatusTransition: unknown indicator or disallowed change
    """
    indicator = db.get(FraudIndicator, indicator_id)
    if indicator is None:
        raise InvalidStatusTransition(f"Fraud indicator {indicator_id} not found")

    if new_status not in ALLOWED_TRANSITIONS[indicator.status]:
        raise InvalidStatusTransition(
            f"Cannot move indicator {indicator_id} from "
            f"{indicator.status.value} to {new_status.value}"
        )

    logger.info(f"Indicator {indicator_id}: {indicator.status.value} -> {new_status.value}")
    indicator.status = new_status
    if notes:
        indicator.notes = f"{indicator.notes}\n{notes}" if indicator.notes else notes
    db.flush()
    return indicator
