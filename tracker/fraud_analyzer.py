"""
Fraud Analyzer for the NH Childcare Payments Tracker.

Runs threshold/ratio heuristics over the resolved ledger:
- Structuring (yearly state payments reaching the reporting threshold)
- Near-threshold payments (repeated payments just under the threshold)
- Duplicate payments (same provider, amount and date)
- Vendor concentration (one provider's share of a year's payments)
- Federal/state overlap (both funding streams in one fiscal year)
- Rapid growth (year-over-year funding jump)
- Over-capacity (payments per licensed slot)
- Sole-source contracts, repeated amendments and large value increases
- No competition (several sole-source contracts to one provider)

Detectors are pure functions over LedgerFact snapshots. Each flag is an
independent starting point for investigation; flags are not combined
into a per-provider score.
"""

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Callable, Optional

from sqlalchemy.orm import Session

from config.logging import get_logger
from config.settings import settings
from tracker.indicators import (
    INDICATOR_DUPLICATE_PAYMENTS,
    INDICATOR_FEDERAL_STATE_OVERLAP,
    INDICATOR_LARGE_INCREASE,
    INDICATOR_NEAR_THRESHOLD,
    INDICATOR_NO_COMPETITION,
    INDICATOR_OVER_CAPACITY,
    INDICATOR_RAPID_AMENDMENTS,
    INDICATOR_RAPID_GROWTH,
    INDICATOR_REVENUE_PAYMENT_MISMATCH,
    INDICATOR_SOLE_SOURCE,
    INDICATOR_STRUCTURING,
    INDICATOR_VENDOR_CONCENTRATION,
    IndicatorDraft,
    save_indicators,
)
from tracker.models import FactType, FinancialFact, FundingStream, Provider, Severity

logger = get_logger("analyzer")

# Duplicates above this amount are high severity
DUPLICATE_HIGH_AMOUNT = Decimal("100000")

# Sole-source contract value bands: above high is high, above medium is medium
SOLE_SOURCE_HIGH_AMOUNT = Decimal("500000")
SOLE_SOURCE_MEDIUM_AMOUNT = Decimal("100000")


@dataclass
class AnalyzerConfig:
    """Detector thresholds."""
    structuring_threshold: Decimal = Decimal("10000")
    near_threshold_ratio: Decimal = Decimal("0.90")
    materiality_threshold: Decimal = Decimal("5000000")
    concentration_share: Decimal = Decimal("0.25")
    concentration_min_providers: int = 3
    rapid_growth_ratio: Decimal = Decimal("3.0")
    rapid_growth_min_baseline: Decimal = Decimal("10000")
    max_annual_payment_per_slot: Decimal = Decimal("25000")
    large_increase_ratio: Decimal = Decimal("1.25")
    min_amendments: int = 2
    no_competition_min_contracts: int = 3
    grant_mismatch_ratio: Decimal = Decimal("0.20")

    @classmethod
    def from_settings(cls) -> "AnalyzerConfig":
        return cls(
            structuring_threshold=_dec(settings.STRUCTURING_THRESHOLD),
            near_threshold_ratio=_dec(settings.NEAR_THRESHOLD_RATIO),
            materiality_threshold=_dec(settings.MATERIALITY_THRESHOLD),
            concentration_share=_dec(settings.CONCENTRATION_SHARE),
            concentration_min_providers=settings.CONCENTRATION_MIN_PROVIDERS,
            rapid_growth_ratio=_dec(settings.RAPID_GROWTH_RATIO),
            rapid_growth_min_baseline=_dec(settings.RAPID_GROWTH_MIN_BASELINE),
            max_annual_payment_per_slot=_dec(settings.MAX_ANNUAL_PAYMENT_PER_SLOT),
            large_increase_ratio=_dec(settings.LARGE_INCREASE_RATIO),
            min_amendments=settings.MIN_AMENDMENTS,
            no_competition_min_contracts=settings.NO_COMPETITION_MIN_CONTRACTS,
            grant_mismatch_ratio=_dec(settings.GRANT_MISMATCH_RATIO),
        )


def _dec(value) -> Decimal:
    return value if isinstance(value, Decimal) else Decimal(str(value))


@dataclass(frozen=True)
class LedgerFact:
    """Snapshot of one attributed financial fact."""
    id: int
    provider_id: int
    provider_name: str
    fact_type: FactType
    funding_stream: FundingStream
    source_system: str
    fiscal_year: int
    amount: Decimal
    payment_date: Optional[date] = None
    provider_capacity: Optional[int] = None
    # Contract terms; amount is the current value
    contract_number: Optional[str] = None
    description: Optional[str] = None
    procurement_type: Optional[str] = None
    amendment_count: Optional[int] = None
    original_amount: Optional[Decimal] = None

    @property
    def is_state_payment(self) -> bool:
        return self.fact_type == FactType.PAYMENT and self.funding_stream == FundingStream.STATE

    @property
    def is_sole_source(self) -> bool:
        if self.fact_type != FactType.CONTRACT or not self.procurement_type:
            return False
        kind = self.procurement_type.lower().replace("_", " ").replace("-", " ")
        return "sole source" in kind

    @property
    def label(self) -> str:
        return self.description or self.contract_number or f"contract {self.id}"


def _money(amount: Decimal) -> str:
    return f"${amount:,.2f}"


def _by_provider_year(facts, predicate=None) -> dict:
    groups = defaultdict(list)
    for fact in facts:
        if predicate is None or predicate(fact):
            groups[(fact.provider_id, fact.fiscal_year)].append(fact)
    return groups


# ----------------------------------------------------------------------
# Detectors
# ----------------------------------------------------------------------

def detect_structuring(facts: list[LedgerFact], config: AnalyzerConfig) -> list[IndicatorDraft]:
    """Yearly state payments to one provider reaching the threshold over 2+ transactions."""
    drafts = []
    threshold = config.structuring_threshold
    for (provider_id, fy), group in sorted(_by_provider_year(facts, lambda f: f.is_state_payment).items()):
        if len(group) < 2:
            continue
        total = sum((f.amount for f in group), Decimal("0"))
        if total < threshold:
            continue
        drafts.append(IndicatorDraft(
            indicator_type=INDICATOR_STRUCTURING,
            severity=Severity.HIGH if total > threshold * 2 else Severity.MEDIUM,
            description=(
                f"Total payments of {_money(total)} to {group[0].provider_name} in FY{fy} "
                f"across {len(group)} transactions."
            ),
            provider_id=provider_id,
            natural_key=f"structuring:{provider_id}:{fy}",
            evidence={
                "fiscal_year": fy,
                "total_amount": float(total),
                "transaction_count": len(group),
                "transaction_ids": sorted(f.id for f in group),
                "threshold": float(threshold),
            },
        ))
    return drafts


def detect_near_threshold(facts: list[LedgerFact], config: AnalyzerConfig) -> list[IndicatorDraft]:
    """Two or more state payments each just under the threshold in one fiscal year."""
    drafts = []
    threshold = config.structuring_threshold
    floor = threshold * config.near_threshold_ratio

    for (provider_id, fy), group in sorted(_by_provider_year(facts, lambda f: f.is_state_payment).items()):
        near = [f for f in group if floor <= f.amount < threshold]
        if len(near) < 2:
            continue
        drafts.append(IndicatorDraft(
            indicator_type=INDICATOR_NEAR_THRESHOLD,
            severity=Severity.MEDIUM,
            description=(
                f"{len(near)} payments to {group[0].provider_name} in FY{fy} between "
                f"{_money(floor)} and {_money(threshold)}."
            ),
            provider_id=provider_id,
            natural_key=f"near_threshold:{provider_id}:{fy}",
            evidence={
                "fiscal_year": fy,
                "transaction_count": len(near),
                "transaction_ids": sorted(f.id for f in near),
                "amounts": [float(f.amount) for f in near],
            },
        ))
    return drafts


def detect_duplicates(facts: list[LedgerFact], config: AnalyzerConfig) -> list[IndicatorDraft]:
    """Payments sharing provider, amount and date."""
    groups = defaultdict(list)
    for fact in facts:
        if fact.fact_type == FactType.PAYMENT and fact.payment_date is not None:
            groups[(fact.provider_id, fact.amount, fact.payment_date)].append(fact)

    drafts = []
    for (provider_id, amount, day), group in sorted(groups.items(), key=lambda kv: (kv[0][0], kv[0][2], kv[0][1])):
        if len(group) < 2:
            continue
        ids = sorted(f.id for f in group)
        drafts.append(IndicatorDraft(
            indicator_type=INDICATOR_DUPLICATE_PAYMENTS,
            severity=Severity.HIGH if amount > DUPLICATE_HIGH_AMOUNT else Severity.MEDIUM,
            description=(
                f"Duplicate: {len(group)} payments of {_money(amount)} to "
                f"{group[0].provider_name} on {day.isoformat()}."
            ),
            provider_id=provider_id,
            financial_fact_id=ids[0],
            natural_key=f"duplicate:{provider_id}:{amount}:{day.isoformat()}",
            evidence={
                "amount": float(amount),
                "date": day.isoformat(),
                "transaction_count": len(ids),
                "transaction_ids": ids,
            },
        ))
    return drafts


def rank_vendors(facts: list[LedgerFact], fiscal_year: Optional[int] = None) -> list[dict]:
    """Providers ordered by total payment volume, with share of the total."""
    totals = defaultdict(Decimal)
    names = {}
    for fact in facts:
        if fact.fact_type != FactType.PAYMENT:
            continue
        if fiscal_year is not None and fact.fiscal_year != fiscal_year:
            continue
        totals[fact.provider_id] += fact.amount
        names[fact.provider_id] = fact.provider_name

    grand_total = sum(totals.values(), Decimal("0"))
    ranked = sorted(totals.items(), key=lambda kv: (-kv[1], kv[0]))
    return [
        {
            "provider_id": provider_id,
            "provider_name": names[provider_id],
            "total": total,
            "share": (total / grand_total) if grand_total else Decimal("0"),
        }
        for provider_id, total in ranked
    ]


def detect_vendor_concentration(facts: list[LedgerFact], config: AnalyzerConfig) -> list[IndicatorDraft]:
    """A provider receiving a disproportionate share of one fiscal year's payments."""
    drafts = []
    years = sorted({f.fiscal_year for f in facts if f.fact_type == FactType.PAYMENT})
    for fy in years:
        ranked = rank_vendors(facts, fiscal_year=fy)
        if len(ranked) < config.concentration_min_providers:
            continue
        for position, vendor in enumerate(ranked, start=1):
            share = vendor["share"]
            if share < config.concentration_share:
                break
            drafts.append(IndicatorDraft(
                indicator_type=INDICATOR_VENDOR_CONCENTRATION,
                severity=Severity.HIGH if share >= Decimal("0.5") else Severity.MEDIUM,
                description=(
                    f"{vendor['provider_name']} received {share:.1%} of FY{fy} payments "
                    f"({_money(vendor['total'])} of {len(ranked)} providers' total)."
                ),
                provider_id=vendor["provider_id"],
                natural_key=f"vendor_concentration:{vendor['provider_id']}:{fy}",
                evidence={
                    "fiscal_year": fy,
                    "rank": position,
                    "total_amount": float(vendor["total"]),
                    "share": float(share),
                    "provider_count": len(ranked),
                },
            ))
    return drafts


def detect_cross_source_overlap(facts: list[LedgerFact], config: AnalyzerConfig) -> list[IndicatorDraft]:
    """Federal and state money to one provider in one fiscal year above materiality."""
    drafts = []
    materiality = config.materiality_threshold
    for (provider_id, fy), group in sorted(_by_provider_year(facts).items()):
        federal = sum((f.amount for f in group if f.funding_stream == FundingStream.FEDERAL), Decimal("0"))
        state = sum((f.amount for f in group if f.funding_stream == FundingStream.STATE), Decimal("0"))
        if federal <= 0 or state <= 0:
            continue
        combined = federal + state
        if combined < materiality:
            continue
        drafts.append(IndicatorDraft(
            indicator_type=INDICATOR_FEDERAL_STATE_OVERLAP,
            severity=Severity.HIGH if combined >= materiality * 2 else Severity.MEDIUM,
            description=(
                f"Federal ({_money(federal)}) + State ({_money(state)}) = {_money(combined)} "
                f"for {group[0].provider_name} in FY{fy} - verify no duplicate billing."
            ),
            provider_id=provider_id,
            natural_key=f"federal_state_overlap:{provider_id}:{fy}",
            evidence={
                "fiscal_year": fy,
                "federal_total": float(federal),
                "state_total": float(state),
                "combined_total": float(combined),
                "sources": sorted({f.source_system for f in group}),
                "transaction_ids": sorted(f.id for f in group),
            },
        ))
    return drafts


def detect_rapid_growth(facts: list[LedgerFact], config: AnalyzerConfig) -> list[IndicatorDraft]:
    """Fiscal-year funding at least rapid_growth_ratio times the prior year's."""
    totals = defaultdict(Decimal)
    names = {}
    for fact in facts:
        totals[(fact.provider_id, fact.fiscal_year)] += fact.amount
        names[fact.provider_id] = fact.provider_name

    drafts = []
    for (provider_id, fy), total in sorted(totals.items()):
        prior = totals.get((provider_id, fy - 1))
        if prior is None or prior < config.rapid_growth_min_baseline:
            continue
        ratio = total / prior
        if ratio < config.rapid_growth_ratio:
            continue
        drafts.append(IndicatorDraft(
            indicator_type=INDICATOR_RAPID_GROWTH,
            severity=Severity.HIGH if ratio >= config.rapid_growth_ratio * 2 else Severity.MEDIUM,
            description=(
                f"Funding to {names[provider_id]} grew {ratio:.1f}x from "
                f"{_money(prior)} in FY{fy - 1} to {_money(total)} in FY{fy}."
            ),
            provider_id=provider_id,
            natural_key=f"rapid_growth:{provider_id}:{fy}",
            evidence={
                "fiscal_year": fy,
                "prior_total": float(prior),
                "current_total": float(total),
                "growth_ratio": float(round(ratio, 4)),
            },
        ))
    return drafts


def detect_over_capacity(facts: list[LedgerFact], config: AnalyzerConfig) -> list[IndicatorDraft]:
    """Yearly state payments per licensed slot above the plausible maximum."""
    drafts = []
    limit = config.max_annual_payment_per_slot
    for (provider_id, fy), group in sorted(_by_provider_year(facts, lambda f: f.is_state_payment).items()):
        capacity = group[0].provider_capacity
        if not capacity or capacity <= 0:
            continue
        total = sum((f.amount for f in group), Decimal("0"))
        per_slot = total / capacity
        if per_slot <= limit:
            continue
        drafts.append(IndicatorDraft(
            indicator_type=INDICATOR_OVER_CAPACITY,
            severity=Severity.HIGH if per_slot > limit * 2 else Severity.MEDIUM,
            description=(
                f"{group[0].provider_name} received {_money(per_slot)} per licensed slot "
                f"in FY{fy} ({_money(total)} for capacity {capacity})."
            ),
            provider_id=provider_id,
            natural_key=f"over_capacity:{provider_id}:{fy}",
            evidence={
                "fiscal_year": fy,
                "total_amount": float(total),
                "capacity": capacity,
                "per_slot": float(round(per_slot, 2)),
            },
        ))
    return drafts


def detect_sole_source(facts: list[LedgerFact], config: AnalyzerConfig) -> list[IndicatorDraft]:
    """Contracts awarded without competition, banded by contract value."""
    drafts = []
    for fact in facts:
        if not fact.is_sole_source:
            continue
        if fact.amount > SOLE_SOURCE_HIGH_AMOUNT:
            severity = Severity.HIGH
        elif fact.amount > SOLE_SOURCE_MEDIUM_AMOUNT:
            severity = Severity.MEDIUM
        else:
            severity = Severity.LOW
        drafts.append(IndicatorDraft(
            indicator_type=INDICATOR_SOLE_SOURCE,
            severity=severity,
            description=f'Sole source contract awarded to {fact.provider_name} for "{fact.label}".',
            provider_id=fact.provider_id,
            financial_fact_id=fact.id,
            natural_key=f"sole_source:{fact.id}",
            evidence={
                "procurement_type": fact.procurement_type,
                "amount": float(fact.amount),
                "contract_number": fact.contract_number,
            },
        ))
    return drafts


def detect_rapid_amendments(facts: list[LedgerFact], config: AnalyzerConfig) -> list[IndicatorDraft]:
    """Contracts amended repeatedly after award."""
    drafts = []
    for fact in facts:
        count = fact.amendment_count
        if fact.fact_type != FactType.CONTRACT or count is None or count < config.min_amendments:
            continue
        if count >= 4:
            severity = Severity.HIGH
        elif count >= 3:
            severity = Severity.MEDIUM
        else:
            severity = Severity.LOW
        drafts.append(IndicatorDraft(
            indicator_type=INDICATOR_RAPID_AMENDMENTS,
            severity=severity,
            description=f'Contract with {fact.provider_name} has {count} amendments: "{fact.label}".',
            provider_id=fact.provider_id,
            financial_fact_id=fact.id,
            natural_key=f"rapid_amendments:{fact.id}",
            evidence={
                "amendment_count": count,
                "contract_number": fact.contract_number,
            },
        ))
    return drafts


def detect_large_increase(facts: list[LedgerFact], config: AnalyzerConfig) -> list[IndicatorDraft]:
    """Contracts whose current value grew well past the original award."""
    drafts = []
    for fact in facts:
        original = fact.original_amount
        if fact.fact_type != FactType.CONTRACT or original is None or original <= 0:
            continue
        if fact.amount <= original * config.large_increase_ratio:
            continue
        percent = (fact.amount - original) / original * 100
        if percent > 200:
            severity = Severity.CRITICAL
        elif percent > 100:
            severity = Severity.HIGH
        elif percent > 50:
            severity = Severity.MEDIUM
        else:
            severity = Severity.LOW
        drafts.append(IndicatorDraft(
            indicator_type=INDICATOR_LARGE_INCREASE,
            severity=severity,
            description=(
                f"Contract with {fact.provider_name} increased {percent:.1f}% from "
                f"{_money(original)} to {_money(fact.amount)}."
            ),
            provider_id=fact.provider_id,
            financial_fact_id=fact.id,
            natural_key=f"large_increase:{fact.id}",
            evidence={
                "original_amount": float(original),
                "current_amount": float(fact.amount),
                "increase_amount": float(fact.amount - original),
                "increase_percent": float(round(percent, 2)),
                "contract_number": fact.contract_number,
            },
        ))
    return drafts


def detect_no_competition(facts: list[LedgerFact], config: AnalyzerConfig) -> list[IndicatorDraft]:
    """Providers holding several sole-source contracts."""
    groups = defaultdict(list)
    for fact in facts:
        if fact.is_sole_source:
            groups[fact.provider_id].append(fact)

    drafts = []
    for provider_id, group in sorted(groups.items()):
        if len(group) < config.no_competition_min_contracts:
            continue
        total = sum((f.amount for f in group), Decimal("0"))
        drafts.append(IndicatorDraft(
            indicator_type=INDICATOR_NO_COMPETITION,
            severity=Severity.HIGH if len(group) >= 5 else Severity.MEDIUM,
            description=(
                f"{group[0].provider_name} has {len(group)} sole source contracts "
                f"totalling {_money(total)}."
            ),
            provider_id=provider_id,
            natural_key=f"no_competition:{provider_id}",
            evidence={
                "contract_count": len(group),
                "total_amount": float(total),
                "transaction_ids": sorted(f.id for f in group),
            },
        ))
    return drafts


def detect_grant_mismatch(
    provider_id: int,
    provider_name: str,
    fiscal_year: int,
    government_grants: Decimal,
    state_payments: list[Decimal],
    config: AnalyzerConfig,
    reference: str,
) -> Optional[IndicatorDraft]:
    """
    Compare the government grants a nonprofit reported on its Form 990
    with the state payments recorded for it in the same fiscal year.

    Returns None when there are no recorded payments to compare or the
    difference is within grant_mismatch_ratio of the reported grants.
    """
    if government_grants is None or government_grants <= 0 or not state_payments:
        return None
    recorded = sum(state_payments, Decimal("0"))
    difference = abs(recorded - government_grants)
    if difference <= government_grants * config.grant_mismatch_ratio:
        return None
    percent = difference / government_grants * 100
    return IndicatorDraft(
        indicator_type=INDICATOR_REVENUE_PAYMENT_MISMATCH,
        severity=Severity.MEDIUM,
        description=(
            f"Form 990 reports {_money(government_grants)} in government grants for "
            f"FY{fiscal_year}, but state records show {_money(recorded)} for "
            f"{provider_name} ({percent:.0f}% difference) - verify accuracy."
        ),
        provider_id=provider_id,
        natural_key=f"revenue_payment_mismatch:{reference}:{fiscal_year}",
        evidence={
            "fiscal_year": fiscal_year,
            "government_grants": float(government_grants),
            "state_payments": float(recorded),
            "payment_count": len(state_payments),
            "difference_percent": float(round(percent, 2)),
        },
    )


DETECTORS: tuple[tuple[str, Callable], ...] = (
    ("structuring", detect_structuring),
    ("near_threshold", detect_near_threshold),
    ("duplicates", detect_duplicates),
    ("vendor_concentration", detect_vendor_concentration),
    ("cross_source_overlap", detect_cross_source_overlap),
    ("rapid_growth", detect_rapid_growth),
    ("over_capacity", detect_over_capacity),
    ("sole_source", detect_sole_source),
    ("rapid_amendments", detect_rapid_amendments),
    ("large_increase", detect_large_increase),
    ("no_competition", detect_no_competition),
)


# ----------------------------------------------------------------------
# Analyzer
# ----------------------------------------------------------------------

@dataclass
class AnalysisResult:
    """Outcome of one analyzer run."""
    facts_analyzed: int = 0
    detector_counts: dict = field(default_factory=dict)
    created: int = 0
    skipped: int = 0
    top_vendors: list = field(default_factory=list)
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None

    def log_summary(self):
        duration = (self.end_time - self.start_time).total_seconds() if self.end_time and self.start_time else 0
        logger.info("=" * 60)
        logger.info("FRAUD ANALYSIS COMPLETE")
        logger.info("=" * 60)
        logger.info(f"Duration: {duration:.1f} seconds")
        logger.info(f"Facts analyzed: {self.facts_analyzed}")
        for name, count in self.detector_counts.items():
            logger.info(f"  - {name}: {count}")
        logger.info(f"Indicators created: {self.created} ({self.skipped} already recorded)")
        logger.info("=" * 60)


class FraudAnalyzer:
    """
    Loads the attributed ledger, runs every detector and persists new
    indicators. Re-running on unchanged data creates nothing.
    """

    def __init__(self, db: Session, config: Optional[AnalyzerConfig] = None):
        self.db = db
        self.config = config or AnalyzerConfig.from_settings()

    def load_ledger(self) -> list[LedgerFact]:
        """Facts attributed to a provider, as immutable snapshots."""
        rows = (
            self.db.query(FinancialFact, Provider)
            .join(Provider, FinancialFact.provider_id == Provider.id)
            .order_by(FinancialFact.id)
            .all()
        )
        return [
            LedgerFact(
                id=fact.id,
                provider_id=provider.id,
                provider_name=provider.name_display,
                fact_type=fact.fact_type,
                funding_stream=fact.funding_stream,
                source_system=fact.source_system,
                fiscal_year=fact.fiscal_year,
                amount=_dec(fact.amount),
                payment_date=fact.payment_date,
                provider_capacity=provider.capacity,
                contract_number=fact.contract_number,
                description=fact.description,
                procurement_type=fact.procurement_type,
                amendment_count=fact.amendment_count,
                original_amount=_dec(fact.original_amount) if fact.original_amount is not None else None,
            )
            for fact, provider in rows
        ]

    def detect(self, facts: list[LedgerFact]) -> tuple[list[IndicatorDraft], dict]:
        drafts = []
        counts = {}
        for name, detector in DETECTORS:
            found = detector(facts, self.config)
            counts[name] = len(found)
            logger.info(f"{name}: {len(found)} flags")
            drafts.extend(found)
        return drafts, counts

    def run(self) -> AnalysisResult:
        result = AnalysisResult(start_time=datetime.now())
        logger.info("Running fraud analysis...")

        facts = self.load_ledger()
        result.facts_analyzed = len(facts)

        drafts, result.detector_counts = self.detect(facts)
        saved = save_indicators(self.db, drafts)
        self.db.commit()

        result.created = saved.created
        result.skipped = saved.skipped
        result.top_vendors = rank_vendors(facts)[:10]
        result.end_time = datetime.now()

        logger.info(f"Fraud analysis: {saved.created} new indicators, {saved.skipped} already recorded")
        return result
