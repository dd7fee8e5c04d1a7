"""
Read models for the REST API and dashboards.

Plain query functions over a Session; list endpoints return a Page.
"""

from dataclasses import dataclass
from typing import Optional

from sqlalchemy import case, func, or_
from sqlalchemy.orm import Session

from tracker.models import (
    SEVERITY_RANK,
    FactType,
    FinancialFact,
    FraudIndicator,
    IndicatorStatus,
    PendingMatch,
    Provider,
    ProviderAlias,
    ReviewStatus,
    Severity,
)
from tracker.normalize import normalize

DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 500


@dataclass
class Page:
    items: list
    total: int
    limit: int
    offset: int

    @property
    def has_more(self) -> bool:
        return self.offset + len(self.items) < self.total


def _coerce(enum_cls, value):
    if value is None or isinstance(value, enum_cls):
        return value
    return enum_cls(str(value).lower())


def _contains(text: str) -> str:
    """LIKE pattern matching text literally (escape character is a backslash)."""
    escaped = text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def _paginate(query, limit: int, offset: int) -> Page:
    limit = max(1, min(limit, MAX_PAGE_SIZE))
    offset = max(0, offset)
    total = query.order_by(None).count()
    return Page(items=query.limit(limit).offset(offset).all(), total=total, limit=limit, offset=offset)


def get_provider(db: Session, provider_id: int) -> Optional[Provider]:
    return db.get(Provider, provider_id)


def search_providers(
    db: Session,
    name: Optional[str] = None,
    immigrant_owned: Optional[bool] = None,
    active_only: bool = True,
    limit: int = DEFAULT_PAGE_SIZE,
    offset: int = 0,
) -> Page:
    """Providers by name substring (canonical, display or alias) and flags."""
    query = db.query(Provider)
    if active_only:
        query = query.filter(Provider.is_active.is_(True))
    if immigrant_owned is not None:
        query = query.filter(Provider.is_immigrant_owned.is_(immigrant_owned))
    if name and name.strip():
        clauses = [Provider.name_display.ilike(_contains(name.strip()), escape="\\")]
        normalized = normalize(name)
        if normalized:
            pattern = _contains(normalized)
            clauses.append(Provider.canonical_name.like(pattern, escape="\\"))
            clauses.append(Provider.aliases.any(
                ProviderAlias.alias_normalized.like(pattern, escape="\\")
            ))
        query = query.filter(or_(*clauses))
    return _paginate(query.order_by(Provider.canonical_name, Provider.id), limit, offset)


def list_financial_facts(
    db: Session,
    provider_id: Optional[int] = None,
    fiscal_year: Optional[int] = None,
    limit: int = DEFAULT_PAGE_SIZE,
    offset: int = 0,
) -> Page:
    query = db.query(FinancialFact)
    if provider_id is not None:
        query = query.filter(FinancialFact.provider_id == provider_id)
    if fiscal_year is not None:
        query = query.filter(FinancialFact.fiscal_year == fiscal_year)
    query = query.order_by(
        FinancialFact.fiscal_year.desc(),
        FinancialFact.payment_date.desc(),
        FinancialFact.id.desc(),
    )
    return _paginate(query, limit, offset)


def severity_rank_expression():
    """SQL rank of indicator severity: critical 4 .. low 1."""
    return case(
        *[(FraudIndicator.severity == severity, rank) for severity, rank in SEVERITY_RANK.items()],
        else_=0,
    )


def list_fraud_indicators(
    db: Session,
    status=None,
    severity=None,
    provider_id: Optional[int] = None,
    limit: int = DEFAULT_PAGE_SIZE,
    offset: int = 0,
) -> Page:
    """Indicators, most severe first, then most recent."""
    query = db.query(FraudIndicator)
    status = _coerce(IndicatorStatus, status)
    severity = _coerce(Severity, severity)
    if status is not None:
        query = query.filter(FraudIndicator.status == status)
    if severity is not None:
        query = query.filter(FraudIndicator.severity == severity)
    if provider_id is not None:
        query = query.filter(FraudIndicator.provider_id == provider_id)
    query = query.order_by(
        severity_rank_expression().desc(),
        FraudIndicator.created_at.desc(),
        FraudIndicator.id.desc(),
    )
    return _paginate(query, limit, offset)


def list_pending_matches(
    db: Session,
    status=ReviewStatus.PENDING,
    limit: int = DEFAULT_PAGE_SIZE,
    offset: int = 0,
) -> Page:
    """Review queue, strongest candidates first."""
    query = db.query(PendingMatch)
    status = _coerce(ReviewStatus, status)
    if status is not None:
        query = query.filter(PendingMatch.status == status)
    query = query.order_by(PendingMatch.match_score.desc(), PendingMatch.id)
    return _paginate(query, limit, offset)


def get_indicator_summary(db: Session) -> dict:
    """Get summary of open fraud indicators."""
    open_filter = FraudIndicator.status == IndicatorStatus.OPEN

    total = db.query(func.count(FraudIndicator.id)).filter(open_filter).scalar() or 0

    by_severity = db.query(
        FraudIndicator.severity,
        func.count(FraudIndicator.id)
    ).filter(open_filter).group_by(FraudIndicator.severity).all()

    by_type = db.query(
        FraudIndicator.indicator_type,
        func.count(FraudIndicator.id)
    ).filter(open_filter).group_by(FraudIndicator.indicator_type).all()

    return {
        "total_open_indicators": total,
        "by_severity": {s.value: c for s, c in by_severity},
        "by_type": {t: c for t, c in by_type},
    }


def get_top_vendors(db: Session, fiscal_year: Optional[int] = None, limit: int = 20) -> list[dict]:
    """Providers by total payments received."""
    total_amount = func.sum(FinancialFact.amount)
    query = db.query(
        Provider.id,
        Provider.name_display,
        total_amount.label("total_amount"),
        func.count(FinancialFact.id).label("payment_count"),
    ).join(
        FinancialFact, FinancialFact.provider_id == Provider.id
    ).filter(
        FinancialFact.fact_type == FactType.PAYMENT
    )
    if fiscal_year is not None:
        query = query.filter(FinancialFact.fiscal_year == fiscal_year)

    rows = query.group_by(Provider.id, Provider.name_display).order_by(
        total_amount.desc(), Provider.id
    ).limit(limit).all()

    return [
        {
            "provider_id": provider_id,
            "provider_name": name,
            "total_amount": float(total or 0),
            "payment_count": count,
        }
        for provider_id, name, total, count in rows
    ]
