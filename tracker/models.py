"""
NH Childcare Payments Tracker - Database Models

SQLAlchemy ORM models for canonical providers, cross-source links,
the unified financial ledger, and fraud indicators.
"""

from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum as PyEnum
from typing import Optional

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    event,
    func,
)
from sqlalchemy.dialects.sqlite import JSON
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from tracker.errors import AuditLogImmutableError


class Base(DeclarativeBase):
    pass


def utcnow() -> datetime:
    """Naive UTC timestamp, matching how DateTime columns are stored."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


# Enums
class LinkStatus(PyEnum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class ReviewStatus(PyEnum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    # Closed by a later automatic decision for the same key
    SUPERSEDED = "superseded"


class AuditAction(PyEnum):
    """Resolution decision recorded in the match audit log."""
    AUTO_LINK = "auto_link"
    CREATE_NEW = "create_new"
    QUEUE = "queue"
    MANUAL_OVERRIDE = "manual_override"


class FactType(PyEnum):
    PAYMENT = "payment"          # State disbursement to a vendor/provider
    EXPENDITURE = "expenditure"  # Federal award / grant obligation
    CONTRACT = "contract"        # Contract award


class FundingStream(PyEnum):
    STATE = "state"
    FEDERAL = "federal"


class Severity(PyEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


# critical > high > medium > low
SEVERITY_RANK = {
    Severity.CRITICAL: 4,
    Severity.HIGH: 3,
    Severity.MEDIUM: 2,
    Severity.LOW: 1,
}


class IndicatorStatus(PyEnum):
    OPEN = "open"
    INVESTIGATING = "investigating"
    RESOLVED = "resolved"
    DISMISSED = "dismissed"


class Provider(Base):
    """
    Canonical provider - the authoritative identity for a childcare or
    social-service entity. All cross-source links point here.
    Never deleted; deactivated (or merged) instead.
    """

    __tablename__ = "provider_master"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    canonical_name: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    name_display: Mapped[str] = mapped_column(Text, nullable=False)

    # Location
    address_normalized: Mapped[Optional[str]] = mapped_column(Text)
    address_display: Mapped[Optional[str]] = mapped_column(Text)
    city: Mapped[Optional[str]] = mapped_column(String(100), index=True)
    state: Mapped[Optional[str]] = mapped_column(String(2), default="NH")
    zip: Mapped[Optional[str]] = mapped_column(String(10))
    zip5: Mapped[Optional[str]] = mapped_column(String(5), index=True)

    # Licensing
    license_number: Mapped[Optional[str]] = mapped_column(String(50), index=True)
    provider_type: Mapped[Optional[str]] = mapped_column(String(50))
    capacity: Mapped[Optional[int]] = mapped_column(Integer)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False, index=True)
    is_immigrant_owned: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False, index=True)

    # Soft merge target
    merged_into_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("provider_master.id"), nullable=True, index=True
    )

    first_seen_date: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    last_verified_date: Mapped[Optional[datetime]] = mapped_column(DateTime)

    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=func.now(), onupdate=func.now(), nullable=False
    )

    # Relationships
    aliases: Mapped[list["ProviderAlias"]] = relationship(back_populates="provider")
    source_links: Mapped[list["SourceLink"]] = relationship(back_populates="provider")

    @property
    def is_merged(self) -> bool:
        return self.merged_into_id is not None

    def __repr__(self) -> str:
        return f"<Provider(id={self.id}, name={self.canonical_name}, active={self.is_active})>"


class ProviderAlias(Base):
    """Alternate name (DBA, vendor-name variant, former name) for a provider."""

    __tablename__ = "provider_aliases"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    provider_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("provider_master.id"), nullable=False, index=True
    )
    alias_name: Mapped[str] = mapped_column(Text, nullable=False)
    alias_normalized: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    alias_type: Mapped[str] = mapped_column(String(20), default="variant")
    source: Mapped[Optional[str]] = mapped_column(String(50))
    confidence: Mapped[Optional[Decimal]] = mapped_column(Numeric(5, 4))

    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=func.now(), nullable=False
    )

    provider: Mapped["Provider"] = relationship(back_populates="aliases")

    __table_args__ = (
        UniqueConstraint("provider_id", "alias_normalized", name="uq_alias_provider_name"),
    )

    def __repr__(self) -> str:
        return f"<ProviderAlias(provider={self.provider_id}, alias={self.alias_normalized})>"


class SourceLink(Base):
    """
    Durable mapping from (source system, source-native identifier) to a
    canonical provider. At most one per external key.
    """

    __tablename__ = "provider_source_links"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    provider_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("provider_master.id"), nullable=False, index=True
    )
    source_system: Mapped[str] = mapped_column(String(50), nullable=False)
    source_identifier: Mapped[str] = mapped_column(Text, nullable=False)
    source_name: Mapped[Optional[str]] = mapped_column(Text)
    match_method: Mapped[str] = mapped_column(String(50), nullable=False)
    match_score: Mapped[Optional[Decimal]] = mapped_column(Numeric(5, 4))
    match_details: Mapped[Optional[dict]] = mapped_column(JSON)
    status: Mapped[LinkStatus] = mapped_column(
        Enum(LinkStatus), default=LinkStatus.ACTIVE, nullable=False
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=func.now(), onupdate=func.now(), nullable=False
    )

    provider: Mapped["Provider"] = relationship(back_populates="source_links")

    __table_args__ = (
        UniqueConstraint("source_system", "source_identifier", name="uq_source_link_key"),
    )

    def __repr__(self) -> str:
        return f"<SourceLink({self.source_system}:{self.source_identifier} -> {self.provider_id})>"


class PendingMatch(Base):
    """
    Observation whose best match fell in the ambiguous band.
    Terminal states are only set by a reviewer.
    """

    __tablename__ = "pending_matches"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    source_system: Mapped[str] = mapped_column(String(50), nullable=False)
    source_identifier: Mapped[str] = mapped_column(Text, nullable=False)
    source_name: Mapped[str] = mapped_column(Text, nullable=False)
    source_address: Mapped[Optional[str]] = mapped_column(Text)
    source_city: Mapped[Optional[str]] = mapped_column(String(100))
    source_state: Mapped[Optional[str]] = mapped_column(String(2))
    source_zip: Mapped[Optional[str]] = mapped_column(String(10))
    source_license: Mapped[Optional[str]] = mapped_column(String(50))

    candidate_provider_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("provider_master.id"), index=True
    )
    match_score: Mapped[Decimal] = mapped_column(Numeric(5, 4), nullable=False)
    match_details: Mapped[Optional[dict]] = mapped_column(JSON)
    status: Mapped[ReviewStatus] = mapped_column(
        Enum(ReviewStatus), default=ReviewStatus.PENDING, nullable=False, index=True
    )
    reviewed_by: Mapped[Optional[str]] = mapped_column(String(100))
    reviewed_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=func.now(), onupdate=func.now(), nullable=False
    )

    candidate_provider: Mapped[Optional["Provider"]] = relationship("Provider")

    __table_args__ = (
        UniqueConstraint("source_system", "source_identifier", name="uq_pending_match_key"),
    )

    def __repr__(self) -> str:
        return f"<PendingMatch({self.source_name} -> {self.candidate_provider_id}, score={self.match_score}, {self.status.value})>"


class MatchAuditLog(Base):
    """
    Append-only record of every resolution decision.
    The sole source of truth for why an observation was linked.
    """

    __tablename__ = "match_audit_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    provider_id: Mapped[Optional[int]] = mapped_column(Integer, index=True)
    source_system: Mapped[str] = mapped_column(String(50), nullable=False)
    source_identifier: Mapped[str] = mapped_column(Text, nullable=False)
    source_name: Mapped[Optional[str]] = mapped_column(Text)
    action: Mapped[AuditAction] = mapped_column(Enum(AuditAction), nullable=False, index=True)
    match_score: Mapped[Optional[Decimal]] = mapped_column(Numeric(5, 4))
    match_method: Mapped[str] = mapped_column(String(50), nullable=False)
    match_details: Mapped[Optional[dict]] = mapped_column(JSON)
    performed_by: Mapped[Optional[str]] = mapped_column(String(100))

    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=func.now(), nullable=False
    )

    __table_args__ = (
        Index("ix_audit_source_key", "source_system", "source_identifier"),
    )

    def __repr__(self) -> str:
        return f"<MatchAuditLog({self.action.value}, {self.source_system}:{self.source_identifier} -> {self.provider_id})>"


@event.listens_for(MatchAuditLog, "before_update")
def _reject_audit_update(mapper, connection, target):
    raise AuditLogImmutableError(f"match audit entry {target.id} is write-once")


@event.listens_for(MatchAuditLog, "before_delete")
def _reject_audit_delete(mapper, connection, target):
    raise AuditLogImmutableError(f"match audit entry {target.id} cannot be deleted")


class Contractor(Base):
    """Vendor/contractor as named by payment and contract sources."""

    __tablename__ = "contractors"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    vendor_code: Mapped[Optional[str]] = mapped_column(String(50), index=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    normalized_name: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    city: Mapped[Optional[str]] = mapped_column(String(100))
    state: Mapped[Optional[str]] = mapped_column(String(2))
    is_immigrant_related: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=func.now(), nullable=False
    )

    def __repr__(self) -> str:
        return f"<Contractor(id={self.id}, name={self.name})>"


class FinancialFact(Base):
    """
    Payment, expenditure or contract attributed to a canonical provider
    (nullable while unresolved). Always carries fiscal year, amount and
    the source that produced it.
    """

    __tablename__ = "financial_facts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    fact_type: Mapped[FactType] = mapped_column(Enum(FactType), nullable=False, index=True)
    funding_stream: Mapped[FundingStream] = mapped_column(
        Enum(FundingStream), nullable=False, index=True
    )
    provider_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("provider_master.id"), nullable=True, index=True
    )
    contractor_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("contractors.id"), nullable=True, index=True
    )

    # Provenance
    source_system: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    source_identifier: Mapped[Optional[str]] = mapped_column(Text)
    raw_document_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("raw_documents.id"), nullable=True
    )
    dedup_key: Mapped[str] = mapped_column(Text, nullable=False, unique=True)

    fiscal_year: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    payment_date: Mapped[Optional[date]] = mapped_column(Date, index=True)
    vendor_name: Mapped[str] = mapped_column(Text, nullable=False)
    contract_number: Mapped[Optional[str]] = mapped_column(Text)
    description: Mapped[Optional[str]] = mapped_column(Text)
    source_url: Mapped[Optional[str]] = mapped_column(Text)

    # Contracts only; amount is the current contract value
    procurement_type: Mapped[Optional[str]] = mapped_column(String(50))
    amendment_count: Mapped[Optional[int]] = mapped_column(Integer)
    original_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(18, 2))

    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=func.now(), nullable=False
    )

    provider: Mapped[Optional["Provider"]] = relationship("Provider")
    contractor: Mapped[Optional["Contractor"]] = relationship("Contractor")

    __table_args__ = (
        Index("ix_facts_provider_fy", "provider_id", "fiscal_year"),
        Index("ix_facts_source_key", "source_system", "source_identifier"),
    )

    def __repr__(self) -> str:
        return f"<FinancialFact(id={self.id}, {self.fact_type.value}, amount={self.amount}, fy={self.fiscal_year})>"


class FraudIndicator(Base):
    """
    Emitted fraud/anomaly signal. Flags are starting points for
    investigation, not accusations. Deduplicated on
    (indicator_type, fingerprint, provider) at creation.
    """

    __tablename__ = "fraud_indicators"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    provider_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("provider_master.id"), nullable=True, index=True
    )
    financial_fact_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("financial_facts.id"), nullable=True
    )
    indicator_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    severity: Mapped[Severity] = mapped_column(Enum(Severity), nullable=False, index=True)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    evidence: Mapped[Optional[dict]] = mapped_column(JSON)
    fingerprint: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    status: Mapped[IndicatorStatus] = mapped_column(
        Enum(IndicatorStatus), default=IndicatorStatus.OPEN, nullable=False, index=True
    )
    notes: Mapped[Optional[str]] = mapped_column(Text)

    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow, nullable=False
    )

    provider: Mapped[Optional["Provider"]] = relationship("Provider")

    __table_args__ = (
        Index("ix_indicators_dedup", "indicator_type", "fingerprint", "provider_id"),
        Index("ix_indicators_status_severity", "status", "severity"),
    )

    def __repr__(self) -> str:
        return f"<FraudIndicator(id={self.id}, type={self.indicator_type}, severity={self.severity.value})>"


class RawDocument(Base):
    """Raw scraped document awaiting the bridge pipeline."""

    __tablename__ = "raw_documents"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    source_key: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    url: Mapped[Optional[str]] = mapped_column(Text)
    raw_content: Mapped[Optional[dict]] = mapped_column(JSON)
    scraped_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    processed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False, index=True)
    processed_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    def __repr__(self) -> str:
        return f"<RawDocument(id={self.id}, source={self.source_key}, processed={self.processed})>"
