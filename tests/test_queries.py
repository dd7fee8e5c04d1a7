"""
Tests for read-side queries used by the API and dashboards.
"""

from decimal import Decimal

import pytest

from tracker.database import get_db, make_session_factory
from tracker.indicators import IndicatorDraft, save_indicators, transition_status
from tracker.models import (
    FactType,
    FinancialFact,
    FraudIndicator,
    FundingStream,
    IndicatorStatus,
    PendingMatch,
    Provider,
    ReviewStatus,
    Severity,
)
from tracker.queries import (
    get_indicator_summary,
    get_provider,
    get_top_vendors,
    list_financial_facts,
    list_fraud_indicators,
    list_pending_matches,
    search_providers,
)


def add_fact(db, provider, amount, key, fiscal_year=2024, fact_type=FactType.PAYMENT):
    db.add(FinancialFact(
        fact_type=fact_type,
        funding_stream=FundingStream.STATE,
        provider_id=provider.id,
        source_system="transparent_nh",
        dedup_key=f"transparent_nh:{key}",
        fiscal_year=fiscal_year,
        amount=Decimal(str(amount)),
        vendor_name=provider.name_display,
    ))


def indicator(indicator_type, severity, provider_id=None):
    return IndicatorDraft(
        indicator_type=indicator_type,
        severity=severity,
        description=f"{indicator_type} {severity.value}",
        provider_id=provider_id,
        natural_key=f"{indicator_type}:{severity.value}",
    )


class TestProviders:

    def test_get_provider(self, db, make_provider):
        provider = make_provider("Sunrise Early Learning")
        assert get_provider(db, provider.id) is provider
        assert get_provider(db, 999) is None

    def test_search_by_display_name_and_alias(self, db, make_provider):
        sunrise = make_provider("Sunrise Early Learning", aliases=["Sunshine Kids"])
        make_provider("Bright Horizons Preschool")

        assert [p.id for p in search_providers(db, name="SUNRISE").items] == [sunrise.id]
        assert [p.id for p in search_providers(db, name="Sunshine Kids").items] == [sunrise.id]
        assert search_providers(db).total == 2

    def test_filters(self, db, make_provider):
        make_provider("Sunrise Early Learning", is_immigrant_owned=True)
        make_provider("Bright Horizons Preschool", is_active=False)

        assert search_providers(db, immigrant_owned=True).total == 1
        assert search_providers(db).total == 1
        assert search_providers(db, active_only=False).total == 2

    def test_search_treats_wildcards_literally(self, db, make_provider):
        literal = make_provider("A_B Kids")
        make_provider("AxB Kids")

        assert [p.id for p in search_providers(db, name="A_B").items] == [literal.id]
        assert search_providers(db, name="%").total == 0

    def test_pagination(self, db, make_provider):
        for name in ("Alpha Kids", "Beta Kids", "Gamma Kids", "Delta Kids", "Epsilon Kids"):
            make_provider(name)

        page = search_providers(db, limit=2, offset=2)
        assert page.total == 5
        assert [p.canonical_name for p in page.items] == ["delta kids", "epsilon kids"]
        assert page.has_more

        last = search_providers(db, limit=2, offset=4)
        assert len(last.items) == 1
        assert not last.has_more

    def test_page_size_capped(self, db):
        assert search_providers(db, limit=10000).limit == 500


class TestFinancialFacts:

    def test_filter_and_order(self, db, make_provider):
        sunrise = make_provider("Sunrise Early Learning")
        bright = make_provider("Bright Horizons Preschool")
        add_fact(db, sunrise, 100, "1", fiscal_year=2023)
        add_fact(db, sunrise, 200, "2", fiscal_year=2024)
        add_fact(db, bright, 300, "3", fiscal_year=2024)
        db.commit()

        page = list_financial_facts(db, provider_id=sunrise.id)
        assert [f.fiscal_year for f in page.items] == [2024, 2023]
        assert list_financial_facts(db, fiscal_year=2024).total == 2


class TestFraudIndicators:

    def test_ordered_by_severity(self, db):
        save_indicators(db, [
            indicator("structuring", Severity.LOW),
            indicator("audit_finding", Severity.CRITICAL),
            indicator("duplicate_payments", Severity.MEDIUM),
            indicator("federal_state_overlap", Severity.HIGH),
        ])
        db.commit()

        page = list_fraud_indicators(db)
        assert [i.severity for i in page.items] == [
            Severity.CRITICAL, Severity.HIGH, Severity.MEDIUM, Severity.LOW,
        ]

    def test_filters_accept_strings(self, db, make_provider):
        provider = make_provider("Sunrise Early Learning")
        save_indicators(db, [
            indicator("structuring", Severity.HIGH, provider.id),
            indicator("duplicate_payments", Severity.MEDIUM),
        ])
        db.commit()

        assert list_fraud_indicators(db, severity="HIGH").total == 1
        assert list_fraud_indicators(db, status="open").total == 2
        assert list_fraud_indicators(db, provider_id=provider.id).items[0].indicator_type == "structuring"

        with pytest.raises(ValueError):
            list_fraud_indicators(db, severity="urgent")

    def test_summary_counts_open_only(self, db):
        save_indicators(db, [
            indicator("structuring", Severity.HIGH),
            indicator("federal_state_overlap", Severity.HIGH),
            indicator("duplicate_payments", Severity.MEDIUM),
            indicator("near_threshold", Severity.LOW),
        ])
        db.commit()
        dismissed = db.query(FraudIndicator).filter_by(indicator_type="near_threshold").one()
        transition_status(db, dismissed.id, IndicatorStatus.DISMISSED)
        db.commit()

        summary = get_indicator_summary(db)
        assert summary["total_open_indicators"] == 3
        assert summary["by_severity"] == {"high": 2, "medium": 1}
        assert summary["by_type"]["structuring"] == 1
        assert "near_threshold" not in summary["by_type"]


class TestReviewQueue:

    def test_pending_by_score(self, db):
        for identifier, score, status in (
            ("a", 0.6, ReviewStatus.PENDING),
            ("b", 0.8, ReviewStatus.PENDING),
            ("c", 0.7, ReviewStatus.REJECTED),
        ):
            db.add(PendingMatch(
                source_system="transparent_nh",
                source_identifier=identifier,
                source_name=f"Vendor {identifier}",
                match_score=score,
                status=status,
            ))
        db.commit()

        page = list_pending_matches(db)
        assert [p.source_identifier for p in page.items] == ["b", "a"]
        assert list_pending_matches(db, status="rejected").total == 1
        assert list_pending_matches(db, status=None).total == 3


class TestTopVendors:

    def test_payments_only(self, db, make_provider):
        sunrise = make_provider("Sunrise Early Learning")
        bright = make_provider("Bright Horizons Preschool")
        add_fact(db, sunrise, 1000, "1")
        add_fact(db, sunrise, 500, "2")
        add_fact(db, bright, 1200, "3")
        add_fact(db, bright, 900000, "4", fact_type=FactType.CONTRACT)
        add_fact(db, bright, 5000, "5", fiscal_year=2023)
        db.commit()

        vendors = get_top_vendors(db, fiscal_year=2024)
        assert [v["provider_id"] for v in vendors] == [sunrise.id, bright.id]
        assert vendors[0]["total_amount"] == 1500.0
        assert vendors[0]["payment_count"] == 2

        assert get_top_vendors(db)[0]["provider_id"] == bright.id


def test_get_db_yields_and_closes_session(engine):
    sessions = get_db(make_session_factory(engine))
    db = next(sessions)
    assert db.query(Provider).count() == 0
    sessions.close()
