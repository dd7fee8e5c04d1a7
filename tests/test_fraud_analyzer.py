"""
Tests for the fraud analyzer detectors and run loop.
"""

from datetime import date
from decimal import Decimal
from itertools import count

import pytest

from tracker.fraud_analyzer import (
    AnalyzerConfig,
    FraudAnalyzer,
    LedgerFact,
    detect_cross_source_overlap,
    detect_duplicates,
    detect_grant_mismatch,
    detect_large_increase,
    detect_near_threshold,
    detect_no_competition,
    detect_over_capacity,
    detect_rapid_amendments,
    detect_rapid_growth,
    detect_sole_source,
    detect_structuring,
    detect_vendor_concentration,
    rank_vendors,
)
from tracker.indicators import transition_status
from tracker.models import (
    FactType,
    FinancialFact,
    FraudIndicator,
    FundingStream,
    IndicatorStatus,
    Severity,
)

CONFIG = AnalyzerConfig()
_ids = count(1)


def ledger(amount, provider_id=1, fiscal_year=2024, fact_type=FactType.PAYMENT,
           stream=FundingStream.STATE, day=None, capacity=None, id=None, **terms):
    return LedgerFact(
        id=id or next(_ids),
        provider_id=provider_id,
        provider_name=f"Provider {provider_id}",
        fact_type=fact_type,
        funding_stream=stream,
        source_system="transparent_nh" if stream == FundingStream.STATE else "usaspending",
        fiscal_year=fiscal_year,
        amount=Decimal(str(amount)),
        payment_date=day,
        provider_capacity=capacity,
        **terms,
    )


def federal(amount, **kwargs):
    return ledger(amount, fact_type=FactType.EXPENDITURE, stream=FundingStream.FEDERAL, **kwargs)


def contract(amount, **kwargs):
    return ledger(amount, fact_type=FactType.CONTRACT, **kwargs)


# =============================================================================
# Structuring
# =============================================================================

class TestStructuring:

    def test_two_payments_reaching_threshold(self):
        drafts = detect_structuring([ledger(6000), ledger(5000)], CONFIG)
        assert len(drafts) == 1
        assert drafts[0].severity == Severity.MEDIUM
        assert drafts[0].evidence["transaction_count"] == 2
        assert drafts[0].evidence["total_amount"] == 11000.0
        assert "$11,000.00" in drafts[0].description

    def test_more_than_double_threshold_is_high(self):
        drafts = detect_structuring([ledger(15000), ledger(6000)], CONFIG)
        assert drafts[0].severity == Severity.HIGH

    def test_single_large_payment_not_flagged(self):
        assert detect_structuring([ledger(12000)], CONFIG) == []

    def test_below_threshold(self):
        assert detect_structuring([ledger(4000), ledger(5000)], CONFIG) == []

    def test_federal_awards_ignored(self):
        assert detect_structuring([federal(6000), federal(5000)], CONFIG) == []

    def test_grouped_by_fiscal_year(self):
        facts = [ledger(6000, fiscal_year=2023), ledger(5000, fiscal_year=2024)]
        assert detect_structuring(facts, CONFIG) == []

    def test_configurable_threshold(self):
        config = AnalyzerConfig(structuring_threshold=Decimal("20000"))
        assert detect_structuring([ledger(6000), ledger(5000)], config) == []


class TestNearThreshold:

    def test_repeated_payments_just_under(self):
        drafts = detect_near_threshold([ledger(9500), ledger(9200), ledger(3000)], CONFIG)
        assert len(drafts) == 1
        assert drafts[0].evidence["transaction_count"] == 2

    def test_single_near_payment(self):
        assert detect_near_threshold([ledger(9500), ledger(8000)], CONFIG) == []

    def test_at_threshold_is_not_near(self):
        assert detect_near_threshold([ledger(10000), ledger(10000)], CONFIG) == []


# =============================================================================
# Duplicates
# =============================================================================

class TestDuplicates:

    def test_three_identical_payments_one_indicator(self):
        day = date(2024, 3, 1)
        facts = [ledger(2500, day=day, id=12), ledger(2500, day=day, id=10), ledger(2500, day=day, id=11)]
        drafts = detect_duplicates(facts, CONFIG)

        assert len(drafts) == 1
        assert drafts[0].evidence["transaction_count"] == 3
        assert drafts[0].evidence["transaction_ids"] == [10, 11, 12]
        assert drafts[0].financial_fact_id == 10
        assert drafts[0].severity == Severity.MEDIUM

    def test_large_duplicates_are_high(self):
        day = date(2024, 3, 1)
        drafts = detect_duplicates([ledger(150000, day=day), ledger(150000, day=day)], CONFIG)
        assert drafts[0].severity == Severity.HIGH

    def test_different_dates_or_providers(self):
        facts = [
            ledger(2500, day=date(2024, 3, 1)),
            ledger(2500, day=date(2024, 3, 2)),
            ledger(2500, provider_id=2, day=date(2024, 3, 1)),
        ]
        assert detect_duplicates(facts, CONFIG) == []

    def test_undated_payments_ignored(self):
        assert detect_duplicates([ledger(2500), ledger(2500)], CONFIG) == []


# =============================================================================
# Concentration, overlap, growth, capacity
# =============================================================================

class TestVendorConcentration:

    def test_dominant_provider(self):
        facts = [ledger(70000, provider_id=1), ledger(10000, provider_id=2),
                 ledger(10000, provider_id=3), ledger(10000, provider_id=4)]
        drafts = detect_vendor_concentration(facts, CONFIG)

        assert [d.provider_id for d in drafts] == [1]
        assert drafts[0].severity == Severity.HIGH
        assert drafts[0].evidence["share"] == pytest.approx(0.7)

    def test_too_few_providers(self):
        facts = [ledger(90000, provider_id=1), ledger(10000, provider_id=2)]
        assert detect_vendor_concentration(facts, CONFIG) == []

    def test_rank_vendors(self):
        facts = [ledger(300, provider_id=2), ledger(100, provider_id=1), federal(10000, provider_id=3)]
        ranked = rank_vendors(facts)
        assert [v["provider_id"] for v in ranked] == [2, 1]
        assert ranked[0]["share"] == Decimal("0.75")


class TestCrossSourceOverlap:

    def test_combined_above_materiality(self):
        drafts = detect_cross_source_overlap([federal(3000000), ledger(2500000)], CONFIG)
        assert len(drafts) == 1
        assert drafts[0].severity == Severity.MEDIUM
        assert drafts[0].description.startswith(
            "Federal ($3,000,000.00) + State ($2,500,000.00) = $5,500,000.00"
        )

    def test_double_materiality_is_high(self):
        drafts = detect_cross_source_overlap([federal(6000000), ledger(5000000)], CONFIG)
        assert drafts[0].severity == Severity.HIGH

    def test_single_stream_not_flagged(self):
        assert detect_cross_source_overlap([federal(3000000), federal(3000000)], CONFIG) == []

    def test_below_materiality(self):
        assert detect_cross_source_overlap([federal(2000000), ledger(2000000)], CONFIG) == []


class TestRapidGrowth:

    def test_growth(self):
        facts = [ledger(20000, fiscal_year=2023), ledger(70000, fiscal_year=2024)]
        drafts = detect_rapid_growth(facts, CONFIG)
        assert len(drafts) == 1
        assert drafts[0].severity == Severity.MEDIUM
        assert drafts[0].evidence["growth_ratio"] == 3.5

    def test_extreme_growth_is_high(self):
        facts = [ledger(20000, fiscal_year=2023), ledger(130000, fiscal_year=2024)]
        assert detect_rapid_growth(facts, CONFIG)[0].severity == Severity.HIGH

    def test_small_baseline_ignored(self):
        facts = [ledger(5000, fiscal_year=2023), ledger(70000, fiscal_year=2024)]
        assert detect_rapid_growth(facts, CONFIG) == []


class TestOverCapacity:

    def test_payments_per_slot(self):
        drafts = detect_over_capacity([ledger(300000, capacity=10)], CONFIG)
        assert len(drafts) == 1
        assert drafts[0].severity == Severity.MEDIUM
        assert drafts[0].evidence["per_slot"] == 30000.0

    def test_far_over_capacity_is_high(self):
        assert detect_over_capacity([ledger(600000, capacity=10)], CONFIG)[0].severity == Severity.HIGH

    def test_unknown_capacity(self):
        assert detect_over_capacity([ledger(600000)], CONFIG) == []


# =============================================================================
# Contract heuristics
# =============================================================================

class TestSoleSource:

    def test_severity_by_value(self):
        facts = [
            contract(600000, procurement_type="Sole Source"),
            contract(200000, procurement_type="sole_source"),
            contract(50000, procurement_type="Sole-Source Award"),
        ]
        drafts = detect_sole_source(facts, CONFIG)
        assert [d.severity for d in drafts] == [Severity.HIGH, Severity.MEDIUM, Severity.LOW]
        assert drafts[0].financial_fact_id == facts[0].id
        assert drafts[0].natural_key == f"sole_source:{facts[0].id}"

    def test_competitive_and_payments_ignored(self):
        facts = [
            contract(600000, procurement_type="RFP"),
            contract(600000),
            ledger(600000, procurement_type="Sole Source"),
        ]
        assert detect_sole_source(facts, CONFIG) == []

    def test_description_names_contract(self):
        fact = contract(600000, procurement_type="Sole Source", description="Child Care Scholarship Admin")
        assert '"Child Care Scholarship Admin"' in detect_sole_source([fact], CONFIG)[0].description


class TestRapidAmendments:

    def test_severity_by_count(self):
        facts = [contract(1000, amendment_count=n) for n in (2, 3, 4)]
        drafts = detect_rapid_amendments(facts, CONFIG)
        assert [d.severity for d in drafts] == [Severity.LOW, Severity.MEDIUM, Severity.HIGH]
        assert drafts[2].evidence["amendment_count"] == 4

    def test_few_or_unknown_amendments(self):
        facts = [contract(1000, amendment_count=1), contract(1000)]
        assert detect_rapid_amendments(facts, CONFIG) == []


class TestLargeIncrease:

    @pytest.mark.parametrize("current,severity", [
        (130000, Severity.LOW),
        (160000, Severity.MEDIUM),
        (250000, Severity.HIGH),
        (350000, Severity.CRITICAL),
    ])
    def test_severity_by_percent(self, current, severity):
        drafts = detect_large_increase([contract(current, original_amount=Decimal("100000"))], CONFIG)
        assert len(drafts) == 1
        assert drafts[0].severity == severity

    def test_evidence(self):
        draft = detect_large_increase([contract(130000, original_amount=Decimal("100000"))], CONFIG)[0]
        assert draft.evidence["increase_percent"] == 30.0
        assert draft.evidence["increase_amount"] == 30000.0
        assert "30.0%" in draft.description

    def test_within_ratio_or_unknown_original(self):
        facts = [
            contract(125000, original_amount=Decimal("100000")),
            contract(900000),
            contract(900000, original_amount=Decimal("0")),
        ]
        assert detect_large_increase(facts, CONFIG) == []


class TestNoCompetition:

    def test_three_sole_source_contracts(self):
        facts = [contract(10000, procurement_type="Sole Source") for _ in range(3)]
        drafts = detect_no_competition(facts, CONFIG)
        assert len(drafts) == 1
        assert drafts[0].severity == Severity.MEDIUM
        assert drafts[0].evidence["total_amount"] == 30000.0
        assert drafts[0].natural_key == "no_competition:1"

    def test_five_is_high(self):
        facts = [contract(10000, procurement_type="Sole Source") for _ in range(5)]
        assert detect_no_competition(facts, CONFIG)[0].severity == Severity.HIGH

    def test_grouped_by_provider(self):
        facts = [
            contract(10000, procurement_type="Sole Source", provider_id=1),
            contract(10000, procurement_type="Sole Source", provider_id=1),
            contract(10000, procurement_type="Sole Source", provider_id=2),
            contract(10000, procurement_type="RFP", provider_id=1),
        ]
        assert detect_no_competition(facts, CONFIG) == []


class TestGrantMismatch:

    def check(self, grants, payments):
        return detect_grant_mismatch(
            provider_id=1,
            provider_name="Provider 1",
            fiscal_year=2023,
            government_grants=Decimal(grants),
            state_payments=[Decimal(p) for p in payments],
            config=CONFIG,
            reference="02-0123456",
        )

    def test_large_difference(self):
        draft = self.check("100000", ["50000", "20000"])
        assert draft.indicator_type == "revenue_payment_mismatch"
        assert draft.severity == Severity.MEDIUM
        assert draft.evidence["state_payments"] == 70000.0
        assert "30% difference" in draft.description
        assert draft.natural_key == "revenue_payment_mismatch:02-0123456:2023"

    def test_within_tolerance(self):
        assert self.check("100000", ["50000", "30000"]) is None

    def test_nothing_to_compare(self):
        assert self.check("100000", []) is None
        assert self.check("0", ["50000"]) is None


# =============================================================================
# Analyzer
# =============================================================================

def add_fact(db, provider, amount, key, fiscal_year=2024, day=None,
             fact_type=FactType.PAYMENT, stream=FundingStream.STATE):
    fact = FinancialFact(
        fact_type=fact_type,
        funding_stream=stream,
        provider_id=provider.id if provider else None,
        source_system="transparent_nh",
        dedup_key=f"transparent_nh:{key}",
        fiscal_year=fiscal_year,
        amount=Decimal(str(amount)),
        payment_date=day,
        vendor_name=provider.name_display if provider else "Unknown",
    )
    db.add(fact)
    return fact


class TestFraudAnalyzer:

    @pytest.fixture
    def ledger_db(self, db, make_provider):
        sunrise = make_provider("Sunrise Early Learning")
        day = date(2024, 2, 1)
        add_fact(db, sunrise, 6000, "txn|1", day=day)
        add_fact(db, sunrise, 6000, "txn|2", day=day)
        add_fact(db, None, 90000, "txn|3")
        db.commit()
        return db

    def test_flags_are_independent(self, ledger_db):
        result = FraudAnalyzer(ledger_db, CONFIG).run()

        assert result.facts_analyzed == 2
        assert result.detector_counts["structuring"] == 1
        assert result.detector_counts["duplicates"] == 1

        indicators = ledger_db.query(FraudIndicator).order_by(FraudIndicator.indicator_type).all()
        assert [i.indicator_type for i in indicators] == ["duplicate_payments", "structuring"]
        assert all(i.severity == Severity.MEDIUM for i in indicators)
        assert all(i.status == IndicatorStatus.OPEN for i in indicators)

    def test_rerun_creates_nothing(self, ledger_db):
        first = FraudAnalyzer(ledger_db, CONFIG).run()
        second = FraudAnalyzer(ledger_db, CONFIG).run()

        assert first.created == 2
        assert second.created == 0
        assert second.skipped == 2
        assert ledger_db.query(FraudIndicator).count() == 2

    def test_dismissed_indicator_stays_dismissed(self, ledger_db):
        FraudAnalyzer(ledger_db, CONFIG).run()
        indicator = ledger_db.query(FraudIndicator).filter_by(indicator_type="structuring").one()
        transition_status(ledger_db, indicator.id, IndicatorStatus.DISMISSED)
        ledger_db.commit()

        result = FraudAnalyzer(ledger_db, CONFIG).run()

        assert result.created == 0
        assert indicator.status == IndicatorStatus.DISMISSED

    def test_top_vendors(self, ledger_db):
        result = FraudAnalyzer(ledger_db, CONFIG).run()
        assert len(result.top_vendors) == 1
        assert result.top_vendors[0]["total"] == Decimal("12000.00")

    def test_contract_terms_reach_detectors(self, db, make_provider):
        sunrise = make_provider("Sunrise Early Learning")
        fact = add_fact(db, sunrise, 300000, "contract|1", fact_type=FactType.CONTRACT)
        fact.procurement_type = "Sole Source"
        fact.amendment_count = 3
        fact.original_amount = Decimal("100000")
        db.commit()

        FraudAnalyzer(db, CONFIG).run()

        indicators = db.query(FraudIndicator).order_by(FraudIndicator.indicator_type).all()
        assert [(i.indicator_type, i.severity) for i in indicators] == [
            ("large_increase", Severity.HIGH),
            ("rapid_amendments", Severity.MEDIUM),
            ("sole_source", Severity.MEDIUM),
        ]
        assert all(i.financial_fact_id == fact.id for i in indicators)
