"""
Tests for fraud indicator persistence and the review workflow.
"""

import logging

import pytest

from tracker.errors import InvalidStatusTransition
from tracker.indicators import (
    INDICATOR_AUDIT_FINDING,
    INDICATOR_STRUCTURING,
    IndicatorDraft,
    fingerprint,
    save_indicators,
    transition_status,
)
from tracker.models import FraudIndicator, IndicatorStatus, Severity


def draft(provider_id=None, description="Total payments of $11,000.00", natural_key="structuring:1:2024"):
    return IndicatorDraft(
        indicator_type=INDICATOR_STRUCTURING,
        severity=Severity.MEDIUM,
        description=description,
        provider_id=provider_id,
        natural_key=natural_key,
    )


class TestFingerprint:

    def test_stable(self):
        assert fingerprint("structuring", "x", "k") == fingerprint("structuring", "x", "k")
        assert len(fingerprint("structuring", "x", "k")) == 64

    def test_natural_key_wins_over_wording(self):
        assert fingerprint("structuring", "old wording", "k") == fingerprint("structuring", "new wording", "k")

    def test_description_folded_without_natural_key(self):
        assert fingerprint("audit_finding", "Material  Weakness") == fingerprint("audit_finding", "material weakness")

    def test_type_is_part_of_identity(self):
        assert fingerprint("structuring", "x", "k") != fingerprint("near_threshold", "x", "k")


class TestSaveIndicators:

    def test_creates_open_indicators(self, db, make_provider):
        provider = make_provider("Sunrise Early Learning")
        result = save_indicators(db, [draft(provider.id)])
        db.commit()

        assert result.created == 1
        indicator = db.query(FraudIndicator).one()
        assert indicator.status == IndicatorStatus.OPEN
        assert indicator.provider_id == provider.id
        assert indicator.fingerprint == draft(provider.id).fingerprint

    def test_duplicates_within_batch_skipped(self, db):
        result = save_indicators(db, [draft(), draft(description="reworded")])
        assert result.created == 1
        assert result.skipped == 1

    def test_rerun_creates_nothing(self, db, make_provider):
        provider = make_provider("Sunrise Early Learning")
        save_indicators(db, [draft(provider.id), draft(None)])
        db.commit()

        result = save_indicators(db, [draft(provider.id), draft(None)])
        db.commit()

        assert result.created == 0
        assert result.skipped == 2
        assert db.query(FraudIndicator).count() == 2

    def test_same_finding_for_another_provider_is_distinct(self, db, make_provider):
        first = make_provider("Sunrise Early Learning")
        second = make_provider("Bright Horizons")
        result = save_indicators(db, [draft(first.id), draft(second.id)])
        assert result.created == 2

    def test_dismissed_finding_not_recreated(self, db):
        save_indicators(db, [draft()])
        db.commit()
        indicator = db.query(FraudIndicator).one()
        transition_status(db, indicator.id, IndicatorStatus.DISMISSED, notes="known vendor")
        db.commit()

        result = save_indicators(db, [draft()])
        db.commit()

        assert result.created == 0
        assert db.query(FraudIndicator).one().status == IndicatorStatus.DISMISSED

    def test_description_fingerprint_without_natural_key(self, db):
        first = IndicatorDraft(INDICATOR_AUDIT_FINDING, Severity.HIGH, "Finding 2023-001", natural_key=None)
        second = IndicatorDraft(INDICATOR_AUDIT_FINDING, Severity.HIGH, "finding  2023-001", natural_key=None)
        save_indicators(db, [first])
        db.commit()
        assert save_indicators(db, [second]).created == 0


class TestTransitions:

    @pytest.fixture
    def indicator(self, db):
        save_indicators(db, [draft()])
        db.commit()
        return db.query(FraudIndicator).one()

    def test_open_to_investigating_to_resolved(self, db, indicator):
        transition_status(db, indicator.id, IndicatorStatus.INVESTIGATING, notes="pulled invoices")
        transition_status(db, indicator.id, IndicatorStatus.RESOLVED, notes="referred")
        db.commit()

        assert indicator.status == IndicatorStatus.RESOLVED
        assert indicator.notes == "pulled invoices\nreferred"

    def test_investigating_back_to_open(self, db, indicator):
        transition_status(db, indicator.id, IndicatorStatus.INVESTIGATING)
        transition_status(db, indicator.id, IndicatorStatus.OPEN)
        assert indicator.status == IndicatorStatus.OPEN

    def test_transition_logged_by_indicators_logger(self, db, indicator, caplog):
        with caplog.at_level(logging.INFO, logger="nh_childcare.indicators"):
            transition_status(db, indicator.id, IndicatorStatus.INVESTIGATING)

        assert [r.name for r in caplog.records] == ["nh_childcare.indicators"]
        assert "open -> investigating" in caplog.text

    @pytest.mark.parametrize("terminal", [IndicatorStatus.RESOLVED, IndicatorStatus.DISMISSED])
    def test_terminal_states_are_final(self, db, indicator, terminal):
        transition_status(db, indicator.id, terminal)
        with pytest.raises(InvalidStatusTransition):
            transition_status(db, indicator.id, IndicatorStatus.OPEN)

    def test_same_status_rejected(self, db, indicator):
        with pytest.raises(InvalidStatusTransition):
            transition_status(db, indicator.id, IndicatorStatus.OPEN)

    def test_unknown_indicator(self, db):
        with pytest.raises(InvalidStatusTransition):
            transition_status(db, 404, IndicatorStatus.DISMISSED)
