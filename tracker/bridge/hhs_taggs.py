"""
HHS TAGGS (Tracking Accountability in Government Grants System) awards.
"""

from tracker.bridge.base import (
    ContractorDraft,
    FactDraft,
    ObservationWithFact,
    RawRecord,
    SourceAdapter,
    natural_key,
    parse_date,
    require_amount,
    resolve_fiscal_year,
)
from tracker.entity_resolution import Observation
from tracker.models import FactType, FundingStream
from tracker.normalize import normalize


class HHSTaggsAdapter(SourceAdapter):
    source_key = "hhs_taggs"
    source_system = "hhs_taggs"
    label = "TAGGS"

    FIELD_ALIASES = {
        "name": ("recipientName", "recipient_name", "recipient"),
        "award_id": ("awardId", "award_number", "award_id"),
        "amount": ("awardAmount", "award_amount", "amount"),
        "date": ("awardDate", "action_date", "projectPeriodStart"),
        "fiscal_year": ("fiscalYear", "fiscal_year", "fy"),
        "cfda_number": ("cfdaNumber", "cfda"),
        "cfda_program": ("cfdaProgramName", "program_name"),
        "action_type": ("actionType", "action_type"),
        "category": ("category",),
        "city": ("recipientCity", "city"),
        "state": ("recipientState", "state"),
        "zip": ("recipientZip", "zip"),
        "source_url": ("sourceUrl", "source_url"),
        "fraud_indicators": ("fraudIndicators", "fraud_indicators"),
    }

    def extract(self, record: RawRecord) -> ObservationWithFact:
        name = self.require_name(record)
        amount = require_amount(self.value(record, "amount"))
        award_date = parse_date(self.value(record, "date"))
        fiscal_year = resolve_fiscal_year(
            self.value(record, "fiscal_year"), award_date, FundingStream.FEDERAL
        )

        normalized = normalize(name)
        award_id = self.text(record, "award_id")
        source_identifier = award_id or f"recipient:{normalized}"

        # One award number recurs across fiscal years and amendments
        if award_id:
            key = natural_key("award", award_id, fiscal_year, amount)
        else:
            key = natural_key(normalized, amount, fiscal_year)

        parts = [self.text(record, "cfda_number"), self.text(record, "cfda_program")]
        description = ": ".join(p for p in parts if p)
        action_type = self.text(record, "action_type")
        if action_type:
            description = f"{description} - {action_type}" if description else action_type

        reference = award_id or source_identifier
        return ObservationWithFact(
            observation=Observation(
                name=name,
                source_system=self.source_system,
                source_identifier=source_identifier,
                city=self.text(record, "city"),
                state=self.text(record, "state"),
                zip=self.text(record, "zip"),
            ),
            fact=FactDraft(
                fact_type=FactType.EXPENDITURE,
                funding_stream=FundingStream.FEDERAL,
                amount=amount,
                fiscal_year=fiscal_year,
                vendor_name=name,
                natural_key=key,
                payment_date=award_date,
                contract_number=award_id,
                description=description or None,
                source_url=self.text(record, "source_url") or self.source_system,
            ),
            indicators=self.precomputed_indicators(record, reference),
            contractor=ContractorDraft(
                name=name,
                city=self.text(record, "city"),
                state=self.text(record, "state"),
                is_immigrant_related=(self.text(record, "category") or "").lower() == "refugee",
            ),
        )
