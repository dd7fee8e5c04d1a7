"""
Federal award feeds: USAspending.gov and SAM.gov assistance listings.
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
from tracker.normalize import normalize, normalize_zip


class USASpendingAdapter(SourceAdapter):
    source_key = "usaspending"
    source_system = "usaspending"
    label = "USAspending"

    FIELD_ALIASES = {
        "name": ("recipient_name", "recipient", "awardee"),
        "award_id": ("award_id", "fain", "piid", "generated_internal_id"),
        "uei": ("recipient_uei", "uei", "recipient_duns"),
        "amount": ("award_amount", "amount", "total_obligation", "obligated_amount", "federal_action_obligation"),
        "date": ("start_date", "action_date", "award_date", "period_of_performance_start_date"),
        "fiscal_year": ("fiscal_year", "action_date_fiscal_year"),
        "description": ("description", "award_description"),
        "cfda": ("cfda_number", "assistance_listing_number", "cfda_title"),
        "address": ("recipient_address", "recipient_address_line_1", "address"),
        "city": ("recipient_city", "recipient_city_name", "city"),
        "state": ("recipient_state", "recipient_state_code", "state"),
        "zip": ("recipient_zip", "recipient_zip_code", "recipient_zip_4_code", "zip"),
        "source_url": ("source_url", "url"),
        "fraud_indicators": ("fraud_indicators",),
    }

    def extract(self, record: RawRecord) -> ObservationWithFact:
        name = self.require_name(record)
        amount = require_amount(self.value(record, "amount"))
        award_date = parse_date(self.value(record, "date"))
        fiscal_year = resolve_fiscal_year(
            self.value(record, "fiscal_year"), award_date, FundingStream.FEDERAL
        )

        normalized = normalize(name)
        zip_code = self.text(record, "zip")
        award_id = self.text(record, "award_id")
        uei = self.text(record, "uei")
        source_identifier = uei or award_id or f"recipient:{normalized}:{normalize_zip(zip_code)}"

        if award_id:
            key = natural_key("award", award_id)
        else:
            key = natural_key(normalized, amount, award_date.isoformat() if award_date else fiscal_year)

        description = self.text(record, "description")
        if not description:
            cfda = self.text(record, "cfda")
            description = f"Federal award {award_id or ''} {cfda or ''}".strip()

        reference = award_id or source_identifier
        return ObservationWithFact(
            observation=Observation(
                name=name,
                source_system=self.source_system,
                source_identifier=source_identifier,
                address=self.text(record, "address"),
                city=self.text(record, "city"),
                state=self.text(record, "state"),
                zip=zip_code,
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
                description=description,
                source_url=self.text(record, "source_url") or f"{self.label}:{reference}",
            ),
            indicators=self.precomputed_indicators(record, reference),
            contractor=ContractorDraft(
                name=name,
                city=self.text(record, "city"),
                state=self.text(record, "state"),
            ),
        )


class SamGovAdapter(USASpendingAdapter):
    """SAM.gov awards share the federal award layout under camelCase keys."""

    source_key = "sam_gov"
    source_system = "sam_gov"
    label = "SAM"

    FIELD_ALIASES = {
        **USASpendingAdapter.FIELD_ALIASES,
        "amount": ("awardAmount", "obligatedAmount", "amount"),
        "date": ("awardDate", "periodOfPerformanceStart", "start_date"),
        "description": ("awardDescription", "cfdaTitle", "description"),
        "state": ("recipientState", "state"),
        "city": ("recipientCity", "city"),
    }
