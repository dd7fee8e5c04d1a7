"""
NH Department of Administrative Services bid board awards.

Only awarded bids with a named vendor become contract facts; the bid
type is carried as the procurement type so sole-source and emergency
awards reach the contract heuristics.
"""

from tracker.bridge.base import (
    ContractorDraft,
    FactDraft,
    ObservationWithFact,
    RawRecord,
    SourceAdapter,
    natural_key,
    parse_bool,
    parse_date,
    require_amount,
    resolve_fiscal_year,
)
from tracker.entity_resolution import Observation
from tracker.errors import RecordValidationError
from tracker.models import FactType, FundingStream
from tracker.normalize import normalize


class DASBidsAdapter(SourceAdapter):
    source_key = "das_bids"
    source_system = "das_bids"
    label = "DAS"

    FIELD_ALIASES = {
        "name": ("awardedVendor", "awarded_vendor"),
        "vendor_code": ("awardedVendorCode", "awarded_vendor_code", "vendor_code"),
        "bid_number": ("bidNumber", "bid_number"),
        "title": ("title",),
        "department": ("department",),
        "amount": ("awardedValue", "awarded_value"),
        "bid_type": ("bidType", "bid_type"),
        "status": ("status",),
        "date": ("awardDate", "award_date"),
        "fiscal_year": ("fiscalYear", "fiscal_year"),
        "immigrant_related": ("isImmigrantRelated", "is_immigrant_related"),
        "source_url": ("sourceUrl", "pdfUrl", "source_url"),
        "fraud_indicators": ("fraudIndicators", "fraud_indicators"),
    }

    def is_relevant(self, record: RawRecord) -> bool:
        # Open, closed and cancelled bids carry no award
        return (self.text(record, "status") or "").lower() == "awarded"

    def extract(self, record: RawRecord) -> ObservationWithFact:
        name = self.text(record, "name")
        if not name:
            raise RecordValidationError("awarded bid has no vendor")
        bid_number = self.text(record, "bid_number")
        if not bid_number:
            raise RecordValidationError("bid has no number")
        amount = require_amount(self.value(record, "amount"))
        award_date = parse_date(self.value(record, "date"))
        fiscal_year = resolve_fiscal_year(
            self.value(record, "fiscal_year"), award_date, FundingStream.STATE
        )

        vendor_code = self.text(record, "vendor_code")
        source_identifier = vendor_code or f"vendor:{normalize(name)}"
        description = " - ".join(
            p for p in (self.text(record, "department"), self.text(record, "title")) if p
        ) or None

        return ObservationWithFact(
            observation=Observation(
                name=name,
                source_system=self.source_system,
                source_identifier=source_identifier,
            ),
            fact=FactDraft(
                fact_type=FactType.CONTRACT,
                funding_stream=FundingStream.STATE,
                amount=amount,
                fiscal_year=fiscal_year,
                vendor_name=name,
                natural_key=natural_key("bid", bid_number),
                payment_date=award_date,
                contract_number=bid_number,
                description=description,
                source_url=self.text(record, "source_url"),
                procurement_type=self.text(record, "bid_type"),
            ),
            indicators=self.precomputed_indicators(record, bid_number),
            contractor=ContractorDraft(
                name=name,
                vendor_code=vendor_code,
                is_immigrant_related=parse_bool(self.value(record, "immigrant_related")),
            ),
        )
