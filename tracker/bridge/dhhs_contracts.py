"""
NH DHHS contract awards (RFP/RFA solicitations and sole-source awards).
"""

from tracker.bridge.base import (
    ContractorDraft,
    FactDraft,
    ObservationWithFact,
    RawRecord,
    SourceAdapter,
    natural_key,
    parse_bool,
    parse_amount,
    parse_date,
    parse_int,
    require_amount,
    resolve_fiscal_year,
)
from tracker.entity_resolution import Observation
from tracker.errors import RecordValidationError
from tracker.models import FactType, FundingStream
from tracker.normalize import normalize


class DHHSContractsAdapter(SourceAdapter):
    source_key = "dhhs_contracts"
    source_system = "dhhs_contracts"
    label = "DHHS"

    FIELD_ALIASES = {
        "name": ("awardedVendor", "awarded_vendor", "vendor_name", "vendor"),
        "vendor_code": ("awardedVendorCode", "vendor_code"),
        "rfp_number": ("rfpNumber", "rfp_number", "contract_number"),
        "title": ("title",),
        "amount": ("currentAmount", "current_amount", "awardedValue", "awarded_value", "contract_amount", "amount"),
        "original_amount": ("originalAmount", "original_amount", "originalValue"),
        "amendment_count": ("amendmentCount", "amendment_count", "amendments"),
        "procurement_type": ("procurementType", "solicitationType", "procurement_type", "solicitation_type"),
        "date": ("awardDate", "contractStartDate", "gcAgendaDate", "award_date"),
        "fiscal_year": ("fiscalYear", "fiscal_year"),
        "division": ("division",),
        "immigrant_related": ("isImmigrantRelated", "is_immigrant_related"),
        "city": ("vendorCity", "vendor_city", "city"),
        "state": ("vendorState", "vendor_state", "state"),
        "zip": ("vendorZip", "vendor_zip", "zip"),
        "source_url": ("sourceUrl", "pdfUrl", "source_url"),
        "fraud_indicators": ("fraudIndicators", "fraud_indicators"),
    }

    def extract(self, record: RawRecord) -> ObservationWithFact:
        name = self.text(record, "name")
        if not name:
            raise RecordValidationError("contract has no awarded vendor")
        amount = require_amount(self.value(record, "amount"))
        award_date = parse_date(self.value(record, "date"))
        fiscal_year = resolve_fiscal_year(
            self.value(record, "fiscal_year"), award_date, FundingStream.STATE
        )

        normalized = normalize(name)
        vendor_code = self.text(record, "vendor_code")
        rfp_number = self.text(record, "rfp_number")
        source_identifier = vendor_code or f"vendor:{normalized}"

        # A solicitation can be awarded to several vendors
        if rfp_number:
            key = natural_key("rfp", rfp_number, normalized)
        else:
            key = natural_key(normalized, amount, award_date.isoformat() if award_date else fiscal_year)

        title = self.text(record, "title")
        division = self.text(record, "division")
        description = " - ".join(p for p in (division, title) if p) or None

        reference = rfp_number or source_identifier
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
                fact_type=FactType.CONTRACT,
                funding_stream=FundingStream.STATE,
                amount=amount,
                fiscal_year=fiscal_year,
                vendor_name=name,
                natural_key=key,
                payment_date=award_date,
                contract_number=rfp_number,
                description=description,
                source_url=self.text(record, "source_url"),
                procurement_type=self.text(record, "procurement_type"),
                amendment_count=parse_int(self.value(record, "amendment_count")),
                original_amount=parse_amount(self.value(record, "original_amount")),
            ),
            indicators=self.precomputed_indicators(record, reference),
            contractor=ContractorDraft(
                name=name,
                vendor_code=vendor_code,
                city=self.text(record, "city"),
                state=self.text(record, "state"),
                is_immigrant_related=parse_bool(self.value(record, "immigrant_related")),
            ),
        )
