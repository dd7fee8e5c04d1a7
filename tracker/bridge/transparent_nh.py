"""
Transparent NH state expenditure register.

Only childcare-related vendors and DHHS payments are bridged.
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

CHILDCARE_KEYWORDS = (
    "daycare", "day care", "child care", "childcare", "preschool",
    "early learning", "nursery", "head start",
)

DHHS_DEPARTMENT_MARKERS = ("health and human services", "dhhs")


class TransparentNHAdapter(SourceAdapter):
    source_key = "transparent_nh"
    source_system = "transparent_nh"
    label = "TNH"

    FIELD_ALIASES = {
        "name": ("vendor_name", "vendor", "payee", "payee_name"),
        "vendor_code": ("vendor_code", "vendor_number", "vendor_id", "vendor_no"),
        "amount": ("amount", "payment_amount", "expenditure_amount", "total"),
        "date": ("transaction_date", "payment_date", "check_date", "date"),
        "fiscal_year": ("fiscal_year", "fy", "year"),
        "department": ("department", "agency", "department_name"),
        "activity": ("activity", "program", "account", "expense_category"),
        "transaction_id": ("transaction_id", "check_number", "voucher_number", "document_number"),
        "address": ("vendor_address", "address", "street"),
        "city": ("vendor_city", "city"),
        "state": ("vendor_state", "state"),
        "zip": ("vendor_zip", "zip", "zip_code", "postal_code"),
        "source_url": ("source_url", "url"),
    }

    def is_relevant(self, record: RawRecord) -> bool:
        vendor = (self.text(record, "name") or "").lower()
        department = (self.text(record, "department") or "").lower()
        return (
            any(k in vendor for k in CHILDCARE_KEYWORDS)
            or any(m in department for m in DHHS_DEPARTMENT_MARKERS)
        )

    def extract(self, record: RawRecord) -> ObservationWithFact:
        name = self.require_name(record)
        amount = require_amount(self.value(record, "amount"))
        payment_date = parse_date(self.value(record, "date"))
        fiscal_year = resolve_fiscal_year(
            self.value(record, "fiscal_year"), payment_date, FundingStream.STATE
        )

        normalized = normalize(name)
        zip_code = self.text(record, "zip")
        vendor_code = self.text(record, "vendor_code")
        source_identifier = vendor_code or f"vendor:{normalized}:{normalize_zip(zip_code)}"

        transaction_id = self.text(record, "transaction_id")
        if transaction_id:
            key = natural_key("txn", transaction_id)
        else:
            key = natural_key(normalized, amount, payment_date.isoformat() if payment_date else fiscal_year)

        department = self.text(record, "department")
        activity = self.text(record, "activity")
        description = " - ".join(p for p in (department, activity) if p) or None

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
                fact_type=FactType.PAYMENT,
                funding_stream=FundingStream.STATE,
                amount=amount,
                fiscal_year=fiscal_year,
                vendor_name=name,
                natural_key=key,
                payment_date=payment_date,
                description=description,
                source_url=self.text(record, "source_url") or f"Transparent NH FY{fiscal_year}",
            ),
            contractor=ContractorDraft(
                name=name,
                vendor_code=vendor_code,
                city=self.text(record, "city"),
                state=self.text(record, "state"),
            ),
        )
