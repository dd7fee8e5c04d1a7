"""
Typed record extraction for source adapters.

Raw rows arrive with arbitrary key casing per spreadsheet or API. Each
adapter maps them through its FIELD_ALIASES table into one
ObservationWithFact; nothing untyped leaves this boundary.
"""

import re
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Iterator, Optional

from tracker.entity_resolution import Observation
from tracker.errors import RecordValidationError
from tracker.indicators import IndicatorDraft
from tracker.models import FactType, FundingStream, Severity

DATE_FORMATS = ("%Y-%m-%d", "%m/%d/%Y", "%m/%d/%y", "%Y%m%d", "%d-%b-%Y")

# Fiscal year starts (month): NH state FY begins July 1, federal FY October 1
FISCAL_YEAR_START_MONTH = {
    FundingStream.STATE: 7,
    FundingStream.FEDERAL: 10,
}

_TRUE_STRINGS = {"true", "t", "yes", "y", "1", "x"}


def field_key(name: Any) -> str:
    """Case and punctuation insensitive form of a raw column name."""
    return re.sub(r"[^a-z0-9]", "", str(name).lower())


class RawRecord:
    """Read-only view over a raw row with forgiving key lookup."""

    def __init__(self, row: dict):
        self.row = row
        self._index = {}
        for key, value in row.items():
            self._index.setdefault(field_key(key), value)

    def get(self, *names: str, default=None):
        """First non-blank value among the given column names."""
        for name in names:
            value = self._index.get(field_key(name))
            if value is None:
                continue
            if isinstance(value, str):
                value = value.strip()
                if not value:
                    continue
            return value
        return default


@dataclass
class ContractorDraft:
    name: str
    vendor_code: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    is_immigrant_related: bool = False


@dataclass
class FactDraft:
    """A financial fact before provider attribution."""
    fact_type: FactType
    funding_stream: FundingStream
    amount: Decimal
    fiscal_year: int
    vendor_name: str
    # Source-native natural key; the pipeline prefixes the source system
    natural_key: str
    payment_date: Optional[date] = None
    contract_number: Optional[str] = None
    description: Optional[str] = None
    source_url: Optional[str] = None
    procurement_type: Optional[str] = None
    amendment_count: Optional[int] = None
    original_amount: Optional[Decimal] = None


@dataclass
class FilingDraft:
    """Government grants a nonprofit reported on its annual filing."""
    fiscal_year: int
    government_grants: Decimal
    reference: str


@dataclass
class ObservationWithFact:
    """Uniform output of every adapter."""
    observation: Observation
    fact: Optional[FactDraft] = None
    filing: Optional[FilingDraft] = None
    indicators: list[IndicatorDraft] = field(default_factory=list)
    contractor: Optional[ContractorDraft] = None
    # Authoritative attributes written onto the resolved provider
    provider_attributes: dict = field(default_factory=dict)


# ----------------------------------------------------------------------
# Parsers
# ----------------------------------------------------------------------

def parse_amount(value) -> Optional[Decimal]:
    """Parse "$1,234.50", "(500.00)", 1234.5 into a 2-place Decimal; None if unparseable."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float, Decimal)):
        text = str(value)
    else:
        text = str(value).strip().replace("$", "").replace(",", "").replace(" ", "")
        if text.startswith("(") and text.endswith(")"):
            text = "-" + text[1:-1]
    if not text:
        return None
    try:
        amount = Decimal(text)
    except InvalidOperation:
        return None
    if not amount.is_finite():
        return None
    return amount.quantize(Decimal("0.01"))


def require_amount(value) -> Decimal:
    amount = parse_amount(value)
    if amount is None:
        raise RecordValidationError(f"unparseable amount {value!r}")
    if amount <= 0:
        raise RecordValidationError(f"non-positive amount {amount}")
    return amount


def parse_date(value) -> Optional[date]:
    """Parse ISO dates/datetimes and common US formats; None if unparseable."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value

    text = str(value).strip()
    if not text:
        return None
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
    except ValueError:
        pass
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    return None


def parse_int(value) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(Decimal(str(value).strip().replace(",", "")))
    except (InvalidOperation, ValueError):
        return None


def parse_bool(value) -> bool:
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    return str(value).strip().lower() in _TRUE_STRINGS


def parse_severity(value, default: Severity = Severity.MEDIUM) -> Severity:
    try:
        return Severity(str(value).strip().lower())
    except ValueError:
        return default


def fiscal_year_for(day: date, stream: FundingStream) -> int:
    """Fiscal year containing a date, on the state or federal calendar."""
    return day.year + 1 if day.month >= FISCAL_YEAR_START_MONTH[stream] else day.year


def resolve_fiscal_year(explicit, day: Optional[date], stream: FundingStream) -> int:
    """Explicit fiscal year when plausible, otherwise derived from the date."""
    year = parse_int(explicit)
    if year is not None:
        if 1900 < year < 2200:
            return year
        if 0 <= year < 100:
            # "FY24"
            return 2000 + year
    if day is not None:
        return fiscal_year_for(day, stream)
    raise RecordValidationError("no fiscal year or date")


def natural_key(*parts) -> str:
    return "|".join("" if p is None else str(p) for p in parts)


def iter_records(raw_content) -> Iterator:
    """
    Rows of a raw document: a list of rows, a dict with a "records" list
    (document-level scalars become row defaults), or a single row.
    """
    if raw_content is None:
        return
    if isinstance(raw_content, list):
        yield from raw_content
    elif isinstance(raw_content, dict) and isinstance(raw_content.get("records"), list):
        defaults = {
            k: v for k, v in raw_content.items()
            if k != "records" and not isinstance(v, (list, dict))
        }
        for row in raw_content["records"]:
            yield {**defaults, **row} if isinstance(row, dict) else row
    else:
        yield raw_content


# ----------------------------------------------------------------------
# Adapter base
# ----------------------------------------------------------------------

class SourceAdapter:
    """
    Base class for per-source adapters.

    Subclasses set source_key (raw document tag), source_system (link
    namespace) and FIELD_ALIASES, and implement extract().
    """

    source_key: str = ""
    source_system: str = ""
    label: str = ""

    # canonical field -> raw column names, in priority order
    FIELD_ALIASES: dict[str, tuple[str, ...]] = {}

    def value(self, record: RawRecord, name: str, default=None):
        return record.get(*self.FIELD_ALIASES.get(name, (name,)), default=default)

    def text(self, record: RawRecord, name: str) -> Optional[str]:
        value = self.value(record, name)
        return str(value).strip() if value is not None else None

    def require_name(self, record: RawRecord, name: str = "name") -> str:
        value = self.text(record, name)
        if not value:
            raise RecordValidationError(f"missing {name}")
        return value

    def is_relevant(self, record: RawRecord) -> bool:
        """Rows outside this tracker's scope are skipped silently."""
        return True

    def extract(self, record: RawRecord) -> ObservationWithFact:
        raise NotImplementedError

    def precomputed_indicators(self, record: RawRecord, reference: str) -> list[IndicatorDraft]:
        """
        Fraud signals a source computed itself ("fraudIndicators" list).

        One indicator per (type, source reference).
        """
        drafts = []
        for item in self.value(record, "fraud_indicators", default=None) or []:
            if not isinstance(item, dict):
                continue
            entry = RawRecord(item)
            indicator_type = entry.get("type", "indicatorType")
            description = entry.get("description")
            if not indicator_type or not description:
                continue
            drafts.append(IndicatorDraft(
                indicator_type=str(indicator_type),
                severity=parse_severity(entry.get("severity")),
                description=f"[{self.label} {reference}] {description}",
                natural_key=f"{self.source_system}:{reference}",
                evidence={"source": self.source_system, "reference": reference},
            ))
        return drafts

    def __repr__(self) -> str:
        return f"<{type(self).__name__}({self.source_key})>"
