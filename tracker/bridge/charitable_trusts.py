"""
NH Charitable Trusts Unit nonprofit profiles (Form 990 data).

Profiles carry no payment; they contribute the filer as an observation,
the source's own fraud signals, and the government grants reported on
the latest filing so the pipeline can compare them with state payments.
"""

from tracker.bridge.base import (
    ContractorDraft,
    FilingDraft,
    ObservationWithFact,
    RawRecord,
    SourceAdapter,
    parse_amount,
    parse_int,
)
from tracker.entity_resolution import Observation
from tracker.normalize import normalize


class CharitableTrustsAdapter(SourceAdapter):
    source_key = "charitable_trusts"
    source_system = "charitable_trusts"
    label = "990"

    FIELD_ALIASES = {
        "name": ("name", "organizationName", "organization_name"),
        "ein": ("ein", "EIN"),
        "city": ("city",),
        "state": ("state",),
        "filing_year": ("latestFilingYear", "latest_filing_year", "taxYear"),
        "government_grants": ("governmentGrants", "government_grants"),
        "fraud_indicators": ("fraudIndicators", "fraud_indicators"),
    }

    def extract(self, record: RawRecord) -> ObservationWithFact:
        name = self.require_name(record)
        ein = self.text(record, "ein")
        source_identifier = ein or f"nonprofit:{normalize(name)}"
        reference = f"EIN {ein}" if ein else source_identifier

        filing = None
        filing_year = parse_int(self.value(record, "filing_year"))
        grants = parse_amount(self.value(record, "government_grants"))
        if filing_year and grants:
            filing = FilingDraft(fiscal_year=filing_year, government_grants=grants, reference=source_identifier)

        return ObservationWithFact(
            observation=Observation(
                name=name,
                source_system=self.source_system,
                source_identifier=source_identifier,
                city=self.text(record, "city"),
                state=self.text(record, "state"),
            ),
            filing=filing,
            indicators=self.precomputed_indicators(record, reference),
            # The unit's scrape covers immigrant-serving organizations only
            contractor=ContractorDraft(
                name=name,
                city=self.text(record, "city"),
                state=self.text(record, "state"),
                is_immigrant_related=True,
            ),
        )
