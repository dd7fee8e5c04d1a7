"""
Federal Audit Clearinghouse single-audit reports.

Reports carry no money flowing to the provider; they contribute the
auditee as an observation and audit findings as fraud indicators.
"""

from decimal import Decimal

from tracker.bridge.base import (
    ContractorDraft,
    ObservationWithFact,
    RawRecord,
    SourceAdapter,
    parse_amount,
    parse_bool,
)
from tracker.entity_resolution import Observation
from tracker.indicators import INDICATOR_AUDIT_FINDING, IndicatorDraft
from tracker.models import Severity

# Questioned costs above this make a finding high severity
QUESTIONED_COSTS_HIGH = Decimal("50000")


def finding_severity(material_weakness: bool, significant_deficiency: bool, questioned_costs: Decimal) -> Severity:
    if material_weakness:
        return Severity.CRITICAL
    if significant_deficiency or questioned_costs > QUESTIONED_COSTS_HIGH:
        return Severity.HIGH
    return Severity.MEDIUM


class FACAdapter(SourceAdapter):
    source_key = "fac_audits"
    source_system = "fac"
    label = "FAC"

    FIELD_ALIASES = {
        "name": ("auditeeName", "auditee_name"),
        "report_id": ("reportId", "report_id"),
        "ein": ("auditeeEin", "auditee_ein", "ein"),
        "uei": ("auditeeUei", "auditee_uei"),
        "address": ("auditeeAddress", "auditee_address_line_1"),
        "city": ("auditeeCity", "auditee_city"),
        "state": ("auditeeState", "auditee_state"),
        "zip": ("auditeeZip", "auditee_zip"),
        "audit_year": ("auditYear", "audit_year"),
        "has_findings": ("hasFindings", "has_findings"),
        "findings": ("findings",),
        "fraud_indicators": ("fraudIndicators", "fraud_indicators"),
    }

    def extract(self, record: RawRecord) -> ObservationWithFact:
        name = self.require_name(record)
        report_id = self.text(record, "report_id")
        source_identifier = self.text(record, "ein") or self.text(record, "uei") or report_id
        if not source_identifier:
            source_identifier = f"auditee:{name.strip().lower()}"
        reference = report_id or source_identifier

        indicators = self.precomputed_indicators(record, reference)
        findings = self.value(record, "findings", default=None) or []
        if findings or parse_bool(self.value(record, "has_findings")):
            indicators.extend(self._finding_indicators(reference, findings))

        return ObservationWithFact(
            observation=Observation(
                name=name,
                source_system=self.source_system,
                source_identifier=source_identifier,
                address=self.text(record, "address"),
                city=self.text(record, "city"),
                state=self.text(record, "state"),
                zip=self.text(record, "zip"),
            ),
            indicators=indicators,
            contractor=ContractorDraft(
                name=name,
                city=self.text(record, "city"),
                state=self.text(record, "state"),
            ),
        )

    def _finding_indicators(self, reference: str, findings: list) -> list[IndicatorDraft]:
        drafts = []
        for item in findings:
            if not isinstance(item, dict):
                continue
            finding = RawRecord(item)
            ref_number = finding.get("referenceNumber", "reference_number")
            if not ref_number:
                continue

            questioned = parse_amount(finding.get("questionedCosts", "questioned_costs")) or Decimal("0")
            material = parse_bool(finding.get("materialWeakness", "material_weakness"))
            significant = parse_bool(finding.get("significantDeficiency", "significant_deficiency"))
            finding_type = finding.get("findingType", "finding_type", default="Finding")

            description = (
                f"[FAC {reference} - {ref_number}] {finding_type}: "
                f"{finding.get('description', default='')}"
            ).rstrip(": ")
            if questioned > 0:
                description += f" - Questioned costs: ${questioned:,.2f}"

            drafts.append(IndicatorDraft(
                indicator_type=INDICATOR_AUDIT_FINDING,
                severity=finding_severity(material, significant, questioned),
                description=description,
                natural_key=f"fac:{reference}:{ref_number}",
                evidence={
                    "report_id": reference,
                    "reference_number": ref_number,
                    "cfda_number": finding.get("cfdaNumber", "cfda_number"),
                    "questioned_costs": float(questioned),
                    "material_weakness": material,
                    "significant_deficiency": significant,
                },
            ))
        return drafts
