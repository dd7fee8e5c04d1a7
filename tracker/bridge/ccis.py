"""
NH Child Care Information System (CCIS) licensing roster.

The roster is the authoritative source for provider attributes
(program type, capacity, address); they are written onto the provider
after resolution.
"""

from tracker.bridge.base import (
    ObservationWithFact,
    RawRecord,
    SourceAdapter,
    parse_int,
)
from tracker.entity_resolution import Observation
from tracker.normalize import normalize, normalize_address, normalize_license, normalize_zip

PROGRAM_TYPES = {
    "licensed child care center": "center",
    "licensed family child care": "family",
    "license-exempt child care program": "exempt",
    "licensed plus": "licensed_plus",
    "family resource center": "resource_center",
}


class CCISAdapter(SourceAdapter):
    source_key = "ccis"
    source_system = "ccis"
    label = "CCIS"

    FIELD_ALIASES = {
        "name": ("program_name", "provider_name", "name"),
        "provider_number": ("provider_number", "provider_id", "ccis_id"),
        "license": ("license_number", "license_no", "license"),
        "address": ("street", "address", "street_address"),
        "city": ("city", "town"),
        "state": ("state",),
        "zip": ("zip", "zip_code"),
        "record_type": ("record_type", "program_type"),
        "license_type": ("license_type",),
        "capacity": ("capacity", "licensed_capacity"),
    }

    def extract(self, record: RawRecord) -> ObservationWithFact:
        name = self.require_name(record)
        normalized = normalize(name)
        source_identifier = (
            self.text(record, "provider_number")
            or f"CCIS-{normalized[:20].replace(' ', '-')}"
        )

        address = self.text(record, "address")
        city = self.text(record, "city")
        zip_code = self.text(record, "zip")
        license_number = self.text(record, "license")

        record_type = self.text(record, "record_type")
        if record_type:
            provider_type = PROGRAM_TYPES.get(record_type.lower(), record_type.lower())
        else:
            provider_type = self.text(record, "license_type")

        attributes = {
            "provider_type": provider_type,
            "capacity": parse_int(self.value(record, "capacity")),
            "address_display": address,
            "address_normalized": normalize_address(address) or None,
            "city": city,
            "zip": zip_code,
            "zip5": normalize_zip(zip_code) or None,
            "license_number": normalize_license(license_number) or None,
        }

        return ObservationWithFact(
            observation=Observation(
                name=name,
                source_system=self.source_system,
                source_identifier=source_identifier,
                address=address,
                city=city,
                state=self.text(record, "state") or "NH",
                zip=zip_code,
                license=license_number,
            ),
            provider_attributes={k: v for k, v in attributes.items() if v is not None},
        )
