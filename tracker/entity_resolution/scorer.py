"""
Similarity scoring between an observation and a canonical provider.

Pure functions only: scoring never touches the database, so the same
inputs always produce the same ScoreResult.

Signals and default weights:
- Name (0.60): token-set overlap blended with edit-distance ratio, best
  of canonical name and known aliases
- Location (0.25): zip5 exact, city case-insensitive, street address
- License (0.15): exact license number; a match lifts the score to the
  license floor since license numbers are the strongest key available
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, Optional

from rapidfuzz import fuzz

from config.settings import settings
from tracker.normalize import (
    normalize,
    normalize_address,
    normalize_city,
    normalize_license,
    normalize_zip,
)

METHOD_LICENSE = "license-exact"
METHOD_WEIGHTED = "weighted-name-location"
METHOD_NO_NAME = "no-name"


@dataclass(frozen=True)
class ScorerConfig:
    """Weights for combining match signals."""
    name_weight: float = 0.60
    location_weight: float = 0.25
    license_weight: float = 0.15

    # Score assigned (at minimum) when license numbers match exactly
    license_match_floor: float = 0.99

    # Share of token-set overlap within the name component (rest is edit ratio)
    token_set_share: float = 0.5

    @classmethod
    def from_settings(cls) -> "ScorerConfig":
        return cls(
            name_weight=settings.NAME_WEIGHT,
            location_weight=settings.LOCATION_WEIGHT,
            license_weight=settings.LICENSE_WEIGHT,
            license_match_floor=settings.LICENSE_MATCH_FLOOR,
        )


@dataclass(frozen=True)
class Candidate:
    """Normalized view of an observation, ready for scoring."""
    name: str
    normalized_name: str
    address: Optional[str] = None
    city: Optional[str] = None
    zip: Optional[str] = None
    license: Optional[str] = None

    @classmethod
    def from_raw(
        cls,
        name: str,
        address: Optional[str] = None,
        city: Optional[str] = None,
        zip: Optional[str] = None,
        license: Optional[str] = None,
    ) -> "Candidate":
        return cls(
            name=name or "",
            normalized_name=normalize(name),
            address=normalize_address(address) or None,
            city=normalize_city(city) or None,
            zip=normalize_zip(zip) or None,
            license=normalize_license(license) or None,
        )


@dataclass(frozen=True)
class ProviderProfile:
    """Immutable snapshot of a canonical provider used for scoring."""
    id: int
    canonical_name: str
    alias_names: tuple[str, ...] = ()
    address: Optional[str] = None
    city: Optional[str] = None
    zip5: Optional[str] = None
    license_number: Optional[str] = None
    last_verified_date: Optional[datetime] = None

    @classmethod
    def from_provider(cls, provider) -> "ProviderProfile":
        """Build from a Provider row (reads its aliases)."""
        return cls(
            id=provider.id,
            canonical_name=provider.canonical_name,
            alias_names=tuple(sorted(a.alias_normalized for a in provider.aliases)),
            address=provider.address_normalized or None,
            city=normalize_city(provider.city) or None,
            zip5=normalize_zip(provider.zip5 or provider.zip) or None,
            license_number=normalize_license(provider.license_number) or None,
            last_verified_date=provider.last_verified_date,
        )


@dataclass
class ScoreResult:
    """Match confidence between a candidate and one provider."""
    value: float
    method: str
    explanation: str
    components: dict = field(default_factory=dict)


def name_similarity(a: str, b: str, token_set_share: float = 0.5) -> float:
    """
    Similarity of two normalized names in [0, 1].

    Token-set ratio forgives word order and extra words; the plain
    ratio (normalized Levenshtein) penalizes them and catches typos.
    """
    if not a or not b:
        return 0.0
    if a == b:
        return 1.0
    token_set = fuzz.token_set_ratio(a, b) / 100.0
    edit = fuzz.ratio(a, b) / 100.0
    return token_set_share * token_set + (1 - token_set_share) * edit


def location_similarity(candidate: Candidate, provider: ProviderProfile) -> tuple[float, list[str]]:
    """
    Mean agreement over the location signals both sides carry.

    Returns (score, compared signal names). No comparable signal scores 0.
    """
    scores = []
    compared = []

    if candidate.zip and provider.zip5:
        scores.append(1.0 if candidate.zip == provider.zip5 else 0.0)
        compared.append("zip5")

    if candidate.city and provider.city:
        scores.append(1.0 if candidate.city == provider.city else 0.0)
        compared.append("city")

    if candidate.address and provider.address:
        scores.append(fuzz.ratio(candidate.address, provider.address) / 100.0)
        compared.append("address")

    if not scores:
        return 0.0, compared
    return sum(scores) / len(scores), compared


def score(
    candidate: Candidate,
    provider,
    config: Optional[ScorerConfig] = None,
) -> ScoreResult:
    """
    Score a candidate observation against one canonical provider.

    Args:
        candidate: Normalized observation
        provider: ProviderProfile (a Provider row is snapshotted first)
        config: Signal weights

    Returns:
        ScoreResult with value clamped to [0, 1]
    """
    config = config or ScorerConfig()
    if not isinstance(provider, ProviderProfile):
        provider = ProviderProfile.from_provider(provider)

    if not candidate.normalized_name:
        return ScoreResult(value=0.0, method=METHOD_NO_NAME, explanation="candidate has no usable name")

    # Name: best over canonical name and aliases
    best_name = 0.0
    best_against = provider.canonical_name
    for known in (provider.canonical_name,) + provider.alias_names:
        sim = name_similarity(candidate.normalized_name, known, config.token_set_share)
        if sim > best_name:
            best_name = sim
            best_against = known

    location, compared = location_similarity(candidate, provider)

    license_match = bool(
        candidate.license
        and provider.license_number
        and candidate.license == provider.license_number
    )
    license_component = 1.0 if license_match else 0.0

    value = (
        config.name_weight * best_name
        + config.location_weight * location
        + config.license_weight * license_component
    )
    method = METHOD_WEIGHTED
    if license_match:
        value = max(value, config.license_match_floor)
        method = METHOD_LICENSE

    value = round(min(1.0, max(0.0, value)), 4)

    if candidate.license and provider.license_number:
        license_desc = "match" if license_match else "mismatch"
    else:
        license_desc = "n/a"

    explanation = (
        f"name={best_name:.3f} vs '{best_against}'; "
        f"location={location:.3f} [{', '.join(compared) or 'none'}]; "
        f"license={license_desc}"
    )

    return ScoreResult(
        value=value,
        method=method,
        explanation=explanation,
        components={
            "name": round(best_name, 4),
            "name_matched": best_against,
            "location": round(location, 4),
            "location_signals": compared,
            "license": license_desc,
        },
    )


def rank_candidates(
    candidate: Candidate,
    providers: Iterable[ProviderProfile],
    config: Optional[ScorerConfig] = None,
) -> list[tuple[ProviderProfile, ScoreResult]]:
    """
    Score and order providers best-first.

    Ties break on the most recent last_verified_date, then lowest id.
    """
    scored = [(p, score(candidate, p, config)) for p in providers]

    # Stable sorts, least significant key first
    scored.sort(key=lambda item: item[0].id)
    scored.sort(key=lambda item: item[0].last_verified_date or datetime.min, reverse=True)
    scored.sort(key=lambda item: item[1].value, reverse=True)
    return scored
