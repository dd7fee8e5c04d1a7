"""
Entity Resolution Module

Confidence-scored provider resolution combining:
- Name similarity (rapidfuzz token-set + edit ratio, alias aware)
- Location agreement (zip5, city, street address)
- License number exact match
"""

from tracker.entity_resolution.resolver import (
    EntityResolver,
    Observation,
    Resolution,
    ResolverConfig,
)
from tracker.entity_resolution.scorer import (
    Candidate,
    ProviderProfile,
    ScoreResult,
    ScorerConfig,
    rank_candidates,
    score,
)

__all__ = [
    "EntityResolver",
    "Observation",
    "Resolution",
    "ResolverConfig",
    "Candidate",
    "ProviderProfile",
    "ScoreResult",
    "ScorerConfig",
    "rank_candidates",
    "score",
]
