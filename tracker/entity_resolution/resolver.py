"""
Entity Resolver

Decides, for each observation from any source, whether to link it to an
existing canonical provider, queue it for human review, or create a new
provider. Every decision is persisted with an audit entry.

The resolver only flushes; the caller owns the transaction and commits.
"""

from dataclasses import dataclass, field
from typing import Optional

from sqlalchemy import case, func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from config.logging import get_logger
from config.settings import settings
from tracker.entity_resolution.scorer import (
    Candidate,
    ProviderProfile,
    ScoreResult,
    ScorerConfig,
    rank_candidates,
)
from tracker.errors import ResolutionError, ReviewError
from tracker.models import (
    AuditAction,
    FinancialFact,
    FraudIndicator,
    LinkStatus,
    MatchAuditLog,
    PendingMatch,
    Provider,
    ProviderAlias,
    ReviewStatus,
    SourceLink,
    utcnow,
)
from tracker.normalize import name_tokens

logger = get_logger("resolver")

METHOD_EXISTING_LINK = "existing-link"
METHOD_AUTO_HIGH = "auto-high-confidence"
METHOD_NEW_PROVIDER = "new-provider"
METHOD_REVIEW_QUEUED = "review-queued"
METHOD_REVIEW_REJECTED = "review-rejected"
METHOD_MANUAL_APPROVE = "manual-approve"
METHOD_MANUAL_REJECT = "manual-reject"
METHOD_MANUAL_MERGE = "manual-merge"
METHOD_MANUAL_DEACTIVATE = "manual-deactivate"

SYSTEM_ACTOR = "system"

# Tokens too common to narrow the candidate set
SELECTION_STOPWORDS = frozenset({
    "the", "and", "for", "new", "hampshire", "inc", "llc",
})


@dataclass
class Observation:
    """One source's report of an entity, awaiting resolution."""
    name: str
    source_system: str
    source_identifier: str
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip: Optional[str] = None
    license: Optional[str] = None

    def to_candidate(self) -> Candidate:
        return Candidate.from_raw(
            self.name,
            address=self.address,
            city=self.city,
            zip=self.zip,
            license=self.license,
        )


@dataclass
class Resolution:
    """Outcome of resolving one observation."""
    matched: bool
    provider_id: Optional[int]
    created: bool = False
    score: float = 0.0
    method: str = ""
    needs_review: bool = False
    explanation: str = ""


@dataclass
class ResolverConfig:
    """Decision bands for entity resolution."""
    # At or above: auto-link to the best candidate
    high_threshold: float = 0.85

    # At or above (and below high): queue for human review
    low_threshold: float = 0.55

    # Max providers loaded per selection query
    candidate_limit: int = 200

    scorer: ScorerConfig = field(default_factory=ScorerConfig)

    @classmethod
    def from_settings(cls) -> "ResolverConfig":
        return cls(
            high_threshold=settings.MATCH_HIGH_THRESHOLD,
            low_threshold=settings.MATCH_LOW_THRESHOLD,
            candidate_limit=settings.CANDIDATE_LIMIT,
            scorer=ScorerConfig.from_settings(),
        )


class EntityResolver:
    """
    Confidence-banded entity resolver.

    Resolution strategy:
    1. Existing active SourceLink for (source_system, source_identifier)
       short-circuits without re-scoring
    2. Score providers sharing a name token, zip5 or license
    3. Auto-link, queue for review, or create a new provider by score band

    Usage:
        resolver = EntityResolver(db)
        resolution = resolver.resolve(Observation(
            name="Sunrise Daycare, LLC",
            source_system="ccis",
            source_identifier="LIC-1234",
            zip="03101",
        ))
        db.commit()
    """

    def __init__(
        self,
        db: Session,
        config: Optional[ResolverConfig] = None,
    ):
        self.db = db
        self.config = config or ResolverConfig.from_settings()

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    def resolve(self, observation: Observation) -> Resolution:
        """
        Resolve an observation to a canonical provider.

        Raises:
            ResolutionError: observation is unusable or could not be persisted
        """
        self._validate(observation)

        link = self._active_link(observation.source_system, observation.source_identifier)
        if link is not None:
            logger.debug(
                f"Existing link {observation.source_system}:{observation.source_identifier} "
                f"-> provider {link.provider_id}"
            )
            return self._existing_link_resolution(link)

        candidate = observation.to_candidate()
        ranked = rank_candidates(candidate, self._select_candidates(candidate), self.config.scorer)
        best_profile, best = ranked[0] if ranked else (None, None)
        best_score = best.value if best else 0.0

        logger.debug(
            f"Resolving '{observation.name}' ({len(ranked)} candidates, best={best_score:.4f})"
        )

        try:
            if best is not None and best_score >= self.config.high_threshold:
                return self._auto_link(observation, candidate, best_profile, best)
            if best is not None and best_score >= self.config.low_threshold:
                return self._queue_for_review(observation, best_profile, best)
            return self._create_new(observation, candidate, best)
        except IntegrityError as exc:
            # Same external key linked concurrently: already processed
            link = self._active_link(observation.source_system, observation.source_identifier)
            if link is None:
                raise ResolutionError(
                    f"Could not persist resolution for "
                    f"{observation.source_system}:{observation.source_identifier}: {exc}"
                ) from exc
            return self._existing_link_resolution(link)

    def _validate(self, observation: Observation):
        if not observation.source_system or not observation.source_identifier:
            raise ResolutionError("observation has no source system/identifier")
        if not Candidate.from_raw(observation.name).normalized_name:
            raise ResolutionError(
                f"observation {observation.source_system}:{observation.source_identifier} "
                f"has no usable name"
            )

    def _existing_link_resolution(self, link: SourceLink) -> Resolution:
        return Resolution(
            matched=True,
            provider_id=link.provider_id,
            created=False,
            score=float(link.match_score or 0),
            method=METHOD_EXISTING_LINK,
            explanation=f"linked earlier via {link.match_method}",
        )

    def _auto_link(
        self,
        observation: Observation,
        candidate: Candidate,
        profile: ProviderProfile,
        result: ScoreResult,
    ) -> Resolution:
        provider = self.db.get(Provider, profile.id)

        with self.db.begin_nested():
            self._upsert_link(observation, provider.id, METHOD_AUTO_HIGH, result.value, result.components)
            self._add_alias(provider, observation.name, candidate.normalized_name,
                            source=observation.source_system, confidence=result.value)
            self._refresh_provider(provider, observation, candidate)
            superseded = self._supersede_pending(observation, METHOD_AUTO_HIGH)
            self._audit(
                AuditAction.AUTO_LINK,
                observation,
                provider_id=provider.id,
                score=result.value,
                method=METHOD_AUTO_HIGH,
                details={
                    "explanation": result.explanation,
                    **result.components,
                    "superseded_pending_match_id": superseded,
                },
            )

        logger.info(
            f"Auto-linked '{observation.name}' -> '{provider.name_display}' "
            f"(id={provider.id}, score={result.value:.4f})"
        )
        return Resolution(
            matched=True,
            provider_id=provider.id,
            score=result.value,
            method=METHOD_AUTO_HIGH,
            explanation=result.explanation,
        )

    def _queue_for_review(
        self,
        observation: Observation,
        profile: ProviderProfile,
        result: ScoreResult,
    ) -> Resolution:
        pending = (
            self.db.query(PendingMatch)
            .filter(
                PendingMatch.source_system == observation.source_system,
                PendingMatch.source_identifier == observation.source_identifier,
            )
            .first()
        )

        if pending is not None and pending.status == ReviewStatus.REJECTED:
            logger.debug(
                f"'{observation.name}' was rejected in review; not re-queued"
            )
            return Resolution(
                matched=False,
                provider_id=None,
                score=result.value,
                method=METHOD_REVIEW_REJECTED,
                explanation=result.explanation,
            )

        changed = (
            pending is None
            or pending.status != ReviewStatus.PENDING
            or pending.candidate_provider_id != profile.id
            or pending.match_score is None
            or abs(float(pending.match_score) - result.value) > 1e-9
        )

        with self.db.begin_nested():
            if pending is None:
                pending = PendingMatch(
                    source_system=observation.source_system,
                    source_identifier=observation.source_identifier,
                )
                self.db.add(pending)

            pending.source_name = observation.name
            pending.source_address = observation.address
            pending.source_city = observation.city
            pending.source_state = observation.state
            pending.source_zip = observation.zip
            pending.source_license = observation.license
            pending.candidate_provider_id = profile.id
            pending.match_score = result.value
            pending.match_details = {"explanation": result.explanation, **result.components}
            if pending.status != ReviewStatus.PENDING:
                # Approved or superseded earlier but the link is gone (provider deactivated)
                pending.status = ReviewStatus.PENDING
                pending.reviewed_by = None
                pending.reviewed_at = None

            if changed:
                self._audit(
                    AuditAction.QUEUE,
                    observation,
                    provider_id=profile.id,
                    score=result.value,
                    method=METHOD_REVIEW_QUEUED,
                    details={"explanation": result.explanation, **result.components},
                )

        if changed:
            logger.info(
                f"Queued '{observation.name}' for review against provider {profile.id} "
                f"(score={result.value:.4f})"
            )
        return Resolution(
            matched=False,
            provider_id=None,
            score=result.value,
            method=METHOD_REVIEW_QUEUED,
            needs_review=True,
            explanation=result.explanation,
        )

    def _create_new(
        self,
        observation: Observation,
        candidate: Candidate,
        best: Optional[ScoreResult],
    ) -> Resolution:
        best_score = best.value if best else 0.0
        explanation = (
            f"no candidate reached {self.config.low_threshold:.2f} (best {best_score:.4f})"
        )

        with self.db.begin_nested():
            provider = self._new_provider(observation, candidate)
            self._upsert_link(observation, provider.id, METHOD_NEW_PROVIDER, best_score,
                              {"explanation": explanation})
            superseded = self._supersede_pending(observation, METHOD_NEW_PROVIDER)
            self._audit(
                AuditAction.CREATE_NEW,
                observation,
                provider_id=provider.id,
                score=best_score,
                method=METHOD_NEW_PROVIDER,
                details={"explanation": explanation, "superseded_pending_match_id": superseded},
            )

        logger.info(f"Created provider '{provider.name_display}' (id={provider.id})")
        return Resolution(
            matched=False,
            provider_id=provider.id,
            created=True,
            score=best_score,
            method=METHOD_NEW_PROVIDER,
            explanation=explanation,
        )

    # ------------------------------------------------------------------
    # Candidate selection
    # ------------------------------------------------------------------

    def _select_candidates(self, candidate: Candidate) -> list[ProviderProfile]:
        """
        Active providers sharing a name token, zip5 or license with the candidate.

        Exact canonical/alias name hits and license hits are never capped.
        Token hits are ranked so providers sharing the rarest tokens come
        first, then capped at candidate_limit. SQL narrows by substring;
        the token overlap is confirmed in Python.
        """
        tokens = name_tokens(candidate.normalized_name)
        selective = sorted(t for t in tokens if len(t) >= 3 and t not in SELECTION_STOPWORDS)
        search_tokens = selective or sorted(tokens)

        found: dict[int, Provider] = {}

        exact = or_(
            Provider.canonical_name == candidate.normalized_name,
            Provider.aliases.any(ProviderAlias.alias_normalized == candidate.normalized_name),
        )
        for provider in self._active_providers(exact, limited=False):
            found[provider.id] = provider

        if candidate.license:
            for provider in self._active_providers(
                Provider.license_number == candidate.license, limited=False
            ):
                found[provider.id] = provider

        if search_tokens:
            for provider in self._token_candidates(candidate, search_tokens):
                found[provider.id] = provider

        if candidate.zip:
            for provider in self._active_providers(
                Provider.zip5 == candidate.zip, label=f"zip5 {candidate.zip}"
            ):
                found[provider.id] = provider

        profiles = []
        for provider in found.values():
            profile = ProviderProfile.from_provider(provider)
            known_tokens = name_tokens(profile.canonical_name)
            for alias in profile.alias_names:
                known_tokens |= name_tokens(alias)
            if (
                tokens & known_tokens
                or (candidate.zip and candidate.zip == profile.zip5)
                or (candidate.license and candidate.license == profile.license_number)
            ):
                profiles.append(profile)
        return profiles

    @staticmethod
    def _token_clause(token: str):
        pattern = f"%{token}%"
        return or_(
            Provider.canonical_name.like(pattern),
            Provider.aliases.any(ProviderAlias.alias_normalized.like(pattern)),
        )

    def _token_candidates(self, candidate: Candidate, tokens: list[str]) -> list[Provider]:
        """Providers sharing any token, weighted by 1/frequency of each shared token."""
        clauses = {token: self._token_clause(token) for token in tokens}
        frequency = {
            token: self.db.query(func.count(Provider.id))
            .filter(Provider.is_active.is_(True), clause)
            .scalar()
            for token, clause in clauses.items()
        }
        present = [token for token in tokens if frequency[token]]
        if not present:
            return []

        rank = None
        for token in present:
            weight = case((clauses[token], 1.0 / frequency[token]), else_=0.0)
            rank = weight if rank is None else rank + weight

        return self._active_providers(
            or_(*(clauses[token] for token in present)),
            rank=rank,
            label=f"name '{candidate.normalized_name}'",
        )

    def _active_providers(
        self,
        criterion,
        rank=None,
        limited: bool = True,
        label: str = "",
    ) -> list[Provider]:
        query = (
            self.db.query(Provider)
            .options(selectinload(Provider.aliases))
            .filter(Provider.is_active.is_(True), criterion)
        )
        if not limited:
            return query.order_by(Provider.id).all()

        limit = self.config.candidate_limit
        total = query.order_by(None).count()
        if total > limit:
            logger.warning(
                f"Candidate selection by {label} matched {total} providers; "
                f"scoring the top {limit}"
            )
        ordering = [rank.desc(), Provider.id] if rank is not None else [Provider.id]
        return query.order_by(*ordering).limit(limit).all()

    # ------------------------------------------------------------------
    # Persistence helpers
    # ------------------------------------------------------------------

    def _active_link(self, source_system: str, source_identifier: str) -> Optional[SourceLink]:
        return (
            self.db.query(SourceLink)
            .filter(
                SourceLink.source_system == source_system,
                SourceLink.source_identifier == source_identifier,
                SourceLink.status == LinkStatus.ACTIVE,
            )
            .first()
        )

    def _upsert_link(
        self,
        observation: Observation,
        provider_id: int,
        method: str,
        score: float,
        details: Optional[dict] = None,
    ) -> SourceLink:
        """Create the link, or re-point an inactive one for the same key."""
        link = (
            self.db.query(SourceLink)
            .filter(
                SourceLink.source_system == observation.source_system,
                SourceLink.source_identifier == observation.source_identifier,
            )
            .first()
        )
        if link is None:
            link = SourceLink(
                source_system=observation.source_system,
                source_identifier=observation.source_identifier,
            )
            self.db.add(link)

        link.provider_id = provider_id
        link.source_name = observation.name
        link.match_method = method
        link.match_score = score
        link.match_details = details
        link.status = LinkStatus.ACTIVE
        self.db.flush()
        return link

    def _new_provider(self, observation: Observation, candidate: Candidate) -> Provider:
        now = utcnow()
        provider = Provider(
            canonical_name=candidate.normalized_name,
            name_display=observation.name.strip(),
            address_normalized=candidate.address,
            address_display=observation.address,
            city=observation.city.strip() if observation.city else None,
            state=(observation.state or "NH").upper()[:2],
            zip=observation.zip,
            zip5=candidate.zip,
            license_number=candidate.license,
            first_seen_date=now,
            last_verified_date=now,
        )
        self.db.add(provider)
        self.db.flush()
        return provider

    def _add_alias(
        self,
        provider: Provider,
        alias_name: str,
        alias_normalized: str,
        source: Optional[str] = None,
        confidence: Optional[float] = None,
        alias_type: str = "variant",
    ) -> bool:
        """Record an alternate name unless it is the canonical name or already known."""
        if not alias_normalized or alias_normalized == provider.canonical_name:
            return False
        if any(a.alias_normalized == alias_normalized for a in provider.aliases):
            return False

        provider.aliases.append(ProviderAlias(
            alias_name=alias_name.strip(),
            alias_normalized=alias_normalized,
            alias_type=alias_type,
            source=source,
            confidence=confidence,
        ))
        logger.debug(f"Added alias '{alias_normalized}' to provider {provider.id}")
        return True

    def _refresh_provider(self, provider: Provider, observation: Observation, candidate: Candidate):
        """Mark verified and fill attributes the provider is missing."""
        provider.last_verified_date = utcnow()
        if candidate.zip and not provider.zip5:
            provider.zip5 = candidate.zip
            provider.zip = observation.zip
        if observation.city and not provider.city:
            provider.city = observation.city.strip()
        if candidate.license and not provider.license_number:
            provider.license_number = candidate.license
        if candidate.address and not provider.address_normalized:
            provider.address_normalized = candidate.address
            provider.address_display = observation.address

    def _backfill_facts(self, observation: Observation, provider_id: int) -> int:
        """Attribute already-ingested, unresolved facts for this external key."""
        return (
            self.db.query(FinancialFact)
            .filter(
                FinancialFact.source_system == observation.source_system,
                FinancialFact.source_identifier == observation.source_identifier,
                FinancialFact.provider_id.is_(None),
            )
            .update({FinancialFact.provider_id: provider_id}, synchronize_session="fetch")
        )

    def _supersede_pending(self, observation: Observation, method: str) -> Optional[int]:
        """Close an open review entry for a key the resolver just decided itself."""
        pending = (
            self.db.query(PendingMatch)
            .filter(
                PendingMatch.source_system == observation.source_system,
                PendingMatch.source_identifier == observation.source_identifier,
                PendingMatch.status == ReviewStatus.PENDING,
            )
            .first()
        )
        if pending is None:
            return None

        pending.status = ReviewStatus.SUPERSEDED
        pending.reviewed_by = SYSTEM_ACTOR
        pending.reviewed_at = utcnow()
        logger.info(f"Pending match {pending.id} superseded by {method}")
        return pending.id

    def _audit(
        self,
        action: AuditAction,
        observation: Observation,
        provider_id: Optional[int],
        score: Optional[float],
        method: str,
        details: Optional[dict] = None,
        performed_by: str = SYSTEM_ACTOR,
    ):
        self.db.add(MatchAuditLog(
            provider_id=provider_id,
            source_system=observation.source_system,
            source_identifier=observation.source_identifier,
            source_name=observation.name,
            action=action,
            match_score=score,
            match_method=method,
            match_details=details,
            performed_by=performed_by,
        ))

    # ------------------------------------------------------------------
    # Review actions
    # ------------------------------------------------------------------

    def _reviewable(self, pending_id: int) -> PendingMatch:
        pending = self.db.get(PendingMatch, pending_id)
        if pending is None:
            raise ReviewError(f"Pending match {pending_id} not found")
        if pending.status != ReviewStatus.PENDING:
            raise ReviewError(
                f"Pending match {pending_id} already {pending.status.value}"
            )
        link = self._active_link(pending.source_system, pending.source_identifier)
        if link is not None:
            raise ReviewError(
                f"Pending match {pending_id} is stale: "
                f"{pending.source_system}:{pending.source_identifier} "
                f"already linked to provider {link.provider_id}"
            )
        return pending

    @staticmethod
    def _observation_from_pending(pending: PendingMatch) -> Observation:
        return Observation(
            name=pending.source_name,
            source_system=pending.source_system,
            source_identifier=pending.source_identifier,
            address=pending.source_address,
            city=pending.source_city,
            state=pending.source_state,
            zip=pending.source_zip,
            license=pending.source_license,
        )

    def approve_pending(
        self,
        pending_id: int,
        reviewer: str,
        provider_id: Optional[int] = None,
    ) -> Resolution:
        """
        Approve a queued match, linking the observation to its candidate
        (or to a reviewer-chosen provider).

        Facts already ingested for the same external key are attributed
        to the provider.
        """
        pending = self._reviewable(pending_id)
        target_id = provider_id or pending.candidate_provider_id
        provider = self.db.get(Provider, target_id) if target_id else None
        if provider is None or not provider.is_active:
            raise ReviewError(f"Provider {target_id} is not an active provider")

        observation = self._observation_from_pending(pending)
        candidate = observation.to_candidate()
        score = float(pending.match_score)

        with self.db.begin_nested():
            self._upsert_link(observation, provider.id, METHOD_MANUAL_APPROVE, score,
                              {"pending_match_id": pending.id, "reviewer": reviewer})
            self._add_alias(provider, observation.name, candidate.normalized_name,
                            source=observation.source_system, confidence=score)
            self._refresh_provider(provider, observation, candidate)
            backfilled = self._backfill_facts(observation, provider.id)

            pending.status = ReviewStatus.APPROVED
            pending.reviewed_by = reviewer
            pending.reviewed_at = utcnow()

            self._audit(
                AuditAction.MANUAL_OVERRIDE,
                observation,
                provider_id=provider.id,
                score=score,
                method=METHOD_MANUAL_APPROVE,
                details={
                    "pending_match_id": pending.id,
                    "candidate_provider_id": pending.candidate_provider_id,
                    "facts_backfilled": backfilled,
                },
                performed_by=reviewer,
            )

        logger.info(
            f"{reviewer} approved pending match {pending.id}: "
            f"'{observation.name}' -> provider {provider.id} ({backfilled} facts attributed)"
        )
        return Resolution(
            matched=True,
            provider_id=provider.id,
            score=score,
            method=METHOD_MANUAL_APPROVE,
            explanation=f"approved by {reviewer}",
        )

    def reject_pending(
        self,
        pending_id: int,
        reviewer: str,
        create_provider: bool = True,
    ) -> Resolution:
        """
        Reject a queued match. By default the observation becomes a new
        canonical provider; otherwise it stays unresolved and is not
        re-queued on later runs.
        """
        pending = self._reviewable(pending_id)
        observation = self._observation_from_pending(pending)
        score = float(pending.match_score)

        with self.db.begin_nested():
            pending.status = ReviewStatus.REJECTED
            pending.reviewed_by = reviewer
            pending.reviewed_at = utcnow()

            provider = None
            backfilled = 0
            if create_provider:
                provider = self._new_provider(observation, observation.to_candidate())
                self._upsert_link(observation, provider.id, METHOD_MANUAL_REJECT, score,
                                  {"pending_match_id": pending.id, "reviewer": reviewer})
                backfilled = self._backfill_facts(observation, provider.id)

            self._audit(
                AuditAction.MANUAL_OVERRIDE,
                observation,
                provider_id=provider.id if provider else None,
                score=score,
                method=METHOD_MANUAL_REJECT,
                details={
                    "pending_match_id": pending.id,
                    "candidate_provider_id": pending.candidate_provider_id,
                    "created_provider": provider is not None,
                    "facts_backfilled": backfilled,
                },
                performed_by=reviewer,
            )

        logger.info(f"{reviewer} rejected pending match {pending.id} ('{observation.name}')")
        return Resolution(
            matched=False,
            provider_id=provider.id if provider else None,
            created=provider is not None,
            score=score,
            method=METHOD_MANUAL_REJECT,
            explanation=f"rejected by {reviewer}",
        )

    # ------------------------------------------------------------------
    # Provider lifecycle
    # ------------------------------------------------------------------

    def deactivate_provider(self, provider_id: int, reviewer: str, reason: Optional[str] = None) -> Provider:
        """Deactivate a provider (providers are never deleted) and its links."""
        provider = self.db.get(Provider, provider_id)
        if provider is None:
            raise ReviewError(f"Provider {provider_id} not found")

        with self.db.begin_nested():
            provider.is_active = False
            for link in provider.source_links:
                link.status = LinkStatus.INACTIVE
            self._audit(
                AuditAction.MANUAL_OVERRIDE,
                self._provider_observation(provider),
                provider_id=provider.id,
                score=None,
                method=METHOD_MANUAL_DEACTIVATE,
                details={"reason": reason, "links_deactivated": len(provider.source_links)},
                performed_by=reviewer,
            )

        logger.info(f"{reviewer} deactivated provider {provider.id} ({reason or 'no reason given'})")
        return provider

    def merge_providers(self, primary_id: int, duplicate_id: int, reviewer: str) -> Provider:
        """
        Merge a duplicate provider into the primary.

        - Re-points source links, aliases, facts, indicators and pending matches
        - Records the duplicate's names as aliases of the primary
        - Fills attributes the primary is missing
        - Deactivates the duplicate with merged_into_id set
        """
        if primary_id == duplicate_id:
            raise ReviewError("Cannot merge a provider into itself")
        primary = self.db.get(Provider, primary_id)
        duplicate = self.db.get(Provider, duplicate_id)
        if primary is None or duplicate is None:
            raise ReviewError(f"Provider {primary_id} or {duplicate_id} not found")
        if not primary.is_active:
            raise ReviewError(f"Primary provider {primary_id} is inactive")
        if duplicate.is_merged:
            raise ReviewError(f"Provider {duplicate_id} already merged into {duplicate.merged_into_id}")

        logger.info(
            f"Merging provider '{duplicate.name_display}' ({duplicate.id}) "
            f"into '{primary.name_display}' ({primary.id})"
        )

        with self.db.begin_nested():
            # Aliases
            known = {a.alias_normalized for a in primary.aliases} | {primary.canonical_name}
            for alias in list(duplicate.aliases):
                if alias.alias_normalized in known:
                    self.db.delete(alias)
                else:
                    alias.provider = primary
                    known.add(alias.alias_normalized)
            self._add_alias(primary, duplicate.name_display, duplicate.canonical_name,
                            source="merge", alias_type="merged")

            # Links
            moved_links = []
            for link in list(duplicate.source_links):
                link.provider = primary
                moved_links.append(f"{link.source_system}:{link.source_identifier}")
            self.db.flush()

            # Ledger, indicators, review queue
            facts_moved = (
                self.db.query(FinancialFact)
                .filter(FinancialFact.provider_id == duplicate.id)
                .update({FinancialFact.provider_id: primary.id}, synchronize_session="fetch")
            )
            indicators_moved = (
                self.db.query(FraudIndicator)
                .filter(FraudIndicator.provider_id == duplicate.id)
                .update({FraudIndicator.provider_id: primary.id}, synchronize_session="fetch")
            )
            (
                self.db.query(PendingMatch)
                .filter(PendingMatch.candidate_provider_id == duplicate.id)
                .update({PendingMatch.candidate_provider_id: primary.id}, synchronize_session="fetch")
            )

            # Fill missing attributes
            for attr in ("address_normalized", "address_display", "city", "zip", "zip5",
                         "license_number", "provider_type", "capacity"):
                if getattr(primary, attr) is None and getattr(duplicate, attr) is not None:
                    setattr(primary, attr, getattr(duplicate, attr))
            primary.is_immigrant_owned = primary.is_immigrant_owned or duplicate.is_immigrant_owned
            if duplicate.first_seen_date and duplicate.first_seen_date < primary.first_seen_date:
                primary.first_seen_date = duplicate.first_seen_date

            duplicate.is_active = False
            duplicate.merged_into_id = primary.id

            self._audit(
                AuditAction.MANUAL_OVERRIDE,
                self._provider_observation(duplicate),
                provider_id=primary.id,
                score=None,
                method=METHOD_MANUAL_MERGE,
                details={
                    "merged_provider_id": duplicate.id,
                    "links_moved": moved_links,
                    "facts_moved": facts_moved,
                    "indicators_moved": indicators_moved,
                },
                performed_by=reviewer,
            )

        logger.info(
            f"Merge complete: {len(moved_links)} links, {facts_moved} facts, "
            f"{indicators_moved} indicators moved to provider {primary.id}"
        )
        return primary

    @staticmethod
    def _provider_observation(provider: Provider) -> Observation:
        """Audit key for provider-level actions."""
        return Observation(
            name=provider.name_display,
            source_system="provider_master",
            source_identifier=str(provider.id),
        )
