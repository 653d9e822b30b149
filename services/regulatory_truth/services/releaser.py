"""
Releaser Service
================

Publishes APPROVED rules as one immutable, semantically versioned Release.

Within a single transaction:
1. Collect APPROVED rules that are free to ship (no open conflict, any
   conflict replacements ready, no unresolved overlap with a published rule)
2. CAS each from APPROVED to PUBLISHED
3. Deprecate the published rules they supersede
4. Append the Release row, versioned from the tiers actually published:
   any T0 -> major, else any T1 -> minor, else patch

No eligible rules means no release. The release event is emitted after the
commit and never affects the release itself.

Version: 0.1.0
"""

import hashlib
import uuid
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime

from redis.asyncio import Redis
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from services.regulatory_truth.errors import TransientError, TransitionConflict
from services.regulatory_truth.models import (
    ConflictStatus,
    ReleaseModel,
    RiskTier,
    RuleModel,
    RuleStatus,
)
from services.regulatory_truth.repository import (
    ConflictRepository,
    ReleaseRepository,
    RuleRepository,
)
from shared.database import Topics, db_session, publish_event, redis_lock, utcnow
from shared.logging import get_logger


logger = get_logger(__name__)

RELEASE_LOCK_KEY = "releaser"


class VersionBump:
    MAJOR = "major"
    MINOR = "minor"
    PATCH = "patch"


def bump_for(tiers: Sequence[RiskTier]) -> str:
    if RiskTier.T0 in tiers:
        return VersionBump.MAJOR
    if RiskTier.T1 in tiers:
        return VersionBump.MINOR
    return VersionBump.PATCH


def next_version(previous: tuple[int, int, int], bump: str) -> tuple[int, int, int]:
    major, minor, patch = previous
    if bump == VersionBump.MAJOR:
        return major + 1, 0, 0
    if bump == VersionBump.MINOR:
        return major, minor + 1, 0
    return major, minor, patch + 1


def release_content_hash(rules: Sequence[RuleModel]) -> str:
    payload = "\n".join(f"{r.id}:{r.fingerprint}" for r in sorted(rules, key=lambda r: r.id))
    return hashlib.sha256(payload.encode()).hexdigest()


@dataclass
class ReleaseResult:
    release_id: str | None = None
    version: str | None = None
    bump: str | None = None
    published: list[str] = field(default_factory=list)
    deprecated: list[str] = field(default_factory=list)
    held_back: dict[str, str] = field(default_factory=dict)

    @property
    def released(self) -> bool:
        return self.release_id is not None


class ReleaserService:
    """Batch publication of approved rules."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        redis: Redis,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._session_factory = session_factory
        self._redis = redis
        self._clock = clock

    async def release(self) -> ReleaseResult:
        """
        Publish every eligible APPROVED rule.

        Raises:
            TransientError: another release is in progress
        """
        async with redis_lock(self._redis, RELEASE_LOCK_KEY, timeout_seconds=300) as acquired:
            if not acquired:
                raise TransientError("release already in progress")
            async with db_session(self._session_factory) as session:
                result = await self._release(session)

        if not result.released:
            logger.info("release_skipped", held_back=len(result.held_back))
            return result

        logger.info(
            "release_published",
            version=result.version,
            bump=result.bump,
            rules=len(result.published),
            deprecated=len(result.deprecated),
            held_back=len(result.held_back),
        )
        await publish_event(
            Topics.RELEASES_PUBLISHED,
            {
                "release_id": result.release_id,
                "version": result.version,
                "rule_ids": result.published,
                "deprecated_rule_ids": result.deprecated,
            },
            key=result.version,
        )
        return result

    async def _release(self, session: AsyncSession) -> ReleaseResult:
        rules = RuleRepository(session)
        result = ReleaseResult()
        now = self._clock()

        # Holding one rule back can strand its partners, so repeat until stable
        candidates = list(await rules.with_status(RuleStatus.APPROVED))
        while candidates:
            eligible = await self._eligible(session, candidates, result)
            if len(eligible) == len(candidates):
                break
            candidates = eligible
        if not candidates:
            return result

        release_id = str(uuid.uuid4())
        published: list[RuleModel] = []
        for rule in candidates:
            try:
                await rules.transition(
                    rule.id,
                    RuleStatus.APPROVED,
                    RuleStatus.PUBLISHED,
                    now=now,
                    published_at=now,
                    release_id=release_id,
                )
            except TransitionConflict:
                result.held_back[rule.id] = "status changed during release"
                continue
            published.append(rule)

        if not published:
            return result

        for rule in published:
            if rule.supersedes_id is None or rule.supersedes_id in result.deprecated:
                continue
            superseded = await rules.get(rule.supersedes_id)
            if superseded.status != RuleStatus.PUBLISHED:
                continue
            await rules.transition(
                superseded.id,
                RuleStatus.PUBLISHED,
                RuleStatus.DEPRECATED,
                now=now,
                deprecated_at=now,
            )
            result.deprecated.append(superseded.id)

        latest = await ReleaseRepository(session).latest()
        previous = (latest.major, latest.minor, latest.patch) if latest else (0, 0, 0)
        bump = bump_for([r.risk_tier for r in published])
        major, minor, patch = next_version(previous, bump)

        release = ReleaseModel(
            id=release_id,
            version=f"{major}.{minor}.{patch}",
            major=major,
            minor=minor,
            patch=patch,
            bump=bump,
            rule_ids=sorted(r.id for r in published),
            rule_count=len(published),
            content_hash=release_content_hash(published),
            released_at=now,
        )
        session.add(release)
        await session.flush()

        result.release_id = release.id
        result.version = release.version
        result.bump = bump
        result.published = release.rule_ids
        return result

    async def _eligible(
        self,
        session: AsyncSession,
        approved: list[RuleModel],
        result: ReleaseResult,
    ) -> list[RuleModel]:
        conflicts = ConflictRepository(session)
        rules = RuleRepository(session)
        approved_ids = {r.id for r in approved}
        eligible: list[RuleModel] = []

        for rule in approved:
            reason = None
            resolved_pairs: set[str] = set()
            for conflict in await conflicts.for_rule(rule.id):
                if conflict.status == ConflictStatus.OPEN:
                    reason = f"conflict {conflict.id} is open"
                    break
                resolved_pairs.update(r for r in conflict.rule_ids if r != rule.id)
                resolution = conflict.resolution or {}
                group = [resolution.get("prevailing_rule_id"), *resolution.get("replacement_rule_ids", [])]
                if rule.id not in group:
                    continue
                for other_id in group:
                    if other_id is None or other_id == rule.id or other_id in approved_ids:
                        continue
                    other = await rules.get(other_id)
                    if other.status != RuleStatus.PUBLISHED:
                        reason = f"waiting for {other_id} from conflict {conflict.id}"
                        break
                if reason:
                    break

            if reason is None:
                reason = await self._overlap_reason(rules, rule, approved, resolved_pairs)

            if reason:
                result.held_back[rule.id] = reason
                logger.info("rule_held_back", rule_id=rule.id, reason=reason)
            else:
                eligible.append(rule)
        return eligible

    async def _overlap_reason(
        self,
        rules: RuleRepository,
        rule: RuleModel,
        approved: list[RuleModel],
        resolved_pairs: set[str],
    ) -> str | None:
        """A published rule may never silently overlap another one."""
        superseded = {r.supersedes_id for r in approved if r.supersedes_id}
        others = [
            *[p for p in await rules.published_for_concept(rule.concept_slug) if p.id not in superseded],
            *[a for a in approved if a.id != rule.id and a.concept_slug == rule.concept_slug],
        ]
        for other in others:
            if other.id == rule.supersedes_id or other.supersedes_id == rule.id:
                continue
            if rule.overlaps(other) and other.id not in resolved_pairs:
                return f"overlaps {other.id} without a resolved conflict"
        return None
