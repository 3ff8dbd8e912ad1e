"""Object matching: join an imported CSO to an MVO or project a new one."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING

from idsync.domain.errors import JoinConflictError, MultipleMatchesError
from idsync.domain.model import (
    JoinType,
    MetaverseObject,
    MetaverseObjectOrigin,
    MetaverseObjectStatus,
)
from idsync.domain.sync.clock import utcnow
from idsync.domain.sync.expressions import AttributeAccessor, compile_expression
from idsync.domain.sync.scoping import is_in_scope

if TYPE_CHECKING:
    from uuid import UUID

    from idsync.domain.model import ConnectedSystemObject, ObjectMatchingRule, RawValue, SyncRule
    from idsync.domain.ports import SyncRepositories
    from idsync.domain.sync.catalog import SchemaCatalog
    from idsync.domain.sync.clock import Clock

_default_log = logging.getLogger(__name__)

OUT_OF_SCOPE = "out_of_scope"
NO_CANDIDATES = "no_candidates"


class MatchingPolicy(StrEnum):
    """How many matching rules are evaluated once one has joined.

    ``EVALUATE_ALL`` only adds diagnostics: later rules that disagree are logged,
    the first join stands.
    """

    FIRST_MATCH = "first_match"
    EVALUATE_ALL = "evaluate_all"


class MatchOutcomeKind(StrEnum):
    JOINED = "joined"
    PROJECTED = "projected"
    NO_MATCH = "no_match"


@dataclass(frozen=True, slots=True, kw_only=True)
class MatchOutcome:
    kind: MatchOutcomeKind
    metaverse_object_id: UUID | None = None
    reason: str | None = None
    disagreements: tuple[UUID, ...] = field(default=())

    @property
    def is_new_join(self) -> bool:
        return self.kind in (MatchOutcomeKind.JOINED, MatchOutcomeKind.PROJECTED)


class ObjectMatcher:
    """Joins CSOs for one unit of work.

    An ambiguous rule raises ``MultipleMatchesError`` and leaves both the CSO
    and the metaverse untouched.
    """

    def __init__(
        self,
        repositories: SyncRepositories,
        catalog: SchemaCatalog,
        *,
        policy: MatchingPolicy = MatchingPolicy.FIRST_MATCH,
        clock: Clock = utcnow,
        log: logging.Logger | None = None,
    ) -> None:
        self.repositories = repositories
        self.catalog = catalog
        self.policy = policy
        self.clock = clock
        self.log = log or _default_log

    def match(self, cso: ConnectedSystemObject, rule: SyncRule) -> MatchOutcome:
        if cso.metaverse_object_id is not None:
            return MatchOutcome(
                kind=MatchOutcomeKind.JOINED, metaverse_object_id=cso.metaverse_object_id
            )
        if not is_in_scope(cso, rule.scoping):
            return MatchOutcome(kind=MatchOutcomeKind.NO_MATCH, reason=OUT_OF_SCOPE)

        joined: MetaverseObject | None = None
        disagreements: list[UUID] = []
        for matching_rule in rule.ordered_matching_rules():
            if not matching_rule.is_valid:
                self.log.debug("Skipping incomplete matching rule on %s", rule.name)
                continue
            if joined is not None:
                disagreements.extend(self._diagnose(cso, rule, matching_rule, joined))
                continue
            candidates = self._candidates(cso, rule, matching_rule)
            if not candidates:
                continue
            if len(candidates) > 1:
                raise MultipleMatchesError(
                    f"{len(candidates)} metaverse objects match CSO {cso.id} "
                    f"on '{matching_rule.target_attribute}' (rule {rule.name})",
                    [c.id for c in candidates],
                )
            joined = candidates[0]
            self._ensure_not_joined_elsewhere(cso, joined)
            if self.policy == MatchingPolicy.FIRST_MATCH:
                break

        now = self.clock()
        if joined is not None:
            cso.join(joined.id, JoinType.JOINED, at=now)
            if joined.status == MetaverseObjectStatus.PENDING_DELETION:
                joined.cancel_deletion()
            self.log.debug("Joined CSO %s to MVO %s", cso.id, joined.id)
            return MatchOutcome(
                kind=MatchOutcomeKind.JOINED,
                metaverse_object_id=joined.id,
                disagreements=tuple(disagreements),
            )

        if not rule.project_to_metaverse:
            return MatchOutcome(kind=MatchOutcomeKind.NO_MATCH, reason=NO_CANDIDATES)

        mvo = MetaverseObject(
            object_type=rule.mv_object_type,
            status=MetaverseObjectStatus.ACTIVE,
            origin=MetaverseObjectOrigin.PROJECTED,
            built_in=False,
            created_at=now,
            last_updated=now,
        )
        self.repositories.metaverse_objects.add(mvo)
        cso.join(mvo.id, JoinType.PROJECTED, at=now)
        self.log.debug("Projected CSO %s to new MVO %s", cso.id, mvo.id)
        return MatchOutcome(kind=MatchOutcomeKind.PROJECTED, metaverse_object_id=mvo.id)

    def _candidates(
        self,
        cso: ConnectedSystemObject,
        rule: SyncRule,
        matching_rule: ObjectMatchingRule,
    ) -> list[MetaverseObject]:
        values = self._source_values(cso, matching_rule)
        if not values:
            return []
        found = self.repositories.metaverse_objects.find_by_attribute(
            rule.mv_object_type,
            matching_rule.target_attribute or "",
            values,
            case_sensitive=matching_rule.case_sensitive,
        )
        return [m for m in found if m.status != MetaverseObjectStatus.OBSOLETE]

    def _source_values(
        self, cso: ConnectedSystemObject, matching_rule: ObjectMatchingRule
    ) -> list[RawValue]:
        if matching_rule.source_attribute is not None:
            return list(cso.raw_values(matching_rule.source_attribute))
        accessor = AttributeAccessor(
            cso, self.catalog.multi_valued_cs(cso.connected_system_id, cso.object_type)
        )
        result = compile_expression(matching_rule.source_expression or "").evaluate(
            mv=AttributeAccessor(None), cs=accessor
        )
        items = result if isinstance(result, tuple | list) else (result,)
        return [item for item in items if item is not None and item != ""]

    def _ensure_not_joined_elsewhere(
        self, cso: ConnectedSystemObject, mvo: MetaverseObject
    ) -> None:
        existing = self.repositories.connected_system_objects.joined_in_system(
            mvo.id, cso.connected_system_id
        )
        if existing is not None and existing.id != cso.id:
            raise JoinConflictError(
                f"MVO {mvo.id} is already joined to CSO {existing.id} in the same connected system"
            )

    def _diagnose(
        self,
        cso: ConnectedSystemObject,
        rule: SyncRule,
        matching_rule: ObjectMatchingRule,
        joined: MetaverseObject,
    ) -> list[UUID]:
        others = [c.id for c in self._candidates(cso, rule, matching_rule) if c.id != joined.id]
        if others:
            self.log.info(
                "Matching rule on '%s' (rule %s) disagrees for CSO %s: %s besides MVO %s",
                matching_rule.target_attribute,
                rule.name,
                cso.id,
                ", ".join(str(o) for o in others),
                joined.id,
            )
        return others
