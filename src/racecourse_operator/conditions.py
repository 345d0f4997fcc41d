"""
Status condition bookkeeping for the Racecourse parent.

``set_status_condition`` is the pure upsert: it moves ``lastTransitionTime``
only when a condition's status changes. ``ConditionLedger`` applies it to a
parent and persists the result through the status subresource.
"""

import logging
from collections.abc import Callable
from datetime import UTC, datetime

from racecourse_operator.config import OperatorConfig
from racecourse_operator.context import ReconcileContext
from racecourse_operator.models import (
    Condition,
    ConditionStatus,
    ObjectKey,
    Racecourse,
    RacecourseStatus,
)
from racecourse_operator.mutator import retry_on_conflict
from racecourse_operator.store import Store, parent_kind

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    """Current time at the one-second precision used for API timestamps."""
    return datetime.now(UTC).replace(microsecond=0)


def find_status_condition(conditions: list[Condition], condition_type: str) -> Condition | None:
    for condition in conditions:
        if condition.type == condition_type:
            return condition
    return None


def set_status_condition(conditions: list[Condition], new: Condition, now: datetime) -> bool:
    """
    Upsert ``new`` into ``conditions`` by type.

    The transition time of an existing condition only moves when its status
    changes; reason, message and observed generation are overwritten in place.
    Returns True when anything changed.
    """
    existing = find_status_condition(conditions, new.type)
    if existing is None:
        conditions.append(new.model_copy(update={"lastTransitionTime": now}))
        return True

    changed = False
    if existing.status != new.status:
        existing.status = new.status
        existing.lastTransitionTime = now
        changed = True
    if existing.reason != new.reason:
        existing.reason = new.reason
        changed = True
    if existing.message != new.message:
        existing.message = new.message
        changed = True
    if existing.observedGeneration != new.observedGeneration:
        existing.observedGeneration = new.observedGeneration
        changed = True
    return changed


class ConditionLedger:
    """Writes conditions and observed workload fields onto parent status"""

    def __init__(self, store: Store, config: OperatorConfig, clock: Clock = utcnow) -> None:
        self.store = store
        self.config = config
        self.clock = clock
        self.kind = parent_kind(config)

    def set_condition(
        self,
        parent: Racecourse,
        condition_type: str,
        status: ConditionStatus,
        reason: str,
        message: str,
        ctx: ReconcileContext,
        *,
        replicas: int | None = None,
        selector: str | None = None,
    ) -> Racecourse:
        """
        Upsert a condition on ``parent`` and persist the status.

        The first attempt writes against ``parent`` as given. A conflict means
        the status moved underneath us, so later attempts re-fetch the parent
        and reapply the same change. Nothing is written when the status would
        not change.
        """

        def apply(target: RacecourseStatus, generation: int | None) -> None:
            condition = Condition(
                type=condition_type,
                status=status,
                reason=reason,
                message=message,
                lastTransitionTime=self.clock(),
                observedGeneration=generation,
            )
            set_status_condition(target.conditions, condition, self.clock())
            if replicas is not None:
                target.replicas = replicas
            if selector is not None:
                target.selector = selector

        stale = False

        def attempt() -> Racecourse:
            nonlocal stale
            current = self._fetch(parent.key, ctx) if stale else parent
            stale = True

            updated = current.model_copy(deep=True)
            apply(updated.status, updated.generation)
            if updated.status.to_wire() == current.status.to_wire():
                logger.debug("Status of %s already up to date", current.key)
                return current

            ctx.raise_if_cancelled()
            body = self.store.update_status(
                self.kind, updated.status_body(), timeout=ctx.remaining()
            )
            logger.info(
                "Set %s=%s (%s) on %s %s",
                condition_type,
                status.value,
                reason,
                self.config.kind,
                current.key,
            )
            return Racecourse.from_wire(body)

        return retry_on_conflict(attempt, ctx, self.config)

    def _fetch(self, key: ObjectKey, ctx: ReconcileContext) -> Racecourse:
        ctx.raise_if_cancelled()
        return Racecourse.from_wire(self.store.get(self.kind, key, timeout=ctx.remaining()))
