"""
Reconciliation entry point for Racecourse resources.

One call to ``RacecourseController.reconcile`` is one convergence pass for a
single parent: fetch it, seed its status on first sight, then run the child
reconcilers in order.
"""

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from racecourse_operator.conditions import Clock, ConditionLedger, utcnow
from racecourse_operator.config import OperatorConfig
from racecourse_operator.context import ReconcileContext
from racecourse_operator.errors import NotFoundError
from racecourse_operator.models import AVAILABLE, ConditionStatus, ObjectKey, Racecourse
from racecourse_operator.reconcilers import (
    AccessRuleReconciler,
    ChildReconciler,
    EndpointReconciler,
    WorkloadReconciler,
)
from racecourse_operator.store import Store, parent_kind

logger = logging.getLogger(__name__)

REASON_RECONCILING = "Reconciling"


@dataclass(frozen=True)
class ReconcileResult:
    """Outcome of a successful pass; ``requeue_after`` is the re-check delay."""

    requeue_after: float | None = None


def owner_key(child: Mapping[str, Any], config: OperatorConfig) -> ObjectKey | None:
    """Identity of the Racecourse controlling ``child``, if any."""
    metadata = child.get("metadata") or {}
    for ref in metadata.get("ownerReferences") or []:
        if (
            ref.get("controller")
            and ref.get("kind") == config.kind
            and ref.get("apiVersion") == config.api_version
        ):
            return ObjectKey(metadata.get("namespace"), ref["name"])
    return None


class RacecourseController:
    """Drives a Racecourse and its Deployment, Service and Ingress to convergence"""

    def __init__(self, store: Store, config: OperatorConfig, clock: Clock = utcnow) -> None:
        self.store = store
        self.config = config
        self.kind = parent_kind(config)
        self.ledger = ConditionLedger(store, config, clock=clock)
        self.children: list[ChildReconciler] = [
            WorkloadReconciler(store, self.ledger, config),
            EndpointReconciler(store, self.ledger, config),
            AccessRuleReconciler(store, self.ledger, config),
        ]

    def reconcile(self, key: ObjectKey, ctx: ReconcileContext | None = None) -> ReconcileResult:
        """
        Run one convergence pass for ``key``.

        A missing parent ends the pass without error. The first child failure
        aborts the pass and propagates; children already applied stay as they
        are and the next pass completes the work.
        """
        ctx = ctx or ReconcileContext()

        parent = self._fetch(key, ctx)
        if parent is None:
            logger.info("%s %s not found, nothing to reconcile", self.config.kind, key)
            return ReconcileResult()

        if parent.metadata.get("deletionTimestamp"):
            # Children go away with the parent through their owner references
            logger.info("%s %s is being deleted, skipping", self.config.kind, key)
            return ReconcileResult()

        if not parent.status.conditions:
            self.ledger.set_condition(
                parent,
                AVAILABLE,
                ConditionStatus.UNKNOWN,
                REASON_RECONCILING,
                "Starting reconciliation",
                ctx,
            )
            parent = self._fetch(key, ctx)
            if parent is None:
                logger.info("%s %s deleted during reconciliation", self.config.kind, key)
                return ReconcileResult()

        for child in self.children:
            parent = child.reconcile(parent, ctx)

        return ReconcileResult(requeue_after=self.config.requeue_after)

    def _fetch(self, key: ObjectKey, ctx: ReconcileContext) -> Racecourse | None:
        ctx.raise_if_cancelled()
        try:
            body = self.store.get(self.kind, key, timeout=ctx.remaining())
        except NotFoundError:
            return None
        return Racecourse.from_wire(body)
