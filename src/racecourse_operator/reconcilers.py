"""
Child reconcilers: one per kind of object a Racecourse owns.

Each reconciler builds the desired fields for its kind, applies them through
the conflict-safe mutator and reports failures on the parent's Available
condition.
"""

import logging
from typing import Any

from racecourse_operator.builders import (
    desired_deployment,
    desired_ingress,
    desired_service,
    format_label_selector,
)
from racecourse_operator.conditions import ConditionLedger
from racecourse_operator.config import OperatorConfig
from racecourse_operator.context import ReconcileContext
from racecourse_operator.errors import (
    ChildReconcileError,
    OwnershipError,
    RacecourseError,
    StoreError,
)
from racecourse_operator.models import AVAILABLE, ConditionStatus, Racecourse
from racecourse_operator.mutator import (
    OperationResult,
    apply_with_retry,
    ensure_controller_reference,
    ensure_labels,
    merge_desired,
)
from racecourse_operator.store import DEPLOYMENT, INGRESS, SERVICE, ResourceKind, Store

logger = logging.getLogger(__name__)

REASON_RECONCILED = "Reconciled"


class ChildReconciler:
    """Base class driving a single child kind toward its desired state"""

    kind: ResourceKind

    def __init__(self, store: Store, ledger: ConditionLedger, config: OperatorConfig) -> None:
        self.store = store
        self.ledger = ledger
        self.config = config

    def apply_fields(self, parent: Racecourse, obj: dict[str, Any]) -> None:
        """Set the kind-specific fields on ``obj``."""
        raise NotImplementedError

    def mutate(self, parent: Racecourse, obj: dict[str, Any]) -> None:
        ensure_controller_reference(parent.owner_body(), obj)
        ensure_labels(obj, dict(self.config.common_labels))
        self.apply_fields(parent, obj)

    def converged(
        self,
        parent: Racecourse,
        obj: dict[str, Any],
        result: OperationResult,
        ctx: ReconcileContext,
    ) -> Racecourse:
        """Hook run after a successful apply; returns the latest parent."""
        return parent

    def reconcile(self, parent: Racecourse, ctx: ReconcileContext) -> Racecourse:
        kind = self.kind.kind
        try:
            obj, result = apply_with_retry(
                self.store,
                self.kind,
                parent.key,
                lambda obj: self.mutate(parent, obj),
                ctx,
                self.config,
            )
        except (StoreError, OwnershipError) as e:
            logger.error("Failed to reconcile %s for %s: %s", kind, parent.key, e)
            error = ChildReconcileError(kind, str(parent.key), e)
            self._report_failure(parent, e, error, ctx)
            raise error from e

        if result is OperationResult.UNCHANGED:
            logger.debug("%s %s unchanged", kind, parent.key)
        else:
            logger.info("%s %s %s", kind, parent.key, result.value)
        return self.converged(parent, obj, result, ctx)

    def _report_failure(
        self,
        parent: Racecourse,
        cause: Exception,
        error: ChildReconcileError,
        ctx: ReconcileContext,
    ) -> None:
        kind = self.kind.kind
        try:
            self.ledger.set_condition(
                parent,
                AVAILABLE,
                ConditionStatus.FALSE,
                f"{kind}ReconcileFailed",
                f"Failed to reconcile {kind} for the custom resource ({parent.name}): ({cause})",
                ctx,
            )
        except RacecourseError as status_error:
            logger.error(
                "Failed to update %s status for %s: %s", self.config.kind, parent.key, status_error
            )
            error.add_note(f"Updating the Available condition also failed: {status_error}")


class WorkloadReconciler(ChildReconciler):
    """Deployment running the racecourse pods"""

    kind = DEPLOYMENT

    def apply_fields(self, parent: Racecourse, obj: dict[str, Any]) -> None:
        desired = desired_deployment(parent.spec, self.config)
        spec = obj.setdefault("spec", {})
        spec["replicas"] = desired["replicas"]
        spec["selector"] = desired["selector"]
        spec["template"] = merge_desired(spec.get("template"), desired["template"])

    def converged(
        self,
        parent: Racecourse,
        obj: dict[str, Any],
        result: OperationResult,
        ctx: ReconcileContext,
    ) -> Racecourse:
        spec = obj.get("spec") or {}
        status = obj.get("status") or {}
        return self.ledger.set_condition(
            parent,
            AVAILABLE,
            ConditionStatus.TRUE,
            REASON_RECONCILED,
            f"Deployment for custom resource ({parent.name}) with {spec.get('replicas')} "
            "replicas reconciled successfully",
            ctx,
            replicas=status.get("replicas") or 0,
            selector=format_label_selector(spec.get("selector")),
        )


class EndpointReconciler(ChildReconciler):
    """Service exposing the workload under the shared port name"""

    kind = SERVICE

    def apply_fields(self, parent: Racecourse, obj: dict[str, Any]) -> None:
        desired = desired_service(parent.spec, self.config)
        spec = obj.setdefault("spec", {})
        spec["selector"] = desired["selector"]
        spec["ports"] = merge_desired(spec.get("ports"), desired["ports"])


class AccessRuleReconciler(ChildReconciler):
    """Ingress routing external HTTP traffic to the Service"""

    kind = INGRESS

    def apply_fields(self, parent: Racecourse, obj: dict[str, Any]) -> None:
        desired = desired_ingress(parent.spec, parent.name, self.config)
        spec = obj.setdefault("spec", {})
        spec["rules"] = merge_desired(spec.get("rules"), desired["rules"])
        if "ingressClassName" in desired:
            spec["ingressClassName"] = desired["ingressClassName"]
