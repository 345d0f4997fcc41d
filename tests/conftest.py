"""Test configuration and fixtures."""

import copy
import itertools
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest

from racecourse_operator.config import OperatorConfig
from racecourse_operator.controller import RacecourseController
from racecourse_operator.errors import ConflictError, NotFoundError
from racecourse_operator.models import ObjectKey
from racecourse_operator.store import DEPLOYMENT, ResourceKind, parent_kind

PARENT_NAME = "racecourse-sample"
NAMESPACE = "default"


def _resource(kind: ResourceKind, target: Any) -> str:
    if isinstance(target, dict):
        target = ObjectKey(target["metadata"]["namespace"], target["metadata"]["name"])
    return f"{kind.kind}:{target}"


class FakeStore:
    """In-memory store with resourceVersion checks and a status subresource."""

    def __init__(self) -> None:
        self.objects: dict[tuple[ResourceKind, ObjectKey], dict[str, Any]] = {}
        self.writes: list[tuple[str, str]] = []
        self.failures: dict[tuple[str, str], list[Exception]] = {}
        self._versions = itertools.count(1)
        self._uids = itertools.count(1)

    # Test helpers

    def fail(self, verb: str, kind: str, *errors: Exception) -> None:
        """Queue errors raised by the next ``verb`` calls on ``kind``."""
        self.failures.setdefault((verb, kind), []).extend(errors)

    def put(self, kind: ResourceKind, obj: dict[str, Any]) -> dict[str, Any]:
        """Store an object as if another client had created it."""
        stored = copy.deepcopy(obj)
        metadata = stored.setdefault("metadata", {})
        metadata.setdefault("uid", f"uid-{next(self._uids)}")
        metadata.setdefault("generation", 1)
        metadata["resourceVersion"] = str(next(self._versions))
        self.objects[(kind, self._key(stored))] = stored
        return copy.deepcopy(stored)

    def edit(
        self, kind: ResourceKind, key: ObjectKey, change: Callable[[dict[str, Any]], None]
    ) -> dict[str, Any]:
        """Apply an out-of-band change, bumping resourceVersion and generation."""
        stored = self.objects[(kind, key)]
        before = copy.deepcopy(stored.get("spec"))
        change(stored)
        if stored.get("spec") != before:
            stored["metadata"]["generation"] += 1
        stored["metadata"]["resourceVersion"] = str(next(self._versions))
        return copy.deepcopy(stored)

    def set_workload_status(self, key: ObjectKey, replicas: int) -> None:
        """Report ``replicas`` on the Deployment like the workload controller would."""
        self.edit(DEPLOYMENT, key, lambda obj: obj.__setitem__("status", {"replicas": replicas}))

    def delete(self, kind: ResourceKind, key: ObjectKey) -> None:
        """Remove an object and, like the garbage collector, everything it controls."""
        removed = self.objects.pop((kind, key))
        uid = removed["metadata"]["uid"]
        for child_id, child in list(self.objects.items()):
            refs = child["metadata"].get("ownerReferences") or []
            if child_id in self.objects and any(
                ref.get("controller") and ref.get("uid") == uid for ref in refs
            ):
                self.delete(*child_id)

    def stored(self, kind: ResourceKind, key: ObjectKey) -> dict[str, Any] | None:
        obj = self.objects.get((kind, key))
        return copy.deepcopy(obj) if obj is not None else None

    # Store protocol

    def get(
        self, kind: ResourceKind, key: ObjectKey, *, timeout: float | None = None
    ) -> dict[str, Any]:
        self._maybe_fail("get", kind)
        obj = self.objects.get((kind, key))
        if obj is None:
            raise NotFoundError(
                f"{_resource(kind, key)} not found", "read", _resource(kind, key), status=404
            )
        return copy.deepcopy(obj)

    def create(
        self, kind: ResourceKind, obj: dict[str, Any], *, timeout: float | None = None
    ) -> dict[str, Any]:
        self._maybe_fail("create", kind)
        key = self._key(obj)
        if (kind, key) in self.objects:
            raise ConflictError(
                f"{_resource(kind, key)} already exists", "create", _resource(kind, key), 409
            )
        stored = copy.deepcopy(obj)
        stored.pop("status", None)
        self.writes.append(("create", kind.kind))
        return self.put(kind, stored)

    def update(
        self, kind: ResourceKind, obj: dict[str, Any], *, timeout: float | None = None
    ) -> dict[str, Any]:
        self._maybe_fail("update", kind)
        current = self._current_for_write(kind, obj, "update")
        stored = copy.deepcopy(obj)
        # The main resource endpoint ignores status
        stored.pop("status", None)
        if "status" in current:
            stored["status"] = copy.deepcopy(current["status"])
        stored["metadata"]["uid"] = current["metadata"]["uid"]
        stored["metadata"]["generation"] = current["metadata"]["generation"]
        if stored.get("spec") != current.get("spec"):
            stored["metadata"]["generation"] += 1
        stored["metadata"]["resourceVersion"] = str(next(self._versions))
        self.objects[(kind, self._key(obj))] = stored
        self.writes.append(("update", kind.kind))
        return copy.deepcopy(stored)

    def update_status(
        self, kind: ResourceKind, obj: dict[str, Any], *, timeout: float | None = None
    ) -> dict[str, Any]:
        self._maybe_fail("update_status", kind)
        current = self._current_for_write(kind, obj, "update status of")
        stored = copy.deepcopy(current)
        stored["status"] = copy.deepcopy(obj.get("status"))
        stored["metadata"]["resourceVersion"] = str(next(self._versions))
        self.objects[(kind, self._key(obj))] = stored
        self.writes.append(("update_status", kind.kind))
        return copy.deepcopy(stored)

    # Internals

    @staticmethod
    def _key(obj: dict[str, Any]) -> ObjectKey:
        return ObjectKey(obj["metadata"]["namespace"], obj["metadata"]["name"])

    def _maybe_fail(self, verb: str, kind: ResourceKind) -> None:
        queued = self.failures.get((verb, kind.kind))
        if queued:
            raise queued.pop(0)

    def _current_for_write(
        self, kind: ResourceKind, obj: dict[str, Any], operation: str
    ) -> dict[str, Any]:
        key = self._key(obj)
        current = self.objects.get((kind, key))
        if current is None:
            raise NotFoundError(
                f"{_resource(kind, key)} not found", operation, _resource(kind, key), 404
            )
        if obj["metadata"].get("resourceVersion") != current["metadata"]["resourceVersion"]:
            raise ConflictError(
                f"{_resource(kind, key)} has been modified", operation, _resource(kind, key), 409
            )
        return current


class FakeClock:
    """Deterministic clock that only moves when told to."""

    def __init__(self) -> None:
        self.now = datetime(2026, 1, 1, 12, 0, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


def conflict(operation: str = "update") -> ConflictError:
    return ConflictError("the object has been modified", operation, status=409)


@pytest.fixture
def config() -> OperatorConfig:
    """Operator settings with instant conflict retries."""
    return OperatorConfig(
        conflict_retry_attempts=3,
        conflict_retry_initial_delay=0.0,
        conflict_retry_max_delay=0.0,
    )


@pytest.fixture
def store() -> FakeStore:
    """Empty in-memory store."""
    return FakeStore()


@pytest.fixture
def clock() -> FakeClock:
    """Clock frozen at a known instant."""
    return FakeClock()


@pytest.fixture
def controller(store: FakeStore, config: OperatorConfig, clock: FakeClock) -> RacecourseController:
    """Controller wired to the in-memory store."""
    return RacecourseController(store, config, clock=clock)


@pytest.fixture
def parent_key() -> ObjectKey:
    """Identity of the sample Racecourse."""
    return ObjectKey(NAMESPACE, PARENT_NAME)


@pytest.fixture
def make_parent(
    store: FakeStore, config: OperatorConfig
) -> Callable[..., dict[str, Any]]:
    """Factory storing a Racecourse and returning its stored body."""

    def factory(
        name: str = PARENT_NAME,
        namespace: str = NAMESPACE,
        replicas: int | None = 3,
        ingress_host: str | None = "racecourse.example.com",
        status: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        spec: dict[str, Any] = {}
        if replicas is not None:
            spec["replicas"] = replicas
        if ingress_host is not None:
            spec["ingressHost"] = ingress_host
        body: dict[str, Any] = {
            "apiVersion": config.api_version,
            "kind": config.kind,
            "metadata": {"name": name, "namespace": namespace},
            "spec": spec,
        }
        if status is not None:
            body["status"] = status
        return store.put(parent_kind(config), body)

    return factory
