"""
Data models for the Racecourse custom resource
"""

from datetime import datetime
from enum import Enum
from typing import Any, NamedTuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from racecourse_operator.errors import InvalidSpecError

AVAILABLE = "Available"


class ObjectKey(NamedTuple):
    """Namespace/name identity shared by a parent and its children"""

    namespace: str
    name: str

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"


class ConditionStatus(str, Enum):
    """Tri-state condition status"""

    TRUE = "True"
    FALSE = "False"
    UNKNOWN = "Unknown"


class Condition(BaseModel):
    """Status record, unique per type; conditions from other writers may omit reason and time"""

    model_config = ConfigDict(extra="allow")

    type: str = Field(..., description="Condition type")
    status: ConditionStatus = Field(..., description="Condition status")
    reason: str | None = Field(default=None, description="Short CamelCase reason code")
    message: str = Field(default="", description="Human readable message")
    lastTransitionTime: datetime | None = Field(
        default=None, description="Last status transition"
    )
    observedGeneration: int | None = Field(
        default=None, description="Parent generation the condition was computed from"
    )


class RacecourseSpec(BaseModel):
    """Desired state declared by the user"""

    model_config = ConfigDict(extra="allow")

    replicas: int | None = Field(default=None, ge=0, description="Deployment replicas")
    ingressHost: str | None = Field(default=None, description="Host for the Ingress rule")


class RacecourseStatus(BaseModel):
    """Observed state written by the operator"""

    model_config = ConfigDict(extra="allow")

    conditions: list[Condition] = Field(default_factory=list)
    replicas: int = Field(default=0, description="Replicas reported by the Deployment")
    selector: str = Field(default="", description="Serialized Deployment label selector")

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)


class Racecourse(BaseModel):
    """Complete Racecourse resource"""

    model_config = ConfigDict(extra="allow")

    apiVersion: str
    kind: str
    metadata: dict[str, Any]
    spec: RacecourseSpec = Field(default_factory=RacecourseSpec)
    status: RacecourseStatus = Field(default_factory=RacecourseStatus)

    @classmethod
    def from_wire(cls, body: dict[str, Any]) -> "Racecourse":
        """Parse a stored object, rejecting specs that can never converge."""
        try:
            return cls.model_validate(body)
        except ValidationError as e:
            metadata = body.get("metadata") or {}
            resource = f"{metadata.get('namespace')}/{metadata.get('name')}"
            raise InvalidSpecError(f"Invalid Racecourse {resource}: {e}") from e

    @property
    def key(self) -> ObjectKey:
        return ObjectKey(self.metadata["namespace"], self.metadata["name"])

    @property
    def name(self) -> str:
        return str(self.metadata["name"])

    @property
    def generation(self) -> int | None:
        return self.metadata.get("generation")

    def owner_body(self) -> dict[str, Any]:
        """Minimal body needed to build an owner reference to this resource."""
        return {
            "apiVersion": self.apiVersion,
            "kind": self.kind,
            "metadata": {
                "name": self.metadata["name"],
                "namespace": self.metadata["namespace"],
                "uid": self.metadata["uid"],
            },
        }

    def status_body(self) -> dict[str, Any]:
        """Body for a status subresource write, carrying the read version."""
        return {
            "apiVersion": self.apiVersion,
            "kind": self.kind,
            "metadata": self.metadata,
            "status": self.status.to_wire(),
        }
