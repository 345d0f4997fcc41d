"""
Desired state of the children managed for a Racecourse.

Every builder is a pure function of the parent spec and the operator config:
the same inputs always produce the same structure.
"""

from collections.abc import Mapping
from typing import Any

from racecourse_operator.config import OperatorConfig
from racecourse_operator.models import RacecourseSpec


def resolve_replicas(spec: RacecourseSpec) -> int:
    """Desired replica count; an absent field means zero."""
    return spec.replicas if spec.replicas is not None else 0


def resolve_ingress_host(spec: RacecourseSpec) -> str:
    """Desired ingress host; an absent field means match all hosts."""
    return spec.ingressHost if spec.ingressHost is not None else ""


def desired_deployment(spec: RacecourseSpec, config: OperatorConfig) -> dict[str, Any]:
    """Deployment spec fields: replica count, selector and pod template."""
    return {
        "replicas": resolve_replicas(spec),
        "selector": {"matchLabels": dict(config.common_labels)},
        "template": {
            "metadata": {"labels": dict(config.common_labels)},
            "spec": {
                "containers": [
                    {
                        "name": config.container_name,
                        "image": config.image,
                        "imagePullPolicy": config.image_pull_policy,
                        "ports": [
                            {
                                "name": config.port_name,
                                "containerPort": config.container_port,
                            }
                        ],
                    }
                ]
            },
        },
    }


def desired_service(spec: RacecourseSpec, config: OperatorConfig) -> dict[str, Any]:
    """Service spec fields: pod selector and the named port mapping."""
    return {
        "selector": dict(config.common_labels),
        "ports": [
            {
                "name": config.port_name,
                "port": config.service_port,
                "targetPort": config.port_name,
            }
        ],
    }


def desired_ingress(
    spec: RacecourseSpec, service_name: str, config: OperatorConfig
) -> dict[str, Any]:
    """Ingress spec fields: a single prefix rule routing to the Service by port name."""
    desired: dict[str, Any] = {
        "rules": [
            {
                "host": resolve_ingress_host(spec),
                "http": {
                    "paths": [
                        {
                            "path": "/",
                            "pathType": "Prefix",
                            "backend": {
                                "service": {
                                    "name": service_name,
                                    "port": {"name": config.port_name},
                                }
                            },
                        }
                    ]
                },
            }
        ]
    }
    if config.ingress_class:
        desired["ingressClassName"] = config.ingress_class
    return desired


def format_label_selector(selector: Mapping[str, Any] | None) -> str:
    """
    Serialize a label selector the way kubectl and the scale subresource expect.

    Requirements are sorted by key and joined with commas. An empty or missing
    selector formats as ``<none>``.
    """
    if not selector:
        return "<none>"

    requirements: list[tuple[str, str]] = []
    for key, value in (selector.get("matchLabels") or {}).items():
        requirements.append((key, f"{key}={value}"))

    for expression in selector.get("matchExpressions") or []:
        key = expression["key"]
        operator = expression["operator"]
        values = ",".join(sorted(expression.get("values") or []))
        if operator == "In":
            requirements.append((key, f"{key} in ({values})"))
        elif operator == "NotIn":
            requirements.append((key, f"{key} notin ({values})"))
        elif operator == "Exists":
            requirements.append((key, key))
        elif operator == "DoesNotExist":
            requirements.append((key, f"!{key}"))
        else:
            raise ValueError(f"Unsupported label selector operator: {operator}")

    formatted = ",".join(text for _, text in sorted(requirements, key=lambda r: r[0]))
    return formatted or "<none>"
