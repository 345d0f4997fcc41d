"""Tests for the desired-state builders."""

import json

import pytest

from racecourse_operator.builders import (
    desired_deployment,
    desired_ingress,
    desired_service,
    format_label_selector,
    resolve_ingress_host,
    resolve_replicas,
)
from racecourse_operator.config import OperatorConfig
from racecourse_operator.models import RacecourseSpec


@pytest.fixture
def spec() -> RacecourseSpec:
    """Spec with every field set."""
    return RacecourseSpec(replicas=3, ingressHost="racecourse.example.com")


class TestDefaults:
    """Test resolution of absent spec fields."""

    def test_absent_replicas_means_zero(self) -> None:
        """Test a missing replica count scales the workload to zero."""
        assert resolve_replicas(RacecourseSpec()) == 0

    def test_absent_ingress_host_matches_all_hosts(self) -> None:
        """Test a missing host yields the empty wildcard host."""
        assert resolve_ingress_host(RacecourseSpec()) == ""

    def test_explicit_values_win(self, spec: RacecourseSpec) -> None:
        """Test set fields are used as given."""
        assert resolve_replicas(spec) == 3
        assert resolve_ingress_host(spec) == "racecourse.example.com"


class TestDesiredDeployment:
    """Test the Deployment builder."""

    def test_deployment_fields(self, spec: RacecourseSpec, config: OperatorConfig) -> None:
        """Test replicas, selector and the single named container port."""
        desired = desired_deployment(spec, config)

        assert desired["replicas"] == 3
        assert desired["selector"] == {"matchLabels": {"app.kubernetes.io/name": "racecourse"}}
        assert desired["template"]["metadata"]["labels"] == {"app.kubernetes.io/name": "racecourse"}
        containers = desired["template"]["spec"]["containers"]
        assert containers == [
            {
                "name": "racecourse",
                "image": "localhost/racecourse:latest",
                "imagePullPolicy": "Never",
                "ports": [{"name": "webapp", "containerPort": 3000}],
            }
        ]

    def test_selector_matches_template_labels(
        self, spec: RacecourseSpec, config: OperatorConfig
    ) -> None:
        """Test the selector selects the pods the template creates."""
        desired = desired_deployment(spec, config)

        labels = desired["template"]["metadata"]["labels"]
        assert desired["selector"]["matchLabels"].items() <= labels.items()

    def test_returned_labels_are_independent(
        self, spec: RacecourseSpec, config: OperatorConfig
    ) -> None:
        """Test mutating a built object cannot leak into the shared config."""
        desired = desired_deployment(spec, config)
        desired["selector"]["matchLabels"]["extra"] = "yes"

        assert "extra" not in config.common_labels
        assert "extra" not in desired_deployment(spec, config)["selector"]["matchLabels"]

    def test_deterministic(self, spec: RacecourseSpec, config: OperatorConfig) -> None:
        """Test identical inputs serialize identically."""
        first = json.dumps(desired_deployment(spec, config))
        second = json.dumps(desired_deployment(spec, config))

        assert first == second


class TestDesiredService:
    """Test the Service builder."""

    def test_service_routes_by_port_name(
        self, spec: RacecourseSpec, config: OperatorConfig
    ) -> None:
        """Test the Service targets the container port by name."""
        desired = desired_service(spec, config)

        assert desired["selector"] == {"app.kubernetes.io/name": "racecourse"}
        assert desired["ports"] == [{"name": "webapp", "port": 3000, "targetPort": "webapp"}]

    def test_service_port_configurable(self, spec: RacecourseSpec) -> None:
        """Test a different exposed port keeps the named target."""
        desired = desired_service(spec, OperatorConfig(service_port=80))

        assert desired["ports"][0]["port"] == 80
        assert desired["ports"][0]["targetPort"] == "webapp"


class TestDesiredIngress:
    """Test the Ingress builder."""

    def test_ingress_rule(self, spec: RacecourseSpec, config: OperatorConfig) -> None:
        """Test a single prefix rule to the Service by port name."""
        desired = desired_ingress(spec, "racecourse-sample", config)

        assert "ingressClassName" not in desired
        assert desired["rules"] == [
            {
                "host": "racecourse.example.com",
                "http": {
                    "paths": [
                        {
                            "path": "/",
                            "pathType": "Prefix",
                            "backend": {
                                "service": {
                                    "name": "racecourse-sample",
                                    "port": {"name": "webapp"},
                                }
                            },
                        }
                    ]
                },
            }
        ]

    def test_ingress_without_host(self, config: OperatorConfig) -> None:
        """Test an absent host produces the empty host."""
        desired = desired_ingress(RacecourseSpec(), "racecourse-sample", config)

        assert desired["rules"][0]["host"] == ""

    def test_ingress_class(self, spec: RacecourseSpec) -> None:
        """Test the ingress class is set only when configured."""
        desired = desired_ingress(spec, "racecourse-sample", OperatorConfig(ingress_class="nginx"))

        assert desired["ingressClassName"] == "nginx"


class TestFormatLabelSelector:
    """Test label selector serialization."""

    def test_match_labels_sorted(self) -> None:
        """Test matchLabels render as sorted key=value pairs."""
        selector = {"matchLabels": {"tier": "web", "app": "racecourse"}}

        assert format_label_selector(selector) == "app=racecourse,tier=web"

    def test_match_expressions(self) -> None:
        """Test every set-based operator."""
        selector = {
            "matchLabels": {"app": "racecourse"},
            "matchExpressions": [
                {"key": "zone", "operator": "In", "values": ["b", "a"]},
                {"key": "env", "operator": "NotIn", "values": ["dev"]},
                {"key": "canary", "operator": "DoesNotExist"},
                {"key": "owner", "operator": "Exists"},
            ],
        }

        assert format_label_selector(selector) == (
            "app=racecourse,!canary,env notin (dev),owner,zone in (a,b)"
        )

    def test_empty_selector(self) -> None:
        """Test missing and empty selectors."""
        assert format_label_selector(None) == "<none>"
        assert format_label_selector({}) == "<none>"
        assert format_label_selector({"matchLabels": {}}) == "<none>"

    def test_unknown_operator(self) -> None:
        """Test an unsupported operator is rejected."""
        selector = {"matchExpressions": [{"key": "a", "operator": "Gt", "values": ["1"]}]}

        with pytest.raises(ValueError, match="Unsupported label selector operator"):
            format_label_selector(selector)
