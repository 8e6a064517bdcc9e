"""Tests for turning configuration into a provisioned topology."""

from dataclasses import replace

import pulumi
import pytest

from infra.config import DEFAULT_ROUTES, StackConfig
from infra.errors import ConfigurationError, DependencyOrderError, DuplicatePriorityError, ZoneCapacityError
from infra.models import BridgeSpec, FixedResponse, RoutingRule, TaskSpec, WorkloadSpec
from infra.routing import Forward, Respond, TargetHealth
from infra.stack import TopologyProvisioner, build_topology
from infra.topology import BRIDGE, FABRIC, NETWORK, ROUTING, WORKLOAD
from pulumi_mocks import AVAILABLE_ZONES, MOCKS, REPOSITORY_URL


def make_config(name_prefix: str = "sample-api", **overrides) -> StackConfig:
    values = dict(
        name_prefix=name_prefix,
        aws_region="us-east-1",
        vpc_cidr="10.0.0.0/16",
        subnet_cidr_mask=24,
        availability_zone_count=2,
        nat_gateways=0,
        endpoint_services=["ecr.dkr", "ecr.api", "logs", "s3"],
        routes=list(DEFAULT_ROUTES),
        fallback=FixedResponse(),
        workload=WorkloadSpec(),
        bridge=BridgeSpec(),
    )
    values.update(overrides)
    return StackConfig(**values)


class TestBuildTopology:
    """Tests for configuration validation ahead of provisioning."""

    def test_default_configuration(self):
        topology = build_topology(make_config(), AVAILABLE_ZONES)

        assert topology.network.zone_names == ("us-east-1a", "us-east-1b")
        assert [r.priority for r in topology.listener.rules] == [1, 2]
        assert topology.listener.default_action == FixedResponse()
        assert topology.workload.target_groups == ("root", "customers")
        assert topology.bridge.route_key == "ANY /{proxy+}"

    def test_default_routes_cover_customer_sub_paths(self):
        topology = build_topology(make_config(), AVAILABLE_ZONES)
        rules = topology.rule_set()
        health = TargetHealth.from_members({"root": ["replica-0"], "customers": ["replica-1"]})

        for path in ("/customers", "/customers/42", "/customers/42/orders"):
            decision = rules.evaluate(path, health)
            assert isinstance(decision, Forward)
            assert decision.target_group == "customers"
            assert decision.priority == 2

        assert rules.evaluate("/", health).target_group == "root"
        assert rules.evaluate("/orders", health) == Respond(status_code=200, body="No routes defined")

    def test_single_zone_rejected(self):
        with pytest.raises(ConfigurationError, match="at least 2 zones"):
            build_topology(make_config(availability_zone_count=1), AVAILABLE_ZONES)

    def test_custom_container_port_flows_to_target_groups(self):
        workload = WorkloadSpec(task=TaskSpec(container_port=8080))
        topology = build_topology(make_config(workload=workload), AVAILABLE_ZONES)

        assert {tg.port for tg in topology.listener.target_groups} == {8080}

    def test_too_many_zones(self):
        with pytest.raises(ZoneCapacityError):
            build_topology(make_config(availability_zone_count=4), AVAILABLE_ZONES)

    def test_nat_gateways_rejected(self):
        with pytest.raises(ConfigurationError, match="NAT"):
            build_topology(make_config(nat_gateways=1), AVAILABLE_ZONES)

    def test_duplicate_route_priority(self):
        routes = [
            RoutingRule(priority=5, path_patterns=("/a",), target_group="a"),
            RoutingRule(priority=5, path_patterns=("/b",), target_group="b"),
        ]

        with pytest.raises(DuplicatePriorityError):
            build_topology(make_config(routes=routes), AVAILABLE_ZONES)


class TestTopologyProvisioner:
    """Tests for declaring components in dependency order."""

    @pulumi.runtime.test
    def test_provisions_every_step(self):
        topology = build_topology(make_config("prov"), AVAILABLE_ZONES)
        provisioner = TopologyProvisioner(topology, REPOSITORY_URL, provider=None)
        handles = provisioner.provision()

        assert list(handles) == [NETWORK, FABRIC, ROUTING, WORKLOAD, BRIDGE]

        def check(_):
            service = MOCKS.inputs_of("prov-workload-service")
            assert service["desiredCount"] == 2
            route = MOCKS.inputs_of("prov-bridge-proxy-route")
            assert route["routeKey"] == "ANY /{proxy+}"

        return pulumi.Output.all(
            provisioner.components[WORKLOAD].service.id,
            provisioner.components[BRIDGE].route.id,
        ).apply(check)

    @pulumi.runtime.test
    def test_step_before_its_dependency(self):
        topology = build_topology(make_config("misordered"), AVAILABLE_ZONES)
        misordered = replace(
            topology,
            dependencies={
                NETWORK: (),
                BRIDGE: (NETWORK,),
                ROUTING: (NETWORK,),
                FABRIC: (NETWORK,),
                WORKLOAD: (FABRIC, ROUTING),
            },
        )

        provisioner = TopologyProvisioner(misordered, REPOSITORY_URL, provider=None)
        with pytest.raises(DependencyOrderError) as exc_info:
            provisioner.provision()

        assert exc_info.value.step == BRIDGE
        assert exc_info.value.missing == ROUTING
        assert list(provisioner.handles) == [NETWORK]
