"""Tests for the topology builder and its derived descriptions."""

import pytest

from infra.errors import (
    ConfigurationError,
    DependencyOrderError,
    DuplicatePriorityError,
    UnknownTargetGroupError,
    ZoneCapacityError,
)
from infra.models import BridgeSpec, EndpointClass, FixedResponse, SubnetVisibility, WorkloadSpec
from infra.routing import Forward, Respond, TargetHealth
from infra.topology import (
    STEP_DEPENDENCIES,
    TopologyBuilder,
    carve_subnets,
    construction_order,
    endpoint_ingress_rules,
    endpoint_specs,
)


def make_builder(available_zones: list[str], zone_count: int = 2) -> TopologyBuilder:
    return (
        TopologyBuilder("sample-api", region="us-east-1")
        .network("10.0.0.0/16", zone_count=zone_count, available_zones=available_zones)
        .endpoints()
        .listener()
        .add_rule(1, ["/"], "root")
        .add_rule(2, ["/customers"], "customers")
        .workload(WorkloadSpec(desired_count=2))
        .bridge(BridgeSpec())
    )


class TestConstructionOrder:
    """Tests for dependency resolution."""

    def test_default_order(self) -> None:
        order = construction_order(STEP_DEPENDENCIES)

        assert order == ("network", "fabric", "routing", "workload", "bridge")

    def test_dependencies_precede_dependents(self) -> None:
        order = construction_order(STEP_DEPENDENCIES)

        for step, deps in STEP_DEPENDENCIES.items():
            for dep in deps:
                assert order.index(dep) < order.index(step)

    def test_cycle_rejected(self) -> None:
        with pytest.raises(DependencyOrderError):
            construction_order({"routing": ("bridge",), "bridge": ("routing",)})

    def test_undeclared_dependency_rejected(self) -> None:
        with pytest.raises(DependencyOrderError) as exc_info:
            construction_order({"bridge": ("routing",)})

        assert exc_info.value.missing == "routing"


class TestNetwork:
    """Tests for the isolated network description."""

    def test_one_isolated_subnet_per_zone(self, available_zones: list[str]) -> None:
        topology = make_builder(available_zones).build()

        assert topology.network.zone_names == ("us-east-1a", "us-east-1b")
        assert topology.network.subnet_cidrs == ("10.0.0.0/24", "10.0.1.0/24")
        assert all(s.visibility == SubnetVisibility.ISOLATED for s in topology.network.subnets)
        assert topology.network.nat_gateways == 0

    def test_zone_count_above_availability(self, available_zones: list[str]) -> None:
        with pytest.raises(ZoneCapacityError) as exc_info:
            make_builder(available_zones, zone_count=4)

        assert exc_info.value.requested == 4
        assert exc_info.value.available == available_zones

    def test_zero_zones_rejected(self, available_zones: list[str]) -> None:
        with pytest.raises(ConfigurationError):
            TopologyBuilder("x", "us-east-1").network("10.0.0.0/16", 0, available_zones)

    def test_single_zone_rejected_for_load_balancer(self, available_zones: list[str]) -> None:
        builder = make_builder(available_zones, zone_count=1)

        with pytest.raises(ConfigurationError, match="at least 2 zones") as exc_info:
            builder.build()

        assert exc_info.value.details == {"zones": ["us-east-1a"]}

    def test_nat_gateway_rejected(self, available_zones: list[str]) -> None:
        with pytest.raises(ConfigurationError):
            TopologyBuilder("x", "us-east-1").network("10.0.0.0/16", 2, available_zones, nat_gateways=1)

    def test_invalid_vpc_cidr(self, available_zones: list[str]) -> None:
        with pytest.raises(ConfigurationError):
            TopologyBuilder("x", "us-east-1").network("10.0.0.0/8", 2, available_zones)

    def test_subnets_do_not_fit(self) -> None:
        with pytest.raises(ConfigurationError):
            carve_subnets("10.0.0.0/24", ["a", "b"], cidr_mask=24)

    def test_carving_is_deterministic(self) -> None:
        zones = ["us-east-1a", "us-east-1b", "us-east-1c"]

        assert carve_subnets("10.1.0.0/16", zones, 20) == carve_subnets("10.1.0.0/16", zones, 20)
        assert [s.cidr for s in carve_subnets("10.1.0.0/16", zones, 20)] == [
            "10.1.0.0/20",
            "10.1.16.0/20",
            "10.1.32.0/20",
        ]


class TestConnectivityFabric:
    """Tests for endpoint descriptions and the endpoint boundary."""

    def test_default_services(self, available_zones: list[str]) -> None:
        topology = make_builder(available_zones).build()

        services = {e.role: (e.service_name, e.endpoint_class) for e in topology.endpoints}
        assert services == {
            "registry-docker": ("com.amazonaws.us-east-1.ecr.dkr", EndpointClass.INTERFACE),
            "registry-api": ("com.amazonaws.us-east-1.ecr.api", EndpointClass.INTERFACE),
            "log-sink": ("com.amazonaws.us-east-1.logs", EndpointClass.INTERFACE),
            "object-store": ("com.amazonaws.us-east-1.s3", EndpointClass.GATEWAY),
        }

    def test_interface_endpoints_use_private_dns(self) -> None:
        specs = endpoint_specs("eu-west-1", ["ecr.dkr", "s3"])

        assert specs[0].private_dns_enabled is True
        assert specs[1].private_dns_enabled is False

    def test_duplicate_services_collapsed(self) -> None:
        specs = endpoint_specs("us-east-1", ["logs", " logs", "s3"])

        assert [s.key for s in specs] == ["logs", "s3"]

    def test_ingress_sources_are_subnet_cidrs(self, available_zones: list[str]) -> None:
        topology = make_builder(available_zones).build()

        sources = [cidr for rule in topology.fabric_ingress for cidr in rule.cidr_blocks]
        assert sources == list(topology.network.subnet_cidrs)
        assert {(r.protocol, r.from_port, r.to_port) for r in topology.fabric_ingress} == {("tcp", 443, 443)}

    def test_ingress_regeneration_is_idempotent(self, available_zones: list[str]) -> None:
        first = make_builder(available_zones, zone_count=3).build()
        second = make_builder(available_zones, zone_count=3).build()

        assert first.fabric_ingress == second.fabric_ingress
        assert endpoint_ingress_rules(first.network.subnet_cidrs) == first.fabric_ingress

    def test_ingress_follows_subnet_layout(self, available_zones: list[str]) -> None:
        two = make_builder(available_zones, zone_count=2).build()
        three = make_builder(available_zones, zone_count=3).build()

        assert len(two.fabric_ingress) == 2
        assert len(three.fabric_ingress) == 3


class TestListener:
    """Tests for listener rules and target groups."""

    def test_default_rules(self, available_zones: list[str]) -> None:
        topology = make_builder(available_zones).build()

        assert [(r.priority, r.path_patterns, r.target_group) for r in topology.listener.rules] == [
            (1, ("/",), "root"),
            (2, ("/customers",), "customers"),
        ]
        assert topology.listener.default_action == FixedResponse(status_code=200, message_body="No routes defined")
        assert [tg.name for tg in topology.listener.target_groups] == ["root", "customers"]

    def test_duplicate_priority_fails_before_build(self, available_zones: list[str]) -> None:
        builder = make_builder(available_zones)

        with pytest.raises(DuplicatePriorityError):
            builder.add_rule(2, ["/orders"], "orders")

    def test_invalid_priority(self, available_zones: list[str]) -> None:
        with pytest.raises(ConfigurationError):
            make_builder(available_zones).add_rule(0, ["/orders"], "orders")

    def test_conflicting_target_group(self, available_zones: list[str]) -> None:
        with pytest.raises(ConfigurationError):
            make_builder(available_zones).add_rule(3, ["/health"], "root", health_check_path="/health")

    def test_shared_target_group(self, available_zones: list[str]) -> None:
        topology = make_builder(available_zones).add_rule(3, ["/orders"], "customers").build()

        assert len(topology.listener.target_groups) == 2
        assert len(topology.listener.rules) == 3

    def test_target_port_must_match_container(self, available_zones: list[str]) -> None:
        builder = make_builder(available_zones).add_rule(3, ["/admin"], "admin", port=8080)

        with pytest.raises(ConfigurationError):
            builder.build()


class TestBuildValidation:
    """Tests for whole-topology validation."""

    def test_missing_network(self) -> None:
        builder = TopologyBuilder("x", "us-east-1").listener().workload(WorkloadSpec()).bridge(BridgeSpec())

        with pytest.raises(ConfigurationError):
            builder.build()

    def test_bridge_without_listener(self, available_zones: list[str]) -> None:
        builder = (
            TopologyBuilder("x", "us-east-1")
            .network("10.0.0.0/16", 2, available_zones)
            .workload(WorkloadSpec())
            .bridge(BridgeSpec())
        )

        with pytest.raises(DependencyOrderError):
            builder.build()

    def test_bridge_without_default_action(self, available_zones: list[str]) -> None:
        builder = make_builder(available_zones).listener(default_action=None)

        with pytest.raises(DependencyOrderError) as exc_info:
            builder.build()

        assert exc_info.value.step == "bridge"

    def test_workload_joins_all_target_groups_by_default(self, available_zones: list[str]) -> None:
        topology = make_builder(available_zones).build()

        assert topology.workload.target_groups == ("root", "customers")

    def test_unknown_workload_target_group(self, available_zones: list[str]) -> None:
        builder = make_builder(available_zones).workload(WorkloadSpec(target_groups=("orders",)))

        with pytest.raises(UnknownTargetGroupError):
            builder.build()


class TestScaling:
    """Tests for workload scaling and replica placement."""

    def test_replicas_spread_over_zones(self, available_zones: list[str]) -> None:
        topology = make_builder(available_zones).build()

        replicas = topology.replicas()

        assert len(replicas) == 2
        assert {r.zone for r in replicas} == {"us-east-1a", "us-east-1b"}
        assert all(r.target_groups == ("root", "customers") for r in replicas)
        assert {r.subnet_cidr for r in replicas} <= set(topology.network.subnet_cidrs)

    def test_scaling_keeps_routing_topology(self, available_zones: list[str]) -> None:
        topology = make_builder(available_zones).build()

        scaled_down = topology.with_desired_count(0)
        scaled_up = scaled_down.with_desired_count(2)

        assert scaled_down.replicas() == ()
        assert scaled_up.workload.desired_count == 2
        assert scaled_up.listener == topology.listener
        assert [r.priority for r in scaled_up.listener.rules] == [1, 2]
        assert scaled_up.workload.target_groups == topology.workload.target_groups
        assert scaled_up.replicas() == topology.replicas()

    def test_negative_desired_count(self, available_zones: list[str]) -> None:
        topology = make_builder(available_zones).build()

        with pytest.raises(ConfigurationError):
            topology.with_desired_count(-1)

    def test_requests_land_on_isolated_replicas(self, available_zones: list[str]) -> None:
        topology = make_builder(available_zones).build()
        replicas = topology.replicas()
        health = TargetHealth.from_members(
            {tg: [r.target_id for r in replicas] for tg in topology.workload.target_groups}
        )
        rule_set = topology.rule_set()
        replica_ids = {r.target_id for r in replicas}

        for path, group in [("/", "root"), ("/customers", "customers")]:
            decision = rule_set.evaluate(path, health)
            assert isinstance(decision, Forward)
            assert decision.target_group == group
            assert decision.target in replica_ids

        assert isinstance(rule_set.evaluate("/unknown", health), Respond)

    def test_scaled_to_zero_returns_gateway_error(self, available_zones: list[str]) -> None:
        topology = make_builder(available_zones).build().with_desired_count(0)
        health = TargetHealth.from_members(
            {tg: [r.target_id for r in topology.replicas()] for tg in topology.workload.target_groups}
        )

        decision = topology.rule_set().evaluate("/customers", health)

        assert isinstance(decision, Respond)
        assert decision.status_code == 503
