"""Dependency-ordered builder for the private gateway topology.

The builder collects the five parts of the topology, validates them as a
whole and returns an immutable ``Topology``. Nothing here talks to a cloud
API, so every configuration error surfaces before a resource is declared.

Construction steps and their dependencies:

    network -> fabric, routing
    fabric, routing -> workload
    routing -> bridge
"""

import ipaddress
from dataclasses import dataclass, field, replace
from graphlib import CycleError, TopologicalSorter
from typing import Mapping, Optional, Sequence

from pydantic import ValidationError

from infra.errors import (
    ConfigurationError,
    DependencyOrderError,
    UnknownTargetGroupError,
    ZoneCapacityError,
)
from infra.models import (
    BridgeSpec,
    EndpointClass,
    EndpointSpec,
    FixedResponse,
    IngressRule,
    ListenerSpec,
    NetworkSpec,
    RoutingRule,
    SubnetSpec,
    TargetGroupSpec,
    WorkloadSpec,
)
from infra.routing import ListenerRuleSet

NETWORK = "network"
FABRIC = "fabric"
ROUTING = "routing"
WORKLOAD = "workload"
BRIDGE = "bridge"

STEP_DEPENDENCIES: Mapping[str, tuple[str, ...]] = {
    NETWORK: (),
    FABRIC: (NETWORK,),
    ROUTING: (NETWORK,),
    WORKLOAD: (FABRIC, ROUTING),
    BRIDGE: (ROUTING,),
}

DEFAULT_ENDPOINT_SERVICES = ("ecr.dkr", "ecr.api", "logs", "s3")

# Services reached through route-table entries instead of network interfaces.
GATEWAY_SERVICES = frozenset({"s3", "dynamodb"})

SERVICE_ROLES = {
    "ecr.dkr": "registry-docker",
    "ecr.api": "registry-api",
    "logs": "log-sink",
    "s3": "object-store",
}

HTTPS_PORT = 443

# Application load balancers need subnets in two or more zones.
MIN_LOAD_BALANCER_ZONES = 2


def construction_order(dependencies: Mapping[str, Sequence[str]]) -> tuple[str, ...]:
    """Resolve construction steps into a dependency-respecting order.

    Ties are broken by declaration order so the result is stable.

    Raises:
        DependencyOrderError: If a step depends on an undeclared step or
            the dependencies form a cycle
    """
    for step, deps in dependencies.items():
        for dep in deps:
            if dep not in dependencies:
                raise DependencyOrderError(step, dep)

    declared = list(dependencies)
    sorter = TopologicalSorter({step: tuple(deps) for step, deps in dependencies.items()})
    try:
        sorter.prepare()
    except CycleError as e:
        cycle = e.args[1] if len(e.args) > 1 else []
        raise DependencyOrderError(str(cycle[0]) if cycle else "topology", "acyclic dependencies") from e

    order: list[str] = []
    while sorter.is_active():
        ready = sorted(sorter.get_ready(), key=declared.index)
        order.extend(ready)
        sorter.done(*ready)
    return tuple(order)


def carve_subnets(vpc_cidr: str, zone_names: Sequence[str], cidr_mask: int = 24) -> tuple[SubnetSpec, ...]:
    """Allocate one isolated subnet per zone from the start of the VPC range."""
    vpc = ipaddress.ip_network(vpc_cidr, strict=False)
    if cidr_mask < vpc.prefixlen or cidr_mask > 28:
        raise ConfigurationError(
            f"Subnet mask /{cidr_mask} does not fit VPC CIDR {vpc_cidr}",
            details={"vpc_cidr": vpc_cidr, "cidr_mask": cidr_mask},
        )
    blocks = vpc.subnets(new_prefix=cidr_mask)
    subnets = []
    for zone in zone_names:
        try:
            block = next(blocks)
        except StopIteration:
            raise ConfigurationError(
                f"VPC CIDR {vpc_cidr} has no room for {len(zone_names)} /{cidr_mask} subnets",
                details={"vpc_cidr": vpc_cidr, "zones": list(zone_names)},
            ) from None
        subnets.append(SubnetSpec(zone=zone, cidr=str(block)))
    return tuple(subnets)


def endpoint_ingress_rules(subnet_cidrs: Sequence[str], port: int = HTTPS_PORT) -> tuple[IngressRule, ...]:
    """Derive the endpoint security boundary from the isolated subnet CIDRs.

    One HTTPS rule per subnet, in subnet order. The result depends only on
    the CIDR list, so regenerating it for the same subnets is a no-op.
    """
    return tuple(
        IngressRule(
            protocol="tcp",
            from_port=port,
            to_port=port,
            cidr_blocks=(cidr,),
            description=f"HTTPS from isolated subnet {cidr}",
        )
        for cidr in subnet_cidrs
    )


def endpoint_specs(region: str, services: Sequence[str]) -> tuple[EndpointSpec, ...]:
    """Build region-qualified endpoint descriptions for service identifiers."""
    specs = []
    seen = set()
    for service in services:
        service = service.strip()
        if not service or service in seen:
            continue
        seen.add(service)
        specs.append(
            EndpointSpec(
                key=service.replace(".", "-"),
                role=SERVICE_ROLES.get(service, service.replace(".", "-")),
                service_name=f"com.amazonaws.{region}.{service}",
                endpoint_class=(
                    EndpointClass.GATEWAY if service in GATEWAY_SERVICES else EndpointClass.INTERFACE
                ),
            )
        )
    return tuple(specs)


@dataclass(frozen=True)
class Replica:
    """Where the orchestrator places one task and which groups it joins."""

    index: int
    zone: str
    subnet_cidr: str
    target_groups: tuple[str, ...]

    @property
    def target_id(self) -> str:
        return f"replica-{self.index}"


def plan_replicas(workload: WorkloadSpec, network: NetworkSpec) -> tuple[Replica, ...]:
    """Spread ``desired_count`` replicas round-robin over the isolated subnets."""
    subnets = network.subnets
    return tuple(
        Replica(
            index=index,
            zone=subnets[index % len(subnets)].zone,
            subnet_cidr=subnets[index % len(subnets)].cidr,
            target_groups=workload.target_groups,
        )
        for index in range(workload.desired_count)
    )


@dataclass(frozen=True)
class Topology:
    """Validated, immutable description of the whole gateway."""

    region: str
    name: str
    network: NetworkSpec
    endpoints: tuple[EndpointSpec, ...]
    fabric_ingress: tuple[IngressRule, ...]
    listener: ListenerSpec
    workload: WorkloadSpec
    bridge: BridgeSpec
    dependencies: Mapping[str, tuple[str, ...]] = field(default_factory=lambda: dict(STEP_DEPENDENCIES))

    def construction_order(self) -> tuple[str, ...]:
        return construction_order(self.dependencies)

    def rule_set(self) -> ListenerRuleSet:
        return ListenerRuleSet.from_listener(self.listener)

    def replicas(self) -> tuple[Replica, ...]:
        return plan_replicas(self.workload, self.network)

    def with_desired_count(self, desired_count: int) -> "Topology":
        """Return the same topology with the workload scaled."""
        try:
            workload = self.workload.with_desired_count(desired_count)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid desired count {desired_count}: {e}") from e
        return replace(self, workload=workload)


class TopologyBuilder:
    """Collects topology parts and validates them into a ``Topology``.

    Example:
        >>> topology = (
        ...     TopologyBuilder("sample-api", region="us-east-1")
        ...     .network("10.0.0.0/16", zone_count=2, available_zones=["us-east-1a", "us-east-1b"])
        ...     .endpoints(["ecr.dkr", "ecr.api", "logs", "s3"])
        ...     .listener()
        ...     .add_rule(1, ["/"], "root")
        ...     .add_rule(2, ["/customers"], "customers")
        ...     .workload(WorkloadSpec())
        ...     .bridge(BridgeSpec())
        ...     .build()
        ... )
    """

    def __init__(self, name: str, region: str) -> None:
        self.name = name
        self.region = region
        self._network: Optional[NetworkSpec] = None
        self._services: Optional[tuple[str, ...]] = None
        self._listener_declared = False
        self._listener_port = 80
        self._default_action: Optional[FixedResponse] = None
        self._rules = ListenerRuleSet()
        self._target_groups: dict[str, TargetGroupSpec] = {}
        self._workload: Optional[WorkloadSpec] = None
        self._bridge: Optional[BridgeSpec] = None

    def network(
        self,
        cidr: str,
        zone_count: int,
        available_zones: Sequence[str],
        cidr_mask: int = 24,
        nat_gateways: int = 0,
    ) -> "TopologyBuilder":
        """Declare the isolated network over the first ``zone_count`` zones.

        Raises:
            ZoneCapacityError: If fewer zones are available than requested
            ConfigurationError: On a NAT gateway request or bad CIDR layout
        """
        if nat_gateways != 0:
            raise ConfigurationError(
                f"Isolated networks have no NAT gateways, got {nat_gateways}",
                details={"nat_gateways": nat_gateways},
            )
        if zone_count < 1:
            raise ConfigurationError(f"Zone count must be at least 1, got {zone_count}")
        if zone_count > len(available_zones):
            raise ZoneCapacityError(zone_count, list(available_zones))

        zones = list(available_zones)[:zone_count]
        try:
            self._network = NetworkSpec(cidr=cidr, subnets=carve_subnets(cidr, zones, cidr_mask))
        except ValidationError as e:
            raise ConfigurationError(f"Invalid network layout: {e}") from e
        return self

    def endpoints(self, services: Sequence[str] = DEFAULT_ENDPOINT_SERVICES) -> "TopologyBuilder":
        self._services = tuple(services)
        return self

    def listener(self, port: int = 80, default_action: Optional[FixedResponse] = FixedResponse()) -> "TopologyBuilder":
        self._listener_declared = True
        self._listener_port = port
        self._default_action = default_action
        return self

    def add_rule(
        self,
        priority: int,
        path_patterns: Sequence[str],
        target_group: str,
        health_check_path: str = "/",
        port: int = 80,
    ) -> "TopologyBuilder":
        """Add a listener rule and the target group it forwards to.

        Raises:
            DuplicatePriorityError: If the priority is already taken
            ConfigurationError: If the rule is malformed or the target group
                was declared before with a different health check
        """
        try:
            target = TargetGroupSpec(name=target_group, port=port, health_check_path=health_check_path)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid target group for rule {priority}: {e}") from e

        existing = self._target_groups.get(target_group)
        if existing is not None and existing != target:
            raise ConfigurationError(
                f"Target group '{target_group}' is declared twice with different settings",
                details={"target_group": target_group},
            )

        try:
            self._rules.add_rule(priority, path_patterns, target_group, health_check_path)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid listener rule {priority}: {e}") from e
        self._target_groups[target_group] = target
        return self

    def add_rules(self, rules: Sequence[RoutingRule], port: int = 80) -> "TopologyBuilder":
        for rule in rules:
            self.add_rule(rule.priority, rule.path_patterns, rule.target_group, rule.health_check_path, port)
        return self

    def workload(self, workload: WorkloadSpec) -> "TopologyBuilder":
        self._workload = workload
        return self

    def bridge(self, bridge: BridgeSpec) -> "TopologyBuilder":
        self._bridge = bridge
        return self

    def build(self) -> Topology:
        """Validate the collected parts and freeze them.

        Raises:
            ConfigurationError: If a part is missing or inconsistent, or the
                network spans fewer zones than the load balancer needs
            DependencyOrderError: If the bridge targets a listener without
                a default action
        """
        if self._network is None:
            raise ConfigurationError("Topology has no network")
        if self._workload is None:
            raise ConfigurationError("Topology has no workload")
        if self._bridge is None:
            raise ConfigurationError("Topology has no public bridge")
        if not self._listener_declared:
            raise DependencyOrderError(BRIDGE, "listener")
        if self._default_action is None:
            raise DependencyOrderError(BRIDGE, "listener default action")
        if len(self._network.subnets) < MIN_LOAD_BALANCER_ZONES:
            raise ConfigurationError(
                f"The internal load balancer needs subnets in at least {MIN_LOAD_BALANCER_ZONES} zones, "
                f"got {len(self._network.subnets)}",
                details={"zones": list(self._network.zone_names)},
            )

        workload = self._workload
        known = list(self._target_groups)
        if not workload.target_groups:
            workload = workload.model_copy(update={"target_groups": tuple(known)})
        for name in workload.target_groups:
            if name not in self._target_groups:
                raise UnknownTargetGroupError(name, known)

        for target_group in self._target_groups.values():
            if target_group.port != workload.task.container_port:
                raise ConfigurationError(
                    f"Target group '{target_group.name}' port {target_group.port} does not match "
                    f"container port {workload.task.container_port}",
                    details={"target_group": target_group.name},
                )

        services = self._services if self._services is not None else DEFAULT_ENDPOINT_SERVICES
        listener = ListenerSpec(
            port=self._listener_port,
            default_action=self._default_action,
            rules=self._rules.rules,
            target_groups=tuple(self._target_groups.values()),
        )
        return Topology(
            region=self.region,
            name=self.name,
            network=self._network,
            endpoints=endpoint_specs(self.region, services),
            fabric_ingress=endpoint_ingress_rules(self._network.subnet_cidrs),
            listener=listener,
            workload=workload,
            bridge=self._bridge,
        )
