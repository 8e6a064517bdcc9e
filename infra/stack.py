"""Turns stack configuration into a topology and provisions it step by step."""

from typing import Any, Callable, Sequence

import pulumi
import pulumi_aws as aws

from infra.components.bridge import PublicBridge
from infra.components.endpoints import ConnectivityFabric
from infra.components.load_balancer import InternalRouting
from infra.components.networking import Networking
from infra.components.workload import ComputeWorkload
from infra.config import StackConfig
from infra.errors import DependencyOrderError
from infra.topology import BRIDGE, FABRIC, NETWORK, ROUTING, WORKLOAD, Topology, TopologyBuilder


def build_topology(config: StackConfig, available_zones: Sequence[str]) -> Topology:
    """Validate the whole configuration before any resource is declared."""
    return (
        TopologyBuilder(config.name_prefix, region=config.aws_region)
        .network(
            config.vpc_cidr,
            zone_count=config.availability_zone_count,
            available_zones=available_zones,
            cidr_mask=config.subnet_cidr_mask,
            nat_gateways=config.nat_gateways,
        )
        .endpoints(config.endpoint_services)
        .listener(port=80, default_action=config.fallback)
        .add_rules(config.routes, port=config.workload.task.container_port)
        .workload(config.workload)
        .bridge(config.bridge)
        .build()
    )


class TopologyProvisioner:
    """Declares one component per construction step, in dependency order.

    Each step receives the handles of the steps it depends on and nothing
    else; a component is declared with ``depends_on`` set to the components
    of those steps.
    """

    def __init__(
        self,
        topology: Topology,
        image_repository_url: str,
        provider: aws.Provider,
    ) -> None:
        self.topology = topology
        self.image_repository_url = image_repository_url
        self.provider = provider
        self.components: dict[str, pulumi.ComponentResource] = {}
        self.handles: dict[str, Any] = {}
        self._steps: dict[str, Callable[[pulumi.ResourceOptions], pulumi.ComponentResource]] = {
            NETWORK: self._network,
            FABRIC: self._fabric,
            ROUTING: self._routing,
            WORKLOAD: self._workload,
            BRIDGE: self._bridge,
        }

    def _require(self, step: str, dependency: str) -> Any:
        if dependency not in self.handles:
            raise DependencyOrderError(step, dependency)
        return self.handles[dependency]

    def _component_name(self, step: str) -> str:
        return f"{self.topology.name}-{step}"

    def _network(self, opts: pulumi.ResourceOptions) -> pulumi.ComponentResource:
        return Networking(
            name=self.topology.name,
            network=self.topology.network,
            provider=self.provider,
            opts=opts,
        )

    def _fabric(self, opts: pulumi.ResourceOptions) -> pulumi.ComponentResource:
        return ConnectivityFabric(
            name=self._component_name(FABRIC),
            network=self._require(FABRIC, NETWORK),
            endpoints=self.topology.endpoints,
            provider=self.provider,
            opts=opts,
        )

    def _routing(self, opts: pulumi.ResourceOptions) -> pulumi.ComponentResource:
        return InternalRouting(
            name=self._component_name(ROUTING),
            network=self._require(ROUTING, NETWORK),
            listener=self.topology.listener,
            provider=self.provider,
            opts=opts,
        )

    def _workload(self, opts: pulumi.ResourceOptions) -> pulumi.ComponentResource:
        return ComputeWorkload(
            name=self._component_name(WORKLOAD),
            workload=self.topology.workload,
            image_repository_url=self.image_repository_url,
            region=self.topology.region,
            network=self._require(WORKLOAD, NETWORK),
            fabric=self._require(WORKLOAD, FABRIC),
            routing=self._require(WORKLOAD, ROUTING),
            provider=self.provider,
            opts=opts,
        )

    def _bridge(self, opts: pulumi.ResourceOptions) -> pulumi.ComponentResource:
        return PublicBridge(
            name=self._component_name(BRIDGE),
            bridge=self.topology.bridge,
            network=self._require(BRIDGE, NETWORK),
            routing=self._require(BRIDGE, ROUTING),
            provider=self.provider,
            opts=opts,
        )

    def provision(self) -> dict[str, Any]:
        """Declare every step and return the handles keyed by step name."""
        for step in self.topology.construction_order():
            depends_on = [
                self.components[dep]
                for dep in self.topology.dependencies[step]
                if dep in self.components
            ]
            pulumi.log.info(f"Declaring {step}")
            component = self._steps[step](pulumi.ResourceOptions(depends_on=depends_on))
            self.components[step] = component
            self.handles[step] = component.handle
        return dict(self.handles)


def provision(topology: Topology, image_repository_url: str, provider: aws.Provider) -> dict[str, Any]:
    return TopologyProvisioner(topology, image_repository_url, provider).provision()
