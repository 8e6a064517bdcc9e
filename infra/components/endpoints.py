from dataclasses import dataclass, field

import pulumi
import pulumi_aws as aws

from infra.components.networking import NetworkHandle
from infra.models import EndpointClass, EndpointSpec, IngressRule
from infra.topology import endpoint_ingress_rules


@dataclass(frozen=True)
class FabricHandle:
    security_group_id: pulumi.Output[str]
    ingress_cidrs: tuple[str, ...]
    endpoint_ids: dict[str, pulumi.Output[str]] = field(default_factory=dict)
    prefix_list_ids: list[pulumi.Output[str]] = field(default_factory=list)


class ConnectivityFabric(pulumi.ComponentResource):
    """Private endpoints that replace internet egress for the workload.

    Interface endpoints (registry, logs) sit in the isolated subnets behind a
    security group that only accepts HTTPS from those same subnets, and
    override the public service DNS names. Gateway endpoints (object storage)
    are attached to the isolated route tables and need no security group.
    """

    def __init__(
        self,
        name: str,
        network: NetworkHandle,
        endpoints: tuple[EndpointSpec, ...],
        provider: aws.Provider,
        opts: pulumi.ResourceOptions | None = None,
    ):
        super().__init__("privgw:infrastructure:ConnectivityFabric", name, None, opts)

        child_opts = pulumi.ResourceOptions(parent=self, provider=provider)

        # Always derived from the live subnet list, never edited on its own.
        ingress_rules: tuple[IngressRule, ...] = endpoint_ingress_rules(network.isolated_subnet_cidrs)

        self.security_group = aws.ec2.SecurityGroup(
            f"{name}-endpoint-sg",
            vpc_id=network.vpc_id,
            description="HTTPS from isolated subnets to interface endpoints",
            ingress=[
                aws.ec2.SecurityGroupIngressArgs(
                    protocol=rule.protocol,
                    from_port=rule.from_port,
                    to_port=rule.to_port,
                    cidr_blocks=list(rule.cidr_blocks),
                    description=rule.description,
                )
                for rule in ingress_rules
            ],
            tags={
                "Name": f"{name}-endpoint-sg",
            },
            opts=child_opts,
        )

        self.endpoints: dict[str, aws.ec2.VpcEndpoint] = {}
        prefix_list_ids: list[pulumi.Output[str]] = []
        for spec in endpoints:
            if spec.endpoint_class == EndpointClass.GATEWAY:
                endpoint = aws.ec2.VpcEndpoint(
                    f"{name}-{spec.key}",
                    vpc_id=network.vpc_id,
                    service_name=spec.service_name,
                    vpc_endpoint_type=EndpointClass.GATEWAY.value,
                    route_table_ids=network.route_table_ids,
                    tags={"Name": f"{name}-{spec.key}", "Role": spec.role},
                    opts=child_opts,
                )
                prefix_list_ids.append(endpoint.prefix_list_id)
            else:
                endpoint = aws.ec2.VpcEndpoint(
                    f"{name}-{spec.key}",
                    vpc_id=network.vpc_id,
                    service_name=spec.service_name,
                    vpc_endpoint_type=EndpointClass.INTERFACE.value,
                    subnet_ids=network.isolated_subnet_ids,
                    security_group_ids=[self.security_group.id],
                    private_dns_enabled=spec.private_dns_enabled,
                    tags={"Name": f"{name}-{spec.key}", "Role": spec.role},
                    opts=child_opts,
                )
            self.endpoints[spec.key] = endpoint

        pulumi.log.info(
            f"Private endpoints: {', '.join(s.service_name for s in endpoints)}",
            resource=self,
        )

        self.handle = FabricHandle(
            security_group_id=self.security_group.id,
            ingress_cidrs=tuple(cidr for rule in ingress_rules for cidr in rule.cidr_blocks),
            endpoint_ids={key: endpoint.id for key, endpoint in self.endpoints.items()},
            prefix_list_ids=prefix_list_ids,
        )

        self.register_outputs(
            {
                "security_group_id": self.security_group.id,
                "endpoint_ids": self.handle.endpoint_ids,
            }
        )
