from dataclasses import dataclass

import pulumi
import pulumi_aws as aws

from infra.components.load_balancer import RoutingHandle
from infra.components.networking import NetworkHandle
from infra.errors import DependencyOrderError
from infra.models import BridgeSpec


@dataclass(frozen=True)
class BridgeHandle:
    vpc_link_id: pulumi.Output[str]
    api_id: pulumi.Output[str]
    api_endpoint: pulumi.Output[str]
    route_key: str


class PublicBridge(pulumi.ComponentResource):
    """HTTP API forwarding every public request over a VPC link.

    A single ``ANY /{proxy+}`` route proxies method and path unchanged to the
    internal listener. The listener must already have its default action, so
    the bridge takes the routing handle rather than the load balancer itself.
    """

    def __init__(
        self,
        name: str,
        bridge: BridgeSpec,
        network: NetworkHandle,
        routing: RoutingHandle,
        provider: aws.Provider,
        opts: pulumi.ResourceOptions | None = None,
    ):
        if not routing.default_action_configured:
            raise DependencyOrderError("bridge", "listener default action")

        super().__init__("privgw:infrastructure:PublicBridge", name, None, opts)

        child_opts = pulumi.ResourceOptions(parent=self, provider=provider)

        self.security_group = aws.ec2.SecurityGroup(
            f"{name}-vpc-link-sg",
            vpc_id=network.vpc_id,
            description="VPC link to the internal load balancer",
            egress=[
                aws.ec2.SecurityGroupEgressArgs(
                    protocol="tcp",
                    from_port=80,
                    to_port=80,
                    cidr_blocks=[network.vpc_cidr],
                    description="Internal listener",
                ),
            ],
            tags={
                "Name": f"{name}-vpc-link-sg",
            },
            opts=child_opts,
        )

        self.vpc_link = aws.apigatewayv2.VpcLink(
            f"{name}-vpc-link",
            name=bridge.vpc_link_name,
            subnet_ids=network.isolated_subnet_ids,
            security_group_ids=[self.security_group.id],
            opts=child_opts,
        )

        self.api = aws.apigatewayv2.Api(
            f"{name}-http-api",
            name=bridge.api_name,
            protocol_type="HTTP",
            opts=child_opts,
        )

        self.integration = aws.apigatewayv2.Integration(
            f"{name}-alb-integration",
            api_id=self.api.id,
            integration_type="HTTP_PROXY",
            integration_method=bridge.integration_method,
            integration_uri=routing.listener_arn,
            connection_type="VPC_LINK",
            connection_id=self.vpc_link.id,
            payload_format_version="1.0",
            opts=child_opts,
        )

        self.route = aws.apigatewayv2.Route(
            f"{name}-proxy-route",
            api_id=self.api.id,
            route_key=bridge.route_key,
            target=self.integration.id.apply(lambda integration_id: f"integrations/{integration_id}"),
            opts=child_opts,
        )

        self.stage = aws.apigatewayv2.Stage(
            f"{name}-default-stage",
            api_id=self.api.id,
            name="$default",
            auto_deploy=True,
            opts=pulumi.ResourceOptions(parent=self, provider=provider, depends_on=[self.route]),
        )

        pulumi.log.info(f"Public route {bridge.route_key} via {bridge.vpc_link_name}", resource=self)

        self.handle = BridgeHandle(
            vpc_link_id=self.vpc_link.id,
            api_id=self.api.id,
            api_endpoint=self.api.api_endpoint,
            route_key=bridge.route_key,
        )

        self.register_outputs({
            "vpc_link_id": self.vpc_link.id,
            "api_endpoint": self.api.api_endpoint,
            "route_key": bridge.route_key,
        })
