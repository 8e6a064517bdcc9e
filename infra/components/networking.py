from dataclasses import dataclass

import pulumi
import pulumi_aws as aws

from infra.models import NetworkSpec


@dataclass(frozen=True)
class NetworkHandle:
    vpc_id: pulumi.Output[str]
    vpc_cidr: str
    zone_names: tuple[str, ...]
    isolated_subnet_ids: list[pulumi.Output[str]]
    isolated_subnet_cidrs: tuple[str, ...]
    route_table_ids: list[pulumi.Output[str]]


class Networking(pulumi.ComponentResource):
    """Isolated VPC for the gateway backend.

    Creates:
    - VPC with DNS support (needed for private DNS on interface endpoints)
    - One isolated subnet per availability zone
    - One route table per subnet holding only the implicit local route

    No internet gateway and no NAT gateways are created, so nothing in the
    subnets can reach the internet. Services outside the VPC are reached
    through the endpoints of ConnectivityFabric.
    """

    def __init__(
        self,
        name: str,
        network: NetworkSpec,
        provider: aws.Provider,
        opts: pulumi.ResourceOptions | None = None,
    ):
        super().__init__("privgw:infrastructure:Networking", name, None, opts)

        child_opts = pulumi.ResourceOptions(parent=self, provider=provider)

        self.vpc = aws.ec2.Vpc(
            f"{name}-vpc",
            cidr_block=network.cidr,
            enable_dns_support=True,
            enable_dns_hostnames=True,
            tags={
                "Name": f"{name}-vpc",
            },
            opts=child_opts,
        )

        self.subnets: list[aws.ec2.Subnet] = []
        self.route_tables: list[aws.ec2.RouteTable] = []

        for index, subnet in enumerate(network.subnets, start=1):
            subnet_name = f"{name}-isolated-{index}"

            isolated_subnet = aws.ec2.Subnet(
                subnet_name,
                vpc_id=self.vpc.id,
                cidr_block=subnet.cidr,
                availability_zone=subnet.zone,
                map_public_ip_on_launch=False,
                tags={
                    "Name": subnet_name,
                    "subnet-type": subnet.visibility.value,
                },
                opts=child_opts,
            )

            route_table = aws.ec2.RouteTable(
                f"{subnet_name}-rt",
                vpc_id=self.vpc.id,
                routes=[],
                tags={
                    "Name": f"{subnet_name}-rt",
                },
                opts=child_opts,
            )

            aws.ec2.RouteTableAssociation(
                f"{subnet_name}-rta",
                subnet_id=isolated_subnet.id,
                route_table_id=route_table.id,
                opts=child_opts,
            )

            self.subnets.append(isolated_subnet)
            self.route_tables.append(route_table)

        pulumi.log.info(
            f"Isolated network {network.cidr} across {', '.join(network.zone_names)}",
            resource=self,
        )

        self.vpc_id = self.vpc.id
        self.isolated_subnet_ids = [s.id for s in self.subnets]
        self.route_table_ids = [rt.id for rt in self.route_tables]

        self.handle = NetworkHandle(
            vpc_id=self.vpc_id,
            vpc_cidr=network.cidr,
            zone_names=network.zone_names,
            isolated_subnet_ids=self.isolated_subnet_ids,
            isolated_subnet_cidrs=network.subnet_cidrs,
            route_table_ids=self.route_table_ids,
        )

        self.register_outputs(
            {
                "vpc_id": self.vpc_id,
                "isolated_subnet_ids": self.isolated_subnet_ids,
                "isolated_subnet_cidrs": list(network.subnet_cidrs),
            }
        )
