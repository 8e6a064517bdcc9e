"""Pydantic models describing the gateway topology."""

import ipaddress
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class SubnetVisibility(str, Enum):
    """Whether a subnet has a route to the public internet."""

    ISOLATED = "isolated"
    PUBLIC = "public"


class EndpointClass(str, Enum):
    """How a private endpoint attaches to the network."""

    INTERFACE = "Interface"
    GATEWAY = "Gateway"


class SubnetSpec(BaseModel):
    """One subnet of the network, pinned to a single availability zone."""

    model_config = ConfigDict(frozen=True)

    zone: str = Field(..., description="Availability zone name")
    cidr: str = Field(..., description="Subnet CIDR block")
    visibility: SubnetVisibility = Field(
        default=SubnetVisibility.ISOLATED,
        description="Route visibility class of the subnet",
    )


class NetworkSpec(BaseModel):
    """The isolated address space and its per-zone subnets."""

    model_config = ConfigDict(frozen=True)

    cidr: str = Field(
        default="10.0.0.0/16",
        description="VPC CIDR block",
    )
    subnets: tuple[SubnetSpec, ...] = Field(
        ...,
        description="Subnets in zone order",
        min_length=1,
    )
    nat_gateways: int = Field(
        default=0,
        description="NAT gateway count; isolated networks have none",
        ge=0,
        le=0,
    )

    @field_validator("cidr")
    @classmethod
    def validate_cidr(cls, v: str) -> str:
        """Validate VPC CIDR format."""
        try:
            network = ipaddress.ip_network(v, strict=False)
            if network.prefixlen < 16 or network.prefixlen > 24:
                raise ValueError("VPC CIDR prefix must be between /16 and /24")
        except ValueError as e:
            raise ValueError(f"Invalid VPC CIDR: {e}") from e
        return v

    @model_validator(mode="after")
    def validate_subnets(self) -> "NetworkSpec":
        """Every subnet must be isolated and sit inside the VPC CIDR."""
        vpc = ipaddress.ip_network(self.cidr, strict=False)
        for subnet in self.subnets:
            if subnet.visibility != SubnetVisibility.ISOLATED:
                raise ValueError(f"Subnet {subnet.cidr} in {subnet.zone} is not isolated")
            if not ipaddress.ip_network(subnet.cidr, strict=False).subnet_of(vpc):
                raise ValueError(f"Subnet {subnet.cidr} is outside VPC CIDR {self.cidr}")
        return self

    @property
    def zone_names(self) -> tuple[str, ...]:
        return tuple(subnet.zone for subnet in self.subnets)

    @property
    def subnet_cidrs(self) -> tuple[str, ...]:
        return tuple(subnet.cidr for subnet in self.subnets)


class IngressRule(BaseModel):
    """A single allow rule of a security boundary."""

    model_config = ConfigDict(frozen=True)

    protocol: str = Field(default="tcp", pattern=r"^(tcp|udp|-1)$")
    from_port: int = Field(..., ge=0, le=65535)
    to_port: int = Field(..., ge=0, le=65535)
    cidr_blocks: tuple[str, ...] = Field(default=(), description="Source CIDR blocks")
    description: Optional[str] = None


class EndpointSpec(BaseModel):
    """A private link from the network to one infrastructure service."""

    model_config = ConfigDict(frozen=True)

    key: str = Field(..., description="Resource-name safe identifier, e.g. ecr-dkr")
    role: str = Field(..., description="What the endpoint is for, e.g. registry-docker")
    service_name: str = Field(
        ...,
        description="Region-qualified service name",
        pattern=r"^com\.amazonaws\.[a-z0-9-]+\..+$",
    )
    endpoint_class: EndpointClass = Field(default=EndpointClass.INTERFACE)

    @property
    def private_dns_enabled(self) -> bool:
        return self.endpoint_class == EndpointClass.INTERFACE


class FixedResponse(BaseModel):
    """Static response returned by the listener when no rule matches."""

    model_config = ConfigDict(frozen=True)

    status_code: int = Field(
        default=200,
        description="HTTP status code of the fallback response",
        ge=200,
        le=599,
    )
    content_type: str = Field(
        default="text/plain",
        pattern=r"^(text/plain|text/css|text/html|application/javascript|application/json)$",
    )
    message_body: str = Field(
        default="No routes defined",
        max_length=1024,
    )

    @property
    def is_success(self) -> bool:
        return 200 <= self.status_code < 300


class TargetGroupSpec(BaseModel):
    """A named pool of replica targets behind a listener rule."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., pattern=r"^[a-z0-9-]+$", min_length=1, max_length=24)
    port: int = Field(default=80, ge=1, le=65535)
    protocol: str = Field(default="HTTP", pattern=r"^(HTTP|HTTPS)$")
    health_check_path: str = Field(default="/", pattern=r"^/")


class RoutingRule(BaseModel):
    """A prioritized path-pattern rule forwarding to a target group."""

    model_config = ConfigDict(frozen=True)

    priority: int = Field(
        ...,
        description="Evaluation order; lower values are evaluated first",
        ge=1,
        le=50000,
    )
    path_patterns: tuple[str, ...] = Field(
        ...,
        description="Path patterns; '*' matches any run of characters, '?' one character",
        min_length=1,
        max_length=5,
    )
    target_group: str = Field(..., pattern=r"^[a-z0-9-]+$")
    health_check_path: str = Field(default="/", pattern=r"^/")

    @field_validator("path_patterns")
    @classmethod
    def validate_path_patterns(cls, v: tuple[str, ...]) -> tuple[str, ...]:
        for pattern in v:
            if not pattern or len(pattern) > 128:
                raise ValueError(f"Path pattern must be 1-128 characters: {pattern!r}")
        return v


class ListenerSpec(BaseModel):
    """The internal listener: port, default action, rules and target groups."""

    model_config = ConfigDict(frozen=True)

    port: int = Field(default=80, ge=1, le=65535)
    protocol: str = Field(default="HTTP", pattern=r"^(HTTP|HTTPS)$")
    default_action: Optional[FixedResponse] = None
    rules: tuple[RoutingRule, ...] = ()
    target_groups: tuple[TargetGroupSpec, ...] = ()

    def target_group(self, name: str) -> Optional[TargetGroupSpec]:
        for target_group in self.target_groups:
            if target_group.name == name:
                return target_group
        return None


class TaskSpec(BaseModel):
    """Container task definition parameters."""

    model_config = ConfigDict(frozen=True)

    image_repository: str = Field(
        default="sample-api",
        description="Name of an existing ECR repository",
        pattern=r"^[a-z0-9][a-z0-9._/-]*$",
    )
    image_tag: str = Field(default="latest", min_length=1, max_length=128)
    container_name: str = Field(default="SampleApi", pattern=r"^[A-Za-z0-9_-]+$")
    cpu: int = Field(default=256, description="Fargate CPU units")
    memory: int = Field(default=512, description="Memory limit in MiB", ge=512, le=30720)
    container_port: int = Field(default=80, ge=1, le=65535)
    protocol: str = Field(default="tcp", pattern=r"^(tcp|udp)$")
    log_stream_prefix: str = Field(default="SampleApi-Logs", min_length=1)
    log_retention_days: int = Field(default=7, ge=1)

    @field_validator("cpu")
    @classmethod
    def validate_cpu(cls, v: int) -> int:
        """Fargate only accepts fixed CPU sizes."""
        valid_cpu = [256, 512, 1024, 2048, 4096]
        if v not in valid_cpu:
            raise ValueError(f"Invalid task CPU. Must be one of: {valid_cpu}")
        return v


class WorkloadSpec(BaseModel):
    """A scaled set of replicas running one task specification."""

    model_config = ConfigDict(frozen=True)

    cluster_name: str = Field(default="SampleApi", pattern=r"^[A-Za-z0-9_-]+$")
    task: TaskSpec = Field(default_factory=TaskSpec)
    desired_count: int = Field(default=2, ge=0, le=1000)
    target_groups: tuple[str, ...] = Field(
        default=(),
        description="Target groups every replica registers into",
    )

    def with_desired_count(self, desired_count: int) -> "WorkloadSpec":
        """Return a copy scaled to ``desired_count`` replicas.

        Args:
            desired_count: The new desired replica count

        Returns:
            A new validated WorkloadSpec
        """
        data = self.model_dump()
        data["desired_count"] = desired_count
        return WorkloadSpec.model_validate(data)


class BridgeSpec(BaseModel):
    """The public HTTP API and the VPC link into the isolated network."""

    model_config = ConfigDict(frozen=True)

    vpc_link_name: str = Field(default="HttpVpcLink-ECS", min_length=1, max_length=128)
    api_name: str = Field(default="sampleApi-ECS", min_length=1, max_length=128)
    route_path: str = Field(default="/{proxy+}", pattern=r"^/")
    route_method: str = Field(default="ANY", pattern=r"^(ANY|GET|POST|PUT|PATCH|DELETE|HEAD|OPTIONS)$")
    integration_method: str = Field(default="ANY")

    @property
    def route_key(self) -> str:
        return f"{self.route_method} {self.route_path}"
