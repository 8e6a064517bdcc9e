"""Stack configuration schema and loader."""

from dataclasses import dataclass, field

import pulumi
from pydantic import ValidationError

from infra.errors import ConfigurationError
from infra.models import BridgeSpec, FixedResponse, RoutingRule, TaskSpec, WorkloadSpec
from infra.topology import DEFAULT_ENDPOINT_SERVICES

# Listener patterns without a wildcard match exactly; "/customers/*" covers sub-paths.
DEFAULT_ROUTES = (
    RoutingRule(priority=1, path_patterns=("/",), target_group="root", health_check_path="/"),
    RoutingRule(
        priority=2,
        path_patterns=("/customers", "/customers/*"),
        target_group="customers",
        health_check_path="/",
    ),
)


@dataclass
class StackConfig:
    name_prefix: str
    aws_region: str

    vpc_cidr: str
    subnet_cidr_mask: int
    availability_zone_count: int
    nat_gateways: int

    endpoint_services: list[str]

    routes: list[RoutingRule]
    fallback: FixedResponse

    workload: WorkloadSpec
    bridge: BridgeSpec

    tags: dict[str, str] = field(default_factory=dict)


def _validated(model, label: str, **values):
    try:
        return model(**values)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid {label} configuration: {e}") from e


def _get_int(config: pulumi.Config, key: str, default: int) -> int:
    """Read an integer setting; only an unset key falls back to the default."""
    value = config.get_int(key)
    return default if value is None else value


def _load_routes(config: pulumi.Config) -> list[RoutingRule]:
    raw_routes = config.get_object("routes")
    if not raw_routes:
        return list(DEFAULT_ROUTES)

    routes = []
    for raw in raw_routes:
        if not isinstance(raw, dict):
            raise ConfigurationError(f"Each route must be an object, got {raw!r}")
        patterns = raw.get("pathPatterns") or raw.get("path_patterns") or []
        if isinstance(patterns, str):
            patterns = [patterns]
        routes.append(
            _validated(
                RoutingRule,
                "route",
                priority=raw.get("priority"),
                path_patterns=tuple(patterns),
                target_group=raw.get("targetGroup") or raw.get("target_group"),
                health_check_path=raw.get("healthCheckPath") or raw.get("health_check_path") or "/",
            )
        )
    return routes


def load_stack_config() -> StackConfig:
    config = pulumi.Config()

    services_config = config.get("endpointServices")
    if services_config:
        endpoint_services = [s.strip() for s in services_config.split(",") if s.strip()]
    else:
        endpoint_services = list(DEFAULT_ENDPOINT_SERVICES)

    name_prefix = config.get("namePrefix") or "sample-api"

    task = _validated(
        TaskSpec,
        "task",
        image_repository=config.get("imageRepository") or "sample-api",
        image_tag=config.get("imageTag") or "latest",
        container_name=config.get("containerName") or "SampleApi",
        cpu=_get_int(config, "taskCpu", 256),
        memory=_get_int(config, "taskMemory", 512),
        container_port=_get_int(config, "containerPort", 80),
        log_stream_prefix=config.get("logStreamPrefix") or "SampleApi-Logs",
        log_retention_days=_get_int(config, "logRetentionDays", 7),
    )

    workload = _validated(
        WorkloadSpec,
        "workload",
        cluster_name=config.get("clusterName") or "SampleApi",
        task=task,
        desired_count=_get_int(config, "desiredCount", 2),
    )

    fallback = _validated(
        FixedResponse,
        "fallback",
        status_code=_get_int(config, "fallbackStatusCode", 200),
        message_body=config.get("fallbackMessage") or "No routes defined",
    )

    bridge = _validated(
        BridgeSpec,
        "bridge",
        vpc_link_name=config.get("vpcLinkName") or "HttpVpcLink-ECS",
        api_name=config.get("apiName") or "sampleApi-ECS",
    )

    return StackConfig(
        name_prefix=name_prefix,
        aws_region=config.get("awsRegion") or "us-east-1",
        vpc_cidr=config.get("vpcCidr") or "10.0.0.0/16",
        subnet_cidr_mask=_get_int(config, "subnetCidrMask", 24),
        availability_zone_count=_get_int(config, "availabilityZoneCount", 2),
        nat_gateways=_get_int(config, "natGateways", 0),
        endpoint_services=endpoint_services,
        routes=_load_routes(config),
        fallback=fallback,
        workload=workload,
        bridge=bridge,
        tags={"Project": name_prefix, "ManagedBy": "pulumi"},
    )
