import pulumi

from infra.config import load_stack_config
from infra.providers import available_zone_names, create_aws_provider, resolve_image_repository
from infra.stack import build_topology, provision
from infra.topology import BRIDGE, FABRIC, NETWORK, ROUTING, WORKLOAD

config = load_stack_config()

aws_provider = create_aws_provider(config)

topology = build_topology(config, available_zone_names(aws_provider))

fallback = topology.listener.default_action
if fallback.is_success:
    pulumi.log.warn(
        f"Unmatched paths are answered with {fallback.status_code} '{fallback.message_body}'; "
        "set fallbackStatusCode for a stricter default"
    )

image_repository_url = resolve_image_repository(
    config.workload.task.image_repository,
    aws_provider,
)

pulumi.log.info(f"Provisioning {topology.name} in {topology.region}: {' -> '.join(topology.construction_order())}")

handles = provision(topology, image_repository_url, aws_provider)

network = handles[NETWORK]
fabric = handles[FABRIC]
routing = handles[ROUTING]
workload = handles[WORKLOAD]
bridge = handles[BRIDGE]

pulumi.export("vpc_id", network.vpc_id)
pulumi.export("isolated_subnet_ids", network.isolated_subnet_ids)
pulumi.export("isolated_subnet_cidrs", list(network.isolated_subnet_cidrs))

pulumi.export("endpoint_ids", fabric.endpoint_ids)

pulumi.export("load_balancer_dns_name", routing.dns_name)
pulumi.export("listener_arn", routing.listener_arn)
pulumi.export("target_group_arns", routing.target_group_arns)
pulumi.export(
    "routing_rules",
    [
        {
            "priority": rule.priority,
            "path_patterns": list(rule.path_patterns),
            "target_group": rule.target_group,
        }
        for rule in topology.listener.rules
    ],
)

pulumi.export("cluster_name", workload.cluster_name)
pulumi.export("service_name", workload.service_name)

pulumi.export("vpc_link_id", bridge.vpc_link_id)
pulumi.export("api_endpoint", bridge.api_endpoint)
