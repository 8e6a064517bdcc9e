from dataclasses import dataclass, field

import pulumi
import pulumi_aws as aws

from infra.components.networking import NetworkHandle
from infra.errors import DependencyOrderError
from infra.models import ListenerSpec


@dataclass(frozen=True)
class RoutingHandle:
    load_balancer_arn: pulumi.Output[str]
    dns_name: pulumi.Output[str]
    listener_arn: pulumi.Output[str]
    security_group_id: pulumi.Output[str]
    target_group_arns: dict[str, pulumi.Output[str]]
    default_action_configured: bool
    rules: list[aws.lb.ListenerRule] = field(default_factory=list)


class InternalRouting(pulumi.ComponentResource):
    """Internal application load balancer with a path-routed HTTP listener.

    The listener answers unmatched paths with a fixed response. Each rule
    forwards to its own IP target group; the target groups stay empty until
    the workload registers its replicas.
    """

    def __init__(
        self,
        name: str,
        network: NetworkHandle,
        listener: ListenerSpec,
        provider: aws.Provider,
        opts: pulumi.ResourceOptions | None = None,
    ):
        if listener.default_action is None:
            raise DependencyOrderError("listener", "default action")

        super().__init__("privgw:infrastructure:InternalRouting", name, None, opts)

        child_opts = pulumi.ResourceOptions(parent=self, provider=provider)

        target_ports = sorted({tg.port for tg in listener.target_groups})

        self.security_group = aws.ec2.SecurityGroup(
            f"{name}-alb-sg",
            vpc_id=network.vpc_id,
            description="HTTP into the internal load balancer",
            ingress=[
                aws.ec2.SecurityGroupIngressArgs(
                    protocol="tcp",
                    from_port=listener.port,
                    to_port=listener.port,
                    cidr_blocks=["0.0.0.0/0"],
                    description="HTTP from any source",
                ),
            ],
            egress=[
                aws.ec2.SecurityGroupEgressArgs(
                    protocol="tcp",
                    from_port=port,
                    to_port=port,
                    cidr_blocks=[network.vpc_cidr],
                    description="Targets inside the VPC",
                )
                for port in target_ports
            ],
            tags={
                "Name": f"{name}-alb-sg",
            },
            opts=child_opts,
        )

        self.load_balancer = aws.lb.LoadBalancer(
            f"{name}-alb",
            internal=True,
            load_balancer_type="application",
            security_groups=[self.security_group.id],
            subnets=network.isolated_subnet_ids,
            tags={
                "Name": f"{name}-alb",
            },
            opts=child_opts,
        )

        self.target_groups: dict[str, aws.lb.TargetGroup] = {}
        for target_group in listener.target_groups:
            self.target_groups[target_group.name] = aws.lb.TargetGroup(
                f"{name}-{target_group.name}-tg",
                port=target_group.port,
                protocol=target_group.protocol,
                target_type="ip",
                vpc_id=network.vpc_id,
                health_check=aws.lb.TargetGroupHealthCheckArgs(
                    path=target_group.health_check_path,
                    protocol=target_group.protocol,
                    matcher="200",
                    interval=30,
                    timeout=5,
                    healthy_threshold=5,
                    unhealthy_threshold=2,
                ),
                tags={
                    "Name": f"{name}-{target_group.name}-tg",
                },
                opts=child_opts,
            )

        fallback = listener.default_action
        self.listener = aws.lb.Listener(
            f"{name}-http-listener",
            load_balancer_arn=self.load_balancer.arn,
            port=listener.port,
            protocol=listener.protocol,
            default_actions=[
                aws.lb.ListenerDefaultActionArgs(
                    type="fixed-response",
                    fixed_response=aws.lb.ListenerDefaultActionFixedResponseArgs(
                        content_type=fallback.content_type,
                        message_body=fallback.message_body,
                        status_code=str(fallback.status_code),
                    ),
                ),
            ],
            opts=child_opts,
        )

        self.rules: list[aws.lb.ListenerRule] = []
        for rule in listener.rules:
            self.rules.append(
                aws.lb.ListenerRule(
                    f"{name}-rule-{rule.priority}",
                    listener_arn=self.listener.arn,
                    priority=rule.priority,
                    conditions=[
                        aws.lb.ListenerRuleConditionArgs(
                            path_pattern=aws.lb.ListenerRuleConditionPathPatternArgs(
                                values=list(rule.path_patterns),
                            ),
                        ),
                    ],
                    actions=[
                        aws.lb.ListenerRuleActionArgs(
                            type="forward",
                            target_group_arn=self.target_groups[rule.target_group].arn,
                        ),
                    ],
                    opts=child_opts,
                )
            )
            pulumi.log.debug(
                f"Rule {rule.priority}: {list(rule.path_patterns)} -> {rule.target_group}",
                resource=self,
            )

        self.handle = RoutingHandle(
            load_balancer_arn=self.load_balancer.arn,
            dns_name=self.load_balancer.dns_name,
            listener_arn=self.listener.arn,
            security_group_id=self.security_group.id,
            target_group_arns={n: tg.arn for n, tg in self.target_groups.items()},
            default_action_configured=True,
            rules=list(self.rules),
        )

        self.register_outputs(
            {
                "load_balancer_arn": self.load_balancer.arn,
                "dns_name": self.load_balancer.dns_name,
                "listener_arn": self.listener.arn,
                "target_group_arns": self.handle.target_group_arns,
            }
        )
