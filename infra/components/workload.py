import json
from dataclasses import dataclass

import pulumi
import pulumi_aws as aws

from infra.components.endpoints import FabricHandle
from infra.components.iam import TaskIamRoles
from infra.components.load_balancer import RoutingHandle
from infra.components.networking import NetworkHandle
from infra.errors import UnknownTargetGroupError
from infra.models import WorkloadSpec


@dataclass(frozen=True)
class WorkloadHandle:
    cluster_name: pulumi.Output[str]
    service_name: pulumi.Output[str]
    task_definition_arn: pulumi.Output[str]
    security_group_id: pulumi.Output[str]
    log_group_name: pulumi.Output[str]
    target_groups: tuple[str, ...]


def container_definitions(
    workload: WorkloadSpec,
    image: str,
    log_group: str,
    region: str,
) -> str:
    """Render the task's container definition list."""
    task = workload.task
    return json.dumps(
        [
            {
                "name": task.container_name,
                "image": image,
                "essential": True,
                "portMappings": [
                    {
                        "containerPort": task.container_port,
                        "protocol": task.protocol,
                    }
                ],
                "logConfiguration": {
                    "logDriver": "awslogs",
                    "options": {
                        "awslogs-group": log_group,
                        "awslogs-region": region,
                        "awslogs-stream-prefix": task.log_stream_prefix,
                    },
                },
            }
        ]
    )


class ComputeWorkload(pulumi.ComponentResource):
    """Fargate service running the backend image in the isolated subnets.

    Every replica registers into each target group named by the workload, so
    one task definition serves all route families of the listener. Scaling is
    controlled only through the desired count; ECS converges the running
    tasks, replaces unhealthy ones and spreads them over the subnets.
    """

    def __init__(
        self,
        name: str,
        workload: WorkloadSpec,
        image_repository_url: str,
        region: str,
        network: NetworkHandle,
        fabric: FabricHandle,
        routing: RoutingHandle,
        provider: aws.Provider,
        opts: pulumi.ResourceOptions | None = None,
    ):
        for target_group in workload.target_groups:
            if target_group not in routing.target_group_arns:
                raise UnknownTargetGroupError(target_group, sorted(routing.target_group_arns))

        super().__init__("privgw:infrastructure:ComputeWorkload", name, None, opts)

        child_opts = pulumi.ResourceOptions(parent=self, provider=provider)
        task = workload.task

        self.cluster = aws.ecs.Cluster(
            f"{name}-cluster",
            name=workload.cluster_name,
            opts=child_opts,
        )

        self.log_group = aws.cloudwatch.LogGroup(
            f"{name}-logs",
            name=f"/ecs/{workload.cluster_name}",
            retention_in_days=task.log_retention_days,
            opts=child_opts,
        )

        self.iam = TaskIamRoles(
            name=name,
            provider=provider,
            opts=pulumi.ResourceOptions(parent=self),
        )

        # Registry, logs and object storage are only reachable through the fabric.
        egress = [
            aws.ec2.SecurityGroupEgressArgs(
                protocol="tcp",
                from_port=443,
                to_port=443,
                security_groups=[fabric.security_group_id],
                description="Interface endpoints",
            ),
        ]
        if fabric.prefix_list_ids:
            egress.append(
                aws.ec2.SecurityGroupEgressArgs(
                    protocol="tcp",
                    from_port=443,
                    to_port=443,
                    prefix_list_ids=list(fabric.prefix_list_ids),
                    description="Gateway endpoints",
                )
            )

        self.security_group = aws.ec2.SecurityGroup(
            f"{name}-task-sg",
            vpc_id=network.vpc_id,
            description="Container port from the internal load balancer",
            ingress=[
                aws.ec2.SecurityGroupIngressArgs(
                    protocol="tcp",
                    from_port=task.container_port,
                    to_port=task.container_port,
                    security_groups=[routing.security_group_id],
                    description="Load balancer to container",
                ),
            ],
            egress=egress,
            tags={
                "Name": f"{name}-task-sg",
            },
            opts=child_opts,
        )

        image = f"{image_repository_url}:{task.image_tag}"

        self.task_definition = aws.ecs.TaskDefinition(
            f"{name}-task",
            family=workload.cluster_name,
            cpu=str(task.cpu),
            memory=str(task.memory),
            network_mode="awsvpc",
            requires_compatibilities=["FARGATE"],
            execution_role_arn=self.iam.execution_role_arn,
            container_definitions=self.log_group.name.apply(
                lambda log_group: container_definitions(workload, image, log_group, region)
            ),
            opts=child_opts,
        )

        # ECS rejects target groups that are not yet attached to a listener.
        self.service = aws.ecs.Service(
            f"{name}-service",
            cluster=self.cluster.arn,
            task_definition=self.task_definition.arn,
            desired_count=workload.desired_count,
            launch_type="FARGATE",
            network_configuration=aws.ecs.ServiceNetworkConfigurationArgs(
                assign_public_ip=False,
                subnets=network.isolated_subnet_ids,
                security_groups=[self.security_group.id],
            ),
            load_balancers=[
                aws.ecs.ServiceLoadBalancerArgs(
                    target_group_arn=routing.target_group_arns[target_group],
                    container_name=task.container_name,
                    container_port=task.container_port,
                )
                for target_group in workload.target_groups
            ],
            opts=pulumi.ResourceOptions(
                parent=self,
                provider=provider,
                depends_on=list(routing.rules),
            ),
        )

        pulumi.log.info(
            f"{workload.desired_count} x {image} registered in {', '.join(workload.target_groups)}",
            resource=self,
        )

        self.handle = WorkloadHandle(
            cluster_name=self.cluster.name,
            service_name=self.service.name,
            task_definition_arn=self.task_definition.arn,
            security_group_id=self.security_group.id,
            log_group_name=self.log_group.name,
            target_groups=workload.target_groups,
        )

        self.register_outputs({
            "cluster_name": self.cluster.name,
            "service_name": self.service.name,
            "task_definition_arn": self.task_definition.arn,
        })
