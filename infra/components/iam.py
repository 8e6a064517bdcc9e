import json

import pulumi
import pulumi_aws as aws

TASK_EXECUTION_POLICY_ARN = "arn:aws:iam::aws:policy/service-role/AmazonECSTaskExecutionRolePolicy"


class TaskIamRoles(pulumi.ComponentResource):
    """IAM role the ECS agent uses to pull the image and ship task logs."""

    def __init__(
        self,
        name: str,
        provider: aws.Provider,
        opts: pulumi.ResourceOptions | None = None,
    ):
        super().__init__("privgw:infrastructure:TaskIamRoles", name, None, opts)

        child_opts = pulumi.ResourceOptions(parent=self, provider=provider)

        self.execution_role = aws.iam.Role(
            f"{name}-task-execution-role",
            assume_role_policy=json.dumps(
                {
                    "Version": "2012-10-17",
                    "Statement": [
                        {
                            "Effect": "Allow",
                            "Principal": {"Service": "ecs-tasks.amazonaws.com"},
                            "Action": "sts:AssumeRole",
                        }
                    ],
                }
            ),
            opts=child_opts,
        )

        aws.iam.RolePolicyAttachment(
            f"{name}-task-execution-policy",
            role=self.execution_role.name,
            policy_arn=TASK_EXECUTION_POLICY_ARN,
            opts=child_opts,
        )

        self.execution_role_arn = self.execution_role.arn

        self.register_outputs({
            "execution_role_arn": self.execution_role_arn,
        })
