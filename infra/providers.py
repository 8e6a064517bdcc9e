"""AWS provider and provisioning-time lookups."""

from typing import Optional

import pulumi
import pulumi_aws as aws

from infra.config import StackConfig
from infra.errors import ImageRepositoryNotFoundError


def create_aws_provider(config: StackConfig) -> aws.Provider:
    return aws.Provider(
        f"{config.name_prefix}-aws",
        region=config.aws_region,
        default_tags=aws.ProviderDefaultTagsArgs(tags=config.tags),
    )


def _invoke_opts(provider: Optional[aws.Provider]) -> Optional[pulumi.InvokeOptions]:
    return pulumi.InvokeOptions(provider=provider) if provider is not None else None


def available_zone_names(provider: Optional[aws.Provider] = None) -> list[str]:
    """Names of the availability zones currently usable in the region."""
    zones = aws.get_availability_zones(state="available", opts=_invoke_opts(provider))
    return list(zones.names or [])


def resolve_image_repository(name: str, provider: Optional[aws.Provider] = None) -> str:
    """Look up an existing ECR repository and return its URL.

    Args:
        name: Repository name
        provider: Provider to run the lookup with

    Returns:
        The repository URL, without a tag

    Raises:
        ImageRepositoryNotFoundError: If the lookup fails
    """
    try:
        repository = aws.ecr.get_repository(name=name, opts=_invoke_opts(provider))
    except Exception as e:
        raise ImageRepositoryNotFoundError(name, str(e)) from e

    if not repository.repository_url:
        raise ImageRepositoryNotFoundError(name, "lookup returned no repository URL")
    return repository.repository_url
