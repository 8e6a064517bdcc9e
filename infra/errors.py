"""Exceptions raised while building the gateway topology.

Hierarchy:
- TopologyError (base)
  - ConfigurationError
    - DuplicatePriorityError
    - ZoneCapacityError
    - ImageRepositoryNotFoundError
    - UnknownTargetGroupError
  - DependencyOrderError

Every error here is fatal at provisioning time. Nothing is retried and the
Pulumi engine aborts the update when one propagates out of the program.
"""

from typing import Any


class TopologyError(Exception):
    """Base class for all topology construction failures."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ConfigurationError(TopologyError):
    """Stack configuration cannot produce a valid topology."""


class DuplicatePriorityError(ConfigurationError):
    """A listener rule reuses a priority that is already taken.

    Example:
        >>> rules = ListenerRuleSet()
        >>> rules.add_rule(1, ["/"], "root")
        >>> rules.add_rule(1, ["/customers"], "customers")
        Traceback (most recent call last):
        ...
        DuplicatePriorityError: Listener rule priority 1 is already used by target group 'root'
    """

    def __init__(self, priority: int, existing_target_group: str) -> None:
        super().__init__(
            f"Listener rule priority {priority} is already used by "
            f"target group '{existing_target_group}'",
            details={"priority": priority, "existing_target_group": existing_target_group},
        )
        self.priority = priority
        self.existing_target_group = existing_target_group


class ZoneCapacityError(ConfigurationError):
    """More availability zones were requested than the region exposes."""

    def __init__(self, requested: int, available: list[str]) -> None:
        super().__init__(
            f"Requested {requested} availability zones but only "
            f"{len(available)} are available: {available}",
            details={"requested": requested, "available": list(available)},
        )
        self.requested = requested
        self.available = list(available)


class ImageRepositoryNotFoundError(ConfigurationError):
    """The container image repository does not exist."""

    def __init__(self, repository: str, reason: str | None = None) -> None:
        msg = f"Container image repository not found: {repository}"
        if reason:
            msg = f"{msg} ({reason})"
        super().__init__(msg, details={"repository": repository})
        self.repository = repository


class UnknownTargetGroupError(ConfigurationError):
    """A rule or workload binding references a target group nobody declared."""

    def __init__(self, target_group: str, known: list[str]) -> None:
        super().__init__(
            f"Unknown target group '{target_group}', declared target groups: {known}",
            details={"target_group": target_group, "known": list(known)},
        )
        self.target_group = target_group


class DependencyOrderError(TopologyError):
    """A construction step was requested before the steps it depends on."""

    def __init__(self, step: str, missing: str) -> None:
        super().__init__(
            f"Cannot construct '{step}': '{missing}' is not ready",
            details={"step": step, "missing": missing},
        )
        self.step = step
        self.missing = missing
