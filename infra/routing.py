"""Request-time routing model for the internal listener and the public bridge.

The load balancer and the HTTP API evaluate the provisioned topology on
their own. This module reproduces their evaluation rules so the topology can
be checked before it is provisioned:

- Listener rules are evaluated in ascending priority; the first rule whose
  path patterns match wins. Patterns match the whole path, case sensitive,
  with ``*`` matching any run of characters and ``?`` exactly one.
- A winning rule forwards to a healthy target of its target group. When the
  group has no healthy target the result is a 503; there is no fallback to
  another rule.
- When no rule matches, the listener's fixed response is returned.
- The bridge route ``ANY /{proxy+}`` forwards method and path unchanged.
"""

import re
import zlib
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Iterable, Mapping, Optional, Sequence, Union

from infra.errors import DependencyOrderError, DuplicatePriorityError
from infra.models import BridgeSpec, FixedResponse, ListenerSpec, RoutingRule

HTTP_METHODS = ("GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS")

GATEWAY_NOT_FOUND = '{"message":"Not Found"}'
SERVICE_UNAVAILABLE = "503 Service Temporarily Unavailable"


@dataclass(frozen=True)
class Forward:
    """The request is dispatched to one target of a target group."""

    priority: int
    target_group: str
    target: str
    method: str
    path: str


@dataclass(frozen=True)
class Respond:
    """The request is answered without reaching a target."""

    status_code: int
    body: str
    content_type: str = "text/plain"
    reason: str = "default-action"


RouteDecision = Union[Forward, Respond]


@lru_cache(maxsize=256)
def _compile_path_pattern(pattern: str) -> re.Pattern:
    parts = []
    for char in pattern:
        if char == "*":
            parts.append(".*")
        elif char == "?":
            parts.append(".")
        else:
            parts.append(re.escape(char))
    return re.compile("".join(parts), re.DOTALL)


def path_matches(pattern: str, path: str) -> bool:
    """Check a request path against a listener path pattern."""
    return _compile_path_pattern(pattern).fullmatch(path) is not None


def rule_matches(rule: RoutingRule, path: str) -> bool:
    return any(path_matches(pattern, path) for pattern in rule.path_patterns)


class TargetHealth:
    """Registered targets per target group and their health state."""

    def __init__(self) -> None:
        self._targets: dict[str, dict[str, bool]] = {}

    @classmethod
    def from_members(cls, members: Mapping[str, Iterable[str]]) -> "TargetHealth":
        health = cls()
        for target_group, targets in members.items():
            health.ensure_group(target_group)
            for target in targets:
                health.register(target_group, target)
        return health

    def ensure_group(self, target_group: str) -> None:
        self._targets.setdefault(target_group, {})

    def register(self, target_group: str, target: str) -> None:
        self._targets.setdefault(target_group, {})[target] = True

    def deregister(self, target_group: str, target: str) -> None:
        self._targets.get(target_group, {}).pop(target, None)

    def mark_unhealthy(self, target_group: str, target: str) -> None:
        if target in self._targets.get(target_group, {}):
            self._targets[target_group][target] = False

    def mark_healthy(self, target_group: str, target: str) -> None:
        if target in self._targets.get(target_group, {}):
            self._targets[target_group][target] = True

    def members(self, target_group: str) -> list[str]:
        return sorted(self._targets.get(target_group, {}))

    def healthy_targets(self, target_group: str) -> list[str]:
        return sorted(t for t, ok in self._targets.get(target_group, {}).items() if ok)

    @property
    def target_groups(self) -> list[str]:
        return sorted(self._targets)


def _pick_target(targets: Sequence[str], path: str) -> str:
    return targets[zlib.crc32(path.encode("utf-8")) % len(targets)]


def evaluate(
    rules: Iterable[RoutingRule],
    default_action: FixedResponse,
    path: str,
    health: TargetHealth,
    method: str = "GET",
) -> RouteDecision:
    """Decide what the listener does with one request.

    Args:
        rules: Listener rules in any order
        default_action: Fixed response used when no rule matches
        path: Request path as received by the listener
        health: Current target registrations and health
        method: HTTP method, carried through unchanged

    Returns:
        A Forward to a healthy target, or a Respond with the fixed
        response or a 503 when the matched group has no healthy target
    """
    for rule in sorted(rules, key=lambda r: r.priority):
        if not rule_matches(rule, path):
            continue
        healthy = health.healthy_targets(rule.target_group)
        if not healthy:
            return Respond(
                status_code=503,
                body=SERVICE_UNAVAILABLE,
                content_type="text/html",
                reason="no-healthy-targets",
            )
        return Forward(
            priority=rule.priority,
            target_group=rule.target_group,
            target=_pick_target(healthy, path),
            method=method,
            path=path,
        )

    return Respond(
        status_code=default_action.status_code,
        body=default_action.message_body,
        content_type=default_action.content_type,
    )


class ListenerRuleSet:
    """Ordered, priority-unique rule list of one listener."""

    def __init__(
        self,
        default_action: Optional[FixedResponse] = None,
        rules: Iterable[RoutingRule] = (),
    ) -> None:
        self.default_action = default_action
        self._rules: dict[int, RoutingRule] = {}
        for rule in rules:
            self._add(rule)

    @classmethod
    def from_listener(cls, listener: ListenerSpec) -> "ListenerRuleSet":
        return cls(default_action=listener.default_action, rules=listener.rules)

    def _add(self, rule: RoutingRule) -> RoutingRule:
        existing = self._rules.get(rule.priority)
        if existing is not None:
            raise DuplicatePriorityError(rule.priority, existing.target_group)
        self._rules[rule.priority] = rule
        return rule

    def add_rule(
        self,
        priority: int,
        path_patterns: Sequence[str],
        target_group: str,
        health_check_path: str = "/",
    ) -> RoutingRule:
        """Add a rule, rejecting a priority that is already in use.

        Raises:
            DuplicatePriorityError: If another rule has the same priority
        """
        rule = RoutingRule(
            priority=priority,
            path_patterns=tuple(path_patterns),
            target_group=target_group,
            health_check_path=health_check_path,
        )
        return self._add(rule)

    @property
    def rules(self) -> tuple[RoutingRule, ...]:
        return tuple(self._rules[p] for p in sorted(self._rules))

    @property
    def priorities(self) -> tuple[int, ...]:
        return tuple(sorted(self._rules))

    def match(self, path: str) -> Optional[RoutingRule]:
        for rule in self.rules:
            if rule_matches(rule, path):
                return rule
        return None

    def evaluate(self, path: str, health: TargetHealth, method: str = "GET") -> RouteDecision:
        if self.default_action is None:
            raise DependencyOrderError("listener evaluation", "listener default action")
        return evaluate(self._rules.values(), self.default_action, path, health, method)

    def __len__(self) -> int:
        return len(self._rules)


@dataclass(frozen=True)
class ForwardedRequest:
    """A request as the bridge hands it to the internal listener."""

    method: str
    path: str
    path_parameters: dict[str, str] = field(default_factory=dict)


@lru_cache(maxsize=64)
def _compile_route_path(route_path: str) -> re.Pattern:
    segments = []
    for segment in route_path.strip("/").split("/"):
        greedy = re.fullmatch(r"\{([A-Za-z0-9_]+)\+\}", segment)
        single = re.fullmatch(r"\{([A-Za-z0-9_]+)\}", segment)
        if greedy:
            segments.append(f"(?P<{greedy.group(1)}>.+)")
        elif single:
            segments.append(f"(?P<{single.group(1)}>[^/]+)")
        else:
            segments.append(re.escape(segment))
    return re.compile("/" + "/".join(segments))


def bridge_forward(bridge: BridgeSpec, method: str, path: str) -> Union[ForwardedRequest, Respond]:
    """Match a public request against the bridge route.

    ``{proxy+}`` needs at least one character after the leading slash, so a
    request for ``/`` alone is answered by the gateway with a 404.
    """
    method = method.upper()
    if bridge.route_method != "ANY" and method != bridge.route_method:
        return Respond(404, GATEWAY_NOT_FOUND, "application/json", reason="no-route")
    matched = _compile_route_path(bridge.route_path).fullmatch(path)
    if matched is None:
        return Respond(404, GATEWAY_NOT_FOUND, "application/json", reason="no-route")
    return ForwardedRequest(method=method, path=path, path_parameters=matched.groupdict())


def route_public_request(
    bridge: BridgeSpec,
    rule_set: ListenerRuleSet,
    health: TargetHealth,
    method: str,
    path: str,
) -> RouteDecision:
    """Follow a public request through the bridge into the listener."""
    forwarded = bridge_forward(bridge, method, path)
    if isinstance(forwarded, Respond):
        return forwarded
    return rule_set.evaluate(forwarded.path, health, forwarded.method)
