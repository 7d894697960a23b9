"""Decomposition policies: pure functions producing an ordered list of subtask specs."""

from __future__ import annotations

from collections.abc import Callable, Iterable

from swarm_dispatch.coordinator.errors import ConfigurationError
from swarm_dispatch.coordinator.models import SubtaskSpec

DecompositionPolicy = Callable[[], list[SubtaskSpec]]


def fixed_policy(items: Iterable[tuple[str, str] | SubtaskSpec]) -> DecompositionPolicy:
    """Build a policy that always returns ``items`` in the given order."""

    specs = tuple(
        item if isinstance(item, SubtaskSpec) else SubtaskSpec(title=item[0], description=item[1])
        for item in items
    )

    def _policy() -> list[SubtaskSpec]:
        return [SubtaskSpec(title=spec.title, description=spec.description) for spec in specs]

    return _policy


class PolicyRegistry:
    """Named decomposition policies, swappable per task kind."""

    def __init__(self) -> None:
        self._policies: dict[str, DecompositionPolicy] = {}

    def register(self, name: str, policy: DecompositionPolicy) -> None:
        normalized = name.strip()
        if not normalized:
            raise ValueError("Policy name must be non-empty.")
        self._policies[normalized] = policy

    def resolve(self, name: str) -> DecompositionPolicy:
        policy = self._policies.get(name.strip())
        if policy is None:
            known = ", ".join(self.names()) or "<none>"
            raise ConfigurationError(f"Unknown decomposition policy: {name!r} (known: {known})")
        return policy

    def names(self) -> list[str]:
        return sorted(self._policies)


RESEARCH_ORLEANS = fixed_policy(
    [
        (
            "Research Virtual Actor Model and Grains",
            "Investigate how Orleans implements the Virtual Actor Model, grain lifecycle, "
            "activation/deactivation, and grain identity.",
        ),
        (
            "Research Persistence and State Management",
            "Explore grain state persistence options, storage providers, transaction support, "
            "and consistency models across distributed instances.",
        ),
        (
            "Research Communication Patterns",
            "Study grain-to-grain messaging, streaming API, timers, reminders, and message "
            "delivery guarantees.",
        ),
        (
            "Research Distributed Systems Capabilities",
            "Investigate clustering, silo architecture, membership protocols, scaling, and "
            "fault tolerance under node failures and network partitions.",
        ),
        (
            "Synthesize Relevance for Agent Swarm Coordination",
            "Analyze how Orleans capabilities map to distributed agent swarm coordination "
            "requirements and list actionable insights.",
        ),
    ],
)


def default_registry() -> PolicyRegistry:
    registry = PolicyRegistry()
    registry.register("research-orleans", RESEARCH_ORLEANS)
    return registry
