"""
Authority domain types (``threshold_kernel.domain.authority``).

The kernel never computes authority.  It asks an injected
``CapabilityOracle`` and gates on named capabilities, never on role
labels.  Roles appear only as notification audiences.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from enum import Enum
from typing import Protocol


class Capability(str, Enum):
    """Named permissions an actor may hold."""

    PORTFOLIO_VIEW = "PORTFOLIO_VIEW"
    PORTFOLIO_CONTROL = "PORTFOLIO_CONTROL"
    SYSTEM_ADMIN = "SYSTEM_ADMIN"
    COMPLIANCE_READ = "COMPLIANCE_READ"
    COMPLIANCE_WRITE = "COMPLIANCE_WRITE"
    DUAL_CONTROL_APPROVER = "DUAL_CONTROL_APPROVER"


# Capabilities required per workflow action.
PROPOSE_CAPABILITIES: tuple[Capability, ...] = (Capability.SYSTEM_ADMIN,)
DECIDE_CAPABILITIES: tuple[Capability, ...] = (
    Capability.SYSTEM_ADMIN,
    Capability.DUAL_CONTROL_APPROVER,
)


class CapabilityOracle(Protocol):
    """Pluggable interface supplying authority decisions."""

    def has_capability(self, actor: str, capability: Capability) -> bool:
        """Return True if ``actor`` currently holds ``capability``."""
        ...


class StaticCapabilityOracle:
    """Oracle backed by a fixed actor -> capabilities mapping.

    Used for demos and tests; production callers inject their own
    implementation of ``CapabilityOracle``.
    """

    def __init__(self, grants: Mapping[str, Iterable[Capability | str]] | None = None):
        self._grants: dict[str, frozenset[Capability]] = {}
        for actor, caps in (grants or {}).items():
            self.grant(actor, *caps)

    def grant(self, actor: str, *capabilities: Capability | str) -> None:
        current = self._grants.get(actor, frozenset())
        self._grants[actor] = current | {Capability(c) for c in capabilities}

    def revoke(self, actor: str, *capabilities: Capability | str) -> None:
        current = self._grants.get(actor, frozenset())
        self._grants[actor] = current - {Capability(c) for c in capabilities}

    def has_capability(self, actor: str, capability: Capability) -> bool:
        return capability in self._grants.get(actor, frozenset())


def missing_capabilities(
    oracle: CapabilityOracle,
    actor: str,
    required: Iterable[Capability],
) -> list[str]:
    return [c.value for c in required if not oracle.has_capability(actor, c)]


def held_capabilities(oracle: CapabilityOracle, actor: str) -> list[str]:
    """Snapshot of the actor's authority set, recorded on audit events."""
    return [c.value for c in Capability if oracle.has_capability(actor, c)]
