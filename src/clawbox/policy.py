"""
Access policy — what an actor may do with a secret of a given level.

The vault only gates on locked/unlocked. Everything finer-grained lives
here, behind the AccessPolicy interface, so callers (the CLI, the
bridge, an agent runtime) can swap in their own rules.

Default tiers (TieredAccessPolicy):

    PUBLIC     anyone
    NORMAL     anyone (the vault must still be unlocked)
    SENSITIVE  humans freely; AI agents and apps need approval
    CRITICAL   humans only
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from enum import Enum

from .errors import AccessDenied
from .models import AccessLevel, Action, Actor, SecretInfo


class PolicyDecision(str, Enum):
    """Outcome of a policy check."""

    ALLOW = "allow"
    REQUIRE_APPROVAL = "require_approval"
    DENY = "deny"


class AccessPolicy(ABC):
    """Decides whether an actor may perform an action on a secret."""

    @abstractmethod
    def decide(
        self, actor: Actor, info: SecretInfo, action: Action
    ) -> PolicyDecision:
        """Return the decision for actor performing action on info."""


class TieredAccessPolicy(AccessPolicy):
    """The default access-level tiers."""

    def decide(
        self, actor: Actor, info: SecretInfo, action: Action
    ) -> PolicyDecision:
        is_human = actor.kind == "human"
        if info.access <= AccessLevel.NORMAL:
            return PolicyDecision.ALLOW
        if info.access == AccessLevel.SENSITIVE:
            return PolicyDecision.ALLOW if is_human else PolicyDecision.REQUIRE_APPROVAL
        return PolicyDecision.ALLOW if is_human else PolicyDecision.DENY


class AllowAllPolicy(AccessPolicy):
    """Allows everything. For single-user setups and tests."""

    def decide(
        self, actor: Actor, info: SecretInfo, action: Action
    ) -> PolicyDecision:
        return PolicyDecision.ALLOW


def enforce(decision: PolicyDecision, path: str, approved: bool = False) -> None:
    """Raise AccessDenied unless the decision (plus any approval) permits access.

    Args:
        decision: Result of AccessPolicy.decide().
        path: Secret path, used in the error message.
        approved: Whether a human approved a REQUIRE_APPROVAL decision.

    Raises:
        AccessDenied: On DENY, or REQUIRE_APPROVAL without approval.
    """
    if decision == PolicyDecision.ALLOW:
        return
    if decision == PolicyDecision.REQUIRE_APPROVAL:
        if approved:
            return
        raise AccessDenied(f"{path} requires approval")
    raise AccessDenied(f"{path} is restricted to human operators")
