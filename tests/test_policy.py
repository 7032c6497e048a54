"""
Tests for the access policy tiers.
"""

from __future__ import annotations

import pytest

from clawbox.errors import AccessDenied
from clawbox.models import AccessLevel, Action, AIActor, AppActor, HumanActor, SecretInfo, utcnow
from clawbox.policy import AllowAllPolicy, PolicyDecision, TieredAccessPolicy, enforce


def _info(level: AccessLevel) -> SecretInfo:
    now = utcnow()
    return SecretInfo(path="p", access=level, created_at=now, updated_at=now)


HUMAN = HumanActor(device="laptop")
AGENT = AIActor(agent="build-bot")
APP = AppActor(name="deploy")


@pytest.mark.parametrize("level,actor,expected", [
    (AccessLevel.PUBLIC, AGENT, PolicyDecision.ALLOW),
    (AccessLevel.NORMAL, APP, PolicyDecision.ALLOW),
    (AccessLevel.SENSITIVE, HUMAN, PolicyDecision.ALLOW),
    (AccessLevel.SENSITIVE, AGENT, PolicyDecision.REQUIRE_APPROVAL),
    (AccessLevel.SENSITIVE, APP, PolicyDecision.REQUIRE_APPROVAL),
    (AccessLevel.CRITICAL, HUMAN, PolicyDecision.ALLOW),
    (AccessLevel.CRITICAL, AGENT, PolicyDecision.DENY),
    (AccessLevel.CRITICAL, APP, PolicyDecision.DENY),
])
def test_tiers(level, actor, expected):
    assert TieredAccessPolicy().decide(actor, _info(level), Action.READ) == expected


def test_allow_all():
    decision = AllowAllPolicy().decide(AGENT, _info(AccessLevel.CRITICAL), Action.READ)
    assert decision == PolicyDecision.ALLOW


class TestEnforce:
    def test_allow_passes(self):
        enforce(PolicyDecision.ALLOW, "p")

    def test_approval_needed(self):
        with pytest.raises(AccessDenied, match="requires approval"):
            enforce(PolicyDecision.REQUIRE_APPROVAL, "p")
        enforce(PolicyDecision.REQUIRE_APPROVAL, "p", approved=True)

    def test_deny_ignores_approval(self):
        with pytest.raises(AccessDenied):
            enforce(PolicyDecision.DENY, "p", approved=True)
