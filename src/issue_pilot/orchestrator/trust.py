"""Trust-tier resolution for the actor that triggered a run.

Free of side effects: the caller reads actor identity and permission from the
environment and passes them in.
"""

from __future__ import annotations

from collections.abc import Iterable

from issue_pilot.config import TrustPolicy, UntrustedBehavior
from issue_pilot.orchestrator.models import Admission, TrustTier


def resolve_trust_tier(
    actor: str,
    actor_permission: str,
    policy: TrustPolicy | None,
) -> TrustTier:
    """Map actor identity and repository permission to a trust tier.

    Priority: no policy -> trusted; explicit trusted user -> trusted (regardless
    of permission); semi-trusted permission -> semi-trusted; anything else ->
    untrusted.
    """

    if policy is None:
        return TrustTier.TRUSTED
    if actor in _as_members(policy.trusted_users):
        return TrustTier.TRUSTED
    if actor_permission in _as_members(policy.semi_trusted_roles):
        return TrustTier.SEMI_TRUSTED
    return TrustTier.UNTRUSTED


def decide_admission(tier: TrustTier, policy: TrustPolicy | None) -> Admission:
    """Turn a trust tier into the pipeline's admission outcome."""

    if tier is not TrustTier.UNTRUSTED:
        return Admission.PROCEED
    behavior = policy.untrusted_behavior if policy is not None else UntrustedBehavior.BLOCK
    if behavior is UntrustedBehavior.READ_ONLY_RESPONSE:
        return Admission.REJECT_READ_ONLY
    return Admission.REJECT_BLOCKED


def _as_members(value: Iterable[str] | None) -> frozenset[str]:
    if not isinstance(value, (list, tuple, set, frozenset)):
        return frozenset()
    return frozenset(item for item in value if isinstance(item, str))
