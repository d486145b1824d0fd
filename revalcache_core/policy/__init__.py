"""Policy module - Cache policies and read decisions."""

from revalcache_core.policy.policy import (
    PolicyKind,
    NoStore,
    ForceCache,
    Revalidate,
    CachePolicy,
    validate_policy,
    validate_tags,
    policy_from_options,
)
from revalcache_core.policy.engine import Decision, RevalidationPolicyEngine

__all__ = [
    "PolicyKind",
    "NoStore",
    "ForceCache",
    "Revalidate",
    "CachePolicy",
    "validate_policy",
    "validate_tags",
    "policy_from_options",
    "Decision",
    "RevalidationPolicyEngine",
]
