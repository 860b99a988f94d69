"""
Access policy loader: which routes bypass subscription gating.

Loads the allowlist from config/access_policy.yml when present and falls
back to the built-in defaults otherwise. The allowlist is matched by path
prefix on path segment boundaries, so "/auth" covers "/auth/login" and
"/auth/refresh" but not "/authors".

Consumers:
  - SubscriptionGuardMiddleware: skip billing checks for allowlisted paths
  - create_app: build the guard with the loaded policy

Usage:
    from stockroom.config.access_policy import load_access_policy

    policy = load_access_policy()
    if policy.is_allowlisted("/billing/webhook"):
        ...
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from threading import Lock
from typing import FrozenSet, Optional, Tuple

import yaml

logger = logging.getLogger(__name__)

# Authentication endpoints and billing checkout/webhook/portal/status always
# bypass the guard. "/billing/" covers the remaining billing surface so a
# tenant with an expired subscription can still pay; "/users/me" lets the
# account load when access has lapsed; "/status" is the health check.
DEFAULT_ALLOWLIST_PREFIXES: Tuple[str, ...] = (
    "/auth",
    "/billing/checkout",
    "/billing/webhook",
    "/billing/portal",
    "/billing/status",
    "/billing/",
    "/users/me",
    "/status",
)

DEFAULT_STATIC_PREFIXES: Tuple[str, ...] = ("/assets/", "/static/")

DEFAULT_STATIC_EXACT: Tuple[str, ...] = ("/", "/index.html")

DEFAULT_STATIC_SUFFIXES: Tuple[str, ...] = (
    ".js", ".css", ".map", ".png", ".jpg", ".svg", ".ico", ".woff", ".woff2",
)


@dataclass(frozen=True)
class AccessPolicy:
    """
    Immutable allowlist for the subscription guard.

    Static assets are only exempt for GET requests; any other method on a
    static-looking path is gated like a regular API call.
    """

    allowlist_prefixes: Tuple[str, ...] = DEFAULT_ALLOWLIST_PREFIXES
    static_prefixes: Tuple[str, ...] = DEFAULT_STATIC_PREFIXES
    static_exact: FrozenSet[str] = frozenset(DEFAULT_STATIC_EXACT)
    static_suffixes: Tuple[str, ...] = DEFAULT_STATIC_SUFFIXES

    def is_allowlisted(self, path: str) -> bool:
        """
        Check if path is exempt from subscription gating.

        Prefixes match whole path segments: "/auth" covers "/auth" and
        "/auth/login" but not "/authors".
        """
        for prefix in self.allowlist_prefixes:
            base = prefix.rstrip("/")
            if path == prefix or path.startswith(base + "/"):
                return True
        return False

    def is_static_get(self, path: str, method: str) -> bool:
        """Check if this is a GET for a static frontend asset."""
        if method.upper() != "GET":
            return False
        if path in self.static_exact:
            return True
        if any(path.startswith(p) for p in self.static_prefixes):
            return True
        return path.endswith(self.static_suffixes)


def _candidate_paths(config_path: Optional[str]) -> list:
    if config_path:
        return [Path(config_path)]
    return [
        # From repository root (typical working dir)
        Path(__file__).parent.parent.parent.parent / "config" / "access_policy.yml",
        Path(os.getcwd()) / "config" / "access_policy.yml",
        Path(os.getcwd()) / ".." / "config" / "access_policy.yml",
    ]


def _as_tuple(raw, default: Tuple[str, ...], key: str) -> Tuple[str, ...]:
    if raw is None:
        return default
    if not isinstance(raw, list) or not all(isinstance(v, str) for v in raw):
        raise ValueError(f"access policy key '{key}' must be a list of strings")
    return tuple(raw)


def parse_access_policy(raw: dict) -> AccessPolicy:
    """
    Build an AccessPolicy from a parsed YAML mapping.

    Missing keys keep their defaults.

    Raises:
        ValueError: If a key has the wrong shape
    """
    static = raw.get("static") or {}
    return AccessPolicy(
        allowlist_prefixes=_as_tuple(
            raw.get("allowlist_prefixes"), DEFAULT_ALLOWLIST_PREFIXES, "allowlist_prefixes"
        ),
        static_prefixes=_as_tuple(
            static.get("prefixes"), DEFAULT_STATIC_PREFIXES, "static.prefixes"
        ),
        static_exact=frozenset(
            _as_tuple(static.get("exact"), DEFAULT_STATIC_EXACT, "static.exact")
        ),
        static_suffixes=_as_tuple(
            static.get("suffixes"), DEFAULT_STATIC_SUFFIXES, "static.suffixes"
        ),
    )


_policy: Optional[AccessPolicy] = None
_policy_lock = Lock()


def load_access_policy(config_path: Optional[str] = None, reload: bool = False) -> AccessPolicy:
    """
    Load the access policy, caching the result for the process.

    An explicitly configured path that does not exist is an error; when no
    path is configured and no candidate file exists the defaults are used.

    Args:
        config_path: Explicit YAML path (ACCESS_POLICY_PATH)
        reload: Re-read from disk even if cached

    Returns:
        AccessPolicy
    """
    global _policy

    with _policy_lock:
        if _policy is not None and not reload and config_path is None:
            return _policy

        for candidate in _candidate_paths(config_path):
            resolved = candidate.resolve()
            if resolved.exists():
                logger.info("Loading access policy from %s", resolved)
                with open(resolved, "r") as f:
                    raw = yaml.safe_load(f) or {}
                policy = parse_access_policy(raw)
                break
        else:
            if config_path:
                raise FileNotFoundError(f"access policy not found: {config_path}")
            logger.info("No access_policy.yml found, using default allowlist")
            policy = AccessPolicy()

        logger.info(
            "Loaded access policy with %d allowlisted prefixes",
            len(policy.allowlist_prefixes),
        )
        if config_path is None:
            _policy = policy
        return policy
