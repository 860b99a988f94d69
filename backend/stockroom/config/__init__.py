"""
Configuration for the Stockroom API.

- settings: environment-driven runtime settings
- access_policy: subscription guard allowlist loaded from YAML
"""

from stockroom.config.settings import Settings, get_settings
from stockroom.config.access_policy import AccessPolicy, load_access_policy

__all__ = [
    "Settings",
    "get_settings",
    "AccessPolicy",
    "load_access_policy",
]
