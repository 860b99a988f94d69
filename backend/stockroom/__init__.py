"""Stockroom API: multi-tenant inventory backend with subscription-gated access."""
