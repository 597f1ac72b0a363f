"""HTTP API boundary for the dashboard backend."""

from arkdash.api.client import ArkApiClient

__all__ = ["ArkApiClient"]
