"""
FastAPI dependencies shared by the v1 routers.
"""

from typing import Dict

from nodeflow.models.provider_registry import Provider
from nodeflow.providers.base import ProviderAdapter


def get_adapters() -> Dict[Provider, ProviderAdapter]:
    """
    Adapter overrides for request-scoped runs.

    Empty means every provider uses its default adapter. Tests replace this
    through `app.dependency_overrides`.
    """
    return {}
