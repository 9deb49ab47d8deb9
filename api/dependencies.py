"""Request-scoped access to the shared case registry."""

from fastapi import Request

from src.pipeline.registry import CaseRegistry


def get_registry(request: Request) -> CaseRegistry:
    """Return the registry attached to the app at startup."""
    return request.app.state.registry
