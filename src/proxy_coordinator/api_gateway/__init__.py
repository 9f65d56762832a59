"""
API Gateway for the proxy coordinator.

Provides HTTP endpoints for registration, token issuance and registry
queries, and the WebSocket endpoint proxy nodes keep open.
"""

from .gateway import create_app, main, CoordinatorGateway

__all__ = ["create_app", "main", "CoordinatorGateway"]
