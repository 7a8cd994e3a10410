"""
Request dependencies.

Components are built once by ``create_app()`` and stored on ``app.state``;
these getters hand them to route handlers.
"""

from fastapi import Request
from starlette.requests import HTTPConnection

from gateway.config import Settings, get_settings
from gateway.core.messaging.orchestrator import SendOrchestrator
from gateway.core.session.broadcaster import StatusBroadcaster
from gateway.core.session.manager import SessionLifecycleManager


def get_app_settings(connection: HTTPConnection) -> Settings:
    """Settings the running app was built with."""
    return getattr(connection.app.state, "settings", None) or get_settings()


def get_session_manager(request: Request) -> SessionLifecycleManager:
    return request.app.state.session_manager


def get_orchestrator(request: Request) -> SendOrchestrator:
    return request.app.state.orchestrator


def get_broadcaster(connection: HTTPConnection) -> StatusBroadcaster:
    # HTTPConnection so the websocket route can use it too
    return connection.app.state.broadcaster
