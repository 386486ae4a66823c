from fastapi import Request

from order_api.config import Settings
from order_api.services.identity import AuthContext, resolve_auth_context
from order_api.services.order_service import IntakeCoordinator


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_coordinator(request: Request) -> IntakeCoordinator:
    return request.app.state.coordinator


def get_auth_context(request: Request) -> AuthContext:
    settings = get_settings(request)
    return resolve_auth_context(
        request.headers,
        claims_header=settings.claims_header,
        api_key_header=settings.api_key_header,
    )


def get_request_id(request: Request) -> str:
    return getattr(request.state, "request_id", "unknown")
