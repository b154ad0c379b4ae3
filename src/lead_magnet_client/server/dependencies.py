from fastapi import Request

from lead_magnet_client.client import DataClient
from lead_magnet_client.config import AuthConfig


def get_data_client(request: Request) -> DataClient:
    """The app-wide client; its in-flight registry must be shared by all requests."""
    return request.app.state.data_client


def get_auth_config(request: Request) -> AuthConfig:
    return request.app.state.auth


def client_meta(request: Request) -> dict:
    return {
        "user_agent": request.headers.get("user-agent"),
        "ip_address": request.client.host if request.client else None,
    }
