from fastapi import Request
from slowapi.util import get_remote_address

from relay.gateway.gateway import RelayGateway


def get_gateway(request: Request) -> RelayGateway:
    return request.app.state.gateway


def get_client_id(request: Request) -> str:
    """Client identity for rate limiting: the remote address."""
    return get_remote_address(request)
