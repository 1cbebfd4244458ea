"""
FastAPI dependency injection for the proxy service.
"""

from fastapi import Request

from deeptutor.gateway.transports import DirectTransport


def get_transport(request: Request) -> DirectTransport:
    """Get the server-side backend transport from lifespan state."""
    return request.app.state.transport
