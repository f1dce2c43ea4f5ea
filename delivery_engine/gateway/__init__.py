"""Remote task gateway."""

from delivery_engine.gateway.base import RemoteTaskGateway
from delivery_engine.gateway.http import HttpTaskGateway

__all__ = ["RemoteTaskGateway", "HttpTaskGateway"]
