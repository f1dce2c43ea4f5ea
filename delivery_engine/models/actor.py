"""Current-actor identity as handed over by the auth layer."""

from enum import Enum

from pydantic import BaseModel, Field


class ActorRole(str, Enum):
    """Marketplace roles."""

    CUSTOMER = "customer"
    VENDOR = "vendor"
    DELIVERY = "delivery"
    ADMIN = "admin"


class Actor(BaseModel):
    """The logged-in user; read-only for the engine."""

    id: str = Field(min_length=1)
    role: ActorRole

    @property
    def is_delivery_partner(self) -> bool:
        """Check if this actor may work delivery tasks."""
        return self.role == ActorRole.DELIVERY
