"""
Request context passed explicitly into every refund engine operation.
"""
from dataclasses import dataclass
from typing import Optional

from tourpass.models.activity_log import ActorType


@dataclass(frozen=True)
class RequestActor:
    """Caller identity resolved by the API layer."""
    actor_id: Optional[int]
    actor_type: ActorType

    @classmethod
    def customer(cls, user_id: int) -> "RequestActor":
        return cls(actor_id=user_id, actor_type=ActorType.CUSTOMER)

    @classmethod
    def admin(cls, user_id: int) -> "RequestActor":
        return cls(actor_id=user_id, actor_type=ActorType.ADMIN)

    @classmethod
    def system(cls) -> "RequestActor":
        return cls(actor_id=None, actor_type=ActorType.SYSTEM)

    @property
    def is_admin(self) -> bool:
        return self.actor_type == ActorType.ADMIN
