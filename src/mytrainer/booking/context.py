"""Request-scoped actor passed explicitly into every core operation."""

from dataclasses import dataclass
from enum import StrEnum

from mytrainer.booking.errors import AuthorizationError


class ActorRole(StrEnum):
    TRAINER = "trainer"
    CLIENT = "client"


@dataclass(frozen=True)
class Actor:
    role: ActorRole
    id: int

    @property
    def is_trainer(self) -> bool:
        return self.role is ActorRole.TRAINER

    @property
    def is_client(self) -> bool:
        return self.role is ActorRole.CLIENT

    def require_trainer(self, trainer_id: int, message: str | None = None) -> None:
        if not (self.is_trainer and self.id == trainer_id):
            raise AuthorizationError(message or "Only the owning trainer can do this.")

    def can_act_for(self, trainer_id: int, client_id: int) -> bool:
        """True for the owning trainer or the client themselves."""
        if self.is_trainer:
            return self.id == trainer_id
        return self.id == client_id
