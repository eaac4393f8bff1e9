"""Request-scoped dependencies: the acting user, the clock and the notifier."""

import secrets
from datetime import datetime

from fastapi import Depends, Header, Request

from mytrainer.booking.context import Actor, ActorRole
from mytrainer.booking.errors import AuthorizationError
from mytrainer.booking.timeutils import utcnow
from mytrainer.config import get_settings
from mytrainer.notifications.dispatcher import NotificationDispatcher


async def check_api_token(authorization: str | None = Header(default=None)) -> None:
    """Enforce `Authorization: Bearer <api_token>` when a token is configured."""
    expected = get_settings().api_token
    if not expected:
        return
    scheme, _, token = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or not secrets.compare_digest(token, expected):
        raise AuthorizationError("Invalid or missing API token.", authenticated=False)


async def get_actor(
    _: None = Depends(check_api_token),
    x_actor_role: str | None = Header(default=None),
    x_actor_id: str | None = Header(default=None),
) -> Actor:
    if not x_actor_role or not x_actor_id:
        raise AuthorizationError("Missing actor headers.", authenticated=False)
    try:
        return Actor(ActorRole(x_actor_role.lower()), int(x_actor_id))
    except ValueError:
        raise AuthorizationError("Malformed actor headers.", authenticated=False) from None


def get_now() -> datetime:
    return utcnow()


def get_dispatcher(request: Request) -> NotificationDispatcher:
    return request.app.state.dispatcher
