"""Request identity dependencies.

The upstream gateway authenticates shoppers and sellers and forwards
their identity in headers; this service only checks roles.
"""

from typing import Annotated

from fastapi import Header, HTTPException, status

from marketplace.application.cart_service import CartOwner
from marketplace.domain.value_objects import Actor, ActorRole


def _unauthenticated(message: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail={"error_code": "UNAUTHENTICATED", "message": message},
    )


def get_actor(
    x_user_id: Annotated[str | None, Header()] = None,
    x_user_role: Annotated[str | None, Header()] = None,
) -> Actor:
    """Resolve the calling user and role.

    Raises:
        HTTPException: 401 without a user id, 400 for an unknown role.
    """
    if not x_user_id:
        raise _unauthenticated("X-User-Id header is required")
    try:
        role = ActorRole(x_user_role or ActorRole.USER.value)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={
                "error_code": "INVALID_ROLE",
                "message": f"Unknown role: {x_user_role}",
                "details": {"allowed": [r.value for r in ActorRole]},
            },
        ) from None
    return Actor(id=x_user_id, role=role)


def get_cart_owner(
    x_user_id: Annotated[str | None, Header()] = None,
    x_guest_token: Annotated[str | None, Header()] = None,
) -> CartOwner:
    """Signed-in users own their persisted cart; guests own a token cart."""
    if x_user_id:
        return CartOwner.user(x_user_id)
    if x_guest_token:
        return CartOwner.guest(x_guest_token)
    raise _unauthenticated("X-User-Id or X-Guest-Token header is required")
