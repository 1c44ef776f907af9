"""Request identity extraction.

Identity is supplied by a trusted proxy through headers. Authorization
decisions beyond project ownership scoping are not made here.
"""

from __future__ import annotations

from dataclasses import dataclass

from fastapi import Header, HTTPException, Query, status

from buildtrack.core.config import get_settings

SANDBOX_MODE = "sandbox"


@dataclass(frozen=True)
class RequestUserContext:
    """Request actor. The sandbox identity has no owner and sees shared resources."""

    owner_id: str | None
    email: str | None
    display_name: str | None
    sandbox: bool = False

    @property
    def audit_name(self) -> str | None:
        """Value recorded in audit fields such as ``Payment.created_by``."""

        return self.owner_id


SANDBOX_CONTEXT = RequestUserContext(owner_id=None, email=None, display_name=None, sandbox=True)


def _require_identity_headers(
    x_user_id: str | None,
    x_user_email: str | None,
    x_user_display_name: str | None,
) -> RequestUserContext:
    if not x_user_id or not x_user_email:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=(
                "Missing identity headers. Expected X-User-Id and X-User-Email, "
                "request sandbox mode or enable development principal fallback."
            ),
        )

    email = x_user_email.strip().lower()
    display_name = (x_user_display_name or email).strip()
    return RequestUserContext(owner_id=x_user_id.strip(), email=email, display_name=display_name)


def resolve_identity(
    *,
    mode: str | None,
    x_user_id: str | None,
    x_user_email: str | None,
    x_user_display_name: str | None,
) -> RequestUserContext:
    settings = get_settings()
    if mode is not None and mode.strip().lower() == SANDBOX_MODE:
        if not settings.auth_allow_sandbox:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Sandbox mode is disabled.",
            )
        return SANDBOX_CONTEXT

    if x_user_id and x_user_email:
        return _require_identity_headers(x_user_id, x_user_email, x_user_display_name)

    if settings.auth_allow_dev_principal:
        return RequestUserContext(
            owner_id=settings.auth_dev_user_id.strip(),
            email=settings.auth_dev_email.strip().lower(),
            display_name=settings.auth_dev_display_name.strip(),
        )

    return _require_identity_headers(x_user_id, x_user_email, x_user_display_name)


def get_current_user_context(
    mode: str | None = Query(default=None),
    x_user_id: str | None = Header(default=None, alias="X-User-Id"),
    x_user_email: str | None = Header(default=None, alias="X-User-Email"),
    x_user_display_name: str | None = Header(default=None, alias="X-User-Display-Name"),
) -> RequestUserContext:
    """Resolve current request identity.

    Header strategy:
    - ``?mode=sandbox`` yields the shared sandbox identity.
    - Otherwise trusted headers from proxy / test clients, with an optional
      development principal fallback.
    """

    return resolve_identity(
        mode=mode,
        x_user_id=x_user_id,
        x_user_email=x_user_email,
        x_user_display_name=x_user_display_name,
    )
