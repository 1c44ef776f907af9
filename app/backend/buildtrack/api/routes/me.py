"""Current user endpoint."""

from fastapi import APIRouter, Depends

from buildtrack.core.auth import RequestUserContext, get_current_user_context

router = APIRouter(prefix="/me", tags=["me"])


@router.get("")
def get_me(context: RequestUserContext = Depends(get_current_user_context)) -> dict[str, object]:
    """Return the identity the request resolved to."""

    return {
        "id": context.owner_id,
        "email": context.email,
        "display_name": context.display_name,
        "sandbox": context.sandbox,
    }
