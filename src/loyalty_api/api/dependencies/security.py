from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from loyalty_api.core.settings import settings
from loyalty_api.db.session import get_session
from loyalty_api.models.merchant import Merchant
from loyalty_api.services.merchants import MerchantAuthenticationError, MerchantService


async def require_merchant(
    x_api_key: str = Header("", alias="X-API-Key"),
    db: AsyncSession = Depends(get_session),
) -> Merchant:
    """Resolve the calling merchant from its API key."""

    try:
        return await MerchantService(db).get_by_api_key(x_api_key)
    except MerchantAuthenticationError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED if exc.missing else status.HTTP_403_FORBIDDEN,
            detail={"status": "ERROR", "message": exc.message},
        ) from exc


async def require_bot_token(x_bot_token: str = Header("", alias="X-Bot-Token")) -> None:
    if not settings.bot_api_token:
        return

    if x_bot_token != settings.bot_api_token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid bot token",
        )


async def require_ops_api_key(x_api_key: str = Header("", alias="X-API-Key")) -> None:
    if not settings.ops_api_key:
        return

    if x_api_key != settings.ops_api_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API key",
        )
