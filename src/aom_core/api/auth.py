"""FastAPI dependencies: application settings and API key check."""
import hmac
from typing import Annotated

from fastapi import Depends, HTTPException, Request, Security, status
from fastapi.security import APIKeyHeader

from ..settings import Settings


api_key_header = APIKeyHeader(name="X-AOM-API-KEY", auto_error=False)


def get_settings(request: Request) -> Settings:
    """Settings the application was created with."""
    return request.app.state.settings


async def require_api_key(
    settings: Annotated[Settings, Depends(get_settings)],
    api_key: Annotated[str | None, Security(api_key_header)] = None,
) -> str:
    """Compare the X-AOM-API-KEY header with the configured key.

    Raises:
        HTTPException: 503 when no key is configured (the API stays closed),
            401 when the header is missing or wrong
    """
    if settings.api_key is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="AOM_API_KEY is not configured",
        )

    expected = settings.api_key.get_secret_value()
    if not api_key or not hmac.compare_digest(api_key.encode(), expected.encode()):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API key",
            headers={"WWW-Authenticate": "API-Key"},
        )

    return api_key
