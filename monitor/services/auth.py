"""
monitor/services/auth.py

Authorization helpers for the transport session.
- build_authorize_payload: body of the `authorize` message
- fetch_server_settings / request_authorization: HTTP calls to the server
- needs_refresh: whether a token grant is due for renewal
"""

import hashlib
from typing import Optional

import httpx
import structlog
from pydantic import ValidationError

from config import Settings
from monitor.constants import AUTH_REFRESH_NOTICE_S, AUTH_RENEW_BEFORE_MS, SECOND_MS
from monitor.schemas import Authorization, AuthorizePayload

logger = structlog.get_logger(__name__)

_HTTP_TIMEOUT_S: float = 5.0


def hash_secret(api_secret: str) -> Optional[str]:
    """The server compares against the SHA-1 hex digest of API_SECRET."""
    if not api_secret:
        return None
    return hashlib.sha1(api_secret.encode("utf-8")).hexdigest()


def build_authorize_payload(
    settings: Settings, authorization: Optional[Authorization]
) -> AuthorizePayload:
    token = authorization.token if authorization is not None else None
    return AuthorizePayload(
        client="web",
        secret=None if token else hash_secret(settings.api_secret),
        token=token or (settings.token or None),
        history=settings.history_hours,
    )


def renew_time(authorization: Authorization) -> int:
    """Renewal deadline in ms, corrected for server/client clock skew."""
    skew = abs(authorization.iat * SECOND_MS - authorization.lat)
    return authorization.exp * SECOND_MS - AUTH_RENEW_BEFORE_MS - skew


def needs_refresh(authorization: Optional[Authorization], now: int) -> bool:
    if authorization is None:
        return False
    deadline = renew_time(authorization)
    refresh_in = round((deadline - now) / SECOND_MS)
    if now > deadline:
        return True
    if refresh_in < AUTH_REFRESH_NOTICE_S:
        logger.info("authorization_refresh_soon", refresh_in_s=refresh_in)
    return False


async def fetch_server_settings(settings: Settings, now: int) -> Optional[dict]:
    """GET /api/v1/status.json; None when the server cannot be reached."""
    url = f"{settings.server_url}/api/v1/status.json"
    params: dict[str, str | int] = {"t": now}
    secret = hash_secret(settings.api_secret)
    if secret:
        params["secret"] = secret
    elif settings.token:
        params["token"] = settings.token

    try:
        async with httpx.AsyncClient(timeout=_HTTP_TIMEOUT_S) as client:
            response = await client.get(url, params=params)
            response.raise_for_status()
            return response.json()
    except httpx.TimeoutException:
        logger.warning("server_status_timeout", url=url)
        return None
    except httpx.HTTPStatusError as exc:
        logger.error(
            "server_status_http_error",
            url=url,
            status=exc.response.status_code,
        )
        return None
    except Exception as exc:
        logger.error("server_status_unexpected_error", url=url, error=str(exc))
        return None


async def request_authorization(
    settings: Settings, token: str, now: int
) -> Optional[Authorization]:
    """Exchange an access token for a fresh authorization grant."""
    url = f"{settings.server_url}/api/v2/authorization/request/{token}"
    try:
        async with httpx.AsyncClient(timeout=_HTTP_TIMEOUT_S) as client:
            response = await client.get(url)
            response.raise_for_status()
            body = response.json()
    except httpx.TimeoutException:
        logger.warning("authorization_request_timeout", url=url)
        return None
    except httpx.HTTPStatusError as exc:
        logger.error(
            "authorization_request_http_error",
            status=exc.response.status_code,
        )
        return None
    except Exception as exc:
        logger.error("authorization_request_unexpected_error", error=str(exc))
        return None

    if not body:
        return None
    try:
        authorization = Authorization.model_validate(body)
    except ValidationError as exc:
        logger.warning("authorization_malformed", error=str(exc))
        return None
    return authorization.model_copy(update={"lat": now})
