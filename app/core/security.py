"""Bearer token verification for tokens issued by the identity provider.

The service never issues tokens. It only checks the provider's signature, the
expiry (with a small leeway for clock skew) and, when configured, the issuer
and audience claims.
"""

from __future__ import annotations

from typing import Any

from fastapi import HTTPException, status
from fastapi.security import HTTPBearer
from jose import jwt
from jose.exceptions import ExpiredSignatureError, JWTClaimsError, JWTError

from app.core.config import get_settings

settings = get_settings()

bearer_scheme = HTTPBearer(auto_error=False)


def credentials_error(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def decode_token(token: str) -> dict[str, Any]:
    """Verify a provider token and return its claims."""
    options = {
        "verify_aud": settings.jwt_audience is not None,
        "require_exp": settings.jwt_require_exp,
        "leeway": settings.jwt_leeway_seconds,
    }
    try:
        return jwt.decode(
            token,
            settings.secret_key,
            algorithms=[settings.jwt_algorithm],
            audience=settings.jwt_audience,
            issuer=settings.jwt_issuer,
            options=options,
        )
    except ExpiredSignatureError as exc:
        raise credentials_error("Token has expired") from exc
    except JWTClaimsError as exc:
        raise credentials_error("Token was not issued for this service") from exc
    except JWTError as exc:
        raise credentials_error("Invalid token") from exc
