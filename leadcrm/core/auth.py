from dataclasses import dataclass

from fastapi import HTTPException, status
from jose import JWTError, jwt
from starlette.requests import Request

from leadcrm.core.config import get_settings


@dataclass
class AuthUser:
    sub: str
    roles: list[str]


def decode_token(token: str) -> dict:
    settings = get_settings()
    return jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])


def issue_token(subject: str, roles: list[str] | None = None) -> str:
    settings = get_settings()
    payload = {"sub": subject, "roles": roles or []}
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def bearer_token(request: Request) -> str | None:
    scheme, _, token = request.headers.get("authorization", "").partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def token_subject(request: Request) -> str | None:
    """Best-effort subject lookup for middleware; never raises."""
    token = bearer_token(request)
    if token is None:
        return None
    try:
        subject = decode_token(token).get("sub")
    except JWTError:
        return None
    return str(subject) if subject else None


async def get_current_user(request: Request) -> AuthUser:
    token = bearer_token(request)
    if token is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="missing bearer token")

    try:
        payload = decode_token(token)
    except JWTError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid bearer token")

    subject = payload.get("sub")
    if not subject:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="token has no subject")
    roles = payload.get("roles", [])
    if not isinstance(roles, list):
        roles = []
    request.state.user_id = str(subject)
    return AuthUser(sub=str(subject), roles=[str(role) for role in roles])
