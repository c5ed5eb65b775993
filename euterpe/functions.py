"""Helpers shared by the HTTP handlers: error wrapping, credentials and tokens."""

from __future__ import annotations

import hmac
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from functools import wraps
from typing import Any, Callable

import jwt
from werkzeug.wrappers import Request, Response

log = logging.getLogger(__name__)

Handler = Callable[..., Response]

TOKEN_ALGORITHM = "HS256"


@dataclass(frozen=True)
class Auth:
    """Credentials for logging in and the secret used for signing tokens."""

    user: str = ""
    password: str = ""
    secret: str = ""


def with_internal_error(fnc: Handler) -> Handler:
    """Wrap a handler so that any exception it raises becomes a 500 response.

    The response body holds the error message.
    """

    @wraps(fnc)
    def handler(request: Request, **kwargs: Any) -> Response:
        try:
            return fnc(request, **kwargs)
        except Exception as err:  # noqa: BLE001 - every failure becomes a 500
            log.error("error handling %s: %s", request.path, err)
            return Response(str(err), status=500)

    return handler


def internal_error_on_error_handler(fnc: Handler, request: Request, **kwargs: Any) -> Response:
    """Run ``fnc`` for ``request``, turning raised exceptions into 500 responses."""
    return with_internal_error(fnc)(request, **kwargs)


def check_login_creds(user: str, password: str, auth: Auth) -> bool:
    """Compare credentials with ``auth`` in time independent of where they differ."""
    user_ok = hmac.compare_digest(user.encode("utf-8"), auth.user.encode("utf-8"))
    pass_ok = hmac.compare_digest(password.encode("utf-8"), auth.password.encode("utf-8"))
    return user_ok & pass_ok


def sign_token(secret: str, expires_at: datetime) -> str:
    """Return an HS256 JWT which carries its issue time and expires at ``expires_at``."""
    if not secret:
        raise ValueError("cannot sign a token with an empty secret")
    payload = {"iat": datetime.now(timezone.utc), "exp": expires_at}
    return jwt.encode(payload, secret, algorithm=TOKEN_ALGORITHM)


def verify_token(token: str, secret: str) -> bool:
    """Tell whether ``token`` is an unexpired HS256 JWT signed with ``secret``."""
    if not token or not secret:
        return False
    try:
        jwt.decode(token, secret, algorithms=[TOKEN_ALGORITHM])
    except jwt.PyJWTError:
        return False
    return True