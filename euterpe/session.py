"""HTTP handlers for logging in and out and for issuing device tokens."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta, timezone
from typing import Any
from urllib.parse import urlencode

from werkzeug.wrappers import Request, Response

from .functions import Auth, check_login_creds, sign_token

log = logging.getLogger(__name__)

JSON_CONTENT_TYPE = "application/json; charset=utf-8"
SESSION_COOKIE_NAME = "session"
RETURN_TO_QUERY_PARAM = "return_to"
WRONG_LOGIN_TEXT = "wrong username or password"

# A session cookie dies with the browser session, so its token is given a week
# optimistically. A "remember me" cookie lives far longer.
SESSION_TOKEN_DURATION = timedelta(days=7)
REMEMBER_ME_DURATION = timedelta(days=62)


def respond_with_json_error(code: int, message: str) -> Response:
    """Return a JSON response ``{"error": message}`` with status ``code``."""
    body = json.dumps({"error": message}) + "\n"
    return Response(body, status=code, content_type=JSON_CONTENT_TYPE)


class LoginHandler:
    """Checks the posted credentials and sets a session cookie holding a JWT."""

    def __init__(self, auth: Auth) -> None:
        self.auth = auth

    def __call__(self, request: Request, **kwargs: Any) -> Response:
        return_to = request.args.get(RETURN_TO_QUERY_PARAM, "")
        if not return_to.startswith("/"):
            return_to = "/"

        user = request.form.get("username", "")
        given = request.form.get("password", "")
        if not check_login_creds(user, given, self.auth):
            return self._respond_wrong(return_to)
        return self._respond_correct(request, return_to)

    @staticmethod
    def _respond_wrong(return_to: str) -> Response:
        query = urlencode({RETURN_TO_QUERY_PARAM: return_to, "wrongCreds": "1"})
        return Response(status=302, headers={"Location": f"/login/?{query}"})

    def _respond_correct(self, request: Request, return_to: str) -> Response:
        remember_me = request.form.get("remember_me") == "on"
        duration = REMEMBER_ME_DURATION if remember_me else SESSION_TOKEN_DURATION
        expires_at = datetime.now(timezone.utc) + duration

        try:
            token = sign_token(self.auth.secret, expires_at)
        except Exception as err:  # noqa: BLE001 - reported to the client
            return Response(
                f"Error generating JWT: {err}.\n", status=500, mimetype="text/plain"
            )

        response = Response(status=302, headers={"Location": return_to})
        response.set_cookie(
            SESSION_COOKIE_NAME,
            token,
            path="/",
            httponly=True,
            expires=expires_at if remember_me else None,
        )
        return response


def _decode_credentials(body: bytes) -> tuple[str, str]:
    """Read the username and password from the first JSON value in ``body``."""
    try:
        text = body.decode("utf-8")
        data, _ = json.JSONDecoder().raw_decode(text.lstrip())
    except ValueError as err:
        raise ValueError(str(err) or "EOF") from err

    if data is None:
        return "", ""
    if not isinstance(data, dict):
        raise ValueError(f"cannot unmarshal {type(data).__name__} into login request")

    def field(name: str) -> str:
        value = data.get(name)
        if value is None:
            return ""
        if not isinstance(value, str):
            raise ValueError(f"cannot unmarshal {type(value).__name__} into field {name}")
        return value

    return field("username"), field("password")


class LoginTokenHandler:
    """Exchanges a JSON username and password for a long-lived JWT."""

    def __init__(self, auth: Auth) -> None:
        self.auth = auth

    def __call__(self, request: Request, **kwargs: Any) -> Response:
        try:
            user, given = _decode_credentials(request.get_data())
        except ValueError as err:
            return respond_with_json_error(400, f"Error parsing JSON request: {err}.")

        if not check_login_creds(user, given, self.auth):
            return respond_with_json_error(401, WRONG_LOGIN_TEXT)

        expires_at = datetime.now(timezone.utc) + REMEMBER_ME_DURATION
        try:
            token = sign_token(self.auth.secret, expires_at)
        except Exception as err:  # noqa: BLE001 - reported to the client
            return respond_with_json_error(500, f"Error generating JWT: {err}.")

        return Response(json.dumps({"token": token}) + "\n", content_type=JSON_CONTENT_TYPE)


class LogoutHandler:
    """Clears the session cookie and redirects to the login page."""

    def __call__(self, request: Request, **kwargs: Any) -> Response:
        response = Response(status=302, headers={"Location": "/login/"})
        response.set_cookie(SESSION_COOKIE_NAME, "", path="/", httponly=True, max_age=0)
        return response


class RegisterTokenHandler:
    """Acknowledges the registration of a device token."""

    def __call__(self, request: Request, **kwargs: Any) -> Response:
        return Response(status=204, content_type="application/json")