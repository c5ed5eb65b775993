"""Authentication wrapper around the application's handlers."""

from __future__ import annotations

import base64
from collections.abc import Sequence
from typing import Any, Callable, Protocol
from urllib.parse import quote, urlencode

import jinja2
from werkzeug.wrappers import Request, Response

from .functions import Auth, check_login_creds, internal_error_on_error_handler, verify_token

Handler = Callable[..., Response]

AUTH_REQUIRED_JSON = '{"error": "authentication required"}'
SESSION_COOKIE_NAME = "session"
RETURN_TO_QUERY_PARAM = "return_to"
BASIC_REALM = 'Basic realm="Euterpe Music Server"'


class _TemplateSource(Protocol):
    def get(self, path: str) -> jinja2.Template: ...


def _request_uri(request: Request) -> str:
    raw = request.environ.get("REQUEST_URI") or request.environ.get("RAW_URI")
    if raw:
        return raw
    uri = quote(request.path)
    if request.query_string:
        uri += "?" + request.query_string.decode("latin-1")
    return uri


class AuthHandler:
    """Authenticate requests before passing them to the wrapped handler.

    Accepted are basic auth, a bearer JWT, a JWT in the session cookie and a
    JWT in the ``token`` query value. Paths starting with one of ``exceptions``
    need no authentication.
    """

    def __init__(
        self,
        wrapped: Handler,
        username: str,
        password: str,
        templates: _TemplateSource,
        secret: str,
        exceptions: Sequence[str] = (),
    ) -> None:
        self.wrapped = wrapped
        self._auth = Auth(user=username, password=password, secret=secret)
        self.templates = templates
        self.exceptions = tuple(exceptions)

    def __call__(self, request: Request, **kwargs: Any) -> Response:
        if not self.authenticated(request):
            return internal_error_on_error_handler(self._challenge, request)
        return self.wrapped(request, **kwargs)

    def _challenge(self, request: Request) -> Response:
        accepts = request.headers.get("Accept", "").split(",")
        if "text/html" in accepts:
            return self._redirect_to_login(request)
        if "application/json" in accepts:
            return Response(
                AUTH_REQUIRED_JSON,
                status=401,
                content_type="application/json; charset=utf8",
            )
        return self._basic_auth_challenge()

    def _basic_auth_challenge(self) -> Response:
        body = self.templates.get("unauthorized.html").render()
        return Response(
            body,
            status=401,
            mimetype="text/html",
            headers={"WWW-Authenticate": BASIC_REALM},
        )

    def _redirect_to_login(self, request: Request) -> Response:
        return_to = request.args.get(RETURN_TO_QUERY_PARAM, "") or _request_uri(request)
        query = urlencode({RETURN_TO_QUERY_PARAM: return_to})
        return Response(status=302, headers={"Location": f"/login/?{query}"})

    def authenticated(self, request: Request) -> bool:
        """Tell whether the request is exempt or carries valid credentials."""
        if request.path.startswith(self.exceptions):
            return True

        header = request.headers.get("Authorization", "")
        if header.startswith("Bearer "):
            return verify_token(header[len("Bearer "):], self._auth.secret)
        if header.startswith("Basic "):
            return self._with_basic_auth(header[len("Basic "):])

        cookie = request.cookies.get(SESSION_COOKIE_NAME)
        if cookie is not None:
            return verify_token(cookie, self._auth.secret)

        query_token = request.args.get("token", "")
        if query_token:
            return verify_token(query_token, self._auth.secret)

        return False

    def _with_basic_auth(self, encoded: str) -> bool:
        try:
            decoded = base64.b64decode(encoded.strip(), validate=True).decode("utf-8")
        except ValueError:
            return False
        user, sep, given = decoded.partition(":")
        if not sep:
            return False
        return check_login_creds(user, given, self._auth)