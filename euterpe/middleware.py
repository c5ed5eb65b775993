"""Handler wrappers which adjust every response: gzip encoding and the clacks header."""

from __future__ import annotations

import zlib
from collections.abc import Iterable, Iterator, Sequence
from typing import Any, Callable

from werkzeug.wrappers import Request, Response

Handler = Callable[..., Response]

CLACKS_HEADER = "X-Clacks-Overhead"
CLACKS_VALUE = "GNU Terry Pratchett"


def _gzip_chunks(chunks: Iterable[bytes]) -> Iterator[bytes]:
    compressor = zlib.compressobj(wbits=16 + zlib.MAX_WBITS)
    for chunk in chunks:
        out = compressor.compress(chunk)
        if out:
            yield out
    yield compressor.flush()


class GzipHandler:
    """Gzip the wrapped handler's output when the client accepts it.

    Requests whose path starts with one of ``exceptions`` are left untouched.
    """

    def __init__(self, wrapped: Handler, exceptions: Sequence[str] = ()) -> None:
        self.wrapped = wrapped
        self.exceptions = tuple(exceptions)

    def __call__(self, request: Request, **kwargs: Any) -> Response:
        response = self.wrapped(request, **kwargs)
        if "gzip" not in request.headers.get("Accept-Encoding", ""):
            return response
        if request.path.startswith(self.exceptions):
            return response

        original = response.response
        body = response.iter_encoded()
        response.direct_passthrough = False
        response.response = _gzip_chunks(body)
        if hasattr(original, "close"):
            response.call_on_close(original.close)
        response.headers.pop("Content-Length", None)
        response.headers["Content-Encoding"] = "gzip"
        return response


class TerryHandler:
    """Add the X-Clacks-Overhead header to every response."""

    def __init__(self, wrapped: Handler) -> None:
        self.wrapped = wrapped

    def __call__(self, request: Request, **kwargs: Any) -> Response:
        response = self.wrapped(request, **kwargs)
        response.headers.setdefault(CLACKS_HEADER, CLACKS_VALUE)
        return response