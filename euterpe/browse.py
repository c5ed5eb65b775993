"""HTTP handler for paging through the albums or artists of the library."""

from __future__ import annotations

import json
import logging
import re
from typing import Any
from urllib.parse import unquote_plus

from werkzeug.wrappers import Request, Response

from .functions import internal_error_on_error_handler
from .library import BrowseArgs, Browser, Order, OrderBy

log = logging.getLogger(__name__)

JSON_CONTENT_TYPE = "application/json; charset=utf-8"
BROWSE_URI = "/v1/browse"

_BAD_ESCAPE = re.compile(r"%(?![0-9A-Fa-f]{2})")
_INT_RE = re.compile(r"[+-]?[0-9]+")
_INT64_MIN = -(2**63)
_INT64_MAX = 2**63 - 1


def _unescape(text: str) -> str:
    """Decode a query component, rejecting malformed percent escapes."""
    bad = _BAD_ESCAPE.search(text)
    if bad:
        start = bad.start()
        raise ValueError(f'invalid URL escape "{text[start:start + 3]}"')
    return unquote_plus(text)


def _parse_query(query: str) -> dict[str, list[str]]:
    """Parse a raw query string strictly, raising ValueError when it is malformed."""
    values: dict[str, list[str]] = {}
    for part in query.split("&"):
        if ";" in part:
            raise ValueError("invalid semicolon separator in query")
        if not part:
            continue
        key, _, value = part.partition("=")
        values.setdefault(_unescape(key), []).append(_unescape(value))
    return values


def _first(values: dict[str, list[str]], key: str) -> str:
    return values.get(key, [""])[0]


def _atoi(text: str) -> int:
    if not _INT_RE.fullmatch(text):
        raise ValueError(f'strconv.Atoi: parsing "{text}": invalid syntax')
    value = int(text)
    if not _INT64_MIN <= value <= _INT64_MAX:
        raise ValueError(f'strconv.Atoi: parsing "{text}": value out of range')
    return value


def get_browse_args(page: int, per_page: int, order_by: str, order: str) -> BrowseArgs:
    """Build library browse arguments from API values; API pages count from 1."""
    return BrowseArgs(
        page=page - 1,
        per_page=per_page,
        order_by=OrderBy.ID if order_by == "id" else OrderBy.NAME,
        order=Order.DESC if order == "desc" else Order.ASC,
    )


def get_prev_next_page_uri(
    by: str,
    page: int,
    per_page: int,
    count: int,
    order_by: str,
    order: str,
) -> tuple[str, str]:
    """Return the URIs of the previous and next pages, empty where there is none."""
    suffix = ""
    if order:
        suffix += f"&order={order}"
    if order_by:
        suffix += f"&order-by={order_by}"

    def page_uri(number: int) -> str:
        return f"{BROWSE_URI}?by={by}&page={number}&per-page={per_page}{suffix}"

    prev_page = page_uri(page - 1) if page - 1 > 0 else ""
    next_page = page_uri(page + 1) if page * per_page < count else ""
    return prev_page, next_page


def _pages_count(count: int, per_page: int) -> int:
    return -(-count // per_page)


class BrowseHandler:
    """Pages through albums or artists using a library browser."""

    def __init__(self, browser: Browser) -> None:
        self.browser = browser

    def __call__(self, request: Request, **kwargs: Any) -> Response:
        return internal_error_on_error_handler(self._browse, request)

    def _browse(self, request: Request) -> Response:
        try:
            form = _parse_query(request.query_string.decode("utf-8", "replace"))
        except ValueError as err:
            return self._bad_request(str(err))

        page_str = _first(form, "page")
        per_page_str = _first(form, "per-page")
        browse_by = _first(form, "by")
        order_by = _first(form, "order-by").lower().strip()
        order = _first(form, "order").lower().strip()

        if browse_by not in ("", "artist", "album"):
            return self._bad_request("Wrong 'by' parameter. Must be 'album' or 'artist'")
        if order_by not in ("", "id", "name"):
            return self._bad_request("Wrong 'order-by' parameter. Must be 'id' or 'name'")
        if order not in ("", "asc", "desc"):
            return self._bad_request("Wrong 'order-type' parameter. Must be 'asc' or 'desc'")

        page, per_page = 1, 10
        if page_str:
            try:
                page = _atoi(page_str)
            except ValueError as err:
                return self._bad_request(f'Wrong "page" parameter: {err}')
        if per_page_str:
            try:
                per_page = _atoi(per_page_str)
            except ValueError as err:
                return self._bad_request(f'Wrong "perPage" parameter: {err}')

        if page < 1 or per_page < 1:
            return self._bad_request('"page" and "perPage" must be integers greater than one')

        args = get_browse_args(page, per_page, order_by, order)
        if browse_by == "artist":
            items, count = self.browser.browse_artists(args)
            kind = "artist"
        else:
            items, count = self.browser.browse_albums(args)
            kind = "album"

        prev_page, next_page = get_prev_next_page_uri(
            kind, page, per_page, count, order_by, order
        )
        payload = {
            "data": [item.to_dict() for item in items or []],
            "next": next_page,
            "previous": prev_page,
            "pages_count": _pages_count(count, per_page),
        }
        return Response(json.dumps(payload) + "\n", content_type=JSON_CONTENT_TYPE)

    @staticmethod
    def _bad_request(message: str) -> Response:
        return Response(
            json.dumps({"error": message}),
            status=400,
            content_type=JSON_CONTENT_TYPE,
        )