"""HTTP handler answering search queries against the library."""

from __future__ import annotations

import json
import logging
from typing import Any

from werkzeug.wrappers import Request, Response

from .browse import _first, _parse_query, _unescape
from .functions import internal_error_on_error_handler
from .library import Library

log = logging.getLogger(__name__)

JSON_CONTENT_TYPE = "application/json; charset=utf-8"


class SearchHandler:
    """Returns the library tracks matching a query as a JSON list.

    The query comes from the ``q`` query value or, when that is empty, from
    the still-encoded ``search_query`` route value.
    """

    def __init__(self, library: Library) -> None:
        self.library = library

    def __call__(self, request: Request, **kwargs: Any) -> Response:
        return internal_error_on_error_handler(self._search, request, **kwargs)

    def _search(self, request: Request, **kwargs: Any) -> Response:
        try:
            form = _parse_query(request.query_string.decode("utf-8", "replace"))
        except ValueError as err:
            return Response(str(err), status=400, content_type=JSON_CONTENT_TYPE)

        query = _first(form, "q")
        if not query:
            query = _unescape(str(kwargs.get("search_query", "")))

        results = self.library.search(query)
        if not results:
            return Response("[]", content_type=JSON_CONTENT_TYPE)

        body = json.dumps([result.to_dict() for result in results]) + "\n"
        return Response(body, content_type=JSON_CONTENT_TYPE)