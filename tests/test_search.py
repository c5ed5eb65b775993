import json

from werkzeug.http import parse_options_header
from werkzeug.test import EnvironBuilder
from werkzeug.wrappers import Request

from euterpe.library import SearchResult
from euterpe.search import SearchHandler

RESULTS = [
    SearchResult(id=1, title="First", album="Album Of Tests", artist="Tester", track=1),
    SearchResult(id=2, title="Second", album="Album Of Tests", artist="Tester", track=2),
]


class FakeLibrary:
    def __init__(self, results=(), error=None):
        self.results = list(results)
        self.error = error
        self.queries = []

    def search(self, query):
        self.queries.append(query)
        if self.error is not None:
            raise self.error
        return list(self.results)

    def get_file_path(self, file_id):
        return ""

    def get_album_files(self, album_id):
        return []


def make_request(path="/v1/search", query=""):
    return Request(EnvironBuilder(path=path, query_string=query).get_environ())


def test_search_with_query_value_returns_results():
    library = FakeLibrary(RESULTS)
    response = SearchHandler(library)(make_request(query="q=Album+Of+Tests"))

    assert response.status_code == 200
    assert library.queries == ["Album Of Tests"]
    decoded = json.loads(response.get_data(as_text=True))
    assert decoded == [result.to_dict() for result in RESULTS]
    assert all(entry["album"] == "Album Of Tests" for entry in decoded)


def test_search_content_type_is_json():
    response = SearchHandler(FakeLibrary(RESULTS))(make_request(query="q=x"))
    mimetype, params = parse_options_header(response.headers["Content-Type"])
    assert mimetype == "application/json"
    assert params.get("charset") == "utf-8"


def test_search_with_route_value_is_unescaped():
    library = FakeLibrary(RESULTS)
    response = SearchHandler(library)(
        make_request(path="/search/Album+Of+Tests"), search_query="Album+Of+Tests"
    )

    assert response.status_code == 200
    assert library.queries == ["Album Of Tests"]
    assert len(json.loads(response.get_data(as_text=True))) == len(RESULTS)


def test_query_value_takes_precedence_over_route_value():
    library = FakeLibrary(RESULTS)
    SearchHandler(library)(make_request(query="q=from+query"), search_query="from%20route")
    assert library.queries == ["from query"]


def test_search_without_results_returns_empty_list():
    response = SearchHandler(FakeLibrary())(make_request(query="q=Not+There"))

    assert response.status_code == 200
    assert response.get_data(as_text=True) == "[]"
    assert json.loads(response.get_data(as_text=True)) == []


def test_malformed_query_is_bad_request():
    library = FakeLibrary(RESULTS)
    response = SearchHandler(library)(make_request(query="q=bad%zz"))

    assert response.status_code == 400
    assert library.queries == []


def test_malformed_route_value_is_internal_error():
    library = FakeLibrary(RESULTS)
    response = SearchHandler(library)(make_request(), search_query="bad%zz")

    assert response.status_code == 500
    assert "invalid URL escape" in response.get_data(as_text=True)
    assert library.queries == []


def test_library_failure_is_internal_error():
    library = FakeLibrary(error=RuntimeError("search index unavailable"))
    response = SearchHandler(library)(make_request(query="q=anything"))

    assert response.status_code == 500
    assert "search index unavailable" in response.get_data(as_text=True)