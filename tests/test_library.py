import dataclasses
import json

import pytest

from euterpe.library import (
    Album,
    Artist,
    ArtworkError,
    ArtworkNotFoundError,
    ArtworkTooBigError,
    BrowseArgs,
    Order,
    OrderBy,
    SearchResult,
)


def test_album_to_dict_matches_api():
    album = Album(id=10, name="Senjutsu", artist="Iron Maiden")
    assert album.to_dict() == {"album_id": 10, "album": "Senjutsu", "artist": "Iron Maiden"}


def test_artist_to_dict_matches_api():
    artist = Artist(id=101, name="Iron Maiden")
    assert artist.to_dict() == {"artist_id": 101, "artist": "Iron Maiden"}


def test_search_result_round_trips_through_json():
    result = SearchResult(id=3, title="Buggy Bugoff", album="Album Of Tests", artist="Tester")
    decoded = json.loads(json.dumps(result.to_dict()))
    assert decoded == result.to_dict()
    assert decoded["title"] == "Buggy Bugoff"
    assert decoded["album"] == "Album Of Tests"


def test_browse_args_defaults_and_equality():
    assert BrowseArgs() == BrowseArgs(page=0, per_page=10, order_by=OrderBy.NAME, order=Order.ASC)
    with pytest.raises(dataclasses.FrozenInstanceError):
        BrowseArgs().page = 3


def test_order_enums_parse_query_values():
    assert OrderBy("id") is OrderBy.ID
    assert Order("desc") is Order.DESC
    with pytest.raises(ValueError):
        OrderBy("genre")


def test_artwork_errors_carry_messages():
    assert str(ArtworkError("test error")) == "test error"
    with pytest.raises(LookupError):
        raise ArtworkNotFoundError()
    err = ArtworkTooBigError("too large")
    assert str(err) == "too large"
    assert not isinstance(err, ArtworkError)