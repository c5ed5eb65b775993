import io

import pytest
from werkzeug.test import EnvironBuilder
from werkzeug.wrappers import Request

from euterpe.artwork import AlbumArtworkHandler, ArtistImageHandler
from euterpe.library import (
    ArtworkError,
    ArtworkNotFoundError,
    ArtworkTooBigError,
    ImageSize,
)

NOT_FOUND_IMAGE = "images/notfound.png"
NOT_FOUND_CONTENTS = b"not-found-image"


def make_request(path, method="GET", query_string=None, data=None):
    builder = EnvironBuilder(path=path, method=method, query_string=query_string, data=data)
    return Request(builder.get_environ())


def finder(original, small):
    def find(item_id, size):
        if item_id == 42:
            raise RuntimeError("finding image error")
        if item_id != 321:
            raise ArtworkNotFoundError()
        if size == ImageSize.SMALL:
            return io.BytesIO(small)
        return io.BytesIO(original)

    return find


def raiser(exc):
    def fail(*_args):
        raise exc

    return fail


class FakeArtworkManager:
    def __init__(self, find=None, remove=None, save=None):
        self._find = find
        self._remove = remove
        self._save = save
        self.remove_calls = []

    def find_and_save_album_artwork(self, album_id, size):
        return self._find(album_id, size)

    def remove_album_artwork(self, album_id):
        self.remove_calls.append(album_id)
        self._remove(album_id)

    def save_album_artwork(self, album_id, body):
        self._save(album_id, body)


class FakeArtistImageManager:
    def __init__(self, find=None, remove=None, save=None):
        self._find = find
        self._remove = remove
        self._save = save
        self.remove_calls = []

    def find_and_save_artist_image(self, artist_id, size):
        return self._find(artist_id, size)

    def remove_artist_image(self, artist_id):
        self.remove_calls.append(artist_id)
        self._remove(artist_id)

    def save_artist_image(self, artist_id, body):
        self._save(artist_id, body)


@pytest.fixture
def http_root(tmp_path):
    image = tmp_path / NOT_FOUND_IMAGE
    image.parent.mkdir(parents=True)
    image.write_bytes(NOT_FOUND_CONTENTS)
    return tmp_path


def remove_only_42(item_id):
    if item_id != 42:
        raise RuntimeError("some error happened")


# Album artwork


@pytest.fixture
def album_handler(http_root):
    manager = FakeArtworkManager(
        find=finder(b"album 321 image original", b"album 321 image small")
    )
    return AlbumArtworkHandler(manager, http_root, NOT_FOUND_IMAGE)


def test_album_artwork_without_route_value_is_not_found(album_handler):
    resp = album_handler(make_request("/v1/album/artwork"))
    assert resp.status_code == 404


def test_album_artwork_original(album_handler):
    resp = album_handler(make_request("/v1/album/321/artwork"), album_id="321")
    assert resp.status_code == 200
    assert resp.get_data() == b"album 321 image original"
    assert resp.headers["Cache-Control"] == "max-age=604800"


def test_album_artwork_small(album_handler):
    req = make_request("/v1/album/321/artwork", query_string="size=small")
    resp = album_handler(req, album_id="321")
    assert resp.status_code == 200
    assert resp.get_data() == b"album 321 image small"


def test_album_artwork_bad_id(album_handler):
    resp = album_handler(make_request("/v1/album/boba/artwork"), album_id="boba")
    assert resp.status_code == 400
    assert "albumID" in resp.get_data(as_text=True)


def test_album_artwork_not_found_serves_image(album_handler):
    resp = album_handler(make_request("/v1/album/777/artwork"), album_id="777")
    assert resp.status_code == 404
    assert resp.get_data() == NOT_FOUND_CONTENTS


def test_album_artwork_not_found_without_image(tmp_path):
    manager = FakeArtworkManager(find=raiser(ArtworkNotFoundError()))
    handler = AlbumArtworkHandler(manager, tmp_path, NOT_FOUND_IMAGE)
    resp = handler(make_request("/v1/album/5/artwork"), album_id="5")
    assert resp.status_code == 404
    assert resp.get_data(as_text=True) == "404 image not found\n"


def test_album_artwork_missing_file_is_not_found(album_handler, http_root):
    manager = FakeArtworkManager(find=raiser(FileNotFoundError("gone")))
    handler = AlbumArtworkHandler(manager, http_root, NOT_FOUND_IMAGE)
    resp = handler(make_request("/v1/album/5/artwork"), album_id="5")
    assert resp.status_code == 404


def test_album_artwork_internal_error(album_handler):
    resp = album_handler(make_request("/v1/album/42/artwork"), album_id="42")
    assert resp.status_code == 500
    assert "finding image error" in resp.get_data(as_text=True)


def test_album_artwork_delete(http_root):
    manager = FakeArtworkManager(remove=remove_only_42)
    handler = AlbumArtworkHandler(manager, http_root, NOT_FOUND_IMAGE)

    resp = handler(make_request("/v1/album/42/artwork", method="DELETE"), album_id="42")
    assert resp.status_code == 204
    assert manager.remove_calls == [42]

    resp = handler(make_request("/v1/album/55/artwork", method="DELETE"), album_id="55")
    assert resp.status_code == 500


@pytest.mark.parametrize(
    ("error", "expected_code"),
    [
        (ArtworkTooBigError(), 413),
        (ArtworkError("test error"), 400),
        (RuntimeError("some general error"), 500),
    ],
)
def test_album_artwork_put_errors(http_root, error, expected_code):
    manager = FakeArtworkManager(save=raiser(error))
    handler = AlbumArtworkHandler(manager, http_root, NOT_FOUND_IMAGE)
    req = make_request("/v1/album/42/artwork", method="PUT", data=b"artwork body")
    resp = handler(req, album_id="42")
    assert resp.status_code == expected_code


def test_album_artwork_put_uploads_body(http_root):
    uploaded = io.BytesIO()

    def save(item_id, body):
        if item_id != 42:
            raise RuntimeError("no such album found")
        uploaded.write(body.read())

    handler = AlbumArtworkHandler(FakeArtworkManager(save=save), http_root, NOT_FOUND_IMAGE)
    req = make_request("/v1/album/42/artwork", method="PUT", data=b"the actual request body")
    resp = handler(req, album_id="42")
    assert resp.status_code == 201
    assert uploaded.getvalue() == b"the actual request body"


def test_album_artwork_too_big_message(http_root):
    manager = FakeArtworkManager(save=raiser(ArtworkTooBigError()))
    handler = AlbumArtworkHandler(manager, http_root, NOT_FOUND_IMAGE)
    req = make_request("/v1/album/42/artwork", method="PUT", data=b"x")
    resp = handler(req, album_id="42")
    assert resp.get_data(as_text=True) == "Uploaded artwork is too large."


def test_album_artwork_png_content_type(http_root):
    png = b"\x89PNG\r\n\x1a\n" + b"rest"
    manager = FakeArtworkManager(find=lambda _i, _s: io.BytesIO(png))
    handler = AlbumArtworkHandler(manager, http_root, NOT_FOUND_IMAGE)
    resp = handler(make_request("/v1/album/1/artwork"), album_id="1")
    assert resp.mimetype == "image/png"
    assert resp.get_data() == png


# Artist images


@pytest.fixture
def artist_handler():
    manager = FakeArtistImageManager(
        find=finder(b"artist 321 image original", b"artist 321 image small")
    )
    return ArtistImageHandler(manager)


def test_artist_image_without_route_value_is_not_found(artist_handler):
    resp = artist_handler(make_request("/v1/artist/image"))
    assert resp.status_code == 404


def test_artist_image_original(artist_handler):
    resp = artist_handler(make_request("/v1/artist/321/image"), artist_id="321")
    assert resp.status_code == 200
    assert resp.get_data() == b"artist 321 image original"


def test_artist_image_small(artist_handler):
    req = make_request("/v1/artist/321/image", query_string="size=small")
    resp = artist_handler(req, artist_id="321")
    assert resp.status_code == 200
    assert resp.get_data() == b"artist 321 image small"


def test_artist_image_bad_id(artist_handler):
    resp = artist_handler(make_request("/v1/artist/boba/image"), artist_id="boba")
    assert resp.status_code == 400
    assert "artistID" in resp.get_data(as_text=True)


def test_artist_image_not_found(artist_handler):
    resp = artist_handler(make_request("/v1/artist/777/image"), artist_id="777")
    assert resp.status_code == 404
    assert resp.get_data(as_text=True) == "404 image not found\n"


def test_artist_image_internal_error(artist_handler):
    resp = artist_handler(make_request("/v1/artist/42/image"), artist_id="42")
    assert resp.status_code == 500
    assert "finding image error" in resp.get_data(as_text=True)


def test_artist_image_delete():
    manager = FakeArtistImageManager(remove=remove_only_42)
    handler = ArtistImageHandler(manager)

    resp = handler(make_request("/v1/artist/42/image", method="DELETE"), artist_id="42")
    assert resp.status_code == 204
    assert manager.remove_calls == [42]

    resp = handler(make_request("/v1/artist/55/image", method="DELETE"), artist_id="55")
    assert resp.status_code == 500


@pytest.mark.parametrize(
    ("error", "expected_code"),
    [
        (ArtworkTooBigError(), 413),
        (ArtworkError("test error"), 400),
        (RuntimeError("some general error"), 500),
    ],
)
def test_artist_image_put_errors(error, expected_code):
    handler = ArtistImageHandler(FakeArtistImageManager(save=raiser(error)))
    req = make_request("/v1/artist/42/image", method="PUT", data=b"artwork body")
    resp = handler(req, artist_id="42")
    assert resp.status_code == expected_code


def test_artist_image_put_uploads_body():
    uploaded = io.BytesIO()

    def save(item_id, body):
        if item_id != 42:
            raise RuntimeError("no such artist found")
        uploaded.write(body.read())

    handler = ArtistImageHandler(FakeArtistImageManager(save=save))
    req = make_request("/v1/artist/42/image", method="PUT", data=b"the actual request body")
    resp = handler(req, artist_id="42")
    assert resp.status_code == 201
    assert uploaded.getvalue() == b"the actual request body"