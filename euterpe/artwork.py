"""HTTP handlers which find, upload and remove album artwork and artist images."""

from __future__ import annotations

import logging
import os
import re
from collections.abc import Iterator
from pathlib import Path
from typing import Any, BinaryIO

from werkzeug.wrappers import Request, Response

from .functions import with_internal_error
from .library import (
    ArtistImageManager,
    ArtworkError,
    ArtworkManager,
    ArtworkNotFoundError,
    ArtworkTooBigError,
    ImageSize,
)

log = logging.getLogger(__name__)

CACHE_CONTROL = "max-age=604800"
TOO_LARGE_MESSAGE = "Uploaded artwork is too large."
IMAGE_NOT_FOUND_MESSAGE = "404 image not found\n"

_CHUNK_SIZE = 64 * 1024
_INT_RE = re.compile(r"[+-]?[0-9]+")
_INT64_MIN = -(2**63)
_INT64_MAX = 2**63 - 1

_SIGNATURES = (
    (b"\x89PNG\r\n\x1a\n", "image/png"),
    (b"\xff\xd8\xff", "image/jpeg"),
    (b"GIF87a", "image/gif"),
    (b"GIF89a", "image/gif"),
    (b"BM", "image/bmp"),
)


def _parse_int(text: str) -> int:
    if not _INT_RE.fullmatch(text):
        raise ValueError(f'parsing "{text}": invalid syntax')
    value = int(text)
    if not _INT64_MIN <= value <= _INT64_MAX:
        raise ValueError(f'parsing "{text}": value out of range')
    return value


def _sniff(data: bytes) -> str:
    for signature, mimetype in _SIGNATURES:
        if data.startswith(signature):
            return mimetype
    if data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "image/webp"
    return "application/octet-stream"


def _not_found() -> Response:
    return Response("404 page not found\n", status=404, mimetype="text/plain")


def _stream(reader: BinaryIO, first: bytes, item_id: int) -> Iterator[bytes]:
    try:
        yield first
        while chunk := reader.read(_CHUNK_SIZE):
            yield chunk
    except OSError as err:
        log.error("error sending HTTP data for artwork %d: %s", item_id, err)
    finally:
        reader.close()


class _ImageHandler:
    """Dispatches GET, PUT and DELETE requests for a single image by its owner's ID."""

    _id_kwarg = ""
    _id_label = ""

    def __call__(self, request: Request, **kwargs: Any) -> Response:
        id_string = kwargs.get(self._id_kwarg)
        if id_string is None:
            return _not_found()

        try:
            item_id = _parse_int(str(id_string))
        except ValueError as err:
            return Response(
                f"Bad request. Parsing {self._id_label}: {err}\n",
                status=400,
                mimetype="text/plain",
            )

        if request.method == "DELETE":
            action = self._remove
        elif request.method == "PUT":
            action = self._upload
        else:
            action = self._find
        return with_internal_error(action)(request, item_id=item_id)

    def _lookup(self, item_id: int, size: ImageSize) -> BinaryIO:
        raise NotImplementedError

    def _delete(self, item_id: int) -> None:
        raise NotImplementedError

    def _store(self, item_id: int, body: BinaryIO) -> None:
        raise NotImplementedError

    def _not_found_response(self) -> Response:
        return Response(IMAGE_NOT_FOUND_MESSAGE, status=404, mimetype="text/plain")

    def _find(self, request: Request, item_id: int) -> Response:
        size = ImageSize.SMALL if request.args.get("size") == "small" else ImageSize.ORIGINAL
        try:
            reader = self._lookup(item_id, size)
        except (ArtworkNotFoundError, FileNotFoundError):
            return self._not_found_response()
        except Exception as err:
            log.error("Error finding %s %d artwork: %s", self._id_label, item_id, err)
            raise

        headers = {"Cache-Control": CACHE_CONTROL}
        try:
            first = reader.read(_CHUNK_SIZE)
        except OSError as err:
            reader.close()
            log.error("error sending HTTP data for artwork %d: %s", item_id, err)
            return Response(b"", headers=headers)

        return Response(
            _stream(reader, first, item_id),
            mimetype=_sniff(first),
            headers=headers,
        )

    def _remove(self, request: Request, item_id: int) -> Response:
        self._delete(item_id)
        return Response(status=204)

    def _upload(self, request: Request, item_id: int) -> Response:
        try:
            self._store(item_id, request.stream)
        except ArtworkTooBigError:
            return Response(TOO_LARGE_MESSAGE, status=413, mimetype="text/plain")
        except ArtworkError as err:
            return Response(str(err), status=400, mimetype="text/plain")
        return Response(status=201)


class AlbumArtworkHandler(_ImageHandler):
    """Serves, stores and removes the artwork of an album.

    The album ID comes in the ``album_id`` route value. When no artwork is
    found the image at ``not_found_path`` under ``root`` is served with 404.
    """

    _id_kwarg = "album_id"
    _id_label = "albumID"

    def __init__(
        self,
        artwork_manager: ArtworkManager,
        root: str | os.PathLike[str],
        not_found_path: str,
    ) -> None:
        self.artwork_manager = artwork_manager
        self.root = Path(root)
        self.not_found_path = not_found_path

    def __call__(self, request: Request, **kwargs: Any) -> Response:
        return super().__call__(request, **kwargs)

    def _lookup(self, item_id: int, size: ImageSize) -> BinaryIO:
        return self.artwork_manager.find_and_save_album_artwork(item_id, size)

    def _delete(self, item_id: int) -> None:
        self.artwork_manager.remove_album_artwork(item_id)

    def _store(self, item_id: int, body: BinaryIO) -> None:
        self.artwork_manager.save_album_artwork(item_id, body)

    def _not_found_response(self) -> Response:
        try:
            data = (self.root / self.not_found_path).read_bytes()
        except OSError as err:
            log.error("Error opening not-found image: %s", err)
            return super()._not_found_response()
        return Response(data, status=404, mimetype=_sniff(data))


class ArtistImageHandler(_ImageHandler):
    """Serves, stores and removes the image of an artist.

    The artist ID comes in the ``artist_id`` route value.
    """

    _id_kwarg = "artist_id"
    _id_label = "artistID"

    def __init__(self, image_manager: ArtistImageManager) -> None:
        self.image_manager = image_manager

    def __call__(self, request: Request, **kwargs: Any) -> Response:
        return super().__call__(request, **kwargs)

    def _lookup(self, item_id: int, size: ImageSize) -> BinaryIO:
        return self.image_manager.find_and_save_artist_image(item_id, size)

    def _delete(self, item_id: int) -> None:
        self.image_manager.remove_artist_image(item_id)

    def _store(self, item_id: int, body: BinaryIO) -> None:
        self.image_manager.save_artist_image(item_id, body)