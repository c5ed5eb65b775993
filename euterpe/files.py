"""HTTP handlers serving single media files and whole albums as zip archives."""

from __future__ import annotations

import io
import logging
import os
import re
import zipfile
from collections.abc import Iterable, Iterator
from typing import Any, BinaryIO

from werkzeug.utils import send_file
from werkzeug.wrappers import Request, Response

from .functions import with_internal_error
from .library import Library

log = logging.getLogger(__name__)

_CHUNK_SIZE = 64 * 1024
_INT_RE = re.compile(r"[+-]?[0-9]+")
_INT64_MIN = -(2**63)
_INT64_MAX = 2**63 - 1


def _parse_int(text: str) -> int:
    if not _INT_RE.fullmatch(text):
        raise ValueError(f'parsing "{text}": invalid syntax')
    value = int(text)
    if not _INT64_MIN <= value <= _INT64_MAX:
        raise ValueError(f'parsing "{text}": value out of range')
    return value


def _not_found() -> Response:
    return Response("404 page not found\n", status=404, mimetype="text/plain")


class _Sink(io.RawIOBase):
    """A write-only, non-seekable buffer from which written bytes are taken out in pieces."""

    def __init__(self) -> None:
        super().__init__()
        self._pending = bytearray()

    def writable(self) -> bool:
        return True

    def write(self, data: Any) -> int:
        self._pending += data
        return len(data)

    def drain(self) -> Iterator[bytes]:
        if self._pending:
            data = bytes(self._pending)
            self._pending.clear()
            yield data


class _ZipStream:
    """Iterable producing a zip archive of ``files`` piece by piece.

    ``written`` counts the bytes copied from the files so far.
    """

    def __init__(self, files: Iterable[str]) -> None:
        self.files = list(files)
        self.written = 0

    def __iter__(self) -> Iterator[bytes]:
        sink = _Sink()
        with zipfile.ZipFile(sink, "w", compression=zipfile.ZIP_DEFLATED) as archive:
            for path in self.files:
                with open(path, "rb") as src:
                    with archive.open(os.path.basename(path), "w") as dst:
                        yield from sink.drain()
                        while chunk := src.read(_CHUNK_SIZE):
                            dst.write(chunk)
                            self.written += len(chunk)
                            yield from sink.drain()
                    yield from sink.drain()
        yield from sink.drain()


def write_zip_contents(writer: BinaryIO, files: Iterable[str]) -> int:
    """Write a zip of ``files`` to ``writer``, each stored under its base name.

    Returns the number of file bytes archived.
    """
    stream = _ZipStream(files)
    for chunk in stream:
        writer.write(chunk)
    return stream.written


def _continue_stream(first: bytes, rest: Iterator[bytes]) -> Iterator[bytes]:
    yield first
    try:
        yield from rest
    except Exception as err:  # noqa: BLE001 - the response has already started
        log.error("error writing album zip: %s", err)


class AlbumHandler:
    """Serves all files of an album as ``<album name>.zip``.

    The album ID comes in the ``album_id`` route value.
    """

    def __init__(self, library: Library) -> None:
        self.library = library

    def __call__(self, request: Request, **kwargs: Any) -> Response:
        return with_internal_error(self._find)(request, **kwargs)

    def _find(self, request: Request, **kwargs: Any) -> Response:
        id_string = kwargs.get("album_id")
        if id_string is None:
            return _not_found()

        try:
            album_id = _parse_int(str(id_string))
        except ValueError as err:
            return Response(
                f"Parsing albumID in request path failed: {err}\n",
                status=400,
                mimetype="text/plain",
            )

        album_files = self.library.get_album_files(album_id)
        if not album_files:
            return _not_found()

        paths = [self.library.get_file_path(track.id) for track in album_files]
        stream = _ZipStream(paths)
        chunks = iter(stream)
        try:
            first = next(chunks, b"")
        except Exception as err:
            if stream.written == 0:
                raise
            log.error("error writing album zip: %s", err)
            first, chunks = b"", iter(())

        return Response(
            _continue_stream(first, chunks),
            mimetype="application/zip",
            headers={"Content-Disposition": f'filename="{album_files[0].album}.zip"'},
        )


class FileHandler:
    """Serves a media file from the library by its ID.

    The file ID comes in the ``file_id`` route value.
    """

    def __init__(self, library: Library | None) -> None:
        self.library = library

    def __call__(self, request: Request, **kwargs: Any) -> Response:
        return with_internal_error(self._find)(request, **kwargs)

    def _find(self, request: Request, **kwargs: Any) -> Response:
        try:
            file_id = _parse_int(str(kwargs.get("file_id", "")))
        except ValueError:
            return _not_found()

        if self.library is None:
            raise RuntimeError("Library for FileHandler is nil")

        file_path = self.library.get_file_path(file_id)
        if not file_path or not os.path.exists(file_path):
            return _not_found()

        response = send_file(file_path, request.environ, conditional=True)
        response.headers["Content-Disposition"] = (
            f'filename="{os.path.basename(file_path)}"'
        )
        return response