"""Data types and interfaces the HTTP handlers use to reach the media library."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any, BinaryIO, Protocol, runtime_checkable


class ImageSize(enum.Enum):
    """Size of an album artwork or artist image."""

    ORIGINAL = "original"
    SMALL = "small"


class OrderBy(enum.Enum):
    """Attribute by which browse results are sorted."""

    ID = "id"
    NAME = "name"


class Order(enum.Enum):
    """Direction in which browse results are sorted."""

    ASC = "asc"
    DESC = "desc"


@dataclass(frozen=True)
class BrowseArgs:
    """Pagination and ordering for browsing albums or artists.

    Pages are counted from zero.
    """

    page: int = 0
    per_page: int = 10
    order_by: OrderBy = OrderBy.NAME
    order: Order = Order.ASC


@dataclass(frozen=True)
class Album:
    """An album as returned when browsing."""

    id: int
    name: str
    artist: str = ""

    def to_dict(self) -> dict[str, Any]:
        """Return the JSON representation used by the API."""
        return {"album_id": self.id, "album": self.name, "artist": self.artist}


@dataclass(frozen=True)
class Artist:
    """An artist as returned when browsing."""

    id: int
    name: str

    def to_dict(self) -> dict[str, Any]:
        """Return the JSON representation used by the API."""
        return {"artist_id": self.id, "artist": self.name}


@dataclass(frozen=True)
class SearchResult:
    """A single track found in the library."""

    id: int
    title: str
    album: str = ""
    artist: str = ""
    album_id: int = 0
    track: int = 0

    def to_dict(self) -> dict[str, Any]:
        """Return the JSON representation used by the API."""
        return {
            "id": self.id,
            "title": self.title,
            "album": self.album,
            "artist": self.artist,
            "album_id": self.album_id,
            "track": self.track,
        }


class ArtworkError(Exception):
    """An uploaded image was rejected, for example because of its format."""


class ArtworkNotFoundError(LookupError):
    """No artwork or image could be found."""

    def __init__(self, message: str = "artwork not found") -> None:
        super().__init__(message)


class ArtworkTooBigError(Exception):
    """An uploaded image exceeds the allowed size."""

    def __init__(self, message: str = "artwork is too big") -> None:
        super().__init__(message)


@runtime_checkable
class Library(Protocol):
    """Searches tracks and resolves them to files."""

    def search(self, query: str) -> list[SearchResult]:
        """Return all tracks matching ``query``."""

    def get_file_path(self, file_id: int) -> str:
        """Return the file system path of the track with ``file_id``."""

    def get_album_files(self, album_id: int) -> list[SearchResult]:
        """Return all tracks of the album with ``album_id``."""


@runtime_checkable
class ArtworkManager(Protocol):
    """Finds, stores and removes album artwork."""

    def find_and_save_album_artwork(self, album_id: int, size: ImageSize) -> BinaryIO:
        """Return a readable binary stream with the album artwork."""

    def remove_album_artwork(self, album_id: int) -> None:
        """Remove the stored artwork of an album."""

    def save_album_artwork(self, album_id: int, body: BinaryIO) -> None:
        """Store the image read from ``body`` as the album's artwork."""


@runtime_checkable
class ArtistImageManager(Protocol):
    """Finds, stores and removes artist images."""

    def find_and_save_artist_image(self, artist_id: int, size: ImageSize) -> BinaryIO:
        """Return a readable binary stream with the artist image."""

    def remove_artist_image(self, artist_id: int) -> None:
        """Remove the stored image of an artist."""

    def save_artist_image(self, artist_id: int, body: BinaryIO) -> None:
        """Store the image read from ``body`` as the artist's image."""


@runtime_checkable
class Browser(Protocol):
    """Pages through albums and artists."""

    def browse_albums(self, args: BrowseArgs) -> tuple[list[Album], int]:
        """Return one page of albums and the total album count."""

    def browse_artists(self, args: BrowseArgs) -> tuple[list[Artist], int]:
        """Return one page of artists and the total artist count."""