# euterpe

The HTTP side of a self-hosted music server, as a WSGI application built on
Werkzeug. It serves a music library to browsers and to mobile clients:

* browsing albums and artists page by page, ordered by name or id;
* searching tracks;
* streaming single media files and downloading whole albums as zip archives;
* fetching, uploading and removing album artwork and artist images;
* logging in with a form, with a JSON token request, with HTTP Basic auth,
  or with a JWT given as a bearer token, a `session` cookie or a `token`
  query value;
* a PNG QR code holding the server address and an access token, so a device
  can be paired without typing anything (the QR encoder is built in);
* optional gzip compression of responses and an `X-Clacks-Overhead` header
  on every response.

## Supplying a library

`euterpe.library` defines, as `typing.Protocol` classes, what the web layer
asks of your library:

* `Library` – `search(query)`, `get_file_path(file_id)` and
  `get_album_files(album_id)`, returning `SearchResult` items;
* `Browser` – `browse_albums(args)` and `browse_artists(args)`, each taking
  a `BrowseArgs` (zero-based `page`, `per_page`, `order_by`, `order`) and
  returning the page of `Album` or `Artist` items together with the total
  count;
* `ArtworkManager` – `find_and_save_album_artwork(album_id, size)`,
  `save_album_artwork(album_id, body)` and `remove_album_artwork(album_id)`;
* `ArtistImageManager` – `find_and_save_artist_image(artist_id, size)`,
  `save_artist_image(artist_id, body)` and `remove_artist_image(artist_id)`.

Image look-ups take an `ImageSize` (`ORIGINAL` or `SMALL`) and return a
readable binary stream. A missing image is reported with
`ArtworkNotFoundError` (or `FileNotFoundError`), an upload that is too large
with `ArtworkTooBigError`, and a rejected one with `ArtworkError`; the
handlers turn these into 404, 413 and 400 responses. Any other exception
becomes a 500 response carrying its message.

`build_application` passes one object to every handler, so it must satisfy
all four protocols.

## Building the application

```python
from euterpe.functions import Auth
from euterpe.webserver import ServerConfig, build_application

password = "password"
config = ServerConfig(
    listen="127.0.0.1:8080",
    gzip=True,
    auth=True,
    authenticate=Auth(user="listener", password=password, secret="secret"),
)
app = build_application(config, my_library, "http_root", "templates")
```

`http_root` is the directory of static files for the web interface; when an
album has no artwork, `images/unknownAlbum.png` under it is served with a 404.
`templates_root` must hold `layout.html`, `player.html`, `add_device.html`
and, when authentication is on, `unauthorized.html`. Templates are Jinja2;
`layout.html` includes the page as the template named `content`, and pages
are rendered with `title`, `version`, `req` (the request) and `menu` (a list
of `MenuItem` with `uri`, `name` and `active`). `build_application` raises
`jinja2.TemplateError` when the pages cannot be parsed.

`ServerConfig` fields: `listen`, `gzip`, `auth`, `authenticate`, `ssl`,
`ssl_certificate`, `ssl_key`, `read_timeout`, `write_timeout`,
`max_headers_size` and `version`. With `auth` on, every path except
`/v1/login/token/`, `/login/`, `/css/`, `/js/`, `/favicon/` and `/fonts/`
needs credentials. Unauthenticated requests accepting `text/html` are
redirected to `/login/`, those accepting `application/json` get a JSON 401,
and the rest get a Basic auth challenge.

## Running it

The returned `Application` can be mounted in any WSGI server. To run it on
its own, create `euterpe.webserver.Server(config, library, http_root,
templates_root)` and call `serve()`: it returns once the server listens
(over TLS when `ssl` is set) and serves in a background thread. `address`
gives the host and port, `stop()` shuts it down and `wait(timeout)` blocks
until it has stopped, returning `False` if the timeout ran out first.

## HTTP API

| Path | Methods | Purpose |
| --- | --- | --- |
| `/v1/file/{id}` | GET | stream a media file |
| `/v1/album/{id}` | GET | download an album as a zip |
| `/v1/album/{id}/artwork` | GET, PUT, DELETE | album artwork (`?size=small` for a thumbnail) |
| `/v1/artist/{id}/image` | GET, PUT, DELETE | artist image (`?size=small` for a thumbnail) |
| `/v1/browse` | GET | `by=album\|artist`, `page`, `per-page`, `order-by=id\|name`, `order=asc\|desc` |
| `/v1/search/{query}`, `/v1/search?q=` | GET | search tracks |
| `/v1/login/token/` | POST | exchange `{"username", "password"}` for a token |
| `/v1/register/token/` | POST | acknowledge a device token (204) |
| `/login/` | POST | form login (`username`, `password`, `remember_me`) |
| `/logout/` | GET | clear the session cookie |
| `/new_qr_token/` | GET | QR code for pairing a device (`?address=`) |
| `/`, `/add_device/` | GET | web interface pages |

The older unversioned paths (`/file/…`, `/album/…`, `/artist/…`, `/browse`,
`/search…`, `/login/token/`, `/register/token/`) are served as well, and
any other GET path is looked up among the static files.

## What this package does not do

It contains no music library: no scanning of directories, no reading of
audio tags, no database and no fetching or resizing of artwork. Those come
from the object you pass in. There is also no command-line program and no
configuration-file loading; you build `ServerConfig` yourself.

## Tests

Install the `test` extra and run `pytest` from the project directory.