"""Loading of HTML templates and the handler rendering the web UI pages."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import jinja2
from werkzeug.wrappers import Request, Response

log = logging.getLogger(__name__)

LAYOUT_TEMPLATE = "layout.html"
CONTENT_TEMPLATE = "content"


@dataclass(frozen=True)
class AllTemplates:
    """Parsed page templates, ready for rendering."""

    index: jinja2.Template
    add_device: jinja2.Template


class FSTemplates:
    """Finds and parses templates stored in a directory.

    Page templates are rendered inside ``layout.html``, which includes the page
    as the template named ``content``.
    """

    def __init__(self, root: str | os.PathLike[str]) -> None:
        self.root = Path(root)
        self._env = jinja2.Environment(
            loader=jinja2.FileSystemLoader(str(self.root)), autoescape=True
        )

    def get(self, path: str) -> jinja2.Template:
        """Find and parse the template at ``path``."""
        try:
            return self._env.get_template(path)
        except jinja2.TemplateError as err:
            raise jinja2.TemplateError(f"parsing template: {err}") from err

    def _page(self, name: str) -> jinja2.Template:
        try:
            source = (self.root / name).read_text(encoding="utf-8")
        except OSError as err:
            raise jinja2.TemplateError(f"could not find {name} template: {err}") from err

        env = jinja2.Environment(
            loader=jinja2.ChoiceLoader(
                [
                    jinja2.DictLoader({CONTENT_TEMPLATE: source}),
                    jinja2.FileSystemLoader(str(self.root)),
                ]
            ),
            autoescape=True,
        )
        try:
            env.get_template(CONTENT_TEMPLATE)
            return env.get_template(LAYOUT_TEMPLATE)
        except jinja2.TemplateError as err:
            raise jinja2.TemplateError(f"finding {name} template: {err}") from err

    def all(self) -> AllTemplates:
        """Parse every page template inside the layout."""
        try:
            self.get(LAYOUT_TEMPLATE)
        except jinja2.TemplateError as err:
            raise jinja2.TemplateError(f"parsing layout: {err}") from err
        return AllTemplates(
            index=self._page("player.html"),
            add_device=self._page("add_device.html"),
        )


@dataclass(frozen=True)
class MenuItem:
    """An entry of the web UI's navigation menu."""

    uri: str
    name: str
    active: bool = False


class TemplateHandler:
    """Render a page template with the title, version, request and menu."""

    def __init__(self, template: jinja2.Template, title: str, version: str = "") -> None:
        self.template = template
        self.title = title
        self.version = version

    def __call__(self, request: Request, **kwargs: Any) -> Response:
        menu = [
            MenuItem(uri="/", name="Player", active=request.path == "/"),
            MenuItem(uri="/add_device/", name="Add Device", active=request.path == "/add_device/"),
        ]
        try:
            body = self.template.render(
                title=self.title, version=self.version, req=request, menu=menu
            )
        except Exception as err:  # noqa: BLE001 - any rendering failure is a 500
            message = f"Error executing template: {err}.\n"
            log.error(message.rstrip())
            return Response(message, status=500)
        return Response(body, mimetype="text/html")