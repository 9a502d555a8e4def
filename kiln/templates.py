"""Template rendering for Kiln.

Every output page is produced in two passes with Jinja2:

1. The shared layout is rendered with the raw page content inserted as
   ``{{ content }}``. The content is not rendered in this pass, so the page's
   own placeholders are still present in the result.
2. That result is compiled again as a template and rendered with the
   locale's entries for the page.

Page content that happens to look like template syntax is therefore
interpreted in the second pass.

Key classes:
- PageDescriptor: A discovered page (name and raw content).
- RenderContext: Locale entries split into layout and page scope.
- TemplateRenderer: Runs both passes and returns the final bytes.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from jinja2 import Environment, TemplateError, TemplateSyntaxError
from markupsafe import Markup

from .errors import TemplateCompileError

SHARED_KEY = "shared"
TITLE_KEY = "title"

BODY_CLOSE_RE = re.compile(r"</body\s*>", re.IGNORECASE)

# Must not contain Jinja delimiters: it is compiled again in the second pass.
RELOAD_SCRIPT_TEMPLATE = """<script>
(() => {{
  const url = location.protocol + '//' + location.hostname + ':{port}/';
  let generation = null;
  setInterval(() => {{
    fetch(url, {{ cache: 'no-store' }})
      .then((response) => response.text())
      .then((text) => {{
        if (generation !== null && text !== generation) location.reload();
        generation = text;
      }})
      .catch(() => {{}});
  }}, {interval});
}})();
</script>
"""


def reload_script(port: int = 4242, interval: int = 1000) -> str:
    """Return the polling snippet injected into dev builds.

    Args:
        port: Port of the live-reload notification endpoint.
        interval: Poll interval in milliseconds.
    """
    return RELOAD_SCRIPT_TEMPLATE.format(port=port, interval=interval)


def inject_before_body_close(html: str, snippet: str) -> str:
    """Insert ``snippet`` right before the last ``</body>`` tag.

    Content without a closing body tag is returned unchanged.
    """
    matches = list(BODY_CLOSE_RE.finditer(html))
    if not matches:
        return html
    start = matches[-1].start()
    return html[:start] + snippet + html[start:]


@dataclass(frozen=True)
class PageDescriptor:
    """A page discovered under ``src/pages``.

    Attributes:
        name: File name without extension; used for output paths and as the
            key of the page's translation entries.
        content: Raw page source.
        path: Source path, for error reporting.
    """

    name: str
    content: str
    path: Path | None = None

    @classmethod
    def from_path(cls, path: Path) -> PageDescriptor:
        return cls(name=path.stem, content=path.read_text(encoding="utf-8"), path=path)


@dataclass
class RenderContext:
    """Entries available to each rendering pass for one (page, locale).

    Attributes:
        layout: Locale-wide entries for the layout pass.
        page: Entries for the page pass; page-scoped keys shadow shared ones.
    """

    layout: dict[str, Any] = field(default_factory=dict)
    page: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def for_page(
        cls, document: Mapping[str, Any], page_name: str, locale: str = "default"
    ) -> RenderContext:
        """Split a locale document into the layout and page entries for a page.

        Args:
            document: The locale's translation document.
            page_name: Name of the page being rendered.
            locale: Locale identifier, exposed to the layout as ``locale``.
        """
        shared = _mapping(document.get(SHARED_KEY))
        titles = _mapping(document.get(TITLE_KEY))
        scoped = _mapping(document.get(page_name))

        layout = dict(shared)
        layout.update(
            {
                "title": titles.get(page_name, ""),
                "page": page_name,
                "locale": locale,
            }
        )
        page = dict(shared)
        page.update(scoped)
        return cls(layout=layout, page=page)


def _mapping(value: Any) -> dict[str, Any]:
    return dict(value) if isinstance(value, Mapping) else {}


class TemplateRenderer:
    """Two-pass layout/page renderer.

    Attributes:
        dev_mode: Whether to inject the live-reload polling script.
        script: The snippet inserted before ``</body>`` in dev mode.
        env: Jinja2 environment used for both passes.
    """

    def __init__(self, dev_mode: bool = False, reload_port: int = 4242):
        self.dev_mode = dev_mode
        self.script = reload_script(reload_port)
        self.env = Environment(autoescape=True, keep_trailing_newline=True)

    def compose(
        self, layout: str, page: PageDescriptor, context: RenderContext, locale: str
    ) -> str:
        """Render the layout with the raw page content (first pass).

        Returns:
            The intermediate template source for the second pass.
        """
        values = dict(context.layout)
        values["content"] = Markup(page.content)
        intermediate = self._render("layout", layout, values, page, locale)
        if self.dev_mode:
            intermediate = inject_before_body_close(intermediate, self.script)
        return intermediate

    def interpolate(
        self,
        intermediate: str,
        page: PageDescriptor,
        context: RenderContext,
        locale: str,
    ) -> str:
        """Render the composed page with the page entries (second pass)."""
        return self._render("page", intermediate, context.page, page, locale)

    def render(
        self, layout: str, page: PageDescriptor, context: RenderContext, locale: str
    ) -> bytes:
        """Render one page for one locale.

        Args:
            layout: Layout template source.
            page: Page to render.
            context: Locale entries for this page.
            locale: Locale identifier, for error reporting.

        Returns:
            UTF-8 encoded HTML.

        Raises:
            TemplateCompileError: If either pass fails.
        """
        intermediate = self.compose(layout, page, context, locale)
        return self.interpolate(intermediate, page, context, locale).encode("utf-8")

    def _render(
        self,
        owner: str,
        source: str,
        values: Mapping[str, Any],
        page: PageDescriptor,
        locale: str,
    ) -> str:
        try:
            template = self.env.from_string(source)
        except TemplateSyntaxError as exc:
            raise TemplateCompileError(
                owner,
                page.name,
                locale,
                f"line {exc.lineno}: {exc.message}",
                source_path=page.path if owner == "page" else None,
                original_error=exc,
            ) from exc
        try:
            return template.render(dict(values))
        except TemplateError as exc:
            raise TemplateCompileError(
                owner,
                page.name,
                locale,
                f"{type(exc).__name__}: {exc}",
                source_path=page.path if owner == "page" else None,
                original_error=exc,
            ) from exc
