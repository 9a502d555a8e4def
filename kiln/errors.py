"""Error types raised while building and watching a Kiln site.

Every error carries the path it concerns (when there is one) and a
human-readable message, so the CLI can print a short summary without
inspecting the concrete type.

Taxonomy:
- IOFailure: filesystem read/write/copy failed.
- ExternalToolFailure: a CSS/JS tool exited non-zero.
- MalformedTranslation: a locale document could not be parsed.
- TemplateCompileError: the layout or a page is not a valid template.
- WatchInitError: the source tree could not be watched.
"""

from __future__ import annotations

from pathlib import Path


class BuildError(Exception):
    """Error during site build with file context.

    Attributes:
        source_path: Path to the source file that caused the error, if any.
        message: Human-readable error message.
        original_error: The original exception that was caught.
    """

    def __init__(
        self,
        source_path: Path | None,
        message: str,
        original_error: Exception | None = None,
    ):
        self.source_path = source_path
        self.message = message
        self.original_error = original_error
        if source_path is None:
            super().__init__(message)
        else:
            super().__init__(f"{source_path}: {message}")


class IOFailure(BuildError):
    """A filesystem operation failed."""


class ExternalToolFailure(BuildError):
    """An external transformer exited with a non-zero status.

    Attributes:
        tool: Short name of the tool (e.g. ``tailwindcss``).
        exit_code: Exit status reported by the process.
    """

    def __init__(self, tool: str, exit_code: int, source_path: Path | None = None):
        self.tool = tool
        self.exit_code = exit_code
        super().__init__(source_path, f"{tool} exited with status {exit_code}")


class MalformedTranslation(BuildError):
    """A locale document is not a parseable key/value mapping."""


class TemplateCompileError(BuildError):
    """The layout or a page could not be compiled or rendered.

    Attributes:
        owner: ``"layout"`` or ``"page"``.
        page: Name of the page being rendered.
        locale: Locale being rendered.
    """

    def __init__(
        self,
        owner: str,
        page: str,
        locale: str,
        message: str,
        source_path: Path | None = None,
        original_error: Exception | None = None,
    ):
        self.owner = owner
        self.page = page
        self.locale = locale
        super().__init__(
            source_path,
            f"{owner} template error rendering '{page}' ({locale}): {message}",
            original_error,
        )


class WatchInitError(BuildError):
    """The filesystem watch could not be established."""
