"""Site building functionality for Kiln.

This module turns a ``src/`` tree into a complete ``dist/`` tree. A build
always starts from an empty output directory, so a finished build never mixes
files with an earlier one.

Steps, run one after another:
1. Reset the output directory (styles/, scripts/, media/).
2. Compile the CSS entry and bundle scripts with external tools.
3. Copy the remaining stylesheets.
4. Load the translation documents.
5. Render every page for every locale.
6. Copy media, favicon.ico and robots.txt.

Key functions:
- build_site: Build a project with its configuration.
- load_config: Loads configuration from kiln.yaml.

Key classes:
- BuildPipeline: Runs the steps above.
- BuildResult: What a build wrote and which pages failed to render.
"""

from __future__ import annotations

import shlex
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .errors import BuildError, IOFailure, TemplateCompileError
from .templates import PageDescriptor, RenderContext, TemplateRenderer
from .tools import CSS_COMMAND, JS_COMMAND, ExternalTransform, SubprocessToolRunner
from .translations import DEFAULT_LOCALE, TranslationResolver
from .utils import copy_file, copy_tree, ensure_clean_dir, mirror_path

__all__ = [
    "BuildError",
    "BuildPipeline",
    "BuildResult",
    "DEFAULT_CONFIG",
    "build_site",
    "load_config",
]

CONFIG_FILE = "kiln.yaml"

DEFAULT_CONFIG: dict[str, Any] = {
    "source_dir": "src",
    "output_dir": "dist",
    "port": 3000,
    "reload_port": 4242,
    "ws_port": None,
    "settle": 0.05,
    "css_entry": "tailwind.css",
    "css_command": CSS_COMMAND,
    "js_command": JS_COMMAND,
}

OUTPUT_SUBDIRS = ("styles", "scripts", "media")
ROOT_FILES = ("favicon.ico", "robots.txt")


@dataclass
class BuildResult:
    """Result of a site build operation.

    Attributes:
        output_dir: Directory where the site was built.
        pages: Pages discovered under src/pages.
        locales: Locales the pages were rendered for.
        written: HTML files written.
        failures: Page/locale units that could not be rendered.
    """

    output_dir: Path
    pages: list[PageDescriptor] = field(default_factory=list)
    locales: list[str] = field(default_factory=list)
    written: list[Path] = field(default_factory=list)
    failures: list[TemplateCompileError] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures


def load_config(project_root: Path) -> dict[str, Any]:
    """Load site configuration from kiln.yaml.

    Args:
        project_root: Root directory of the project.

    Returns:
        Dictionary containing configuration values, with defaults applied.
    """
    config_path = project_root / CONFIG_FILE
    config = DEFAULT_CONFIG.copy()
    if config_path.exists():
        with open(config_path, encoding="utf-8") as f:
            loaded = yaml.safe_load(f) or {}
            if isinstance(loaded, dict):
                config.update(loaded)
    for key in ("css_command", "js_command"):
        if isinstance(config[key], str):
            config[key] = shlex.split(config[key])
    return config


def tool_name(command: list[str]) -> str:
    """Name a command after the program doing the work (skipping ``npx``)."""
    if len(command) > 1 and Path(command[0]).name == "npx":
        return command[1]
    return Path(command[0]).name


@contextmanager
def _io_guard(path: Path, action: str) -> Iterator[None]:
    try:
        yield
    except (OSError, UnicodeDecodeError) as exc:
        raise IOFailure(path, f"{action}: {exc}", exc) from exc


class BuildPipeline:
    """Builds the output tree of one project.

    Attributes:
        project_root: Root directory of the project.
        config: Configuration with defaults applied.
        source_dir: The ``src`` tree.
        output_dir: The ``dist`` tree.
        runner: ToolRunner used for external transforms.
    """

    def __init__(
        self,
        project_root: Path,
        config: dict[str, Any] | None = None,
        runner=None,
    ):
        """Initialize the pipeline.

        Args:
            project_root: Root directory of the project.
            config: Optional configuration; loaded from kiln.yaml when omitted.
            runner: Optional ToolRunner; defaults to running subprocesses.
        """
        self.project_root = project_root
        self.config = config if config is not None else load_config(project_root)
        self.source_dir = project_root / self.config["source_dir"]
        self.output_dir = project_root / self.config["output_dir"]
        self.runner = runner or SubprocessToolRunner(project_root)
        self.css_transform = ExternalTransform(
            tool_name(self.config["css_command"]), list(self.config["css_command"])
        )
        self.js_transform = ExternalTransform(
            tool_name(self.config["js_command"]), list(self.config["js_command"])
        )

    @property
    def css_entry(self) -> Path:
        return self.source_dir / "styles" / self.config["css_entry"]

    def build(self, dev_mode: bool = False) -> BuildResult:
        """Run every build step in order.

        Args:
            dev_mode: Inject the live-reload script into every page.

        Returns:
            BuildResult; ``ok`` is False when some pages failed to render.

        Raises:
            IOFailure: On filesystem errors, including a missing layout.
            ExternalToolFailure: If the CSS or JS tool fails.
            MalformedTranslation: If a locale document cannot be parsed.
        """
        if not self.source_dir.is_dir():
            raise IOFailure(self.source_dir, "Expected a source directory")
        self.reset_output()
        self.compile_css()
        self.bundle_scripts()
        self.copy_styles()
        translations = self.resolve_translations()
        result = self.render_pages(translations, dev_mode)
        self.copy_static()
        return result

    def reset_output(self) -> None:
        with _io_guard(self.output_dir, "Cannot reset output directory"):
            ensure_clean_dir(self.output_dir)
            for name in OUTPUT_SUBDIRS:
                (self.output_dir / name).mkdir(parents=True, exist_ok=True)

    def compile_css(self) -> None:
        entry = self.css_entry
        if not entry.exists():
            return
        print(f"Generating {self.css_transform.tool}")
        self.css_transform.apply(
            self.runner,
            self._relative(entry),
            self._relative(mirror_path(entry, self.source_dir, self.output_dir)),
            self.project_root,
        )

    def bundle_scripts(self) -> None:
        scripts_dir = self.source_dir / "scripts"
        if not scripts_dir.exists():
            return
        print("Generating js")
        for script in sorted(scripts_dir.rglob("*.js")):
            dest = mirror_path(script, self.source_dir, self.output_dir)
            self.js_transform.apply(
                self.runner,
                self._relative(script),
                self._relative(dest),
                self.project_root,
            )

    def copy_styles(self) -> None:
        """Copy every stylesheet except the CSS entry, keeping its relative path."""
        styles_dir = self.source_dir / "styles"
        if not styles_dir.exists():
            return
        print("Generating css")
        entry = self.css_entry
        for style in sorted(styles_dir.rglob("*.css")):
            if style == entry:
                continue
            with _io_guard(style, "Cannot copy stylesheet"):
                copy_file(style, mirror_path(style, self.source_dir, self.output_dir))

    def resolve_translations(self) -> dict[str, dict[str, Any]]:
        resolver = TranslationResolver(self.source_dir / "intl")
        if resolver.intl_dir.exists():
            print("Generating translations")
        return resolver.resolve()

    def discover_pages(self) -> list[PageDescriptor]:
        pages_dir = self.source_dir / "pages"
        if not pages_dir.exists():
            return []
        pages = []
        for path in sorted(pages_dir.rglob("*.html")):
            with _io_guard(path, "Cannot read page"):
                pages.append(PageDescriptor.from_path(path))
        return pages

    def read_layout(self) -> str:
        layout_path = self.source_dir / "layout.html"
        with _io_guard(layout_path, "Cannot read layout"):
            return layout_path.read_text(encoding="utf-8")

    def page_target(self, page: PageDescriptor, locale: str) -> Path:
        """Return the output path of a page: ``<page>.html`` or ``<locale>/<page>.html``."""
        if locale == DEFAULT_LOCALE:
            return self.output_dir / f"{page.name}.html"
        return self.output_dir / locale / f"{page.name}.html"

    def render_pages(
        self, translations: dict[str, dict[str, Any]], dev_mode: bool = False
    ) -> BuildResult:
        """Render each page for each locale, skipping units that fail.

        Args:
            translations: Locale -> document mapping.
            dev_mode: Inject the live-reload script.

        Returns:
            BuildResult listing written files and render failures.
        """
        print("Generating html")
        layout = self.read_layout()
        pages = self.discover_pages()
        renderer = TemplateRenderer(
            dev_mode=dev_mode, reload_port=int(self.config["reload_port"])
        )
        result = BuildResult(
            output_dir=self.output_dir, pages=pages, locales=list(translations)
        )
        for page in pages:
            for locale, document in translations.items():
                context = RenderContext.for_page(document, page.name, locale)
                try:
                    html = renderer.render(layout, page, context, locale)
                except TemplateCompileError as exc:
                    print(f"Skipping {page.name} ({locale}): {exc.message}")
                    result.failures.append(exc)
                    continue
                target = self.page_target(page, locale)
                with _io_guard(target, "Cannot write page"):
                    target.parent.mkdir(parents=True, exist_ok=True)
                    target.write_bytes(html)
                result.written.append(target)
        return result

    def copy_static(self) -> None:
        media_dir = self.source_dir / "media"
        if media_dir.exists():
            print("Generating media")
            with _io_guard(media_dir, "Cannot copy media"):
                copy_tree(media_dir, self.output_dir / "media")
        for name in ROOT_FILES:
            source = self.source_dir / name
            if source.exists():
                with _io_guard(source, f"Cannot copy {name}"):
                    copy_file(source, self.output_dir / name)

    def _relative(self, path: Path) -> Path:
        try:
            return path.relative_to(self.project_root)
        except ValueError:
            return path


def build_site(
    project_root: Path,
    dev_mode: bool = False,
    config: dict[str, Any] | None = None,
    runner=None,
) -> BuildResult:
    """Build the entire static site.

    Args:
        project_root: Root directory of the project.
        dev_mode: Whether to inject the live-reload script.
        config: Optional configuration overriding kiln.yaml.
        runner: Optional ToolRunner for external transforms.

    Returns:
        BuildResult for the build.
    """
    return BuildPipeline(project_root, config=config, runner=runner).build(dev_mode)
