"""Translation loading for Kiln.

Locale documents live under ``src/intl`` as JSON (or YAML) mappings. Each file
supplies the text for one locale; a file whose name ends in ``_default``
(``fi_default.json``) is also registered as the ``"default"`` locale, which
drives the un-prefixed output pages.

Key functions:
- load_translations: Build a locale -> document mapping from files.
- locale_name: Derive the locale identifier from a document path.

Key class:
- TranslationResolver: Discovers locale documents in a directory.
"""

from __future__ import annotations

import json
from collections.abc import Iterable
from pathlib import Path
from typing import Any

import yaml

from .errors import IOFailure, MalformedTranslation

DEFAULT_LOCALE = "default"
DEFAULT_MARKER = "_default"
SUFFIXES = (".json", ".yaml", ".yml")


def locale_name(path: Path) -> str:
    """Return the locale a document belongs to, without the default marker.

    Examples:
        >>> locale_name(Path("src/intl/fi_default.json"))
        'fi'
    """
    stem = path.stem
    if stem.endswith(DEFAULT_MARKER):
        return stem[: -len(DEFAULT_MARKER)]
    return stem


def is_default_document(path: Path) -> bool:
    return path.stem.endswith(DEFAULT_MARKER)


def parse_document(path: Path) -> dict[str, Any]:
    """Read and parse one locale document.

    Args:
        path: Path to a ``.json``, ``.yaml`` or ``.yml`` file.

    Returns:
        The top-level mapping.

    Raises:
        IOFailure: If the file cannot be read.
        MalformedTranslation: If the file is not a structured mapping.
    """
    try:
        text = path.read_text(encoding="utf-8")
    except UnicodeDecodeError as exc:
        raise MalformedTranslation(path, f"Not valid UTF-8: {exc}", exc) from exc
    except OSError as exc:
        raise IOFailure(path, f"Cannot read translation: {exc}", exc) from exc
    try:
        if path.suffix == ".json":
            payload = json.loads(text)
        else:
            payload = yaml.safe_load(text)
    except (ValueError, yaml.YAMLError) as exc:
        raise MalformedTranslation(path, f"Cannot parse translation: {exc}", exc) from exc
    if payload is None and path.suffix != ".json":
        payload = {}
    if not isinstance(payload, dict):
        raise MalformedTranslation(
            path, f"Expected a mapping at top level, got {type(payload).__name__}"
        )
    return payload


def load_translations(paths: Iterable[Path]) -> dict[str, dict[str, Any]]:
    """Build the translation tree from locale documents.

    Files are applied in the given order; a later file for the same locale
    replaces an earlier one.

    Args:
        paths: Locale document paths, in load order.

    Returns:
        Mapping of locale name to document. ``"default"`` is always present.
    """
    tree: dict[str, dict[str, Any]] = {DEFAULT_LOCALE: {}}
    for path in paths:
        document = parse_document(path)
        if is_default_document(path):
            tree[DEFAULT_LOCALE] = document
        # A bare "_default.json" only supplies the fallback.
        name = locale_name(path)
        if name:
            tree[name] = document
    return tree


class TranslationResolver:
    """Discovers and loads the locale documents of a project.

    Attributes:
        intl_dir: Directory scanned recursively for locale documents.
    """

    def __init__(self, intl_dir: Path):
        self.intl_dir = intl_dir

    def discover(self) -> list[Path]:
        if not self.intl_dir.exists():
            return []
        return sorted(
            path
            for path in self.intl_dir.rglob("*")
            if path.is_file() and path.suffix in SUFFIXES
        )

    def resolve(self) -> dict[str, dict[str, Any]]:
        return load_translations(self.discover())
