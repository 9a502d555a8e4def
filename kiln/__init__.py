"""Kiln static site builder.

Kiln renders ``src/pages`` through a single shared layout once per locale found
in ``src/intl``, delegates CSS and JS to Tailwind and esbuild, and writes a
complete ``dist/`` tree. ``kiln dev`` rebuilds on every source change and
tells open pages to reload.
"""

__all__ = ["__version__"]
__version__ = "0.1.0"
