import json
from pathlib import Path

import pytest


class FakeRunner:
    """ToolRunner that records invocations instead of spawning processes."""

    def __init__(self, statuses=None):
        self.calls = []
        self.statuses = statuses or {}

    def run(self, tool, args, cwd):
        self.calls.append((tool, list(args), cwd))
        return self.statuses.get(tool, 0)


def write(path: Path, text: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return path


def create_project(root: Path) -> Path:
    src = root / "src"
    write(
        src / "layout.html",
        "<html><body><h1>{{ title }}</h1>{{ content }}</body></html>\n",
    )
    write(src / "pages" / "index.html", "<p>{{ greeting }}</p>")
    write(src / "pages" / "about.html", "<p>{{ about_text }}</p>")
    write(
        src / "intl" / "en.json",
        json.dumps(
            {
                "title": {"index": "Home", "about": "About"},
                "index": {"greeting": "Hello"},
                "about": {"about_text": "About us"},
            }
        ),
    )
    write(
        src / "intl" / "fi_default.json",
        json.dumps(
            {
                "title": {"index": "Etusivu", "about": "Tietoa"},
                "index": {"greeting": "Hei"},
                "about": {"about_text": "Meista"},
            }
        ),
    )
    write(src / "styles" / "tailwind.css", "@tailwind base;")
    write(src / "styles" / "base.css", "body { margin: 0; }")
    write(src / "styles" / "extra" / "theme.css", ".dark { color: white; }")
    write(src / "scripts" / "main.js", "console.log('main');")
    write(src / "scripts" / "lib" / "util.js", "export const x = 1;")
    (src / "media").mkdir()
    (src / "media" / "logo.png").write_bytes(b"\x89PNG fake")
    (src / "favicon.ico").write_bytes(b"ico")
    write(src / "robots.txt", "User-agent: *\n")
    return root


@pytest.fixture
def fake_runner():
    return FakeRunner()


@pytest.fixture
def project(tmp_path):
    return create_project(tmp_path)
