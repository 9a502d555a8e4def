import json
from pathlib import Path

import pytest

from conftest import FakeRunner, write
from kiln.build import (
    DEFAULT_CONFIG,
    BuildPipeline,
    BuildResult,
    build_site,
    load_config,
    tool_name,
)
from kiln.errors import ExternalToolFailure, IOFailure, MalformedTranslation
from kiln.templates import reload_script


def test_build_writes_every_page_for_every_locale(project, fake_runner):
    result = build_site(project, runner=fake_runner)
    dist = project / "dist"

    assert isinstance(result, BuildResult)
    assert result.ok
    assert set(result.locales) == {"default", "en", "fi"}
    assert sorted(p.name for p in result.pages) == ["about", "index"]
    expected = {
        dist / "index.html",
        dist / "about.html",
        dist / "en" / "index.html",
        dist / "en" / "about.html",
        dist / "fi" / "index.html",
        dist / "fi" / "about.html",
    }
    assert set(result.written) == expected
    assert len(result.written) == 6
    for path in expected:
        assert path.stat().st_size > 0


def test_default_pages_use_default_marked_locale(project, fake_runner):
    build_site(project, runner=fake_runner)
    dist = project / "dist"
    root_index = (dist / "index.html").read_text(encoding="utf-8")
    assert "<h1>Etusivu</h1><p>Hei</p>" in root_index
    assert root_index == (dist / "fi" / "index.html").read_text(encoding="utf-8")
    assert "<p>Hello</p>" in (dist / "en" / "index.html").read_text(encoding="utf-8")
    assert "<p>About us</p>" in (dist / "en" / "about.html").read_text(
        encoding="utf-8"
    )


def test_external_tools_receive_fixed_arguments(project, fake_runner):
    build_site(project, runner=fake_runner)
    tools = [call[0] for call in fake_runner.calls]
    assert tools == ["tailwindcss", "esbuild", "esbuild"]

    _, css_args, cwd = fake_runner.calls[0]
    assert cwd == project
    assert css_args == [
        "npx",
        "tailwindcss",
        "-i",
        str(Path("src/styles/tailwind.css")),
        "-o",
        str(Path("dist/styles/tailwind.css")),
    ]
    js_args = [call[1] for call in fake_runner.calls[1:]]
    assert js_args[0][:4] == [
        "npx",
        "esbuild",
        str(Path("src/scripts/lib/util.js")),
        f"--outfile={Path('dist/scripts/lib/util.js')}",
    ]
    assert js_args[1][2] == str(Path("src/scripts/main.js"))
    assert "--bundle" in js_args[1]
    assert "--minify" in js_args[1]


def test_styles_are_copied_except_entry(project, fake_runner):
    build_site(project, runner=fake_runner)
    styles = project / "dist" / "styles"
    assert (styles / "base.css").read_text(encoding="utf-8") == "body { margin: 0; }"
    assert (styles / "extra" / "theme.css").exists()
    # The entry is produced by the CSS tool, never copied.
    assert not (styles / "tailwind.css").exists()


def test_media_and_root_files_are_copied(project, fake_runner):
    build_site(project, runner=fake_runner)
    dist = project / "dist"
    assert (dist / "media" / "logo.png").read_bytes() == b"\x89PNG fake"
    assert (dist / "favicon.ico").read_bytes() == b"ico"
    assert (dist / "robots.txt").exists()


def test_output_is_reset_before_build(project, fake_runner):
    stale = write(project / "dist" / "old" / "stale.html", "old")
    build_site(project, runner=fake_runner)
    assert not stale.exists()
    for name in ("styles", "scripts", "media"):
        assert (project / "dist" / name).is_dir()


def test_minimal_project_gets_output_skeleton(tmp_path, fake_runner):
    write(tmp_path / "src" / "layout.html", "{{ content }}")
    write(tmp_path / "src" / "pages" / "index.html", "<p>hi</p>")
    result = build_site(tmp_path, runner=fake_runner)
    dist = tmp_path / "dist"
    assert result.locales == ["default"]
    assert (dist / "index.html").read_text(encoding="utf-8") == "<p>hi</p>"
    for name in ("styles", "scripts", "media"):
        assert (dist / name).is_dir()
    assert fake_runner.calls == []


def test_pages_in_subfolders_use_file_name(tmp_path, fake_runner):
    write(tmp_path / "src" / "layout.html", "{{ content }}")
    write(tmp_path / "src" / "pages" / "blog" / "post.html", "post")
    build_site(tmp_path, runner=fake_runner)
    assert (tmp_path / "dist" / "post.html").read_text(encoding="utf-8") == "post"


def test_tool_failure_aborts_build(project):
    runner = FakeRunner(statuses={"esbuild": 2})
    with pytest.raises(ExternalToolFailure) as excinfo:
        build_site(project, runner=runner)
    assert excinfo.value.tool == "esbuild"
    assert excinfo.value.exit_code == 2
    assert not (project / "dist" / "index.html").exists()


def test_malformed_translation_aborts_build(project, fake_runner):
    write(project / "src" / "intl" / "sv.json", "{oops")
    with pytest.raises(MalformedTranslation):
        build_site(project, runner=fake_runner)


def test_missing_layout_is_io_failure(project, fake_runner):
    (project / "src" / "layout.html").unlink()
    with pytest.raises(IOFailure) as excinfo:
        build_site(project, runner=fake_runner)
    assert excinfo.value.source_path == project / "src" / "layout.html"


def test_missing_source_dir_is_io_failure(tmp_path, fake_runner):
    with pytest.raises(IOFailure):
        build_site(tmp_path, runner=fake_runner)


def test_non_utf8_page_is_io_failure(project, fake_runner):
    page = project / "src" / "pages" / "broken.html"
    page.write_bytes(b"<p>\xff\xfe</p>")
    with pytest.raises(IOFailure) as excinfo:
        build_site(project, runner=fake_runner)
    assert excinfo.value.source_path == page
    assert isinstance(excinfo.value.original_error, UnicodeDecodeError)


def test_non_utf8_layout_is_io_failure(project, fake_runner):
    layout = project / "src" / "layout.html"
    layout.write_bytes(b"<html><body>\xff{{ content }}</body></html>")
    with pytest.raises(IOFailure) as excinfo:
        build_site(project, runner=fake_runner)
    assert excinfo.value.source_path == layout


def test_non_utf8_translation_is_malformed(project, fake_runner):
    document = project / "src" / "intl" / "sv.json"
    document.write_bytes(b'{"k": "\xff"}')
    with pytest.raises(MalformedTranslation) as excinfo:
        build_site(project, runner=fake_runner)
    assert excinfo.value.source_path == document


def test_tool_output_dirs_are_created_under_project(project, tmp_path, monkeypatch):
    elsewhere = tmp_path / "elsewhere"
    elsewhere.mkdir()
    monkeypatch.chdir(elsewhere)
    build_site(project, runner=FakeRunner())
    assert list(elsewhere.iterdir()) == []
    assert (project / "dist" / "scripts" / "lib").is_dir()


def test_template_errors_skip_only_that_page(project, fake_runner, capsys):
    write(project / "src" / "pages" / "broken.html", "{{ oops")
    result = build_site(project, runner=fake_runner)
    dist = project / "dist"

    assert not result.ok
    assert len(result.failures) == 3
    assert {f.locale for f in result.failures} == {"default", "en", "fi"}
    assert all(f.page == "broken" and f.owner == "page" for f in result.failures)
    assert not (dist / "broken.html").exists()
    assert (dist / "index.html").exists()
    assert (dist / "en" / "about.html").exists()
    # Later steps still run.
    assert (dist / "robots.txt").exists()
    assert "Skipping broken" in capsys.readouterr().out


def test_dev_build_injects_reload_script(project, fake_runner):
    result = build_site(project, dev_mode=True, runner=fake_runner)
    script = reload_script()
    for path in result.written:
        html = path.read_text(encoding="utf-8")
        assert html.count(script) == 1
        assert html.index(script) + len(script) == html.index("</body>")


def test_production_build_has_no_reload_script(project, fake_runner):
    result = build_site(project, runner=fake_runner)
    for path in result.written:
        assert "setInterval" not in path.read_text(encoding="utf-8")


def test_config_overrides_paths_and_commands(project, fake_runner):
    (project / "src").rename(project / "source")
    (project / "kiln.yaml").write_text(
        "source_dir: source\n"
        "output_dir: public\n"
        "css_command: tailwind -i {input} -o {output} --minify\n",
        encoding="utf-8",
    )
    result = build_site(project, runner=fake_runner)
    assert result.output_dir == project / "public"
    assert (project / "public" / "en" / "index.html").exists()
    tool, args, _ = fake_runner.calls[0]
    assert tool == "tailwind"
    assert args[-1] == "--minify"
    assert args[2] == str(Path("source/styles/tailwind.css"))


def test_load_config_defaults(tmp_path):
    config = load_config(tmp_path)
    assert config == DEFAULT_CONFIG
    assert config["reload_port"] == 4242


def test_load_config_ignores_non_mapping(tmp_path):
    (tmp_path / "kiln.yaml").write_text("- a\n- b\n", encoding="utf-8")
    assert load_config(tmp_path)["output_dir"] == "dist"


def test_tool_name_skips_npx():
    assert tool_name(["npx", "esbuild", "x"]) == "esbuild"
    assert tool_name(["/usr/local/bin/tailwindcss", "-i"]) == "tailwindcss"
    assert tool_name(["npx"]) == "npx"


def test_page_target_paths(project, fake_runner):
    pipeline = BuildPipeline(project, runner=fake_runner)
    page = pipeline.discover_pages()[0]
    assert pipeline.page_target(page, "default") == project / "dist" / f"{page.name}.html"
    assert pipeline.page_target(page, "en") == project / "dist" / "en" / f"{page.name}.html"


def test_rebuild_is_byte_identical(project, fake_runner):
    build_site(project, runner=fake_runner)
    first = {
        p.relative_to(project): p.read_bytes()
        for p in (project / "dist").rglob("*.html")
    }
    build_site(project, runner=fake_runner)
    second = {
        p.relative_to(project): p.read_bytes()
        for p in (project / "dist").rglob("*.html")
    }
    assert first == second


def test_json_translation_order_is_stable(project, fake_runner):
    write(
        project / "src" / "intl" / "de.json",
        json.dumps({"index": {"greeting": "Hallo"}}),
    )
    result = build_site(project, runner=fake_runner)
    assert result.locales == ["default", "de", "en", "fi"]
    assert "Hallo" in (project / "dist" / "de" / "index.html").read_text(
        encoding="utf-8"
    )
