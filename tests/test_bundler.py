"""Tests for the esbuild bundler driver."""

import json
import subprocess
from pathlib import Path
from unittest.mock import patch

import pytest

from extbundler.modules.bundler import CHUNK, ENTRY_SCRIPT, EsbuildBundler, load_order
from extbundler.modules.styles import PlainStyleInterceptor, StyleAccumulator, style_interceptors
from extbundler.utils.exceptions import CompileFailure

from conftest import FakeStyleCompiler


META = {
    "inputs": {
        "src/popup.ts": {"imports": [
            {"path": "src/css/a.xcss", "kind": "import-statement"},
            {"path": "src/view.ts", "kind": "import-statement"},
            {"path": "src/css/b.css", "kind": "import-statement"},
        ]},
        "src/view.ts": {"imports": [
            {"path": "src/css/view.css", "kind": "import-statement"},
            {"path": "src/css/a.xcss", "kind": "import-statement"},
        ]},
        "src/content.ts": {"imports": [
            {"path": "src/css/b.css", "kind": "import-statement"},
            {"path": "chrome", "kind": "import-statement", "external": True},
        ]},
        "src/css/a.xcss": {"imports": []},
        "src/css/b.css": {"imports": []},
        "src/css/view.css": {"imports": []},
    },
    "outputs": {
        "dist/chunk-ABC.js": {"imports": []},
        "dist/content.js": {"entryPoint": "src/content.ts"},
        "dist/popup.js": {"entryPoint": "src/popup.ts"},
        "dist/popup.js.map": {},
    },
}


def fake_esbuild(meta):
    """run_tool side effect that writes ``meta`` to the requested metafile."""
    def run(cmd, cwd, tool):
        metafile = next(arg.split("=", 1)[1] for arg in cmd if arg.startswith("--metafile="))
        Path(metafile).write_text(json.dumps(meta))
        return subprocess.CompletedProcess(cmd, 0, stdout="", stderr="")
    return run


def test_load_order_is_depth_first_in_source_order():
    order = list(load_order(META["inputs"], ["src/popup.ts", "./src/content.ts"]))

    assert order == [
        "src/popup.ts",
        "src/css/a.xcss",
        "src/view.ts",
        "src/css/view.css",
        "src/css/b.css",
        "src/content.ts",
    ]


def test_command_flags(tmp_path):
    bundler = EsbuildBundler(tmp_path, executable="esbuild")
    plugins = style_interceptors(StyleAccumulator(), FakeStyleCompiler())

    cmd = bundler.command(
        ["src/popup.ts"],
        tmp_path / "dist",
        "chrome117",
        {"process.env.NODE_ENV": '"production"'},
        {".svg": "text"},
        plugins,
        True,
        None,
        tmp_path / "meta.json",
    )

    assert cmd[:3] == ["esbuild", "src/popup.ts", "--bundle"]
    assert "--format=esm" in cmd
    assert "--target=chrome117" in cmd
    assert '--define:process.env.NODE_ENV="production"' in cmd
    assert "--loader:.svg=text" in cmd
    assert "--loader:.css=empty" in cmd
    assert "--loader:.xcss=empty" in cmd
    assert "--minify" in cmd
    assert not any(arg.startswith("--sourcemap") for arg in cmd)


def test_build_feeds_interceptors_in_load_order(project):
    (project / "src" / "css" / "view.css").write_text(".view {}\n")
    acc = StyleAccumulator()
    plugins = style_interceptors(acc, FakeStyleCompiler(), {"accent": "blue"})
    bundler = EsbuildBundler(project, executable="esbuild")

    with patch("extbundler.modules.bundler.run_tool", side_effect=fake_esbuild(META)):
        artifacts = bundler.build(
            ["src/popup.ts", "src/content.ts"], project / "dist", "chrome117", {}, plugins=plugins
        )

    assert [p.relative_to(project / "src" / "css").as_posix() for p in acc.sources] == [
        "a.xcss", "view.css", "b.css",
    ]
    assert acc.text.startswith(".active { color: blue; }")
    assert [(a.path.name, a.kind) for a in artifacts] == [
        ("popup.js", ENTRY_SCRIPT),
        ("content.js", ENTRY_SCRIPT),
        ("chunk-ABC.js", CHUNK),
    ]
    assert artifacts[0].entry_point == "src/popup.ts"


def test_build_without_plugins_skips_interceptors(project):
    bundler = EsbuildBundler(project, executable="esbuild")
    meta = {"inputs": {"src/sw.ts": {"imports": []}}, "outputs": {"dist/sw.js": {"entryPoint": "src/sw.ts"}}}

    with patch("extbundler.modules.bundler.run_tool", side_effect=fake_esbuild(meta)) as mock_run:
        artifacts = bundler.build(["src/sw.ts"], project / "dist", "firefox115", {}, sourcemap="external")

    cmd = mock_run.call_args.args[0]
    assert "--sourcemap=external" in cmd
    assert [a.path for a in artifacts] == [project / "dist" / "sw.js"]


def test_interceptor_returning_contents_is_a_failure(project):
    class Passthrough(PlainStyleInterceptor):
        def on_load(self, path, contents):
            return contents

    bundler = EsbuildBundler(project, executable="esbuild")
    meta = {
        "inputs": {"src/popup.ts": {"imports": [{"path": "src/css/b.css"}]}, "src/css/b.css": {"imports": []}},
        "outputs": {},
    }

    with patch("extbundler.modules.bundler.run_tool", side_effect=fake_esbuild(meta)):
        with pytest.raises(CompileFailure, match="only extraction"):
            bundler.build(["src/popup.ts"], project / "dist", "chrome117", {}, plugins=[Passthrough(StyleAccumulator())])


def test_compile_error_propagates(project):
    bundler = EsbuildBundler(project, executable="esbuild")
    error = CompileFailure("esbuild failed", tool="esbuild", output="src/popup.ts:1:0: ERROR: Expected ';'")

    with patch("extbundler.modules.bundler.run_tool", side_effect=error):
        with pytest.raises(CompileFailure) as exc_info:
            bundler.build(["src/popup.ts"], project / "dist", "chrome117", {})

    assert "Expected ';'" in str(exc_info.value)
