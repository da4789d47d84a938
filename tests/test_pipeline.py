"""Tests for the build pipeline."""

import json
from unittest.mock import Mock

import pytest

from extbundler.modules.bundler import EsbuildBundler
from extbundler.modules.css_finalizer import LightningCssTransformer, PurgeCssPurger
from extbundler.modules.js_finalizer import TerserMinifier
from extbundler.modules.styles import EkscssCompiler, StyleCompiler
from extbundler.pipeline import BuildPipeline
from extbundler.utils.exceptions import CompileFailure, ConfigurationError

COLLECTED_CSS = (
    ".active { color: blue; }\n"
    "table { width: 100%; }\n"
    ".active { color: red; }\n"
    ".unused { margin: 0; }\n"
    "body { margin: 0; }\n"
)


def snapshot(directory):
    return {
        path.relative_to(directory).as_posix(): path.read_bytes()
        for path in sorted(directory.rglob("*"))
        if path.is_file()
    }


def test_pipeline_initialization(settings):
    """Test that the pipeline wires the Node tools by default."""
    pipeline = BuildPipeline(settings)

    assert isinstance(pipeline.bundler, EsbuildBundler)
    assert isinstance(pipeline.style_compiler, EkscssCompiler)
    assert isinstance(pipeline.css_finalizer.purger, PurgeCssPurger)
    assert isinstance(pipeline.css_finalizer.transformer, LightningCssTransformer)
    assert isinstance(pipeline.js_finalizer.minifier, TerserMinifier)


class TestDevelopmentBuild:
    def test_output_tree(self, settings, tools, project):
        dist = project / "dist"
        dist.mkdir()
        (dist / "stale.js").write_text("old")

        result = BuildPipeline(settings, **tools).run()

        assert result.outdir == dist.resolve()
        assert not (dist / "stale.js").exists()
        assert (dist / "icon16.png").read_bytes() == b"\x89PNG"
        for name in ("manifest.json", "popup.html", "popup.js", "content.js", "sw.js", "health.js", "popup.css"):
            assert (dist / name).exists(), name

    def test_stylesheet_is_collected_in_import_order(self, settings, tools, project):
        result = BuildPipeline(settings, **tools).run()

        assert result.collected_css == COLLECTED_CSS
        assert (project / "dist" / "popup.css").read_text() == COLLECTED_CSS
        assert "color" not in (project / "dist" / "popup.js").read_text()
        assert tools["purger"].calls == []

    def test_scripts_are_not_minified(self, settings, tools, project):
        result = BuildPipeline(settings, **tools).run()

        assert result.rename_cache is None
        assert tools["minifier"].caches == []
        assert "$$onToggle" in (project / "dist" / "popup.js").read_text()

    def test_bundler_configuration(self, settings, tools):
        BuildPipeline(settings, **tools).run()

        ui, background, health = tools["bundler"].calls
        assert ui["entry_points"] == ["src/popup.ts", "src/content.ts"]
        assert ui["loader"] == {".svg": "text"}
        assert [p.extension for p in ui["plugins"]] == [".css", ".xcss"]
        assert ui["define"] == {
            "process.env.APP_RELEASE": '"1.2.3-4-gabcdef"',
            "process.env.NODE_ENV": '"development"',
        }
        assert ui["target"] == "chrome117"
        assert ui["sourcemap"] == "external"
        assert not ui["minify"]
        assert background["entry_points"] == ["src/sw.ts"]
        assert background["plugins"] == []
        assert health["entry_points"] == ["src/health.ts"]

    def test_manifest_and_shell(self, settings, tools, project):
        BuildPipeline(settings, **tools).run()

        manifest = json.loads((project / "dist" / "manifest.json").read_text())
        assert manifest["version"] == "1.2.3"
        assert manifest["version_name"] == "1.2.3-4-gabcdef"
        html = (project / "dist" / "popup.html").read_text()
        assert "<link href=popup.css rel=stylesheet>" in html
        assert "<script src=popup.js type=module></script>" in html

    def test_progress_stages(self, settings, tools):
        stages = []

        BuildPipeline(settings, **tools).run(progress_callback=lambda stage, message: stages.append(stage))

        assert stages == [
            "CONFIG", "PREBUILD", "MANIFEST", "BUILD_UI", "BUILD_BACKGROUND", "BUILD_HEALTH", "CSS", "COMPLETE",
        ]


class TestReleaseBuild:
    @pytest.fixture
    def release_settings(self, settings_factory):
        return settings_factory(node_env="production")

    def test_stylesheet_is_purged_and_minified(self, release_settings, tools, project):
        BuildPipeline(release_settings, **tools).run()

        assert (project / "dist" / "popup.css").read_text() == (
            ".active{color:blue;}.active{color:red;}body{margin:0;}"
        )
        evidence = [c["raw"] for c in tools["purger"].calls[0]["content"]]
        assert len(evidence) == 4
        assert tools["transformer"].calls[0]["targets"] == {"chrome": 117 << 16}

    def test_rename_cache_is_shared(self, release_settings, tools, project):
        result = BuildPipeline(release_settings, **tools).run()

        dist = project / "dist"
        assert (dist / "popup.js").read_text() == (
            "let el = document.querySelector('.active');export let a = () => el"
        )
        assert (dist / "sw.js").read_text() == "let a = 'toggle';chrome.runtime.onMessage(a)"
        assert (dist / "content.js").read_text() == "let page = document.createElement('table')"
        assert result.rename_cache.property_name("$$onToggle") == "a"
        assert all(cache is result.rename_cache for cache in tools["minifier"].caches)
        assert len(tools["minifier"].caches) == 3

    def test_health_script_is_not_finalized(self, release_settings, tools, project):
        BuildPipeline(release_settings, **tools).run()

        assert (project / "dist" / "health.js").read_text() == "const report = (e) => e;\n"

    def test_bundles_are_minified_without_sourcemaps(self, release_settings, tools):
        BuildPipeline(release_settings, **tools).run()

        for call in tools["bundler"].calls:
            assert call["minify"]
            assert call["sourcemap"] is None
            assert call["define"]["process.env.NODE_ENV"] == '"production"'

    def test_firefox_release(self, settings_factory, tools, project):
        settings = settings_factory(node_env="production", firefox_build="1", extension_key="MIIBIjAN")

        BuildPipeline(settings, **tools).run()

        manifest = json.loads((project / "dist" / "manifest.json").read_text())
        assert "key" not in manifest
        assert "version_name" not in manifest
        assert tools["bundler"].calls[0]["target"] == "firefox115"
        assert tools["transformer"].calls[0]["targets"] == {"firefox": 115 << 16}

    def test_builds_are_reproducible(self, release_settings, tools, project):
        BuildPipeline(release_settings, **tools).run()
        first = snapshot(project / "dist")

        BuildPipeline(release_settings, **tools).run()

        assert snapshot(project / "dist") == first


class TestFailures:
    def test_style_compile_failure_aborts(self, settings, tools, project):
        compiler = Mock(spec=StyleCompiler)
        compiler.compile.side_effect = CompileFailure("unexpected '}'", tool="ekscss")
        tools["style_compiler"] = compiler

        with pytest.raises(CompileFailure):
            BuildPipeline(settings, **tools).run()

        assert not (project / "dist" / "popup.css").exists()
        assert len(tools["bundler"].calls) == 1

    def test_missing_mode_aborts_before_writing(self, settings_factory, tools, project):
        with pytest.raises(ConfigurationError):
            BuildPipeline(settings_factory(node_env=None), **tools).run()

        assert not (project / "dist").exists()

    def test_reassigned_const_aborts_release(self, settings_factory, tools, project):
        (project / "src" / "sw.ts").write_text("const n = 0;\nn = 1;\n")

        with pytest.raises(CompileFailure, match="const binding reassigned"):
            BuildPipeline(settings_factory(node_env="production"), **tools).run()
