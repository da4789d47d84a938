"""Shared fixtures: a throwaway extension project and in-process build tools."""

import json
import re
from pathlib import Path

import pytest

from extbundler.config import Settings
from extbundler.modules.bundler import CHUNK, ENTRY_SCRIPT, BuildArtifact, Bundler
from extbundler.modules.css_finalizer import CssTransformer, SelectorPurger, TransformResult
from extbundler.modules.js_finalizer import Minifier
from extbundler.modules.styles import StyleCompileResult, StyleCompiler
from extbundler.utils.exceptions import CompileWarning


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    """Keep the caller's build environment out of Settings."""
    for name in ('NODE_ENV', 'FIREFOX_BUILD', 'GITHUB_REF'):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def project(tmp_path):
    """Create a minimal extension project."""
    root = tmp_path / "ext"
    (root / "src" / "css").mkdir(parents=True)
    (root / "static").mkdir()

    (root / "package.json").write_text(json.dumps({"name": "ext", "version": "1.2.3"}))
    (root / "static" / "icon16.png").write_bytes(b"\x89PNG")

    (root / "src" / "popup.ts").write_text(
        "import './css/a.xcss';\nimport './css/b.css';\n"
        "const el = document.querySelector('.active');\n"
        "export const $$onToggle = () => el;\n"
    )
    (root / "src" / "content.ts").write_text("const page = document.createElement('table');\n")
    (root / "src" / "sw.ts").write_text("const $$onToggle = 'toggle';\nchrome.runtime.onMessage($$onToggle);\n")
    (root / "src" / "health.ts").write_text("const report = (e) => e;\n")

    (root / "src" / "css" / "a.xcss").write_text(".active { color: $accent; }\ntable { width: 100%; }\n")
    (root / "src" / "css" / "b.css").write_text(".active { color: red; }\n.unused { margin: 0; }\nbody { margin: 0; }\n")
    return root


def make_settings(project: Path, **kwargs) -> Settings:
    values = dict(
        _env_file=None,
        project_dir=project,
        node_env="development",
        github_ref=None,
        xcss_globals={"accent": "blue"},
    )
    values.update(kwargs)
    return Settings(**values)


@pytest.fixture
def settings(project):
    return make_settings(project)


class FakeBundler(Bundler):
    """
    Copies each entry point to ``outdir/<stem>.js`` with style imports removed,
    feeding imported style files to the interceptors in import order.
    """

    IMPORT_RE = re.compile(r"^import '\./([^']+)';\n", re.M)

    def __init__(self, project_dir: Path, chunks=None):
        self.project_dir = project_dir
        self.calls = []
        self.chunks = chunks or {}

    def build(self, entry_points, outdir, target, define, loader=None, plugins=(), minify=False, sourcemap=None):
        self.calls.append({
            'entry_points': list(entry_points),
            'target': target,
            'define': dict(define),
            'loader': dict(loader or {}),
            'plugins': list(plugins),
            'minify': minify,
            'sourcemap': sourcemap,
        })
        outdir.mkdir(parents=True, exist_ok=True)
        artifacts = []
        for entry in entry_points:
            source_path = self.project_dir / entry
            source = source_path.read_text()
            for style in self.IMPORT_RE.findall(source):
                style_path = source_path.parent / style
                plugin = next(p for p in plugins if p.matches(style_path))
                assert plugin.on_load(style_path, style_path.read_text()) == ''
            code = self.IMPORT_RE.sub('', source)
            for name, value in define.items():
                code = code.replace(name, value)
            out = outdir / (Path(entry).stem + '.js')
            out.write_text(code)
            artifacts.append(BuildArtifact(path=out, kind=ENTRY_SCRIPT, entry_point=entry))
        for name, code in self.chunks.get(tuple(entry_points), {}).items():
            out = outdir / name
            out.write_text(code)
            artifacts.append(BuildArtifact(path=out, kind=CHUNK))
        return artifacts


class FakeStyleCompiler(StyleCompiler):
    """Substitutes ``$name`` globals."""

    def __init__(self, warnings=None):
        self.warnings = warnings or []
        self.calls = []
        self.plugins = None

    def compile(self, source, origin_path, globals_=None, plugins=None):
        self.calls.append(origin_path)
        self.plugins = plugins
        css = re.sub(r'\$(\w+)', lambda m: str((globals_ or {}).get(m.group(1), m.group(0))), source)
        return StyleCompileResult(css=css, warnings=list(self.warnings))


class FakePurger(SelectorPurger):
    """Keeps rules whose selector words occur in the content, honoring safelist/blocklist."""

    RULE_RE = re.compile(r'([^{}]+)\{([^{}]*)\}')

    def __init__(self):
        self.calls = []

    def purge(self, content, css, safelist, blocklist):
        self.calls.append({'content': content, 'css': css, 'safelist': list(safelist), 'blocklist': list(blocklist)})
        raw_content = '\n'.join(c['raw'] for c in content)
        words = set(re.findall(r'[\w-]+', raw_content))
        kept = []
        for selector, body in self.RULE_RE.findall(css[0]['raw']):
            name = selector.strip().lstrip('.')
            if name in safelist or (name not in blocklist and name in words):
                kept.append(f"{selector.strip()}{{{body}}}")
        return ['\n'.join(kept)]


class FakeTransformer(CssTransformer):
    def __init__(self, warnings=None):
        self.warnings = warnings or []
        self.calls = []

    def transform(self, filename, code, minify, targets):
        self.calls.append({'filename': filename, 'minify': minify, 'targets': targets})
        return TransformResult(code=re.sub(r'\s+', '', code), warnings=list(self.warnings))


class FakeMinifier(Minifier):
    """Mangles ``$$name`` properties through the shared name cache, like terser."""

    LETTERS = 'abcdefghijklmnopqrstuvwxyz'

    def __init__(self):
        self.caches = []

    def minify(self, source, options, name_cache):
        self.caches.append(name_cache)
        props = name_cache.data.setdefault('props', {}).setdefault('props', {})

        def mangle(match):
            key = '$' + match.group(0)
            if key not in props:
                props[key] = self.LETTERS[len(props)]
            return props[key]

        code = re.sub(r'\$\$\w+', mangle, source)
        return re.sub(r';?\s*\n\s*', ';', code).strip(';')


@pytest.fixture
def tools(project):
    return {
        'bundler': FakeBundler(project),
        'style_compiler': FakeStyleCompiler(),
        'purger': FakePurger(),
        'transformer': FakeTransformer(),
        'minifier': FakeMinifier(),
        'describe': lambda root: 'v1.2.3-4-gabcdef',
    }


@pytest.fixture
def compile_warning():
    return CompileWarning(message="unknown global", file="src/css/a.xcss", line=3, column=7)


@pytest.fixture
def settings_factory(project):
    """Build Settings for the test project with keyword overrides."""
    return lambda **kwargs: make_settings(project, **kwargs)
