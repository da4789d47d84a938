"""Stylesheet extraction during bundling."""

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional
import logging

from ..utils.exceptions import CompileFailure, CompileWarning
from ..utils.node_utils import run_node_json

logger = logging.getLogger(__name__)


class StyleAccumulator:
    """
    Stylesheet text collected from every style file the bundler loads.

    One accumulator belongs to one bundler invocation. Interceptors append to
    it in load order; the pipeline reads it once with ``finish()`` after which
    it no longer accepts text.
    """

    def __init__(self):
        self._parts: List[str] = []
        self._sources: List[Path] = []
        self._closed = False

    def append(self, css: str, source: Path) -> None:
        if self._closed:
            raise CompileFailure(f"Stylesheet already finalized; cannot append {source}")
        self._parts.append(css)
        self._sources.append(source)

    @property
    def sources(self) -> List[Path]:
        """Style files in the order they were appended."""
        return list(self._sources)

    @property
    def text(self) -> str:
        return ''.join(self._parts)

    @property
    def closed(self) -> bool:
        return self._closed

    def finish(self) -> str:
        """Close the accumulator and return the stylesheet."""
        self._closed = True
        return self.text

    def __len__(self) -> int:
        return len(self._sources)


@dataclass
class StyleCompileResult:
    css: str
    warnings: List[CompileWarning] = field(default_factory=list)


class StyleCompiler:
    """Interface for compilers of higher-level style languages."""

    def compile(
        self,
        source: str,
        origin_path: Path,
        globals_: Optional[Dict[str, Any]] = None,
        plugins: Optional[List[str]] = None,
    ) -> StyleCompileResult:
        raise NotImplementedError


_EKSCSS_SCRIPT = """
import * as xcss from 'ekscss';
import { pathToFileURL } from 'node:url';

let input = '';
for await (const chunk of process.stdin) input += chunk;
const req = JSON.parse(input);

let config = {};
if (req.configPath) {
  const mod = await import(pathToFileURL(req.configPath).href);
  config = mod.default ?? mod;
}

const extra = await Promise.all((req.plugins ?? []).map(async (name) => {
  const mod = await import(name);
  return mod.default ?? mod;
}));

const compiled = xcss.compile(req.source, {
  from: req.from,
  globals: { ...(config.globals ?? {}), ...req.globals },
  plugins: [...(config.plugins ?? []), ...extra],
});

process.stdout.write(JSON.stringify({
  css: compiled.css,
  warnings: compiled.warnings.map((w) => ({
    message: String(w.message ?? w),
    file: w.file ?? null,
    line: w.line ?? null,
    column: w.column ?? null,
  })),
}));
"""


class EkscssCompiler(StyleCompiler):
    """Compiles XCSS with ekscss, loading globals and plugins from the project's config."""

    def __init__(self, project_dir: Path, config_path: Optional[Path] = None, node_binary: str = 'node'):
        """
        Args:
            project_dir: Extension project root (node_modules lives here)
            config_path: Optional ``xcss.config`` module supplying globals/plugins
            node_binary: Node executable
        """
        self.project_dir = project_dir
        self.config_path = config_path
        self.node_binary = node_binary

    def compile(
        self,
        source: str,
        origin_path: Path,
        globals_: Optional[Dict[str, Any]] = None,
        plugins: Optional[List[str]] = None,
    ) -> StyleCompileResult:
        result = run_node_json(
            _EKSCSS_SCRIPT,
            {
                'source': source,
                'from': str(origin_path),
                'globals': globals_ or {},
                'plugins': list(plugins or []),
                'configPath': str(self.config_path) if self.config_path else None,
            },
            cwd=self.project_dir,
            tool=f"ekscss ({origin_path.name})",
            node_binary=self.node_binary,
        )
        return StyleCompileResult(
            css=result.get('css', ''),
            warnings=[CompileWarning.from_dict(w) for w in result.get('warnings', [])],
        )


class LoadInterceptor:
    """
    Bundler plugin hook for files matching ``extension``.

    ``on_load`` receives the file path and contents and returns the module
    source the bundler should use in their place.
    """

    name = 'load-interceptor'
    extension = ''

    @property
    def filter(self) -> re.Pattern:
        return re.compile(re.escape(self.extension) + '$')

    def matches(self, path: Path) -> bool:
        return bool(self.filter.search(str(path)))

    def on_load(self, path: Path, contents: str) -> str:
        raise NotImplementedError


class PlainStyleInterceptor(LoadInterceptor):
    """Extracts plain ``.css`` files verbatim."""

    name = 'extract-css'
    extension = '.css'

    def __init__(self, accumulator: StyleAccumulator):
        self.accumulator = accumulator

    def on_load(self, path: Path, contents: str) -> str:
        self.accumulator.append(contents, path)
        return ''


class XcssStyleInterceptor(LoadInterceptor):
    """Compiles ``.xcss`` files and extracts the resulting CSS."""

    name = 'extract-xcss'
    extension = '.xcss'

    def __init__(
        self,
        accumulator: StyleAccumulator,
        compiler: StyleCompiler,
        globals_: Optional[Dict[str, Any]] = None,
        plugins: Optional[List[str]] = None,
    ):
        self.accumulator = accumulator
        self.compiler = compiler
        self.globals = globals_ or {}
        self.plugins = list(plugins or [])

    def on_load(self, path: Path, contents: str) -> str:
        try:
            compiled = self.compiler.compile(contents, path, self.globals, self.plugins)
        except CompileFailure:
            logger.error(f"XCSS compile failed: {path}")
            raise

        for warning in compiled.warnings:
            report_warning('XCSS', warning)

        self.accumulator.append(compiled.css, path)
        return ''


def report_warning(prefix: str, warning: CompileWarning) -> None:
    """Log a non-fatal compile warning with its source location when known."""
    logger.warning(f"{prefix}: {warning.message}")
    if warning.location:
        logger.warning(f"  at {warning.location}")


def style_interceptors(
    accumulator: StyleAccumulator,
    compiler: StyleCompiler,
    globals_: Optional[Dict[str, Any]] = None,
    plugins: Optional[List[str]] = None,
) -> List[LoadInterceptor]:
    """Both style interceptors, sharing one accumulator."""
    return [
        PlainStyleInterceptor(accumulator),
        XcssStyleInterceptor(accumulator, compiler, globals_, plugins),
    ]

