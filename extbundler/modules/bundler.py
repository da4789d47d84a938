"""Module bundling via esbuild."""

import json
import re
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Sequence
import logging

from ..utils.exceptions import CompileFailure, IOFailure
from ..utils.fs_utils import read_text, write_output
from ..utils.node_utils import find_tool, run_tool
from .styles import LoadInterceptor

logger = logging.getLogger(__name__)

ENTRY_SCRIPT = 'entry-script'
CHUNK = 'chunk'


@dataclass
class BuildArtifact:
    """One script emitted by the bundler."""

    path: Path
    kind: str
    entry_point: Optional[str] = None

    def text(self) -> str:
        return read_text(self.path)

    def write(self, code: str) -> None:
        write_output(self.path, code)

    @property
    def is_entry(self) -> bool:
        return self.kind == ENTRY_SCRIPT


class Bundler:
    """Interface to a module bundler producing one script per entry point."""

    def build(
        self,
        entry_points: Sequence[str],
        outdir: Path,
        target: str,
        define: Dict[str, str],
        loader: Optional[Dict[str, str]] = None,
        plugins: Sequence[LoadInterceptor] = (),
        minify: bool = False,
        sourcemap: Optional[str] = None,
    ) -> List[BuildArtifact]:
        raise NotImplementedError


class EsbuildBundler(Bundler):
    """
    Runs the esbuild CLI in the extension project.

    Load interceptors cannot be registered with the CLI, so each interceptor's
    extension is mapped to esbuild's ``empty`` loader (the file stays in the
    module graph but contributes no code) and the interceptors are then fed
    every matching input, in module-graph order, from the build metafile.
    """

    def __init__(self, project_dir: Path, executable: Optional[str] = None):
        """
        Args:
            project_dir: Extension project root; esbuild runs here
            executable: esbuild binary (default: node_modules/.bin/esbuild or PATH)
        """
        self.project_dir = project_dir
        self._executable = executable

    @property
    def executable(self) -> str:
        if self._executable is None:
            self._executable = find_tool('esbuild', self.project_dir)
        return self._executable

    def command(
        self,
        entry_points: Sequence[str],
        outdir: Path,
        target: str,
        define: Dict[str, str],
        loader: Dict[str, str],
        plugins: Sequence[LoadInterceptor],
        minify: bool,
        sourcemap: Optional[str],
        metafile: Path,
    ) -> List[str]:
        """Build the esbuild argument list."""
        cmd = [
            self.executable,
            *entry_points,
            '--bundle',
            f'--outdir={outdir}',
            '--platform=browser',
            '--format=esm',
            f'--target={target}',
            f'--metafile={metafile}',
            '--log-level=warning',
        ]
        for name, value in define.items():
            cmd.append(f'--define:{name}={value}')
        for ext, kind in loader.items():
            cmd.append(f'--loader:{ext}={kind}')
        for plugin in plugins:
            cmd.append(f'--loader:{plugin.extension}=empty')
        if minify:
            cmd.append('--minify')
        if sourcemap:
            cmd.append(f'--sourcemap={sourcemap}')
        return cmd

    def build(
        self,
        entry_points: Sequence[str],
        outdir: Path,
        target: str,
        define: Dict[str, str],
        loader: Optional[Dict[str, str]] = None,
        plugins: Sequence[LoadInterceptor] = (),
        minify: bool = False,
        sourcemap: Optional[str] = None,
    ) -> List[BuildArtifact]:
        with tempfile.TemporaryDirectory(prefix='extbundler-') as tmp:
            metafile = Path(tmp) / 'meta.json'
            cmd = self.command(
                entry_points, outdir, target, define, loader or {}, plugins, minify, sourcemap, metafile
            )
            result = run_tool(cmd, cwd=self.project_dir, tool='esbuild')
            if result.stderr.strip():
                logger.warning(f"esbuild: {result.stderr.strip()}")

            try:
                meta = json.loads(metafile.read_text(encoding='utf-8'))
            except (OSError, json.JSONDecodeError) as e:
                raise CompileFailure(f"esbuild metafile unreadable: {e}", tool='esbuild') from None

        if plugins:
            self._run_interceptors(meta, entry_points, plugins)

        return self._artifacts(meta, entry_points)

    def _run_interceptors(
        self,
        meta: dict,
        entry_points: Sequence[str],
        plugins: Sequence[LoadInterceptor],
    ) -> None:
        for input_path in load_order(meta.get('inputs', {}), entry_points):
            plugin = next((p for p in plugins if p.matches(Path(input_path))), None)
            if plugin is None:
                continue

            path = self.project_dir / input_path
            try:
                contents = path.read_text(encoding='utf-8')
            except OSError as e:
                raise IOFailure(f"Cannot read {path}: {e}") from e

            replacement = plugin.on_load(path, contents)
            if replacement:
                raise CompileFailure(
                    f"{plugin.name} returned module contents for {input_path}; "
                    f"only extraction (empty contents) is supported",
                    tool='esbuild',
                )

    def _artifacts(self, meta: dict, entry_points: Sequence[str]) -> List[BuildArtifact]:
        order = {_normalize(entry): i for i, entry in enumerate(entry_points)}
        entries = []
        chunks = []

        for out_path, info in meta.get('outputs', {}).items():
            if out_path.endswith('.map'):
                continue
            entry = info.get('entryPoint')
            artifact = BuildArtifact(
                path=self.project_dir / out_path,
                kind=ENTRY_SCRIPT if entry else CHUNK,
                entry_point=entry,
            )
            if entry:
                entries.append(artifact)
            else:
                chunks.append(artifact)

        entries.sort(key=lambda a: order.get(_normalize(a.entry_point), len(order)))
        chunks.sort(key=lambda a: str(a.path))
        return entries + chunks


def load_order(inputs: Dict[str, dict], entry_points: Sequence[str]) -> Iterator[str]:
    """
    Yield metafile inputs depth-first from each entry point, each file once.

    Import records are followed in source order, which is the order the
    stylesheet rules must appear in.
    """
    seen = set()
    normalized = {_normalize(path): path for path in inputs}

    for entry in entry_points:
        stack = [normalized.get(_normalize(entry), entry)]
        while stack:
            path = stack.pop()
            if path in seen or path not in inputs:
                continue
            seen.add(path)
            yield path
            imports = [
                record.get('path', '')
                for record in inputs[path].get('imports', [])
                if not record.get('external')
            ]
            stack.extend(reversed(imports))


def _normalize(path: Optional[str]) -> str:
    return re.sub(r'^(?:\./)+', '', (path or '').replace('\\', '/'))
