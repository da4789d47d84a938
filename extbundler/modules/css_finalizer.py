"""Release-mode stylesheet finalization: unused selector removal and minification."""

import base64
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Sequence
import logging

from ..config import BuildConfig
from ..utils.exceptions import CompileFailure, CompileWarning
from ..utils.fs_utils import write_output
from ..utils.node_utils import run_node_json
from .bundler import BuildArtifact
from .styles import report_warning

logger = logging.getLogger(__name__)


class SelectorPurger:
    """Interface to an unused-selector eliminator."""

    def purge(
        self,
        content: List[Dict[str, str]],
        css: List[Dict[str, str]],
        safelist: Sequence[str],
        blocklist: Sequence[str],
    ) -> List[str]:
        raise NotImplementedError


@dataclass
class TransformResult:
    code: str
    warnings: List[CompileWarning] = field(default_factory=list)


class CssTransformer:
    """Interface to a CSS transform/minify engine."""

    def transform(self, filename: str, code: str, minify: bool, targets: Dict[str, int]) -> TransformResult:
        raise NotImplementedError


_PURGECSS_SCRIPT = """
import { PurgeCSS } from 'purgecss';

let input = '';
for await (const chunk of process.stdin) input += chunk;
const req = JSON.parse(input);

const purged = await new PurgeCSS().purge({
  content: req.content,
  css: req.css,
  safelist: req.safelist,
  blocklist: req.blocklist,
});
process.stdout.write(JSON.stringify(purged.map((r) => r.css)));
"""

_LIGHTNINGCSS_SCRIPT = """
import { transform } from 'lightningcss';

let input = '';
for await (const chunk of process.stdin) input += chunk;
const req = JSON.parse(input);

const result = transform({
  filename: req.filename,
  code: Buffer.from(req.code, 'base64'),
  minify: req.minify,
  targets: req.targets,
});
process.stdout.write(JSON.stringify({
  code: Buffer.from(result.code).toString('utf8'),
  warnings: (result.warnings ?? []).map((w) => ({
    message: w.message,
    file: w.loc?.filename ?? null,
    line: w.loc?.line ?? null,
    column: w.loc?.column ?? null,
  })),
}));
"""


class PurgeCssPurger(SelectorPurger):
    """Runs PurgeCSS under Node in the extension project."""

    def __init__(self, project_dir: Path, node_binary: str = 'node'):
        self.project_dir = project_dir
        self.node_binary = node_binary

    def purge(self, content, css, safelist, blocklist) -> List[str]:
        result = run_node_json(
            _PURGECSS_SCRIPT,
            {
                'content': list(content),
                'css': list(css),
                'safelist': list(safelist),
                'blocklist': list(blocklist),
            },
            cwd=self.project_dir,
            tool='purgecss',
            node_binary=self.node_binary,
        )
        if not isinstance(result, list):
            raise CompileFailure("purgecss returned an unexpected result", tool='purgecss')
        return result


class LightningCssTransformer(CssTransformer):
    """Runs lightningcss under Node in the extension project."""

    def __init__(self, project_dir: Path, node_binary: str = 'node'):
        self.project_dir = project_dir
        self.node_binary = node_binary

    def transform(self, filename: str, code: str, minify: bool, targets: Dict[str, int]) -> TransformResult:
        result = run_node_json(
            _LIGHTNINGCSS_SCRIPT,
            {
                'filename': filename,
                'code': base64.b64encode(code.encode('utf-8')).decode('ascii'),
                'minify': minify,
                'targets': targets,
            },
            cwd=self.project_dir,
            tool='lightningcss',
            node_binary=self.node_binary,
        )
        return TransformResult(
            code=result.get('code', ''),
            warnings=[CompileWarning.from_dict(w) for w in result.get('warnings', [])],
        )


class CssFinalizer:
    """Removes selectors the scripts never reference, then minifies for the engine target."""

    def __init__(
        self,
        purger: SelectorPurger,
        transformer: CssTransformer,
        safelist: Sequence[str],
        blocklist: Sequence[str],
        filename: str = 'popup.css',
    ):
        """
        Args:
            purger: Unused-selector eliminator
            transformer: CSS transform/minify engine
            safelist: Selectors always kept
            blocklist: Selectors always removed, even when their text occurs in a script
            filename: Name of the stylesheet in the output tree
        """
        self.purger = purger
        self.transformer = transformer
        self.safelist = list(safelist)
        self.blocklist = list(blocklist)
        self.filename = filename

    def purge(self, css: str, evidence: Sequence[BuildArtifact]) -> str:
        """Drop rules whose selectors are not referenced by any script artifact."""
        content = [{'extension': 'js', 'raw': artifact.text()} for artifact in evidence]
        purged = self.purger.purge(
            content=content,
            css=[{'raw': css}],
            safelist=self.safelist,
            blocklist=self.blocklist,
        )
        if not purged:
            raise CompileFailure("purgecss produced no stylesheet", tool='purgecss')

        logger.info(f"Purged stylesheet: {len(css)} -> {len(purged[0])} chars")
        return purged[0]

    def minify(self, css: str, config: BuildConfig) -> str:
        """Transform and minify for the configured browser target."""
        result = self.transformer.transform(
            filename=self.filename,
            code=css,
            minify=True,
            targets=config.browser_target.css_targets,
        )
        for warning in result.warnings:
            report_warning('CSS', warning)
        return result.code

    def finalize(
        self,
        css: str,
        evidence: Sequence[BuildArtifact],
        config: BuildConfig,
        outdir: Path,
    ) -> Path:
        """
        Purge and minify the collected stylesheet and write it to ``outdir``.

        Args:
            css: Stylesheet collected during bundling
            evidence: Script artifacts scanned for selector usage
            config: Build configuration (browser target)
            outdir: Destination directory

        Returns:
            Path of the written stylesheet
        """
        purged = self.purge(css, evidence)
        minified = self.minify(purged, config)
        return write_output(outdir / self.filename, minified)
