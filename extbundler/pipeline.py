"""Main pipeline orchestrator for extension builds."""

import json
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional
import logging

from .config import BuildConfig, Settings
from .modules.bundler import BuildArtifact, Bundler, EsbuildBundler
from .modules.css_finalizer import (
    CssFinalizer, CssTransformer, LightningCssTransformer, PurgeCssPurger, SelectorPurger,
)
from .modules.js_finalizer import JsFinalizer, Minifier, RenameCache, TerserMinifier
from .modules.manifest import ManifestBuilder, make_html, serialize_manifest
from .modules.styles import EkscssCompiler, StyleAccumulator, StyleCompiler, style_interceptors
from .utils.exceptions import BuildError
from .utils.fs_utils import reset_directory, write_output
from .utils.node_utils import git_describe

logger = logging.getLogger(__name__)

STYLESHEET = 'popup.css'


@dataclass
class BuildResult:
    """Everything a finished run produced."""

    config: BuildConfig
    outdir: Path
    manifest: Dict[str, Any]
    artifacts: Dict[str, List[BuildArtifact]]
    stylesheet: Path
    collected_css: str
    rename_cache: Optional[RenameCache] = None
    timings: Dict[str, float] = field(default_factory=dict)


class BuildPipeline:
    """Builds the extension's dist/ tree in six strictly ordered phases."""

    def __init__(
        self,
        settings: Settings,
        bundler: Optional[Bundler] = None,
        style_compiler: Optional[StyleCompiler] = None,
        purger: Optional[SelectorPurger] = None,
        transformer: Optional[CssTransformer] = None,
        minifier: Optional[Minifier] = None,
        describe: Callable[[Path], Optional[str]] = git_describe,
    ):
        """
        Initialize the pipeline.

        Args:
            settings: Build settings
            bundler: Module bundler (default: esbuild)
            style_compiler: XCSS compiler (default: ekscss)
            purger: Unused-selector eliminator (default: PurgeCSS)
            transformer: CSS transform/minify engine (default: lightningcss)
            minifier: Script minifier (default: terser)
            describe: Local version-control label resolver
        """
        self.settings = settings
        root = settings.root
        node = settings.node_binary

        self.bundler = bundler or EsbuildBundler(root)
        self.style_compiler = style_compiler or EkscssCompiler(root, settings.xcss_config_path(), node)
        self.manifest_builder = ManifestBuilder(settings, describe=describe)
        self.css_finalizer = CssFinalizer(
            purger or PurgeCssPurger(root, node),
            transformer or LightningCssTransformer(root, node),
            safelist=settings.purge_safelist,
            blocklist=settings.purge_blocklist,
            filename=STYLESHEET,
        )
        self.js_finalizer = JsFinalizer(minifier or TerserMinifier(root, node))

    @staticmethod
    def define_map(config: BuildConfig) -> Dict[str, str]:
        """Compile-time constants substituted into every bundle."""
        return {
            'process.env.APP_RELEASE': json.dumps(config.release_label),
            'process.env.NODE_ENV': json.dumps(config.mode.value),
        }

    def _bundle(
        self,
        entry_points: List[str],
        config: BuildConfig,
        outdir: Path,
        **kwargs,
    ) -> List[BuildArtifact]:
        artifacts = self.bundler.build(
            entry_points=entry_points,
            outdir=outdir,
            target=config.browser_target.esbuild_target,
            define=self.define_map(config),
            minify=not config.dev,
            sourcemap='external' if config.dev else None,
            **kwargs,
        )
        for artifact in artifacts:
            logger.debug(f"  {artifact.kind}: {artifact.path}")
        return artifacts

    def run(self, progress_callback: Optional[Callable[[str, str], None]] = None) -> BuildResult:
        """
        Run the complete build.

        Every phase finishes writing before the next starts. Any error aborts
        the run; the output directory must then be considered invalid.

        Args:
            progress_callback: Optional callback receiving (stage, message)

        Returns:
            BuildResult describing the written tree
        """
        timings: Dict[str, float] = {}

        def update_progress(stage: str, message: str):
            """Update progress."""
            logger.info(f"[{stage}] {message}")
            if progress_callback:
                progress_callback(stage, message)

        @contextmanager
        def phase(stage: str, message: str) -> Iterator[None]:
            update_progress(stage, message)
            started = time.perf_counter()
            yield
            timings[stage] = (time.perf_counter() - started) * 1000
            logger.debug(f"[{stage}] {timings[stage]:.1f} ms")

        try:
            version = self.manifest_builder.resolve_version()
            config = self.settings.build_config(version.release_label)
            outdir = self.settings.dist_dir
            update_progress(
                "CONFIG",
                f"{config.mode.value} build for {config.browser_target.value} "
                f"{config.browser_target.min_version}, release {config.release_label}"
            )

            # Phase 1: clean output
            with phase("PREBUILD", f"Resetting {outdir}..."):
                reset_directory(outdir, self.settings.static_path)

            # Phase 2: manifest and popup shell
            with phase("MANIFEST", "Writing manifest.json and popup.html..."):
                manifest = self.manifest_builder.build(version, config.browser_target)
                write_output(outdir / 'manifest.json', serialize_manifest(manifest))
                write_output(outdir / 'popup.html', make_html('popup.js', STYLESHEET))

            # Phase 3: popup + content script, styles extracted on the way
            accumulator = StyleAccumulator()
            with phase("BUILD_UI", "Bundling popup and content script..."):
                ui = self._bundle(
                    self.settings.ui_entry_points,
                    config,
                    outdir,
                    loader={'.svg': 'text'},
                    plugins=style_interceptors(
                        accumulator,
                        self.style_compiler,
                        self.settings.xcss_globals,
                        self.settings.xcss_plugins,
                    ),
                )
            collected_css = accumulator.finish()
            logger.info(f"Collected {len(accumulator)} stylesheets ({len(collected_css)} chars)")

            # Phase 4: background service worker
            with phase("BUILD_BACKGROUND", "Bundling background service worker..."):
                background = self._bundle(self.settings.background_entry_points, config, outdir)

            # Phase 5: error reporting script
            with phase("BUILD_HEALTH", "Bundling error reporting script..."):
                health = self._bundle(self.settings.diagnostics_entry_points, config, outdir)

            # Phase 6: stylesheet, and release-only minification
            rename_cache = None
            if config.dev:
                with phase("CSS", f"Writing {STYLESHEET}..."):
                    stylesheet = write_output(outdir / STYLESHEET, collected_css)
            else:
                with phase("MINIFY_CSS", "Removing unused selectors and minifying stylesheet..."):
                    stylesheet = self.css_finalizer.finalize(
                        collected_css, ui + background + health, config, outdir
                    )

                with phase("MINIFY_JS", "Minifying scripts..."):
                    rename_cache = RenameCache()
                    self.js_finalizer.finalize(ui + background, rename_cache)
                logger.debug(f"Rename cache: {rename_cache!r}")

            update_progress("COMPLETE", f"Extension built: {outdir}")

            return BuildResult(
                config=config,
                outdir=outdir,
                manifest=manifest,
                artifacts={'ui': ui, 'background': background, 'health': health},
                stylesheet=stylesheet,
                collected_css=collected_css,
                rename_cache=rename_cache,
                timings=timings,
            )

        except BuildError as e:
            logger.error(f"Build failed: {e}")
            raise
        except Exception as e:
            logger.exception(f"Build failed: {e}")
            raise
