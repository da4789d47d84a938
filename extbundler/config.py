"""Configuration management for extbundler."""

from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .utils.exceptions import ConfigurationError


class Mode(str, Enum):
    """Build mode, substituted verbatim for ``process.env.NODE_ENV``."""

    DEVELOPMENT = "development"
    PRODUCTION = "production"


class BrowserTarget(str, Enum):
    """Supported rendering engines and the minimum version each build targets."""

    CHROME = "chrome"
    FIREFOX = "firefox"

    @property
    def min_version(self) -> int:
        # Firefox ESR and Chrome stable
        return {BrowserTarget.CHROME: 117, BrowserTarget.FIREFOX: 115}[self]

    @property
    def esbuild_target(self) -> str:
        return f"{self.value}{self.min_version}"

    @property
    def css_targets(self) -> Dict[str, int]:
        """Targets in lightningcss form: major version in the high 16 bits."""
        return {self.value: self.min_version << 16}

    @property
    def supports_manifest_key(self) -> bool:
        """Whether the manifest may carry ``key`` and ``version_name``."""
        return self is BrowserTarget.CHROME


# Tags that are never matched by selector text in the bundled scripts even
# when the tag name shows up in string literals.
DEFAULT_PURGE_BLOCKLIST = [
    'article',
    'aside',
    'blockquote',
    'break',
    'canvas',
    'dd',
    'disabled',
    'dt',
    'embed',
    'figcaption',
    'figure',
    'footer',
    'h1',
    'h2',
    'h3',
    'h4',
    'h5',
    'h6',
    'header',
    'hgroup',
    'hr',
    'iframe',
    'img',
    'link',
    'main',
    'nav',
    'ol',
    'pre',
    'section',
    'source',
    'svg',
    'table',
    'textarea',
    'ul',
    ':disabled',
]


class BuildConfig(BaseModel):
    """Immutable per-run configuration passed to every pipeline component."""

    model_config = ConfigDict(frozen=True)

    mode: Mode
    browser_target: BrowserTarget
    release_label: str

    @property
    def dev(self) -> bool:
        return self.mode is Mode.DEVELOPMENT

    @property
    def release(self) -> bool:
        return not self.dev


class Settings(BaseSettings):
    """Build settings loaded from environment variables and ``.env``."""

    model_config = SettingsConfigDict(
        env_file='.env',
        env_file_encoding='utf-8',
        env_prefix='EXTBUNDLER_',
        case_sensitive=False,
        populate_by_name=True,
        extra='ignore',
    )

    # Standard environment flags (no prefix)
    node_env: Optional[str] = Field(default=None, validation_alias='NODE_ENV', description="development or production")
    firefox_build: str = Field(default="", validation_alias='FIREFOX_BUILD', description="Any non-empty value selects the Firefox target")
    github_ref: Optional[str] = Field(default=None, validation_alias='GITHUB_REF', description="Set by CI; disables the local git version label")

    # Project layout, relative paths are resolved against project_dir
    project_dir: Path = Field(default=Path('.'))
    outdir: Path = Field(default=Path('dist'))
    static_dir: Path = Field(default=Path('static'))
    xcss_config: Optional[Path] = Field(default=None, description="XCSS config module; auto-detected when unset")

    # Entry groups
    ui_entry_points: List[str] = Field(default=['src/popup.ts', 'src/content.ts'])
    background_entry_points: List[str] = Field(default=['src/sw.ts'])
    diagnostics_entry_points: List[str] = Field(default=['src/health.ts'])

    # Manifest fields not taken from package.json
    extension_name: str = Field(default="Switch Language")
    extension_description: str = Field(default="Switch web page language.")
    extension_key: Optional[str] = Field(default=None, description="Chrome Web Store public key; the manifest has no key when unset")
    csp_connect_src: Optional[str] = Field(default="https://api.trackx.app")
    csp_report_uri: Optional[str] = Field(default="https://api.trackx.app/v1/j8a84q08rm5/report")

    # Stylesheet processing
    xcss_globals: Dict[str, Any] = Field(default_factory=dict)
    xcss_plugins: List[str] = Field(default_factory=list, description="Extra ekscss plugin modules, applied after the config's own")
    purge_safelist: List[str] = Field(default=['html', 'body'])
    purge_blocklist: List[str] = Field(default_factory=lambda: list(DEFAULT_PURGE_BLOCKLIST))

    node_binary: str = Field(default="node")

    @property
    def root(self) -> Path:
        return self.project_dir.resolve()

    @property
    def dist_dir(self) -> Path:
        return self.root / self.outdir

    @property
    def static_path(self) -> Path:
        return self.root / self.static_dir

    @property
    def ci(self) -> bool:
        return bool(self.github_ref)

    @property
    def mode(self) -> Mode:
        if not self.node_env:
            raise ConfigurationError("NODE_ENV is not set (expected 'development' or 'production')")
        try:
            return Mode(self.node_env.strip().lower())
        except ValueError:
            raise ConfigurationError(
                f"Unsupported NODE_ENV '{self.node_env}' (expected 'development' or 'production')"
            ) from None

    @property
    def browser_target(self) -> BrowserTarget:
        return BrowserTarget.FIREFOX if self.firefox_build else BrowserTarget.CHROME

    def xcss_config_path(self) -> Optional[Path]:
        """Return the XCSS config module to load, if any."""
        if self.xcss_config is not None:
            path = self.root / self.xcss_config
            if not path.exists():
                raise ConfigurationError(f"XCSS config not found: {path}")
            return path
        for name in ('xcss.config.mjs', 'xcss.config.js'):
            candidate = self.root / name
            if candidate.exists():
                return candidate
        return None

    def build_config(self, release_label: str) -> BuildConfig:
        """Freeze the environment into the configuration for one run."""
        return BuildConfig(
            mode=self.mode,
            browser_target=self.browser_target,
            release_label=release_label,
        )


def get_settings(**overrides) -> Settings:
    """Get build settings, applying explicit overrides (e.g. from CLI flags)."""
    return Settings(**{k: v for k, v in overrides.items() if v is not None})
