"""Extension manifest and popup HTML shell."""

import json
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Optional
import logging

from ..config import BrowserTarget, Settings
from ..utils.exceptions import ConfigurationError
from ..utils.node_utils import git_describe

logger = logging.getLogger(__name__)

# https://developer.chrome.com/docs/extensions/mv3/manifest/
MANIFEST_VERSION = 3
ICONS = {
    '16': 'icon16.png',
    '48': 'icon48.png',
    '128': 'icon128.png',
}
PERMISSIONS = [
    'activeTab',
    'scripting',
    'storage',
    'declarativeNetRequest',
]
HOST_PERMISSIONS = ['*://*/*']

_HTML_TEMPLATE = """
    <!doctype html>
    <meta charset=utf-8>
    <meta name=google value=notranslate>
    <link href={css_path} rel=stylesheet>
    <script src={health_path} defer></script>
    <script src={js_path} type=module></script>
"""


def make_html(js_path: str, css_path: str, health_path: str = 'health.js') -> str:
    """
    Render the popup HTML shell.

    Leading indentation is collapsed so identical inputs always produce
    identical bytes.
    """
    html = _HTML_TEMPLATE.format(js_path=js_path, css_path=css_path, health_path=health_path)
    return re.sub(r'\n\s*', '\n', html.strip())


def strip_version_prefix(label: str) -> str:
    return re.sub(r'^v', '', label)


def label_from_ci_ref(ref: str) -> Optional[str]:
    """``refs/tags/v1.2.3`` -> ``1.2.3``; None for branch and PR refs."""
    match = re.match(r'^refs/tags/(.+)$', ref)
    if not match:
        return None
    return strip_version_prefix(match.group(1))


def read_package_version(project_dir: Path) -> str:
    """Read ``version`` from the project's package.json."""
    package_json = project_dir / 'package.json'
    try:
        data = json.loads(package_json.read_text(encoding='utf-8'))
    except FileNotFoundError:
        raise ConfigurationError(f"package.json not found in {project_dir}") from None
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigurationError(f"Cannot read {package_json}: {e}") from None

    version = data.get('version')
    if not version:
        raise ConfigurationError(f"{package_json} has no version")
    return str(version)


@dataclass
class VersionInfo:
    version: str
    version_name: Optional[str]
    release_label: str


class ManifestBuilder:
    """Builds the extension manifest from project metadata and build settings."""

    def __init__(
        self,
        settings: Settings,
        describe: Callable[[Path], Optional[str]] = git_describe,
    ):
        """
        Args:
            settings: Build settings (manifest fields, CI ref, project root)
            describe: Resolves the local version-control label
        """
        self.settings = settings
        self.describe = describe

    def resolve_version(self) -> VersionInfo:
        """
        Resolve the package version and the human-readable build label.

        Outside CI the label comes from ``git describe``; in CI the
        ``version_name`` field is left out and a tag ref, when present, names
        the release.
        """
        version = read_package_version(self.settings.root)

        if self.settings.ci:
            version_name = None
            tag = label_from_ci_ref(self.settings.github_ref)
            release_label = tag or version
        else:
            described = self.describe(self.settings.root)
            version_name = strip_version_prefix(described) if described else None
            release_label = version_name or version

        logger.info(f"Release: {release_label} (package version {version})")
        return VersionInfo(version=version, version_name=version_name, release_label=release_label)

    def content_security_policy(self) -> str:
        directives = [
            "default-src 'none'",
            "script-src-elem 'self'",
            "style-src-elem 'self'",
            # CSS inline background-image
            'img-src data:',
        ]
        if self.settings.csp_connect_src:
            directives.append(f'connect-src {self.settings.csp_connect_src}')
        if self.settings.csp_report_uri:
            directives.append(f'report-uri {self.settings.csp_report_uri}')
        directives.append('')
        return ';'.join(directives)

    def build(self, version: VersionInfo, target: BrowserTarget) -> Dict[str, Any]:
        """
        Build the manifest for one browser target.

        Firefox rejects ``key`` and has no ``version_name``, so both are left
        out for that target.
        """
        manifest: Dict[str, Any] = {
            'manifest_version': MANIFEST_VERSION,
            'name': self.settings.extension_name,
            'description': self.settings.extension_description,
            'version': version.version,
            'version_name': version.version_name,
            'icons': dict(ICONS),
            'action': {
                'default_popup': 'popup.html',
            },
            'background': {
                'service_worker': 'sw.js',
            },
            'permissions': list(PERMISSIONS),
            'host_permissions': list(HOST_PERMISSIONS),
            'offline_enabled': True,
            'incognito': 'spanning',
            'content_security_policy': {
                'extension_pages': self.content_security_policy(),
            },
            'key': self.settings.extension_key,
        }

        if not target.supports_manifest_key:
            manifest.pop('version_name')
            manifest.pop('key')

        # Unset fields are left out, as JSON.stringify does with undefined
        return {k: v for k, v in manifest.items() if v is not None}


def serialize_manifest(manifest: Dict[str, Any]) -> str:
    return json.dumps(manifest, separators=(',', ':'), ensure_ascii=False)
