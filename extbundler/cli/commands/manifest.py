import sys

import click
from colorama import Fore, Style

from ...config import get_settings
from ...modules.manifest import ManifestBuilder, serialize_manifest
from ._options import browser_option, project_dir_option, settings_overrides

from ..app import cli


@cli.command()
@browser_option
@project_dir_option
def manifest(browser, project_dir):
    """
    Print the manifest.json a build would write.
    """
    try:
        settings = get_settings(**settings_overrides(None, browser, project_dir, None))
        builder = ManifestBuilder(settings)
        version = builder.resolve_version()
        click.echo(serialize_manifest(builder.build(version, settings.browser_target)))
    except Exception as e:
        print(f"{Fore.RED}Error: {e}{Style.RESET_ALL}", file=sys.stderr)
        sys.exit(1)
