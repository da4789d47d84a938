import sys

import click
from colorama import Fore, Back, Style

from ...config import get_settings
from ...utils.exceptions import ConfigurationError
from ...utils.node_utils import find_tool, node_module_resolves
from ._options import project_dir_option, settings_overrides

from ..app import cli

NODE_PACKAGES = ['ekscss', 'lightningcss', 'purgecss', 'terser']

_OK = f"{Style.BRIGHT}{Fore.GREEN}{Back.LIGHTBLACK_EX} ✔ {Style.RESET_ALL}"
_FAIL = f"{Style.BRIGHT}{Fore.RED} ✗ {Style.RESET_ALL}"


@cli.command()
@project_dir_option
def check(project_dir):
    """
    Check that the build tools resolve from the extension project.
    """
    print(f"\n{Fore.CYAN}Checking extbundler configuration...{Style.RESET_ALL}\n")

    settings = get_settings(**settings_overrides(None, None, project_dir, None))
    root = settings.root
    all_ok = True

    print("Project:")
    package_json = root / 'package.json'
    print(f"  package.json: {_OK}" if package_json.exists() else f"  package.json: {_FAIL} Not found in {root}")
    all_ok &= package_json.exists()

    try:
        print(f"  NODE_ENV: {settings.mode.value} {_OK}")
    except ConfigurationError as e:
        print(f"  NODE_ENV: {_FAIL} {e}")
        all_ok = False
    print(f"  Browser target: {settings.browser_target.value} {settings.browser_target.min_version}")
    print()

    print("Tools:")
    try:
        print(f"  esbuild: {find_tool('esbuild', root)} {_OK}")
    except ConfigurationError:
        print(f"  esbuild: {_FAIL} Not found")
        all_ok = False

    for package in NODE_PACKAGES:
        if node_module_resolves(package, root, settings.node_binary):
            print(f"  {package}: {_OK}")
        else:
            print(f"  {package}: {_FAIL} Cannot import from {root}")
            all_ok = False
    print()

    if all_ok:
        print(f"{_OK} {Fore.GREEN}Ready to build{Style.RESET_ALL}\n")
    else:
        print(f"{Fore.YELLOW}⚠ Some requirements are missing. Run 'npm install' in the extension project.{Style.RESET_ALL}\n")
        sys.exit(1)
