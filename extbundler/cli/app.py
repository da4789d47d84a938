import click
from colorama import init as colorama_init

from .. import __version__

# Initialize colorama for cross-platform colored output
colorama_init()


@click.group()
@click.version_option(version=__version__)
def cli():
    """
    extbundler - Browser Extension Build Pipeline

    Bundles the popup, content script, service worker and error reporting
    script, extracts and minifies styles, and writes a loadable dist/ tree
    with manifest.json and popup.html.
    """
    pass


from .commands import build as _build  # noqa: E402,F401
from .commands import check as _check  # noqa: E402,F401
from .commands import manifest as _manifest  # noqa: E402,F401
