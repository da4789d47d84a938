import sys

import click
from colorama import Fore, Style

from ...config import get_settings
from ...pipeline import BuildPipeline
from ..logging import configure_logging
from ..progress import ProgressDisplay
from ._options import browser_option, project_dir_option, settings_overrides

from ..app import cli


@cli.command()
@click.option(
    '--mode', '-m',
    type=click.Choice(['development', 'production']),
    default=None,
    help='Build mode. Default: NODE_ENV'
)
@browser_option
@project_dir_option
@click.option(
    '--outdir', '-o',
    type=click.Path(file_okay=False),
    default=None,
    help='Output directory, relative to the project root. Default: dist'
)
@click.option(
    '--verbose', '-v',
    is_flag=True,
    default=False,
    help='Log debug output (bundler outputs, rename cache) to the console'
)
def build(mode, browser, project_dir, outdir, verbose):
    """
    Build the extension into the output directory.

    The output directory is deleted and rebuilt from scratch. If the build
    fails its contents must not be used.

    Examples:

        NODE_ENV=production extbundler build

        extbundler build --mode=development --browser=firefox
    """
    configure_logging(verbose)

    import logging

    logger = logging.getLogger(__name__)

    try:
        settings = get_settings(**settings_overrides(mode, browser, project_dir, outdir))
        pipeline = BuildPipeline(settings)
        result = pipeline.run(progress_callback=ProgressDisplay.show)

        print(f"\n{Fore.GREEN}Build complete:{Style.RESET_ALL} {result.outdir}")
        for stage, ms in result.timings.items():
            print(f"  {stage:<17} {ms:8.1f} ms")
        print()

    except KeyboardInterrupt:
        print(f"\n{Fore.YELLOW}Build cancelled by user.{Style.RESET_ALL}")
        sys.exit(1)
    except Exception as e:
        from ...utils.exceptions import BuildError
        if not isinstance(e, BuildError):
            logger.exception("Build failed")
        print(f"\n{Fore.RED}Error: {e}{Style.RESET_ALL}")
        print(f"{Fore.RED}Check extbundler.log for details.{Style.RESET_ALL}")
        sys.exit(1)
