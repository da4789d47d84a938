import click


def settings_overrides(mode, browser, project_dir, outdir) -> dict:
    """Translate CLI flags into Settings keyword overrides."""
    overrides = {
        'node_env': mode,
        'project_dir': project_dir,
        'outdir': outdir,
    }
    if browser is not None:
        overrides['firefox_build'] = '1' if browser == 'firefox' else ''
    return overrides


browser_option = click.option(
    '--browser', '-b',
    type=click.Choice(['chrome', 'firefox']),
    default=None,
    help='Browser target. Default: firefox when FIREFOX_BUILD is set, otherwise chrome'
)

project_dir_option = click.option(
    '--project-dir', '-C',
    type=click.Path(exists=True, file_okay=False),
    default=None,
    help='Extension project root (contains package.json and src/). Default: current directory'
)
