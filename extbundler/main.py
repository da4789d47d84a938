"""Console entry point for extbundler."""

from .cli.app import cli

if __name__ == '__main__':
    cli()
