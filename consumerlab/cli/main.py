"""
Main CLI entry point for ConsumerLab
"""

import click

from .. import __version__
from .panel import generate_command, analyze_command


@click.group()
@click.version_option(version=__version__)
def cli():
    """
    ConsumerLab - Synthetic consumer panels and concept testing

    Recruit demographically-constrained personas and score product
    concepts against them, from the command line or over HTTP.
    """
    pass


@cli.command(name="serve")
@click.option('--host', default='127.0.0.1', help='Bind address')
@click.option('--port', default=8000, type=int, help='Bind port')
@click.option('--reload', is_flag=True, help='Reload on code changes (development)')
def serve_command(host: str, port: int, reload: bool):
    """
    Run the HTTP API with uvicorn.

    Examples:
        consumerlab serve
        consumerlab serve --host 0.0.0.0 --port 8080
    """
    import uvicorn

    click.echo(f"🚀 Starting ConsumerLab API on http://{host}:{port} (docs at /docs)")
    uvicorn.run("consumerlab.api.app:app", host=host, port=port, reload=reload)


# Register commands
cli.add_command(generate_command)
cli.add_command(analyze_command)


if __name__ == '__main__':
    cli()
