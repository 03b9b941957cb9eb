"""
wagate CLI.

This package splits CLI commands into focused modules:
- main:     serve, normalize
- sessions: list, start, status, qr, send, disconnect, disconnect-all
"""

import typer

from wagate.cli._http import _http_get, _http_post  # noqa: F401
from wagate.cli.main import configure_logging, register_commands
from wagate.cli.sessions import sessions_app

app = typer.Typer(help="wagate - control plane for chat protocol sessions")


@app.callback()
def main(
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Enable verbose logging (DEBUG level)"
    ),
):
    """
    wagate - control plane for chat protocol sessions.
    """
    configure_logging(verbose)


register_commands(app)

app.add_typer(sessions_app, name="sessions")

if __name__ == "__main__":
    app()
