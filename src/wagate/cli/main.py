"""
Top-level CLI commands: serve, normalize.
"""

import os

import typer

from wagate.errors import InvalidNumberFormat


def configure_logging(verbose: bool = False):
    """Configure logging for the CLI."""
    from wagate.logger import setup_logging

    log_level = "DEBUG" if verbose else "WARNING"
    setup_logging(level=log_level)


def register_commands(app: typer.Typer):
    """Register top-level commands onto the app."""

    @app.command()
    def serve(
        host: str = typer.Option(None, help="Host to bind to"),
        port: int = typer.Option(None, help="Port to bind to"),
        debug: bool = typer.Option(False, "--debug", help="Run in debug mode"),
    ):
        """Start the wagate server."""
        from wagate.config import CONFIG
        from wagate.server import main as run_server

        if host:
            os.environ["WAGATE_HOST"] = host
        if port:
            os.environ["WAGATE_PORT"] = str(port)
        if debug:
            os.environ["LOG_LEVEL"] = "DEBUG"
        CONFIG.reload()

        typer.echo(f"🚀 Starting wagate on {CONFIG.host}:{CONFIG.port}...")
        try:
            run_server()
        except KeyboardInterrupt:
            typer.echo("\n🛑 Server stopped.")

    @app.command()
    def normalize(number: str = typer.Argument(help="Phone number in any format")):
        """Print the canonical form of a phone number."""
        from wagate.phone import normalize_number

        try:
            typer.echo(normalize_number(number))
        except InvalidNumberFormat as e:
            typer.echo(f"❌ {e}")
            raise typer.Exit(code=1)
