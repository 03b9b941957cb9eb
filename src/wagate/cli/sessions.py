"""
CLI subcommands for managing protocol sessions on a running server.

Usage:
    wagate sessions list
    wagate sessions start <session>
    wagate sessions status <session>
    wagate sessions qr <session>
    wagate sessions send <session> <number> <message>
    wagate sessions disconnect <session>
    wagate sessions disconnect-all
"""

import typer

from wagate.cli._http import _http_get, _http_post

sessions_app = typer.Typer(help="Manage protocol sessions on a running server")


def _status_icon(session: dict) -> str:
    return "🟢" if session.get("connected") else "🟡"


@sessions_app.command("list")
def sessions_list():
    """List all registered sessions."""
    data = _http_get("/sessions")
    sessions = data.get("sessions", [])

    if not sessions:
        typer.echo("No sessions running.")
        return

    typer.echo(f"📱 Sessions ({len(sessions)}):\n")
    for session in sessions:
        typer.echo(
            f"  {_status_icon(session)} {session['sessionId']} ({session['state']})"
        )


@sessions_app.command("start")
def sessions_start(session_id: str = typer.Argument(help="Session key")):
    """Start a session (or reuse the running one)."""
    data = _http_get(f"/start/{session_id}")
    typer.echo(f"✅ Session {data['session']} started")
    typer.echo(f"   Scan the pairing code with: wagate sessions qr {session_id}")


@sessions_app.command("status")
def sessions_status(session_id: str = typer.Argument(help="Session key")):
    """Show connection state of a session."""
    data = _http_get(f"/status/{session_id}")
    typer.echo(f"{_status_icon(data)} {data['sessionId']}: {data.get('state', '?')}")
    if data.get("qr"):
        typer.echo("   Pairing code pending")


@sessions_app.command("qr")
def sessions_qr(session_id: str = typer.Argument(help="Session key")):
    """Print the pending pairing code as a data URL."""
    data = _http_get(f"/qrcode/{session_id}")
    typer.echo(data["qr"])


@sessions_app.command("send")
def sessions_send(
    session_id: str = typer.Argument(help="Session key"),
    number: str = typer.Argument(help="Destination phone number"),
    message: str = typer.Argument(help="Message text"),
):
    """Send a text message through a session."""
    data = _http_post(
        f"/send-message/{session_id}", {"number": number, "message": message}
    )
    typer.echo(f"✅ {data['message']}")


@sessions_app.command("disconnect")
def sessions_disconnect(session_id: str = typer.Argument(help="Session key")):
    """Log out and close a session."""
    data = _http_post(f"/disconnect/{session_id}")
    typer.echo(f"🔌 {data['message']}")


@sessions_app.command("disconnect-all")
def sessions_disconnect_all():
    """Log out and close every session."""
    data = _http_post("/disconnect-all")
    typer.echo(f"🔌 {data['message']}")
