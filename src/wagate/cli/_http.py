"""
Shared HTTP helpers for CLI commands that talk to the running server.
"""

import os

import httpx
import typer


def get_server_url() -> str:
    """Get the server URL from environment or default."""
    explicit = os.getenv("WAGATE_SERVER_URL")
    if explicit:
        return explicit.rstrip("/")

    host = os.getenv("WAGATE_HOST", "localhost")
    if host == "0.0.0.0":
        host = "localhost"
    port = os.getenv("WAGATE_PORT", "3333")
    return f"http://{host}:{port}"


def _headers() -> dict:
    api_key = os.getenv("WAGATE_API_KEY")
    return {"X-API-Key": api_key} if api_key else {}


def _handle_error(e: Exception):
    if isinstance(e, httpx.ConnectError):
        typer.echo("❌ Cannot connect to wagate server. Is it running?")
    elif isinstance(e, httpx.HTTPStatusError):
        try:
            detail = e.response.json().get("error", str(e))
        except Exception:
            detail = str(e)
        typer.echo(f"❌ Server error ({e.response.status_code}): {detail}")
    else:
        typer.echo(f"❌ Error: {e}")
    raise typer.Exit(code=1)


def _http_get(path: str) -> dict:
    """Make a GET request to the running server."""
    url = f"{get_server_url()}{path}"
    try:
        resp = httpx.get(url, headers=_headers(), timeout=30.0)
        resp.raise_for_status()
        return resp.json()
    except Exception as e:
        _handle_error(e)


def _http_post(path: str, data: dict = None) -> dict:
    """Make a POST request to the running server."""
    url = f"{get_server_url()}{path}"
    try:
        resp = httpx.post(url, json=data or {}, headers=_headers(), timeout=30.0)
        resp.raise_for_status()
        return resp.json()
    except Exception as e:
        _handle_error(e)
