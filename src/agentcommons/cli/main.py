"""
AgentCommons CLI

Client-side tooling for the identity and trust core:
- keygen: Generate an Ed25519 keypair and show its fingerprint
- fingerprint: Derive the fingerprint of a public key
- sign: Sign a JSON payload for submission
- delegate: Build a key rotation request signed by the current key
- webhook-sign: Compute the x-hub-signature-256 header for a body
- verify-webhook: Check a webhook body against a signature header
- serve: Run the HTTP server
"""

import json
import os
import sys
import time
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.table import Table
from rich import box

from agentcommons import __version__
from agentcommons.exceptions import AgentCommonsError
from agentcommons.identity.fingerprint import derive
from agentcommons.identity.keys import PayloadSigner, generate_keypair
from agentcommons.webhooks.trust_gate import compute_signature, verify as verify_webhook_signature

console = Console()


def _load_signer(key_file: Path) -> PayloadSigner:
    """Build a signer from a file holding a hex private key."""
    try:
        return PayloadSigner(key_file.read_text().strip())
    except ValueError as exc:
        raise click.BadParameter(str(exc), param_hint="--key-file") from None


def _load_json_object(stream) -> dict:
    try:
        payload = json.load(stream)
    except json.JSONDecodeError as exc:
        raise click.BadParameter(f"Invalid JSON: {exc.msg}") from None
    if not isinstance(payload, dict):
        raise click.BadParameter("Payload must be a JSON object")
    return payload


@click.group()
@click.version_option(__version__, prog_name="agentcommons")
def app():
    """AgentCommons - identity, signatures and key rotation for agents."""


@app.command()
@click.option("--output", "-o", type=click.Path(dir_okay=False, path_type=Path),
              help="Write the private key to this file (mode 0600).")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON.")
def keygen(output: Optional[Path], as_json: bool):
    """Generate an Ed25519 keypair."""
    private_hex, public_hex = generate_keypair()
    fingerprint = derive(public_hex)

    if output is not None:
        output.write_text(private_hex + "\n")
        os.chmod(output, 0o600)

    if as_json:
        data = {"public_key": public_hex, "fingerprint": fingerprint}
        if output is None:
            data["private_key"] = private_hex
        click.echo(json.dumps(data, indent=2))
        return

    table = Table(title="New Agent Key", box=box.ROUNDED)
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    table.add_row("Fingerprint", f"[bold green]{fingerprint}[/bold green]")
    table.add_row("Public key", public_hex)
    if output is not None:
        table.add_row("Private key", f"written to {output}")
    else:
        table.add_row("Private key", private_hex)
    console.print(table)
    if output is None:
        console.print("[yellow]Store the private key securely; it is not saved anywhere.[/yellow]")


@app.command()
@click.argument("public_key")
def fingerprint(public_key: str):
    """Derive the fingerprint of a hex PUBLIC_KEY."""
    try:
        click.echo(derive(public_key))
    except AgentCommonsError as exc:
        console.print(f"[red]{exc.code}:[/red] {exc.message}")
        sys.exit(1)


@app.command()
@click.argument("payload", type=click.File("r"))
@click.option("--key-file", "-k", required=True,
              type=click.Path(exists=True, dir_okay=False, path_type=Path),
              help="File holding the hex private key.")
@click.option("--first-contact", is_flag=True,
              help="Embed the public key instead of an author fingerprint.")
@click.option("--author", help="Fingerprint to sign as (after a rotation, the original one).")
def sign(payload, key_file: Path, first_contact: bool, author: Optional[str]):
    """Sign a JSON PAYLOAD file ("-" for stdin) and print the request body."""
    signer = _load_signer(key_file)
    content = _load_json_object(payload)
    try:
        body = signer.sign(content, first_contact=first_contact, author=author)
    except AgentCommonsError as exc:
        console.print(f"[red]{exc.code}:[/red] {exc.message}")
        sys.exit(1)
    click.echo(json.dumps(body, indent=2, ensure_ascii=False))


@app.command()
@click.option("--key-file", "-k", required=True,
              type=click.Path(exists=True, dir_okay=False, path_type=Path),
              help="File holding the identity's CURRENT hex private key.")
@click.option("--fingerprint", "fingerprint_", required=True, help="Identity fingerprint.")
@click.option("--new-public-key", required=True, help="Hex public key to rotate to.")
@click.option("--timestamp", type=int, default=None,
              help="Epoch seconds (defaults to now).")
def delegate(key_file: Path, fingerprint_: str, new_public_key: str, timestamp: Optional[int]):
    """Build a rotation request body signed by the current key."""
    signer = _load_signer(key_file)
    ts = timestamp if timestamp is not None else int(time.time())
    body = {
        "new_public_key": new_public_key,
        "delegation_signature": signer.delegate(fingerprint_, new_public_key, ts),
        "timestamp": ts,
    }
    click.echo(json.dumps(body, indent=2))


@app.command("webhook-sign")
@click.argument("payload", type=click.File("rb"))
@click.option("--secret", envvar="AGENTCOMMONS_WEBHOOK_SECRET", required=True,
              help="Shared webhook secret.")
def webhook_sign(payload, secret: str):
    """Print the x-hub-signature-256 header value for a raw PAYLOAD file."""
    click.echo(compute_signature(payload.read(), secret))


@app.command("verify-webhook")
@click.argument("payload", type=click.File("rb"))
@click.option("--signature", required=True, help="x-hub-signature-256 header value.")
@click.option("--secret", envvar="AGENTCOMMONS_WEBHOOK_SECRET", required=True,
              help="Shared webhook secret.")
def verify_webhook(payload, signature: str, secret: str):
    """Check a raw PAYLOAD file against a webhook signature header."""
    if verify_webhook_signature(payload.read(), signature, secret):
        console.print("[green]✓ signature valid[/green]")
        return
    console.print("[red]✗ signature mismatch[/red]")
    sys.exit(1)


@app.command()
def serve():
    """Run the HTTP server using AGENTCOMMONS_* environment settings."""
    from agentcommons.server import main as serve_main

    serve_main()


def main():
    """Console script entry point."""
    app()


if __name__ == "__main__":
    main()
