"""ownergate CLI — inspect identities and tokens the way the gateway sees them.

Usage:
    ownergate classify did:issuer:abc123          # Which identity shape is this?
    ownergate parse-token eyJ...                  # Shape check + claimed identity
    ownergate resolve did:issuer:u1 --claimed did:issuer:u1
    ownergate check-limit profile_get:1.2.3.4 --max 60

Nothing here verifies signatures; parse-token prints what an unverified
token CLAIMS, which is exactly what the gateway trusts by default.
"""

from __future__ import annotations

import json
import sys
from typing import Optional

import click

from ownergate.gateway.identity import default_resolver
from ownergate.gateway.ratelimit import check_limit
from ownergate.gateway.tokens import parse_token


def _pretty_json(data: dict | list) -> str:
    return json.dumps(data, indent=2, default=str)


@click.group()
def cli():
    """Inspect gateway identity handling from the command line."""


@cli.command()
@click.argument("raw_id")
def classify(raw_id: str):
    """Print the identity shape of RAW_ID."""
    identity = default_resolver().classify(raw_id)
    if identity is None:
        click.secho("not a recognized identity", fg="red", err=True)
        sys.exit(1)
    click.echo(_pretty_json({"kind": identity.kind.value, "value": identity.value}))


@cli.command("parse-token")
@click.argument("token")
def parse_token_cmd(token: str):
    """Check TOKEN's three-segment shape and print its claimed identity."""
    parsed = parse_token(token)
    click.echo(_pretty_json({
        "well_formed": parsed.well_formed,
        "claimed_id": parsed.claimed_id,
        "signature_verified": False,
    }))
    if not parsed.well_formed:
        sys.exit(1)


@cli.command()
@click.argument("requested_id")
@click.option("--claimed", default=None, help="Identity claimed by the caller's token.")
def resolve(requested_id: str, claimed: Optional[str]):
    """Reconcile REQUESTED_ID with a token-claimed identity."""
    result = default_resolver().resolve(requested_id, claimed)
    click.echo(_pretty_json({
        "resolution": result.resolution.value,
        "canonical_id": result.canonical_id,
        "requested_kind": result.requested.kind.value if result.requested else None,
        "claimed_kind": result.claimed.kind.value if result.claimed else None,
    }))


@cli.command("check-limit")
@click.argument("key")
@click.option("--max", "max_requests", default=60, show_default=True, type=int)
@click.option("--window-ms", default=60_000, show_default=True, type=int)
@click.option("--count", default=1, show_default=True, type=int,
              help="Number of calls to make against the in-process limiter.")
def check_limit_cmd(key: str, max_requests: int, window_ms: int, count: int):
    """Exercise the fixed-window limiter for KEY (in-process only)."""
    result = None
    for _ in range(max(1, count)):
        result = check_limit(key, max_requests, window_ms)
    click.echo(_pretty_json({
        "allowed": result.allowed,
        "remaining": result.remaining,
        "reset_at": result.reset_at_iso,
    }))


def main():
    cli()


if __name__ == "__main__":
    main()
