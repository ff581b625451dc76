"""Flask CLI commands for refresh token maintenance."""

from __future__ import annotations

import logging

import click
from flask import current_app
from flask.cli import with_appcontext

from tokenguard.services.tokens import TokenEngine

LOGGER = logging.getLogger(__name__)


def _engine() -> TokenEngine:
    engine = current_app.extensions.get("tokenguard")
    if engine is None:
        raise click.UsageError("Token engine is not configured on this application.")
    return engine


@click.group("tokens")
@click.option("--verbose", is_flag=True, help="Enable verbose logging for token commands.")
def tokens_cli(verbose: bool) -> None:
    """Refresh token maintenance commands."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.getLogger("tokenguard").setLevel(level)


@tokens_cli.command("purge")
@with_appcontext
def purge_command() -> None:
    """Delete expired or revoked refresh tokens (intended for cron)."""
    count = _engine().purge_expired_or_revoked()
    LOGGER.info("cli.tokens_purged", extra={"count": count})
    click.echo(f"Purged {count} refresh token(s).")


@tokens_cli.command("stats")
@click.argument("user_id", required=False)
@with_appcontext
def stats_command(user_id: str | None) -> None:
    """Print token counts for USER_ID, or system-wide counts when omitted."""
    if user_id is None:
        totals = _engine().inspector.token_statistics()
        click.echo(
            f"total={totals.total} active={totals.active} revoked={totals.revoked} "
            f"expired={totals.expired} created_today={totals.created_today} "
            f"revoked_today={totals.revoked_today}"
        )
        return
    stats = _engine().inspector.user_stats(user_id)
    click.echo(
        f"user={user_id} total={stats.total} active={stats.active} "
        f"used={stats.used} revoked={stats.revoked} expired={stats.expired}"
    )
