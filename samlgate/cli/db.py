"""Session store CLI commands."""

from __future__ import annotations

import click


@click.group()
def db() -> None:
    """Manage the shared session store."""
    pass


@db.command("init")
@click.pass_context
def db_init(ctx: click.Context) -> None:
    """Create the auth_sessions table if it does not exist."""
    from sqlalchemy.exc import SQLAlchemyError

    from samlgate.cli.main import get_config
    from samlgate.core.logging import redact_sensitive
    from samlgate.storage import SessionStore

    config = get_config(ctx)
    store = SessionStore(config.saml.database, debug=True)
    try:
        store.init_db()
    except SQLAlchemyError as e:
        raise click.ClickException(f"Database initialization failed: {e}") from None
    finally:
        store.close()

    click.echo(f"Session table ready at: {redact_sensitive(config.saml.database.url)}")


@db.command("show")
@click.option(
    "--limit",
    "-n",
    type=int,
    default=20,
    help="Maximum number of sessions to list",
)
@click.pass_context
def db_show(ctx: click.Context, limit: int) -> None:
    """List the most recent sessions."""
    from sqlalchemy.exc import SQLAlchemyError

    from samlgate.cli.main import get_config
    from samlgate.storage import SessionStore

    config = get_config(ctx)
    store = SessionStore(config.saml.database, debug=True)
    try:
        sessions = store.list_sessions(limit=limit)
    except SQLAlchemyError as e:
        raise click.ClickException(f"Cannot read sessions: {e}") from None
    finally:
        store.close()

    if not sessions:
        click.echo("No sessions stored.")
        return

    click.echo(f"{'Subject (sha256)':<66} {'Session index':<30} Authenticated")
    for session in sessions:
        click.echo(
            f"{session.name_id:<66} {session.session_index:<30} "
            f"{session.auth_time.strftime('%Y-%m-%d %H:%M:%S')}"
        )
