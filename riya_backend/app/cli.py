"""
cli.py — Flask CLI command groups for operator bootstrap and maintenance.

Commands (FLASK_APP="riya_backend.app:create_app"):
  flask tokens purge
      Delete expired refresh tokens and password reset tokens.
  flask users create-admin --email admin@example.com --first-name Ada --last-name Admin [--role manager]
      Create an administrative account (prompts for the password).
"""

from __future__ import annotations

import click
from flask.cli import with_appcontext

from riya_backend.app.errors import AppError
from riya_backend.app.extensions import db, get_settings
from riya_backend.app.models.user import ADMIN_ROLES
from riya_backend.app.services import auth_service


@click.group("tokens")
def tokens_group():
    """Refresh and reset token maintenance."""


@tokens_group.command("purge")
@with_appcontext
def purge_tokens_cli():
    """Delete refresh tokens and password reset tokens past their expiry."""
    counts = auth_service.cleanup_expired_tokens(db.session)
    db.session.commit()
    click.echo(
        f"Deleted {counts['refresh_tokens']} refresh tokens and "
        f"{counts['password_resets']} password reset tokens."
    )


@click.group("users")
def users_group():
    """User bootstrap commands."""


@users_group.command("create-admin")
@click.option("--email", prompt=True, help="Email address")
@click.option("--first-name", prompt=True, help="First name")
@click.option("--last-name", prompt=True, help="Last name")
@click.option("--password", prompt=True, hide_input=True, confirmation_prompt=True, help="Password")
@click.option("--role", type=click.Choice(list(ADMIN_ROLES)), default="admin", show_default=True)
@with_appcontext
def create_admin_cli(email, first_name, last_name, password, role):
    """
    Create an administrative user.

    Password must meet the same strength rules as registration.
    """
    try:
        user = auth_service.create_user(
            email=email,
            password=password,
            first_name=first_name,
            last_name=last_name,
            role=role,
            session=db.session,
            settings=get_settings(),
        )
    except AppError as exc:
        db.session.rollback()
        raise click.ClickException(exc.message)

    db.session.commit()
    click.echo(f"PASS Created {user.role} {user.email} (ID: {user.id})")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(tokens_group)
    app.cli.add_command(users_group)
