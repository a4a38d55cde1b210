# opsdesk/cli.py
from __future__ import annotations

import click
from flask import Flask
from sqlalchemy.exc import IntegrityError

from .extensions import db
from .models import MEMBER_ROLES, Member, Organization, User
from .services.quotes import expire_overdue_quotes
from .utils.hashing import hash_password, password_policy_error


def register_commands(app: Flask) -> None:
    @app.cli.command("create-user")
    @click.option("--email", required=True)
    @click.option("--name", required=True)
    @click.option("--password", prompt=True, hide_input=True, confirmation_prompt=True)
    @click.option("--org-slug", default=None, help="Add the user to this organization (created if missing).")
    @click.option("--org-name", default=None, help="Name for a newly created organization.")
    @click.option("--role", type=click.Choice(MEMBER_ROLES), default="owner", show_default=True)
    def create_user(email, name, password, org_slug, org_name, role):
        """Create a staff user, optionally with an organization membership."""
        problem = password_policy_error(password)
        if problem:
            raise click.BadParameter(problem, param_hint="--password")

        user = User(
            name=name.strip(),
            email=email.strip().lower(),
            password_hash=hash_password(password),
            is_active=True,
        )
        db.session.add(user)

        if org_slug:
            slug = org_slug.strip().lower()
            org = Organization.query.filter_by(slug=slug).first()
            if org is None:
                org = Organization(slug=slug, name=(org_name or slug).strip())
                db.session.add(org)
            db.session.flush()
            db.session.add(Member(organization_id=org.id, user_id=user.id, role=role))

        try:
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            raise click.ClickException(f"A user with email {email} already exists.")

        click.echo(f"Created user {user.email}" + (f" ({role} of {org_slug})" if org_slug else ""))

    @app.cli.command("expire-quotes")
    def expire_quotes():
        """Mark sent quotes whose valid-until date has passed as expired."""
        count = expire_overdue_quotes()
        click.echo(f"Expired {count} quote(s).")
