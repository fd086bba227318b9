import click
import stripe
from flask import current_app
from flask.cli import with_appcontext
from leaveratings.extensions import db
from leaveratings.models import User


def _user_by_email(email: str) -> User:
    user = db.session.query(User).filter_by(email=email.strip().lower()).one_or_none()
    if not user:
        raise click.ClickException("User not found")
    return user


def _provider():
    provider = current_app.extensions.get("billing_provider")
    if provider is None:
        raise click.ClickException("Stripe is not configured (STRIPE_SECRET_KEY)")
    return provider


@click.group()
def users():
    """User management."""

@users.command("create")
@click.option("--email", required=True)
@click.option("--password", required=True)
@with_appcontext
def users_create(email, password):
    email = email.strip().lower()
    # fail fast if user exists
    if db.session.query(User).filter_by(email=email).count():
        raise click.ClickException("User already exists")

    user = User(email=email, is_active=True)
    user.set_password(password)
    db.session.add(user)
    db.session.commit()

    click.echo(f"User created id={user.id} email={user.email}")


@click.group()
def billing():
    """Stripe reconciliation ops."""

@billing.command("dedupe")
@with_appcontext
def billing_dedupe():
    """Schedule cancellation of duplicate live subscriptions for every customer."""
    from leaveratings.billing.checkout import collapse_duplicates

    provider = _provider()
    customers = db.session.query(User.id, User.stripe_customer_id).filter(User.stripe_customer_id.isnot(None)).all()
    checked = collapsed = 0
    for user_id, customer_id in customers:
        try:
            live = collapse_duplicates(provider, customer_id)
        except stripe.StripeError as exc:
            click.echo(f"skip user_id={user_id}: {type(exc).__name__}", err=True)
            continue
        checked += 1
        if len(live) > 1:
            collapsed += 1
            click.echo(f"user_id={user_id} kept={live[0]['id']} scheduled={len(live) - 1}")
    click.echo(f"Checked {checked} customer(s); collapsed {collapsed}")

@billing.command("refresh")
@click.option("--email", required=True)
@with_appcontext
def billing_refresh(email):
    """Pull subscription state from Stripe and write it back to the account."""
    from leaveratings.billing.refresh import refresh_entitlement

    user = _user_by_email(email)
    snapshot = refresh_entitlement(user.id, _provider())
    db.session.expire_all()
    user = db.session.get(User, user.id)
    click.echo(
        f"{user.email}: stripe={snapshot.status or 'none'} "
        f"stored={user.subscription_status or 'none'} canceling={snapshot.is_canceling}"
    )


@click.group()
def usage():
    """Usage ledger inspection."""

@usage.command("show")
@click.option("--email", required=True)
@with_appcontext
def usage_show(email):
    from leaveratings.models import UsagePeriod
    from leaveratings.services.usage import get_usage_summary

    user = _user_by_email(email)
    rows = (
        db.session.query(UsagePeriod)
        .filter_by(user_id=user.id)
        .order_by(UsagePeriod.period.asc())
        .all()
    )
    for row in rows:
        click.echo(f"{row.period}  {row.count}")
    summary = get_usage_summary(user.id)
    limit = "unlimited" if summary.limit is None else summary.limit
    click.echo(f"total={summary.current_usage} limit={limit}")


def register_cli(app):
    app.cli.add_command(users)
    app.cli.add_command(billing)
    app.cli.add_command(usage)
