import click
from flask.cli import with_appcontext

from outreach.exceptions import OutreachError
from outreach.models import QuotaLedger, User
from outreach.models.quota import PLANS, RESOURCE_TYPES


@click.command('create-user')
@click.option('--email', prompt=True)
@click.option('--name', prompt=True)
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True)
@click.option('--plan', type=click.Choice(PLANS), default='free', show_default=True)
@click.option('--admin', is_flag=True, help='Grant the admin role')
@with_appcontext
def create_user(email, name, password, plan, admin):
    """Create a user account and its quota ledger"""
    from outreach.services import get_user_service

    try:
        user = get_user_service().create_user(
            email=email, password=password, name=name, plan=plan,
            role='admin' if admin else 'user'
        )
    except OutreachError as e:
        raise click.ClickException(e.message)

    click.echo(f"Created {user.role} {user.email} ({user.id}) on {user.plan} plan")


@click.command('send-scheduled')
@click.option('--batch-size', type=int, default=None, help='Messages per type to process')
@with_appcontext
def send_scheduled(batch_size):
    """Deliver pending messages whose scheduled time has passed"""
    from outreach.services import get_send_service

    results = get_send_service().send_scheduled_messages(batch_size)
    sent = sum(1 for result in results if result['success'])
    click.echo(f"Processed {len(results)} scheduled messages: {sent} sent, {len(results) - sent} failed")
    for result in results:
        if not result['success']:
            click.echo(f"  {result['type']} {result['id']}: {result['error']}")


@click.command('reset-expired-quotas')
@with_appcontext
def reset_expired_quotas():
    """Reset quota buckets whose rolling window has ended"""
    results = QuotaLedger.reset_all_expired()
    click.echo(f"Reset expired quota windows for {len(results)} users")
    for result in results:
        click.echo(f"  {result['user_id']}: {', '.join(result['reset'])}")


@click.command('quota-status')
@click.argument('email')
@with_appcontext
def quota_status(email):
    """Show a user's quota ledger"""
    user = User.query.filter_by(email=email.strip().lower()).first()
    if user is None:
        raise click.ClickException(f"No user with email {email}")

    ledger = QuotaLedger.get_for_user(user.id)
    if ledger is None:
        raise click.ClickException(f"No quota ledger for {email}")

    summary = ledger.get_summary()
    click.echo(f"{user.email} - {summary['plan']} plan - {summary['overall_status']}")
    for resource_type in RESOURCE_TYPES:
        bucket = summary[resource_type]
        click.echo(
            f"  {resource_type:<5} {bucket['used']:>7}/{bucket['limit']:<7} "
            f"{bucket['percentage']:>6.2f}%  {bucket['status']:<8} resets {bucket['reset_date']}"
        )


def register_commands(app):
    """Register CLI commands with Flask app"""
    app.cli.add_command(create_user)
    app.cli.add_command(send_scheduled)
    app.cli.add_command(reset_expired_quotas)
    app.cli.add_command(quota_status)
