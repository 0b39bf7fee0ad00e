import json

import click
from flask import Flask, jsonify
from flask_sqlalchemy import SQLAlchemy
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.exceptions import HTTPException
from config import config

db = SQLAlchemy()


def create_app(config_name='default'):
    """Application factory: creates and configures the Flask app."""
    app = Flask(__name__)
    app.config.from_object(config[config_name])

    # ── Logging ───────────────────────────────────────────────────
    from giftdesk.utils.logging import setup_logging
    setup_logging(app)

    # ── Extensions ────────────────────────────────────────────────
    db.init_app(app)

    from giftdesk.utils.ratelimit import init_rate_limiter
    from giftdesk.auth.lockout import init_login_guard
    init_rate_limiter(app)
    init_login_guard(app)

    # ── Blueprints ────────────────────────────────────────────────
    from giftdesk.main import main as main_blueprint
    app.register_blueprint(main_blueprint)

    from giftdesk.auth import auth as auth_blueprint
    app.register_blueprint(auth_blueprint, url_prefix='/api/auth')

    from giftdesk.cards import cards as cards_blueprint
    app.register_blueprint(cards_blueprint, url_prefix='/api/cards')

    register_error_handlers(app)
    register_commands(app)

    # ── ProxyFix for hosting behind a TLS-terminating proxy ──
    from werkzeug.middleware.proxy_fix import ProxyFix
    app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1, x_prefix=1)

    return app


def register_error_handlers(app):
    """Every error leaves as JSON: {"success": false, "error": "..."}."""
    from giftdesk.errors import GiftDeskError

    @app.errorhandler(GiftDeskError)
    def domain_error(e):
        return jsonify(e.to_dict()), e.status_code

    @app.errorhandler(SQLAlchemyError)
    def database_error(e):
        db.session.rollback()
        app.logger.exception("Database error")
        return jsonify({'success': False, 'error': 'Database error, please try again'}), 500

    @app.errorhandler(HTTPException)
    def http_error(e):
        return jsonify({'success': False, 'error': e.description}), e.code

    @app.errorhandler(500)
    def internal_error(e):
        return jsonify({'success': False, 'error': 'Internal server error'}), 500


def register_commands(app):
    """Register custom Flask CLI commands."""

    @app.cli.command('init-db')
    def init_db():
        """Create all database tables."""
        import giftdesk.auth.models    # noqa: F401
        import giftdesk.cards.models   # noqa: F401
        db.create_all()
        click.echo('✅  Database tables created.')

    @app.cli.command('seed-admin')
    @click.option('--username', prompt='Username',   help='Operator username')
    @click.option('--password', prompt=True, hide_input=True,
                  confirmation_prompt=True, help='Operator password')
    def seed_admin(username, password):
        """Create the shared operator account, or reset its password."""
        from giftdesk.auth.models import User, RoleEnum

        user = User.query.filter_by(username=username).first()
        if user:
            user.set_password(password)
            user.is_active = True
            db.session.commit()
            click.echo(f'✅  Password reset for "{username}".')
            return

        user = User(username=username, role=RoleEnum.admin)
        user.set_password(password)
        db.session.add(user)
        db.session.commit()
        click.echo(f'✅  Operator "{username}" created successfully.')

    @app.cli.command('seed-demo')
    def seed_demo():
        """Populate database with a demo operator, gift cards and wallets."""
        from giftdesk.auth.models import User, RoleEnum
        from giftdesk.cards import service
        from giftdesk.cards.models import GiftCard
        import random

        click.echo("🌱 Seeding demo data...")
        db.create_all()

        if not User.query.filter_by(username='admin').first():
            u = User(username='admin', role=RoleEnum.admin)
            u.set_password('Demo#2024')
            db.session.add(u)
            db.session.commit()
            click.echo("✅ Operator created (admin / Demo#2024).")

        if GiftCard.query.count() < 5:
            names = ['Ana López', 'Carlos Ruiz', 'María García', 'Juan Pérez', 'Lucía Torres',
                     'Pedro Gómez', 'Sofía Díaz', 'Diego Herrera']
            for i, name in enumerate(names):
                card_type = 'ewallet' if i % 3 == 0 else 'giftcard'
                card = service.create_card({
                    'type': card_type,
                    'ownerName': name,
                    'ownerEmail': f'demo{i}@example.com',
                    'initialAmount': random.choice([250, 500, 1000, 1500]),
                }, performed_by='system', rate_limited=False)
                if card_type == 'ewallet':
                    service.update_amount(card.id, random.choice([100, 300, 800]),
                                          'Initial top-up', performed_by='system')
            click.echo("✅ Demo cards seeded.")

        click.echo("✅ Demo seed complete.")

    @app.cli.command('expire-cards')
    def expire_cards():
        """Switch off cards whose expiry date has passed."""
        from giftdesk.cards import service
        count = service.expire_cards()
        click.echo(f'✅  {count} expired card(s) deactivated.')

    @app.cli.command('export-cards')
    @click.argument('path', type=click.Path(dir_okay=False, writable=True))
    def export_cards(path):
        """Write every card and transaction to a JSON file."""
        from giftdesk.cards import transfer
        document = transfer.export_cards(rate_limited=False)
        with open(path, 'w', encoding='utf-8') as fh:
            json.dump(document, fh, indent=2, ensure_ascii=False)
        click.echo(f'✅  Exported {len(document["giftCards"])} card(s) to {path}.')

    @app.cli.command('import-cards')
    @click.argument('path', type=click.Path(exists=True, dir_okay=False))
    def import_cards(path):
        """Load cards from an export file or an import template."""
        from giftdesk.cards import transfer
        from giftdesk.errors import GiftDeskError

        with open(path, encoding='utf-8') as fh:
            try:
                document = json.load(fh)
            except ValueError as e:
                raise click.ClickException(f'Not valid JSON: {e}')
        try:
            result = transfer.import_cards(document, performed_by='system', rate_limited=False)
        except GiftDeskError as e:
            raise click.ClickException(e.message)

        click.echo(f'✅  Imported {result.imported}, duplicates {result.duplicates}.')
        for error in result.errors:
            click.echo(f'⚠️  {error}')
