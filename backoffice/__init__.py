import os

import click
import structlog
from flask import Flask, jsonify

from backoffice.extensions import db, login_manager
from backoffice.logging_setup import configure_logging
from config import Config

logger = structlog.get_logger(__name__)


def create_app(config_class=Config):
    app = Flask(__name__)
    app.config.from_object(config_class)

    configure_logging(app.config['LOG_LEVEL'], json=app.config['LOG_JSON'])
    _ensure_sqlite_dir(app.config['SQLALCHEMY_DATABASE_URI'])

    # Initialize extensions
    db.init_app(app)
    login_manager.init_app(app)

    # User loader for Flask-Login
    from backoffice.models import User

    @login_manager.user_loader
    def load_user(user_id):
        return db.session.get(User, int(user_id))

    @login_manager.unauthorized_handler
    def unauthorized():
        return jsonify({'message': 'Authentication required'}), 401

    register_error_handlers(app)

    # Register blueprints
    from backoffice.routes.auth import auth_bp
    from backoffice.routes.wallets import wallets_bp
    from backoffice.routes.obligations import obligations_bp
    from backoffice.routes.campaigns import campaigns_bp
    from backoffice.routes.dashboard import dashboard_bp

    app.register_blueprint(auth_bp)
    app.register_blueprint(wallets_bp)
    app.register_blueprint(obligations_bp)
    app.register_blueprint(campaigns_bp)
    app.register_blueprint(dashboard_bp)

    register_commands(app)

    # Tables first, then the main wallet, before any request is served
    with app.app_context():
        db.create_all()
        logger.info('Database tables ready')
        bootstrap_main_wallet(app)

    return app


def bootstrap_main_wallet(app):
    from backoffice.services.wallet_service import ensure_main_wallet

    return ensure_main_wallet(
        app.config['MAIN_WALLET_NAME'],
        owner_username=app.config['MAIN_WALLET_OWNER'],
        description=app.config['MAIN_WALLET_DESCRIPTION'],
    )


def register_error_handlers(app):
    from backoffice.services.authorization_service import AuthorizationError
    from backoffice.services.errors import LedgerError

    @app.errorhandler(LedgerError)
    def handle_ledger_error(error):
        if error.status_code >= 500:
            logger.error('Ledger operation failed', error=error.message)
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(AuthorizationError)
    def handle_authorization_error(error):
        return jsonify(error.to_dict()), error.status_code


def register_commands(app):
    @app.cli.command('create-admin')
    @click.option('--username', default='admin', show_default=True)
    @click.option('--email', default='admin@example.com', show_default=True)
    @click.option('--full-name', default='Administrator', show_default=True)
    @click.password_option()
    def create_admin(username, email, full_name, password):
        """Create an admin account (used as main wallet owner)."""
        from backoffice.models import MemberRole, User

        if User.query.filter_by(username=username).first():
            raise click.ClickException(f'User "{username}" already exists')

        user = User(username=username, email=email, full_name=full_name,
                    role=MemberRole.ADMIN.value)
        user.set_password(password)
        db.session.add(user)
        db.session.commit()
        click.echo(f'Created admin {username} (id={user.id})')

        from backoffice.services.wallet_service import claim_main_wallet

        wallet = claim_main_wallet(user.id)
        if wallet is not None and wallet.created_by == user.id:
            click.echo(f'{username} now owns main wallet {wallet.name}')

    @app.cli.command('ensure-main-wallet')
    def ensure_main_wallet_command():
        """Create the main wallet if it does not exist."""
        wallet, created = bootstrap_main_wallet(app)
        state = 'created' if created else 'already present'
        click.echo(f'Main wallet {wallet.name} (id={wallet.id}) {state}')


def _ensure_sqlite_dir(uri):
    prefix = 'sqlite:///'
    if uri.startswith(prefix) and len(uri) > len(prefix):
        directory = os.path.dirname(uri[len(prefix):])
        if directory:
            os.makedirs(directory, exist_ok=True)
