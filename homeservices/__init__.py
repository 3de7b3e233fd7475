import logging
import os
from datetime import datetime

from dotenv import load_dotenv
from flask import Flask, jsonify
from flask_cors import CORS
from flask_migrate import Migrate
from flask_sqlalchemy import SQLAlchemy

load_dotenv()

db = SQLAlchemy()
migrate = Migrate()


def _env_float(name, default):
    return float(os.getenv(name, default))


def create_app(config_name='development', **overrides):
    app = Flask(__name__)

    # Config
    database_url = os.getenv('DATABASE_URL', 'sqlite:///homeservices.db')
    # Handle Render's postgres:// vs postgresql:// issue
    if database_url.startswith('postgres://'):
        database_url = database_url.replace('postgres://', 'postgresql://', 1)

    app.config['SQLALCHEMY_DATABASE_URI'] = database_url
    app.config['SQLALCHEMY_TRACK_MODIFICATIONS'] = False
    app.config['JWT_SECRET_KEY'] = os.getenv('JWT_SECRET_KEY', 'dev-secret')

    app.config['STRIPE_SECRET_KEY'] = os.getenv('STRIPE_SECRET_KEY')
    app.config['STRIPE_WEBHOOK_SECRET'] = os.getenv('STRIPE_WEBHOOK_SECRET')
    app.config['STRIPE_PUBLISHABLE_KEY'] = os.getenv('STRIPE_PUBLISHABLE_KEY')
    app.config['PLATFORM_FEE_PERCENT'] = _env_float('PLATFORM_FEE_PERCENT', '12.0')

    # Escrow / dispute policy (hours)
    app.config['ESCROW_HOLD_HOURS'] = _env_float('ESCROW_HOLD_HOURS', '24')
    app.config['DISPUTE_WINDOW_HOURS'] = _env_float('DISPUTE_WINDOW_HOURS', '336')  # 14 days
    app.config['DISPUTE_PRO_RESPONSE_HOURS'] = _env_float('DISPUTE_PRO_RESPONSE_HOURS', '24')
    app.config['DISPUTE_DECISION_HOURS'] = _env_float('DISPUTE_DECISION_HOURS', '48')
    app.config['MODERATION_LOOKAHEAD_HOURS'] = _env_float('MODERATION_LOOKAHEAD_HOURS', '12')

    app.config['ADMIN_EMAILS'] = [
        e.strip().lower() for e in os.getenv('ADMIN_EMAILS', '').split(',') if e.strip()
    ]
    app.config['ANALYTICS_SALT'] = os.getenv('ANALYTICS_SALT', 'default_salt_change_me')

    if config_name == 'testing':
        app.config['TESTING'] = True
        app.config['SQLALCHEMY_DATABASE_URI'] = 'sqlite://'

    app.config.update(overrides)

    logging.basicConfig(level=os.getenv('LOG_LEVEL', 'INFO'))

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)
    CORS(app)

    # Collaborators shared by the escrow and dispute engines
    from homeservices.services.stripe_service import StripeGateway
    app.extensions['payment_gateway'] = StripeGateway(
        api_key=app.config['STRIPE_SECRET_KEY'],
        webhook_secret=app.config['STRIPE_WEBHOOK_SECRET'],
        platform_fee_percent=app.config['PLATFORM_FEE_PERCENT'],
    )
    app.extensions['clock'] = datetime.utcnow

    from homeservices.utils.errors import register_error_handlers
    register_error_handlers(app)

    from homeservices.routes import register_routes
    register_routes(app)

    from homeservices.commands import register_commands
    register_commands(app)

    # Health check
    @app.route('/health', methods=['GET'])
    def health():
        return jsonify({'status': 'ok'}), 200

    return app
