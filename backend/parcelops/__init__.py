from flask import Flask
from werkzeug.exceptions import HTTPException
from flask_jwt_extended import JWTManager
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool
from sqlalchemy.orm import sessionmaker, scoped_session
from dotenv import load_dotenv
from typing import Optional, Dict, Any
import os

load_dotenv()

db_engine = None
SessionLocal = None
jwt = JWTManager()


def _error_payload(status: int, title: str, detail: str):
    return {'error': {'status': status, 'title': title, 'detail': detail}}, status


def create_app(config: Optional[Dict[str, Any]] = None):
    global db_engine, SessionLocal
    app = Flask(__name__)

    app.config['JWT_SECRET_KEY'] = os.getenv('JWT_SECRET_KEY', 'dev-secret')
    app.config['DATABASE_URL'] = os.getenv('DATABASE_URL', 'sqlite:///dev.db')
    app.config['SESSION_LOOKUP_TIMEOUT'] = float(os.getenv('SESSION_LOOKUP_TIMEOUT', '10'))
    app.config['SESSION_FALLBACK_ROLE'] = os.getenv('SESSION_FALLBACK_ROLE', 'customer')
    app.config['LOG_LEVEL'] = os.getenv('LOG_LEVEL', 'INFO')

    if config:
        # tests and callers may override any default
        app.config.update(config)

    from .constants.permissions import ALL_ROLES
    if app.config['SESSION_FALLBACK_ROLE'] not in ALL_ROLES:
        raise ValueError(f"SESSION_FALLBACK_ROLE must be one of {ALL_ROLES}")
    app.logger.setLevel(str(app.config['LOG_LEVEL']).upper())

    db_url = app.config['DATABASE_URL']
    if db_url.endswith(':memory:'):
        # one shared in-memory SQLite database across sessions and threads
        db_engine = create_engine(
            db_url,
            echo=False,
            future=True,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    else:
        db_engine = create_engine(db_url, echo=False, future=True)
    SessionLocal = scoped_session(sessionmaker(bind=db_engine, expire_on_commit=False, autoflush=False))

    jwt.init_app(app)

    @jwt.unauthorized_loader
    def _missing_token(reason):
        return _error_payload(401, 'Unauthorized', reason)

    @jwt.invalid_token_loader
    def _invalid_token(reason):
        return _error_payload(401, 'Unauthorized', reason)

    @jwt.expired_token_loader
    def _expired_token(header, payload):
        return _error_payload(401, 'Unauthorized', 'Token has expired')

    from .routes.iam import iam_bp
    from .routes.customers import customers_bp
    from .routes.orders import orders_bp
    from .routes.accounting import acc_bp
    from .routes.analytics import analytics_bp
    app.register_blueprint(iam_bp, url_prefix='/iam')
    app.register_blueprint(customers_bp, url_prefix='/customers')
    app.register_blueprint(orders_bp, url_prefix='/orders')
    app.register_blueprint(acc_bp, url_prefix='/accounting')
    app.register_blueprint(analytics_bp, url_prefix='/analytics')

    @app.route('/healthz')
    def health():
        return {'status': 'ok'}

    @app.teardown_appcontext
    def _remove_session(exc):
        SessionLocal.remove()

    # Unified error handler producing standardized JSON shape
    @app.errorhandler(Exception)
    def handle_errors(e):  # type: ignore
        if isinstance(e, HTTPException):
            return _error_payload(e.code, e.name, e.description)
        app.logger.exception('Unhandled exception')
        return _error_payload(500, 'Internal Server Error', 'Unexpected error')

    return app


def get_db():
    return SessionLocal()
