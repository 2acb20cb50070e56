import logging

import click
from flask import Flask, request, g, jsonify
from flask.cli import AppGroup
from flask_migrate import Migrate
from sqlalchemy import inspect

from config import Config
from models import db
from models.user import User
from routes import health_bp, auth_bp, property_bp, booking_bp, audit_bp
from routes.bookings import booking_service
from security.csrf import csrf_protect
from services.errors import BookingError, StorageUnavailable
from utils.audit import log_event
from utils.auth_context import load_current_user
from utils.seed import grant_role, seed_roles


def create_app(config_object=None):
    app = Flask(__name__)
    app.config.from_object(config_object or Config)

    logging.basicConfig(
        level=app.config.get("LOG_LEVEL", "INFO"),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    app.logger.setLevel(app.config.get("LOG_LEVEL", "INFO"))

    # Register routes
    app.register_blueprint(health_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(property_bp)
    app.register_blueprint(booking_bp)
    app.register_blueprint(audit_bp)

    # Database init
    db.init_app(app)

    # Migrations
    Migrate(app, db)

    # Seed default roles once the schema exists (idempotent)
    with app.app_context():
        if inspect(db.engine).has_table("roles"):
            seed_roles()

    @app.before_request
    def _load_user():
        load_current_user()

    # runs after _load_user so it can tell cookie sessions apart
    app.before_request(csrf_protect)

    @app.errorhandler(BookingError)
    def _booking_error(err):
        if not isinstance(err, StorageUnavailable):
            user = getattr(g, "user", None)
            view_args = request.view_args or {}
            log_event(
                "BOOKING_REQUEST_REFUSED",
                user_id=user.id if user else None,
                entity="booking",
                entity_id=view_args.get("booking_id"),
                metadata={"code": err.code, "path": request.path},
            )
        return jsonify(err.to_dict()), err.status_code

    @app.after_request
    def add_security_headers(resp):
        resp.headers["X-Content-Type-Options"] = "nosniff"
        resp.headers["X-Frame-Options"] = "DENY"
        resp.headers["Referrer-Policy"] = "no-referrer"
        resp.headers["Content-Security-Policy"] = "default-src 'none'; frame-ancestors 'none';"
        return resp

    register_cli(app)

    return app

#-------------------------

bookings_cli = AppGroup("bookings", help="Booking maintenance commands.")


@bookings_cli.command("advance")
def advance_bookings():
    """Activate started stays and complete finished ones."""
    counts = booking_service().advance_statuses()
    click.echo(f"activated={counts['activated']} completed={counts['completed']}")


def register_cli(app):
    app.cli.add_command(bookings_cli)

    @app.cli.command("make-admin")
    @click.argument("email")
    def make_admin(email):
        """Promote a user to ADMIN by email (bootstrap)."""
        user = User.query.filter_by(email=email.strip().lower()).first()
        if not user:
            click.echo("User not found")
            return

        if not grant_role(user, "ADMIN"):
            click.echo(f"{user.email} is already an ADMIN")
            return
        db.session.commit()

        click.echo(f"{user.email} promoted to ADMIN")

#-------------------------


if __name__ == "__main__":
    app = create_app()
    # Run locally
    app.run(host="127.0.0.1", port=5002)
