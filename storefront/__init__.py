import os
import logging

import click
from flask import Flask, jsonify
from werkzeug.exceptions import HTTPException

from storefront.config import config_by_name
from storefront.errors import GatewayError, PaymentError
from storefront.extensions import db, migrate, login_manager, limiter

logger = logging.getLogger(__name__)


def create_app(config_name=None):
    """Application factory."""

    if config_name is None:
        config_name = os.environ.get("FLASK_ENV", "development")

    app = Flask(__name__)
    app.config.from_object(config_by_name[config_name])

    # --- Validate required env vars (skip in testing) ---
    if config_name != "testing":
        try:
            config_by_name[config_name].validate()
        except RuntimeError as e:
            app.logger.warning(f"Config validation: {e}")

    # --- Init extensions ---
    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)
    limiter.init_app(app)

    # --- Import models so Alembic can discover them ---
    with app.app_context():
        from storefront import models  # noqa: F401

    # --- Payment gateway client ---
    from storefront.services.monime_client import init_gateway
    init_gateway(app)

    # --- Register blueprints ---
    from storefront.blueprints.payments import payments_bp
    from storefront.blueprints.webhooks import webhooks_bp
    from storefront.blueprints.orders import orders_bp

    app.register_blueprint(payments_bp)
    app.register_blueprint(webhooks_bp)
    app.register_blueprint(orders_bp)

    # --- Error handlers ---
    register_error_handlers(app)

    # --- CLI commands ---
    register_cli(app)

    # --- Security headers ---
    @app.after_request
    def add_security_headers(response):
        """Add security headers to every response."""
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Cache-Control"] = "no-store"
        # Strict Transport Security (only in production)
        if not app.debug and not app.testing:
            response.headers["Strict-Transport-Security"] = (
                "max-age=31536000; includeSubDomains"
            )
        return response

    # --- Logging ---
    if not app.debug:
        logging.basicConfig(level=logging.INFO)

    return app


def register_error_handlers(app):
    """Render every error as JSON. Gateway internals stay in the logs."""
    from storefront.services.order_store import StaleOrderWrite

    @app.errorhandler(PaymentError)
    def payment_error(e):
        body = e.to_dict(include_details=app.debug)
        if isinstance(e, GatewayError):
            logger.error(
                f"Gateway error (upstream={e.upstream_status}, code={e.gateway_code}): "
                f"{e.message}"
            )
            body["message"] = "Payment provider error, please try again"
            body["retryable"] = e.is_retryable
        return jsonify(body), e.status_code

    @app.errorhandler(StaleOrderWrite)
    def stale_write(e):
        return jsonify({
            "success": False,
            "error": "CONFLICT",
            "message": "Order is being updated, please try again",
            "retryable": True,
        }), 409

    @app.errorhandler(HTTPException)
    def http_error(e):
        return jsonify({
            "success": False,
            "error": e.name.upper().replace(" ", "_"),
            "message": e.description,
        }), e.code

    @app.errorhandler(Exception)
    def unhandled_error(e):
        logger.error(f"Unhandled error: {e}", exc_info=True)
        return jsonify({
            "success": False,
            "error": "INTERNAL_ERROR",
            "message": "An unexpected error occurred",
        }), 500


def register_cli(app):
    """Register custom CLI commands with the Flask app."""

    @app.cli.command("seed-seller")
    @click.option("--id", "user_id", default="seller_demo", help="Identity provider user id")
    @click.option("--email", default="seller@tokflo.local", help="Seller email")
    @click.option("--name", default="Demo Seller", help="Display name")
    def seed_seller(user_id, email, name):
        """Create (or enable) a seller with an active store.

        Usage:
            flask seed-seller
            flask seed-seller --id abc123 --email me@example.com
        """
        from storefront.models.user import User

        user = db.session.get(User, user_id)
        if user:
            user.has_store = True
            click.echo(f"Seller already exists, store enabled: {user_id}")
        else:
            user = User(id=user_id, email=email, display_name=name, has_store=True)
            db.session.add(user)
            click.echo(f"Created seller: {user_id} ({email})")
        db.session.commit()

    @app.cli.command("sweep-pending-orders")
    @click.option("--older-than", default=10, show_default=True,
                  help="Only orders created more than this many minutes ago.")
    def sweep_pending_orders(older_than):
        """Reconcile non-terminal orders against the gateway.

        Catches orders whose webhook never arrived and whose buyer closed
        the status page before it resolved.
        """
        from datetime import datetime, timedelta, timezone

        from storefront.models.order import Order
        from storefront.services.order_store import StaleOrderWrite, orders_with_status
        from storefront.services.reconciliation import verify_payment_status

        cutoff = datetime.now(timezone.utc) - timedelta(minutes=older_than)
        orders = orders_with_status(
            [Order.PENDING_PAYMENT, Order.PROCESSING_PAYMENT], created_before=cutoff
        )
        click.echo(f"Checking {len(orders)} non-terminal orders")

        changed = failed = 0
        for order in orders:
            try:
                result, _ = verify_payment_status(order_id=order.id)
            except (PaymentError, StaleOrderWrite) as e:
                failed += 1
                click.echo(f"  {order.id}: {e}")
                continue
            if result.changed:
                changed += 1
                click.echo(f"  {order.id}: {result.previous_status} -> {result.status}")

        click.echo(f"Done. updated={changed} failed={failed}")

    @app.cli.command("reconcile-payouts")
    def reconcile_payouts():
        """List gateway payouts that have no local payout record."""
        from storefront.services.payout_service import find_orphaned_payouts

        orphans = find_orphaned_payouts()
        if not orphans:
            click.echo("No orphaned payouts.")
            return
        click.echo(f"{len(orphans)} orphaned payout(s):")
        for orphan in orphans:
            click.echo(
                f"  {orphan['gateway_payout_id']} seller={orphan['seller_id']} "
                f"amount={orphan['amount']} status={orphan['status']} "
                f"local_id={orphan['payout_id']}"
            )

    @app.cli.command("poll-order")
    @click.argument("order_id")
    @click.option("--session-id", default=None, help="Checkout session id")
    @click.option("--base-url", default=None, help="Defaults to APP_BASE_URL")
    @click.option("--interval", default=None, type=float, help="Seconds between polls")
    @click.option("--max-polls", default=None, type=int)
    def poll_order(order_id, session_id, base_url, interval, max_polls):
        """Poll an order's payment status until it is terminal."""
        from storefront.poller import PaymentStatusPoller

        poller = PaymentStatusPoller(
            base_url or app.config["APP_BASE_URL"],
            order_id=order_id,
            checkout_session_id=session_id,
            interval=interval or app.config["POLL_INTERVAL_SECONDS"],
            on_change=lambda status, body: click.echo(
                f"{status}: {body.get('statusMessage', '')}"
            ),
            max_polls=max_polls,
        )
        try:
            final = poller.run()
        except PaymentError as e:
            raise click.ClickException(f"Polling stopped: {e.message}")
        click.echo(f"Final status: {final}")
