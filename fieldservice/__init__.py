"""Flask application factory."""
import os

from flask import Flask, request, jsonify
from flask_wtf.csrf import CSRFProtect, CSRFError
from werkzeug.exceptions import HTTPException

from fieldservice import database
from fieldservice.database import init_db


def create_app(config_object='config.Config'):
    """Create and configure the Flask application."""
    app = Flask(__name__)
    app.config.from_object(config_object)

    csrf = CSRFProtect(app)

    @app.errorhandler(CSRFError)
    def handle_csrf_error(e):
        app.logger.warning(f"CSRF Error: {e.description}")
        return jsonify({'status': 'error', 'message': 'Your session has expired. Reload and try again.'}), 400

    # Sentry error tracking in production
    if os.getenv('SENTRY_DSN') and (app.config.get('ENV') == 'production' or os.getenv('FLASK_ENV') == 'production'):
        import sentry_sdk
        from sentry_sdk.integrations.flask import FlaskIntegration

        sentry_sdk.init(
            dsn=os.getenv('SENTRY_DSN'),
            integrations=[FlaskIntegration()],
            traces_sample_rate=0.1,
            environment=os.getenv('FLASK_ENV', 'production'),
            release=os.getenv('GIT_COMMIT', 'unknown')
        )

    from fieldservice.services.email_service import init_mail
    init_mail(app)

    from fieldservice.services.cache_service import init_cache
    init_cache(app)

    from fieldservice.blueprints.metrics import setup_metrics_instrumentation
    setup_metrics_instrumentation(app)

    # Production: HTTPS behind a reverse proxy
    if app.config.get('ENV') == 'production' or app.config.get('FLASK_ENV') == 'production':
        from werkzeug.middleware.proxy_fix import ProxyFix
        app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1, x_port=1, x_prefix=0)

    init_db(app)

    # Shared services
    from fieldservice.builder import BuilderRegistry
    from fieldservice.messaging import ChangeFeed, ConversationList
    from fieldservice.services.delivery_service import DeliveryService, business_info_from_config
    from fieldservice.services.sms_client import SmsClient

    change_feed = ChangeFeed()
    change_feed.bind(database.session_factory)

    app.extensions['builder_registry'] = BuilderRegistry()
    app.extensions['delivery_service'] = DeliveryService(
        sms_client=SmsClient.from_config(app.config),
        business_info=business_info_from_config(app.config),
    )
    app.extensions['change_feed'] = change_feed
    app.extensions['conversation_list'] = ConversationList(
        feed=change_feed,
        poll_interval=app.config.get('CONVERSATION_POLL_INTERVAL', 10),
    )

    # Error handlers
    from fieldservice.exceptions import FieldServiceError

    @app.errorhandler(FieldServiceError)
    def handle_field_service_error(error):
        """Handle custom application exceptions."""
        app.logger.warning(f"FieldServiceError [{error.status_code}]: {error.message}")
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(404)
    def not_found_error(error):
        return jsonify({'status': 'error', 'message': 'Not Found'}), 404

    @app.errorhandler(405)
    def method_not_allowed(error):
        return jsonify({'status': 'error', 'message': 'Method Not Allowed'}), 405

    @app.errorhandler(500)
    @app.errorhandler(Exception)
    def internal_error(error):
        if isinstance(error, HTTPException):
            return jsonify({'status': 'error', 'message': error.description}), error.code

        import traceback
        app.logger.error(f"Unhandled Exception on {request.method} {request.path}: {error}")
        app.logger.error(f"Traceback: {traceback.format_exc()}")
        return jsonify({'status': 'error', 'message': 'Internal Server Error'}), 500

    # Register blueprints
    from fieldservice.blueprints.main import main_bp
    from fieldservice.blueprints.builder import builder_bp
    from fieldservice.blueprints.documents import documents_bp
    from fieldservice.blueprints.conversations import conversations_bp
    from fieldservice.blueprints.portal import portal_bp
    from fieldservice.blueprints.metrics import metrics_bp
    from fieldservice.blueprints.webhooks import webhooks_bp

    app.register_blueprint(main_bp)
    app.register_blueprint(builder_bp)
    app.register_blueprint(documents_bp)
    app.register_blueprint(conversations_bp)
    app.register_blueprint(portal_bp)
    app.register_blueprint(metrics_bp)

    # Webhooks must be exempt from CSRF
    csrf.exempt(webhooks_bp)
    app.register_blueprint(webhooks_bp)

    from fieldservice.cli_commands import init_cli_commands
    init_cli_commands(app)

    app.logger.info(f"MAIL_SERVER={app.config.get('MAIL_SERVER')}")
    app.logger.info(f"SMS enabled={app.extensions['delivery_service'].sms_client.enabled}")

    return app
