import logging

logger = logging.getLogger(__name__)


def register_blueprints(app):
    """Register all blueprints with the Flask app."""

    successful_registrations = []

    def register_blueprint(import_path, url_prefix=None, description=None):
        module_path, bp_name = import_path.rsplit('.', 1)
        module = __import__(module_path, fromlist=[bp_name])
        blueprint = getattr(module, bp_name)

        if url_prefix:
            app.register_blueprint(blueprint, url_prefix=url_prefix)
        else:
            app.register_blueprint(blueprint)
        successful_registrations.append(description or bp_name)

    # JSON API (/api/diesel/...)
    register_blueprint('fuelcost.blueprints.api.api_bp', None, 'Diesel API')

    if app.debug:
        logger.info("=== Blueprint Registration Summary ===")
        logger.info(f"Successful: {len(successful_registrations)}")
        for name in successful_registrations:
            logger.info(f"   - {name}")
