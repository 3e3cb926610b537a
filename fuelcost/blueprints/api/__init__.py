from flask import Blueprint

api_bp = Blueprint('api', __name__, url_prefix='/api')

# Register sub-blueprints
from .diesel_routes import diesel_api_bp  # noqa: E402

api_bp.register_blueprint(diesel_api_bp)
