# vmcandles/admin_api/__init__.py
from flask import Blueprint

admin_api_bp = Blueprint('admin_api_bp', __name__, url_prefix='/api/admin/analytics')
users_bp = Blueprint('users_bp', __name__, url_prefix='/api/users')


# Import the route modules to register their routes with the blueprints
from . import dashboard_routes
from . import user_routes
