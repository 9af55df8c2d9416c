"""Flask API Blueprints package.

- health: Health check and version endpoints
- storage: Storage systems, usage history, runway and forecast endpoints
- pipelines: Pipeline listing and status update endpoints
"""

from apps.flask_api.blueprints.health import health_bp
from apps.flask_api.blueprints.pipelines import pipelines_bp
from apps.flask_api.blueprints.storage import storage_bp

__all__ = [
    "health_bp",
    "storage_bp",
    "pipelines_bp",
]
