"""Main blueprint with health check endpoints."""
from flask import Blueprint, jsonify
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from fieldservice.database import get_session

main_bp = Blueprint('main', __name__)


@main_bp.route('/health')
def health():
    """
    Health check endpoint that validates database connection.

    Returns:
        200: Healthy (DB connected)
        500: Unhealthy (DB error)
    """
    try:
        row = get_session().execute(text("SELECT 1 as health_check")).fetchone()
    except SQLAlchemyError as e:
        return jsonify({
            'status': 'unhealthy',
            'database': 'disconnected',
            'error': str(e),
        }), 500

    if row and row[0] == 1:
        return jsonify({'status': 'healthy', 'database': 'connected'}), 200
    return jsonify({'status': 'unhealthy', 'database': 'error'}), 500


@main_bp.route('/health/cache')
def health_cache():
    """
    Cache health check.

    Never returns 500: without Redis the app keeps working uncached, so the
    status is reported as "degraded".
    """
    from fieldservice.services.cache_service import get_cache
    cache = get_cache()

    if not cache.is_available():
        return jsonify({'status': 'degraded', 'cache': 'unavailable'}), 200

    cache.set('system', 'health', 'check', {'test': 'ok'}, ttl=10)
    result = cache.get('system', 'health', 'check')
    cache.delete('system', 'health', 'check')
    if result and result.get('test') == 'ok':
        return jsonify({'status': 'ok', 'cache': 'connected'}), 200
    return jsonify({'status': 'degraded', 'cache': 'read_write_failed'}), 200
