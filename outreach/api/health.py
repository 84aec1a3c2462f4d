import logging
from datetime import datetime

import redis
from flask import Blueprint, jsonify
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from outreach.extensions import db, get_redis

logger = logging.getLogger(__name__)
health_bp = Blueprint('health', __name__)

SERVICE_NAME = 'Outreach Backend'


def _check_database():
    try:
        db.session.execute(text('SELECT 1'))
        return 'healthy'
    except SQLAlchemyError as e:
        logger.error(f"Database health check failed: {e}")
        return f'unhealthy: {e}'


def _check_redis():
    client = get_redis()
    if client is None:
        return 'disabled'
    try:
        client.ping()
        return 'healthy'
    except redis.RedisError as e:
        return f'unhealthy: {e}'


@health_bp.route('', methods=['GET'])
def health_check():
    """Dependency health summary"""
    checks = {
        'database': _check_database(),
        'redis': _check_redis()
    }

    if checks['database'] != 'healthy':
        status, status_code = 'unhealthy', 503
    elif checks['redis'].startswith('unhealthy'):
        # Redis only backs rate limiting
        status, status_code = 'degraded', 200
    else:
        status, status_code = 'healthy', 200

    return jsonify({
        'status': status,
        'service': SERVICE_NAME,
        'timestamp': datetime.utcnow().isoformat(),
        'checks': checks
    }), status_code


@health_bp.route('/ready', methods=['GET'])
def readiness_check():
    """Kubernetes/Docker readiness check"""
    database = _check_database()
    if database != 'healthy':
        return jsonify({
            'status': 'not_ready',
            'error': database,
            'timestamp': datetime.utcnow().isoformat()
        }), 503

    return jsonify({'status': 'ready', 'timestamp': datetime.utcnow().isoformat()}), 200


@health_bp.route('/live', methods=['GET'])
def liveness_check():
    """Kubernetes/Docker liveness check"""
    return jsonify({
        'status': 'alive',
        'service': SERVICE_NAME,
        'timestamp': datetime.utcnow().isoformat()
    }), 200
