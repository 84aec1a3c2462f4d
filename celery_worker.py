"""
Celery worker entry point bound to the Flask application

    celery -A celery_worker.celery worker --loglevel=info
    celery -A celery_worker.celery beat --loglevel=info
"""
from outreach import create_app
from outreach.celery_app import create_celery_app

app = create_app()
celery = create_celery_app(app)
