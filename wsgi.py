"""
WSGI entry point (gunicorn) and Flask-Migrate target.

Usage:
    gunicorn wsgi:app
    FLASK_APP=wsgi.py flask db upgrade
"""

from app import create_app

app = create_app()
