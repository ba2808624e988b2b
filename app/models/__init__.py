"""
Succession Case Platform — model package.

Exposes the shared Flask-SQLAlchemy handle. Domain modules import it as:

    from app.models import db
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
