"""
ORIS Backend
Shared SQLAlchemy extension instance.

Usage:
    from oris.models import db
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
