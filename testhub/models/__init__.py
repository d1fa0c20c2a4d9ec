"""
TestHub UAT Review Engine
Database models package.

All model modules import the shared ``db`` instance from here so that
Flask-SQLAlchemy and Alembic see a single metadata registry.
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
