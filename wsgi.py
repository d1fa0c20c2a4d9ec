"""
WSGI entry point and Flask-Migrate target.

Usage:
    flask --app wsgi db upgrade
    flask --app wsgi run
"""

from testhub import create_app

app = create_app()
