"""
WSGI / Flask-Migrate entry point.

Usage:
    flask --app wsgi db upgrade
    flask --app wsgi seed-roles
    gunicorn wsgi:app
"""

from grantdesk import create_app

app = create_app()
