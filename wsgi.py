"""
WSGI / Flask-Migrate entry point.

Usage:
    flask --app wsgi db upgrade
    flask --app wsgi create-admin --email admin@example.com
    gunicorn wsgi:app
"""

from crm import create_app

app = create_app()
