"""
WSGI entry point (gunicorn) and Flask CLI target.

Usage:
    gunicorn wsgi:app
    flask --app wsgi db migrate -m "description"
    flask --app wsgi sync-permissions
"""

from koassets import create_app

app = create_app()
