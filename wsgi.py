"""
WSGI / Flask-Migrate entry point.

Usage:
    gunicorn wsgi:app
    flask --app wsgi db upgrade
    flask --app wsgi validate-timeline-templates [PATH]
"""

from docket import create_app

app = create_app()
