"""
WSGI / Flask-Migrate entry point.

Usage:
    flask db upgrade
    flask reconcile-debt
    flask --app wsgi run
"""

from repairflow import create_app

app = create_app()
