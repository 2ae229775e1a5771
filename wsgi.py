"""
Flask-Migrate / Alembic entry point.

Usage:
    flask db upgrade
    flask sla-sweep     # one SLA monitor tick, outside the background timer
"""

from workpro import create_app

app = create_app()
