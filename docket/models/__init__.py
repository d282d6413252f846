"""
Docket: Case Timeline Service
SQLAlchemy extension instance and model registry.

Every model module imports ``db`` from here; ``create_app`` imports the model
modules so that ``db.create_all()`` and Alembic autogenerate see every table.
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
