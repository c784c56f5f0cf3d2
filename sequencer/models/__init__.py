"""
Pro-Move Sequencer
Model package: shared Flask-SQLAlchemy instance.

Every model module imports ``db`` from here; ``create_app`` imports the
model modules so ``db.create_all()`` and Alembic see all tables.
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
