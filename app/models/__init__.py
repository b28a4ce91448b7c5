"""
Action Plan Tracker: SQLAlchemy extension instance.

All models import the shared ``db`` from here:

    from app.models import db
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
