"""
Repairflow — Maintenance Issue Workflow
Database models package.

A single ``db`` instance is shared by every model module and initialised
by the application factory via ``db.init_app(app)``.
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
