"""
GrantDesk — SQLAlchemy models package.

The single ``db`` instance is shared by every model module and bound to the
Flask app in ``grantdesk.create_app``.
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
