"""
UniSync ShowSet Tracker
Database models package.

Models:
    - ShowSetRecord, VersionHistoryRecord (showset.py)
    - ActivityLog (activity.py)
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
