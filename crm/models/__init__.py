"""
CRM Field Automation Backend
SQLAlchemy extension instance shared by every model module.

Usage:
    from crm.models import db
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
