"""
Database package for the inbound guard
"""
from .connection import get_db_session, init_db
from .models import Base, Endpoint, GuardRule, StructuredEmail, new_id, utcnow

__all__ = [
    'Base',
    'GuardRule',
    'Endpoint',
    'StructuredEmail',
    'new_id',
    'utcnow',
    'init_db',
    'get_db_session',
]
