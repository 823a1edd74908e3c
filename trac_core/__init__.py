"""
Core Trac ticket sync components.

This package contains the storage-side building blocks of the pipeline:
- Configuration and database management
- The canonical ticket record and its normalizer
- The ticket store (persistence gateway)
"""

from .secure_config import get_app_config, get_database_config, AppConfig
from .exceptions import (
    TracSyncError,
    ConfigurationError,
    FetchError,
    NetworkError,
    HttpStatusError,
    PersistenceError,
)
from .ticket_models import Ticket, RawTicket
from .ticket_normalizer import normalize_ticket
from .ticket_store import TicketStore

__all__ = [
    'get_app_config',
    'get_database_config',
    'AppConfig',
    'TracSyncError',
    'ConfigurationError',
    'FetchError',
    'NetworkError',
    'HttpStatusError',
    'PersistenceError',
    'Ticket',
    'RawTicket',
    'normalize_ticket',
    'TicketStore',
]
