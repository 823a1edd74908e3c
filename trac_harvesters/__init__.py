"""
Tracker-side components of the Trac ticket sync.

This package contains:
- The rate-limited fetcher and the markup strategy for Trac pages
- The listing enumerator and the ticket page extractor
- The sync runner, its single-flight guard and the scheduler
"""

from .trac_fetcher import TracFetcher
from .trac_markup import TicketMarkup, TracMarkup
from .ticket_enumerator import TicketEnumerator
from .ticket_extractor import TicketExtractor
from .run_guard import RunGuard
from .sync_runner import IngestResult, SyncReport, TicketSyncRunner
from .sync_scheduler import SyncScheduler, start_scheduler_if_enabled

__all__ = [
    'TracFetcher',
    'TicketMarkup',
    'TracMarkup',
    'TicketEnumerator',
    'TicketExtractor',
    'RunGuard',
    'IngestResult',
    'SyncReport',
    'TicketSyncRunner',
    'SyncScheduler',
    'start_scheduler_if_enabled',
]
