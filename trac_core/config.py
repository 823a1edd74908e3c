#!/usr/bin/env python3
"""
Centralized Configuration for Trac Ticket Sync
Table names, default values, and logging setup
"""

import os
import logging
from typing import Dict, Optional
from pathlib import Path

from .secure_config import AppConfig, get_app_config


class TracSyncConfig:
    """Centralized constants for the sync pipeline"""

    TICKETS_TABLE = 'tickets'

    # Values stored when the tracker page leaves a field blank
    UNKNOWN_AUTHOR = 'Unknown'
    UNKNOWN_COMPONENT = 'Unknown'
    CHANGESET_STUB_MESSAGE = 'Referenced in ticket'

    # One-off CLI defaults
    DEFAULT_RECENT_COUNT = 50
    DEFAULT_BULK_COUNT = 100
    BULK_PAGE_SIZE = 100

    # Advisory lock key shared by every sync run (scheduler and CLI)
    SYNC_LOCK_KEY = 'trac_ticket_sync'

    # Logging Configuration
    LOGGING = {
        'level': 'INFO',
        'format': '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        'file_handler': False,
        'console_handler': True,
        'log_file': Path('logs') / 'trac_sync.log',
    }


config = TracSyncConfig()


def configure_logging(level: Optional[str] = None, log_file: Optional[Path] = None) -> None:
    """Configure root logging once, from LOGGING plus env overrides"""
    settings: Dict = dict(TracSyncConfig.LOGGING)
    level_name = (level or os.getenv('LOG_LEVEL') or settings['level']).upper()
    log_file = log_file or (Path(os.getenv('LOG_FILE')) if os.getenv('LOG_FILE') else None)

    handlers = []
    if settings['console_handler']:
        handlers.append(logging.StreamHandler())
    if log_file or settings['file_handler']:
        path = Path(log_file or settings['log_file'])
        path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(path))

    logging.basicConfig(
        level=getattr(logging, level_name, logging.INFO),
        format=settings['format'],
        handlers=handlers,
        force=True,
    )
    # requests/urllib3 are chatty at DEBUG
    logging.getLogger('urllib3').setLevel(logging.WARNING)


def validate_config(app_config: Optional[AppConfig] = None) -> bool:
    """Validate configuration settings"""
    app_config = app_config or get_app_config()
    errors = []

    db = app_config.database
    for key in ('host', 'database', 'user'):
        if not getattr(db, key):
            errors.append(f"Missing database configuration: {key}")
    if not db.password:
        errors.append("Missing database configuration: password")

    if errors:
        raise ValueError(f"Configuration validation failed: {', '.join(errors)}")

    return True
