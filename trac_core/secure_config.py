#!/usr/bin/env python3
"""
Secure Configuration Management for Trac Ticket Sync
Supports environment variables, a config.json file, and development defaults
"""

import os
import json
import logging
from typing import Dict, Optional, Any
from pathlib import Path
from dataclasses import dataclass, asdict, fields

from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = "WP-Aggregator-AI-Bot/1.0.0 (Educational/Research Purpose)"

_TRUE_VALUES = {'1', 'true', 'yes', 'on'}


@dataclass
class DatabaseConfig:
    """Database configuration with validation"""
    host: str
    port: int
    database: str
    user: str
    password: str
    schema: str = 'public'
    pool_size: int = 10
    timeout: int = 30

    def __post_init__(self):
        """Validate configuration after initialization"""
        if not self.host:
            raise ValueError("Database host is required")
        if not self.user:
            raise ValueError("Database user is required")
        if not self.database:
            raise ValueError("Database name is required")
        if not (1 <= self.port <= 65535):
            raise ValueError("Database port must be between 1 and 65535")
        if self.pool_size < 1:
            raise ValueError("Database pool size must be at least 1")

    def to_dict(self, include_password: bool = True) -> Dict[str, Any]:
        """Convert to dictionary for psycopg.connect"""
        config = {
            'host': self.host,
            'port': self.port,
            'dbname': self.database,
            'user': self.user,
        }
        if include_password:
            config['password'] = self.password
        if self.schema:
            config['options'] = f'-c search_path={self.schema}'
        return config

    def get_connection_string(self, hide_password: bool = True) -> str:
        """Get connection string representation"""
        password = "***" if hide_password else self.password
        conninfo = (
            f"postgresql://{self.user}:{password}@{self.host}:{self.port}/{self.database}"
        )
        if self.schema:
            conninfo += f"?options=-c%20search_path%3D{self.schema}"
        return conninfo


@dataclass
class ScraperConfig:
    """Where and how politely the tracker is scraped"""
    base_url: str = 'https://core.trac.wordpress.org'
    report_id: int = 40
    request_delay: float = 1.0
    request_timeout: float = 30.0
    user_agent: str = DEFAULT_USER_AGENT

    def __post_init__(self):
        self.base_url = (self.base_url or '').rstrip('/')
        if not self.base_url.startswith(('http://', 'https://')):
            raise ValueError("Tracker base URL must start with http:// or https://")
        if self.report_id < 1:
            raise ValueError("Report id must be positive")
        if self.request_delay < 0:
            raise ValueError("Request delay cannot be negative")
        if self.request_timeout <= 0:
            raise ValueError("Request timeout must be positive")
        if not self.user_agent:
            raise ValueError("User agent is required")


@dataclass
class SchedulerConfig:
    """Cadences of the background sync"""
    enabled: bool = False
    incremental_interval_hours: int = 2
    incremental_count: int = 20
    bulk_hour: int = 2
    bulk_max_tickets: int = 1000
    bulk_page_size: int = 100

    def __post_init__(self):
        if not (1 <= self.incremental_interval_hours <= 24):
            raise ValueError("Incremental interval must be between 1 and 24 hours")
        if not (0 <= self.bulk_hour <= 23):
            raise ValueError("Bulk hour must be between 0 and 23")
        if self.incremental_count < 1:
            raise ValueError("Incremental count must be positive")
        if self.bulk_max_tickets < 1 or self.bulk_page_size < 1:
            raise ValueError("Bulk sizes must be positive")


@dataclass
class AppConfig:
    """Everything the sync pipeline needs, in one place"""
    database: DatabaseConfig
    scraper: ScraperConfig
    scheduler: SchedulerConfig


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in _TRUE_VALUES


def _known_fields(cls, data: Dict[str, Any]) -> Dict[str, Any]:
    """Drop keys a dataclass does not declare (template files carry extras)"""
    names = {f.name for f in fields(cls)}
    return {k: v for k, v in data.items() if k in names}


class SecureConfigManager:
    """Secure configuration manager with environment variable support"""

    def __init__(self, config_file: Optional[Path] = None):
        self._config: Optional[AppConfig] = None
        default_file = os.getenv('TRAC_SYNC_CONFIG') or Path.cwd() / 'config.json'
        self._config_file = Path(config_file or default_file)

    def get_config(self) -> AppConfig:
        if self._config is None:
            self._config = self._load_config()
        return self._config

    def get_database_config(self) -> DatabaseConfig:
        """
        Get database configuration from multiple sources in priority order:
        1. Environment variables
        2. config.json file
        3. Default hardcoded values (development only)
        """
        return self.get_config().database

    def _load_config(self) -> AppConfig:
        try:
            file_data = self._read_file()
            return AppConfig(
                database=self._load_database_config(file_data),
                scraper=self._load_scraper_config(file_data),
                scheduler=self._load_scheduler_config(file_data),
            )
        except (ValueError, TypeError) as e:
            raise ConfigurationError(f"Invalid configuration: {e}") from e

    def _read_file(self) -> Dict[str, Any]:
        if not self._config_file.exists():
            return {}
        try:
            with open(self._config_file, 'r') as f:
                data = json.load(f)
            logger.info(f"Loading config from {self._config_file}")
            return data
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Error loading config file: {e}")
            return {}

    def _has_env_config(self) -> bool:
        """Check if required environment variables are set"""
        required_vars = ['DB_HOST', 'DB_USER', 'DB_PASSWORD', 'DB_NAME']
        return all(os.getenv(var) for var in required_vars)

    def _load_database_config(self, file_data: Dict[str, Any]) -> DatabaseConfig:
        # Priority 1: Environment variables
        if self._has_env_config():
            logger.info("Loading database config from environment variables")
            return DatabaseConfig(
                host=os.getenv('DB_HOST', 'localhost'),
                port=int(os.getenv('DB_PORT', '5432')),
                database=os.getenv('DB_NAME', 'trac'),
                user=os.getenv('DB_USER', 'trac'),
                password=os.getenv('DB_PASSWORD', ''),
                schema=os.getenv('DB_SCHEMA', 'public'),
                pool_size=int(os.getenv('DB_POOL_SIZE', '10')),
                timeout=int(os.getenv('DB_TIMEOUT', '30'))
            )

        # Priority 2: Configuration file
        if file_data.get('database'):
            return DatabaseConfig(**_known_fields(DatabaseConfig, file_data['database']))

        # Priority 3: Default configuration (development/fallback)
        logger.warning("Using default database configuration - not recommended for production")
        return DatabaseConfig(
            host='localhost',
            port=5432,
            database='trac',
            user='trac',
            password='trac',
            schema='public',
            pool_size=10,
            timeout=30
        )

    def _load_scraper_config(self, file_data: Dict[str, Any]) -> ScraperConfig:
        values = _known_fields(ScraperConfig, file_data.get('scraper', {}))
        env_map = {
            'TRAC_BASE_URL': ('base_url', str),
            'TRAC_REPORT_ID': ('report_id', int),
            'TRAC_REQUEST_DELAY': ('request_delay', float),
            'TRAC_REQUEST_TIMEOUT': ('request_timeout', float),
            'TRAC_USER_AGENT': ('user_agent', str),
        }
        for env_name, (key, cast) in env_map.items():
            if os.getenv(env_name):
                values[key] = cast(os.getenv(env_name))
        return ScraperConfig(**values)

    def _load_scheduler_config(self, file_data: Dict[str, Any]) -> SchedulerConfig:
        values = _known_fields(SchedulerConfig, file_data.get('scheduler', {}))
        env_map = {
            'SYNC_INCREMENTAL_INTERVAL_HOURS': 'incremental_interval_hours',
            'SYNC_INCREMENTAL_COUNT': 'incremental_count',
            'SYNC_BULK_HOUR': 'bulk_hour',
            'SYNC_BULK_MAX_TICKETS': 'bulk_max_tickets',
            'SYNC_BULK_PAGE_SIZE': 'bulk_page_size',
        }
        for env_name, key in env_map.items():
            if os.getenv(env_name):
                values[key] = int(os.getenv(env_name))
        values['enabled'] = _env_bool('ENABLE_SCRAPING', bool(values.get('enabled', False)))
        return SchedulerConfig(**values)

    def save_config_template(self) -> str:
        """Create a configuration file template"""
        template = {
            "database": {
                "host": "localhost",
                "port": 5432,
                "database": "trac",
                "user": "trac",
                "password": "YOUR_PASSWORD_HERE",
                "schema": "public",
                "pool_size": 10,
                "timeout": 30
            },
            "scraper": asdict(ScraperConfig()),
            "scheduler": asdict(SchedulerConfig()),
        }

        template_file = self._config_file.parent / 'config.template.json'
        with open(template_file, 'w') as f:
            json.dump(template, f, indent=2)

        return str(template_file)

    def get_config_info(self) -> Dict[str, Any]:
        """Get configuration information (without sensitive data)"""
        config = self.get_config()

        return {
            'database': {
                'host': config.database.host,
                'port': config.database.port,
                'database': config.database.database,
                'user': config.database.user,
                'connection_string': config.database.get_connection_string(hide_password=True),
                'pool_size': config.database.pool_size,
                'timeout': config.database.timeout
            },
            'scraper': asdict(config.scraper),
            'scheduler': asdict(config.scheduler),
            'config_sources': {
                'env_variables': self._has_env_config(),
                'config_file': self._config_file.exists(),
                'default_fallback': not self._has_env_config() and not self._config_file.exists()
            }
        }


# Global configuration manager instance
config_manager = SecureConfigManager()


def get_app_config() -> AppConfig:
    return config_manager.get_config()


def get_database_config() -> DatabaseConfig:
    """
    Get database configuration as structured object

    Returns:
        DatabaseConfig object with validation and methods
    """
    return config_manager.get_database_config()
