#!/usr/bin/env python3
"""
Trac Fetcher - polite HTTP access to the tracker
"""

import time
import logging
from typing import Callable, Optional

import requests

from trac_core.exceptions import HttpStatusError, NetworkError
from trac_core.secure_config import DEFAULT_USER_AGENT, ScraperConfig

logger = logging.getLogger(__name__)


class TracFetcher:
    """
    Rate-limited GET client for tracker pages.

    Waits ``request_delay`` seconds before every request, whatever happened
    to the previous one, and never retries. Callers own the retry policy.
    """

    def __init__(self, user_agent: str = DEFAULT_USER_AGENT, request_delay: float = 1.0,
                 timeout: float = 30.0, session: Optional[requests.Session] = None,
                 sleeper: Callable[[float], None] = time.sleep):
        self.request_delay = request_delay
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({
            'User-Agent': user_agent,
            'Accept': 'text/html,application/xhtml+xml',
        })
        self._sleep = sleeper

    @classmethod
    def from_config(cls, config: ScraperConfig, **kwargs) -> 'TracFetcher':
        return cls(
            user_agent=config.user_agent,
            request_delay=config.request_delay,
            timeout=config.request_timeout,
            **kwargs
        )

    def fetch(self, url: str) -> str:
        """Fetch a page and return its markup"""
        if self.request_delay > 0:
            self._sleep(self.request_delay)

        logger.info(f"Fetching: {url}")
        try:
            response = self.session.get(url, timeout=self.timeout)
        except requests.RequestException as e:
            logger.error(f"Failed to fetch {url}: {e}")
            raise NetworkError(url, e) from e

        if not 200 <= response.status_code < 300:
            logger.warning(f"HTTP {response.status_code} from {url}")
            raise HttpStatusError(response.status_code, response.reason or '', url=url)

        return response.text

    def close(self):
        self.session.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()
