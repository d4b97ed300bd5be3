"""
Result providers for fixture settlement.

A provider answers one question: has this fixture finished, and if so what
was the final score. The settlement engine only depends on the
ResultProvider interface; ApiFootballProvider talks to API-Football v3.
"""

import logging
import time
from collections import namedtuple
from functools import wraps

import requests

logger = logging.getLogger(__name__)

ProviderResult = namedtuple("ProviderResult", ["finished", "home_score", "away_score"])

NOT_FINISHED = ProviderResult(False, None, None)

# API-Football short status codes for a completed match
FINISHED_STATUSES = {"FT", "AET", "PEN"}


class ResultProviderError(Exception):
    """Transient failure while looking up a result (network, timeout, bad payload)"""


class ResultProvider:
    """Interface for looking up fixture results by external identifier"""

    def lookup_result(self, external_id):
        """
        Returns:
            ProviderResult(finished, home_score, away_score)

        Raises:
            ResultProviderError: the lookup failed and may succeed later
        """
        raise NotImplementedError


def rate_limit_decorator(max_retries=3, base_delay=1.0, backoff_factor=2.0):
    """
    Decorator to handle API rate limiting with exponential backoff
    """

    def decorator(func):
        @wraps(func)
        def wrapper(self, *args, **kwargs):
            for attempt in range(max_retries):
                try:
                    response = func(self, *args, **kwargs)

                    if response.status_code == 429:  # Too Many Requests
                        retry_after = float(
                            response.headers.get(
                                "Retry-After", base_delay * (backoff_factor**attempt)
                            )
                        )
                        logger.warning(
                            f"Rate limited. Waiting {retry_after}s before retry {attempt + 1}/{max_retries}"
                        )
                        time.sleep(retry_after)
                        continue
                    elif response.status_code >= 500:  # Server errors
                        delay = base_delay * (backoff_factor**attempt)
                        logger.warning(
                            f"Server error {response.status_code}. Waiting {delay}s before retry {attempt + 1}/{max_retries}"
                        )
                        time.sleep(delay)
                        continue

                    return response

                except requests.exceptions.RequestException as e:
                    delay = base_delay * (backoff_factor**attempt)
                    logger.warning(
                        f"Request failed: {e}. Waiting {delay}s before retry {attempt + 1}/{max_retries}"
                    )
                    if attempt < max_retries - 1:
                        time.sleep(delay)
                    else:
                        raise ResultProviderError(str(e)) from e

            raise ResultProviderError(f"Max retries ({max_retries}) exceeded")

        return wrapper

    return decorator


class ApiFootballProvider(ResultProvider):
    """
    Looks up fixture results from API-Football with client-side rate limiting
    """

    def __init__(self, api_key, base_url=None, timeout=30, max_requests_per_minute=30):
        self.api_base_url = (base_url or "https://v3.football.api-sports.io").rstrip("/")
        self.timeout = timeout
        self.session = requests.Session()
        self.session.headers.update(
            {"x-apisports-key": api_key or "", "User-Agent": "Prophecy-League/1.0"}
        )

        # Rate limiting configuration
        self.last_request_time = 0
        self.min_request_interval = 0.5  # Minimum 500ms between requests
        self.max_requests_per_minute = max_requests_per_minute
        self.request_timestamps = []

    @classmethod
    def from_app_config(cls, app_config):
        return cls(
            api_key=app_config.get("API_FOOTBALL_KEY"),
            base_url=app_config.get("API_FOOTBALL_BASE_URL"),
            timeout=app_config.get("API_FOOTBALL_TIMEOUT", 30),
        )

    def _enforce_rate_limit(self):
        """Enforce rate limiting before making requests"""
        current_time = time.time()

        # Remove timestamps older than 1 minute
        self.request_timestamps = [
            ts for ts in self.request_timestamps if current_time - ts < 60
        ]

        if len(self.request_timestamps) >= self.max_requests_per_minute:
            sleep_time = 60 - (current_time - self.request_timestamps[0])
            if sleep_time > 0:
                logger.info(f"Rate limit reached. Sleeping for {sleep_time:.1f}s")
                time.sleep(sleep_time)
                self.request_timestamps = []

        time_since_last = current_time - self.last_request_time
        if time_since_last < self.min_request_interval:
            time.sleep(self.min_request_interval - time_since_last)

        self.last_request_time = time.time()
        self.request_timestamps.append(self.last_request_time)

    @rate_limit_decorator(max_retries=3, base_delay=2.0)
    def _make_api_request(self, path, params=None):
        """Make API request with rate limiting and retry logic"""
        self._enforce_rate_limit()
        return self.session.get(
            f"{self.api_base_url}{path}", params=params, timeout=self.timeout
        )

    def lookup_result(self, external_id):
        response = self._make_api_request("/fixtures", params={"id": external_id})

        if response.status_code != 200:
            raise ResultProviderError(
                f"HTTP {response.status_code} looking up fixture {external_id}"
            )

        try:
            data = response.json()
        except ValueError as e:
            raise ResultProviderError(f"Invalid JSON for fixture {external_id}") from e

        # API-Football reports auth/quota problems in an "errors" field with a 200
        errors = data.get("errors")
        if errors:
            raise ResultProviderError(f"API error for fixture {external_id}: {errors}")

        matches = data.get("response") or []
        if not matches:
            raise ResultProviderError(f"Fixture {external_id} not found at provider")

        return self.parse_fixture(matches[0])

    @staticmethod
    def parse_fixture(payload):
        """Turn one API-Football fixture object into a ProviderResult"""
        status = (payload.get("fixture") or {}).get("status") or {}
        if status.get("short") not in FINISHED_STATUSES:
            return NOT_FINISHED

        # "goals" excludes penalty shoot-outs
        goals = payload.get("goals") or {}
        home, away = goals.get("home"), goals.get("away")
        if not isinstance(home, int) or not isinstance(away, int):
            raise ResultProviderError(f"Finished fixture without a final score: {status}")

        return ProviderResult(True, home, away)
