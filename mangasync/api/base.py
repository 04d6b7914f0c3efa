"""
Base API client class for mangasync HTTP collaborators.
"""

from typing import Any, Optional
from dataclasses import dataclass
import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from mangasync import __version__
from mangasync.utils.logging import get_logger

logger = get_logger(__name__)

RETRY_STATUSES = (429, 502, 503, 504)


@dataclass
class APIError(Exception):
    """Custom exception for API errors."""
    message: str
    status_code: Optional[int] = None
    response_data: Optional[Any] = None
    timeout: bool = False

    def __str__(self) -> str:
        if self.status_code:
            return f"API Error {self.status_code}: {self.message}"
        return f"API Error: {self.message}"

    @property
    def is_auth_error(self) -> bool:
        return self.status_code in (401, 403)

    @property
    def is_not_found(self) -> bool:
        return self.status_code == 404


class BaseClient:
    """
    Base class for API clients with common functionality.

    The transport retries rate limits and gateway errors on idempotent
    verbs only; callers see a single APIError once retries are spent.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 30,
        max_retries: int = 2,
        retry_backoff_factor: float = 0.5,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

        self.session = requests.Session()
        self.session.headers.update({
            "Accept": "application/json",
            "User-Agent": f"mangasync/{__version__}",
        })

        # POST is left out of allowed_methods: upserts and RPCs are not retried
        retry_strategy = Retry(
            total=max_retries,
            backoff_factor=retry_backoff_factor,
            status_forcelist=RETRY_STATUSES,
            allowed_methods=Retry.DEFAULT_ALLOWED_METHODS,
            respect_retry_after_header=True,
            raise_on_status=False,
        )

        adapter = HTTPAdapter(max_retries=retry_strategy)
        self.session.mount("http://", adapter)
        self.session.mount("https://", adapter)

    def _build_url(self, endpoint: str) -> str:
        """Build full URL from endpoint."""
        return f"{self.base_url}{endpoint}"

    def _request(
        self,
        method: str,
        endpoint: str,
        **kwargs
    ) -> Any:
        """
        Make an HTTP request.

        Args:
            method: HTTP method (GET, POST, etc.)
            endpoint: API endpoint
            **kwargs: Additional arguments for requests

        Returns:
            Decoded JSON body, or None for an empty body

        Raises:
            APIError: If the request fails
        """
        url = self._build_url(endpoint)

        kwargs.setdefault("timeout", self.timeout)

        try:
            response = self.session.request(method, url, **kwargs)
        except requests.exceptions.Timeout as e:
            raise APIError(f"Request timeout: {str(e)}", timeout=True)
        except requests.exceptions.ConnectionError as e:
            raise APIError(f"Connection error: {str(e)}")
        except requests.exceptions.RequestException as e:
            raise APIError(f"Request failed: {str(e)}")

        if response.status_code >= 400:
            try:
                error_data = response.json()
            except ValueError:
                error_data = {"message": response.text}

            message = response.text
            if isinstance(error_data, dict):
                message = error_data.get("message") or error_data.get("error") or response.text

            logger.debug("HTTP error response", method=method, url=url, status_code=response.status_code)

            raise APIError(
                message=message,
                status_code=response.status_code,
                response_data=error_data,
            )

        if not response.content:
            return None

        try:
            return response.json()
        except ValueError:
            return response.text

    def get(self, endpoint: str, **kwargs) -> Any:
        """Make a GET request."""
        return self._request("GET", endpoint, **kwargs)

    def close(self) -> None:
        """Close the session."""
        self.session.close()
