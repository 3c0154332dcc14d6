"""Base fetcher interface and shared HTTP client management.

Every spot-price source inherits from BaseFetcher and implements parse().
A shared httpx.AsyncClient is used across all fetchers (and the historical
providers) to avoid connection overhead.

.. code-block:: python

    @register_fetcher
    class MyFetcher(BaseFetcher):
        name = "myfetcher"
        endpoint = "https://api.example.com/btc-usd"
        DEFAULT_WEIGHT = 0.1

        def parse(self, data) -> float:
            return float(data["price"])
"""

import logging
import math
from abc import ABC, abstractmethod
from typing import Any, ClassVar

import httpx

logger = logging.getLogger(__name__)


class FetcherError(Exception):
    """Base exception for fetcher errors."""

    pass


class FetcherConfigError(FetcherError):
    """Raised when fetcher configuration is invalid (e.g., missing API key)."""

    pass


class SourceUnavailableError(FetcherError):
    """Raised when a source cannot be reached (network error, timeout)."""

    pass


class FetcherHTTPError(SourceUnavailableError):
    """Raised when HTTP request fails.

    :ivar status_code: HTTP status code from the failed request.
    """

    def __init__(self, status_code: int, message: str):
        """Initialize the HTTP error.

        :param status_code: HTTP status code.
        :param message: Error message from response.
        """
        self.status_code = status_code
        super().__init__(f"HTTP {status_code}: {message}")


class MalformedResponseError(FetcherError):
    """Raised when a response body does not have the expected shape."""

    pass


class HttpSource:
    """Shared HTTP plumbing for anything that talks to a JSON API.

    :cvar DEFAULT_TIMEOUT: Default HTTP request timeout in seconds.
    :ivar api_key: Optional API key for authenticated endpoints.
    :ivar timeout: Request timeout in seconds.
    """

    # Class-level shared HTTP client
    _shared_client: ClassVar[httpx.AsyncClient | None] = None

    # Default timeout for HTTP requests (seconds)
    DEFAULT_TIMEOUT = 10.0

    def __init__(self, api_key: str | None = None, timeout: float | None = None):
        """Initialize the source.

        :param api_key: Optional API key for authenticated endpoints.
        :param timeout: Request timeout in seconds (default: 10).
        """
        self.api_key = api_key
        self.timeout = timeout or self.DEFAULT_TIMEOUT

    @property
    def has_api_key(self) -> bool:
        """Check if this source has an API key configured."""
        return self.api_key is not None and len(self.api_key) > 0

    @classmethod
    def get_shared_client(cls) -> httpx.AsyncClient:
        """Get or create the shared HTTP client.

        The client lives on HttpSource so fetchers and historical providers
        reuse the same connection pool.

        :returns: Shared httpx.AsyncClient instance.
        """
        if HttpSource._shared_client is None or HttpSource._shared_client.is_closed:
            HttpSource._shared_client = httpx.AsyncClient(
                timeout=httpx.Timeout(30.0, connect=10.0),
                limits=httpx.Limits(max_connections=50, max_keepalive_connections=20),
                follow_redirects=True,
            )
        return HttpSource._shared_client

    @classmethod
    def set_shared_client(cls, client: httpx.AsyncClient | None) -> None:
        """Replace the shared HTTP client (used to inject a stub transport).

        :param client: Client to share, or None to reset.
        """
        HttpSource._shared_client = client

    @classmethod
    async def close_shared_client(cls) -> None:
        """Close the shared HTTP client."""
        client = HttpSource._shared_client
        if client is not None and not client.is_closed:
            await client.aclose()
        HttpSource._shared_client = None

    async def _get(
        self,
        url: str,
        *,
        params: dict | None = None,
        headers: dict | None = None,
    ) -> httpx.Response:
        """Make an HTTP GET request using the shared client.

        :param url: Request URL.
        :param params: Optional query parameters.
        :param headers: Optional request headers.
        :returns: httpx.Response object.
        :raises FetcherHTTPError: On non-2xx response.
        :raises SourceUnavailableError: On network/timeout errors.
        """
        client = self.get_shared_client()
        try:
            response = await client.get(
                url,
                params=params,
                headers=headers,
                timeout=self.timeout,
            )
            if not response.is_success:
                logger.debug(
                    "HTTP GET %s failed with status %s: %s",
                    url,
                    response.status_code,
                    response.text[:200],
                )
                raise FetcherHTTPError(response.status_code, response.text[:200])
            return response
        except httpx.TimeoutException as e:
            raise SourceUnavailableError(f"Request timeout: {e}") from e
        except httpx.RequestError as e:
            raise SourceUnavailableError(f"Request failed: {e}") from e

    async def _get_json(
        self,
        url: str,
        *,
        params: dict | None = None,
        headers: dict | None = None,
    ) -> Any:
        """GET a URL and decode its JSON body.

        :raises MalformedResponseError: If the body is not valid JSON.
        """
        response = await self._get(url, params=params, headers=headers)
        try:
            return response.json()
        except ValueError as e:
            raise MalformedResponseError(f"Invalid JSON body: {e}") from e


class BaseFetcher(HttpSource, ABC):
    """Abstract base class for BTC/USD spot-price fetchers.

    Subclasses must define:
        - name: Class variable identifying the source (e.g., "coinbase")
        - endpoint: Full URL queried each cycle
        - parse(): Mapping from the decoded JSON body to a single price

    :cvar name: Unique identifier for this fetcher.
    :cvar endpoint: URL of the ticker endpoint.
    :cvar DEFAULT_WEIGHT: Aggregation weight used when none is configured.
    :ivar weight: Aggregation weight in [0, 1].
    """

    name: ClassVar[str] = ""
    endpoint: ClassVar[str] = ""
    DEFAULT_WEIGHT: ClassVar[float] = 0.1

    def __init__(
        self,
        api_key: str | None = None,
        timeout: float | None = None,
        weight: float | None = None,
    ):
        """Initialize the fetcher.

        :param api_key: Optional API key for authenticated endpoints.
        :param timeout: Request timeout in seconds (default: 10).
        :param weight: Aggregation weight (default: DEFAULT_WEIGHT).
        :raises ValueError: If weight is outside [0, 1].
        """
        super().__init__(api_key=api_key, timeout=timeout)
        weight = self.DEFAULT_WEIGHT if weight is None else weight
        if not 0.0 <= weight <= 1.0:
            raise ValueError(f"[{self.name}] weight must be within [0, 1], got {weight}")
        self.weight = weight

    def request_url(self) -> str:
        """URL queried for the ticker."""
        return self.endpoint

    def request_params(self) -> dict | None:
        """Query parameters for the ticker request."""
        return None

    def request_headers(self) -> dict | None:
        """Headers for the ticker request."""
        return None

    @abstractmethod
    def parse(self, data: Any) -> float:
        """Extract the BTC/USD price from a decoded response body.

        :param data: Decoded JSON body.
        :returns: Price (may be unvalidated; fetch() validates it).
        :raises AttributeError, KeyError, IndexError, TypeError, ValueError: On
            unexpected shape.
        """
        pass

    async def fetch(self) -> float:
        """Fetch and validate the current BTC/USD price.

        :returns: Finite, positive price.
        :raises SourceUnavailableError: On network, timeout or non-2xx errors.
        :raises MalformedResponseError: If the body cannot be parsed into a
            finite positive number.
        """
        data = await self._get_json(
            self.request_url(),
            params=self.request_params(),
            headers=self.request_headers(),
        )
        try:
            raw = self.parse(data)
        except (AttributeError, KeyError, IndexError, TypeError, ValueError) as e:
            raise MalformedResponseError(f"Failed to parse response: {e!r}") from e

        return validate_price(raw)


def validate_price(raw: Any) -> float:
    """Coerce a parsed value to a finite, positive float.

    Booleans and strings are rejected: a parse function must hand back a
    number, not something that merely converts to one.

    :param raw: Value returned by a parse function.
    :returns: The validated price.
    :raises MalformedResponseError: If the value is not usable as a price.
    """
    if isinstance(raw, bool) or not isinstance(raw, (int, float)):
        raise MalformedResponseError(f"Non-numeric price: {raw!r}")
    price = float(raw)
    if not math.isfinite(price):
        raise MalformedResponseError(f"Non-finite price: {raw!r}")
    if price <= 0:
        raise MalformedResponseError(f"Non-positive price: {raw!r}")
    return price


# Registry of available fetchers (populated by subclass imports)
FETCHER_REGISTRY: dict[str, type[BaseFetcher]] = {}


def register_fetcher(cls: type[BaseFetcher]) -> type[BaseFetcher]:
    """Decorator to register a fetcher class in the global registry.

    :param cls: Fetcher class to register.
    :returns: The registered class (unchanged).
    :raises ValueError: If fetcher has no name or endpoint defined.
    """
    if not cls.name:
        raise ValueError(f"Fetcher {cls.__name__} must define a 'name' class variable")
    if not cls.endpoint:
        raise ValueError(f"Fetcher {cls.__name__} must define an 'endpoint' class variable")
    FETCHER_REGISTRY[cls.name] = cls
    return cls


def get_fetcher(
    name: str,
    api_key: str | None = None,
    weight: float | None = None,
    timeout: float | None = None,
) -> BaseFetcher:
    """Get a fetcher instance by name.

    :param name: Fetcher name (e.g., "coinbase", "kraken").
    :param api_key: Optional API key.
    :param weight: Optional weight override.
    :param timeout: Optional request timeout.
    :returns: Fetcher instance.
    :raises ValueError: If fetcher name is unknown.
    """
    if name not in FETCHER_REGISTRY:
        available = ", ".join(sorted(FETCHER_REGISTRY.keys()))
        raise ValueError(f"Unknown fetcher '{name}'. Available: {available}")
    return FETCHER_REGISTRY[name](api_key=api_key, weight=weight, timeout=timeout)


def get_available_fetchers() -> list[str]:
    """Get list of available fetcher names.

    :returns: Sorted list of registered fetcher names.
    """
    return sorted(FETCHER_REGISTRY.keys())
