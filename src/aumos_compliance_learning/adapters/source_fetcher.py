"""HTTP fetcher for regulatory sources and regulatory documents.

Each fetch opens a short-lived httpx.AsyncClient with the configured
timeout. Every httpx failure (timeout, transport error, malformed URL)
and every non-2xx response surfaces as ExternalDependencyError so callers
can apply failure bookkeeping.
"""

import httpx

from aumos_compliance_learning.errors import ExternalDependencyError
from aumos_compliance_learning.observability import get_logger

logger = get_logger(__name__)

_DEPENDENCY = "regulatory_source"
_DEFAULT_TIMEOUT_SECONDS = 30.0
_DEFAULT_USER_AGENT = "aumos-compliance-learning"


class HttpSourceFetcher:
    """Fetches text content from regulatory URLs.

    Args:
        timeout_seconds: Total request timeout.
        user_agent: User-Agent header sent with each request.
    """

    def __init__(
        self,
        timeout_seconds: float = _DEFAULT_TIMEOUT_SECONDS,
        user_agent: str = _DEFAULT_USER_AGENT,
    ) -> None:
        self._timeout_seconds = timeout_seconds
        self._headers = {"User-Agent": user_agent, "Accept": "text/html,text/plain,application/xhtml+xml"}

    async def fetch(self, url: str) -> str:
        """Fetch a URL and return its body as text.

        Args:
            url: Absolute http(s) URL.

        Returns:
            Response body decoded as text.

        Raises:
            ExternalDependencyError: On timeout, transport error, malformed
                URL or non-2xx status.
        """
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout_seconds,
                headers=self._headers,
                follow_redirects=True,
            ) as client:
                response = await client.get(url)
        except httpx.TimeoutException:
            logger.warning("Source fetch timed out", url=url, timeout_seconds=self._timeout_seconds)
            raise ExternalDependencyError(
                f"Fetching {url} timed out after {self._timeout_seconds}s",
                dependency=_DEPENDENCY,
            )
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            logger.warning("Source fetch failed", url=url, error=str(exc))
            raise ExternalDependencyError(f"Fetching {url} failed: {exc}", dependency=_DEPENDENCY)

        if not response.is_success:
            logger.warning("Source returned error status", url=url, status_code=response.status_code)
            raise ExternalDependencyError(
                f"Fetching {url} returned HTTP {response.status_code}",
                dependency=_DEPENDENCY,
            )

        logger.debug("Source fetched", url=url, length=len(response.text))
        return response.text
