"""Client for the optional regulatory change-analysis service.

The service receives the changed content plus source context and returns
the update type, impact level, recommended actions and any structured
requirements it extracted. The client is only constructed when
AUMOS_COMPLIANCE_ANALYSIS_URL is set; otherwise monitoring falls back to
the heuristic defaults.

Endpoint: POST {base_url}/api/v1/regulatory/analyze-change
"""

from typing import Any

import httpx

from aumos_compliance_learning.core.domain import ChangeAnalysis
from aumos_compliance_learning.errors import ExternalDependencyError
from aumos_compliance_learning.observability import get_logger

logger = get_logger(__name__)

_DEPENDENCY = "change_analysis"
_ANALYZE_PATH = "/api/v1/regulatory/analyze-change"
_MAX_CONTENT_CHARS = 20_000


class ChangeAnalysisClient:
    """Async client for the change-analysis service.

    Args:
        base_url: Service base URL.
        timeout_seconds: Request timeout.
    """

    def __init__(self, base_url: str, timeout_seconds: float = 30.0) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout_seconds = timeout_seconds

    async def analyze_change(
        self,
        content: str,
        source_name: str,
        jurisdiction: str,
        category: str,
    ) -> ChangeAnalysis:
        """Analyse changed regulatory content.

        Args:
            content: Changed content (truncated before sending).
            source_name: Name of the regulatory source.
            jurisdiction: Source jurisdiction code.
            category: Source category.

        Returns:
            The parsed ChangeAnalysis.

        Raises:
            ExternalDependencyError: On transport failure, non-2xx status or
                an empty analysis payload.
        """
        payload: dict[str, Any] = {
            "content": content[:_MAX_CONTENT_CHARS],
            "source_name": source_name,
            "jurisdiction": jurisdiction,
            "category": category,
        }
        url = f"{self._base_url}{_ANALYZE_PATH}"

        try:
            async with httpx.AsyncClient(timeout=self._timeout_seconds) as client:
                response = await client.post(url, json=payload)
        except httpx.TimeoutException:
            logger.warning("Change analysis timed out", source_name=source_name)
            raise ExternalDependencyError(
                f"Change analysis timed out after {self._timeout_seconds}s",
                dependency=_DEPENDENCY,
            )
        except httpx.RequestError as exc:
            logger.error("Change analysis request failed", source_name=source_name, error=str(exc))
            raise ExternalDependencyError(f"Change analysis request error: {exc}", dependency=_DEPENDENCY)

        if response.status_code != 200:
            logger.error(
                "Change analysis returned unexpected status",
                status_code=response.status_code,
                body=response.text[:500],
            )
            raise ExternalDependencyError(
                f"Change analysis failed with status {response.status_code}",
                dependency=_DEPENDENCY,
            )

        body = response.json()
        analysis = ChangeAnalysis.from_dict(body.get("analysis", body) if isinstance(body, dict) else None)
        if analysis is None:
            raise ExternalDependencyError("Change analysis returned an empty payload", dependency=_DEPENDENCY)

        logger.info(
            "Change analysed",
            source_name=source_name,
            update_type=analysis.update_type,
            impact_level=analysis.impact_level,
            requirements=len(analysis.extracted_requirements),
        )
        return analysis
