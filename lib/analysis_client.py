# =============================================================================
# lib/analysis_client.py - Detection / PMI Service Client
# =============================================================================
# HTTP client for the external inference service that detects life stages in
# case images and computes PMI from accumulated degree hours.
#
# Endpoints:
#   POST {ANALYSIS_SERVICE_URL}/v1/detect                    body: {case_id}
#   POST {ANALYSIS_SERVICE_URL}/v1/computation/recalculate   body: {case_id}
#
# Both authenticate with the X-Api-Key header.
# =============================================================================

import logging
import time
from typing import Any, Callable

import httpx

from app.config import settings
from app.exceptions import AnalysisServiceError

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 3


class AnalysisClient:
    """
    Calls the analysis service with retry + exponential backoff.

    A failed attempt waits 2**attempt seconds (2s, 4s) before retrying.
    """

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        timeout: float | None = None,
        sleep: Callable[[float], None] = time.sleep,
        transport: httpx.BaseTransport | None = None,
    ):
        self.base_url = (base_url or settings.ANALYSIS_SERVICE_URL).rstrip("/")
        self.api_key = api_key or settings.ANALYSIS_SERVICE_KEY
        self.timeout = timeout or settings.ANALYSIS_TIMEOUT_SECONDS
        self._sleep = sleep
        self._transport = transport

    def _post(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        url = f"{self.base_url}{path}"
        last_error: Exception | None = None

        for attempt in range(1, MAX_ATTEMPTS + 1):
            try:
                with httpx.Client(timeout=self.timeout, transport=self._transport) as client:
                    response = client.post(
                        url,
                        json=payload,
                        headers={"X-Api-Key": self.api_key},
                    )
                response.raise_for_status()

                if attempt > 1:
                    logger.info(f"Analysis call to {path} succeeded on attempt {attempt}")
                try:
                    return response.json()
                except ValueError as e:
                    raise AnalysisServiceError(
                        f"{path} returned an invalid response: {response.text[:200]}"
                    ) from e

            except httpx.HTTPStatusError as e:
                last_error = AnalysisServiceError(
                    f"{path} returned {e.response.status_code}: {e.response.text[:200]}"
                )
            except httpx.HTTPError as e:
                last_error = AnalysisServiceError(f"{path} request failed: {e}")

            logger.warning(f"Analysis call attempt {attempt}/{MAX_ATTEMPTS} failed: {last_error}")
            if attempt < MAX_ATTEMPTS:
                self._sleep(2 ** attempt)

        raise last_error

    def detect(self, case_id: str) -> dict[str, Any]:
        """
        Run detection + PMI estimation for every image of a case.

        Returns:
            Dict with `aggregated_results` (`total_counts`,
            `oldest_stage_detected`), `pmi_estimation`, `explanation` and an
            optional `detections` list

        Raises:
            AnalysisServiceError: After all attempts fail
        """
        logger.info(f"Requesting analysis for case {case_id}")
        return self._post("/v1/detect", {"case_id": case_id})

    def recalculate(self, case_id: str) -> dict[str, Any]:
        """
        Recompute PMI from the case's current (human-corrected) detections.

        Returns:
            Dict with `pmi_estimation`, `oldest_stage_detected`,
            `total_counts` and `explanation`

        Raises:
            AnalysisServiceError: After all attempts fail
        """
        logger.info(f"Requesting PMI recalculation for case {case_id}")
        return self._post("/v1/computation/recalculate", {"case_id": case_id})
