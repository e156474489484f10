"""
fipe.py: HTTP client for the FIPE vehicle pricing catalog.

- Read-only brand / model / year / price lookups for passenger cars
- No caching and no retries; failures surface as ReferenceDataError
- Stateless apart from the pooled `requests.Session`
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Any, List, Optional

import requests
from pydantic import ValidationError

from ..schemas.reference import ReferenceItem, VehiclePrice

logger = logging.getLogger(__name__)

VEHICLE_TYPE = "carros"

# FIPE lists brand-new ("zero km") vehicles under this model year.
ZERO_KM_YEAR = 32000


class ReferenceDataError(RuntimeError):
    """Raised when the FIPE API cannot be reached or returns an unusable payload."""


def parse_year_code(year_code: str) -> int:
    """
    Extract the model year from a FIPE year code such as `2015-1`
    (`<year>-<fuel>`). The zero-km placeholder maps to the current year.
    """
    head = str(year_code).strip().split("-", 1)[0]
    if not head.isdigit():
        raise ValueError(f"Invalid FIPE year code: {year_code!r}")
    year = int(head)
    return date.today().year if year == ZERO_KM_YEAR else year


class FipeClient:
    def __init__(
        self,
        base_url: str = "https://parallelum.com.br/fipe/api/v1",
        timeout_seconds: float = 10.0,
        session: Optional[requests.Session] = None,
    ):
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout_seconds
        self._session = session or requests.Session()
        self._session.headers.update({"Accept": "application/json"})

    def list_brands(self) -> List[ReferenceItem]:
        return self._items(self._get(f"/{VEHICLE_TYPE}/marcas"))

    def list_models(self, brand_code: str) -> List[ReferenceItem]:
        payload = self._get(f"/{VEHICLE_TYPE}/marcas/{brand_code}/modelos")
        # The models endpoint wraps the list: {"modelos": [...], "anos": [...]}
        if isinstance(payload, dict):
            payload = payload.get("modelos", payload.get("models", []))
        return self._items(payload)

    def list_years(self, brand_code: str, model_code: str) -> List[ReferenceItem]:
        return self._items(self._get(f"/{VEHICLE_TYPE}/marcas/{brand_code}/modelos/{model_code}/anos"))

    def get_vehicle(self, brand_code: str, model_code: str, year_code: str) -> VehiclePrice:
        payload = self._get(f"/{VEHICLE_TYPE}/marcas/{brand_code}/modelos/{model_code}/anos/{year_code}")
        try:
            return VehiclePrice.model_validate(payload)
        except ValidationError as exc:
            raise ReferenceDataError("Unexpected vehicle payload from FIPE") from exc

    def _items(self, payload: Any) -> List[ReferenceItem]:
        if not isinstance(payload, list):
            raise ReferenceDataError("Unexpected list payload from FIPE")
        try:
            return [ReferenceItem.model_validate(item) for item in payload]
        except ValidationError as exc:
            raise ReferenceDataError("Unexpected list payload from FIPE") from exc

    def _get(self, path: str) -> Any:
        url = f"{self._base_url}{path}"
        logger.debug("Requesting %s", url)
        try:
            response = self._session.get(url, timeout=self._timeout)
            response.raise_for_status()
            return response.json()
        except requests.RequestException as exc:
            logger.error("FIPE request failed for %s: %s", path, exc)
            raise ReferenceDataError(f"Could not load reference data: {exc}") from exc
        except ValueError as exc:
            logger.error("FIPE returned invalid JSON for %s", path)
            raise ReferenceDataError("Reference data service returned invalid JSON") from exc
