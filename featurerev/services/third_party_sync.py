from typing import Any, Dict, Optional

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from featurerev.config import settings
from featurerev.schemas.feature import FeatureSnapshot


class ExperimentationSyncClient:
    """
    Mirrors features into the external experimentation platform.

    Only called from post-commit effects; callers log failures and move on.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        token: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.base_url = (base_url or settings.THIRD_PARTY_SYNC_URL).rstrip("/")
        self.token = token if token is not None else settings.THIRD_PARTY_SYNC_TOKEN
        self.timeout = timeout or settings.THIRD_PARTY_SYNC_TIMEOUT
        self.transport = transport

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=8),
        retry=retry_if_exception_type(httpx.TransportError),
        reraise=True,
    )
    def _request(self, method: str, path: str, payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        with httpx.Client(
            base_url=self.base_url,
            timeout=self.timeout,
            headers=self._headers(),
            transport=self.transport,
        ) as client:
            response = client.request(method, path, json=payload)
            response.raise_for_status()
            return response.json() if response.content else {}

    @staticmethod
    def to_item(feature: FeatureSnapshot) -> Dict[str, Any]:
        return {
            "id": feature.id,
            "organization": feature.organization,
            "project": feature.project,
            "description": feature.description,
            "value_type": feature.value_type,
            "default_value": feature.default_value,
            "archived": feature.archived,
            "tags": list(feature.tags),
            "environments": {
                env: settings_.enabled
                for env, settings_ in feature.environment_settings.items()
            },
        }

    def create_item(self, feature: FeatureSnapshot) -> Dict[str, Any]:
        return self._request("POST", "/items", self.to_item(feature))

    def update_item(self, feature: FeatureSnapshot) -> Dict[str, Any]:
        return self._request("PUT", f"/items/{feature.organization}/{feature.id}", self.to_item(feature))

    def delete_item(self, feature: FeatureSnapshot) -> Dict[str, Any]:
        return self._request("DELETE", f"/items/{feature.organization}/{feature.id}")


def get_sync_client() -> Optional[ExperimentationSyncClient]:
    if not settings.THIRD_PARTY_SYNC_URL:
        return None
    return ExperimentationSyncClient()
