"""
Intervention notifications.

Every newly fired intervention is pushed to both partners through the
platform notification API. When notifications are disabled the payload is
only logged. Delivery problems are logged and never fail the caller.
"""

from typing import Any, Optional
from uuid import UUID

import httpx
import structlog

from haven.core.config import settings
from haven.core.models import Couple, CrisisIntervention

logger = structlog.get_logger(__name__)


class InterventionNotifier:
    """Client for the platform notification API."""

    def __init__(
        self,
        api_url: Optional[str] = None,
        api_key: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_url = api_url or settings.NOTIFY_API_URL
        self.api_key = api_key or settings.NOTIFY_API_KEY
        self._client = client

    @property
    def enabled(self) -> bool:
        """Check if the notification API is configured."""
        return bool(self.api_key) and settings.NOTIFY_ENABLED

    async def notify_intervention(
        self,
        couple: Couple,
        intervention: CrisisIntervention,
    ) -> int:
        """
        Notify both partners about an intervention.

        Returns:
            Number of notifications delivered (or logged)
        """
        delivered = 0
        for user_id in couple.partner_ids:
            if await self.send(user_id, self._payload(intervention)):
                delivered += 1
        return delivered

    async def send(self, user_id: UUID, payload: dict[str, Any]) -> bool:
        """Send one notification, or log it when disabled."""
        if not self.enabled:
            logger.info(
                "intervention_notification_logged",
                user_id=str(user_id),
                title=payload["title"],
                priority=payload["priority"],
                mode="disabled",
            )
            return True

        body = {"user_id": str(user_id), **payload}
        try:
            client = self._client or httpx.AsyncClient(timeout=10.0)
            try:
                response = await client.post(
                    f"{self.api_url}/api/v1/notifications",
                    json=body,
                    headers={
                        "Authorization": f"Bearer {self.api_key}",
                        "Content-Type": "application/json",
                    },
                )
            finally:
                if self._client is None:
                    await client.aclose()
        except httpx.HTTPError as e:
            logger.error("intervention_notification_error", error=str(e), user_id=str(user_id))
            return False

        if response.status_code >= 400:
            logger.warning(
                "intervention_notification_failed",
                user_id=str(user_id),
                status_code=response.status_code,
            )
            return False
        return True

    @staticmethod
    def _payload(intervention: CrisisIntervention) -> dict[str, Any]:
        return {
            "type": "intervention",
            "title": intervention.title,
            "body": intervention.message,
            "priority": intervention.severity.value,
            "action_url": "/crisis",
            "related_entity_type": "crisis_intervention",
            "related_entity_id": str(intervention.id),
        }
