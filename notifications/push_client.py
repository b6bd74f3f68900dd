#Purpose: The push-gateway "adapter/client".
#Sole responsibility: talk to the notification gateway via HTTP.
#Encapsulates gateway-specific details:
#URL construction (/riders/<id>/offers, /riders/<id>/offers/<order>/revoke)
#auth header, timeouts
#turning transport failures into NotificationDeliveryError
#It should not contain dispatch rules or retries: a failed delivery is the dispatcher's
#signal to move on to the next candidate.

from __future__ import annotations

import logging
import os
from typing import Optional

import requests
from dotenv import load_dotenv

# Example in .env:
# PUSH_GATEWAY_URL=https://push.internal.example
# PUSH_GATEWAY_API_KEY=...
load_dotenv()

logger = logging.getLogger(__name__)


class NotificationDeliveryError(Exception):
    """Raised when an offer could not be handed to the gateway."""
    pass


class PushGatewayNotifier:
    """
    Push Gateway Adapter / Client

    Sole responsibility:
    - POST offer / revoke events for a rider to the gateway
    - Report delivery as True or raise NotificationDeliveryError
    """
    def __init__(self, base_url: Optional[str] = None, api_key: Optional[str] = None, timeout: int = 5):
        self.base_url = (base_url or os.getenv("PUSH_GATEWAY_URL") or "").rstrip("/")
        self.api_key = api_key or os.getenv("PUSH_GATEWAY_API_KEY")
        self.timeout = timeout #seconds to wait for the gateway before treating the offer as undelivered

        if not self.base_url:
            raise ValueError("Push gateway URL not set. Please set PUSH_GATEWAY_URL in the .env file.")

    def _headers(self) -> dict:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def _post(self, url: str, body: dict) -> dict:
        try:
            response = requests.post(url, json=body, headers=self._headers(), timeout=self.timeout)
        except requests.RequestException as exc:
            raise NotificationDeliveryError(f"Push gateway unreachable: {exc}") from exc

        if response.status_code >= 400:
            raise NotificationDeliveryError(
                f"Push gateway rejected event ({response.status_code}): {response.text[:200]}"
            )

        try:
            return response.json()
        except ValueError:
            return {}

    def notify_rider_of_offer(self, rider_id: str, order_id: str, payload) -> bool:
        """
        Sends the "offer extended" event. Returns True when the gateway acknowledged it.
        """
        url = f"{self.base_url}/riders/{rider_id}/offers"
        data = self._post(url, {"type": "offer_extended", "rider_id": rider_id, **payload.to_dict()})
        if not isinstance(data, dict):
            raise NotificationDeliveryError(f"Push gateway sent an unexpected acknowledgement: {data!r:.200}")

        logger.debug(f"Offer for order {order_id} delivered to rider {rider_id}: {data}")
        return bool(data.get("delivered", True))

    def revoke_offer(self, rider_id: str, order_id: str, reason: str) -> None:
        """
        Tells the rider app to drop an offer card. Best effort: failures are only logged.
        """
        url = f"{self.base_url}/riders/{rider_id}/offers/{order_id}/revoke"
        try:
            self._post(url, {"type": "offer_revoked", "order_id": order_id, "reason": reason})
        except NotificationDeliveryError as exc:
            logger.warning(f"Could not revoke offer for order {order_id} from rider {rider_id}: {exc}")
