import logging
from typing import Optional

import requests

from app.config import Settings
from app.utils.errors import AmountMismatch, GatewayUnavailable, PaymentNotCompleted

logger = logging.getLogger(__name__)


class PortOneClient:
    """Minimal client for the PortOne (iamport) REST API.

    Only what payment verification needs: issue an access token and look a
    payment up by its ``imp_uid``. The API wraps every payload as
    ``{"code": 0, "message": ..., "response": {...}}``; a non-zero code is
    treated the same as a transport failure.
    """

    def __init__(self, api_key: str, api_secret: str, base_url: str = "https://api.iamport.kr",
                 timeout: float = 10, session: Optional[requests.Session] = None):
        self.api_key = api_key
        self.api_secret = api_secret
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    @classmethod
    def from_settings(cls, settings: Settings) -> "PortOneClient":
        return cls(
            settings.PORTONE_API_KEY,
            settings.PORTONE_API_SECRET,
            base_url=settings.PORTONE_API_URL,
            timeout=settings.PORTONE_TIMEOUT_SECONDS,
        )

    def _request(self, method: str, path: str, failure: str, **kwargs) -> dict:
        url = f"{self.base_url}{path}"
        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
            response.raise_for_status()
            body = response.json()
        except (requests.RequestException, ValueError) as e:
            logger.error("PortOne request %s %s failed: %s", method, path, e)
            raise GatewayUnavailable(failure) from e

        if not isinstance(body, dict) or body.get("code") != 0:
            logger.error("PortOne %s %s returned an unexpected body: %.200r", method, path, body)
            raise GatewayUnavailable(failure)
        return body.get("response") or {}

    def get_access_token(self) -> str:
        data = self._request(
            "POST",
            "/users/getToken",
            "Could not connect to the payment verification service",
            json={"imp_key": self.api_key, "imp_secret": self.api_secret},
        )
        token = data.get("access_token")
        if not token:
            raise GatewayUnavailable("Could not connect to the payment verification service")
        return token

    def get_payment(self, imp_uid: str) -> dict:
        token = self.get_access_token()
        return self._request(
            "GET",
            f"/payments/{imp_uid}",
            "Could not look up the payment",
            headers={"Authorization": f"Bearer {token}"},
        )

    def verify_payment(self, imp_uid: str, expected_amount: int) -> dict:
        payment = self.get_payment(imp_uid)

        status = payment.get("status")
        if status != "paid":
            raise PaymentNotCompleted(status)

        amount = payment.get("amount")
        if amount != expected_amount:
            raise AmountMismatch(expected_amount, amount)

        return payment
