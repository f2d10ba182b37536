"""Contact discovery over HTTP."""

import logging
from typing import Optional

import httpx
from pydantic import ValidationError

from dealflow.config import settings
from dealflow.errors import OracleError, OracleTimeoutError
from dealflow.models import BuyerContact
from .base import ContactDiscovery

logger = logging.getLogger(__name__)


class HttpContactDiscovery(ContactDiscovery):
    """POST a buyer id to a discovery endpoint and read back contacts.

    The endpoint answers with ``{"contacts": [{"name": ..., "title": ...,
    "email": ..., "linkedin_url": ...}, ...]}``.
    """

    name = "http"

    def __init__(
        self,
        url: Optional[str] = None,
        timeout: Optional[float] = None,
        user_agent: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.url = url or settings.contact_discovery_url
        self.timeout = timeout or settings.contact_discovery_timeout
        self.user_agent = user_agent or settings.user_agent
        self._transport = transport

    async def discover(self, buyer_id: str) -> list[BuyerContact]:
        if not self.url:
            raise OracleError("Contact discovery URL not configured")

        try:
            async with httpx.AsyncClient(
                timeout=self.timeout,
                transport=self._transport,
            ) as client:
                response = await client.post(
                    self.url,
                    json={"buyer_id": buyer_id},
                    headers={"User-Agent": self.user_agent, "Accept": "application/json"},
                )
                response.raise_for_status()
                payload = response.json()

        except httpx.TimeoutException as e:
            logger.warning(f"Timeout discovering contacts for {buyer_id}")
            raise OracleTimeoutError(
                f"Contact discovery timed out for {buyer_id}",
                context={"timeout": self.timeout},
            ) from e

        except httpx.HTTPStatusError as e:
            logger.warning(f"Contact discovery returned {e.response.status_code} for {buyer_id}")
            raise OracleError(
                f"Contact discovery failed for {buyer_id}",
                context={"status_code": e.response.status_code},
            ) from e

        except (httpx.RequestError, ValueError) as e:
            logger.warning(f"Contact discovery request error for {buyer_id}: {e}")
            raise OracleError(f"Contact discovery failed for {buyer_id}: {e}") from e

        contacts = []
        for item in payload.get("contacts", []) if isinstance(payload, dict) else []:
            if not isinstance(item, dict):
                continue
            try:
                contacts.append(BuyerContact(**{**item, "buyer_id": buyer_id}))
            except ValidationError as e:
                logger.debug(f"Skipping malformed contact for {buyer_id}: {e}")

        logger.info(f"Discovered {len(contacts)} contacts for buyer {buyer_id}")
        return contacts
