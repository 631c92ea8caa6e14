"""
Payment Instructions Service

Client for the Pinata backend's x402 payment instructions API. A payment
instruction is a priced access policy; content addresses (CIDs) are mapped
onto instructions to decide what a buyer pays to unlock them.
"""

import logging
from typing import Any, Dict, Optional

import httpx

from app.core.config import settings

logger = logging.getLogger(__name__)


class PaymentInstructionsError(Exception):
    """Raised when the payment instructions API rejects a request"""

    def __init__(self, message: str, status_code: Optional[int] = None, body: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class PaymentInstructionsConfigError(PaymentInstructionsError):
    """Raised when the client is missing required configuration"""


class PaymentInstructionsClient:
    """Client for interacting with Pinata backend's payment instructions API"""

    def __init__(
        self,
        base_url: Optional[str] = None,
        auth_token: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or settings.PINATA_BACKEND_API_URL or '').rstrip('/')
        self.auth_token = auth_token or settings.PINATA_JWT_TOKEN or ''
        self.timeout = timeout if timeout is not None else settings.PINATA_REQUEST_TIMEOUT
        self._transport = transport

        if not self.auth_token:
            raise PaymentInstructionsConfigError('PINATA_JWT_TOKEN environment variable is required')
        if not self.base_url:
            raise PaymentInstructionsConfigError('PINATA_BACKEND_API_URL environment variable is required')

    async def _request(self, method: str, path: str, action: str, json: Optional[Dict[str, Any]] = None) -> httpx.Response:
        async with httpx.AsyncClient(
            base_url=self.base_url,
            headers={'Authorization': f'Bearer {self.auth_token}'},
            timeout=self.timeout,
            transport=self._transport,
        ) as client:
            response = await client.request(method, path, json=json)

        if response.is_error:
            raise PaymentInstructionsError(
                f"Failed to {action}: {response.status_code} {response.reason_phrase} - {response.text}",
                status_code=response.status_code,
                body=response.text,
            )
        return response

    async def create(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """
        Create a new payment instruction

        Args:
            payload: name, optional description and payment_requirements list

        Returns:
            API response body, the instruction is under ``data``
        """
        response = await self._request(
            'POST', '/v3/x402/payment_instructions', 'create payment instruction', json=payload
        )
        return response.json()

    async def get(self, payment_instruction_id: str) -> Dict[str, Any]:
        """Get a payment instruction by ID"""
        response = await self._request(
            'GET',
            f'/v3/x402/payment_instructions/{payment_instruction_id}',
            'get payment instruction',
        )
        return response.json()

    async def map_cid(self, payment_instruction_id: str, cid: str) -> None:
        """Map a CID to a payment instruction"""
        await self._request(
            'PUT',
            f'/v3/x402/payment_instructions/{payment_instruction_id}/cids/{cid}',
            'map CID to payment instruction',
        )
        logger.debug(
            "Mapped CID to payment instruction",
            extra={"context": {"piid": payment_instruction_id, "cid": cid}}
        )

    async def unmap_cid(self, payment_instruction_id: str, cid: str) -> None:
        """Unmap a CID from a payment instruction"""
        await self._request(
            'DELETE',
            f'/v3/x402/payment_instructions/{payment_instruction_id}/cids/{cid}',
            'unmap CID from payment instruction',
        )

    async def delete(self, payment_instruction_id: str) -> None:
        """Delete a payment instruction (soft delete on the API side)"""
        await self._request(
            'DELETE',
            f'/v3/x402/payment_instructions/{payment_instruction_id}',
            'delete payment instruction',
        )
