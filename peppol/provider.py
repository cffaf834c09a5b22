# peppol/provider.py
"""
Recommand.eu Peppol access point client.

Endpoints:
- POST /api/v1/{companyId}/send                 send a document
- POST /api/v1/{companyId}/verify               check a participant
- GET  /api/v1/inbox?companyId=...              unread incoming documents
- GET  /api/v1/documents/{documentId}           one document with content
- POST /api/v1/documents/{documentId}/mark-as-read
- GET  /api/v1/documents?companyId=...&limit=1  connection test

Usage:
    provider = RecommandProvider(RecommandCredentials(company_id, key, secret, test_mode=True))
    result = await provider.send_document(payload)
"""

import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx

logger = logging.getLogger(__name__)

PRODUCTION_BASE_URL = "https://app.recommand.eu"
TEST_BASE_URL = "https://test.recommand.eu"


class RecommandApiError(Exception):
    """Non-2xx answer from Recommand"""

    def __init__(self, status_code: int, body: str):
        self.status_code = status_code
        self.body = body
        super().__init__(f"Recommand API error (HTTP {status_code}): {body}")


@dataclass
class RecommandCredentials:
    company_id: str
    api_key: str
    api_secret: str
    test_mode: bool = False


@dataclass
class SendResult:
    success: bool
    external_document_id: Optional[str] = None
    error_message: Optional[str] = None
    errors: List[Dict[str, Any]] = field(default_factory=list)
    raw_response: Optional[str] = None


@dataclass
class VerifyResult:
    registered: bool
    participant_id: str
    name: Optional[str] = None
    document_types: List[str] = field(default_factory=list)


@dataclass
class InboxItem:
    id: str
    sender_peppol_id: Optional[str] = None
    receiver_peppol_id: Optional[str] = None
    document_type: Optional[str] = None
    received_at: Optional[str] = None
    is_read: bool = False


class RecommandProvider:

    def __init__(self, credentials: RecommandCredentials, timeout: float = 30.0,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.credentials = credentials
        self.base_url = TEST_BASE_URL if credentials.test_mode else PRODUCTION_BASE_URL
        self.timeout = timeout
        # tests inject httpx.MockTransport here
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            auth=(self.credentials.api_key, self.credentials.api_secret),
            timeout=self.timeout,
            transport=self._transport,
        )

    @staticmethod
    def _check(response: httpx.Response) -> None:
        if response.is_success:
            return
        logger.error(f"Recommand API error: {response.status_code} - {response.text[:500]}")
        raise RecommandApiError(response.status_code, response.text)

    # ============================================
    # Documents
    # ============================================

    async def send_document(self, payload: Dict[str, Any]) -> SendResult:
        logger.info(f"Sending document via Recommand to {payload.get('recipient')}")
        started = time.time()

        async with self._client() as client:
            response = await client.post(f"/api/v1/{self.credentials.company_id}/send", json=payload)
        self._check(response)

        data = response.json()
        success = bool(data.get("success", True))
        errors = data.get("errors") or []
        error_message = None
        if not success:
            error_message = "; ".join(e.get("message", "") for e in errors) or data.get("message") or "Send failed"
            logger.warning(f"Recommand rejected document: {error_message}")
        else:
            logger.info(
                f"Document sent: id={data.get('documentId')} ({int((time.time() - started) * 1000)}ms)"
            )

        return SendResult(
            success=success,
            external_document_id=data.get("documentId") or data.get("id"),
            error_message=error_message,
            errors=errors,
            raw_response=json.dumps(data),
        )

    async def verify_recipient(self, peppol_id: str) -> VerifyResult:
        async with self._client() as client:
            response = await client.post(
                f"/api/v1/{self.credentials.company_id}/verify",
                json={"peppolAddress": peppol_id}
            )
        if response.status_code == 404:
            return VerifyResult(registered=False, participant_id=peppol_id)
        self._check(response)

        data = response.json()
        return VerifyResult(
            registered=bool(data.get("isValid", data.get("registered", False))),
            participant_id=peppol_id,
            name=data.get("name"),
            document_types=data.get("documentTypes") or [],
        )

    async def get_inbox(self) -> List[InboxItem]:
        async with self._client() as client:
            response = await client.get("/api/v1/inbox", params={"companyId": self.credentials.company_id})
        self._check(response)

        data = response.json()
        rows = data.get("documents", []) if isinstance(data, dict) else data
        logger.debug(f"Fetched {len(rows)} inbox items")
        return [
            InboxItem(
                id=str(row.get("id")) if row.get("id") is not None else "",
                sender_peppol_id=row.get("sender"),
                receiver_peppol_id=row.get("receiver"),
                document_type=row.get("documentType") or row.get("type"),
                received_at=row.get("receivedAt") or row.get("createdAt"),
                is_read=bool(row.get("isRead", row.get("readAt") is not None)),
            )
            for row in rows
        ]

    async def get_document(self, document_id: str) -> Dict[str, Any]:
        """Raw document JSON (metadata plus `document` content)."""
        async with self._client() as client:
            response = await client.get(f"/api/v1/documents/{document_id}")
        self._check(response)

        data = response.json()
        if not data.get("document"):
            raise ValueError(f"Document content is missing for id {document_id}")
        return data

    async def mark_as_read(self, document_id: str) -> None:
        async with self._client() as client:
            response = await client.post(f"/api/v1/documents/{document_id}/mark-as-read", json={"read": True})
        self._check(response)

    async def test_connection(self) -> bool:
        try:
            async with self._client() as client:
                response = await client.get(
                    "/api/v1/documents",
                    params={"companyId": self.credentials.company_id, "limit": 1}
                )
        except httpx.HTTPError as e:
            logger.warning(f"Recommand connection test failed: {e}")
            return False

        if response.is_success:
            logger.info("Recommand connection test successful")
            return True
        logger.warning(f"Recommand connection test failed: HTTP {response.status_code}")
        return False
