"""
HTTP implementation of the batch executor and status provider.

Talks to the forum's admin-ajax endpoint with form-encoded POSTs. The
endpoint wraps every answer in {"success": bool, "data": {...}} and
sends refusals as HTTP 400 with a JSON body, so 4xx bodies are read
rather than raised.
"""

from typing import Optional, Dict, Any
import json

import httpx

from config.logging_config import get_logger
from config.constants import AJAX_ACTION, AJAX_STATUS_ACTION, REQUEST_TIMEOUT_SECONDS

from .collaborators import JobTicket, BatchResponse, StatusReport, ActiveJobInfo
from .exceptions import TransportError, BatchRejectedError

logger = get_logger(__name__)


def _as_int(value: Any, default: int = 0) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _as_optional_int(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


class HttpIndexingBackend:
    """
    admin-ajax client implementing BatchExecutor and StatusProvider.

    Usage:
        async with HttpIndexingBackend(url, nonce) as backend:
            manager = IndexingManager(backend)
            ...
    """

    def __init__(
        self,
        ajax_url: str,
        nonce: str = "",
        timeout: float = REQUEST_TIMEOUT_SECONDS,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.ajax_url = ajax_url
        self.nonce = nonce
        self.timeout = timeout
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)

    @classmethod
    def from_settings(cls, settings) -> "HttpIndexingBackend":
        return cls(
            settings.ajax_url,
            nonce=settings.ajax_nonce,
            timeout=settings.request_timeout_seconds,
        )

    async def __aenter__(self) -> "HttpIndexingBackend":
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.aclose()

    async def aclose(self):
        """Close the HTTP client if this backend created it."""
        if self._owns_client:
            await self._client.aclose()

    # ========== Transport ==========

    async def _post(self, fields: Dict[str, Any]) -> Dict[str, Any]:
        """
        POST one form and return the decoded envelope.

        Raises:
            TransportError: network failure, timeout, 5xx or non-JSON body
        """
        form = {"_wpnonce": self.nonce}
        for key, value in fields.items():
            if value is None:
                continue
            if isinstance(value, bool):
                value = "1" if value else "0"
            form[key] = str(value)

        action = form.get("wpforo_ai_action") or form.get("action")
        try:
            response = await self._client.post(self.ajax_url, data=form)
        except httpx.TimeoutException as e:
            raise TransportError(f"{action}: request timed out") from e
        except httpx.HTTPError as e:
            raise TransportError(f"{action}: {e}") from e

        if response.status_code >= 500:
            raise TransportError(f"{action}: HTTP {response.status_code}")

        try:
            envelope = response.json()
        except (json.JSONDecodeError, ValueError) as e:
            raise TransportError(
                f"{action}: invalid JSON response (HTTP {response.status_code})"
            ) from e

        if not isinstance(envelope, dict):
            raise TransportError(f"{action}: unexpected response shape")

        logger.debug(f"{action}: HTTP {response.status_code} success={envelope.get('success')}")
        return envelope

    @staticmethod
    def _data(envelope: Dict[str, Any]) -> Dict[str, Any]:
        data = envelope.get("data")
        return data if isinstance(data, dict) else {}

    @staticmethod
    def _message(data: Dict[str, Any], default: str) -> str:
        return str(data.get("message") or default)

    # ========== BatchExecutor ==========

    async def start_job(self, job_type: str, batch_size: int, options: Dict[str, Any]) -> JobTicket:
        envelope = await self._post({
            "action": AJAX_ACTION,
            "wpforo_ai_action": "start_local_indexing",
            "job_type": job_type,
            "batch_size": batch_size,
            "chunk_size": options.get("chunk_size"),
            "overlap_percent": options.get("overlap_percent"),
            "images_only": bool(options.get("images_only", False)),
        })
        data = self._data(envelope)

        if not envelope.get("success"):
            if data.get("type") == "info":
                # Nothing to index
                return JobTicket(
                    job_id=job_type,
                    total=0,
                    batch_size=batch_size,
                    message=self._message(data, "No items found to index."),
                )
            raise BatchRejectedError(self._message(data, "Failed to start indexing"))

        return JobTicket(
            job_id=str(data.get("job_id") or job_type),
            total=_as_int(data.get("total_topics")),
            batch_size=_as_int(data.get("batch_size"), batch_size) or batch_size,
            credits_available=_as_optional_int(data.get("credits_available")),
            credits_needed=_as_optional_int(data.get("credits_needed")),
            message=self._message(data, ""),
        )

    async def execute_batch(self, job_id: str, batch_size: int, options: Dict[str, Any]) -> BatchResponse:
        envelope = await self._post({
            "action": AJAX_ACTION,
            "wpforo_ai_action": "process_local_batch",
            "job_type": job_id,
            "batch_size": batch_size,
            "images_only": bool(options.get("images_only", False)),
        })
        data = self._data(envelope)
        action = data.get("action")

        if action == "credits_exhausted":
            return BatchResponse(
                processed=_as_int(data.get("processed")),
                remaining=_as_int(data.get("remaining")),
                done=False,
                errors=list(data.get("errors") or []),
                credits_exhausted=True,
                credits_remaining=_as_optional_int(data.get("credits_remaining")),
            )

        if action == "wait":
            return BatchResponse(waiting=True)

        if not envelope.get("success"):
            raise BatchRejectedError(self._message(data, "Batch processing failed"))

        return BatchResponse(
            processed=_as_int(data.get("processed")),
            remaining=_as_int(data.get("remaining")),
            done=bool(data.get("done")),
            errors=[str(e) for e in (data.get("errors") or [])],
            credits_remaining=_as_optional_int(data.get("credits_remaining")),
        )

    async def request_stop(self, job_id: str) -> int:
        envelope = await self._post({
            "action": AJAX_ACTION,
            "wpforo_ai_action": "stop_local_indexing",
            "job_type": job_id,
        })
        data = self._data(envelope)
        if not envelope.get("success"):
            raise BatchRejectedError(self._message(data, "Failed to stop indexing"))
        return _as_int(data.get("cleared"))

    # ========== StatusProvider ==========

    async def get_status(self, job_id: str) -> StatusReport:
        envelope = await self._post({
            "action": AJAX_STATUS_ACTION,
            "job_type": job_id,
        })
        if not envelope.get("success"):
            raise TransportError(self._message(self._data(envelope), "Status request refused"))

        data = self._data(envelope)
        pending = data.get("pending_cron_jobs") or {}
        credits = data.get("credits") or {}

        credits_remaining = _as_optional_int(data.get("credits_remaining"))
        if credits_remaining is None and isinstance(credits, dict):
            credits_remaining = _as_optional_int(credits.get("remaining"))

        return StatusReport(
            worker_active=bool(data.get("is_indexing")),
            queue_non_empty=bool(pending.get("has_pending_jobs")),
            processed=_as_int(data.get("total_topics")),
            total=_as_optional_int(data.get("total")),
            pending_items=_as_int(pending.get("pending_topics")),
            credits_remaining=credits_remaining,
        )

    async def get_active_job(self, job_type: str) -> ActiveJobInfo:
        envelope = await self._post({
            "action": AJAX_ACTION,
            "wpforo_ai_action": "get_indexing_progress",
            "job_type": job_type,
        })
        data = self._data(envelope)
        if not envelope.get("success") or not data.get("indexing_active"):
            return ActiveJobInfo(active=False)

        started_at = data.get("started_at")
        return ActiveJobInfo(
            active=True,
            total=_as_int(data.get("total")),
            processed=_as_int(data.get("processed")),
            remaining=_as_int(data.get("remaining")),
            started_at=float(started_at) if started_at else None,
            batch_size=_as_optional_int(data.get("batch_size")),
            job_id=job_type,
        )
