"""
Sync Gateway: the client side of offline support.

Every mutating call goes through the persistent SyncQueue first, so calls
made while offline are replayed in exactly the order they were made.
Replay is at-least-once; the idempotency key sent with each entry lets
the server return the stored result for a request it already applied.
"""
import logging
import time
from typing import Any, Callable, Dict, Optional

import requests

from app.core.config import settings
from app.services.sync_queue import OutboundRequest, SyncQueue
from app.utils.timeutils import utcnow

logger = logging.getLogger(__name__)


class SyncGateway:
    def __init__(
        self,
        queue: SyncQueue,
        base_url: Optional[str] = None,
        token: Optional[str] = None,
        session: Optional[requests.Session] = None,
        connectivity_check: Optional[Callable[[], bool]] = None,
        batch_size: Optional[int] = None,
        timeout: Optional[float] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.queue = queue
        self.base_url = (base_url or settings.SYNC_API_URL).rstrip("/")
        self.token = token
        self.session = session or requests.Session()
        self.connectivity_check = connectivity_check or self._probe
        self.batch_size = batch_size or settings.SYNC_BATCH_SIZE
        self.timeout = timeout or settings.SYNC_TIMEOUT_SECONDS
        self.sleep = sleep

    # Connectivity

    def _probe(self) -> bool:
        try:
            response = self.session.get(f"{self.base_url}/health", timeout=self.timeout)
        except requests.exceptions.RequestException:
            return False
        return response.status_code == 200

    def is_online(self) -> bool:
        return bool(self.connectivity_check())

    def set_token(self, token: str) -> None:
        """Install a fresh bearer token, e.g. after logging in again"""
        self.token = token

    # Requests

    def _headers(self, idempotency_key: Optional[str] = None) -> Dict[str, str]:
        headers = {"content-type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        if idempotency_key:
            headers["Idempotency-Key"] = idempotency_key
        return headers

    def get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """Reads are never queued"""
        response = self.session.get(f"{self.base_url}{path}", params=params,
                                    headers=self._headers(), timeout=self.timeout)
        response.raise_for_status()
        return response.json()

    def submit(self, method: str, path: str, body: Optional[Dict[str, Any]] = None) -> Any:
        """
        Queue a mutating call and flush if online.

        Returns the server's response body when this call was delivered,
        otherwise a marker saying it is waiting in the queue.
        """
        if method.upper() == "GET":
            return self.get(path, params=body)

        entry = self.queue.enqueue(method, path, body)
        logger.debug("Queued %s %s as #%s", entry.method, entry.path, entry.sequence)
        if self.is_online():
            results = self.flush()
            if entry.sequence in results:
                return results[entry.sequence]
        return {
            "queued": True,
            "sequence": entry.sequence,
            "message": "Request queued for when device is online",
        }

    def _send(self, entry: OutboundRequest) -> requests.Response:
        return self.session.request(
            entry.method,
            f"{self.base_url}{entry.path}",
            json=entry.payload,
            headers=self._headers(entry.idempotency_key),
            timeout=self.timeout,
        )

    def flush(self) -> Dict[int, Any]:
        """
        Replay pending entries in order, batch by batch.

        2xx marks an entry done and any other 4xx dead-letters it, since the server
        will reject it again. A network error, timeout, 401 or 5xx stops the
        flush so nothing behind that entry overtakes it.
        Returns response bodies of delivered entries keyed by sequence.
        """
        delivered: Dict[int, Any] = {}
        while True:
            batch = self.queue.pending(limit=self.batch_size)
            if not batch:
                return delivered
            logger.info("Replaying %d queued request(s)", len(batch))
            for entry in batch:
                try:
                    response = self._send(entry)
                except requests.exceptions.RequestException as e:
                    self.queue.record_attempt(entry.sequence, str(e))
                    logger.warning("Replay of #%s stopped: %s", entry.sequence, e)
                    return delivered

                if response.status_code == 401:
                    # Expired token: keep everything queued until set_token() is called
                    self.queue.record_attempt(entry.sequence, f"HTTP 401: {response.text}")
                    self.token = None
                    logger.warning("Replay of #%s stopped: token rejected, waiting for a new one",
                                   entry.sequence)
                    return delivered
                if response.status_code >= 500:
                    self.queue.record_attempt(entry.sequence, f"HTTP {response.status_code}: {response.text}")
                    logger.warning("Replay of #%s stopped: server returned %s",
                                   entry.sequence, response.status_code)
                    return delivered
                if response.status_code >= 400:
                    self.queue.mark_failed(entry.sequence, response.status_code, response.text)
                    logger.error("Queued %s %s rejected with %s: %s", entry.method, entry.path,
                                 response.status_code, response.text)
                    delivered[entry.sequence] = self._body(response)
                    continue

                self.queue.mark_done(entry.sequence, response.status_code)
                delivered[entry.sequence] = self._body(response)

    def drain(self, max_attempts: Optional[int] = None) -> bool:
        """Flush with exponential backoff until the queue is empty; True when drained"""
        max_attempts = max_attempts or settings.SYNC_MAX_ATTEMPTS
        for attempt in range(max_attempts):
            if self.is_online():
                self.flush()
                if self.queue.pending_count() == 0:
                    return True
            delay = settings.SYNC_BACKOFF_SECONDS * (2 ** attempt)
            logger.info("%d request(s) still queued, retrying in %.1fs",
                        self.queue.pending_count(), delay)
            self.sleep(delay)
        return self.queue.pending_count() == 0

    @staticmethod
    def _body(response: requests.Response) -> Any:
        try:
            return response.json()
        except ValueError:
            return response.text

    # Operations of the HTTP API

    def record_location(self, latitude, longitude) -> Any:
        # Device clock at the time of the reading, not at replay time
        return self.submit("POST", "/location", {
            "latitude": str(latitude),
            "longitude": str(longitude),
            "timestamp": utcnow().isoformat() + "Z",
        })

    def start_journey(self, job_id: str, latitude=None, longitude=None) -> Any:
        body: Dict[str, Any] = {"jobId": job_id}
        if latitude is not None and longitude is not None:
            body["latitude"] = str(latitude)
            body["longitude"] = str(longitude)
        return self.submit("POST", "/visits/start-journey", body)

    def start_service(self, visit_id: int) -> Any:
        return self.submit("POST", f"/visits/{visit_id}/start-service", {})

    def complete(self, visit_id: int) -> Any:
        return self.submit("POST", f"/visits/{visit_id}/complete", {})

    def pause(self, visit_id: int, reason: str, block_reason: Optional[str] = None) -> Any:
        body: Dict[str, Any] = {"reason": reason}
        if block_reason:
            body["blockReason"] = block_reason
        return self.submit("POST", f"/visits/{visit_id}/pause", body)

    def resume(self, visit_id: int, resume_type: str) -> Any:
        return self.submit("POST", f"/visits/{visit_id}/resume", {"resumeType": resume_type})

    def unblock(self, visit_id: int) -> Any:
        return self.submit("POST", f"/visits/{visit_id}/unblock", {})

    def join(self, visit_id: int, note: Optional[str] = None) -> Any:
        body = {"note": note} if note else {}
        return self.submit("POST", f"/visits/{visit_id}/join", body)
