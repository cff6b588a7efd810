from __future__ import annotations

from dataclasses import dataclass
from typing import Any
from urllib.parse import quote

import httpx
import structlog
from tenacity import RetryError, Retrying, retry_if_exception_type, stop_after_attempt
from tenacity.wait import wait_base

from deploy_pipeline.core import Credentials, UpdateError
from deploy_pipeline.pipeline.types import ArtifactReference

from .interfaces import ServiceStatus

log = structlog.get_logger(__name__)

_RETRYABLE_STATUSES: set[int] = {429, 502, 503, 504}

# Credential name holding the compute platform API token.
PLATFORM_TOKEN = "platform_token"


def make_http_client(
    *,
    base_url: str,
    timeout_s: float = 30.0,
    user_agent: str = "deploy-pipeline/0.1",
    transport: httpx.BaseTransport | None = None,
) -> httpx.Client:
    return httpx.Client(
        base_url=base_url,
        timeout=httpx.Timeout(timeout_s, connect=min(5.0, timeout_s)),
        headers={"User-Agent": user_agent},
        transport=transport,
    )


class DeterministicExponentialBackoff(wait_base):
    def __init__(self, *, base: float = 0.5, cap: float = 4.0) -> None:
        self._base = float(base)
        self._cap = float(cap)

    def __call__(self, retry_state) -> float:
        n = retry_state.attempt_number
        if n <= 1:
            return 0.0
        return min(self._cap, self._base * (2 ** (n - 2)))


class _RetryableStatus(Exception):
    def __init__(self, status_code: int, body: str) -> None:
        super().__init__(f"HTTP {status_code}")
        self.status_code = status_code
        self.body = body


def _snippet(resp: httpx.Response, *, limit: int = 200) -> str:
    return (resp.text or "")[:limit].strip()


@dataclass(slots=True)
class HttpServiceUpdater:
    """
    Repoints a service at an image through the compute platform's HTTP API:

      PUT /services/{service_id}  {"image": "<location>:<tag>"}

    The call is idempotent, so transport errors and gateway statuses are
    retried a bounded number of times. Any other non-2xx is an UpdateError.
    """

    client: httpx.Client
    max_attempts: int = 3
    backoff_base: float = 0.5
    backoff_cap: float = 4.0

    def _retrying(self, service_id: str) -> Retrying:
        def _before_sleep(retry_state) -> None:
            exc = retry_state.outcome.exception() if retry_state.outcome else None
            log.warning(
                "service_update.retry",
                service_id=service_id,
                attempt=retry_state.attempt_number,
                error=repr(exc) if exc else None,
            )

        return Retrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=DeterministicExponentialBackoff(
                base=self.backoff_base, cap=self.backoff_cap
            ),
            retry=retry_if_exception_type(
                (httpx.TimeoutException, httpx.TransportError, _RetryableStatus)
            ),
            reraise=False,
            before_sleep=_before_sleep,
        )

    def _put(
        self, service_id: str, body: dict[str, Any], headers: dict[str, str]
    ) -> httpx.Response:
        resp = self.client.put(
            f"/services/{quote(service_id, safe='')}", json=body, headers=headers
        )
        if resp.status_code in _RETRYABLE_STATUSES:
            raise _RetryableStatus(resp.status_code, _snippet(resp))
        return resp

    def update_service(
        self, service_id: str, artifact: ArtifactReference, *, credentials: Credentials
    ) -> ServiceStatus:
        headers: dict[str, str] = {}
        if credentials.has(PLATFORM_TOKEN):
            headers["Authorization"] = f"Bearer {credentials.get(PLATFORM_TOKEN)}"
        body: dict[str, Any] = {"image": artifact.uri}
        if artifact.digest:
            body["digest"] = artifact.digest

        try:
            resp: httpx.Response | None = None
            for attempt in self._retrying(service_id):
                with attempt:
                    resp = self._put(service_id, body, headers)
        except RetryError as re:
            last = re.last_attempt.exception()
            raise UpdateError(
                f"Service update for {service_id} failed after "
                f"{re.last_attempt.attempt_number} attempts",
                detail=repr(last),
            ) from last

        assert resp is not None
        if resp.status_code >= 400:
            raise UpdateError(
                f"HTTP {resp.status_code} updating service {service_id}",
                detail=_snippet(resp) or None,
            )

        data: dict[str, Any] = {}
        if resp.content:
            try:
                data = resp.json()
            except ValueError:
                data = {}
        status = ServiceStatus(
            service_id=service_id,
            image=str(data.get("image") or artifact.uri),
            status=str(data.get("status") or "updated"),
        )
        log.info("service.updated", service_id=service_id, image=status.image, status=status.status)
        return status
