"""HTTP job: issues the HTTP call described by a job data map.

Job data keys::

    url            required
    method         required; GET | POST | PUT | DELETE (case-insensitive),
                   anything else is sent as GET
    body           optional request body for POST/PUT
    header.<Name>  forwarded as request header <Name>

Outcome rules:
    - missing ``url`` or ``method``: logged, no request, aborted (no history)
    - invalid URL, transport error or timeout: FAILURE with the error message
    - any completed exchange: SUCCESS with the response body, whatever the
      status code, unless ``status_failure`` is on (then 4xx/5xx fail)
"""

from __future__ import annotations

import time
from collections.abc import Mapping

import httpx

from cronspine.core.errors import ConfigurationError, ExecutionError
from cronspine.core.logging import get_logger
from cronspine.execution.protocol import JobResult

logger = get_logger(__name__)

HEADER_PREFIX = "header."
BODY_METHODS = ("POST", "PUT")
SUPPORTED_METHODS = ("GET", "POST", "PUT", "DELETE")


class HttpJobExecutor:
    """Executor for ``job_type="http"``.

    Args:
        connect_timeout: Seconds allowed to establish the connection
        call_timeout: Seconds allowed for the whole call, including the body
        status_failure: Treat 4xx/5xx responses as failures
        client: Pre-built ``httpx.Client`` (tests inject a MockTransport one)

    Example:
        >>> executor = HttpJobExecutor()
        >>> result = executor.execute({"url": "https://example.org/ping", "method": "get"})
        >>> result.succeeded
        True
    """

    job_type = "http"

    def __init__(
        self,
        connect_timeout: float = 10.0,
        call_timeout: float = 30.0,
        status_failure: bool = False,
        client: httpx.Client | None = None,
    ) -> None:
        self.connect_timeout = connect_timeout
        self.call_timeout = call_timeout
        self.status_failure = status_failure
        self._client = client or httpx.Client(
            timeout=httpx.Timeout(call_timeout, connect=connect_timeout),
        )

    def execute(self, job_data: Mapping[str, str]) -> JobResult:
        url = job_data.get("url")
        method = job_data.get("method")
        if url is None or method is None:
            error = ConfigurationError("URL or Method not specified in job data")
            logger.error("http_job.misconfigured", error=error.message, keys=sorted(job_data))
            return JobResult.abort(error.message)

        try:
            request = self._build_request(url, method, job_data)
            logger.info("http_job.executing", method=request.method, url=str(request.url))
            status_code, body = self._send(request)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            error = ExecutionError(str(e) or e.__class__.__name__, cause=e).with_context(url=url)
            logger.error("http_job.failed", **error.to_dict())
            return JobResult.failure(error.message)

        logger.info("http_job.executed", status=status_code, body_length=len(body))

        if self.status_failure and status_code >= 400:
            return JobResult.failure(f"HTTP {status_code}: {body}")
        return JobResult.success(body or "Success")

    def _build_request(self, url: str, method: str, job_data: Mapping[str, str]) -> httpx.Request:
        method = method.upper()
        if method not in SUPPORTED_METHODS:
            method = "GET"

        headers = {
            key[len(HEADER_PREFIX):]: str(value)
            for key, value in job_data.items()
            if key.startswith(HEADER_PREFIX)
        }
        content = None
        if method in BODY_METHODS:
            content = job_data.get("body") or ""

        return self._client.build_request(method, url, headers=headers, content=content)

    def _send(self, request: httpx.Request) -> tuple[int, str]:
        """Send and read the body, failing once ``call_timeout`` has elapsed in total.

        httpx timeouts apply per read, so a body trickled in small chunks is
        checked against a deadline between chunks.
        """
        deadline = time.monotonic() + self.call_timeout
        response = self._client.send(request, stream=True)
        try:
            chunks = []
            for chunk in response.iter_bytes():
                chunks.append(chunk)
                if time.monotonic() > deadline:
                    raise httpx.ReadTimeout(
                        f"Call exceeded {self.call_timeout}s total timeout", request=request
                    )
        finally:
            response.close()
        body = b"".join(chunks).decode(response.charset_encoding or "utf-8", errors="replace")
        return response.status_code, body

    def close(self) -> None:
        """Close the underlying HTTP client."""
        self._client.close()

    def __repr__(self) -> str:
        return (
            f"HttpJobExecutor(connect_timeout={self.connect_timeout}, "
            f"call_timeout={self.call_timeout}, status_failure={self.status_failure})"
        )
