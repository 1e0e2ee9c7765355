"""HTTP client for inspecting dataset source endpoints."""

import time
import uuid
from typing import Optional

import httpx

from common.logging_config import get_logger
from cli.config import Config
from cli.constants import GREEN, RED, RESET
from cli.utils import format_file_size

logger = get_logger(__name__)


class SourceClient:
    """HTTP client for dataset sources with retry logic and error handling."""

    def __init__(self, config: Config):
        """
        Initialize source client.

        Args:
            config: Configuration instance
        """
        self.config = config
        self.session = httpx.Client(timeout=config.get_timeout())
        self.request_id = None

    def close(self) -> None:
        self.session.close()

    def _request_with_retry(
        self,
        method: str,
        url: str,
        max_retries: Optional[int] = None,
        **kwargs
    ) -> httpx.Response:
        """
        Make HTTP request with retry logic on 5xx errors and network failures.

        Args:
            method: HTTP method (GET, HEAD)
            url: Absolute URL
            max_retries: Max retry attempts (uses config default if None)
            **kwargs: Additional arguments to pass to httpx request

        Returns:
            HTTP response object

        Raises:
            ConnectionError: If max retries exceeded or connection fails
        """
        retry_config = self.config.get_retry_config()
        max_retries = max_retries if max_retries is not None else retry_config['max_retries']
        backoff = retry_config['retry_backoff_multiplier']

        last_exception = None

        self.request_id = str(uuid.uuid4())
        if 'headers' not in kwargs:
            kwargs['headers'] = {}
        kwargs['headers']['X-Request-ID'] = self.request_id

        logger.debug(f"Making request: {method} {url} [request_id={self.request_id}]")

        for attempt in range(max_retries + 1):
            try:
                response = self.session.request(method, url, **kwargs)

                logger.debug(
                    f"Response received: {method} {url} status={response.status_code} "
                    f"[request_id={self.request_id}]"
                )

                if response.status_code >= 500 and attempt < max_retries:
                    delay = backoff ** attempt
                    logger.warning(
                        f"Server error (attempt {attempt + 1}/{max_retries + 1}): "
                        f"{method} {url} status={response.status_code}, retrying in {delay}s"
                    )
                    time.sleep(delay)
                    continue

                return response

            except (httpx.ConnectError, httpx.TimeoutException) as e:
                last_exception = e
                if attempt < max_retries:
                    delay = backoff ** attempt
                    logger.warning(
                        f"Network error (attempt {attempt + 1}/{max_retries + 1}): "
                        f"{method} {url} error={type(e).__name__}, retrying in {delay}s"
                    )
                    time.sleep(delay)
                    continue
                logger.error(f"Network error (max retries exceeded): {method} {url} error={e}")

        if isinstance(last_exception, httpx.TimeoutException):
            raise ConnectionError("Request timed out. Source may be overloaded.")
        raise ConnectionError("Cannot connect to dataset source. Is it running?")

    def inspect(self, url: str) -> str:
        """
        Report what a ranged or revalidating fetch would see at url.

        Returns:
            Human-readable summary
        """
        try:
            response = self._request_with_retry("HEAD", url)
        except ConnectionError as e:
            return f"{RED}{e}{RESET}"

        if response.status_code >= 400:
            return f"{RED}HEAD {url} returned {response.status_code}{RESET}"

        size = response.headers.get("content-length")
        etag = response.headers.get("etag")
        ranges = response.headers.get("accept-ranges", "none")

        lines = [f"{GREEN}{url}{RESET}"]
        lines.append(f"  Status:        {response.status_code}")
        lines.append(
            f"  Size:          {format_file_size(int(size)) if size and size.isdigit() else 'unknown'}"
        )
        lines.append(f"  ETag:          {etag or 'none'}")
        lines.append(f"  Accept-Ranges: {ranges}")
        if size and etag:
            lines.append("  Ranged download supported")
        else:
            lines.append("  Ranged download NOT supported (needs Content-Length and ETag)")
        return "\n".join(lines)
