"""
Remote dataset retrieval over HTTP.

Supports a plain GET, a conditional GET revalidated by ETag, and a ranged
download for payloads too large to pull in one response. The fetcher never
retries; failures propagate to the cache manager, which keeps serving the
dataset it already has.
"""

import asyncio
import json
from typing import Any, Callable, List, Optional

import aiohttp

from common.constants import DOWNLOAD_CHUNK_SIZE_BYTES, FETCH_TIMEOUT_SECONDS
from common.exceptions import MissingHeaderError, NetworkError, ParseError
from common.logging_config import get_logger
from common.types import FetchResult

logger = get_logger(__name__)

ProgressCallback = Callable[[int, int], None]

RECORD_LIST_FIELDS = ("data", "items", "records", "results")


def _split_delimited(text: str) -> List[str]:
    tokens = []
    for line in text.splitlines():
        for token in line.split(","):
            token = token.strip().strip('"').strip()
            if token:
                tokens.append(token)
    return tokens


def parse_payload(payload) -> List[Any]:
    """
    Turn a response body into a list of records.

    Structured JSON is tried first: an array is the record list, an object
    contributes the first list found under one of RECORD_LIST_FIELDS or is
    itself the only record. Anything else is read as delimited text split
    on newlines and commas, with whitespace and double quotes trimmed and
    empty tokens dropped.

    Args:
        payload: Response body as bytes or str

    Returns:
        List of records

    Raises:
        ParseError: If the body is not valid UTF-8 text
    """
    if isinstance(payload, (bytes, bytearray)):
        try:
            text = bytes(payload).decode('utf-8-sig')
        except UnicodeDecodeError as e:
            raise ParseError(f"Payload is not UTF-8 text: {e}") from e
    else:
        text = payload

    text = text.strip()
    if not text:
        return []

    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        return _split_delimited(text)

    if isinstance(data, list):
        return data

    if isinstance(data, dict):
        for name in RECORD_LIST_FIELDS:
            if isinstance(data.get(name), list):
                return data[name]
        return [data]

    # JSON scalar: a single identifier
    return _split_delimited(text)


def _parse_or_empty(body: bytes, url: str) -> List[Any]:
    try:
        return parse_payload(body)
    except ParseError as e:
        logger.error(f"Could not parse payload from {url}: {e}")
        return []


class RemoteFetcher:
    """
    Asynchronous HTTP client for the dataset source.
    """

    def __init__(
        self,
        timeout: float = FETCH_TIMEOUT_SECONDS,
        download_chunk_size: int = DOWNLOAD_CHUNK_SIZE_BYTES
    ):
        if download_chunk_size < 1:
            raise ValueError("Download chunk size must be at least 1 byte")
        self.timeout = timeout
        self.download_chunk_size = download_chunk_size

    def _session(self) -> aiohttp.ClientSession:
        return aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self.timeout))

    async def fetch_all(self, url: str) -> List[Any]:
        """
        Download and parse the whole dataset.

        Raises:
            NetworkError: On a non-2xx answer or a transport failure
        """
        try:
            async with self._session() as session:
                async with session.get(url) as resp:
                    if not 200 <= resp.status < 300:
                        raise NetworkError(
                            f"GET {url} returned {resp.status}", status=resp.status
                        )
                    body = await resp.read()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise NetworkError(f"GET {url} failed: {e}") from e

        records = _parse_or_empty(body, url)
        logger.info(f"Fetched {len(records)} records from {url} ({len(body)} bytes)")
        return records

    async def fetch_if_changed(
        self,
        url: str,
        previous_token: Optional[str] = None,
        on_progress: Optional[ProgressCallback] = None,
        ranged: bool = False
    ) -> FetchResult:
        """
        Download the dataset only if its change token differs from previous_token.

        Args:
            url: Dataset URL
            previous_token: ETag of the stored dataset, if any
            on_progress: Called with (received_bytes, total_bytes)
            ranged: Use HEAD plus sequential Range requests

        Returns:
            FetchResult; downloaded is False when the token matched

        Raises:
            NetworkError: On a non-success answer or a transport failure
            MissingHeaderError: In ranged mode, if size or ETag is not reported
        """
        try:
            async with self._session() as session:
                if ranged:
                    return await self._ranged_fetch(session, url, previous_token, on_progress)
                return await self._conditional_fetch(session, url, previous_token, on_progress)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise NetworkError(f"Fetch of {url} failed: {e}") from e

    async def _conditional_fetch(
        self,
        session: aiohttp.ClientSession,
        url: str,
        previous_token: Optional[str],
        on_progress: Optional[ProgressCallback]
    ) -> FetchResult:
        headers = {"If-None-Match": previous_token} if previous_token else {}

        async with session.get(url, headers=headers) as resp:
            if resp.status == 304:
                logger.info(f"{url} unchanged (304)")
                return FetchResult(downloaded=False, records=None, token=previous_token)
            if not 200 <= resp.status < 300:
                raise NetworkError(f"GET {url} returned {resp.status}", status=resp.status)

            token = resp.headers.get("ETag")
            if previous_token and token == previous_token:
                logger.info(f"{url} unchanged (token {token})")
                return FetchResult(downloaded=False, records=None, token=token)

            body = await resp.read()

        if on_progress:
            on_progress(len(body), len(body))

        records = _parse_or_empty(body, url)
        logger.info(f"Fetched {len(records)} records from {url} [token={token}]")
        return FetchResult(downloaded=True, records=records, token=token)

    async def _ranged_fetch(
        self,
        session: aiohttp.ClientSession,
        url: str,
        previous_token: Optional[str],
        on_progress: Optional[ProgressCallback]
    ) -> FetchResult:
        async with session.head(url) as resp:
            if not 200 <= resp.status < 300:
                raise NetworkError(f"HEAD {url} returned {resp.status}", status=resp.status)
            size_header = resp.headers.get("Content-Length")
            token = resp.headers.get("ETag")

        if not size_header or not token:
            raise MissingHeaderError(
                f"HEAD {url} did not report Content-Length and ETag "
                f"(Content-Length={size_header!r}, ETag={token!r})"
            )

        try:
            total = int(size_header)
        except ValueError as e:
            raise MissingHeaderError(f"Invalid Content-Length {size_header!r}") from e

        if previous_token and token == previous_token:
            logger.info(f"{url} unchanged (token {token})")
            return FetchResult(downloaded=False, records=None, token=token)

        buffer = bytearray()
        while len(buffer) < total:
            start = len(buffer)
            end = min(start + self.download_chunk_size, total) - 1

            async with session.get(url, headers={"Range": f"bytes={start}-{end}"}) as resp:
                if resp.status == 200:
                    # Range ignored: the full body arrived in one response
                    buffer = bytearray(await resp.read())
                    if on_progress:
                        on_progress(len(buffer), len(buffer))
                    break
                if resp.status != 206:
                    raise NetworkError(
                        f"Range GET {url} bytes={start}-{end} returned {resp.status}",
                        status=resp.status
                    )
                part = await resp.read()

            if not part:
                raise NetworkError(f"Range GET {url} bytes={start}-{end} returned no data")

            buffer.extend(part)
            if on_progress:
                on_progress(len(buffer), total)
            logger.debug(f"Downloaded {len(buffer)}/{total} bytes of {url}")

        records = _parse_or_empty(bytes(buffer), url)
        logger.info(
            f"Fetched {len(records)} records from {url} in ranged mode "
            f"[{total} bytes, token={token}]"
        )
        return FetchResult(downloaded=True, records=records, token=token)
