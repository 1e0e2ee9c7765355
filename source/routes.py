"""Dataset source API routes."""

import hashlib
import json
import re
from pathlib import Path
from typing import Optional, Tuple

from fastapi import APIRouter, Request, Response, status

from common.logging_config import get_logger
from source.config import RESTRICTED_FIELD
from source.exceptions import (
    DatasetNotFoundError,
    InvalidDatasetError,
    RangeNotSatisfiableError,
)
from source.schemas import HealthResponse

logger = get_logger(__name__)

router = APIRouter(tags=["Datasets"])

RANGE_PATTERN = re.compile(r"^bytes=(\d*)-(\d*)$")


def make_etag(body: bytes) -> str:
    """Strong ETag: quoted MD5 of the body."""
    return f'"{hashlib.md5(body).hexdigest()}"'


def parse_range(header: str, size: int) -> Optional[Tuple[int, int]]:
    """
    Parse a single-range 'bytes=a-b' header into inclusive offsets.

    Returns:
        (start, end) tuple, or None if the header is not a byte range

    Raises:
        RangeNotSatisfiableError: If the range lies outside the file
    """
    match = RANGE_PATTERN.match(header.strip())
    if not match:
        return None

    first, last = match.groups()
    if not first and not last:
        return None

    if not first:
        # suffix range: last N bytes
        length = int(last)
        if length == 0 or size == 0:
            raise RangeNotSatisfiableError(f"Range {header} not satisfiable", size)
        return max(size - length, 0), size - 1

    start = int(first)
    end = int(last) if last else size - 1
    if start >= size or end < start:
        raise RangeNotSatisfiableError(f"Range {header} not satisfiable", size)
    return start, min(end, size - 1)


def _data_dir(request: Request) -> Path:
    return Path(request.app.state.data_dir)


def _resolve(request: Request, name: str) -> Path:
    base_dir = _data_dir(request).resolve()
    path = (base_dir / name).resolve()
    try:
        path.relative_to(base_dir)
    except ValueError:
        raise DatasetNotFoundError(f"{name} is outside the data directory")
    if not path.is_file():
        raise DatasetNotFoundError(f"{name} not found")
    return path


@router.get("/", response_model=HealthResponse)
async def health(request: Request):
    """
    Health check listing the datasets available under /api.
    """
    data_dir = _data_dir(request)
    datasets = sorted(p.stem for p in data_dir.glob("*.json")) if data_dir.is_dir() else []
    return HealthResponse(status="ok", datasets=datasets)


@router.get("/api/{kind}")
async def get_dataset(request: Request, kind: str, type: Optional[str] = None):
    """
    Return the records of <data_dir>/<kind>.json.

    Parameters:
        - kind: Dataset name
        - type: Only return records whose 'type' field equals this value

    Entries flagged 'restricted' are never returned.

    Raises:
        - 404: Dataset not found
        - 500: Dataset file is not a JSON array
    """
    path = _resolve(request, f"{kind}.json")

    try:
        records = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise InvalidDatasetError(f"{kind}.json is not valid JSON: {e}")
    if not isinstance(records, list):
        raise InvalidDatasetError(f"{kind}.json is not a JSON array")

    filtered = [
        r for r in records
        if not (isinstance(r, dict) and r.get(RESTRICTED_FIELD))
    ]
    if type is not None:
        filtered = [r for r in filtered if isinstance(r, dict) and r.get("type") == type]

    body = json.dumps(filtered).encode("utf-8")
    etag = make_etag(body)

    if request.headers.get("if-none-match") == etag:
        return Response(status_code=status.HTTP_304_NOT_MODIFIED, headers={"ETag": etag})

    logger.debug(f"Serving {len(filtered)}/{len(records)} records of {kind}")
    return Response(content=body, media_type="application/json", headers={"ETag": etag})


@router.api_route("/files/{name}", methods=["GET", "HEAD"])
async def get_file(request: Request, name: str):
    """
    Serve a raw dataset file with ETag, Content-Length and Range support.

    Raises:
        - 404: File not found
        - 416: Range not satisfiable
    """
    path = _resolve(request, name)
    body = path.read_bytes()
    size = len(body)
    etag = make_etag(body)
    headers = {"ETag": etag, "Accept-Ranges": "bytes"}

    if request.method == "HEAD":
        headers["Content-Length"] = str(size)
        return Response(status_code=status.HTTP_200_OK, headers=headers)

    if request.headers.get("if-none-match") == etag:
        return Response(status_code=status.HTTP_304_NOT_MODIFIED, headers={"ETag": etag})

    range_header = request.headers.get("range")
    byte_range = parse_range(range_header, size) if range_header else None

    if byte_range is None:
        return Response(content=body, media_type="text/plain", headers=headers)

    start, end = byte_range
    headers["Content-Range"] = f"bytes {start}-{end}/{size}"
    return Response(
        content=body[start:end + 1],
        status_code=status.HTTP_206_PARTIAL_CONTENT,
        media_type="text/plain",
        headers=headers
    )
