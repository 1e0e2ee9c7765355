"""Shared data type definitions (EncryptedBlock, MetaRecord, FetchResult, LoadResult)."""

import base64
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass(frozen=True)
class EncryptedBlock:
    """
    AES-GCM ciphertext together with the nonce it was sealed with.
    """
    ciphertext: bytes
    nonce: bytes

    def to_dict(self) -> Dict[str, str]:
        """Serialize to the persisted text form."""
        return {
            'encryptedData': base64.b64encode(self.ciphertext).decode('ascii'),
            'iv': base64.b64encode(self.nonce).decode('ascii'),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, str]) -> 'EncryptedBlock':
        """Deserialize from the persisted text form."""
        return cls(
            ciphertext=base64.b64decode(data['encryptedData']),
            nonce=base64.b64decode(data['iv']),
        )


@dataclass(frozen=True)
class MetaRecord:
    """
    Control record describing the chunks of one store.

    in_progress is true from the first write of a refresh until every chunk
    has been written, so readers can tell a torn write from valid data.
    """
    chunk_count: int
    in_progress: bool = False
    change_token: Optional[str] = None
    last_updated: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to the persisted form."""
        data: Dict[str, Any] = {
            'chunkCount': self.chunk_count,
            'inProgress': self.in_progress,
        }
        if self.change_token is not None:
            data['changeToken'] = self.change_token
        if self.last_updated is not None:
            data['lastUpdated'] = self.last_updated
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'MetaRecord':
        """Deserialize from the persisted form."""
        last_updated = data.get('lastUpdated')
        return cls(
            chunk_count=int(data.get('chunkCount', 0)),
            in_progress=bool(data.get('inProgress', False)),
            change_token=data.get('changeToken'),
            last_updated=float(last_updated) if last_updated is not None else None,
        )


@dataclass
class FetchResult:
    """
    Outcome of a revalidating fetch.
    """
    downloaded: bool
    records: Optional[List[Any]]
    token: Optional[str]


@dataclass
class LoadResult:
    """
    Dataset reconstructed from the store, with the ordinals of chunks that
    could not be read.
    """
    records: List[Any] = field(default_factory=list)
    missing_chunks: List[int] = field(default_factory=list)
    meta: Optional[MetaRecord] = None

    @property
    def complete(self) -> bool:
        return not self.missing_chunks
