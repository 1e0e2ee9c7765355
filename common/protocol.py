"""Broadcast message definitions for cross-context synchronization.

Every message is a flat JSON object ``{"action": ..., ...payload}``. Actions
for a dataset kind are derived from the kind name, e.g. ``check_loans`` and
``response_loans`` for kind ``loans``.
"""

import json
from dataclasses import dataclass, field
from typing import Any, Dict, List

PING = "ping"
PONG = "pong"
ANNOUNCE = "announce"

CONTEXT_ID_FIELD = "id"
RESULT_FIELD = "result"


def request_action(kind: str) -> str:
    return f"request_{kind}"


def response_action(kind: str) -> str:
    return f"response_{kind}"


def check_action(kind: str) -> str:
    return f"check_{kind}"


@dataclass
class PeerMessage:
    """A single broadcast message."""
    action: str
    payload: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Flatten into the wire shape."""
        data = dict(self.payload)
        data['action'] = self.action
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'PeerMessage':
        """
        Build from the wire shape.

        Raises:
            ValueError: If the object has no string 'action' field
        """
        if not isinstance(data, dict):
            raise ValueError(f"Message must be an object, got {type(data).__name__}")
        action = data.get('action')
        if not isinstance(action, str) or not action:
            raise ValueError("Message has no action")
        payload = {k: v for k, v in data.items() if k != 'action'}
        return cls(action=action, payload=payload)

    def to_json(self) -> bytes:
        """Serialize to JSON bytes."""
        return json.dumps(self.to_dict()).encode('utf-8')

    @classmethod
    def from_json(cls, data: bytes) -> 'PeerMessage':
        """Deserialize from JSON bytes."""
        return cls.from_dict(json.loads(data))

    @property
    def context_id(self):
        return self.payload.get(CONTEXT_ID_FIELD)

    @property
    def result(self) -> List[Any]:
        result = self.payload.get(RESULT_FIELD)
        return result if isinstance(result, list) else []


def ping() -> PeerMessage:
    return PeerMessage(PING)


def pong() -> PeerMessage:
    return PeerMessage(PONG)


def announce(context_id: str) -> PeerMessage:
    return PeerMessage(ANNOUNCE, {CONTEXT_ID_FIELD: context_id})


def request_dataset(kind: str, context_id: str) -> PeerMessage:
    return PeerMessage(request_action(kind), {CONTEXT_ID_FIELD: context_id})


def dataset_response(kind: str, records: List[Any], context_id: str) -> PeerMessage:
    """Full dataset reply. Carries the responder id, which check replies never do."""
    return PeerMessage(
        response_action(kind),
        {RESULT_FIELD: list(records), CONTEXT_ID_FIELD: context_id}
    )


def check_request(kind: str, candidates: List[Any]) -> PeerMessage:
    """Candidates travel under a field named after the kind, e.g. {'loans': [...]}."""
    return PeerMessage(check_action(kind), {kind: list(candidates)})


def check_response(kind: str, allowed: List[Any]) -> PeerMessage:
    return PeerMessage(response_action(kind), {RESULT_FIELD: list(allowed)})


def check_candidates(message: PeerMessage, kind: str) -> List[Any]:
    candidates = message.payload.get(kind)
    return candidates if isinstance(candidates, list) else []


def is_dataset_response(message: PeerMessage, kind: str) -> bool:
    return (
        message.action == response_action(kind)
        and CONTEXT_ID_FIELD in message.payload
    )


def is_check_response(message: PeerMessage, kind: str) -> bool:
    return (
        message.action == response_action(kind)
        and CONTEXT_ID_FIELD not in message.payload
    )
