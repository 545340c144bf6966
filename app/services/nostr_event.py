import hashlib
import json
import logging
import re
import time
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Optional, Sequence, Tuple

from secp256k1 import PrivateKey, PublicKey

from app.exceptions import MalformedEvent

logger = logging.getLogger(__name__)

KIND_ZAP_REQUEST = 9734
KIND_ZAP_RECEIPT = 9735

_HEX_64 = re.compile(r'^[0-9a-f]{64}$')
_HEX_128 = re.compile(r'^[0-9a-f]{128}$')


def _freeze_tags(tags: Iterable[Sequence[str]]) -> Tuple[Tuple[str, ...], ...]:
    return tuple(tuple(tag) for tag in tags)


def _is_utf8(value: str) -> bool:
    # json.loads accepts lone surrogate escapes such as "\ud800"
    try:
        value.encode('utf-8')
    except UnicodeEncodeError:
        return False
    return True


@dataclass(frozen=True)
class Event:
    """A signed nostr event (NIP-01). Instances are never mutated after signing."""

    id: str
    pubkey: str
    created_at: int
    kind: int
    tags: Tuple[Tuple[str, ...], ...]
    content: str
    sig: str

    @staticmethod
    def compute_id(pubkey: str, created_at: int, kind: int, tags: Iterable[Sequence[str]], content: str) -> str:
        """Create event ID (hash of serialized event data)"""
        serialized = json.dumps([
            0,  # Reserved
            pubkey,
            created_at,
            kind,
            [list(tag) for tag in tags],
            content
        ], separators=(',', ':'), ensure_ascii=False)

        return hashlib.sha256(serialized.encode('utf-8')).hexdigest()

    @classmethod
    def sign(
        cls,
        private_key: PrivateKey,
        public_key_hex: str,
        kind: int,
        content: str,
        tags: Iterable[Sequence[str]],
        created_at: Optional[int] = None
    ) -> "Event":
        """Build and sign an event with the given key"""
        frozen_tags = _freeze_tags(tags)
        if created_at is None:
            created_at = int(time.time())

        event_id = cls.compute_id(public_key_hex, created_at, kind, frozen_tags, content)
        signature = private_key.schnorr_sign(bytes.fromhex(event_id), None, raw=True)

        return cls(
            id=event_id,
            pubkey=public_key_hex,
            created_at=created_at,
            kind=kind,
            tags=frozen_tags,
            content=content,
            sig=signature.hex()
        )

    def verify(self) -> bool:
        """Check the id matches the content and the signature matches the pubkey"""
        try:
            if self.id != self.compute_id(self.pubkey, self.created_at, self.kind, self.tags, self.content):
                return False
        except UnicodeEncodeError:
            return False

        try:
            # x-only keys: either parity prefix yields the same BIP-340 key
            public_key = PublicKey(b'\x02' + bytes.fromhex(self.pubkey), raw=True)
            return bool(public_key.schnorr_verify(bytes.fromhex(self.id), bytes.fromhex(self.sig), None, raw=True))
        except Exception as e:
            logger.debug(f"Signature check failed for event {self.id[:16]}...: {str(e)}")
            return False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "pubkey": self.pubkey,
            "created_at": self.created_at,
            "kind": self.kind,
            "tags": [list(tag) for tag in self.tags],
            "content": self.content,
            "sig": self.sig
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False)

    @classmethod
    def from_dict(cls, data: Any) -> "Event":
        """Validate the structure of a decoded event object"""
        if not isinstance(data, dict):
            raise MalformedEvent("Event must be a JSON object")

        missing = [k for k in ("id", "pubkey", "created_at", "kind", "tags", "content", "sig") if k not in data]
        if missing:
            raise MalformedEvent(f"Event missing fields: {', '.join(missing)}")

        for field, pattern in (("id", _HEX_64), ("pubkey", _HEX_64), ("sig", _HEX_128)):
            value = data[field]
            if not isinstance(value, str) or not pattern.match(value):
                raise MalformedEvent(f"Event field '{field}' is not valid lowercase hex")

        for field in ("created_at", "kind"):
            value = data[field]
            if isinstance(value, bool) or not isinstance(value, int) or value < 0:
                raise MalformedEvent(f"Event field '{field}' must be a non-negative integer")

        if not isinstance(data["content"], str):
            raise MalformedEvent("Event content must be a string")
        if not _is_utf8(data["content"]):
            raise MalformedEvent("Event content is not valid UTF-8")

        tags = data["tags"]
        if not isinstance(tags, list):
            raise MalformedEvent("Event tags must be an array")
        for tag in tags:
            if not isinstance(tag, list) or not tag or not all(isinstance(v, str) for v in tag):
                raise MalformedEvent("Each tag must be a non-empty array of strings")
            if not all(_is_utf8(v) for v in tag):
                raise MalformedEvent("Tag values must be valid UTF-8")

        return cls(
            id=data["id"],
            pubkey=data["pubkey"],
            created_at=data["created_at"],
            kind=data["kind"],
            tags=_freeze_tags(tags),
            content=data["content"],
            sig=data["sig"]
        )

    @classmethod
    def from_json(cls, text: str) -> "Event":
        try:
            data = json.loads(text)
        except (TypeError, ValueError) as e:
            raise MalformedEvent(f"Description is not JSON: {str(e)}")
        except RecursionError:
            raise MalformedEvent("Description is nested too deeply")
        return cls.from_dict(data)


def event_message(event: Event) -> str:
    """Client-to-relay publish frame"""
    return json.dumps(["EVENT", event.to_dict()], ensure_ascii=False)
