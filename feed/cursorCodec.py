"""
Opaque pagination cursors.

A cursor is a versioned, self-describing token:

    "c1." + base64url(json({"v": 1, "t": <ISO-8601>, "k": <type>, "i": <id>}))

Tokens with an unknown prefix or version fail with InvalidCursor rather than
resuming from a guessed position.
"""
import base64
import binascii
import json
import logging

from feed.errors import InvalidCursor
from feed.timeUtils import parse_timestamp, to_utc
from feed.types import ContentType, CursorPosition

logger = logging.getLogger(__name__)

CURSOR_VERSION = 1
CURSOR_PREFIX = f"c{CURSOR_VERSION}."


def is_cursor_token(value: str) -> bool:
    return isinstance(value, str) and value.startswith(CURSOR_PREFIX)


def encode_cursor(position: CursorPosition) -> str:
    payload = {
        'v': CURSOR_VERSION,
        't': to_utc(position.created_at).isoformat(),
        'k': position.type.value,
        'i': position.id,
    }
    raw = json.dumps(payload, separators=(',', ':'), sort_keys=True).encode('utf-8')
    return CURSOR_PREFIX + base64.urlsafe_b64encode(raw).decode('ascii').rstrip('=')


def decode_cursor(cursor: str) -> CursorPosition:
    """
    Decode a cursor token into a stream position

    Raises:
        InvalidCursor: the token is malformed, from an unknown version, or
            describes an impossible position
    """
    if not isinstance(cursor, str) or not cursor:
        raise InvalidCursor("Cursor must be a non-empty string")

    if not cursor.startswith(CURSOR_PREFIX):
        raise InvalidCursor("Unsupported cursor version")

    body = cursor[len(CURSOR_PREFIX):]
    try:
        padded = body + '=' * (-len(body) % 4)
        payload = json.loads(base64.urlsafe_b64decode(padded.encode('ascii')))
    except (binascii.Error, UnicodeError, ValueError) as e:
        logger.debug(f"Cursor decode failed: {e}")
        raise InvalidCursor("Cursor is not a valid token")

    if not isinstance(payload, dict) or payload.get('v') != CURSOR_VERSION:
        raise InvalidCursor("Unsupported cursor version")

    created_raw = payload.get('t')
    content_id = payload.get('i')
    type_raw = payload.get('k')

    if not isinstance(created_raw, str) or not isinstance(content_id, str) or not content_id:
        raise InvalidCursor("Cursor is missing its position fields")

    try:
        content_type = ContentType(type_raw)
    except ValueError:
        raise InvalidCursor(f"Cursor has unknown content type {type_raw!r}")

    created_at = parse_timestamp(created_raw)
    if created_at is None or not _has_offset(created_raw):
        raise InvalidCursor("Cursor has an invalid timestamp")

    return CursorPosition(created_at=created_at, type=content_type, id=content_id)


def _has_offset(timestamp: str) -> bool:
    """Encoded timestamps always carry a UTC offset; naive ones were not produced here"""
    tail = timestamp[10:]
    return timestamp.endswith('Z') or '+' in tail or '-' in tail
