"""Message classifier: raw stream frames → typed messages.

Responsible for:
- Decoding text/bytes frames as JSON
- Routing on the ``type`` discriminant to a message variant
- Turning malformed input into ParseError values instead of exceptions
"""

from __future__ import annotations

import json
import logging
from typing import Any, Mapping

from pydantic import ValidationError

from ...errors import ErrorCode, ParseError
from ..models.messages import (
    GENERIC_MESSAGES,
    MessageRegistry,
    StreamMessage,
    UnknownMessage,
    parse_message,
)

logger = logging.getLogger(__name__)


class MessageClassifier:
    """Classify inbound frames for one dashboard's message registry.

    Usage:
        classifier = MessageClassifier(EVENT_MESSAGES)
        result = classifier.classify('{"type": "funnel", "stage": "a", "count": 3}')
        if not isinstance(result, ParseError):
            actions = result.to_actions()
    """

    def __init__(self, registry: MessageRegistry | None = None) -> None:
        self._registry = registry if registry is not None else GENERIC_MESSAGES
        self._messages_classified: int = 0
        self._parse_errors: int = 0
        self._unknown_messages: int = 0

    @property
    def messages_classified(self) -> int:
        """Frames that produced a message (unknown ones included)."""
        return self._messages_classified

    @property
    def parse_errors(self) -> int:
        return self._parse_errors

    @property
    def unknown_messages(self) -> int:
        return self._unknown_messages

    def _fail(self, message: str, code: ErrorCode, **details: Any) -> ParseError:
        self._parse_errors += 1
        logger.warning("Dropping stream frame: %s", message)
        return ParseError(message, code=code, **details)

    def classify(self, raw: str | bytes | Mapping[str, Any]) -> StreamMessage | ParseError:
        """Classify one frame. Never raises for bad input."""
        if isinstance(raw, (bytes, bytearray)):
            try:
                raw = raw.decode("utf-8")
            except UnicodeDecodeError as e:
                return self._fail(f"Frame is not UTF-8: {e}", ErrorCode.INVALID_JSON)

        if isinstance(raw, str):
            try:
                data = json.loads(raw)
            except json.JSONDecodeError as e:
                return self._fail(f"JSON decode error: {e}", ErrorCode.INVALID_JSON)
        else:
            data = raw

        if not isinstance(data, Mapping):
            return self._fail(
                f"Frame is not an object: {type(data).__name__}", ErrorCode.NOT_AN_OBJECT
            )

        discriminant = data.get("type")
        if not isinstance(discriminant, str) or not discriminant:
            return self._fail("Frame has no type discriminant", ErrorCode.MISSING_DISCRIMINANT)

        try:
            message = parse_message(dict(data), self._registry)
        except ValidationError as e:
            return self._fail(
                f"Invalid {discriminant!r} message: {e.error_count()} field error(s)",
                ErrorCode.INVALID_FIELDS,
                discriminant=discriminant,
            )

        self._messages_classified += 1
        if isinstance(message, UnknownMessage):
            self._unknown_messages += 1
            logger.debug("Unknown stream message type: %s", discriminant)
        return message

    def reset_stats(self) -> None:
        """Reset classification statistics."""
        self._messages_classified = 0
        self._parse_errors = 0
        self._unknown_messages = 0
