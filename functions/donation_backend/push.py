"""
Push delivery through Firebase Cloud Messaging and an in-memory test double.
"""

from __future__ import annotations

import logging
import threading
import time
import uuid
from dataclasses import dataclass, field
from typing import Optional, Protocol

from firebase_admin import exceptions as firebase_exceptions
from firebase_admin import messaging

from shared.constants import MULTICAST_MAX_TOKENS

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PushMessage:
    title: str
    body: str
    data: dict = field(default_factory=dict)

    def string_data(self) -> dict[str, str]:
        """FCM data payloads only carry string values."""
        return {
            key: str(value).lower() if isinstance(value, bool) else str(value)
            for key, value in self.data.items()
            if value is not None
        }


@dataclass(frozen=True)
class PushReceipt:
    token: str
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None


class PushChannel(Protocol):
    """Token-addressed push delivery."""

    supports_multicast: bool

    def send(self, message: PushMessage, token: str) -> PushReceipt:
        ...

    def send_multicast(
        self, message: PushMessage, tokens: list[str]
    ) -> list[PushReceipt]:
        ...


class FcmPushChannel:
    """
    Firebase Cloud Messaging channel. Errors are reported as failed receipts
    so one bad token never aborts delivery to the others.
    """

    supports_multicast = True

    def __init__(self, app=None):
        self._app = app

    def _notification(self, message: PushMessage) -> messaging.Notification:
        return messaging.Notification(title=message.title, body=message.body)

    def send(self, message: PushMessage, token: str) -> PushReceipt:
        fcm_message = messaging.Message(
            notification=self._notification(message),
            data=message.string_data(),
            token=token,
        )
        try:
            message_id = messaging.send(fcm_message, app=self._app)
        except (firebase_exceptions.FirebaseError, ValueError) as e:
            return PushReceipt(token=token, success=False, error=str(e))
        return PushReceipt(token=token, success=True, message_id=message_id)

    def send_multicast(
        self, message: PushMessage, tokens: list[str]
    ) -> list[PushReceipt]:
        receipts: list[PushReceipt] = []
        for start in range(0, len(tokens), MULTICAST_MAX_TOKENS):
            chunk = tokens[start : start + MULTICAST_MAX_TOKENS]
            receipts.extend(self._send_chunk(message, chunk))
        return receipts

    def _send_chunk(self, message: PushMessage, tokens: list[str]) -> list[PushReceipt]:
        multicast = messaging.MulticastMessage(
            tokens=tokens,
            notification=self._notification(message),
            data=message.string_data(),
        )
        try:
            batch = messaging.send_each_for_multicast(multicast, app=self._app)
        except (firebase_exceptions.FirebaseError, ValueError) as e:
            logger.error("Multicast delivery to %d tokens failed: %s", len(tokens), e)
            return [
                PushReceipt(token=token, success=False, error=str(e)) for token in tokens
            ]
        receipts = []
        for token, response in zip(tokens, batch.responses):
            if response.success:
                receipts.append(
                    PushReceipt(
                        token=token, success=True, message_id=response.message_id
                    )
                )
            else:
                receipts.append(
                    PushReceipt(token=token, success=False, error=str(response.exception))
                )
        return receipts


@dataclass
class InMemoryPushChannel:
    """Test double that records deliveries instead of sending them."""

    supports_multicast: bool = True
    failing_tokens: set = field(default_factory=set)
    # Tokens whose delivery sleeps this long before succeeding.
    slow_tokens: dict = field(default_factory=dict)
    sent: list = field(default_factory=list)
    multicast_calls: int = 0

    def __post_init__(self):
        self._lock = threading.Lock()

    def send(self, message: PushMessage, token: str) -> PushReceipt:
        delay = self.slow_tokens.get(token)
        if delay:
            time.sleep(delay)
        if token in self.failing_tokens:
            return PushReceipt(token=token, success=False, error="unregistered token")
        with self._lock:
            self.sent.append((token, message))
        return PushReceipt(token=token, success=True, message_id=uuid.uuid4().hex)

    def send_multicast(
        self, message: PushMessage, tokens: list[str]
    ) -> list[PushReceipt]:
        with self._lock:
            self.multicast_calls += 1
        return [self.send(message, token) for token in tokens]

    def tokens_sent(self) -> list[str]:
        with self._lock:
            return [token for token, _ in self.sent]
