"""
Notification fan-out: recipient resolution, push delivery and the durable
in-app notification record.

`NotificationDispatcher.dispatch` never raises for delivery problems. Push
failures, timeouts, missing user records and failed record writes are logged
and skipped per recipient, so the mutation that triggered the event always
succeeds on its own terms.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import asdict, dataclass, field
from typing import Optional, assert_never

from dacite import Config, from_dict

from donation_backend.errors import ServiceError
from donation_backend.events import (
    DirectMessage,
    DonationCreated,
    DonationStatusChanged,
    DropoffReassigned,
    Event,
    IssueCreated,
    IssueUpdated,
    OrganizationRegistered,
    OrganizationStatusChanged,
    RenderedNotification,
    SupportRequestCreated,
    SupportRequestUpdated,
    render,
)
from donation_backend.push import PushChannel, PushMessage, PushReceipt
from donation_backend.store import DirectoryStore, Document, Filter, utcnow
from shared.firebase_constants import NOTIFICATIONS_COLLECTION, USERS_COLLECTION
from shared.json_utils import convert_keys
from shared.types import NotificationRecord, Role, User


@dataclass
class DispatchResult:
    type: str
    recipients: list[str] = field(default_factory=list)
    delivered: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    notification_ids: list[str] = field(default_factory=list)


def _user_from_document(doc: Document) -> User:
    return from_dict(
        data_class=User,
        data={**convert_keys(doc.data, "camel_to_snake"), "id": doc.id},
        config=Config(check_types=False),
    )


class NotificationDispatcher:
    def __init__(
        self,
        store: DirectoryStore,
        push: PushChannel,
        *,
        push_timeout_seconds: float = 10.0,
        max_workers: int = 8,
        logger: Optional[logging.Logger] = None,
    ):
        self.store = store
        self.push = push
        self.push_timeout_seconds = push_timeout_seconds
        self.max_workers = max_workers
        self.logger = logger or logging.getLogger(__name__)

    def dispatch(self, event: Event) -> DispatchResult:
        rendered = render(event)
        result = DispatchResult(type=rendered.type)

        try:
            recipient_ids = self._recipients(event)
        except ServiceError as e:
            self.logger.error(
                "Could not resolve recipients for %s: %s", rendered.type, e.message
            )
            return result

        eligible: list[User] = []
        for user_id in recipient_ids:
            user = self._load_recipient(user_id, rendered.type)
            if user is None:
                result.skipped.append(user_id)
            else:
                eligible.append(user)
        result.recipients = [user.id for user in eligible]
        if not eligible:
            self.logger.info("No eligible recipients for %s", rendered.type)
            return result

        receipts = self._deliver(rendered, eligible)
        for user in eligible:
            receipt = receipts.get(user.id)
            if receipt is not None and receipt.success:
                result.delivered.append(user.id)
            else:
                result.failed.append(user.id)

        # Records are written whether or not the push went through, so the
        # in-app list still shows the event when a token has gone stale.
        for user in eligible:
            notification_id = self._record(rendered, user.id)
            if notification_id:
                result.notification_ids.append(notification_id)

        self.logger.info(
            "Dispatched %s to %d recipient(s): %d delivered, %d failed, %d skipped",
            rendered.type,
            len(result.recipients),
            len(result.delivered),
            len(result.failed),
            len(result.skipped),
        )
        return result

    def _recipients(self, event: Event) -> list[str]:
        """Deduplicated recipient ids, in resolution order."""
        match event:
            case (
                DonationCreated()
                | SupportRequestCreated()
                | IssueCreated()
                | OrganizationRegistered()
            ):
                ids = self._administrator_ids()
            case DonationStatusChanged():
                ids = [event.owner_id]
            case SupportRequestUpdated() | IssueUpdated():
                ids = [event.submitter_id]
            case OrganizationStatusChanged():
                ids = [event.user_id]
            case DropoffReassigned():
                ids = [event.donor_id]
            case DirectMessage():
                ids = [event.recipient_id]
            case _:
                assert_never(event)
        return list(dict.fromkeys(user_id for user_id in ids if user_id))

    def _administrator_ids(self) -> list[str]:
        # Always a fresh read: admin membership can change between dispatches.
        docs = self.store.query(
            USERS_COLLECTION, filters=[Filter("role", "==", Role.ADMINISTRATOR.value)]
        )
        return [doc.id for doc in docs]

    def _load_recipient(self, user_id: str, notification_type: str) -> Optional[User]:
        try:
            doc = self.store.get(USERS_COLLECTION, user_id)
        except ServiceError as e:
            self.logger.error(
                "Lookup of recipient %s for %s failed: %s",
                user_id,
                notification_type,
                e.message,
            )
            return None
        if doc is None:
            self.logger.warning(
                "Recipient %s for %s not found", user_id, notification_type
            )
            return None
        user = _user_from_document(doc)
        if not user.notifications_enabled:
            self.logger.info("Notifications disabled for user %s", user_id)
            return None
        if not user.fcm_token:
            self.logger.info("No FCM token for user %s", user_id)
            return None
        return user

    def _deliver(
        self, rendered: RenderedNotification, users: list[User]
    ) -> dict[str, PushReceipt]:
        message = PushMessage(
            title=rendered.title,
            body=rendered.body,
            data={"type": rendered.type.value, **rendered.data},
        )
        if self.push.supports_multicast:
            return self._deliver_multicast(message, users, rendered.type)
        return self._deliver_each(message, users, rendered.type)

    def _deliver_multicast(
        self, message: PushMessage, users: list[User], notification_type: str
    ) -> dict[str, PushReceipt]:
        tokens = [user.fcm_token for user in users]
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="push")
        try:
            future = executor.submit(self.push.send_multicast, message, tokens)
            done, _ = wait([future], timeout=self.push_timeout_seconds)
        finally:
            executor.shutdown(wait=False, cancel_futures=True)
        if not done:
            self.logger.warning(
                "Multicast push to %d recipient(s) for %s timed out after %.1fs",
                len(users),
                notification_type,
                self.push_timeout_seconds,
            )
            return {}
        try:
            receipts = future.result()
        except Exception as e:
            self.logger.error("Multicast push for %s failed: %s", notification_type, e)
            return {}
        by_user = {}
        for user, receipt in zip(users, receipts):
            if not receipt.success:
                self.logger.warning(
                    "Push to %s for %s failed: %s",
                    user.id,
                    notification_type,
                    receipt.error,
                )
            by_user[user.id] = receipt
        return by_user

    def _deliver_each(
        self, message: PushMessage, users: list[User], notification_type: str
    ) -> dict[str, PushReceipt]:
        executor = ThreadPoolExecutor(
            max_workers=min(self.max_workers, len(users)),
            thread_name_prefix="push",
        )
        try:
            futures = {
                executor.submit(self.push.send, message, user.fcm_token): user
                for user in users
            }
            done, not_done = wait(futures, timeout=self.push_timeout_seconds)
        finally:
            # Stragglers keep running in the background; nobody waits on them.
            executor.shutdown(wait=False, cancel_futures=True)

        by_user = {}
        for future in done:
            user = futures[future]
            try:
                receipt = future.result()
            except Exception as e:
                self.logger.warning(
                    "Push to %s for %s raised: %s", user.id, notification_type, e
                )
                continue
            if not receipt.success:
                self.logger.warning(
                    "Push to %s for %s failed: %s",
                    user.id,
                    notification_type,
                    receipt.error,
                )
            by_user[user.id] = receipt
        for future in not_done:
            self.logger.warning(
                "Push to %s for %s timed out after %.1fs",
                futures[future].id,
                notification_type,
                self.push_timeout_seconds,
            )
        return by_user

    def _record(self, rendered: RenderedNotification, recipient_id: str) -> Optional[str]:
        record = NotificationRecord(
            recipient_id=recipient_id,
            title=rendered.title,
            message=rendered.body,
            type=rendered.type.value,
            timestamp=utcnow(),
        )
        data = {**rendered.data, **convert_keys(asdict(record), "snake_to_camel")}
        try:
            return self.store.add(NOTIFICATIONS_COLLECTION, data)
        except ServiceError as e:
            self.logger.error(
                "Failed to store %s notification for %s: %s",
                rendered.type,
                recipient_id,
                e.message,
            )
            return None
