"""Notification dispatch for arrears events.

Notifications are best-effort: they are delivered on background tasks with
their own retry policy and never fail the database work that produced them.
"""

import os
import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Optional, Set, Dict

import httpx
from httpx import HTTPStatusError, TimeoutException, TransportError

from ..exceptions import NotificationDispatchError
from .models import Notification

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 10.0
DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_DELAY_SECONDS = 1.0


class NotifierBase(ABC):
    """Base class for notification senders."""

    @abstractmethod
    async def send(self, notification: Notification) -> None:
        """Deliver a single notification.

        Args:
            notification: Notification payload.

        Raises:
            NotificationDispatchError: If delivery failed.
        """
        raise NotImplementedError


class LoggingNotifier(NotifierBase):
    """Notifier used when no dispatch endpoint is configured. Only logs."""

    async def send(self, notification: Notification) -> None:
        logger.info(
            f"Notification {notification.type} for user {notification.user_id}: "
            f"{notification.title}"
        )


class HttpNotifier(NotifierBase):
    """Posts notifications to the notification-dispatch endpoint."""

    def __init__(
        self,
        url: str,
        token: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_delay: float = DEFAULT_RETRY_DELAY_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize the notifier.

        Args:
            url: Dispatch endpoint URL.
            token: Optional bearer token for the endpoint.
            timeout: Timeout per attempt in seconds.
            max_retries: Maximum number of attempts.
            retry_delay: Base delay for exponential backoff.
            transport: Optional httpx transport, for tests.
        """
        if max_retries < 1:
            raise ValueError("max_retries must be at least 1")
        self.url = url
        self.token = token
        self.timeout = timeout
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self._transport = transport

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    async def send(self, notification: Notification) -> None:
        payload = notification.model_dump(mode="json", exclude_none=True)
        last_error: Optional[Exception] = None

        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            for attempt in range(self.max_retries):
                try:
                    response = await client.post(self.url, json=payload, headers=self._headers())
                    response.raise_for_status()
                    logger.debug(
                        f"Dispatched {notification.type} to user {notification.user_id}"
                    )
                    return
                except HTTPStatusError as e:
                    status_code = e.response.status_code
                    # Don't retry client errors unless rate limited
                    if 400 <= status_code < 500 and status_code != 429:
                        raise NotificationDispatchError(
                            f"Notification rejected with status {status_code}", e
                        ) from e
                    last_error = e
                except (TimeoutException, TransportError) as e:
                    last_error = e

                logger.warning(
                    f"Notification dispatch failed (attempt {attempt + 1}/{self.max_retries}) "
                    f"for user {notification.user_id}: {last_error}"
                )
                if attempt < self.max_retries - 1:
                    await asyncio.sleep(self.retry_delay * (2 ** attempt))

        raise NotificationDispatchError(
            f"Failed to dispatch notification after {self.max_retries} attempts",
            last_error,
        )


def get_notifier() -> NotifierBase:
    """Build the notifier configured by the environment.

    NOTIFICATION_DISPATCH_URL selects HttpNotifier; without it notifications
    are only logged.
    """
    url = os.getenv("NOTIFICATION_DISPATCH_URL")
    if not url:
        return LoggingNotifier()
    return HttpNotifier(
        url=url,
        token=os.getenv("NOTIFICATION_DISPATCH_TOKEN"),
        timeout=float(os.getenv("NOTIFICATION_TIMEOUT", DEFAULT_TIMEOUT_SECONDS)),
        max_retries=int(os.getenv("NOTIFICATION_MAX_RETRIES", DEFAULT_MAX_RETRIES)),
    )


class NotificationOutbox:
    """Runs notification deliveries as background tasks.

    Delivery failures are logged and counted, never raised.
    """

    def __init__(self, notifier: NotifierBase, drain_timeout: float = 60.0):
        self.notifier = notifier
        self.drain_timeout = drain_timeout
        self.sent = 0
        self.failed = 0
        self._tasks: Set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def enqueue(self, notification: Notification) -> asyncio.Task:
        """Schedule delivery of a notification."""
        task = asyncio.create_task(self._deliver(notification))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _deliver(self, notification: Notification) -> None:
        try:
            await self.notifier.send(notification)
            self.sent += 1
        except Exception as e:
            self.failed += 1
            logger.error(
                f"Error dispatching {notification.type} notification "
                f"to user {notification.user_id}: {e}"
            )

    async def drain(self) -> None:
        """Wait for queued deliveries; cancel those exceeding drain_timeout."""
        if not self._tasks:
            return
        _, still_pending = await asyncio.wait(set(self._tasks), timeout=self.drain_timeout)
        cancelled = await self._cancel(still_pending)
        if cancelled:
            logger.warning(f"Cancelled {cancelled} notifications still pending after drain timeout")
        logger.info(f"Notifications dispatched: {self.sent} sent, {self.failed} failed")

    async def cancel_pending(self) -> int:
        """Cancel every delivery still queued and wait for it to stop.

        Returns:
            Number of deliveries cancelled.
        """
        cancelled = await self._cancel(set(self._tasks))
        if cancelled:
            logger.warning(f"Cancelled {cancelled} undelivered notifications")
        return cancelled

    async def _cancel(self, tasks: Set[asyncio.Task]) -> int:
        if not tasks:
            return 0
        cancelled = [task for task in tasks if task.cancel()]
        await asyncio.gather(*tasks, return_exceptions=True)
        self.failed += len(cancelled)
        return len(cancelled)
