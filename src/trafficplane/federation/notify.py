# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Trafficplane Contributors

"""Outbound node-to-node calls.

Every cross-node notification goes through ``RemoteNotifier``. The local
state change that triggers a notification is always committed first; the
notification itself is best-effort and its failure is discarded at exactly
one place, ``notify_best_effort``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

import aiohttp

from ..core.config import get_config
from .errors import RemoteNotificationFailed

logger = logging.getLogger(__name__)

SECRET_HEADER = "X-Federation-Secret"


@dataclass
class NotificationOutcome:
    """What happened to one best-effort notification."""

    url: str
    delivered: bool
    status: int | None = None
    body: dict[str, Any] = field(default_factory=dict)
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "url": self.url,
            "delivered": self.delivered,
            "status": self.status,
            "error": self.error,
        }


def join_url(base_url: str, path: str) -> str:
    return f"{base_url.rstrip('/')}/{path.lstrip('/')}"


class RemoteNotifier:
    """Posts JSON to peer nodes with a bounded timeout."""

    def __init__(self, timeout: float | None = None, require_tls: bool | None = None):
        config = get_config()
        self.timeout = timeout if timeout is not None else config.notification_timeout
        self.require_tls = require_tls if require_tls is not None else config.require_tls

    async def post_json(
        self,
        url: str,
        payload: dict[str, Any],
        headers: dict[str, str] | None = None,
    ) -> tuple[int, dict[str, Any]]:
        """POST ``payload`` to ``url``.

        Returns:
            The response status and its JSON body ({} when not JSON).

        Raises:
            RemoteNotificationFailed: On refusal, timeout, transport error or
                any non-2xx answer.
        """
        if self.require_tls and not url.startswith("https://"):
            raise RemoteNotificationFailed(url, "TLS required but URL uses HTTP")

        try:
            async with aiohttp.ClientSession() as session:
                async with session.post(
                    url,
                    json=payload,
                    headers=headers,
                    timeout=aiohttp.ClientTimeout(total=self.timeout),
                ) as response:
                    try:
                        body = await response.json(content_type=None)
                    except ValueError:
                        body = {}
                    if not isinstance(body, dict):
                        body = {}
                    if response.status >= 400:
                        error = body.get("error")
                        if isinstance(error, dict):
                            error = error.get("message")
                        raise RemoteNotificationFailed(url, error or f"HTTP {response.status}")
                    return response.status, body
        except TimeoutError as e:
            raise RemoteNotificationFailed(url, f"timed out after {self.timeout}s") from e
        except aiohttp.ClientError as e:
            raise RemoteNotificationFailed(url, str(e) or type(e).__name__) from e

    async def notify_best_effort(
        self,
        url: str,
        payload: dict[str, Any],
        headers: dict[str, str] | None = None,
    ) -> NotificationOutcome:
        """Send a notification whose failure must not affect the caller.

        This is the single point where remote failures are discarded: the
        error is logged and returned in the outcome, never raised.
        """
        try:
            status, body = await self.post_json(url, payload, headers=headers)
        except RemoteNotificationFailed as e:
            logger.warning(f"Best-effort notification to {url} not delivered: {e.reason}")
            return NotificationOutcome(url=url, delivered=False, error=e.reason)

        logger.debug(f"Notification to {url} delivered (HTTP {status})")
        return NotificationOutcome(url=url, delivered=True, status=status, body=body)
