# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Trafficplane Contributors

"""Peer-list refresh hook.

Other subsystems (routing, config distribution) keep their own view of the
federation's peers. After a partnership is accepted the coordinator calls
``refresh_peer_list(org_id)`` so they can pick up the new partner. The hook
is opaque to the federation core and replaceable at startup.
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)

PeerListRefresher = Callable[[str], Awaitable[None] | None]


def _log_only_refresher(org_id: str) -> None:
    logger.debug(f"Peer list refresh requested for org {org_id} (no refresher installed)")


_refresher: PeerListRefresher = _log_only_refresher


def set_peer_list_refresher(refresher: PeerListRefresher | None) -> None:
    """Install the hook invoked after an accept. ``None`` restores the default."""
    global _refresher
    _refresher = refresher or _log_only_refresher


async def refresh_peer_list(org_id: str) -> bool:
    """Run the installed refresher. Failures are logged, never raised.

    Returns:
        True if the refresher completed.
    """
    try:
        result = _refresher(org_id)
        if inspect.isawaitable(result):
            await result
    except Exception as e:
        logger.warning(f"Peer list refresh failed for org {org_id}: {e}")
        return False
    return True
