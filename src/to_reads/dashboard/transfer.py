"""Export and import of categories and feeds through the backend."""

from __future__ import annotations

import logging
from typing import Any

from to_reads.errors import ApiError
from to_reads.models import TransferPayload
from to_reads.query.keys import resource_matcher
from to_reads.query.mutation import MutationCoordinator
from to_reads.query.result import Err, Ok, Result

from .feeds import CATEGORIES, FEEDS
from .notifications import NotificationCenter

logger = logging.getLogger(__name__)


class TransferService:
    def __init__(self, mutations: MutationCoordinator, api: Any, notifications: NotificationCenter) -> None:
        self._mutations = mutations
        self._api = api
        self._notifications = notifications

    async def export_data(self) -> Result:
        try:
            payload = await self._api.export_data()
        except ApiError as exc:
            logger.warning("Export failed: %s", exc)
            self._notifications.notify("Failed to export data", level="error", detail=str(exc))
            return Err(exc.kind, exc)
        self._notifications.notify("Export ready")
        return Ok(payload)

    async def import_data(self, payload: TransferPayload) -> Result:
        """Send ``payload`` to the backend; categories and feeds reload afterwards."""

        return await self._mutations.mutate(
            lambda: self._api.import_data(payload),
            matcher=resource_matcher(CATEGORIES),
            invalidate=(resource_matcher(FEEDS),),
            name="import",
            success_message="Import completed",
            error_message="Failed to import data",
        )


__all__ = ["TransferService"]
