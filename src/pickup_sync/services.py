"""Composition root: one set of services per signed-in device."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from ._clock import Clock, now_ms
from .chat import ChatNotifier, ChatSynchronizer
from .config import SyncSettings
from .drafts import DraftInventoryStore
from .identity import SessionProvider
from .ledger import TransactionLedger
from .lifecycle import RequestLifecycleManager
from .store import DocumentStore
from .tracking import LocationTrackingChannel

logger = logging.getLogger(__name__)


@dataclass
class PickupServices:
    """The services sharing one store, session and settings."""

    store: DocumentStore
    settings: SyncSettings
    drafts: DraftInventoryStore
    tracking: LocationTrackingChannel
    requests: RequestLifecycleManager
    chat: ChatSynchronizer
    ledger: TransactionLedger

    @classmethod
    def build(
        cls,
        store: DocumentStore,
        session: SessionProvider,
        settings: SyncSettings | None = None,
        clock: Clock | None = None,
        notifier: ChatNotifier | None = None,
    ) -> PickupServices:
        settings = settings or SyncSettings()
        clock = clock or now_ms
        drafts = DraftInventoryStore(store, clock=clock)
        tracking = LocationTrackingChannel(store, settings, clock=clock)
        return cls(
            store=store,
            settings=settings,
            drafts=drafts,
            tracking=tracking,
            requests=RequestLifecycleManager(
                store, session, drafts=drafts, tracking=tracking, clock=clock
            ),
            chat=ChatSynchronizer(store, session, notifier=notifier, clock=clock),
            ledger=TransactionLedger(store, clock=clock),
        )

    async def aclose(self) -> None:
        """Stop location feeds and wait for background cleanup."""
        await self.tracking.aclose()
        logger.debug("Pickup services closed")
