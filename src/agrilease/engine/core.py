"""AgriLease engine - one unit of work over the coordinators."""

import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from agrilease.config import OrderTypeStrategy
from agrilease.engine.devices import DeviceOnboardingService
from agrilease.engine.discovery import DiscoveryService
from agrilease.engine.leases import LeaseCreationCoordinator
from agrilease.engine.orders import OrderLifecycleCoordinator
from agrilease.engine.pricing import PricingResolver
from agrilease.events.dispatcher import EventDispatcher, get_event_dispatcher
from agrilease.events.outbox import EventOutbox
from agrilease.models import DocumentUploader

logger = logging.getLogger(__name__)


class AgriLeaseEngine:
    """
    Groups the coordinators that share one session and one outbox.

    Callers run any number of operations and then commit() or rollback().
    Staged audit and notification records are handed to the dispatcher
    only after the session commit succeeds.
    """

    def __init__(
        self,
        session: AsyncSession,
        dispatcher: Optional[EventDispatcher] = None,
        uploader: Optional[DocumentUploader] = None,
        strategy: Optional[OrderTypeStrategy] = None,
    ):
        if dispatcher is None:
            dispatcher = get_event_dispatcher()
        if uploader is None:
            # integrations imports engine errors; resolve lazily
            from agrilease.integrations.uploads import get_document_uploader

            uploader = get_document_uploader()

        self.session = session
        self.dispatcher = dispatcher
        self.outbox = EventOutbox()
        self.pricing = PricingResolver(session)
        self.orders = OrderLifecycleCoordinator(session, self.outbox, self.pricing, strategy)
        self.leases = LeaseCreationCoordinator(session, self.outbox, uploader, self.pricing)
        self.discovery = DiscoveryService(session, self.pricing)
        self.devices = DeviceOnboardingService(session, self.outbox, self.pricing)

    async def commit(self) -> int:
        """Commit the session, then publish staged side effects. Returns the number published."""
        await self.session.commit()
        events = self.outbox.drain()
        if not events:
            return 0
        return self.dispatcher.publish(events)

    async def rollback(self) -> None:
        await self.session.rollback()
        dropped = self.outbox.discard()
        if dropped:
            logger.debug(f"Discarded {dropped} staged side effect(s) on rollback")
