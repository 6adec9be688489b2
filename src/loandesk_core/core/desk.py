"""CaseDesk: one store wired into the five case components."""

import logging
from typing import Optional

from loandesk_core.config import CoreSettings
from loandesk_core.infrastructure import create_store
from loandesk_core.infrastructure.store import DocumentStore, InMemoryStore
from loandesk_core.core.cases import CaseRecordStore
from loandesk_core.core.documents import DocumentAssociationManager
from loandesk_core.core.lifecycle import StatusLifecycleController
from loandesk_core.core.referrals import ReferralLedger
from loandesk_core.core.threads import RequestThreadManager

logger = logging.getLogger(__name__)


class CaseDesk:
    """Entry point for services embedding the case core.

    Usage:
        desk = await CaseDesk.from_settings()
        case = await desk.cases.create_case(payload, actor)
        await desk.lifecycle.transition(case.case_id, "in-progress", actor)
    """

    def __init__(self, store: Optional[DocumentStore] = None, settings: Optional[CoreSettings] = None):
        self.settings = settings or CoreSettings()
        self.store = store or InMemoryStore()
        self.referrals = ReferralLedger(self.store, self.settings)
        self.documents = DocumentAssociationManager(self.store)
        self.cases = CaseRecordStore(self.store, self.referrals, self.documents, self.settings)
        self.lifecycle = StatusLifecycleController(self.store)
        self.threads = RequestThreadManager(self.store)

    @classmethod
    async def from_settings(cls, settings: Optional[CoreSettings] = None) -> "CaseDesk":
        settings = settings or CoreSettings.from_env()
        store = await create_store(settings)
        logger.info(f"CaseDesk ready ({settings.store_backend} store)")
        return cls(store=store, settings=settings)

    async def close(self) -> None:
        await self.store.close()
