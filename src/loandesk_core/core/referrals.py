"""Referral Attribution Ledger.

Maintains referral sources and their `cases` counters. The counter is a
cached value derived from the live cases; it is adjusted in the same
transaction as the case write that changes it, and reconcile() recomputes
it from source after any detected drift.

Lookup order for attribution (resolve_or_create):
1. exact (name, phone) match, when phone is a real value
2. name-only match among referrals whose phone is unknown
3. create a new referral with cases=0
"""

import logging
from collections import Counter
from typing import List, Optional

from pydantic import ValidationError as PydanticValidationError

from loandesk_core.config import CoreSettings
from loandesk_core.errors import NotFoundError, ValidationError
from loandesk_core.infrastructure.store import DocumentStore, Transaction
from loandesk_core.models.api_models import (
    CounterCorrection,
    ReconcileReport,
    ReferralCreateRequest,
)
from loandesk_core.models.common import raise_validation, utc_now
from loandesk_core.models.referral import (
    Referral,
    ReferralRef,
    normalize_referral_name,
    referral_key,
)
from loandesk_core.core.records import (
    CASES,
    REFERRAL_CASES,
    REFERRAL_PAIR_INDEX,
    REFERRAL_SENTINEL_INDEX,
    REFERRALS,
    dump,
)
from loandesk_core.utils import run_with_conflict_retry

logger = logging.getLogger(__name__)


def _sentinel_key(name: str) -> str:
    return normalize_referral_name(name).casefold()


class ReferralLedger:
    """Referral records plus their case counters."""

    def __init__(self, store: DocumentStore, settings: Optional[CoreSettings] = None):
        self._store = store
        self._settings = settings or CoreSettings()

    async def _retrying(self, fn, *args):
        return await run_with_conflict_retry(
            fn,
            *args,
            max_attempts=self._settings.conflict_retry_attempts,
            max_wait=self._settings.conflict_retry_wait,
        )

    # ============================================================
    # Transaction-scoped building blocks (used by the case store)
    # ============================================================
    async def resolve_in(self, tx: Transaction, ref: ReferralRef) -> Referral:
        """Find the referral for ref inside tx, registering a new one if needed."""
        if ref.has_phone:
            referral_id = await tx.lookup(REFERRAL_PAIR_INDEX, referral_key(ref.name, ref.phone))
            if referral_id:
                return await self._load_in(tx, referral_id)

        referral_id = await tx.lookup(REFERRAL_SENTINEL_INDEX, _sentinel_key(ref.name))
        if referral_id:
            return await self._load_in(tx, referral_id)

        referral = Referral(name=ref.name, phone=ref.phone)
        self._register_in(tx, referral, claim_sentinel=True)
        logger.info(f"Referral auto-created on first use: {referral.referral_id} ({referral.name})")
        return referral

    def adjust_in(self, tx: Transaction, referral_id: str, delta: int) -> None:
        """Queue a counter adjustment; decrements floor at zero on commit."""
        tx.adjust_counter(REFERRAL_CASES, referral_id, delta)

    def _register_in(self, tx: Transaction, referral: Referral, claim_sentinel: bool) -> None:
        tx.put(REFERRALS, referral.referral_id, dump(referral, exclude={"cases"}))
        if referral.has_phone:
            tx.set_index(REFERRAL_PAIR_INDEX, referral.key, referral.referral_id)
        elif claim_sentinel:
            tx.set_index(REFERRAL_SENTINEL_INDEX, _sentinel_key(referral.name), referral.referral_id)

    async def _load_in(self, tx: Transaction, referral_id: str) -> Referral:
        doc = await tx.get(REFERRALS, referral_id)
        if doc is None:
            raise NotFoundError("Referral", referral_id)
        return Referral.model_validate(doc)

    # ============================================================
    # Operations
    # ============================================================
    async def resolve_or_create(self, name: str, phone: Optional[str] = None) -> str:
        """Return the id of the referral credited for (name, phone)."""
        try:
            ref = ReferralRef(name=name, phone=phone)
        except PydanticValidationError as exc:
            raise_validation(exc, prefix="referral")
        return await self._retrying(self._resolve_or_create_once, ref)

    async def _resolve_or_create_once(self, ref: ReferralRef) -> str:
        async with self._store.transaction() as tx:
            referral = await self.resolve_in(tx, ref)
        return referral.referral_id

    async def create_referral(
        self,
        name: str,
        phone: Optional[str] = None,
        success_rate: str = "0%",
        commission: str = "₹0",
    ) -> Referral:
        """Explicitly create a referral. Real phones must be unique per name."""
        try:
            request = ReferralCreateRequest(
                name=name, phone=phone, success_rate=success_rate, commission=commission
            )
        except PydanticValidationError as exc:
            raise_validation(exc, prefix="referral")
        return await self._retrying(self._create_once, request)

    async def _create_once(self, request: ReferralCreateRequest) -> Referral:
        referral = Referral(
            name=request.name,
            phone=request.phone,
            success_rate=request.success_rate,
            commission=request.commission,
        )
        async with self._store.transaction() as tx:
            if referral.has_phone:
                if await tx.lookup(REFERRAL_PAIR_INDEX, referral.key):
                    raise ValidationError.single(
                        "referral", f"Referral '{referral.name}' with phone {referral.phone} already exists"
                    )
                self._register_in(tx, referral, claim_sentinel=False)
            else:
                # Same-name referrals without a phone stay distinct; the oldest
                # one keeps the name-only lookup slot
                owner = await tx.lookup(REFERRAL_SENTINEL_INDEX, _sentinel_key(referral.name))
                self._register_in(tx, referral, claim_sentinel=owner is None)
        logger.info(f"Referral created: {referral.referral_id} ({referral.name})")
        return referral

    async def increment(self, referral_id: str) -> None:
        await self._retrying(self._adjust_once, referral_id, 1)

    async def decrement(self, referral_id: str) -> None:
        """Decrement, floored at zero; over-decrement is a no-op."""
        await self._retrying(self._adjust_once, referral_id, -1)

    async def _adjust_once(self, referral_id: str, delta: int) -> None:
        async with self._store.transaction() as tx:
            await self._load_in(tx, referral_id)
            self.adjust_in(tx, referral_id, delta)
        logger.debug(f"Referral {referral_id} counter adjusted by {delta}")

    async def get_referral(self, referral_id: str) -> Referral:
        doc = await self._store.get(REFERRALS, referral_id)
        if doc is None:
            raise NotFoundError("Referral", referral_id)
        cases = await self._store.get_counter(REFERRAL_CASES, referral_id)
        return Referral.model_validate({**doc, "cases": cases})

    async def list_referrals(self) -> List[Referral]:
        """All referrals, newest first."""
        counters = await self._store.get_counters(REFERRAL_CASES)
        referrals = [
            Referral.model_validate({**doc, "cases": counters.get(doc["referralId"], 0)})
            for doc in await self._store.scan(REFERRALS)
        ]
        referrals.sort(key=lambda r: (r.created_at, r.referral_id), reverse=True)
        return referrals

    async def reconcile(self) -> ReconcileReport:
        """Recompute every counter from the live cases and repair drift."""
        return await self._retrying(self._reconcile_once)

    async def _reconcile_once(self) -> ReconcileReport:
        async with self._store.transaction() as tx:
            cases = await tx.scan(CASES)
            referrals = await tx.scan(REFERRALS)
            recorded = await tx.get_counters(REFERRAL_CASES)

            actual = Counter(doc["referralId"] for doc in cases if doc.get("referralId"))
            report = ReconcileReport(checked=len(referrals))
            for referral_id in sorted({doc["referralId"] for doc in referrals} | set(recorded)):
                if recorded.get(referral_id, 0) != actual.get(referral_id, 0):
                    report.corrections.append(CounterCorrection(
                        referral_id=referral_id,
                        recorded=recorded.get(referral_id, 0),
                        actual=actual.get(referral_id, 0),
                    ))
                    tx.set_counter(REFERRAL_CASES, referral_id, actual.get(referral_id, 0))

        if report.drifted:
            logger.warning(
                f"Referral counter drift repaired at {utc_now().isoformat()}: "
                + ", ".join(f"{c.referral_id} {c.recorded}->{c.actual}" for c in report.corrections)
            )
        return report
