"""Credit ledger: balance mutations, transaction log and usage accounting.

Every balance change is a single conditional UPDATE on ``businesses.credits``
flushed in the same database transaction as its ``credit_transactions`` row
(and, for usage, its ``credit_usage_logs`` row). The WHERE guard
``credits >= cost`` plus the table's CHECK constraint keep the balance
non-negative even when requests race.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypeVar

from sqlalchemy import update
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from config import settings
from models.business import Business
from models.credit_transaction import CreditTransaction
from models.credit_usage_log import CreditUsageLog
from services.credit_costs import get_action_cost, get_plan, normalize_action
from services.errors import (
    InsufficientCreditsError,
    LedgerError,
    NotFoundError,
    PersistenceConflictError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

CREDIT_TRANSACTION_TYPES = ("purchase", "refund", "monthly_allocation", "bonus")
TRANSACTION_TYPES = ("usage",) + CREDIT_TRANSACTION_TYPES
MONTHLY_ALLOCATION_INDEX = "ux_credit_transactions_monthly_allocation_period"

# Postgres SQLSTATEs for serialization failure, deadlock and lock timeout.
_CONFLICT_SQLSTATES = {"40001", "40P01", "55P03"}


@dataclass
class CreditBalance:
    business_id: str
    credits: int
    plan: str
    status: Optional[str]
    expires_at: Optional[datetime]

    def as_dict(self) -> Dict[str, Any]:
        return {
            "business_id": self.business_id,
            "credits": self.credits,
            "plan": self.plan,
            "status": self.status,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
        }


def _as_utc(moment: datetime) -> datetime:
    """Stored timestamps are UTC; drivers may return them naive or in the session time zone."""
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def _current_period_key(now: Optional[datetime] = None) -> str:
    current = now or datetime.now(timezone.utc)
    return current.strftime("%Y-%m")


def is_write_conflict(exc: DBAPIError) -> bool:
    """True when the driver error means a concurrent writer got there first."""
    orig = getattr(exc, "orig", None)
    sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if sqlstate in _CONFLICT_SQLSTATES:
        return True
    text = str(orig or exc).lower()
    if isinstance(exc, IntegrityError):
        return "ck_businesses_credits_non_negative" in text or "check constraint" in text
    if isinstance(exc, OperationalError):
        return "database is locked" in text or "could not serialize" in text or "deadlock" in text
    return False


def is_duplicate_allocation(exc: IntegrityError) -> bool:
    """True when the unique monthly-allocation index rejected a second grant."""
    text = str(getattr(exc, "orig", None) or exc).lower()
    return MONTHLY_ALLOCATION_INDEX in text or "credit_transactions.period_key" in text


def serialize_transaction(entry: CreditTransaction) -> Dict[str, Any]:
    return {
        "id": entry.id,
        "business_id": entry.business_id,
        "transaction_type": entry.transaction_type,
        "amount": entry.amount,
        "balance_after": entry.balance_after,
        "description": entry.description,
        "metadata": entry.metadata_json or {},
        "stripe_payment_intent_id": entry.stripe_payment_intent_id,
        "created_at": entry.created_at.isoformat() if entry.created_at else None,
    }


class CreditLedger:
    """Credit operations for businesses, bound to one ``AsyncSession``.

    Mutating methods commit by default. Pass ``commit=False`` to flush into a
    transaction the caller owns (the caller then commits or rolls back).
    """

    def __init__(self, db: AsyncSession, *, max_retries: Optional[int] = None):
        self.db = db
        retries = settings.LEDGER_MAX_RETRIES if max_retries is None else max_retries
        self.max_retries = max(int(retries), 0)

    # -- reads -------------------------------------------------------------

    async def _get_business(self, business_id: str, *, for_update: bool = False) -> Business:
        query = select(Business).where(Business.id == business_id)
        if for_update:
            query = query.with_for_update()
        result = await self.db.execute(query.execution_options(populate_existing=True))
        business = result.scalar_one_or_none()
        if business is None:
            raise NotFoundError(f"Business {business_id} not found.")
        return business

    async def get_balance(self, business_id: str) -> CreditBalance:
        business = await self._get_business(business_id)
        return CreditBalance(
            business_id=business.id,
            credits=int(business.credits or 0),
            plan=business.subscription_plan,
            status=business.subscription_status,
            expires_at=business.subscription_expires_at,
        )

    def required_credits(self, action: str) -> int:
        return get_action_cost(action)

    async def has_sufficient_credits(self, business_id: str, action: str) -> bool:
        required = get_action_cost(action)
        balance = await self.get_balance(business_id)
        return balance.credits >= required

    async def get_history(self, business_id: str, limit: int = 50, offset: int = 0) -> List[CreditTransaction]:
        await self._get_business(business_id)
        result = await self.db.execute(
            select(CreditTransaction)
            .where(CreditTransaction.business_id == business_id)
            .order_by(CreditTransaction.created_at.desc(), CreditTransaction.id.desc())
            .offset(max(int(offset), 0))
            .limit(max(int(limit), 1))
        )
        return list(result.scalars().all())

    async def get_analytics(self, business_id: str, days: int = 30) -> Dict[str, Dict[str, int]]:
        """Usage grouped by calendar day (ISO date) then action type."""
        await self._get_business(business_id)
        start = datetime.now(timezone.utc) - timedelta(days=max(int(days), 0))
        result = await self.db.execute(
            select(CreditUsageLog)
            .where(
                CreditUsageLog.business_id == business_id,
                CreditUsageLog.created_at >= start,
            )
            .order_by(CreditUsageLog.created_at.asc())
        )
        analytics: Dict[str, Dict[str, int]] = {}
        for log in result.scalars().all():
            day = _as_utc(log.created_at).date().isoformat()
            bucket = analytics.setdefault(day, {})
            bucket[log.action_type] = bucket.get(log.action_type, 0) + int(log.credits_used)
        return analytics

    # -- writes ------------------------------------------------------------

    async def _apply_delta(self, business_id: str, delta: int) -> int:
        """Atomically shift the balance; debits only apply when they fit."""
        stmt = update(Business).where(Business.id == business_id)
        if delta < 0:
            stmt = stmt.where(Business.credits >= -delta)
        stmt = (
            stmt.values(credits=Business.credits + delta)
            .returning(Business.credits)
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        new_balance = result.scalar_one_or_none()
        if new_balance is None:
            business = await self._get_business(business_id)
            raise InsufficientCreditsError(required=-delta, available=int(business.credits or 0))
        return int(new_balance)

    async def _record_transaction(
        self,
        business_id: str,
        *,
        transaction_type: str,
        amount: int,
        balance_after: int,
        description: Optional[str],
        metadata: Optional[Dict[str, Any]],
        stripe_payment_intent_id: Optional[str] = None,
        period_key: Optional[str] = None,
    ) -> CreditTransaction:
        entry = CreditTransaction(
            business_id=business_id,
            transaction_type=transaction_type,
            amount=int(amount),
            balance_after=int(balance_after),
            description=description,
            metadata_json=dict(metadata or {}),
            stripe_payment_intent_id=stripe_payment_intent_id,
            period_key=period_key,
        )
        self.db.add(entry)
        await self.db.flush()
        return entry

    async def _run(self, operation: Callable[[], Awaitable[T]], *, commit: bool) -> T:
        if not commit:
            try:
                return await operation()
            except DBAPIError as exc:
                if is_write_conflict(exc):
                    raise PersistenceConflictError("Concurrent credit update detected.") from exc
                raise

        attempt = 0
        while True:
            try:
                result = await operation()
                await self.db.commit()
                return result
            except LedgerError:
                await self.db.rollback()
                raise
            except DBAPIError as exc:
                await self.db.rollback()
                if not is_write_conflict(exc):
                    raise
                attempt += 1
                if attempt > self.max_retries:
                    raise PersistenceConflictError(
                        "Concurrent credit update detected. Please retry."
                    ) from exc
                logger.warning("Credit write conflict, retrying (attempt %s/%s)", attempt, self.max_retries)

    async def charge(
        self,
        business_id: str,
        amount: int,
        *,
        action: str,
        user_id: str,
        description: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        campaign_id: Optional[str] = None,
        commit: bool = True,
    ) -> int:
        """Debit an explicit amount as a `usage` transaction plus usage-log row."""
        cost = int(amount)
        if cost <= 0:
            raise ValueError("amount must be greater than 0")

        async def _operation() -> int:
            new_balance = await self._apply_delta(business_id, -cost)
            await self._record_transaction(
                business_id,
                transaction_type="usage",
                amount=-cost,
                balance_after=new_balance,
                description=description or f"Used {cost} credits for {action}",
                metadata={**(metadata or {}), "action": action, "user_id": user_id},
            )
            self.db.add(
                CreditUsageLog(
                    business_id=business_id,
                    user_id=user_id,
                    campaign_id=campaign_id,
                    action_type=action,
                    credits_used=cost,
                    feature_used=action,
                )
            )
            await self.db.flush()
            return new_balance

        new_balance = await self._run(_operation, commit=commit)
        logger.info(
            "credits_consumed business=%s action=%s cost=%s balance_after=%s",
            business_id,
            action,
            cost,
            new_balance,
        )
        return new_balance

    async def consume_credits(
        self,
        business_id: str,
        action: str,
        user_id: str,
        metadata: Optional[Dict[str, Any]] = None,
        *,
        commit: bool = True,
    ) -> int:
        action_key = normalize_action(action)
        cost = get_action_cost(action_key)
        if cost == 0:
            return (await self.get_balance(business_id)).credits
        return await self.charge(
            business_id,
            cost,
            action=action_key,
            user_id=user_id,
            metadata=metadata,
            commit=commit,
        )

    async def add_credits(
        self,
        business_id: str,
        amount: int,
        transaction_type: str,
        description: Optional[str] = None,
        stripe_payment_intent_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        *,
        period_key: Optional[str] = None,
        commit: bool = True,
    ) -> int:
        grant = int(amount)
        if grant <= 0:
            raise ValueError("amount must be greater than 0")
        if transaction_type not in CREDIT_TRANSACTION_TYPES:
            raise ValueError(f"Unsupported credit transaction type: {transaction_type!r}")

        async def _operation() -> int:
            new_balance = await self._apply_delta(business_id, grant)
            await self._record_transaction(
                business_id,
                transaction_type=transaction_type,
                amount=grant,
                balance_after=new_balance,
                description=description or f"Added {grant} credits via {transaction_type}",
                metadata=metadata,
                stripe_payment_intent_id=stripe_payment_intent_id,
                period_key=period_key,
            )
            return new_balance

        new_balance = await self._run(_operation, commit=commit)
        logger.info(
            "credits_added business=%s type=%s amount=%s balance_after=%s",
            business_id,
            transaction_type,
            grant,
            new_balance,
        )
        return new_balance

    async def grant_monthly_allocation(
        self,
        business_id: str,
        *,
        period_key: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        commit: bool = True,
    ) -> int:
        """Post the plan's monthly credits once per ``YYYY-MM`` period.

        The business row is locked while checking for an earlier grant; the
        unique allocation index rejects any grant that still slips through,
        which is reported as already granted.
        """
        period = period_key or _current_period_key()
        business = await self._get_business(business_id, for_update=True)
        existing = await self.db.execute(
            select(CreditTransaction.id).where(
                CreditTransaction.business_id == business_id,
                CreditTransaction.transaction_type == "monthly_allocation",
                CreditTransaction.period_key == period,
            )
        )
        already_granted = existing.first() is not None
        plan = get_plan(business.subscription_plan)
        if already_granted or plan.monthly_credits <= 0:
            if already_granted:
                logger.info("Monthly allocation for business %s period %s already granted", business_id, period)
            balance = int(business.credits or 0)
            if commit:
                await self.db.commit()
            return balance

        async def _post(commit_grant: bool) -> int:
            return await self.add_credits(
                business_id,
                plan.monthly_credits,
                "monthly_allocation",
                description=f"Monthly credit allocation for {plan.name} plan ({period})",
                metadata={**(metadata or {}), "plan": plan.key},
                period_key=period,
                commit=commit_grant,
            )

        try:
            if commit:
                return await _post(True)
            # Savepoint keeps the caller's transaction usable if the index rejects the row.
            async with self.db.begin_nested():
                return await _post(False)
        except IntegrityError as exc:
            if not is_duplicate_allocation(exc):
                raise
            logger.info("Monthly allocation for business %s period %s granted concurrently", business_id, period)
        return (await self.get_balance(business_id)).credits
