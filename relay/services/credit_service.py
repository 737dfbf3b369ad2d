from typing import Callable, Optional

import redis
from sqlalchemy import func, text
from sqlalchemy.orm import Session

from relay.database import is_postgres
from relay.errors import InsufficientCredits
from relay.logging_config import get_logger
from relay.models import CreditLedgerEntry, Workspace
from relay.models.enums import CreditReason, MemberRole, Plan
from relay.services.email_service import EmailService, first_member_email

logger = get_logger("credit_service")

MONTHLY_GRANTS = {
    Plan.STARTER.value: 500,
    Plan.BUILDER.value: 10000,
    Plan.PRO.value: 50000,
}

CREDIT_CACHE_TTL_SECONDS = 60
LOW_CREDIT_ALERT_TTL_SECONDS = 86400
LOW_CREDIT_RATIO = 0.1


def credit_cache_key(workspace_id) -> str:
    return f"credits:{workspace_id}"


def low_credit_alert_key(workspace_id) -> str:
    return f"low_credits_alert:{workspace_id}"


def _ledger_sum(db: Session, workspace_id) -> int:
    total = (
        db.query(func.coalesce(func.sum(CreditLedgerEntry.delta), 0))
        .filter(CreditLedgerEntry.workspace_id == workspace_id)
        .scalar()
    )
    return int(total or 0)


def _lock_workspace(db: Session, workspace_id) -> None:
    # Serializes ledger writers per workspace until the transaction ends.
    if is_postgres(db):
        db.execute(text("SELECT pg_advisory_xact_lock(hashtext(:ws))"), {"ws": str(workspace_id)})


class CreditLedger:
    """Append-only credit accounting with a Redis read-through balance cache.

    The cache only serves `get_balance`. Writers always lock the workspace and
    re-sum the ledger so two concurrent deductions cannot both pass the
    sufficiency check against a stale balance.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        cache: redis.Redis,
        email: Optional[EmailService] = None,
    ):
        self.session_factory = session_factory
        self.cache = cache
        self.email = email

    def _invalidate(self, workspace_id) -> None:
        try:
            self.cache.delete(credit_cache_key(workspace_id))
        except redis.RedisError as e:
            logger.warning(f"Credit cache invalidation failed: {e}", extra={"context": {"workspace_id": str(workspace_id)}})

    def get_balance(self, workspace_id) -> int:
        key = credit_cache_key(workspace_id)
        try:
            cached = self.cache.get(key)
            if cached is not None:
                return int(cached)
        except redis.RedisError as e:
            logger.warning(f"Credit cache read failed: {e}")

        with self.session_factory() as db:
            balance = _ledger_sum(db, workspace_id)

        try:
            self.cache.set(key, str(balance), ex=CREDIT_CACHE_TTL_SECONDS)
        except redis.RedisError as e:
            logger.warning(f"Credit cache write failed: {e}")
        return balance

    def _append(self, workspace_id, delta: int, reason: str, ref_id: Optional[str], require_funds: bool) -> int:
        with self.session_factory() as db:
            _lock_workspace(db, workspace_id)
            balance = _ledger_sum(db, workspace_id)
            if require_funds and balance < -delta:
                db.rollback()
                raise InsufficientCredits(balance, -delta)

            new_balance = balance + delta
            db.add(
                CreditLedgerEntry(
                    workspace_id=workspace_id,
                    delta=delta,
                    reason=reason,
                    ref_id=ref_id,
                    balance=new_balance,
                )
            )
            db.commit()

        self._invalidate(workspace_id)
        return new_balance

    def deduct(self, workspace_id, amount: int, reason: str, ref_id: Optional[str] = None) -> int:
        new_balance = self._append(workspace_id, -amount, reason, ref_id, require_funds=True)
        logger.info(
            f"Credits deducted: {amount}",
            extra={"context": {"workspace_id": str(workspace_id), "reason": reason, "balance": new_balance}},
        )
        try:
            self.check_low_credits(workspace_id)
        except Exception as e:
            logger.warning(f"Low credit check failed after deduction: {e}")
        return new_balance

    def grant(self, workspace_id, amount: int, reason: str, ref_id: Optional[str] = None) -> int:
        new_balance = self._append(workspace_id, amount, reason, ref_id, require_funds=False)
        logger.info(
            f"Credits granted: {amount}",
            extra={"context": {"workspace_id": str(workspace_id), "reason": reason, "balance": new_balance}},
        )
        return new_balance

    def grant_monthly_credits(self) -> int:
        with self.session_factory() as db:
            workspaces = (
                db.query(Workspace.id, Workspace.plan)
                .filter(Workspace.plan != Plan.ENTERPRISE.value)
                .all()
            )

        granted = 0
        for workspace_id, plan in workspaces:
            amount = MONTHLY_GRANTS.get(plan)
            if not amount:
                continue
            self.grant(workspace_id, amount, CreditReason.PLAN_GRANT.value)
            granted += 1

        logger.info(f"Monthly credits granted to {granted} workspaces")
        return granted

    def check_low_credits(self, workspace_id) -> bool:
        """Email the workspace owner once per 24h when the balance drops to 10% of the plan grant.

        Returns True when an alert was sent.
        """
        if self.email is None or not self.email.configured:
            return False

        with self.session_factory() as db:
            workspace = db.get(Workspace, workspace_id)
            if workspace is None or workspace.plan not in MONTHLY_GRANTS:
                return False
            monthly_grant = MONTHLY_GRANTS[workspace.plan]
            owner_email = first_member_email(db, workspace_id, [MemberRole.OWNER.value])

        if not owner_email:
            return False

        balance = self.get_balance(workspace_id)
        if balance > monthly_grant * LOW_CREDIT_RATIO:
            return False

        alert_key = low_credit_alert_key(workspace_id)
        if self.cache.exists(alert_key):
            return False

        percent = round(balance / monthly_grant * 100)
        try:
            self.email.send(
                owner_email,
                "Low credit balance warning",
                (
                    "<p>Your workspace is running low on credits.</p>"
                    f"<p>Current balance: <strong>{balance}</strong> credits ({percent}% of monthly grant).</p>"
                    "<p>Please upgrade your plan or purchase additional credits to avoid service interruption.</p>"
                ),
            )
        except Exception as e:
            logger.error(f"Failed to send low credits alert email: {e}", extra={"context": {"workspace_id": str(workspace_id)}})
            return False

        self.cache.set(alert_key, "1", ex=LOW_CREDIT_ALERT_TTL_SECONDS)
        logger.info("Low credits alert sent", extra={"context": {"workspace_id": str(workspace_id), "balance": balance}})
        return True
