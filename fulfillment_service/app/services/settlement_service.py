"""
Vendor settlement: balance recomputed from the ledger, payout requests and
payout decisions.

Pending and processing payouts are provisional holds: they are deducted
from the available balance until they are decided, so two racing requests
cannot both spend the same earnings.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from ..core.exceptions import (
    ConflictError,
    InsufficientBalance,
    LedgerIntegrityError,
    NotFoundError,
    PermissionDenied,
    PreconditionFailed,
    ValidationError,
)
from ..core.settings import get_settings
from ..events.schemas import (
    PAYOUT_DECIDED,
    PAYOUT_REQUESTED,
    PayoutDecidedEventData,
    PayoutRequestedEventData,
)
from ..models.base import utcnow
from ..models.notification import NotificationType
from ..models.payout import HELD_PAYOUT_STATUSES, Payout, PayoutStatus
from ..models.vendor import VendorAccount
from ..repository.ledger_repository import LedgerRepository
from ..repository.order_repository import OrderRepository
from ..repository.payout_repository import PayoutRepository
from ..repository.vendor_repository import VendorAccountRepository
from ..utils.codes import generate_reference
from ..utils.logging import setup_fulfillment_logging as setup_logging
from ..utils.money import ZERO, to_money
from .notification_service import NotificationDispatcher
from .results import Actor, Role, TransactionalService, unit_of_work
from .state_machine import PAYOUT_TRANSITIONS, ensure_transition

logger = setup_logging("fulfillment_service.settlement", log_level="INFO")

BANK_FIELDS = ("bank_name", "account_name", "account_number")


class PayoutDecision:
    APPROVE = "approve"
    REJECT = "reject"


@dataclass(frozen=True)
class VendorBalance:
    vendor_id: int
    gross_earnings: Decimal
    commission: Decimal
    refunded_amount: Decimal
    net_earnings: Decimal
    paid_out: Decimal
    held: Decimal
    available_balance: Decimal

    def to_dict(self) -> Dict[str, Any]:
        return {
            "vendor_id": self.vendor_id,
            "gross_earnings": self.gross_earnings,
            "commission": self.commission,
            "refunded_amount": self.refunded_amount,
            "net_earnings": self.net_earnings,
            "paid_out": self.paid_out,
            "held": self.held,
            "available_balance": self.available_balance,
        }


async def compute_vendor_balance(session: AsyncSession, vendor_id: int) -> VendorBalance:
    """
    Recompute a vendor's balance from delivered items, refunds and payouts.

    Raises ``LedgerIntegrityError`` when a delivered item has no commission
    snapshot; those rows must be backfilled, never defaulted.
    """
    ledger = LedgerRepository(session)
    missing = await ledger.delivered_items_missing_commission(vendor_id)
    if missing:
        raise LedgerIntegrityError(
            "Delivered items are missing their commission snapshot",
            details={"vendor_id": vendor_id, "order_item_ids": missing},
        )

    gross, commission = await ledger.delivered_totals(vendor_id)
    refunded = await ledger.refunded_total(vendor_id)
    totals = await PayoutRepository(session).totals_by_status(vendor_id)

    net = to_money(gross - commission - refunded)
    paid_out = to_money(totals.get(PayoutStatus.COMPLETED.value, ZERO))
    held = to_money(sum((totals.get(status, ZERO) for status in HELD_PAYOUT_STATUSES), ZERO))

    return VendorBalance(
        vendor_id=vendor_id,
        gross_earnings=to_money(gross),
        commission=to_money(commission),
        refunded_amount=to_money(refunded),
        net_earnings=net,
        paid_out=paid_out,
        held=held,
        available_balance=to_money(net - paid_out - held),
    )


class SettlementService(TransactionalService):
    def __init__(self, session: AsyncSession, event_producer: Optional[Any] = None):
        super().__init__(session, event_producer)
        self.settings = get_settings()
        self.payout_repository = PayoutRepository(session)
        self.vendor_repository = VendorAccountRepository(session)
        self.order_repository = OrderRepository(session)
        self.notifications = NotificationDispatcher(session)

    def _resolve_vendor(self, actor: Actor, vendor_id: Optional[int]) -> int:
        if actor.role == Role.VENDOR:
            if vendor_id is not None and vendor_id != actor.user_id:
                raise PermissionDenied(
                    "Vendors can only access their own settlement",
                    details={"vendor_id": vendor_id},
                )
            return actor.user_id
        if not actor.is_privileged:
            raise PermissionDenied(
                "Settlement is only visible to vendors and admins",
                details={"role": actor.role.value},
            )
        if vendor_id is None:
            raise ValidationError("vendor_id is required", reason="vendor_required")
        return vendor_id

    def _require_admin(self, actor: Actor, action: str) -> None:
        if not actor.is_admin:
            raise PermissionDenied(
                f"Only admins may {action}",
                details={"role": actor.role.value},
            )

    async def _load_payout(self, payout_id: int) -> Payout:
        payout = await self.payout_repository.get_by_id(payout_id)
        if not payout:
            raise NotFoundError("Payout not found", details={"payout_id": payout_id})
        return payout

    @unit_of_work("get_vendor_balance")
    async def get_vendor_balance(
        self, actor: Actor, vendor_id: Optional[int] = None
    ) -> VendorBalance:
        vendor_id = self._resolve_vendor(actor, vendor_id)
        return await compute_vendor_balance(self.session, vendor_id)

    @unit_of_work("request_payout")
    async def request_payout(
        self,
        actor: Actor,
        amount: Decimal,
        bank_details: Optional[Dict[str, str]] = None,
    ) -> Payout:
        """
        Request a withdrawal. Bank details default to the vendor account's
        and are snapshotted onto the payout.
        """
        if actor.role != Role.VENDOR:
            raise PermissionDenied(
                "Only vendors request payouts", details={"role": actor.role.value}
            )
        vendor_id = actor.user_id
        amount = to_money(amount)

        minimum = to_money(self.settings.PAYOUT_MINIMUM_AMOUNT)
        if amount < minimum:
            raise ValidationError(
                f"Minimum payout amount is {minimum}",
                reason="below_minimum",
                details={"requested_amount": str(amount), "minimum_amount": str(minimum)},
            )

        account = await self.vendor_repository.get_or_create(
            vendor_id, self.settings.DEFAULT_COMMISSION_RATE
        )
        destination = dict(account.bank_details())
        destination.update({key: value for key, value in (bank_details or {}).items() if value})
        missing = [name for name in BANK_FIELDS if not destination.get(name)]
        if missing:
            raise ValidationError(
                "Bank details are required for a payout",
                reason="missing_bank_details",
                details={"missing_fields": missing},
            )

        observed_sequence = account.payout_sequence
        balance = await compute_vendor_balance(self.session, vendor_id)
        if amount > balance.available_balance:
            raise InsufficientBalance(
                "Requested amount exceeds the available balance",
                details={
                    "requested_amount": str(amount),
                    "available_balance": str(balance.available_balance),
                },
            )

        if not await self.vendor_repository.advance_payout_sequence(vendor_id, observed_sequence):
            raise ConflictError(
                "Another payout request for this vendor was recorded concurrently",
                details={"vendor_id": vendor_id},
            )

        now = utcnow()
        payout = await self.payout_repository.create(
            vendor_id=vendor_id,
            amount=amount,
            status=PayoutStatus.PENDING.value,
            reference_code=generate_reference("PO"),
            bank_name=destination["bank_name"],
            account_name=destination["account_name"],
            account_number=destination["account_number"],
        )

        self.stage_event(
            PAYOUT_REQUESTED,
            PayoutRequestedEventData(
                payout_id=payout.id,
                vendor_id=vendor_id,
                amount=amount,
                reference_code=payout.reference_code,
                requested_at=now,
            ),
            correlation_id=payout.reference_code,
        )
        logger.info(
            "Payout requested.",
            extra={
                "payout_id": payout.id,
                "vendor_id": vendor_id,
                "amount": str(amount),
                "available_before": str(balance.available_balance),
            },
        )
        return payout

    @unit_of_work("start_payout_processing")
    async def start_processing(self, actor: Actor, payout_id: int) -> Payout:
        self._require_admin(actor, "process payouts")
        payout = await self._load_payout(payout_id)
        ensure_transition(
            PAYOUT_TRANSITIONS, payout.status, PayoutStatus.PROCESSING.value, "payout"
        )

        changed = await self.payout_repository.compare_and_set_status(
            payout,
            PayoutStatus.PENDING.value,
            {"status": PayoutStatus.PROCESSING.value, "processing_at": utcnow()},
        )
        if not changed:
            raise ConflictError(
                "Payout was updated concurrently",
                details={"payout_id": payout.id, "expected_status": PayoutStatus.PENDING.value},
            )
        return payout

    @unit_of_work("decide_payout")
    async def decide_payout(
        self,
        actor: Actor,
        payout_id: int,
        decision: str,
        admin_note: Optional[str] = None,
    ) -> Payout:
        """Approve (completed) or reject (failed) a held payout."""
        self._require_admin(actor, "decide payouts")
        if decision not in (PayoutDecision.APPROVE, PayoutDecision.REJECT):
            raise ValidationError(
                "Decision must be approve or reject",
                reason="invalid_decision",
                details={"decision": decision},
            )

        payout = await self._load_payout(payout_id)
        if payout.status not in HELD_PAYOUT_STATUSES:
            raise PreconditionFailed(
                "This payout has already been decided",
                reason="already_decided",
                details={"payout_id": payout.id, "current_status": payout.status},
            )

        target = (
            PayoutStatus.COMPLETED.value
            if decision == PayoutDecision.APPROVE
            else PayoutStatus.FAILED.value
        )
        ensure_transition(PAYOUT_TRANSITIONS, payout.status, target, "payout")

        if target == PayoutStatus.COMPLETED.value:
            # Completing only moves the amount from held to paid out, unless
            # refunds approved since the request shrank the net below it.
            balance = await compute_vendor_balance(self.session, payout.vendor_id)
            if balance.available_balance < ZERO:
                raise InsufficientBalance(
                    "Refunds approved since the request leave too little to pay out",
                    details={
                        "payout_id": payout.id,
                        "available_balance": str(balance.available_balance),
                    },
                )

        now = utcnow()
        changed = await self.payout_repository.compare_and_set_status(
            payout,
            payout.status,
            {
                "status": target,
                "admin_note": admin_note,
                "decided_by": actor.user_id,
                "decided_at": now,
            },
        )
        if not changed:
            raise PreconditionFailed(
                "This payout has already been decided",
                reason="already_decided",
                details={"payout_id": payout.id},
            )

        approved = target == PayoutStatus.COMPLETED.value
        await self.notifications.dispatch(
            recipient_id=payout.vendor_id,
            notification_type=NotificationType.PAYOUT,
            entity_type="payout",
            entity_id=payout.id,
            target_state=target,
            title="Payout completed" if approved else "Payout rejected",
            message=(
                f"Your payout {payout.reference_code} of {payout.amount} has been sent."
                if approved
                else f"Your payout {payout.reference_code} was rejected"
                + (f": {admin_note}" if admin_note else ".")
            ),
        )
        self.stage_event(
            PAYOUT_DECIDED,
            PayoutDecidedEventData(
                payout_id=payout.id,
                vendor_id=payout.vendor_id,
                amount=to_money(payout.amount),
                decision=target,
                decided_by=actor.user_id,
                decided_at=now,
            ),
            correlation_id=payout.reference_code,
        )
        logger.info(
            "Payout decided.",
            extra={"payout_id": payout.id, "decision": target, "actor_id": actor.user_id},
        )
        return payout

    @unit_of_work("get_payout")
    async def get_payout(self, actor: Actor, payout_id: int) -> Payout:
        payout = await self._load_payout(payout_id)
        if not actor.is_privileged and not (
            actor.role == Role.VENDOR and payout.vendor_id == actor.user_id
        ):
            raise PermissionDenied(
                "Payout is not visible to this user", details={"payout_id": payout.id}
            )
        return payout

    @unit_of_work("list_payouts")
    async def list_payouts(
        self,
        actor: Actor,
        vendor_id: Optional[int] = None,
        status_filter: Optional[str] = None,
        min_amount: Optional[Decimal] = None,
        max_amount: Optional[Decimal] = None,
        created_from: Optional[datetime] = None,
        created_to: Optional[datetime] = None,
        sort_by: str = "created_at",
        descending: bool = True,
        skip: int = 0,
        limit: int = 50,
    ) -> Dict[str, Any]:
        if actor.role == Role.VENDOR:
            vendor_id = actor.user_id
        elif not actor.is_privileged:
            raise PermissionDenied(
                "Payouts are only visible to vendors and admins",
                details={"role": actor.role.value},
            )

        if status_filter and status_filter not in {status.value for status in PayoutStatus}:
            raise ValidationError(
                f"Unknown payout status: {status_filter}",
                reason="unknown_status",
                details={"status": status_filter},
            )

        payouts, total = await self.payout_repository.list_payouts(
            vendor_id=vendor_id,
            status_filter=status_filter,
            min_amount=min_amount,
            max_amount=max_amount,
            created_from=created_from,
            created_to=created_to,
            sort_by=sort_by,
            descending=descending,
            skip=skip,
            limit=limit,
        )
        return {"payouts": payouts, "total": total, "skip": skip, "limit": limit}

    @unit_of_work("upsert_vendor_account")
    async def upsert_vendor_account(
        self, actor: Actor, vendor_id: int, data: Dict[str, Any]
    ) -> VendorAccount:
        """Admin: set a vendor's commission rate and default bank destination."""
        self._require_admin(actor, "manage vendor accounts")
        fields = {key: value for key, value in data.items() if value is not None}
        rate = fields.get("commission_rate")
        if rate is not None and not (Decimal("0") <= Decimal(str(rate)) <= Decimal("1")):
            raise ValidationError(
                "Commission rate must be a fraction between 0 and 1",
                reason="invalid_commission_rate",
                details={"commission_rate": str(rate)},
            )
        account = await self.vendor_repository.upsert(vendor_id, fields)
        logger.info(
            "Vendor account updated.",
            extra={"vendor_id": vendor_id, "fields": sorted(fields)},
        )
        return account

    @unit_of_work("get_vendor_account")
    async def get_vendor_account(self, actor: Actor, vendor_id: Optional[int] = None) -> VendorAccount:
        vendor_id = self._resolve_vendor(actor, vendor_id)
        account = await self.vendor_repository.get_by_vendor_id(vendor_id)
        if not account:
            raise NotFoundError("Vendor account not found", details={"vendor_id": vendor_id})
        return account

    @unit_of_work("backfill_commission_snapshots")
    async def backfill_commission_snapshots(
        self, actor: Actor, vendor_id: int, commission_rate: Decimal
    ) -> Dict[str, Any]:
        """
        Fill missing commission snapshots from an explicit rate. Rows that
        already carry a snapshot are left untouched.
        """
        self._require_admin(actor, "backfill commission snapshots")
        rate = Decimal(str(commission_rate))
        if not (Decimal("0") <= rate <= Decimal("1")):
            raise ValidationError(
                "Commission rate must be a fraction between 0 and 1",
                reason="invalid_commission_rate",
                details={"commission_rate": str(rate)},
            )

        items = await self.order_repository.items_missing_commission(vendor_id)
        for item in items:
            await self.order_repository.set_commission_snapshot(
                item.id, rate, to_money(item.line_total * rate)
            )

        logger.warning(
            "Commission snapshots backfilled.",
            extra={
                "vendor_id": vendor_id,
                "commission_rate": str(rate),
                "order_item_ids": [item.id for item in items],
                "actor_id": actor.user_id,
            },
        )
        return {
            "vendor_id": vendor_id,
            "commission_rate": rate,
            "updated_items": len(items),
        }

