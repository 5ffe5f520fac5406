"""
Request -> payment -> delivery lifecycle.

Every status write is a conditional UPDATE keyed on the status the caller
observed, so two concurrent calls cannot both apply the same transition:
the loser sees rowcount 0 and gets InvalidState (or, for the first
deliverable, a silent no-op). Audit rows and notifications are written in
savepoints and never undo the transition they describe.
"""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.caller import CallerContext
from app.core.errors import (
    AccountSuspended,
    Forbidden,
    InvalidState,
    NotFound,
    ValidationFailed,
)
from app.models.audit import NotificationType
from app.models.deliverable import Deliverable
from app.models.dispute import Dispute, DisputeStatus
from app.models.payment import Payment, PaymentStatus
from app.models.request import Request, RequestStatus
from app.models.service import Service
from app.services.audit import record_audit
from app.services.currency import normalize_currency, validate_amount
from app.services.notifier import Notifier
from app.services.unit_of_work import unit_of_work

logger = logging.getLogger(__name__)

RS = RequestStatus
PS = PaymentStatus

# status -> statuses it may move to
REQUEST_TRANSITIONS: dict[RequestStatus, frozenset[RequestStatus]] = {
    RS.CREATED: frozenset({RS.PAYMENT_SUBMITTED}),
    RS.PAYMENT_SUBMITTED: frozenset({RS.PAYMENT_APPROVED, RS.PAYMENT_REJECTED}),
    # only through an upheld dispute
    RS.PAYMENT_REJECTED: frozenset({RS.PAYMENT_APPROVED}),
    RS.PAYMENT_APPROVED: frozenset({RS.IN_PROGRESS, RS.DELIVERED}),
    RS.IN_PROGRESS: frozenset({RS.DELIVERED}),
    RS.DELIVERED: frozenset({RS.CLOSED}),
    RS.CLOSED: frozenset(),
}

PAYMENT_TRANSITIONS: dict[PaymentStatus, frozenset[PaymentStatus]] = {
    PS.PENDING: frozenset({PS.APPROVED, PS.REJECTED}),
    PS.REJECTED: frozenset({PS.UNDER_REVIEW}),
    PS.UNDER_REVIEW: frozenset({PS.APPROVED, PS.REJECTED}),
    PS.APPROVED: frozenset(),
}

# the first deliverable flips these to DELIVERED
DELIVERY_READY = (RS.PAYMENT_APPROVED, RS.IN_PROGRESS)
# deliverables may be attached from here on
DELIVERY_ALLOWED = (RS.PAYMENT_APPROVED, RS.IN_PROGRESS, RS.DELIVERED, RS.CLOSED)

# admin-issued request transitions: target -> required source
ADMIN_REQUEST_MOVES: dict[RequestStatus, RequestStatus] = {
    RS.IN_PROGRESS: RS.PAYMENT_APPROVED,
    RS.CLOSED: RS.DELIVERED,
}


def can_transition_request(current: str, target: str) -> bool:
    try:
        return RS(target) in REQUEST_TRANSITIONS[RS(current)]
    except ValueError:
        return False


def can_transition_payment(current: str, target: str) -> bool:
    try:
        return PS(target) in PAYMENT_TRANSITIONS[PS(current)]
    except ValueError:
        return False


_EDGE_CHECKS = {
    Request: can_transition_request,
    Payment: can_transition_payment,
}


def _check_edges(model, sources, target: str) -> None:
    allowed = _EDGE_CHECKS.get(model)
    if allowed is None:
        return
    for source in sources:
        if not allowed(source.value, target):
            raise InvalidState(
                f"{model.__name__} cannot move from {source.value} to {target}"
            )


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def generate_reference_number() -> str:
    ts = _now().strftime("%Y%m%d%H%M%S")
    return f"PAY-{ts}-{secrets.token_hex(4).upper()}"


def active_payment(req: Request) -> Payment | None:
    """Most recent non-rejected payment, falling back to the most recent one."""
    payments = sorted(req.payments or [], key=lambda p: p.id)
    for p in reversed(payments):
        if p.status != PS.REJECTED.value:
            return p
    return payments[-1] if payments else None


@dataclass
class NewDeliverable:
    file_name: str
    file_url: str
    file_type: str = "application/octet-stream"
    file_size: int = 0
    description: str | None = None


@dataclass
class DeliverableAccess:
    deliverables: list[Deliverable] = field(default_factory=list)
    locked: bool = True
    reason: str | None = None


class RequestLifecycleEngine:
    def __init__(self, db: Session, notifier: Notifier | None = None) -> None:
        self.db = db
        self.notifier = notifier or Notifier()

    # ---------- plumbing ----------
    def _unit_of_work(self, op: str):
        return unit_of_work(self.db, op, self.notifier)

    @staticmethod
    def _ensure_active(caller: CallerContext) -> None:
        if caller.is_suspended:
            raise AccountSuspended(caller.suspended_reason)

    @classmethod
    def _require_admin(cls, caller: CallerContext) -> None:
        cls._ensure_active(caller)
        if not caller.is_admin:
            raise Forbidden("Admin role required")

    def _get_request(self, request_id: int) -> Request:
        req = self.db.get(Request, request_id)
        if not req:
            raise NotFound("Request not found")
        return req

    def _get_payment(self, payment_id: int) -> Payment:
        payment = self.db.get(Payment, payment_id)
        if not payment:
            raise NotFound("Payment not found")
        return payment

    def _cas(self, obj, model, expected, **values) -> bool:
        """UPDATE ... WHERE id = :id AND status IN (:expected); True if the row moved."""
        if "status" in values:
            _check_edges(model, expected, values["status"])
        stmt = (
            update(model)
            .where(model.id == obj.id, model.status.in_([s.value for s in expected]))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        moved = self.db.execute(stmt).rowcount == 1
        if moved:
            self.db.refresh(obj)
        return moved

    # ---------- requests ----------
    def create_request(
        self,
        caller: CallerContext,
        *,
        service_id: int,
        title: str,
        instructions: str,
        academic_level: str,
        deadline: datetime,
        notes: str | None = None,
    ) -> Request:
        with self._unit_of_work("create_request"):
            self._ensure_active(caller)
            if caller.is_admin:
                raise Forbidden("Only students can create requests")

            title = (title or "").strip()
            if not title:
                raise ValidationFailed("Title is required")
            if not (academic_level or "").strip():
                raise ValidationFailed("Academic level is required")
            deadline = _as_utc(deadline)
            if deadline <= _now():
                raise ValidationFailed("Deadline must be in the future")

            service = self.db.get(Service, service_id)
            if not service:
                raise NotFound("Service not found")
            if not service.is_active:
                raise ValidationFailed("Service is not available")

            req = Request(
                user_id=caller.user_id,
                service_id=service.id,
                title=title,
                instructions=instructions or "",
                academic_level=academic_level.strip(),
                deadline=deadline,
                notes=notes,
                status=RS.CREATED.value,
            )
            self.db.add(req)
            self.db.flush()

            record_audit(
                self.db,
                user_id=caller.user_id,
                action="CREATE_REQUEST",
                entity_type="REQUEST",
                entity_id=req.id,
                changes={"service_id": service.id},
            )

        logger.info("Request #%s created by user#%s", req.id, caller.user_id)
        return req

    def update_request_status(
        self, caller: CallerContext, request_id: int, status: str
    ) -> Request:
        with self._unit_of_work("update_request_status"):
            self._require_admin(caller)
            try:
                target = RS(status)
            except ValueError:
                raise ValidationFailed(f"Unknown request status: {status!r}")
            if target == RS.DELIVERED:
                raise ValidationFailed(
                    "DELIVERED is reached by uploading the first deliverable"
                )
            source = ADMIN_REQUEST_MOVES.get(target)
            if source is None:
                raise InvalidState(f"Admins cannot move a request to {target.value}")

            req = self._get_request(request_id)
            if req.status != source.value:
                raise InvalidState(
                    f"Request is {req.status}; {target.value} requires {source.value}"
                )

            values: dict = {"status": target.value}
            if target == RS.CLOSED:
                values["closed_at"] = _now()
            if not self._cas(req, Request, (source,), **values):
                raise InvalidState("Request status changed concurrently")

            record_audit(
                self.db,
                user_id=caller.user_id,
                action=f"UPDATE_REQUEST_STATUS_{target.value}",
                entity_type="REQUEST",
                entity_id=req.id,
                changes={"from": source.value, "to": target.value},
            )
            if target == RS.IN_PROGRESS:
                message = f'Work on your request "{req.title}" has started.'
            else:
                message = f'Your request "{req.title}" has been closed.'
            self.notifier.notify(
                self.db,
                user_id=req.user_id,
                type=NotificationType.REQUEST_UPDATED,
                title="Request Updated",
                message=message,
                link=f"/student/requests/{req.id}",
            )

        logger.info("Request #%s %s -> %s", req.id, source.value, target.value)
        return req

    # ---------- payments ----------
    def submit_payment(
        self,
        caller: CallerContext,
        request_id: int,
        *,
        receipt_url: str,
        amount,
        currency: str | None = None,
        reference_number: str | None = None,
    ) -> Payment:
        with self._unit_of_work("submit_payment"):
            self._ensure_active(caller)
            req = self._get_request(request_id)
            if req.user_id != caller.user_id:
                raise Forbidden("You do not own this request")

            value: Decimal = validate_amount(amount)
            code = normalize_currency(currency, settings.default_currency)
            receipt_url = (receipt_url or "").strip()
            if not receipt_url:
                raise ValidationFailed("A payment receipt is required")

            reference = (reference_number or "").strip() or generate_reference_number()
            taken = self.db.scalar(
                select(func.count(Payment.id)).where(
                    Payment.reference_number == reference
                )
            )
            if taken:
                raise InvalidState("Reference number already used")

            if req.status != RS.CREATED.value:
                raise InvalidState(
                    f"Request is {req.status}; payment can only be submitted once"
                )
            if not self._cas(req, Request, (RS.CREATED,), status=RS.PAYMENT_SUBMITTED.value):
                raise InvalidState("Payment already submitted for this request")

            payment = Payment(
                request=req,
                user_id=caller.user_id,
                reference_number=reference,
                amount=value,
                currency=code,
                receipt_url=receipt_url,
                status=PS.PENDING.value,
            )
            self.db.add(payment)
            try:
                self.db.flush()
            except IntegrityError:
                raise InvalidState("Reference number already used")

            record_audit(
                self.db,
                user_id=caller.user_id,
                action="SUBMIT_PAYMENT",
                entity_type="PAYMENT",
                entity_id=payment.id,
                changes={
                    "request_id": req.id,
                    "amount": str(value),
                    "currency": code,
                },
            )

        logger.info(
            "Payment #%s (%s %s) submitted for request #%s",
            payment.id,
            payment.amount,
            payment.currency,
            req.id,
        )
        return payment

    def review_payment(
        self,
        caller: CallerContext,
        payment_id: int,
        decision: str,
        *,
        rejection_reason: str | None = None,
        fraud_flagged: bool | None = None,
        fraud_notes: str | None = None,
    ) -> Payment:
        with self._unit_of_work("review_payment"):
            self._require_admin(caller)
            if decision not in (PS.APPROVED.value, PS.REJECTED.value):
                raise ValidationFailed("Decision must be APPROVED or REJECTED")
            approved = decision == PS.APPROVED.value
            reason = (rejection_reason or "").strip()
            if not approved and not reason:
                raise ValidationFailed("A rejection reason is required")

            payment = self._get_payment(payment_id)
            if payment.status != PS.PENDING.value:
                raise InvalidState(f"Payment is {payment.status}, not PENDING")

            values: dict = {
                "status": decision,
                "reviewed_at": _now(),
                "reviewed_by": caller.user_id,
                "rejection_reason": None if approved else reason,
            }
            if fraud_flagged is not None:
                values["fraud_flagged"] = fraud_flagged
            if fraud_notes is not None:
                values["fraud_notes"] = fraud_notes
            if not self._cas(payment, Payment, (PS.PENDING,), **values):
                raise InvalidState("Payment was already reviewed")

            req = self._get_request(payment.request_id)
            target = RS.PAYMENT_APPROVED if approved else RS.PAYMENT_REJECTED
            if not self._cas(req, Request, (RS.PAYMENT_SUBMITTED,), status=target.value):
                raise InvalidState(f"Request is {req.status}, not awaiting review")

            record_audit(
                self.db,
                user_id=caller.user_id,
                action=f"UPDATE_PAYMENT_STATUS_{decision}",
                entity_type="PAYMENT",
                entity_id=payment.id,
                changes={
                    "status": decision,
                    "rejection_reason": values["rejection_reason"],
                    "fraud_flagged": fraud_flagged,
                },
            )
            if approved:
                self.notifier.notify(
                    self.db,
                    user_id=payment.user_id,
                    type=NotificationType.PAYMENT_APPROVED,
                    title="Payment Approved",
                    message=f'Your payment for request "{req.title}" has been approved.',
                    link=f"/student/payments/{payment.id}",
                )
            else:
                self.notifier.notify(
                    self.db,
                    user_id=payment.user_id,
                    type=NotificationType.PAYMENT_REJECTED,
                    title="Payment Rejected",
                    message=(
                        f'Your payment for request "{req.title}" has been rejected. '
                        f"{reason}"
                    ),
                    link=f"/student/payments/{payment.id}",
                )

        logger.info("Payment #%s reviewed: %s", payment.id, decision)
        return payment

    # ---------- disputes ----------
    def file_dispute(
        self, caller: CallerContext, payment_id: int, explanation: str
    ) -> Dispute:
        with self._unit_of_work("file_dispute"):
            self._ensure_active(caller)
            payment = self._get_payment(payment_id)
            if payment.user_id != caller.user_id:
                raise Forbidden("You do not own this payment")

            explanation = (explanation or "").strip()
            if not explanation:
                raise ValidationFailed("An explanation is required")

            if payment.dispute is not None:
                raise InvalidState("A dispute already exists for this payment")
            if payment.status != PS.REJECTED.value:
                raise InvalidState(
                    f"Payment is {payment.status}; only rejected payments can be disputed"
                )
            if not self._cas(
                payment, Payment, (PS.REJECTED,), status=PS.UNDER_REVIEW.value
            ):
                raise InvalidState("Payment status changed concurrently")

            dispute = Dispute(
                payment=payment,
                explanation=explanation,
                status=DisputeStatus.OPEN.value,
            )
            self.db.add(dispute)
            try:
                self.db.flush()
            except IntegrityError:
                raise InvalidState("A dispute already exists for this payment")

            record_audit(
                self.db,
                user_id=caller.user_id,
                action="CREATE_PAYMENT_DISPUTE",
                entity_type="PAYMENT_DISPUTE",
                entity_id=dispute.id,
                changes={"payment_id": payment.id},
            )
            self.notifier.notify_admins(
                self.db,
                type=NotificationType.PAYMENT_DISPUTED,
                title="New Payment Dispute",
                message=(
                    f"A new dispute has been filed for payment "
                    f"{payment.reference_number}."
                ),
                link=f"/admin/payments/{payment.id}",
            )

        logger.info("Dispute #%s filed for payment #%s", dispute.id, payment.id)
        return dispute

    def resolve_dispute(
        self,
        caller: CallerContext,
        payment_id: int,
        *,
        approve: bool,
        admin_response: str,
    ) -> Dispute:
        with self._unit_of_work("resolve_dispute"):
            self._require_admin(caller)
            admin_response = (admin_response or "").strip()
            if not admin_response:
                raise ValidationFailed("A response to the student is required")

            payment = self._get_payment(payment_id)
            dispute = payment.dispute
            if dispute is None:
                raise NotFound("No dispute filed for this payment")
            if dispute.status != DisputeStatus.OPEN.value:
                raise InvalidState("Dispute is already resolved")
            if payment.status != PS.UNDER_REVIEW.value:
                raise InvalidState(f"Payment is {payment.status}, not UNDER_REVIEW")

            closed = self.db.execute(
                update(Dispute)
                .where(
                    Dispute.id == dispute.id,
                    Dispute.status == DisputeStatus.OPEN.value,
                )
                .values(
                    status=DisputeStatus.RESOLVED.value,
                    admin_response=admin_response,
                    resolved_at=_now(),
                )
                .execution_options(synchronize_session=False)
            ).rowcount
            if closed != 1:
                raise InvalidState("Dispute is already resolved")
            self.db.refresh(dispute)

            target = PS.APPROVED if approve else PS.REJECTED
            if not self._cas(
                payment,
                Payment,
                (PS.UNDER_REVIEW,),
                status=target.value,
                reviewed_at=_now(),
                reviewed_by=caller.user_id,
            ):
                raise InvalidState("Payment status changed concurrently")

            req = self._get_request(payment.request_id)
            if approve and not self._cas(
                req,
                Request,
                (RS.PAYMENT_REJECTED,),
                status=RS.PAYMENT_APPROVED.value,
            ):
                raise InvalidState(f"Request is {req.status}, not PAYMENT_REJECTED")

            record_audit(
                self.db,
                user_id=caller.user_id,
                action="RESOLVE_PAYMENT_DISPUTE",
                entity_type="PAYMENT_DISPUTE",
                entity_id=dispute.id,
                changes={"payment_id": payment.id, "approved": approve},
            )
            outcome = "upheld and your payment approved" if approve else "declined"
            self.notifier.notify(
                self.db,
                user_id=payment.user_id,
                type=NotificationType.DISPUTE_RESOLVED,
                title="Dispute Resolved",
                message=f"Your payment dispute has been {outcome}.",
                link=f"/student/payments/{payment.id}",
            )

        logger.info(
            "Dispute #%s resolved, payment #%s -> %s", dispute.id, payment.id, target.value
        )
        return dispute

    # ---------- deliverables ----------
    def upload_deliverable(
        self, caller: CallerContext, request_id: int, file: NewDeliverable
    ) -> Deliverable:
        with self._unit_of_work("upload_deliverable"):
            self._require_admin(caller)
            if not (file.file_name or "").strip() or not (file.file_url or "").strip():
                raise ValidationFailed("file_name and file_url are required")
            if file.file_size is not None and file.file_size < 0:
                raise ValidationFailed("file_size cannot be negative")

            req = self._get_request(request_id)
            if req.status not in {s.value for s in DELIVERY_ALLOWED}:
                raise InvalidState(
                    f"Request is {req.status}; its payment has not been approved"
                )

            deliverable = Deliverable(
                request=req,
                file_name=file.file_name.strip(),
                file_url=file.file_url.strip(),
                file_type=file.file_type or "application/octet-stream",
                file_size=file.file_size or 0,
                description=file.description,
            )
            self.db.add(deliverable)
            self.db.flush()

            # first writer wins; a later upload finds DELIVERED and leaves it be
            delivered_now = self._cas(
                req,
                Request,
                DELIVERY_READY,
                status=RS.DELIVERED.value,
                delivered_at=_now(),
            )

            record_audit(
                self.db,
                user_id=caller.user_id,
                action="UPLOAD_DELIVERABLE",
                entity_type="DELIVERABLE",
                entity_id=deliverable.id,
                changes={"request_id": req.id, "delivered": delivered_now},
            )
            self.notifier.notify(
                self.db,
                user_id=req.user_id,
                type=NotificationType.REQUEST_DELIVERED,
                title="New Deliverable Available",
                message=f'A new deliverable has been added to your request "{req.title}".',
                link=f"/student/requests/{req.id}",
            )

        logger.info(
            "Deliverable #%s attached to request #%s (status %s)",
            deliverable.id,
            req.id,
            req.status,
        )
        return deliverable

    def deliverable_gate(self, caller: CallerContext, req: Request) -> DeliverableAccess:
        """Decide visibility without raising; used when rendering a request."""
        if caller.is_admin:
            return DeliverableAccess(list(req.deliverables), locked=False)
        if caller.is_suspended:
            return DeliverableAccess(reason="account_suspended")
        if req.user_id != caller.user_id:
            return DeliverableAccess(reason="not_owner")
        payment = active_payment(req)
        if payment is None or payment.status != PS.APPROVED.value:
            return DeliverableAccess(reason="payment_not_approved")
        return DeliverableAccess(list(req.deliverables), locked=False)

    def access_deliverables(
        self, caller: CallerContext, request_id: int
    ) -> DeliverableAccess:
        self._ensure_active(caller)
        req = self._get_request(request_id)
        return self.deliverable_gate(caller, req)
