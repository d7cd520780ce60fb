from __future__ import annotations

import logging
from decimal import Decimal
from threading import RLock
from typing import Dict, List, Optional, Protocol
from uuid import uuid4

from .errors import PaymentError
from .models import ONE, ZERO, Receipt, ReceiptKind, utcnow
from .policy import refund_amount

logger = logging.getLogger(__name__)


class PaymentGateway(Protocol):
    def charge(self, booking_id: str, amount: Decimal) -> Receipt: ...

    def refund(self, booking_id: str, fraction: Decimal) -> Receipt: ...

    def void(self, charge: Receipt) -> Receipt: ...


class InMemoryPaymentGateway:
    """Records charges and refunds per booking without talking to a processor."""

    def __init__(self) -> None:
        self._lock = RLock()
        self._receipts: Dict[str, List[Receipt]] = {}
        self.fail_charges = False
        self.fail_refunds = False

    def charge(self, booking_id: str, amount: Decimal) -> Receipt:
        if amount < ZERO:
            raise PaymentError("charge amount must not be negative")
        if self.fail_charges:
            raise PaymentError("charge declined")
        receipt = self._record(booking_id, amount, ReceiptKind.CHARGE)
        logger.info("Payment charged", extra={"booking_id": booking_id, "amount": str(amount)})
        return receipt

    def refund(self, booking_id: str, fraction: Decimal) -> Receipt:
        if not ZERO <= fraction <= ONE:
            raise PaymentError("refund fraction must be within [0, 1]")
        if self.fail_refunds:
            raise PaymentError("refund rejected")
        charged = self.charged_total(booking_id)
        if charged == ZERO:
            raise PaymentError(f"booking {booking_id} has no charge to refund")
        receipt = self._record(booking_id, refund_amount(charged, fraction), ReceiptKind.REFUND)
        logger.info("Payment refunded", extra={"booking_id": booking_id, "amount": str(receipt.amount)})
        return receipt

    def void(self, charge: Receipt) -> Receipt:
        """Give back exactly one charge, leaving other charges on the booking alone."""
        if charge.kind is not ReceiptKind.CHARGE:
            raise PaymentError("only charges can be voided")
        if self.fail_refunds:
            raise PaymentError("void rejected")
        with self._lock:
            voided = any(
                r.kind is ReceiptKind.VOID and r.id == f"void_{charge.id}"
                for r in self._receipts.get(charge.booking_id, [])
            )
        if voided:
            raise PaymentError(f"charge {charge.id} was already voided")
        receipt = self._record(charge.booking_id, charge.amount, ReceiptKind.VOID, receipt_id=f"void_{charge.id}")
        logger.info("Charge voided", extra={"booking_id": charge.booking_id, "receipt_id": charge.id})
        return receipt

    def receipts(self, booking_id: str) -> List[Receipt]:
        with self._lock:
            return list(self._receipts.get(booking_id, []))

    def charged_total(self, booking_id: str) -> Decimal:
        """Charges still standing, net of voided ones."""
        total = ZERO
        for receipt in self.receipts(booking_id):
            if receipt.kind is ReceiptKind.CHARGE:
                total += receipt.amount
            elif receipt.kind is ReceiptKind.VOID:
                total -= receipt.amount
        return total

    def _record(
        self, booking_id: str, amount: Decimal, kind: ReceiptKind, receipt_id: Optional[str] = None
    ) -> Receipt:
        receipt = Receipt(
            id=receipt_id or f"rcpt_{uuid4().hex[:12]}",
            booking_id=booking_id,
            amount=amount,
            kind=kind,
            created_at=utcnow(),
        )
        with self._lock:
            self._receipts.setdefault(booking_id, []).append(receipt)
        return receipt
