"""Invoice issuance: one invoice per Completed session."""

import logging
from datetime import UTC, datetime
from uuid import uuid4

from ..logging_utils import log_invoice_event
from ..models import Invoice, InvoiceStatus, SessionStatus
from ..plugins.base import HookRunner, PluginHook, no_hooks
from ..repositories import InvoiceRepository, SessionRepository
from .errors import InvoiceNotFound, InvoiceStateError, SessionNotCompleted, SessionNotFound
from .locks import KeyedLocks

logger = logging.getLogger(__name__)


class InvoiceIssuer:
    """
    Converts a Completed session into exactly one invoice.

    Issuance is idempotent: the unique index on ``invoice.session_id`` makes
    the insert a no-op when an invoice already exists, and the stored one is
    returned unchanged. The amount is copied from the session's frozen total
    and never changes afterwards; only the status moves, Issued -> Paid or
    Issued -> Cancelled.
    """

    def __init__(
        self,
        invoices: InvoiceRepository,
        sessions: SessionRepository,
        locks: KeyedLocks | None = None,
        run_hooks: HookRunner | None = None,
    ):
        self.invoices = invoices
        self.sessions = sessions
        self.locks = locks or KeyedLocks()
        self._run_hooks = run_hooks or no_hooks

    async def issue_or_get(self, session_id: str, now: datetime | None = None) -> Invoice:
        """
        Return the invoice for a session, issuing it on first call.

        Raises:
            SessionNotFound: unknown session
            SessionNotCompleted: the session is Active or Error
        """
        existing = await self.invoices.get_by_session(session_id)
        if existing is not None:
            return existing

        async with self.locks.hold(f"invoice:{session_id}"):
            session = await self.sessions.get_by_id(session_id)
            if session is None:
                raise SessionNotFound(session_id)
            if session.status != SessionStatus.COMPLETED or session.total_cost is None:
                raise SessionNotCompleted(session_id, session.status.value)

            candidate = Invoice(
                id=str(uuid4()),
                session_id=session.id,
                user_id=session.user_id,
                amount=session.total_cost,
                issued_at=now or datetime.now(UTC),
            )
            invoice = await self.invoices.create_if_absent(candidate)

        if invoice.id == candidate.id:
            log_invoice_event(
                logger,
                "issued",
                invoice.id,
                session_id=session_id,
                user_id=invoice.user_id,
                amount=str(invoice.amount),
            )
            await self._run_hooks(
                PluginHook.AFTER_INVOICE_ISSUED, {"session_id": session_id}, invoice
            )
        return invoice

    async def get(self, invoice_id: str) -> Invoice:
        invoice = await self.invoices.get_by_id(invoice_id)
        if invoice is None:
            raise InvoiceNotFound(invoice_id)
        return invoice

    async def list_for_user(self, user_id: str, limit: int = 100) -> list[Invoice]:
        return await self.invoices.get_all_for_user(user_id, limit)

    async def mark_paid(self, invoice_id: str, payment_id: str) -> Invoice:
        """Record a payment. Paying an already Paid invoice with the same payment id is a no-op."""
        invoice = await self.get(invoice_id)
        if invoice.status == InvoiceStatus.PAID and invoice.payment_id == payment_id:
            return invoice
        return await self._transition(invoice, InvoiceStatus.PAID, payment_id)

    async def cancel(self, invoice_id: str) -> Invoice:
        invoice = await self.get(invoice_id)
        if invoice.status == InvoiceStatus.CANCELLED:
            return invoice
        return await self._transition(invoice, InvoiceStatus.CANCELLED)

    async def _transition(
        self,
        invoice: Invoice,
        to_status: InvoiceStatus,
        payment_id: str | None = None,
    ) -> Invoice:
        if invoice.status != InvoiceStatus.ISSUED:
            raise InvoiceStateError(invoice.id, invoice.status.value, to_status.value)

        if not await self.invoices.transition(invoice.id, InvoiceStatus.ISSUED, to_status, payment_id):
            # Someone else moved it first
            current = await self.get(invoice.id)
            raise InvoiceStateError(invoice.id, current.status.value, to_status.value)

        log_invoice_event(
            logger,
            to_status.value.lower(),
            invoice.id,
            session_id=invoice.session_id,
            payment_id=payment_id,
        )
        return await self.get(invoice.id)
