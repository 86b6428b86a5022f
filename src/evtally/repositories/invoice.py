"""Repository for invoice operations."""

from ..models import Invoice, InvoiceStatus
from .base import BaseRepository


class InvoiceRepository(BaseRepository):
    """Handles database operations for invoices."""

    async def create_if_absent(self, invoice: Invoice) -> Invoice:
        """
        Insert an invoice unless the session already has one.

        Always returns the invoice stored for the session, which is the
        existing one when another request got there first.
        """
        query = """
            INSERT INTO invoice (id, session_id, user_id, amount, status, payment_id, issued_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(session_id) DO NOTHING
        """
        await self._write(
            query,
            (
                invoice.id,
                invoice.session_id,
                invoice.user_id,
                invoice.amount,
                InvoiceStatus(invoice.status).value,
                invoice.payment_id,
                invoice.issued_at,
            ),
        )
        return await self.get_by_session(invoice.session_id)

    async def get_by_id(self, invoice_id: str) -> Invoice | None:
        """Get invoice by ID."""
        row = await self._fetchone("SELECT * FROM invoice WHERE id = ?", (invoice_id,))
        if row:
            return self._row_to_model(row)
        return None

    async def get_by_session(self, session_id: str) -> Invoice | None:
        """Get the invoice issued for a session."""
        row = await self._fetchone("SELECT * FROM invoice WHERE session_id = ?", (session_id,))
        if row:
            return self._row_to_model(row)
        return None

    async def get_all_for_user(self, user_id: str, limit: int = 100) -> list[Invoice]:
        """Get a user's invoices, newest first."""
        rows = await self._fetchall(
            """
            SELECT * FROM invoice
            WHERE user_id = ?
            ORDER BY issued_at DESC
            LIMIT ?
            """,
            (user_id, limit),
        )
        return [self._row_to_model(row) for row in rows]

    async def transition(
        self,
        invoice_id: str,
        from_status: InvoiceStatus,
        to_status: InvoiceStatus,
        payment_id: str | None = None,
    ) -> bool:
        """Change status only if the invoice is still in from_status. Amount is never touched."""
        query = """
            UPDATE invoice
            SET status = ?,
                payment_id = COALESCE(?, payment_id),
                updated_at = CURRENT_TIMESTAMP
            WHERE id = ? AND status = ?
        """
        return await self._update_if(
            query,
            (
                InvoiceStatus(to_status).value,
                payment_id,
                invoice_id,
                InvoiceStatus(from_status).value,
            ),
        )

    def _row_to_model(self, row) -> Invoice:
        """Convert database row to Invoice model."""
        return Invoice(
            id=row["id"],
            session_id=row["session_id"],
            user_id=row["user_id"],
            amount=row["amount"],
            status=InvoiceStatus(row["status"]),
            payment_id=row["payment_id"],
            issued_at=row["issued_at"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )
