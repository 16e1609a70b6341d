"""Supplier invoice ingestion.

Matches an invoice webhook to a project or packing job and stores exactly
one invoice row. Unmatched invoices are logged for manual reconciliation and
are not an error.
"""

import json
import logging
from typing import Any

from webhooks.api import metrics
from webhooks.invoices.matcher import InvoiceMatcher, build_notes
from webhooks.invoices.schema import (
    InvoiceIngestResult,
    InvoicePayload,
    MatchKind,
    MatchResult,
    MatchType,
)
from webhooks.shared.config import Settings
from webhooks.store.base import DataStore, StoreError

logger = logging.getLogger(__name__)

INVOICE_TABLES = {
    MatchKind.PROJECT: ("project_invoices", "project_id"),
    MatchKind.PACKING: ("packing_invoices", "packing_id"),
}


class InvoiceValidationError(Exception):
    """Raised when a payload is missing required fields."""


class InvoicePersistenceError(Exception):
    """Raised when the invoice row could not be stored."""

    def __init__(self, table: str, detail: str) -> None:
        super().__init__(f"Failed to insert into {table}: {detail}")
        self.table = table
        self.detail = detail


class InvoiceIngestionService:
    """Matches and persists supplier invoices."""

    def __init__(self, settings: Settings, store: DataStore) -> None:
        """Initialize ingestion service.

        Args:
            settings: Application settings
            store: Data store used for lookups and the insert
        """
        self.settings = settings
        self.store = store
        self.matcher = InvoiceMatcher(store)

    def ingest(self, payload: InvoicePayload) -> InvoiceIngestResult:
        """Match an invoice and store it.

        Args:
            payload: Parsed invoice payload

        Returns:
            InvoiceIngestResult with status 'matched' or 'unmatched'

        Raises:
            InvoiceValidationError: If SupplierName is missing
            InvoicePersistenceError: If the insert fails
        """
        supplier = (payload.supplier_name or "").strip()
        if not supplier:
            raise InvoiceValidationError("SupplierName is required")

        result = self.matcher.match(payload)
        notes = build_notes(payload, result, self.settings.default_currency)

        table_info = INVOICE_TABLES.get(result.target.kind)
        if table_info is None:
            return self._unmatched(payload, result, notes)

        table, id_column = table_info
        record = self._build_record(payload, result, id_column, notes)
        try:
            inserted_id = self.store.insert_invoice(table, record)
        except StoreError as e:
            logger.error(f"Error inserting into {table}: {e.message}")
            metrics.invoices_received_total.labels(status="failed").inc()
            raise InvoicePersistenceError(table, e.message) from e

        logger.info(f"Inserted into {table}: {inserted_id}")
        metrics.invoices_received_total.labels(status="matched").inc()
        metrics.invoice_matches_total.labels(match_type=result.match_type.value).inc()

        return InvoiceIngestResult(
            status="matched",
            match_type=result.match_type,
            match_detail=result.match_detail,
            inserted_id=inserted_id,
            inserted_table=table,
            supplier=payload.supplier_name or supplier,
            amount=payload.total,
            invoice_number=payload.resolved_invoice_number,
        )

    def _organization_id(self) -> str | None:
        if self.settings.invoice_organization_id:
            return self.settings.invoice_organization_id
        return self.store.first_organization_id()

    def _build_record(
        self, payload: InvoicePayload, result: MatchResult, id_column: str, notes: str
    ) -> dict[str, Any]:
        return {
            id_column: result.target.id,
            "supplier": payload.supplier_name,
            "invoice_number": payload.resolved_invoice_number,
            "invoiced_amount": payload.total or 0,
            "invoice_date": payload.invoice_date or None,
            "due_date": payload.due_date or None,
            "status": "unpaid",
            "notes": notes or None,
            "invoice_file_url": payload.invoice_file_url or None,
            "organization_id": self._organization_id(),
        }

    def _unmatched(
        self, payload: InvoicePayload, result: MatchResult, notes: str
    ) -> InvoiceIngestResult:
        our_ref = payload.reference
        project_field = payload.project_field

        if result.target.kind is MatchKind.LARGE_PROJECT:
            # No invoice table exists for large projects yet
            logger.warning(
                f'Large project match not persisted for invoice from "{payload.supplier_name}": '
                f"{result.match_detail} (large_project_id={result.target.id})"
            )
        logger.warning(
            f'UNMATCHED invoice from "{payload.supplier_name}" - '
            f'OurReference: "{our_ref}", Project: "{project_field}"'
        )
        logger.warning(
            "Full unmatched payload: "
            + json.dumps(payload.model_dump(by_alias=True, exclude_none=True), ensure_ascii=False)
        )
        logger.warning(f"Unmatched invoice notes:\n{notes}")
        metrics.invoices_received_total.labels(status="unmatched").inc()
        metrics.invoice_matches_total.labels(match_type=result.match_type.value).inc()

        return InvoiceIngestResult(
            status="unmatched",
            match_type=result.match_type,
            match_detail=result.match_detail,
            supplier=payload.supplier_name or "",
            amount=payload.total,
            invoice_number=payload.resolved_invoice_number,
            our_reference=our_ref or None,
            project_field=project_field or None,
        )
