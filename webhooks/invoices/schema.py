"""Supplier invoice webhook models.

Field names on the wire follow the accounting system's export format
(PascalCase); attribute names are snake_case.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class InvoicePayload(BaseModel):
    """Inbound supplier invoice.

    Only ``SupplierName`` is required by the handler. It is optional here so
    its absence can be reported as a validation error instead of a schema
    error.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore", coerce_numbers_to_str=True)

    supplier_name: str | None = Field(None, alias="SupplierName")
    supplier_number: str | None = Field(None, alias="SupplierNumber")
    document_number: str | None = Field(None, alias="DocumentNumber")
    supplier_invoice_number: str | None = Field(None, alias="SupplierInvoiceNumber")
    invoice_date: str | None = Field(None, alias="InvoiceDate")
    due_date: str | None = Field(None, alias="DueDate")
    total: float | None = Field(None, alias="Total")
    gross_total: float | None = Field(None, alias="GrossTotal")
    currency: str | None = Field(None, alias="Currency")
    status: str | None = Field(None, alias="Status")
    description: str | None = Field(None, alias="Description")
    our_reference: str | None = Field(None, alias="OurReference")
    your_reference: str | None = Field(None, alias="YourReference")
    comments: str | None = Field(None, alias="Comments")
    cost_center: str | None = Field(None, alias="CostCenter")
    project: str | None = Field(None, alias="Project")
    invoice_file_url: str | None = Field(None, alias="InvoiceFileUrl")
    file_name: str | None = Field(None, alias="FileName")

    @property
    def resolved_invoice_number(self) -> str | None:
        """Supplier's own invoice number, else the document number."""
        return self.supplier_invoice_number or self.document_number or None

    @property
    def reference(self) -> str:
        return (self.our_reference or "").strip()

    @property
    def project_field(self) -> str:
        return (self.project or "").strip()


class MatchKind(str, Enum):
    """Entity an invoice was matched to."""

    PROJECT = "project"
    PACKING = "packing"
    LARGE_PROJECT = "large_project"
    UNMATCHED = "unmatched"


class MatchType(str, Enum):
    """Strategy that produced the match."""

    BOOKING_NUMBER_TO_PROJECT = "booking_number_to_project"
    BOOKING_NUMBER_TO_JOB = "booking_number_to_job"
    PROJECT_NAME = "project_name"
    PACKING_NAME = "packing_name"
    LARGE_PROJECT_NAME = "large_project_name"
    UNMATCHED = "unmatched"


@dataclass(frozen=True)
class MatchTarget:
    """Tagged match target; exactly one kind, at most one id."""

    kind: MatchKind
    id: str | None = None

    def __post_init__(self) -> None:
        if self.kind is MatchKind.UNMATCHED:
            if self.id is not None:
                raise ValueError("Unmatched target cannot carry an id")
        elif not self.id:
            raise ValueError(f"{self.kind.value} target requires an id")

    @classmethod
    def project(cls, project_id: str) -> "MatchTarget":
        return cls(MatchKind.PROJECT, project_id)

    @classmethod
    def packing(cls, packing_id: str) -> "MatchTarget":
        return cls(MatchKind.PACKING, packing_id)

    @classmethod
    def large_project(cls, large_project_id: str) -> "MatchTarget":
        return cls(MatchKind.LARGE_PROJECT, large_project_id)

    @classmethod
    def unmatched(cls) -> "MatchTarget":
        return cls(MatchKind.UNMATCHED)

    @property
    def is_matched(self) -> bool:
        return self.kind is not MatchKind.UNMATCHED


@dataclass(frozen=True)
class MatchResult:
    """Outcome of the matching strategies with its decision trace."""

    target: MatchTarget
    match_type: MatchType = MatchType.UNMATCHED
    match_detail: str = ""


class InvoiceIngestResult(BaseModel):
    """Result of ingesting one invoice webhook."""

    status: str  # matched, unmatched
    match_type: MatchType
    match_detail: str
    inserted_id: str | None = None
    inserted_table: str | None = None
    supplier: str
    amount: float | None = None
    invoice_number: str | None = None
    our_reference: str | None = None
    project_field: str | None = None

    def to_response(self) -> dict[str, Any]:
        """Render the webhook response body."""
        if self.status == "matched":
            return {
                "status": "matched",
                "match_type": self.match_type.value,
                "match_detail": self.match_detail,
                "inserted_id": self.inserted_id,
                "inserted_table": self.inserted_table,
                "supplier": self.supplier,
                "amount": self.amount,
                "invoice_number": self.invoice_number,
            }

        body: dict[str, Any] = {
            "status": "unmatched",
            "message": (
                "The invoice could not be matched to any project. "
                "The payload has been logged for manual review."
            ),
            "match_attempts": {
                "our_reference": self.our_reference,
                "project_field": self.project_field,
            },
            "payload_received": True,
        }
        if self.match_type is not MatchType.UNMATCHED:
            # Candidate found but not persisted (job or large project)
            body["match_type"] = self.match_type.value
            body["match_detail"] = self.match_detail
        return body
