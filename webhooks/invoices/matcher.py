"""Resolve supplier invoices to projects, packing jobs or large projects.

Strategies run in order and stop at the first one that yields an id:

1. ``OurReference`` -> booking number -> project (or job, trace only)
2. ``Project`` -> project name
3. ``Project`` -> packing job name
4. ``Project`` -> large project name
"""

import logging

from webhooks.invoices.schema import InvoicePayload, MatchResult, MatchTarget, MatchType
from webhooks.store.base import DataStore

logger = logging.getLogger(__name__)

UNMATCHED = MatchResult(target=MatchTarget.unmatched())


class InvoiceMatcher:
    """Runs the matching strategies against the data store."""

    def __init__(self, store: DataStore) -> None:
        self.store = store

    def match(self, payload: InvoicePayload) -> MatchResult:
        """Find the entity an invoice belongs to.

        Args:
            payload: Validated invoice payload

        Returns:
            MatchResult; its target is unmatched if no strategy produced an id
        """
        result = UNMATCHED
        our_ref = payload.reference
        project_field = payload.project_field

        if our_ref:
            result = self._match_booking_reference(our_ref)

        if not result.target.is_matched and project_field:
            for strategy in (
                self._match_project_name,
                self._match_packing_name,
                self._match_large_project_name,
            ):
                candidate = strategy(project_field)
                if candidate is not None:
                    result = candidate
                    break

        logger.info(
            f"Match result: {result.match_type.value} - {result.match_detail or 'No match found'}"
        )
        return result

    def _match_booking_reference(self, our_ref: str) -> MatchResult:
        logger.info(f'Trying match via OurReference: "{our_ref}"')
        booking = self.store.find_booking_by_number(our_ref)
        if not booking:
            return UNMATCHED

        booking_id = booking["id"]
        logger.info(f'Found booking {booking_id} via booking_number "{our_ref}"')
        result = UNMATCHED

        assigned_id = booking.get("assigned_project_id")
        if assigned_id:
            project = self.store.get_project(assigned_id)
            if project:
                return MatchResult(
                    target=MatchTarget.project(project["id"]),
                    match_type=MatchType.BOOKING_NUMBER_TO_PROJECT,
                    match_detail=(
                        f'Matched via OurReference "{our_ref}" -> booking -> project {project["id"]}'
                    ),
                )
            job = self.store.get_job(assigned_id)
            if job:
                result = MatchResult(
                    target=MatchTarget.unmatched(),
                    match_type=MatchType.BOOKING_NUMBER_TO_JOB,
                    match_detail=(
                        f'Matched via OurReference "{our_ref}" -> booking -> job {job["id"]} '
                        "(no invoice table for jobs)"
                    ),
                )
                logger.info(result.match_detail)

        project = self.store.find_project_by_booking(booking_id)
        if project:
            return MatchResult(
                target=MatchTarget.project(project["id"]),
                match_type=MatchType.BOOKING_NUMBER_TO_PROJECT,
                match_detail=(
                    f'Matched via OurReference "{our_ref}" -> booking -> project {project["id"]}'
                ),
            )
        return result

    def _match_project_name(self, project_field: str) -> MatchResult | None:
        logger.info(f'Trying match via Project field: "{project_field}"')
        project = self.store.search_projects_by_name(project_field)
        if not project:
            return None
        return MatchResult(
            target=MatchTarget.project(project["id"]),
            match_type=MatchType.PROJECT_NAME,
            match_detail=(
                f'Matched via Project field "{project_field}" -> project '
                f'"{project.get("name")}" ({project["id"]})'
            ),
        )

    def _match_packing_name(self, project_field: str) -> MatchResult | None:
        packing = self.store.search_packings_by_name(project_field)
        if not packing:
            return None
        return MatchResult(
            target=MatchTarget.packing(packing["id"]),
            match_type=MatchType.PACKING_NAME,
            match_detail=(
                f'Matched via Project field "{project_field}" -> packing '
                f'"{packing.get("name")}" ({packing["id"]})'
            ),
        )

    def _match_large_project_name(self, project_field: str) -> MatchResult | None:
        large_project = self.store.search_large_projects_by_name(project_field)
        if not large_project:
            return None
        return MatchResult(
            target=MatchTarget.large_project(large_project["id"]),
            match_type=MatchType.LARGE_PROJECT_NAME,
            match_detail=(
                f'Matched via Project field "{project_field}" -> large project '
                f'"{large_project.get("name")}" ({large_project["id"]})'
            ),
        )


def _format_amount(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else str(value)


def build_notes(payload: InvoicePayload, result: MatchResult, default_currency: str) -> str:
    """Collect secondary payload fields into a newline-separated note.

    Args:
        payload: Invoice payload
        result: Match result; unmatched invoices also record the references tried
        default_currency: Currency that is not worth mentioning

    Returns:
        Notes text, empty if nothing was worth noting
    """
    parts: list[str] = []
    if payload.comments:
        parts.append(payload.comments)
    if payload.your_reference:
        parts.append(f"Their reference: {payload.your_reference}")
    if payload.cost_center:
        parts.append(f"Cost center: {payload.cost_center}")
    if payload.currency and payload.currency != default_currency:
        parts.append(f"Currency: {payload.currency}")
    if payload.gross_total and payload.total and payload.gross_total != payload.total:
        currency = payload.currency or default_currency
        parts.append(f"Gross total: {_format_amount(payload.gross_total)} {currency}")
    if payload.status:
        parts.append(f"Supplier status: {payload.status}")
    if payload.supplier_number:
        parts.append(f"Supplier number: {payload.supplier_number}")
    if payload.document_number:
        parts.append(f"Document number: {payload.document_number}")
    if not result.target.is_matched:
        parts.append(f"OurReference: {payload.reference or '(empty)'}")
        parts.append(f"Project: {payload.project_field or '(empty)'}")
    return "\n".join(parts)
