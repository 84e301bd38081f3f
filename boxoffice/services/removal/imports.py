"""Subscription export import and the monthly removal filter.

The shop's subscription export (CSV with handle, customer_id,
line_variant_id and status columns) is loaded into the active and cancelled
contract sets. Before a monthly batch is queued, cancelled contracts whose
customer holds no active contract become pending removal targets for the
period.
"""

import csv
import io
import re
from dataclasses import dataclass, field
from typing import Any, Optional

import structlog

from boxoffice.repositories.removal_targets import RemovalTargetRepository
from boxoffice.repositories.subscriptions import ActiveSubscriptionRepository
from boxoffice.services.removal.models import SubscriptionRow

logger = structlog.get_logger(__name__)

KNOWN_STATUSES = ("ACTIVE", "PAUSED", "CANCELLED")

# Skipped rows echoed back to the caller
MAX_REPORTED_SKIPS = 20


def normalize_id(value: Optional[Any]) -> Optional[str]:
    """Strip whitespace, trailing commas and surrounding quotes from an id."""
    if value is None:
        return None
    cleaned = str(value).strip().rstrip(",").strip().strip("'\"").strip()
    return cleaned or None


def contract_id_from_handle(handle: Optional[str]) -> Optional[str]:
    """Trailing digits of a contract handle or GID."""
    match = re.search(r"(\d+)$", str(handle or ""))
    return match.group(1) if match else None


@dataclass
class ParsedExport:
    rows: list[SubscriptionRow] = field(default_factory=list)
    skipped: list[dict[str, Any]] = field(default_factory=list)
    total_parsed: int = 0


def parse_subscription_csv(content: bytes) -> ParsedExport:
    """Parse a subscription export into contract rows.

    Rows without a contract id (from the handle), without a customer id or
    with an unknown status are skipped and reported with their line number.

    Raises:
        ValueError: content is not UTF-8 CSV with a header row
    """
    try:
        text = content.decode("utf-8-sig")
    except UnicodeDecodeError as e:
        raise ValueError(f"CSV must be UTF-8: {e}") from e

    reader = csv.DictReader(io.StringIO(text))
    if not reader.fieldnames:
        raise ValueError("CSV has no header row")
    reader.fieldnames = [name.strip().lower() for name in reader.fieldnames]

    parsed = ParsedExport()
    try:
        for record in reader:
            parsed.total_parsed += 1
            row_num = reader.line_num

            handle = normalize_id(record.get("handle"))
            contract_id = contract_id_from_handle(handle)
            customer_id = normalize_id(record.get("customer_id"))
            status = str(record.get("status") or "").strip().upper()

            if not contract_id:
                parsed.skipped.append(
                    {"row": row_num, "reason": "no_contract_id", "handle": handle}
                )
                continue
            if not customer_id:
                parsed.skipped.append({"row": row_num, "reason": "no_customer_id"})
                continue
            if status not in KNOWN_STATUSES:
                parsed.skipped.append(
                    {"row": row_num, "reason": "unknown_status", "status": status}
                )
                continue

            parsed.rows.append(
                SubscriptionRow(
                    contract_id=contract_id,
                    customer_id=customer_id,
                    status=status,
                    line_variant_id=normalize_id(record.get("line_variant_id")),
                    handle=handle,
                )
            )
    except csv.Error as e:
        raise ValueError(f"CSV parse error: {e}") from e

    return parsed


class SubscriptionImporter:
    """Loads subscription exports and prepares monthly removal targets."""

    def __init__(
        self,
        subscriptions: ActiveSubscriptionRepository,
        targets: RemovalTargetRepository,
    ):
        self.subscriptions = subscriptions
        self.targets = targets

    async def import_csv(self, tenant: str, content: bytes) -> dict[str, Any]:
        """Parse an export and upsert its contracts.

        Raises:
            ValueError: the export could not be parsed
        """
        parsed = parse_subscription_csv(content)
        counts = await self.subscriptions.import_rows(tenant, parsed.rows)
        stats = {
            "total_parsed": parsed.total_parsed,
            "valid_rows": len(parsed.rows),
            "skipped_rows": len(parsed.skipped),
            **counts,
        }
        logger.info("subscriptions_imported", tenant=tenant, **stats)
        return {"stats": stats, "skipped": parsed.skipped[:MAX_REPORTED_SKIPS]}

    async def prepare_period(self, tenant: str, period: str) -> dict[str, int]:
        """Turn cancelled contracts into pending removal targets for a period."""
        return await self.targets.promote_cancelled(tenant, period)
