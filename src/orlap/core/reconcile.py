"""Reconciliation against the persisted reference data.

Never writes anything: each record comes back as a corrected copy plus an
outcome, and unknown references are collected for a human to resolve.
"""
import logging
from typing import Dict, List, Optional, Sequence

from .models import (
    FieldKey, RawExtractedRecord, ReconciliationOutcome, ReconciliationReport,
)
from .normalize import normalize_customer, normalize_order
from .repository import Repository

logger = logging.getLogger(__name__)

EMPTY = "(empty)"
PLACEHOLDERS = {"", "-"}


class ReferenceData:
    """A point-in-time snapshot of known customers and orders.

    Build a fresh one per reconciliation call; field-staff and duplicate
    lookups go straight to the repository.
    """

    def __init__(self, repo: Repository, customers: Dict[str, str], orders: Dict[str, str]):
        self.repo = repo
        self.customers = customers
        self.orders = orders

    @classmethod
    def fetch(cls, repo: Repository) -> "ReferenceData":
        customers = {}
        for customer in repo.find_customers_by_code(None):
            customers.setdefault(normalize_customer(customer.code), customer.code)
        orders = {}
        for order in repo.find_orders_by_number(None):
            orders.setdefault(normalize_order(order.number), order.number)
        return cls(repo, customers, orders)

    def canonical_customer(self, value: Optional[str]) -> Optional[str]:
        key = normalize_customer(value)
        return self.customers.get(key) if key else None

    def canonical_order(self, value: Optional[str]) -> Optional[str]:
        key = normalize_order(value)
        return self.orders.get(key) if key else None

    def knows_field_staff(self, code: Optional[str]) -> bool:
        return bool(code) and self.repo.find_field_staff_by_code(code) is not None

    def is_duplicate(self, account_number: Optional[str]) -> bool:
        number = (account_number or "").strip()
        if number in PLACEHOLDERS:
            return False
        return self.repo.find_product_by_account_number(number) is not None


def _append_missing(bucket: List[str], raw: Optional[str]):
    value = raw if raw and raw.strip() else EMPTY
    if value not in bucket:
        bucket.append(value)


def reconcile_record(record: RawExtractedRecord, ref: ReferenceData,
                     report: ReconciliationReport) -> ReconciliationOutcome:
    updates = {}

    raw_customer = record.get(FieldKey.CUSTOMER)
    customer = ref.canonical_customer(raw_customer)
    if customer is not None:
        updates[FieldKey.CUSTOMER.value] = customer
    else:
        _append_missing(report.missing_customers, raw_customer)

    raw_order = record.get(FieldKey.NO_ORDER)
    order = ref.canonical_order(raw_order)
    if order is not None:
        updates[FieldKey.NO_ORDER.value] = order
    else:
        _append_missing(report.missing_orders, raw_order)

    # Staff codes are compared exactly, no normalization
    raw_staff = record.get(FieldKey.CODE_AGEN)
    staff_ok = ref.knows_field_staff(raw_staff)
    if not staff_ok:
        _append_missing(report.missing_field_staff, raw_staff)

    corrected = record.with_fields(**updates)
    return ReconciliationOutcome(
        customer_resolved=customer is not None,
        order_resolved=order is not None,
        field_staff_resolved=staff_ok,
        is_duplicate=ref.is_duplicate(record.get(FieldKey.NO_REK)),
        corrected_record=corrected,
    )


def reconcile(records: Sequence[RawExtractedRecord], repo: Repository) -> ReconciliationReport:
    """Resolve references for a batch against a fresh snapshot of `repo`."""
    ref = ReferenceData.fetch(repo)
    report = ReconciliationReport()
    for record in records:
        outcome = reconcile_record(record, ref, report)
        report.outcomes.append(outcome)
        report.records.append(outcome.corrected_record)

    logger.info(
        "Reconciled %d records: %d missing customers, %d missing orders, %d missing staff, %d duplicates",
        len(records), len(report.missing_customers), len(report.missing_orders),
        len(report.missing_field_staff), len(report.duplicates),
    )
    return report
