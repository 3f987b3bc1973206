import logging
from pathlib import Path
from typing import List, Dict

import pandas as pd

from .models import BatchResult, FieldKey

logger = logging.getLogger(__name__)

# Column order for record sheets; extras follow after these
FIELD_COLUMNS = [key.value for key in FieldKey]


def _frame(rows: List[Dict], leading: List[str]) -> pd.DataFrame:
    df = pd.DataFrame(rows)
    if df.empty:
        return pd.DataFrame(columns=leading)
    ordered = [c for c in leading + FIELD_COLUMNS if c in df.columns]
    rest = [c for c in df.columns if c not in ordered]
    return df[ordered + rest]


def generate_review_workbook(result: BatchResult, output_path: Path) -> Path:
    """Excel workbook for the back-office reviewer: one sheet per outcome."""
    valid_rows = []
    for outcome in result.reconciliation.outcomes:
        record = outcome.corrected_record
        row = {
            "Source File": record.source_file,
            "Duplicate": "YES" if outcome.is_duplicate else "",
            "Customer OK": outcome.customer_resolved,
            "Order OK": outcome.order_resolved,
            "Orlap OK": outcome.field_staff_resolved,
        }
        row.update(record.as_flat_dict())
        valid_rows.append(row)

    invalid_rows = []
    for err in result.validation.errors:
        row = {
            "Source File": err.record.source_file,
            "Record": err.record_index + 1,
            "Errors": "; ".join(err.field_errors),
        }
        row.update(err.record.as_flat_dict())
        invalid_rows.append(row)

    rec = result.reconciliation
    missing_rows = (
        [{"Type": "Customer", "Value": v} for v in rec.missing_customers]
        + [{"Type": "Order", "Value": v} for v in rec.missing_orders]
        + [{"Type": "Kode Orlap", "Value": v} for v in rec.missing_field_staff]
    )

    duplicate_rows = [
        dict(record.as_flat_dict(), **{"Source File": record.source_file})
        for record in rec.duplicates
    ]

    file_rows = [
        {"File": f.filename, "Status": f.status, "Records": f.records, "Error": f.error or ""}
        for f in result.files
    ]

    output_path.parent.mkdir(parents=True, exist_ok=True)
    with pd.ExcelWriter(output_path, engine="openpyxl") as writer:
        _frame(valid_rows, ["Source File", "Duplicate", "Customer OK", "Order OK", "Orlap OK"]) \
            .to_excel(writer, sheet_name="Valid", index=False)
        _frame(invalid_rows, ["Source File", "Record", "Errors"]) \
            .to_excel(writer, sheet_name="Invalid", index=False)
        pd.DataFrame(missing_rows, columns=["Type", "Value"]) \
            .to_excel(writer, sheet_name="Missing References", index=False)
        _frame(duplicate_rows, ["Source File"]) \
            .to_excel(writer, sheet_name="Duplicates", index=False)
        pd.DataFrame(file_rows, columns=["File", "Status", "Records", "Error"]) \
            .to_excel(writer, sheet_name="Files", index=False)

    logger.info("Review workbook written to %s", output_path)
    return output_path


def generate_errors_csv(result: BatchResult, output_path: Path) -> Path:
    """One line per problem: unreadable files first, then invalid records."""
    rows = [
        {"source": name, "record": "", "noOrder": "", "error": message}
        for name, message in result.errors.items()
    ]
    for err in result.validation.errors:
        for message in err.field_errors:
            rows.append({
                "source": err.record.source_file or err.record.source_chat or "",
                "record": err.record_index + 1,
                "noOrder": err.record.get(FieldKey.NO_ORDER) or "",
                "error": message,
            })
    output_path.parent.mkdir(parents=True, exist_ok=True)
    pd.DataFrame(rows, columns=["source", "record", "noOrder", "error"]) \
        .to_csv(output_path, index=False, encoding="utf-8-sig")
    return output_path
