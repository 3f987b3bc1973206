import logging
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Tuple

from . import adapters, banks, ingest
from .extract import Extractor, records_from_table
from .models import (
    BatchResult, DocumentFormat, DocumentText, ExtractionStatus, FieldKey, FileReport,
    RawExtractedRecord, SaveReport,
)
from .reconcile import reconcile
from .repository import FileStorage, Repository
from .validate import validate

logger = logging.getLogger(__name__)


class BatchPipeline:
    """Documents in, validated and reconciled records out.

    Files are handled one after another; whatever goes wrong with one file
    ends up in `BatchResult.errors` under its name and the rest carry on.
    """

    def __init__(self, repo: Repository, storage: Optional[FileStorage] = None,
                 extractor: Optional[Extractor] = None, max_bytes: Optional[int] = None,
                 expired_default: Optional[str] = None, default_bank: Optional[str] = None):
        self.repo = repo
        self.storage = storage
        self.extractor = extractor or Extractor.from_settings()
        self.max_bytes = max_bytes
        self.expired_default = expired_default
        self.default_bank = default_bank

    def records_from_document(self, doc: DocumentText, source: str) -> List[RawExtractedRecord]:
        records: List[RawExtractedRecord] = []
        if doc.has_table:
            records = records_from_table(doc.table_rows, source, self.default_bank)
            logger.info("%s: %d records from table", source, len(records))
        if not records:
            # Word label/value tables and odd sheets carry no usable header row
            records = self.extractor.extract_records(doc.text, source)
            if doc.format == DocumentFormat.DOCX and records and doc.images:
                records = self._attach_images(records, doc, source)
        return records

    def _attach_images(self, records, doc, source):
        if self.storage is None:
            return records
        records = list(records)
        for image in doc.images:
            if image.record_index >= len(records):
                continue
            record = records[image.record_index]
            if record.get(image.field):
                continue
            ext = image.content_type.rsplit("/", 1)[-1]
            try:
                url = self.storage.store(image.content, f"{Path(source).stem}_{image.field.value}.{ext}")
            except Exception as e:
                logger.warning("%s: could not store %s for record %d: %s",
                               source, image.field.value, image.record_index, e)
                continue
            records[image.record_index] = record.with_fields(**{image.field.value: url})
        return records

    def process_file(self, path: Path) -> Tuple[DocumentText, List[RawExtractedRecord]]:
        fmt = ingest.check_file(path, self.max_bytes)
        doc = adapters.read_document(path, fmt)
        if doc.status == ExtractionStatus.FAILED:
            raise ValueError(doc.error or "document could not be read")
        if doc.status == ExtractionStatus.DEGRADED:
            logger.warning("%s: text extraction degraded (%s)", path.name, doc.error or "heuristic")
        return doc, self.records_from_document(doc, path.name)

    def run(self, paths: Iterable[Path],
            on_file: Optional[Callable[[FileReport], None]] = None) -> BatchResult:
        result = BatchResult()
        for path in paths:
            path = Path(path)
            report = FileReport(filename=path.name, format=adapters.detect_format(path), status="extracted")
            try:
                doc, records = self.process_file(path)
                report.records = len(records)
                report.error = doc.error
                if doc.status == ExtractionStatus.DEGRADED:
                    report.status = "degraded"
                elif not records:
                    report.status = "empty"
                result.records.extend(records)
            except Exception as e:
                logger.error("Failed to process %s: %s", path.name, e)
                report.status = "error"
                report.error = str(e)
                result.errors[path.name] = str(e)
            result.files.append(report)
            if on_file:
                on_file(report)

        if self.expired_default:
            result.records = [
                r if r.get(FieldKey.EXPIRED) else r.with_fields(expired=self.expired_default)
                for r in result.records
            ]

        result.validation = validate(result.records)
        result.reconciliation = reconcile(result.validation.valid_records, self.repo)

        for index, record in enumerate(result.records):
            missing = banks.missing_fields(record, banks.resolve(record.get(FieldKey.BANK), self.default_bank))
            if missing:
                result.bank_warnings[index] = [key.value for key in missing]

        logger.info("Batch: %d files, %d errors, %d records, %d valid",
                    len(result.files), len(result.errors), len(result.records),
                    result.validation.summary.valid)
        return result


def save_records(result: BatchResult, repo: Repository) -> SaveReport:
    """Persist reconciled valid records, skipping flagged duplicates."""
    report = SaveReport()
    for index, outcome in enumerate(result.reconciliation.outcomes):
        if outcome.is_duplicate:
            report.skipped_duplicates += 1
            continue
        record = outcome.corrected_record
        try:
            report.saved_ids.append(repo.save(record))
        except Exception as e:
            logger.error("Saving record %d failed: %s", index, e)
            report.errors.append({
                "index": index,
                "noOrder": record.get(FieldKey.NO_ORDER),
                "error": str(e),
            })
    return report
