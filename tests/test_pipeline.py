import tempfile
import unittest
import sys
from pathlib import Path
from unittest import mock

import pandas as pd

sys.path.insert(0, str(Path(__file__).parents[1] / "src"))

from orlap.core import config, export, ingest
from orlap.core.extract import Extractor
from orlap.core.models import (
    DocumentFormat, DocumentText, ExtractedImage, ExtractionStatus, FieldKey, RawExtractedRecord,
)
from orlap.core.pipeline import BatchPipeline, save_records
from orlap.core.repository import LocalRepository

F = FieldKey

HEADER = "No Order,Bank,NIK,Nama,No Rekening,No ATM,No HP,PIN ATM,PIN Mobile,Email,Customer,Kode Orlap"
ROWS = [
    "ORD-001,BRI,1234567890123456,Budi,1234567890,1234567890123456,081234567890,123456,654321,budi@mail.com,pt abc,AG01",
    "ORD-002,BRI,123,Siti,1234567891,1234567890123457,081234567891,1234,4321,siti@mail.com,PT-ABC,AG01",
    "ORD-003,BRI,6543210987654321,Andi,1234567899,1234567890123458,081234567892,1111,2222,andi@mail.com,PT-ABC,AG01",
]


class MemoryStorage:
    def __init__(self):
        self.files = []

    def store(self, data, filename):
        self.files.append(filename)
        return f"mem://{filename}"


class PipelineTestCase(unittest.TestCase):
    def setUp(self):
        config.settings.reset()
        self.tmp = tempfile.TemporaryDirectory()
        self.dir = Path(self.tmp.name)

        self.repo = LocalRepository()
        self.repo.load_reference({
            "customers": ["PT-ABC"],
            "orders": ["ORD-001", "ORD-002", "ORD-003"],
            "field_staff": ["AG01"],
        })
        self.repo.save(RawExtractedRecord(fields={F.NO_REK: "1234567899"}))
        self.pipeline = BatchPipeline(
            self.repo,
            storage=MemoryStorage(),
            extractor=Extractor(default_bank="BRI"),
            max_bytes=2000,
            expired_default="2026-12-31",
            default_bank="BRI",
        )

    def tearDown(self):
        self.tmp.cleanup()

    def write(self, name, content):
        path = self.dir / name
        if isinstance(content, bytes):
            path.write_bytes(content)
        else:
            path.write_text(content, encoding="utf-8")
        return path


class TestBatch(PipelineTestCase):
    def test_csv_batch_end_to_end(self):
        path = self.write("produk.csv", "\n".join([HEADER] + ROWS) + "\n")
        result = self.pipeline.run([path])

        self.assertEqual(result.errors, {})
        self.assertEqual(len(result.records), 3)
        self.assertTrue(all(r.get(F.EXPIRED) == "2026-12-31" for r in result.records))
        self.assertEqual(result.validation.summary.valid, 2)
        self.assertEqual(result.validation.errors[0].record.get(F.NO_ORDER), "ORD-002")

        outcomes = result.reconciliation.outcomes
        self.assertEqual(outcomes[0].corrected_record.get(F.CUSTOMER), "PT-ABC")
        self.assertEqual([o.is_duplicate for o in outcomes], [False, True])
        self.assertEqual(result.reconciliation.missing_customers, [])
        self.assertEqual(result.files[0].status, "extracted")
        self.assertEqual(result.files[0].records, 3)

    def test_one_bad_file_does_not_stop_the_batch(self):
        good = self.write("a_produk.csv", "\n".join([HEADER] + ROWS[:1]) + "\n")
        broken = self.write("b_broken.xlsx", b"not a workbook")
        unsupported = self.write("c_notes.txt", "No.ORDER: X1")
        big = self.write("d_big.csv", "x" * 3000)
        scanned = self.write("e_scan.pdf", b"%PDF-1.4 broken\nBT (No.ORDER: P1) Tj ET\nBT (NIK: 1234567890123456) Tj ET\n")

        seen = []
        result = self.pipeline.run([good, broken, unsupported, big, scanned], on_file=seen.append)

        self.assertEqual(set(result.errors), {"b_broken.xlsx", "c_notes.txt", "d_big.csv"})
        self.assertIn("limit", result.errors["d_big.csv"])
        self.assertEqual([r.filename for r in seen], [p.name for p in (good, broken, unsupported, big, scanned)])
        statuses = {r.filename: r.status for r in result.files}
        self.assertEqual(statuses["a_produk.csv"], "extracted")
        self.assertEqual(statuses["b_broken.xlsx"], "error")
        self.assertEqual(statuses["e_scan.pdf"], "degraded")
        self.assertEqual(len(result.records), 2)

    def test_empty_document(self):
        path = self.write("kosong.csv", "Judul\n")
        result = self.pipeline.run([path])
        self.assertEqual(result.files[0].status, "empty")
        self.assertIsNone(result.files[0].error)
        self.assertEqual(result.records, [])

    def test_corrupt_pdf_is_degraded_not_empty(self):
        path = self.write("broken.pdf", b"not a pdf at all")
        result = self.pipeline.run([path])
        report = result.files[0]
        self.assertEqual(report.status, "degraded")
        self.assertEqual(report.records, 0)
        self.assertIn("PDF", report.error)
        self.assertEqual(result.errors, {})

        workbook = export.generate_review_workbook(result, self.dir / "review.xlsx")
        files = pd.read_excel(workbook, sheet_name="Files", dtype=str, engine="openpyxl")
        self.assertEqual(files.iloc[0]["Status"], "degraded")
        self.assertIn("PDF", files.iloc[0]["Error"])

    def test_bank_warnings_are_separate_from_validation(self):
        path = self.write("qris.csv", "No Order,Bank,NIK,Nama,Jenis Rekening\nORD-9,BRI,1234567890123456,Budi,QRIS\n")
        result = self.pipeline.run([path])
        self.assertIn("briMerchantUser", result.bank_warnings[0])
        self.assertEqual(result.validation.summary.invalid, 1)


class TestDocuments(PipelineTestCase):
    def test_word_photos_attached_to_records(self):
        doc = DocumentText(
            success=True, status=ExtractionStatus.OK, format=DocumentFormat.DOCX,
            text="No.ORDER: D1\nBank\tBCA\nNIK: 1234567890123456\n",
            table_rows=[["Bank", "BCA"], ["NIK", "1234567890123456"]],
            images=[ExtractedImage(record_index=0, field=F.UPLOAD_FOTO_ID, content=b"img")],
        )
        records = self.pipeline.records_from_document(doc, "produk.docx")
        self.assertEqual(len(records), 1)
        self.assertEqual(records[0].get(F.BANK), "BCA")
        self.assertEqual(records[0].get(F.UPLOAD_FOTO_ID), "mem://produk_uploadFotoId.png")


class TestSave(PipelineTestCase):
    def test_save_skips_duplicates(self):
        path = self.write("produk.csv", "\n".join([HEADER] + ROWS) + "\n")
        result = self.pipeline.run([path])
        before = len(self.repo.products)
        report = save_records(result, self.repo)
        self.assertEqual(len(report.saved_ids), 1)
        self.assertEqual(report.skipped_duplicates, 1)
        self.assertEqual(len(self.repo.products), before + 1)
        self.assertEqual(self.repo.products[-1].fields["customer"], "PT-ABC")

    def test_save_errors_are_collected(self):
        path = self.write("produk.csv", "\n".join([HEADER] + ROWS) + "\n")
        result = self.pipeline.run([path])
        with mock.patch.object(self.repo, "save", side_effect=RuntimeError("disk full")):
            report = save_records(result, self.repo)
        self.assertEqual(report.saved_ids, [])
        self.assertEqual(report.errors, [{"index": 0, "noOrder": "ORD-001", "error": "disk full"}])


class TestExport(PipelineTestCase):
    def test_review_workbook_and_error_list(self):
        path = self.write("produk.csv", "\n".join([HEADER] + ROWS) + "\n")
        broken = self.write("rusak.xlsx", b"garbage")
        result = self.pipeline.run([path, broken])

        workbook = export.generate_review_workbook(result, self.dir / "out" / "review.xlsx")
        with pd.ExcelFile(workbook, engine="openpyxl") as xls:
            self.assertEqual(xls.sheet_names, ["Valid", "Invalid", "Missing References", "Duplicates", "Files"])
            valid = xls.parse("Valid", dtype=str)
            duplicates = xls.parse("Duplicates", dtype=str)
        self.assertEqual(list(valid["noOrder"]), ["ORD-001", "ORD-003"])
        self.assertEqual(list(duplicates["noRek"]), ["1234567899"])

        errors = export.generate_errors_csv(result, self.dir / "out" / "errors.csv")
        rows = pd.read_csv(errors, dtype=str, keep_default_na=False, encoding="utf-8-sig")
        self.assertEqual(rows.iloc[0]["source"], "rusak.xlsx")
        self.assertIn("NIK must be 16 digits", list(rows["error"]))


class TestIngest(unittest.TestCase):
    def test_check_file(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "a.csv"
            path.write_text("a,b\n1,2\n")
            self.assertEqual(ingest.check_file(path, max_bytes=100), DocumentFormat.CSV)
            with self.assertRaises(ingest.FileTooLargeError):
                ingest.check_file(path, max_bytes=3)
            with self.assertRaises(ingest.UnsupportedFormatError):
                ingest.check_file(Path(tmp) / "a.doc", max_bytes=100)

    def test_scan_inbox(self):
        with tempfile.TemporaryDirectory() as tmp:
            root = Path(tmp)
            for name in ("b.pdf", "a.xlsx", "~$a.xlsx", ".hidden.csv", "notes.txt"):
                (root / name).write_text("x")
            (root / "Exports").mkdir()
            (root / "Exports" / "review.xlsx").write_text("x")
            self.assertEqual([p.name for p in ingest.scan_inbox(root)], ["a.xlsx", "b.pdf"])


if __name__ == '__main__':
    unittest.main()
