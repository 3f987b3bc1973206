import unittest
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parents[1] / "src"))

from orlap.core.extract import (
    Extractor, cleanup, map_header, records_from_table, reparse_expiry, split_blocks,
)
from orlap.core.models import FieldKey, MatchPolicy

F = FieldKey


def extractor(**kwargs):
    kwargs.setdefault("default_bank", "BRI")
    return Extractor(**kwargs)


class TestBlocks(unittest.TestCase):
    def test_two_orders_two_records(self):
        text = (
            "No.ORDER: X1\nBank: BCA\nNIK: 1234567890123456\nNama: Budi\n"
            "No.ORDER: X2\nBank: BRI\nNIK: 6543210987654321\nNama: Siti\n"
        )
        records = extractor().extract_records(text, "batch.txt")
        self.assertEqual(len(records), 2)
        self.assertEqual(records[0].get(F.NO_ORDER), "X1")
        self.assertEqual(records[1].get(F.NO_ORDER), "X2")
        self.assertEqual(records[0].get(F.NIK), "1234567890123456")
        self.assertEqual(records[0].get(F.BANK), "BCA")
        self.assertEqual(records[0].get(F.NAMA), "Budi")
        self.assertEqual(records[1].block_index, 1)
        self.assertEqual(records[0].source_file, "batch.txt")

    def test_unmatched_fields_are_absent(self):
        records = extractor().extract_records("No.ORDER: X1\nNIK: 1234567890123456\n")
        self.assertEqual(len(records), 1)
        self.assertFalse(records[0].has(F.EMAIL))
        self.assertFalse(records[0].has(F.NAMA))

    def test_marker_without_content_is_noise(self):
        self.assertEqual(extractor().extract_records("No.ORDER:"), [])
        self.assertEqual(extractor().extract_records("No.ORDER: X1"), [])
        self.assertEqual(extractor().extract_records(""), [])

    def test_text_without_order_or_nik_is_skipped(self):
        text = "Laporan harian field staff\nDicetak oleh sistem pada hari Senin\n"
        self.assertEqual(extractor().extract_records(text), [])

    def test_split_blocks_drops_short_pieces(self):
        blocks = split_blocks("No.ORDER: A\nno . order: B with enough body text")
        self.assertEqual(len(blocks), 1)
        self.assertTrue(blocks[0].startswith("no . order"))

    def test_windows_line_endings(self):
        text = "No.ORDER: X1\nBank: BCA\nNIK: 1234567890123456\nNama: Budi Santoso\nEmail: budi@mail.com\n"
        unix = extractor().extract_records(text)[0]
        windows = extractor().extract_records(text.replace("\n", "\r\n"))[0]
        self.assertEqual(windows.fields, unix.fields)
        self.assertEqual(windows.get(F.NAMA), "Budi Santoso")

    def test_unicode_variants_are_normalized_first(self):
        text = "No ORDER : X9\nNo HP: 0812–3456–7890\nNIK: 1234567890123456\n"
        record = extractor().extract_records(text)[0]
        self.assertEqual(record.get(F.NO_HP), "081234567890")


class TestMatchPolicy(unittest.TestCase):
    text = "No.ORDER: X1\nNama: Budi\nNIK: 1234567890123456\nNama: Andi\n"

    def test_last_match_wins_by_default(self):
        record = extractor().extract_records(self.text)[0]
        self.assertEqual(record.get(F.NAMA), "Andi")

    def test_first_match_policy(self):
        record = extractor(match_policy=MatchPolicy.FIRST).extract_records(self.text)[0]
        self.assertEqual(record.get(F.NAMA), "Budi")


class TestFieldRules(unittest.TestCase):
    def extract(self, body, **kwargs):
        records = extractor(**kwargs).extract_records("No.ORDER: T1\n" + body)
        self.assertEqual(len(records), 1)
        return records[0]

    def test_bank_with_grade(self):
        record = self.extract("Bank: BCA (Grade A)\n")
        self.assertEqual(record.get(F.BANK), "BCA")
        self.assertEqual(record.get(F.GRADE), "A")

    def test_atm_with_valid_thru(self):
        record = self.extract("No ATM: 1234 5678 9012 3456 (12/28)\n")
        self.assertEqual(record.get(F.NO_ATM), "1234567890123456")
        self.assertEqual(record.get(F.VALID_THRU), "12/28")

    def test_explicit_valid_thru_beats_combined_capture(self):
        record = self.extract("No ATM: 1234567890123456 (12/28)\nValid Thru: 01/30\n")
        self.assertEqual(record.get(F.VALID_THRU), "01/30")

    def test_label_variants_case_insensitive(self):
        record = self.extract("tempat tgl lahir: Bandung, 1 Mei 1990\nuser i-banking: budi_ib\n")
        self.assertEqual(record.get(F.TEMPAT_TANGGAL_LAHIR), "Bandung, 1 Mei 1990")
        self.assertEqual(record.get(F.IB_USER), "budi_ib")
        record = self.extract("Tempat/Tanggal Lahir: Bandung\nUser I Banking: budi_ib\n")
        self.assertEqual(record.get(F.TEMPAT_TANGGAL_LAHIR), "Bandung")
        self.assertEqual(record.get(F.IB_USER), "budi_ib")

    def test_email_and_password(self):
        record = self.extract("Email: budi@mail.com\nPass Email: s3cret!\n")
        self.assertEqual(record.get(F.EMAIL), "budi@mail.com")
        self.assertEqual(record.get(F.PASS_EMAIL), "s3cret!")

    def test_name_whitespace_collapsed(self):
        record = self.extract("Nama:   Budi    Santoso\nNama Ibu Kandung: Siti  Aminah\n")
        self.assertEqual(record.get(F.NAMA), "Budi Santoso")
        self.assertEqual(record.get(F.NAMA_IBU_KANDUNG), "Siti Aminah")

    def test_expiry_is_reparsed(self):
        self.assertEqual(self.extract("Expired: 12/31/2025\n").get(F.EXPIRED), "2025-12-31")
        self.assertEqual(self.extract("Expired: 31-12-2025\n").get(F.EXPIRED), "2025-12-31")
        self.assertEqual(self.extract("Expired: akhir bulan\n").get(F.EXPIRED), "akhir bulan")

    def test_bank_dialect_labels(self):
        body = "Bank: Mandiri\nUser: budi01\nPassword: rahasia\nPin: 123456\n"
        record = self.extract(body)
        self.assertEqual(record.get(F.MOBILE_USER), "budi01")
        self.assertEqual(record.get(F.MOBILE_PASSWORD), "rahasia")
        self.assertEqual(record.get(F.MOBILE_PIN), "123456")

        plain = self.extract(body, dialects=False)
        self.assertFalse(plain.has(F.MOBILE_USER))
        self.assertFalse(plain.has(F.MOBILE_PIN))

    def test_dialect_follows_default_bank(self):
        record = self.extract("Nama: Budi\nPin: 4321\n", default_bank="BNI")
        self.assertEqual(record.get(F.MOBILE_PIN), "4321")


class TestCleanup(unittest.TestCase):
    def test_reparse_expiry(self):
        self.assertEqual(reparse_expiry("2025-01-31"), "2025-01-31")
        self.assertEqual(reparse_expiry(" 01/31/2025 "), "2025-01-31")
        self.assertEqual(reparse_expiry("31/31/2025"), "31/31/2025")

    def test_cleanup_rules(self):
        cleaned = cleanup({
            F.CUSTOMER: "(PT ABC)",
            F.NO_REK: "123-456 7890",
            F.PIN_ATM: "12 34",
            F.VALID_THRU: "12 / 28",
        })
        self.assertEqual(cleaned[F.CUSTOMER], "PT ABC")
        self.assertEqual(cleaned[F.NO_REK], "1234567890")
        self.assertEqual(cleaned[F.PIN_ATM], "1234")
        self.assertEqual(cleaned[F.VALID_THRU], "12/28")


class TestTables(unittest.TestCase):
    def test_map_header(self):
        self.assertEqual(map_header("No. Rekening"), F.NO_REK)
        self.assertEqual(map_header("noRek"), F.NO_REK)
        self.assertIsNone(map_header("Warna"))

    def test_header_mapped_rows(self):
        rows = [
            ["Data Produk Orlap"],
            ["No Order", "Bank", "NIK", "Nama", "No. Rekening", "Kata Sandi Merchant", "Warna"],
            ["ORD-1", "BRI", "1234 5678 9012 3456", "Budi  Santoso", "1234567890", "qris!", "merah"],
            ["ORD-2", "BRI", "", "", "", "", ""],
        ]
        records = records_from_table(rows, "produk.xlsx", default_bank="BRI")
        self.assertEqual(len(records), 1)
        record = records[0]
        self.assertEqual(record.get(F.NO_ORDER), "ORD-1")
        self.assertEqual(record.get(F.NIK), "1234567890123456")
        self.assertEqual(record.get(F.NAMA), "Budi Santoso")
        self.assertEqual(record.get(F.BRI_MERCHANT_PASSWORD), "qris!")
        self.assertEqual(record.extras, {"Warna": "merah"})
        self.assertEqual(record.source_file, "produk.xlsx")

    def test_too_few_rows(self):
        self.assertEqual(records_from_table([["No Order", "NIK"]]), [])


if __name__ == '__main__':
    unittest.main()
