import unittest
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parents[1] / "src"))

from orlap.core.normalize import (
    normalize, collapse_whitespace, clean_numeric, normalize_customer, normalize_order, normalize_header,
)


class TestNormalize(unittest.TestCase):
    def test_dashes_spaces_quotes(self):
        raw = "No Rek–BCA “Budi” ‘x’ − 　end"
        self.assertEqual(normalize(raw), "No Rek-BCA \"Budi\" 'x' -  end")

    def test_idempotent(self):
        samples = [
            "",
            "plain ascii: 123",
            "Nama : Siti — “A”",
            "‐‑‒–—―−﹘﹣－",
            "emoji \U0001F600 and é",
        ]
        for sample in samples:
            once = normalize(sample)
            self.assertEqual(normalize(once), once)

    def test_keeps_other_characters(self):
        text = "Tgl Lahir: 01/02/1990 éü\t\n"
        self.assertEqual(normalize(text), text)

    def test_line_endings_are_kept(self):
        text = "No.ORDER: X1\r\nNIK: 1234567890123456\r\n"
        self.assertEqual(normalize(text), text)

    def test_none_is_empty(self):
        self.assertEqual(normalize(None), "")


class TestHelpers(unittest.TestCase):
    def test_collapse_whitespace(self):
        self.assertEqual(collapse_whitespace("  Budi \t  Santoso\n"), "Budi Santoso")

    def test_clean_numeric(self):
        self.assertEqual(clean_numeric("0812-3456 789"), "08123456789")

    def test_customer_key(self):
        self.assertEqual(normalize_customer("pt abc"), normalize_customer("PT-ABC"))
        self.assertEqual(normalize_customer("(PT: ABC)"), "PTABC")
        self.assertEqual(normalize_customer(None), "")

    def test_order_key(self):
        self.assertEqual(normalize_order("  ord-001 "), "ORD-001")

    def test_header_key(self):
        self.assertEqual(normalize_header("No. Rekening"), "no rekening")
        self.assertEqual(normalize_header("Tempat/Tgl Lahir"), "tempat tgl lahir")
        self.assertEqual(normalize_header(None), "")


if __name__ == '__main__':
    unittest.main()
