import unittest
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parents[1] / "src"))

from orlap.core.extract import Extractor
from orlap.core.models import FieldKey, RawExtractedRecord
from orlap.core.validate import check_record, validate, REQUIRED_FIELDS

F = FieldKey

COMPLETE = {
    F.NIK: "1234567890123456",
    F.NAMA: "Budi Santoso",
    F.NO_REK: "1234567890",
    F.NO_ATM: "1234567890123456",
    F.NO_HP: "081234567890",
    F.PIN_ATM: "123456",
    F.MOBILE_PIN: "654321",
    F.EMAIL: "budi@example.co.id",
    F.EXPIRED: "2026-12-31",
}


def record(**overrides):
    fields = dict(COMPLETE)
    for name, value in overrides.items():
        key = FieldKey(name)
        if value is None:
            fields.pop(key, None)
        else:
            fields[key] = value
    return RawExtractedRecord(fields=fields)


class TestValidator(unittest.TestCase):
    def test_complete_record_is_valid(self):
        self.assertEqual(check_record(record()), [])

    def test_missing_nik_is_always_invalid(self):
        result = validate([record(nik=None)], required=REQUIRED_FIELDS)
        self.assertEqual(result.valid_records, [])
        self.assertEqual(len(result.errors), 1)
        self.assertIn("nik is required", result.errors[0].field_errors)

    def test_blank_counts_as_missing(self):
        self.assertIn("email is required", check_record(record(email="  ")))

    def test_nik_length(self):
        self.assertIn("NIK must be 16 digits", check_record(record(nik="123456789012345")))
        self.assertNotIn("NIK must be 16 digits", check_record(record(nik="1234567890123456")))
        self.assertIn("NIK must be 16 digits", check_record(record(nik="12345678901234AB")))

    def test_account_and_card(self):
        self.assertIn("Account number must be 10-18 digits", check_record(record(noRek="123456789")))
        self.assertEqual(check_record(record(noRek="123456789012345678")), [])
        self.assertIn("ATM card number must be 16 digits", check_record(record(noAtm="123456789012345")))

    def test_phone_shapes(self):
        for phone in ("081234567890", "6281234567", "+6281234567890", "0812-3456-789"):
            self.assertEqual(check_record(record(noHp=phone)), [], phone)
        for phone in ("021234567", "0712345678", "08123"):
            errors = check_record(record(noHp=phone))
            self.assertTrue(any(e.startswith("Phone number") for e in errors), phone)

    def test_pins(self):
        self.assertIn("pinAtm must be 4-6 digits", check_record(record(pinAtm="123")))
        self.assertIn("brimoPin must be 4-6 digits", check_record(record(brimoPin="1234567")))
        self.assertEqual(check_record(record(pinAtm="1234")), [])

    def test_email(self):
        self.assertIn("Email address is not valid", check_record(record(email="budi@")))
        self.assertIn("Email address is not valid", check_record(record(email="budi at mail.com")))

    def test_errors_collected_per_record(self):
        result = validate([record(), record(nik="1", noRek="12"), record()], required=REQUIRED_FIELDS)
        self.assertEqual(result.summary.total, 3)
        self.assertEqual(result.summary.valid, 2)
        self.assertEqual(result.summary.invalid, 1)
        self.assertEqual(result.errors[0].record_index, 1)
        self.assertEqual(len(result.errors[0].field_errors), 2)

    def test_any_app_pin_is_a_secondary_pin(self):
        for key in ("pinMBca", "myBCAPin", "brimoPin", "ocbcNyalaPin", "pinWondr", "ibPin"):
            self.assertEqual(check_record(record(mobilePin=None, **{key: "1234"})), [], key)

    def test_secondary_pin_missing(self):
        errors = check_record(record(mobilePin=None))
        self.assertEqual(errors, ["secondary PIN is required"])
        # the ATM PIN does not count twice
        self.assertIn("secondary PIN is required", check_record(record(mobilePin=None, pinAtm="1234")))

    def test_extracted_bca_record_is_valid(self):
        text = (
            "No.ORDER: BCA-77\n"
            "Bank: BCA\n"
            "NIK: 3171234567890123\n"
            "Nama: Budi Santoso\n"
            "No Rekening: 5270123456\n"
            "No ATM: 6019001234567890\n"
            "No HP: 081298765432\n"
            "PIN ATM: 123456\n"
            "Pin M-BCA: 654321\n"
            "PIN Transaksi: 112233\n"
            "Email: budi.santoso@mail.com\n"
            "Expired: 2027-01-31\n"
        )
        records = Extractor(default_bank="BCA").extract_records(text)
        self.assertEqual(len(records), 1)
        self.assertFalse(records[0].has(F.MOBILE_PIN))
        result = validate(records, required=REQUIRED_FIELDS)
        self.assertEqual(result.summary.valid, 1, result.errors)

    def test_custom_required_list(self):
        result = validate([RawExtractedRecord(fields={F.NAMA: "Budi"})], required=[F.NAMA])
        self.assertEqual(result.summary.valid, 1)


if __name__ == '__main__':
    unittest.main()
