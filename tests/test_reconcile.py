import unittest
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parents[1] / "src"))

from orlap.core.models import FieldKey, RawExtractedRecord
from orlap.core.reconcile import EMPTY, reconcile
from orlap.core.repository import LocalRepository

F = FieldKey


def make_repo():
    repo = LocalRepository()
    repo.load_reference({
        "customers": [{"code": "PT-ABC", "display_name": "PT ABC Sejahtera"}, "CV.MAJU"],
        "orders": ["ORD-001", {"number": "ORD-002", "customer": "PT-ABC"}],
        "field_staff": [{"code": "AG01", "name": "Rina"}],
    })
    repo.save(RawExtractedRecord(fields={F.NO_REK: "1234567890", F.NAMA: "Lama"}))
    return repo


def rec(**fields):
    return RawExtractedRecord(fields={FieldKey(k): v for k, v in fields.items()})


class TestReconcile(unittest.TestCase):
    def setUp(self):
        self.repo = make_repo()

    def test_customer_code_is_corrected(self):
        original = rec(customer="pt abc", noOrder="ord-001", codeAgen="AG01", noRek="999")
        report = reconcile([original], self.repo)
        outcome = report.outcomes[0]
        self.assertTrue(outcome.customer_resolved)
        self.assertTrue(outcome.order_resolved)
        self.assertTrue(outcome.field_staff_resolved)
        self.assertEqual(outcome.corrected_record.get(F.CUSTOMER), "PT-ABC")
        self.assertEqual(outcome.corrected_record.get(F.NO_ORDER), "ORD-001")
        # input record is left untouched
        self.assertEqual(original.get(F.CUSTOMER), "pt abc")
        self.assertTrue(report.is_all_valid)

    def test_unknown_references_are_collected(self):
        records = [
            rec(customer="PT XYZ", noOrder="ORD-404", codeAgen="ag01"),
            rec(customer="pt xyz", noOrder="ORD-404"),
            rec(noOrder=""),
        ]
        report = reconcile(records, self.repo)
        self.assertEqual(report.missing_customers, ["PT XYZ", "pt xyz", EMPTY])
        self.assertEqual(report.missing_orders, ["ORD-404", EMPTY])
        # staff codes are matched exactly
        self.assertEqual(report.missing_field_staff, ["ag01", EMPTY])
        self.assertEqual(records[0].get(F.CUSTOMER), report.outcomes[0].corrected_record.get(F.CUSTOMER))
        self.assertFalse(report.is_all_valid)

    def test_duplicate_account_number(self):
        report = reconcile([rec(noRek="1234567890"), rec(noRek="5555555555")], self.repo)
        self.assertEqual([o.is_duplicate for o in report.outcomes], [True, False])
        self.assertEqual(len(report.duplicates), 1)

    def test_placeholder_account_never_duplicate(self):
        self.repo.save(RawExtractedRecord(fields={F.NO_REK: "-"}))
        self.repo.save(RawExtractedRecord(fields={F.NO_REK: ""}))
        report = reconcile([rec(noRek="-"), rec(noRek=""), rec(noRek="  "), rec()], self.repo)
        self.assertFalse(any(o.is_duplicate for o in report.outcomes))

    def test_fresh_snapshot_per_call(self):
        first = reconcile([rec(customer="PT NEW")], self.repo)
        self.assertEqual(first.missing_customers, ["PT NEW"])
        self.repo.load_reference({"customers": ["PT-NEW"]})
        second = reconcile([rec(customer="PT NEW")], self.repo)
        self.assertEqual(second.missing_customers, [])
        self.assertEqual(second.records[0].get(F.CUSTOMER), "PT-NEW")


if __name__ == '__main__':
    unittest.main()
