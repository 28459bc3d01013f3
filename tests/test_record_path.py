import os
import sys
import unittest


ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
SRC = os.path.join(ROOT, "src")
if SRC not in sys.path:
    sys.path.insert(0, SRC)

from imobi.record_path import MISSING, get_path, has_path


class TestRecordPath(unittest.TestCase):
    def setUp(self) -> None:
        self.record = {
            "value": 0,
            "contact": {"name": "Ana", "phone": None},
            "items": [{"sku": "a"}],
        }

    def test_top_level_and_nested(self) -> None:
        self.assertEqual(get_path(self.record, "value"), 0)
        self.assertEqual(get_path(self.record, "contact.name"), "Ana")
        self.assertEqual(get_path(self.record, "items.0.sku"), "a")

    def test_missing_hop_returns_default(self) -> None:
        self.assertIsNone(get_path(self.record, "contact.email"))
        self.assertIsNone(get_path(self.record, "value.deep"))
        self.assertIsNone(get_path(self.record, "items.5.sku"))
        self.assertEqual(get_path(self.record, "nope", "fallback"), "fallback")

    def test_null_value_is_present(self) -> None:
        self.assertTrue(has_path(self.record, "contact.phone"))
        self.assertFalse(has_path(self.record, "contact.email"))
        self.assertIs(get_path(self.record, "contact.email", MISSING), MISSING)

    def test_invalid_path(self) -> None:
        self.assertIsNone(get_path(self.record, ""))
        self.assertIsNone(get_path(None, "a"))


if __name__ == "__main__":
    unittest.main()
