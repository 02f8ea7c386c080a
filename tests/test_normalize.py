import math
import os
import unittest
from unittest import mock

from marks.errors import InputError
from marks.normalize import normalize, require_cm, round1


class TestNormalize(unittest.TestCase):
    def test_eu_decimal_comma(self):
        self.assertEqual(normalize("12,5"), 12.5)
        self.assertEqual(normalize("12.5"), 12.5)
        self.assertEqual(normalize(" 12 , 5 "), 12.5)

    def test_eu_thousands_dots_dropped_when_comma_present(self):
        self.assertEqual(normalize("1.234,5"), 1234.5)

    def test_en_profile(self):
        self.assertEqual(normalize("1,234.5", "en"), 1234.5)
        # In the en profile a comma is never a decimal separator
        self.assertEqual(normalize("12,5", "en"), 125.0)

    def test_locale_from_env(self):
        with mock.patch.dict(os.environ, {"BMARK_LOCALE": "en"}):
            self.assertEqual(normalize("12,5"), 125.0)
        with mock.patch.dict(os.environ, {"BMARK_LOCALE": "bogus"}):
            self.assertEqual(normalize("12,5"), 12.5)

    def test_rounds_half_up_to_one_decimal(self):
        self.assertEqual(normalize("12,25"), 12.3)
        self.assertEqual(normalize("12.35"), 12.4)
        self.assertEqual(normalize(12.34), 12.3)
        self.assertEqual(round1(10.45), 10.5)

    def test_numbers_pass_through(self):
        self.assertEqual(normalize(11), 11.0)
        self.assertEqual(normalize(".5"), 0.5)
        self.assertEqual(normalize("5."), 5.0)

    def test_rejects_non_numbers(self):
        for raw in [None, "", "   ", "abc", "12,5cm", "1,2,3", "inf", "nan", True, float("nan"), float("inf"), [12], 10 ** 400]:
            self.assertIsNone(normalize(raw), msg=f"expected None for {raw!r}")

    def test_result_is_finite(self):
        v = normalize("99999999,99")
        self.assertIsNotNone(v)
        self.assertTrue(math.isfinite(v))


class TestRequireCm(unittest.TestCase):
    def test_missing_value_names_field(self):
        with self.assertRaises(InputError) as ctx:
            require_cm(None, "width")
        self.assertEqual(ctx.exception.field, "width")
        self.assertIn("required", str(ctx.exception))

    def test_bad_value_names_field(self):
        with self.assertRaises(InputError) as ctx:
            require_cm("twelve", "height")
        self.assertEqual(ctx.exception.field, "height")
        self.assertIn("number", str(ctx.exception))

    def test_valid_value(self):
        self.assertEqual(require_cm("21,0", "height"), 21.0)


if __name__ == "__main__":
    unittest.main()
