from django.test import SimpleTestCase

from .validators import address_errors, normalize_address, validate_email, validate_phone_number, validate_pincode


class ValidatorTests(SimpleTestCase):

    def test_well_formed_values(self):
        self.assertTrue(validate_email("asha.rao+shop@example.co.in"))
        self.assertTrue(validate_phone_number("9876543210"))
        self.assertTrue(validate_pincode("560001"))

    def test_malformed_values(self):
        self.assertFalse(validate_email("asha@example"))
        self.assertFalse(validate_phone_number("5876543210"))
        self.assertFalse(validate_phone_number("98765432101"))
        self.assertFalse(validate_pincode("56000"))
        self.assertFalse(validate_pincode(""))

    def test_trailing_newline_is_rejected(self):
        self.assertFalse(validate_email("asha@example.com\n"))
        self.assertFalse(validate_phone_number("9876543210\n"))
        self.assertFalse(validate_pincode("560001\n"))

    def test_address_is_trimmed_before_validation(self):
        address = normalize_address({
            "fullName": " Asha Rao ",
            "phone": "9876543210\n",
            "addressLine1": "12 MG Road",
            "city": "Bengaluru",
            "state": "Karnataka",
            "pincode": " 560001 ",
        })

        self.assertEqual(address["pincode"], "560001")
        self.assertEqual(address["country"], "India")
        self.assertEqual(address_errors(address), {})
