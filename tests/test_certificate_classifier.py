"""
Tests for self-signed certificate classification.
"""
import unittest

from certauth.security.certificate import ClientCertificate
from certauth.security.classifier import classify, is_self_signed
from certauth.security.models import CertificateType
from tests.certificate_factory import (
    create_ca, create_client_cert, create_key, create_self_signed_cert, to_der
)


class TestIsSelfSigned(unittest.TestCase):
    """Test cases for is_self_signed."""

    @classmethod
    def setUpClass(cls):
        cls.ca_cert, cls.ca_key = create_ca()
        cls.client_cert, _ = create_client_cert(cls.ca_cert, cls.ca_key)
        cls.self_signed_cert, _ = create_self_signed_cert()

    def test_self_signed_certificate(self):
        """A certificate signed by its own key is self-signed."""
        self.assertTrue(is_self_signed(self.self_signed_cert))

    def test_chained_certificate(self):
        """A CA-issued certificate is not self-signed."""
        self.assertFalse(is_self_signed(self.client_cert))

    def test_root_ca_is_self_signed(self):
        """A root CA is self-signed."""
        self.assertTrue(is_self_signed(self.ca_cert))

    def test_matching_names_with_foreign_signature(self):
        """Matching issuer and subject names are not enough."""
        spoofed, _ = create_self_signed_cert(common_name="spoofed", signing_key=create_key())

        self.assertEqual(spoofed.issuer, spoofed.subject)
        self.assertFalse(is_self_signed(spoofed))
        self.assertEqual(classify(spoofed), CertificateType.CHAINED)

    def test_accepts_client_certificate_wrapper(self):
        """ClientCertificate instances are classified like raw certificates."""
        wrapped = ClientCertificate.from_der(to_der(self.self_signed_cert))

        self.assertTrue(is_self_signed(wrapped))
        self.assertEqual(classify(wrapped), CertificateType.SELF_SIGNED)


if __name__ == '__main__':
    unittest.main()
