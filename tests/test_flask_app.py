"""
Tests for the Flask application with client certificate authentication.
"""
import unittest
from unittest.mock import Mock, patch
import json
import ssl

from certauth.app import CertificateAuthApp
from certauth.models.config import Config
from certauth.security.auth_middleware import PEER_CERTIFICATE_ENVIRON_KEY
from certauth.security.authentication_service import CertificateAuthenticationService
from certauth.security.chain_builder import X509ChainBuilder
from certauth.security.events import FailureHook, ValidateHook
from certauth.security.models import AllowedCertificateTypes, AuthenticationResult, ClaimTypes, RevocationMode
from certauth.security.options import CertificateAuthenticationOptions
from tests.certificate_factory import create_ca, create_client_cert, to_der, to_pem


class TestCertificateAuthApp(unittest.TestCase):
    """Test cases for CertificateAuthApp."""

    @classmethod
    def setUpClass(cls):
        cls.ca_cert, cls.ca_key = create_ca()
        client_cert, _ = create_client_cert(
            cls.ca_cert, cls.ca_key, common_name="test-client", emails=["client@example.com"]
        )
        cls.client_der = to_der(client_cert)
        cls.forwarded_header = to_pem(client_cert).strip().replace('\n', ' ')

    def setUp(self):
        """Set up test fixtures."""
        self.config = Config(
            authentication=CertificateAuthenticationOptions(revocation_mode=RevocationMode.NO_CHECK),
            client_cert_required=True
        )
        self.mock_config_service = Mock()
        self.mock_config_service.get_config.return_value = self.config

        self.authentication_service = CertificateAuthenticationService(
            options=self.config.authentication,
            chain_builder=X509ChainBuilder(trusted_roots=[self.ca_cert])
        )
        self.app = CertificateAuthApp(self.mock_config_service, self.authentication_service)
        self.client = self.app.get_app().test_client()

    def _get(self, path, der=None):
        environ_base = {PEER_CERTIFICATE_ENVIRON_KEY: der} if der else {}
        return self.client.get(path, base_url='https://localhost', environ_base=environ_base)

    def test_app_initialization(self):
        """Test Flask app initialization."""
        self.assertIsNotNone(self.app.app)
        self.assertEqual(self.app.config, self.config)
        self.assertIs(self.app.authentication_service, self.authentication_service)

    def test_health_endpoint(self):
        """Test health endpoint without a client certificate."""
        response = self._get('/health')

        self.assertEqual(response.status_code, 200)
        data = json.loads(response.data)
        self.assertEqual(data['status'], 'healthy')
        self.assertEqual(data['service'], 'certauth')
        self.assertEqual(data['allowed_certificate_types'], ['chained'])
        self.assertEqual(data['revocation_mode'], 'no_check')

    def test_identity_endpoint_without_certificate(self):
        """Test identity endpoint access without a certificate."""
        response = self._get('/api/identity')

        self.assertEqual(response.status_code, 403)
        self.assertIn('error', json.loads(response.data))

    def test_identity_endpoint_with_valid_certificate(self):
        """Test identity endpoint access with a trusted certificate."""
        response = self._get('/api/identity', self.client_der)

        self.assertEqual(response.status_code, 200)
        data = json.loads(response.data)
        self.assertEqual(data['authentication_type'], 'Certificate')
        self.assertEqual(data['name'], 'test-client')
        claims = {claim['type']: claim['value'] for claim in data['claims']}
        self.assertEqual(claims[ClaimTypes.EMAIL], 'client@example.com')
        self.assertEqual(claims[ClaimTypes.ISSUER], self.ca_cert.subject.rfc4514_string())
        self.assertEqual(bytes.fromhex(data['certificate']), self.client_der)

    def test_identity_endpoint_with_untrusted_certificate(self):
        """Test identity endpoint access with a certificate from an unknown CA."""
        other_ca, other_key = create_ca("Other CA")
        stranger, _ = create_client_cert(other_ca, other_key)

        response = self._get('/api/identity', to_der(stranger))

        self.assertEqual(response.status_code, 403)
        self.assertEqual(json.loads(response.data)['message'], "Client certificate failed validation.")

    def test_identity_endpoint_with_forwarded_header_only(self):
        """A certificate in X-SSL-CERT without a TLS peer certificate is not an identity."""
        response = self.client.get(
            '/api/identity', base_url='https://localhost', headers={'X-SSL-CERT': self.forwarded_header}
        )

        self.assertEqual(response.status_code, 403)

    def test_trusted_proxy_headers_from_config(self):
        """trust_proxy_certificate_headers lets a fronting proxy forward the certificate."""
        self.mock_config_service.get_config.return_value = Config(
            authentication=self.config.authentication,
            trust_proxy_certificate_headers=True
        )
        app = CertificateAuthApp(self.mock_config_service, self.authentication_service)

        response = app.get_app().test_client().get(
            '/api/identity', base_url='https://localhost', headers={'X-SSL-CERT': self.forwarded_header}
        )

        self.assertEqual(response.status_code, 200)
        self.assertEqual(json.loads(response.data)['name'], 'test-client')

    def test_hooks_passed_to_service(self):
        """Test that hooks given to the app reach the authentication service."""
        validate_hook = ValidateHook.from_callable(lambda context: None)
        failure_hook = FailureHook.from_callable(lambda context: None)

        app = CertificateAuthApp(self.mock_config_service, validate_hook=validate_hook, failure_hook=failure_hook)

        self.assertIs(app.authentication_service.validate_hook, validate_hook)
        self.assertIs(app.authentication_service.failure_hook, failure_hook)

    def test_validate_hook_rejection(self):
        """Test that a validate hook rejection is answered with 403."""
        async def deny(context):
            return AuthenticationResult.fail("Certificate not on allow list.")

        self.authentication_service.validate_hook = ValidateHook.from_callable(deny)

        response = self._get('/api/identity', self.client_der)

        self.assertEqual(response.status_code, 403)
        self.assertEqual(json.loads(response.data)['message'], "Certificate not on allow list.")

    def test_404_error_handler(self):
        """Test 404 error handler."""
        response = self._get('/nonexistent')

        self.assertEqual(response.status_code, 404)
        data = json.loads(response.data)
        self.assertEqual(data['error'], 'Not found')

    def test_405_error_handler(self):
        """Test 405 error handler."""
        response = self.client.post('/health', base_url='https://localhost')

        self.assertEqual(response.status_code, 405)

    def test_security_headers(self):
        """Test that security headers are added to responses."""
        response = self._get('/health')

        self.assertEqual(response.headers['X-Content-Type-Options'], 'nosniff')
        self.assertEqual(response.headers['X-Frame-Options'], 'DENY')
        self.assertIn('max-age', response.headers['Strict-Transport-Security'])

    @patch('certauth.app.ssl.create_default_context')
    def test_create_ssl_context(self, mock_create_context):
        """Test SSL context creation asks for client certificates."""
        mock_context = Mock()
        mock_create_context.return_value = mock_context

        context = self.app.create_ssl_context()

        self.assertIs(context, mock_context)
        mock_create_context.assert_called_once_with(ssl.Purpose.CLIENT_AUTH)
        mock_context.load_cert_chain.assert_called_once_with(
            certfile=self.config.server_cert_path,
            keyfile=self.config.server_key_path
        )
        mock_context.load_verify_locations.assert_called_once_with(cafile=self.config.client_ca_path)
        self.assertEqual(mock_context.verify_mode, ssl.CERT_REQUIRED)

    @patch('certauth.app.ssl.create_default_context')
    def test_create_ssl_context_optional_client_cert(self, mock_create_context):
        """Test SSL context creation with optional client certificates."""
        mock_context = Mock()
        mock_create_context.return_value = mock_context
        self.app.config = Config(client_cert_required=False)

        self.app.create_ssl_context()

        self.assertEqual(mock_context.verify_mode, ssl.CERT_OPTIONAL)

    @patch('certauth.app.ssl.create_default_context')
    def test_create_ssl_context_warns_for_self_signed(self, mock_create_context):
        """Allowing self signed certificates warns that the handshake still verifies them."""
        mock_create_context.return_value = Mock()
        self.authentication_service.update_options(CertificateAuthenticationOptions(
            allowed_certificate_types=AllowedCertificateTypes.ALL,
            revocation_mode=RevocationMode.NO_CHECK
        ))

        with self.assertLogs('certauth.app', level='WARNING') as logs:
            self.app.create_ssl_context()

        self.assertTrue(any('client_ca_path' in message for message in logs.output))


if __name__ == '__main__':
    unittest.main()
