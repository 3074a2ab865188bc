"""
Unit tests for ConfigService and Config models.
"""
import unittest
import tempfile
import os
import shutil

from certauth.models.config import Config, ConfigIssue, ConfigValidationResult
from certauth.security.models import AllowedCertificateTypes, CertificateType, RevocationFlag, RevocationMode
from certauth.security.options import CertificateAuthenticationOptions
from certauth.services.config_service import ConfigService


class TestConfig(unittest.TestCase):
    """Test cases for Config data model."""

    def test_config_default_values(self):
        """Test that Config has appropriate default values."""
        config = Config()

        # Authentication settings
        options = config.authentication
        self.assertEqual(options.allowed_certificate_types, AllowedCertificateTypes.CHAINED)
        self.assertEqual(options.revocation_flag, RevocationFlag.EXCLUDE_ROOT)
        self.assertEqual(options.revocation_mode, RevocationMode.ONLINE)
        self.assertTrue(options.validate_certificate_use)
        self.assertTrue(options.validate_validity_period)
        self.assertEqual(options.claims_issuer, "LOCAL AUTHORITY")

        # Server settings
        self.assertEqual(config.server_cert_path, "certs/server.crt")
        self.assertEqual(config.server_key_path, "certs/server.key")
        self.assertEqual(config.client_ca_path, "certs/ca.crt")
        self.assertFalse(config.client_cert_required)
        self.assertEqual(config.api_port, 8443)

        # Application settings
        self.assertEqual(config.log_level, "INFO")
        self.assertEqual(config.log_file_path, "logs/certauth.log")

    def test_config_type_validation(self):
        """Test that Config validates types correctly."""
        with self.assertRaises(ValueError) as cm:
            Config(api_port=0)
        self.assertIn("api_port must be an integer between 1 and 65535", str(cm.exception))

        with self.assertRaises(ValueError) as cm:
            Config(log_level="VERBOSE")
        self.assertIn("log_level must be one of", str(cm.exception))

        with self.assertRaises(ValueError):
            Config(authentication={'claims_issuer': 'x'})

    def test_options_type_validation(self):
        """Test that authentication options validate their values."""
        with self.assertRaises(ValueError):
            CertificateAuthenticationOptions(allowed_certificate_types=AllowedCertificateTypes())

        with self.assertRaises(ValueError):
            CertificateAuthenticationOptions(revocation_mode="online")

        with self.assertRaises(ValueError):
            CertificateAuthenticationOptions(claims_issuer="  ")

        with self.assertRaises(ValueError):
            CertificateAuthenticationOptions(chain_build_timeout_seconds=0)


class TestConfigValidationResult(unittest.TestCase):
    """Test cases for ConfigValidationResult."""

    def test_separates_errors_and_warnings(self):
        """Issues are split by severity, errors first in the summary."""
        result = ConfigValidationResult()
        result.warn("crl_path", "No CRLs")
        result.error("trusted_ca_path", "Path not found")

        self.assertFalse(result.is_valid)
        self.assertEqual(result.errors, [ConfigIssue("trusted_ca_path", "Path not found")])
        self.assertEqual(len(result.warnings), 1)
        self.assertEqual(
            result.summary(),
            "  [error] trusted_ca_path: Path not found\n  [warning] crl_path: No CRLs"
        )

    def test_warnings_only_is_valid(self):
        """Warnings alone do not invalidate a configuration."""
        result = ConfigValidationResult()
        self.assertEqual(result.summary(), "Configuration is valid")

        result.warn("validate_validity_period", "Expired certificates will be accepted")
        self.assertTrue(result.is_valid)


class TestConfigService(unittest.TestCase):
    """Test cases for ConfigService."""

    def setUp(self):
        """Set up test fixtures."""
        self.temp_dir = tempfile.mkdtemp()
        self.config_service = ConfigService()

    def tearDown(self):
        """Clean up test fixtures."""
        shutil.rmtree(self.temp_dir)

    def _write_config(self, content):
        config_path = os.path.join(self.temp_dir, 'certauth.ini')
        with open(config_path, 'w') as f:
            f.write(content)
        return config_path

    def test_load_config_file_not_found(self):
        """Test loading a missing configuration file."""
        with self.assertRaises(FileNotFoundError):
            self.config_service.load_config(os.path.join(self.temp_dir, 'missing.ini'))

    def test_get_config_before_load(self):
        """Test that get_config requires a loaded configuration."""
        with self.assertRaises(ValueError):
            self.config_service.get_config()

    def test_load_authentication_settings(self):
        """Test loading the authentication section."""
        ca_path = os.path.join(self.temp_dir, 'ca.pem')
        open(ca_path, 'w').close()
        config_path = self._write_config(f"""
[authentication]
allowed_certificate_types = chained, selfsigned
revocation_flag = EntireChain
revocation_mode = online_required
validate_certificate_use = false
validate_validity_period = no
claims_issuer = Contoso
chain_build_timeout_seconds = 20
trusted_ca_path = {ca_path}

[server]
port = 9443
client_cert_required = true

[app]
log_level = DEBUG
""")

        config = self.config_service.load_config(config_path)

        options = config.authentication
        self.assertEqual(options.allowed_certificate_types, AllowedCertificateTypes.ALL)
        self.assertEqual(options.revocation_flag, RevocationFlag.ENTIRE_CHAIN)
        self.assertEqual(options.revocation_mode, RevocationMode.ONLINE_REQUIRED)
        self.assertFalse(options.validate_certificate_use)
        self.assertFalse(options.validate_validity_period)
        self.assertEqual(options.claims_issuer, "Contoso")
        self.assertEqual(options.chain_build_timeout_seconds, 20.0)
        self.assertEqual(options.trusted_ca_path, ca_path)
        self.assertIsNone(options.crl_path)
        self.assertEqual(config.api_port, 9443)
        self.assertTrue(config.client_cert_required)
        self.assertEqual(config.log_level, "DEBUG")
        self.assertIs(self.config_service.get_config(), config)

    def test_flat_keys_in_default_section(self):
        """Test that keys outside a section are routed to the section that knows them."""
        config_path = self._write_config(
            "[DEFAULT]\nrevocation_mode = offline\nport = 10443\naudit_log_enabled = false\n"
        )

        config = self.config_service.load_config(config_path)

        self.assertEqual(config.authentication.revocation_mode, RevocationMode.OFFLINE)
        self.assertEqual(config.api_port, 10443)
        self.assertFalse(config.audit_log_enabled)

    def test_parse_all_certificate_types(self):
        """Test the 'all' shorthand for certificate types."""
        config_path = self._write_config("[authentication]\nallowed_certificate_types = all\n")

        config = self.config_service.load_config(config_path)

        self.assertIn(CertificateType.SELF_SIGNED, config.authentication.allowed_certificate_types)
        self.assertIn(CertificateType.CHAINED, config.authentication.allowed_certificate_types)

    def test_invalid_enum_value(self):
        """Test that unknown enum values are reported."""
        config_path = self._write_config("[authentication]\nrevocation_mode = sometimes\n")

        with self.assertRaises(ValueError) as cm:
            self.config_service.load_config(config_path)
        self.assertIn("authentication.revocation_mode", str(cm.exception))

    def test_invalid_certificate_type(self):
        """Test that unknown certificate types are reported."""
        config_path = self._write_config("[authentication]\nallowed_certificate_types = pinned\n")

        with self.assertRaises(ValueError):
            self.config_service.load_config(config_path)

    def test_missing_trust_path_is_an_error(self):
        """Test that a configured but missing trust store fails validation."""
        config_path = self._write_config(
            f"[authentication]\ntrusted_ca_path = {os.path.join(self.temp_dir, 'missing.pem')}\n"
        )

        with self.assertRaises(ValueError) as cm:
            self.config_service.load_config(config_path)
        self.assertIn("trusted_ca_path", str(cm.exception))

    def test_validate_config_warnings(self):
        """Test that risky but workable settings produce warnings."""
        config = Config(
            authentication=CertificateAuthenticationOptions(
                allowed_certificate_types=AllowedCertificateTypes.ALL,
                revocation_mode=RevocationMode.OFFLINE,
                validate_validity_period=False
            ),
            server_cert_path=os.path.join(self.temp_dir, 'server.crt'),
            log_file_path=os.path.join(self.temp_dir, 'logs', 'certauth.log')
        )

        result = self.config_service.validate_config(config)

        self.assertTrue(result.is_valid)
        warned_fields = {warning.field for warning in result.warnings}
        self.assertTrue({
            "trusted_ca_path", "allowed_certificate_types", "validate_validity_period",
            "crl_path", "server_cert_path", "log_file_path"
        }.issubset(warned_fields))

    def test_trust_proxy_certificate_headers(self):
        """Test that forwarded certificate headers are off unless enabled in [server]."""
        self.assertFalse(Config().trust_proxy_certificate_headers)

        config_path = self._write_config("[server]\ntrust_proxy_certificate_headers = yes\n")
        config = self.config_service.load_config(config_path)

        self.assertTrue(config.trust_proxy_certificate_headers)
        warned_fields = {warning.field for warning in self.config_service.validate_config(config).warnings}
        self.assertIn("trust_proxy_certificate_headers", warned_fields)

    def test_self_signed_handshake_warning(self):
        """Test that allowing self signed certificates warns about handshake verification."""
        config = Config(
            authentication=CertificateAuthenticationOptions(
                allowed_certificate_types=AllowedCertificateTypes.ALL
            )
        )

        warned_fields = {warning.field for warning in self.config_service.validate_config(config).warnings}

        self.assertIn("client_ca_path", warned_fields)

    def test_create_default_config_file(self):
        """Test that the default configuration file loads cleanly."""
        config_path = os.path.join(self.temp_dir, 'config', 'certauth.ini')

        self.config_service.create_default_config_file(config_path)
        config = self.config_service.load_config(config_path)

        self.assertTrue(os.path.exists(config_path))
        self.assertEqual(config.authentication, CertificateAuthenticationOptions())
        self.assertEqual(config.api_port, 8443)


if __name__ == '__main__':
    unittest.main()
