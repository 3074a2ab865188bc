"""
Command line entry point: serve HTTPS with client certificate authentication,
check a configuration, or run a certificate file through the engine offline.
"""

import os
import sys
import signal
import logging
import argparse
from typing import Optional, List

from cryptography import x509
from cryptography.hazmat.primitives import serialization

from .services.config_service import ConfigService
from .services.logging_service import LoggingService
from .security.models import AuthenticationResult
from .app import CertificateAuthApp


CONFIG_SEARCH_PATHS = [
    "config/certauth.ini",
    "certauth.ini",
    os.path.expanduser("~/.certauth/certauth.ini"),
    "/etc/certauth/certauth.ini",
]


class CertificateAuthApplication:
    """Wires configuration, logging and the Flask app together for one process."""

    def __init__(self, config_path: Optional[str] = None):
        """
        Args:
            config_path: INI file to load; the first existing search path otherwise
        """
        self.config_path = config_path or find_config_path()
        self.logger = logging.getLogger(__name__)
        self.config_service = None
        self.config = None
        self.logging_service = None
        self.flask_app = None
        self._is_running = False

    @property
    def authentication_service(self):
        return self.flask_app.authentication_service if self.flask_app else None

    def initialize(self) -> bool:
        """
        Load configuration, set up logging and build the app.

        A missing configuration file is created with default settings.

        Returns:
            True if the application is ready to serve
        """
        try:
            self.config_service = ConfigService()

            if not os.path.exists(self.config_path):
                self.logger.warning(f"No configuration at {self.config_path}, writing defaults")
                self.config_service.create_default_config_file(self.config_path)

            self.config = self.config_service.load_config(self.config_path)
            self.logging_service = LoggingService(self.config)
            self.logger.info(f"Using configuration {self.config_path}")

            self.flask_app = CertificateAuthApp(self.config_service)
            self._install_reload_handler()

            self._is_running = True
            return True

        except (OSError, ValueError) as e:
            self.logger.error(f"Startup failed: {e}")
            return False

    def _install_reload_handler(self):
        # SIGHUP does not exist on Windows
        if not hasattr(signal, 'SIGHUP'):
            return

        def on_sighup(signum, frame):
            self.logger.info("SIGHUP received, reloading configuration")
            self.reload_configuration()

        signal.signal(signal.SIGHUP, on_sighup)

    def reload_configuration(self) -> bool:
        """
        Re-read the configuration file and swap in the new authentication options.

        Requests already in flight finish with the options they started with.
        A configuration that fails to load leaves the running settings untouched.
        """
        try:
            new_config = self.config_service.load_config(self.config_path)
            self.authentication_service.update_options(new_config.authentication)
        except (OSError, ValueError) as e:
            self.logger.error(f"Configuration reload rejected, keeping current settings: {e}")
            return False

        if new_config.log_level != self.config.log_level:
            self.logging_service.set_level(new_config.log_level)
            self.logger.info(f"Log level is now {new_config.log_level}")

        self.config = new_config
        self.logger.info("Configuration reloaded")
        return True

    def run(self, host: str = '0.0.0.0', port: Optional[int] = None, debug: bool = False):
        """Serve until interrupted; port defaults to the configured one."""
        if not self._is_running:
            self.logger.error("Application not initialized. Call initialize() first.")
            return

        try:
            self.flask_app.run(host=host, port=port, debug=debug)
        except KeyboardInterrupt:
            self.logger.info("Interrupted, shutting down")
        finally:
            self._is_running = False

    def check_certificate(self, certificate_path: str) -> AuthenticationResult:
        """Authenticate a certificate file as if it had been presented over TLS."""
        raw_certificate = read_certificate_file(certificate_path)
        return self.authentication_service.authenticate_sync(True, raw_certificate)

    def get_status(self) -> dict:
        """Summarize the active options and the loaded trust material."""
        status = {
            'running': self._is_running,
            'config_path': self.config_path,
        }
        if self.config is None:
            return status

        options = self.config.authentication
        status.update({
            'allowed_certificate_types': [t.value for t in options.allowed_certificate_types],
            'revocation_flag': options.revocation_flag.value,
            'revocation_mode': options.revocation_mode.value,
            'claims_issuer': options.claims_issuer,
        })

        chain_builder = self.authentication_service.chain_builder if self.flask_app else None
        for key in ('trusted_roots', 'intermediates', 'crls'):
            if hasattr(chain_builder, key):
                status[key] = len(getattr(chain_builder, key))
        return status


def find_config_path() -> str:
    """First existing configuration file on the search path, or the first candidate."""
    for path in CONFIG_SEARCH_PATHS:
        if os.path.exists(path):
            return path
    return CONFIG_SEARCH_PATHS[0]


def read_certificate_file(path: str) -> bytes:
    """Read a PEM or DER certificate file and return its DER bytes."""
    with open(path, 'rb') as f:
        data = f.read()
    if b"-----BEGIN CERTIFICATE-----" in data:
        return x509.load_pem_x509_certificate(data).public_bytes(serialization.Encoding.DER)
    return data


def _print_status(status: dict):
    print("Configuration check passed")
    print(f"Config path: {status['config_path']}")
    print(f"Allowed certificate types: {', '.join(status['allowed_certificate_types'])}")
    print(f"Revocation mode: {status['revocation_mode']} ({status['revocation_flag']})")
    if 'trusted_roots' in status:
        print(f"Trust store: {status['trusted_roots']} roots, {status['intermediates']} intermediates, "
              f"{status['crls']} CRLs")


def _print_result(result: AuthenticationResult):
    print(f"Outcome: {result.status.value}")
    if result.failure_message:
        print(f"Reason: {result.failure_message}")
    for element_status in result.chain_status:
        print(f"  {element_status.status.value}: {element_status.information}")
    if result.principal is not None:
        for claim in result.principal.claims:
            print(f"  {claim.type}: {claim.value}")


def main(argv: Optional[List[str]] = None):
    """Main entry point for the application."""
    parser = argparse.ArgumentParser(description='Client certificate authentication service')
    parser.add_argument('--config', '-c', help='Configuration file path')
    parser.add_argument('--host', default='0.0.0.0', help='Host to bind to (default: 0.0.0.0)')
    parser.add_argument('--port', type=int, help='Port to bind to (uses config if not specified)')
    parser.add_argument('--debug', action='store_true', help='Enable Flask debug mode')
    parser.add_argument('--check-config', action='store_true', help='Check configuration and exit')
    parser.add_argument('--check-certificate', metavar='PATH',
                        help='Authenticate a PEM or DER certificate file, print the outcome and exit')

    args = parser.parse_args(argv)

    app = CertificateAuthApplication(config_path=args.config)

    if not app.initialize():
        print("Failed to initialize application", file=sys.stderr)
        sys.exit(1)

    if args.check_config:
        _print_status(app.get_status())
        sys.exit(0)

    if args.check_certificate:
        try:
            result = app.check_certificate(args.check_certificate)
        except (OSError, ValueError) as e:
            print(f"Cannot read certificate: {e}", file=sys.stderr)
            sys.exit(2)
        _print_result(result)
        sys.exit(0 if result.succeeded else 1)

    app.run(host=args.host, port=args.port, debug=args.debug)


if __name__ == '__main__':
    main()
