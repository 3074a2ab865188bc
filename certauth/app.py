"""
Flask application protected by client certificate authentication.
"""
import logging
import ssl
from datetime import datetime, timezone
from typing import Optional

from flask import Flask, g, jsonify
from werkzeug.exceptions import HTTPException

from .security import CertificateAuthenticationService
from .security.auth_middleware import (
    PeerCertificateRequestHandler, require_authentication, setup_certificate_authentication
)
from .security.events import FailureHook, ValidateHook
from .security.models import CERTIFICATE_PROPERTY_KEY, CertificateType, ClaimsPrincipal
from .services.config_service import ConfigService


# Response bodies for HTTP errors raised by routing
ERROR_MESSAGES = {
    404: ('Not found', 'The requested endpoint does not exist'),
    405: ('Method not allowed', 'The requested method is not allowed for this endpoint'),
}

SECURITY_HEADERS = {
    'Strict-Transport-Security': 'max-age=31536000; includeSubDomains',
    'X-Content-Type-Options': 'nosniff',
    'X-Frame-Options': 'DENY',
    'Referrer-Policy': 'no-referrer',
    'Cache-Control': 'no-store',
}


class CertificateAuthApp:
    """HTTPS API whose callers are identified by their client certificate."""

    def __init__(self, config_service: ConfigService,
                 authentication_service: Optional[CertificateAuthenticationService] = None,
                 validate_hook: Optional[ValidateHook] = None,
                 failure_hook: Optional[FailureHook] = None):
        """
        Args:
            config_service: Service holding the loaded configuration
            authentication_service: Engine to use; built from the configuration when omitted
            validate_hook: Passed to the engine built here
            failure_hook: Passed to the engine built here
        """
        self.app = Flask(__name__)
        self.config_service = config_service
        self.config = config_service.get_config()
        self.logger = logging.getLogger(__name__)

        if authentication_service is None:
            authentication_service = CertificateAuthenticationService(
                self.config.authentication,
                validate_hook=validate_hook,
                failure_hook=failure_hook
            )
        self.authentication_service = authentication_service

        setup_certificate_authentication(
            self.app, self.authentication_service,
            trust_proxy_headers=self.config.trust_proxy_certificate_headers
        )
        self._register_routes()
        self._register_error_handlers()
        self.app.after_request(self._add_security_headers)

    def _register_routes(self):

        @self.app.route('/health', methods=['GET'])
        def health_check():
            """Liveness probe; reachable without a certificate."""
            options = self.authentication_service.options
            return jsonify({
                'status': 'healthy',
                'service': 'certauth',
                'allowed_certificate_types': [t.value for t in options.allowed_certificate_types],
                'revocation_mode': options.revocation_mode.value,
                'timestamp': datetime.now(timezone.utc).isoformat()
            })

        @self.app.route('/api/identity', methods=['GET'])
        @require_authentication
        def get_identity():
            """Claims of the authenticated client."""
            properties = g.authentication_result.properties
            body = principal_to_dict(g.principal)
            body['certificate'] = properties.get(CERTIFICATE_PROPERTY_KEY)
            return jsonify(body)

    def _register_error_handlers(self):

        @self.app.errorhandler(HTTPException)
        def http_error(error):
            # Routing redirects are HTTPExceptions too
            if error.code is None or error.code < 400:
                return error
            error_name, message = ERROR_MESSAGES.get(error.code, (error.name, error.description))
            return jsonify({'error': error_name, 'message': message}), error.code

        @self.app.errorhandler(500)
        def internal_error(error):
            self.logger.error(f"Unhandled error while serving request: {error}")
            return jsonify({
                'error': 'Internal server error',
                'message': 'An unexpected error occurred'
            }), 500

    @staticmethod
    def _add_security_headers(response):
        response.headers.update(SECURITY_HEADERS)
        response.headers.pop('Server', None)
        return response

    def create_ssl_context(self) -> ssl.SSLContext:
        """Server TLS context that requests a client certificate during the handshake."""
        context = ssl.create_default_context(ssl.Purpose.CLIENT_AUTH)
        context.minimum_version = ssl.TLSVersion.TLSv1_2

        context.load_cert_chain(
            certfile=self.config.server_cert_path,
            keyfile=self.config.server_key_path
        )

        # The handshake only accepts client certificates issued by these CAs
        if self.config.client_ca_path:
            context.load_verify_locations(cafile=self.config.client_ca_path)

        context.verify_mode = ssl.CERT_REQUIRED if self.config.client_cert_required else ssl.CERT_OPTIONAL

        if CertificateType.SELF_SIGNED in self.authentication_service.options.allowed_certificate_types:
            self.logger.warning(
                "Self signed client certificates are allowed, but the TLS handshake only accepts "
                "certificates that verify against client_ca_path; list the accepted self signed "
                "certificates there"
            )

        self.logger.info(
            f"TLS context ready, client certificates {'required' if self.config.client_cert_required else 'optional'}"
        )
        return context

    def run(self, host: str = '0.0.0.0', port: Optional[int] = None, debug: bool = False):
        """
        Serve over HTTPS with the peer certificate exposed to the middleware.

        OpenSSL verifies client certificates against ``client_ca_path`` (and the
        system CAs) during the handshake, before the engine sees them. A client
        certificate that fails there never reaches the engine, so self signed
        certificates must be listed in ``client_ca_path``. The engine's relaxed
        revocation and validity settings do not relax the handshake.
        """
        port = port or self.config.api_port
        self.logger.info(f"Listening on https://{host}:{port}")
        self.app.run(
            host=host,
            port=port,
            debug=debug,
            ssl_context=self.create_ssl_context(),
            request_handler=PeerCertificateRequestHandler
        )

    def get_app(self) -> Flask:
        """Get the Flask application instance."""
        return self.app


def principal_to_dict(principal: ClaimsPrincipal) -> dict:
    """JSON view of a principal and its claims, in claim order."""
    return {
        'authentication_type': principal.authentication_type,
        'name': principal.name,
        'claims': [
            {
                'type': claim.type,
                'value': claim.value,
                'value_type': claim.value_type,
                'issuer': claim.issuer
            }
            for claim in principal.claims
        ]
    }
