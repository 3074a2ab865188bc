"""
Flask/WSGI integration for client certificate authentication.
"""
import logging
import ssl
import urllib.parse
from functools import wraps
from typing import Optional

from flask import g, jsonify, request
from werkzeug.serving import WSGIRequestHandler

from .authentication_service import CertificateAuthenticationService
from .models import AuthenticationResult


PEER_CERTIFICATE_ENVIRON_KEY = 'certauth.peer_certificate_der'
RESULT_ENVIRON_KEY = 'certauth.result'


class PeerCertificateRequestHandler(WSGIRequestHandler):
    """Development server handler that exposes the TLS peer certificate to the app."""

    def make_environ(self):
        environ = super().make_environ()
        getpeercert = getattr(self.connection, 'getpeercert', None)
        if getpeercert is not None:
            environ[PEER_CERTIFICATE_ENVIRON_KEY] = getpeercert(binary_form=True)
        return environ


class CertificateAuthMiddleware:
    """Middleware for client certificate authentication."""

    def __init__(self, app, authentication_service: CertificateAuthenticationService,
                 trust_proxy_headers: bool = False):
        """
        Initialize the authentication middleware.

        Args:
            app: Flask app to wrap
            authentication_service: Engine deciding on each certificate
            trust_proxy_headers: Also accept certificates forwarded by a TLS
                terminating proxy in SSL_CLIENT_CERT or X-SSL-CERT. Only safe when
                the proxy strips those headers from client requests.
        """
        self.app = app
        self.authentication_service = authentication_service
        self.trust_proxy_headers = trust_proxy_headers
        self.logger = logging.getLogger(__name__)

        # Wrap the Flask app
        self.wsgi_app = app.wsgi_app
        app.wsgi_app = self

    def __call__(self, environ, start_response):
        """WSGI application call."""
        is_secure = environ.get('wsgi.url_scheme') == 'https'
        raw_certificate = self._extract_client_certificate(environ) if is_secure else None

        result = self.authentication_service.authenticate_sync(
            is_secure, raw_certificate, request_context=environ
        )
        environ[RESULT_ENVIRON_KEY] = result

        if result.succeeded:
            self.logger.info(f"Client authenticated: {result.principal.name}")
        elif result.rejected:
            self.logger.warning(f"Client authentication failed: {result.failure_message}")

        return self.wsgi_app(environ, start_response)

    def _extract_client_certificate(self, environ) -> Optional[bytes]:
        """Extract the DER encoded client certificate from the WSGI environment."""
        # Method 1: peer certificate captured by PeerCertificateRequestHandler
        peer_certificate = environ.get(PEER_CERTIFICATE_ENVIRON_KEY)
        if peer_certificate:
            return peer_certificate

        # Forwarded certificates count only behind a proxy that sets them itself
        if not self.trust_proxy_headers:
            return None

        # Method 2: Standard SSL_CLIENT_CERT (Apache, nginx)
        client_cert = environ.get('SSL_CLIENT_CERT')
        if client_cert:
            return self._pem_to_der(client_cert)

        # Method 3: HTTP_SSL_CLIENT_CERT (some reverse proxies)
        client_cert = environ.get('HTTP_SSL_CLIENT_CERT')
        if client_cert:
            return self._pem_to_der(urllib.parse.unquote(client_cert))

        # Method 4: X-SSL-CERT header (nginx with proxy_set_header)
        client_cert = environ.get('HTTP_X_SSL_CERT')
        if client_cert:
            cert_content = client_cert.replace(' ', '\n')
            # Spaces also split the armor lines, put them back together
            cert_content = cert_content.replace('-----BEGIN\nCERTIFICATE-----', '-----BEGIN CERTIFICATE-----')
            cert_content = cert_content.replace('-----END\nCERTIFICATE-----', '-----END CERTIFICATE-----')
            if not cert_content.startswith('-----BEGIN CERTIFICATE-----'):
                cert_content = f"-----BEGIN CERTIFICATE-----\n{cert_content}\n-----END CERTIFICATE-----"
            return self._pem_to_der(cert_content)

        return None

    def _pem_to_der(self, pem: str) -> Optional[bytes]:
        try:
            return ssl.PEM_cert_to_DER_cert(pem.strip())
        except ValueError as e:
            self.logger.warning(f"Ignoring unreadable client certificate: {e}")
            return None


def _forbidden(result: AuthenticationResult):
    # Certificates are negotiated with the connection, so a challenge cannot
    # prompt for one; both challenge and forbid answer 403.
    return jsonify({
        'error': 'Forbidden',
        'message': result.failure_message or 'Client certificate authentication failed'
    }), 403


def setup_certificate_authentication(app, authentication_service: CertificateAuthenticationService,
                                     trust_proxy_headers: bool = False):
    """Set up client certificate authentication for a Flask app."""

    CertificateAuthMiddleware(app, authentication_service, trust_proxy_headers=trust_proxy_headers)

    @app.before_request
    def authenticate_request():
        """Expose the authentication outcome to the request."""
        result = request.environ.get(RESULT_ENVIRON_KEY) or AuthenticationResult.no_result()
        g.authentication_result = result
        g.principal = result.principal if result.succeeded else None

        # Health checks stay reachable for load balancers
        if request.endpoint == 'health_check':
            return

        # No result leaves the request to other authentication schemes
        if result.rejected:
            return _forbidden(result)

    return app


def require_authentication(f):
    """Decorator to require an authenticated principal for specific endpoints."""

    @wraps(f)
    def decorated_function(*args, **kwargs):
        if getattr(g, 'principal', None) is None:
            return _forbidden(getattr(g, 'authentication_result', AuthenticationResult.no_result()))
        return f(*args, **kwargs)
    return decorated_function
