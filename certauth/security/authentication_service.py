"""
Certificate authentication service: decides the outcome of one request.
"""
import asyncio
import logging
from typing import Any, Dict, Optional

from .certificate import ClientCertificate
from .chain_builder import ChainBuilderInterface, X509ChainBuilder
from .chain_policy import build_chain_policy
from .chain_validator import ChainValidator
from .claims import create_principal
from .classifier import is_self_signed
from .events import (
    AuthenticationFailedContext, CertificateValidatedContext, DeferringValidateHook, FailureHook,
    PropagatingFailureHook, ValidateHook
)
from .models import (
    CERTIFICATE_PROPERTY_KEY, AuthenticationResult, CertificateType, ClaimsPrincipal
)
from .options import CertificateAuthenticationOptions


class CertificateAuthenticationService:
    """Service for authenticating requests with client certificates."""

    def __init__(self,
                 options: Optional[CertificateAuthenticationOptions] = None,
                 chain_builder: Optional[ChainBuilderInterface] = None,
                 validate_hook: Optional[ValidateHook] = None,
                 failure_hook: Optional[FailureHook] = None):
        """
        Initialize the authentication service.

        Args:
            options: Authentication options, defaults when omitted
            chain_builder: Path builder; loaded from the options when omitted
            validate_hook: Called after a successful chain build
            failure_hook: Called when authentication raises unexpectedly
        """
        self.logger = logging.getLogger(__name__)
        self.validate_hook = validate_hook or DeferringValidateHook()
        self.failure_hook = failure_hook or PropagatingFailureHook()

        options = options or CertificateAuthenticationOptions()
        self._owns_chain_builder = chain_builder is None
        if chain_builder is None:
            chain_builder = X509ChainBuilder.from_options(options)
        # Read as a single reference so concurrent attempts see one consistent snapshot.
        self._snapshot = (options, chain_builder)

    @property
    def options(self) -> CertificateAuthenticationOptions:
        return self._snapshot[0]

    @property
    def chain_builder(self) -> ChainBuilderInterface:
        return self._snapshot[1]

    def update_options(self, options: CertificateAuthenticationOptions):
        """Swap in a new options snapshot; in-flight attempts keep the old one."""
        if not isinstance(options, CertificateAuthenticationOptions):
            raise TypeError("options must be CertificateAuthenticationOptions")

        chain_builder = self._snapshot[1]
        if self._owns_chain_builder:
            chain_builder = X509ChainBuilder.from_options(options)

        self._snapshot = (options, chain_builder)
        self.logger.info("Certificate authentication options updated")

    async def authenticate(self, is_secure: bool, raw_certificate: Optional[bytes],
                           request_context: Any = None) -> AuthenticationResult:
        """
        Authenticate a request from its client certificate.

        Args:
            is_secure: Whether the request arrived over TLS
            raw_certificate: DER encoded client certificate, if one was presented
            request_context: Opaque caller data handed to the hooks

        Returns:
            AuthenticationResult with no result, a rejection, or a principal

        Raises:
            Exception: Any unexpected error the failure hook does not handle,
                unchanged
        """
        options, chain_builder = self._snapshot
        certificate = None

        try:
            # Client certificates only exist on TLS connections
            if not is_secure:
                self.logger.info("Request protocol is HTTP, no client certificate available.")
                return AuthenticationResult.no_result()

            if not raw_certificate:
                self.logger.debug("No client certificate found.")
                return AuthenticationResult.no_result()

            certificate = ClientCertificate.from_der(raw_certificate)
            return await self._authenticate_certificate(
                certificate, options, chain_builder, request_context
            )

        except Exception as e:
            self.logger.error(
                f"Certificate authentication raised {type(e).__name__}: {e}",
                extra=_log_scope(certificate)
            )
            result = await self.failure_hook.try_recover(AuthenticationFailedContext(
                exception=e,
                options=options,
                certificate=certificate,
                request_context=request_context
            ))
            if result is not None:
                self.logger.info(f"Failure hook supplied outcome: {result.status.value}")
                return result
            raise

    def authenticate_sync(self, is_secure: bool, raw_certificate: Optional[bytes],
                          request_context: Any = None) -> AuthenticationResult:
        """
        Run authenticate() to completion for synchronous callers such as WSGI.

        Uses asyncio.run, so it raises RuntimeError when called from a thread
        that already runs an event loop; await authenticate() there instead.
        """
        return asyncio.run(self.authenticate(is_secure, raw_certificate, request_context))

    async def _authenticate_certificate(self, certificate: ClientCertificate,
                                        options: CertificateAuthenticationOptions,
                                        chain_builder: ChainBuilderInterface,
                                        request_context: Any) -> AuthenticationResult:
        self_signed = is_self_signed(certificate)

        rejection = self._check_certificate_type(certificate, self_signed, options)
        if rejection is not None:
            return rejection

        policy = build_chain_policy(certificate, options, self_signed=self_signed)
        validator = ChainValidator(chain_builder, timeout=options.chain_build_timeout_seconds)
        chain_result = await validator.validate(certificate, policy)

        if not chain_result.is_valid:
            scope = _log_scope(certificate)
            self.logger.warning(
                f"Client certificate failed validation, subject was {certificate.subject}",
                extra=scope
            )
            for element_status in chain_result.chain_status:
                self.logger.warning(
                    f"{element_status.status.value} {element_status.information}",
                    extra=scope
                )
            return AuthenticationResult.fail(
                "Client certificate failed validation.",
                chain_status=chain_result.chain_status
            )

        hook_result = await self.validate_hook.try_validate(CertificateValidatedContext(
            certificate=certificate,
            options=options,
            request_context=request_context
        ))

        if hook_result is not None and hook_result.succeeded:
            return self._success(hook_result.principal, certificate, hook_result.properties)

        if hook_result is not None and hook_result.rejected:
            self.logger.warning(
                f"Client certificate rejected by validate hook: {hook_result.failure_message}",
                extra=_log_scope(certificate)
            )
            return hook_result

        return self._success(create_principal(certificate, options.claims_issuer), certificate)

    def _check_certificate_type(self, certificate: ClientCertificate, self_signed: bool,
                                options: CertificateAuthenticationOptions) -> Optional[AuthenticationResult]:
        """Reject certificate categories the options do not allow, before any chain work."""
        allowed = options.allowed_certificate_types

        if self_signed and CertificateType.SELF_SIGNED not in allowed:
            self.logger.warning(
                f"Self signed certificate rejected, subject was {certificate.subject}",
                extra=_log_scope(certificate)
            )
            return AuthenticationResult.fail("Options do not allow self signed certificates.")

        if not self_signed and CertificateType.CHAINED not in allowed:
            self.logger.warning(
                f"Chained certificate rejected, subject was {certificate.subject}",
                extra=_log_scope(certificate)
            )
            return AuthenticationResult.fail("Options do not allow chained certificates.")

        return None

    def _success(self, principal: ClaimsPrincipal, certificate: ClientCertificate,
                 properties: Optional[Dict[str, Any]] = None) -> AuthenticationResult:
        properties = dict(properties or {})
        properties[CERTIFICATE_PROPERTY_KEY] = certificate.raw_data_string
        self.logger.info(
            f"Client certificate authenticated: {principal.name or certificate.subject}",
            extra=_log_scope(certificate)
        )
        return AuthenticationResult.success(principal, properties)


def _log_scope(certificate: Optional[ClientCertificate]) -> Dict[str, Any]:
    """Logging extra that tags a message with the certificate it concerns."""
    thumbprint = certificate.sha256_thumbprint if certificate is not None else None
    return {'extra_data': {'thumbprint': thumbprint}}
