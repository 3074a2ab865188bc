"""
Construction of the chain validation policy for a client certificate.
"""
from typing import Optional

from .certificate import ClientCertificate
from .classifier import is_self_signed
from .models import (
    CLIENT_AUTHENTICATION_OID, ChainPolicy, RevocationFlag, RevocationMode, VerificationFlag
)
from .options import CertificateAuthenticationOptions


def build_chain_policy(cert: ClientCertificate,
                       options: CertificateAuthenticationOptions,
                       self_signed: Optional[bool] = None) -> ChainPolicy:
    """
    Build the policy used to validate ``cert``.

    Args:
        cert: Client certificate being authenticated
        options: Authentication options
        self_signed: Classification already computed by the caller, if any

    Returns:
        ChainPolicy for a single chain build
    """
    if self_signed is None:
        self_signed = is_self_signed(cert)

    revocation_flag = options.revocation_flag
    revocation_mode = options.revocation_mode
    verification_flags = set()
    application_policy = ()
    extra_store = ()

    if self_signed:
        # There is no issuer to ask about revocation.
        revocation_flag = RevocationFlag.ENTIRE_CHAIN
        revocation_mode = RevocationMode.NO_CHECK
        verification_flags.add(VerificationFlag.ALLOW_UNKNOWN_CERTIFICATE_AUTHORITY)
        verification_flags.add(VerificationFlag.IGNORE_END_REVOCATION_UNKNOWN)
        extra_store = (cert.certificate,)

    if options.validate_certificate_use:
        application_policy = (CLIENT_AUTHENTICATION_OID,)

    if not options.validate_validity_period:
        verification_flags.add(VerificationFlag.IGNORE_NOT_TIME_VALID)

    return ChainPolicy(
        revocation_flag=revocation_flag,
        revocation_mode=revocation_mode,
        verification_flags=frozenset(verification_flags),
        application_policy=application_policy,
        extra_store=extra_store
    )
