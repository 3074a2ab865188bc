"""
Classification of client certificates as self-signed or chained.
"""
from typing import Union

from cryptography import x509
from cryptography.exceptions import InvalidSignature, UnsupportedAlgorithm

from .certificate import ClientCertificate
from .models import CertificateType


def is_self_signed(cert: Union[ClientCertificate, x509.Certificate]) -> bool:
    """
    Check whether a certificate is genuinely self-signed.

    Matching issuer and subject names are not enough: the signature must also
    verify against the certificate's own public key. A certificate that only
    claims to be self-issued is treated as chained.
    """
    if isinstance(cert, ClientCertificate):
        cert = cert.certificate

    if cert.issuer != cert.subject:
        return False

    try:
        cert.verify_directly_issued_by(cert)
    except (InvalidSignature, ValueError, TypeError, UnsupportedAlgorithm):
        return False
    return True


def classify(cert: Union[ClientCertificate, x509.Certificate]) -> CertificateType:
    """Return the certificate category used by the type gate."""
    return CertificateType.SELF_SIGNED if is_self_signed(cert) else CertificateType.CHAINED
