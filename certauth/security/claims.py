"""
Mapping of validated client certificates to identity claims.
"""
from typing import List, Optional

from .certificate import ClientCertificate
from .models import AUTHENTICATION_SCHEME, Claim, ClaimsPrincipal, ClaimTypes, ClaimValueTypes


def map_claims(cert: ClientCertificate, claims_issuer: str) -> List[Claim]:
    """
    Derive the ordered claims for a certificate.

    Claims are emitted in a fixed order (issuer, thumbprint, distinguished
    name, serial number, DNS name, simple name, email, UPN, URI). Fields that
    are missing or blank produce no claim.
    """
    fields = [
        (ClaimTypes.ISSUER, cert.issuer, ClaimValueTypes.STRING),
        (ClaimTypes.THUMBPRINT, cert.thumbprint, ClaimValueTypes.HEX_BINARY),
        (ClaimTypes.X500_DISTINGUISHED_NAME, cert.subject, ClaimValueTypes.STRING),
        (ClaimTypes.SERIAL_NUMBER, cert.serial_number, ClaimValueTypes.STRING),
        (ClaimTypes.DNS, cert.dns_name, ClaimValueTypes.STRING),
        (ClaimTypes.NAME, cert.simple_name, ClaimValueTypes.STRING),
        (ClaimTypes.EMAIL, cert.email, ClaimValueTypes.STRING),
        (ClaimTypes.UPN, cert.upn, ClaimValueTypes.STRING),
        (ClaimTypes.URI, cert.uri, ClaimValueTypes.STRING),
    ]

    claims = []
    for claim_type, value, value_type in fields:
        if _is_blank(value):
            continue
        claims.append(Claim(type=claim_type, value=value, value_type=value_type, issuer=claims_issuer))
    return claims


def create_principal(cert: ClientCertificate, claims_issuer: str) -> ClaimsPrincipal:
    """Build the default principal for an accepted certificate."""
    return ClaimsPrincipal(
        claims=tuple(map_claims(cert, claims_issuer)),
        authentication_type=AUTHENTICATION_SCHEME
    )


def _is_blank(value: Optional[str]) -> bool:
    return value is None or not value.strip()
