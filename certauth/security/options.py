"""
Options consumed by the certificate authentication engine.
"""
from dataclasses import dataclass
from typing import Optional

from .models import AllowedCertificateTypes, RevocationFlag, RevocationMode


@dataclass(frozen=True)
class CertificateAuthenticationOptions:
    """Settings that drive every certificate authentication attempt."""

    allowed_certificate_types: AllowedCertificateTypes = AllowedCertificateTypes.CHAINED
    revocation_flag: RevocationFlag = RevocationFlag.EXCLUDE_ROOT
    revocation_mode: RevocationMode = RevocationMode.ONLINE
    validate_certificate_use: bool = True
    validate_validity_period: bool = True
    claims_issuer: str = "LOCAL AUTHORITY"

    # Path building
    chain_build_timeout_seconds: float = 15
    revocation_fetch_timeout_seconds: float = 5
    trusted_ca_path: Optional[str] = None
    intermediate_ca_path: Optional[str] = None
    crl_path: Optional[str] = None

    def __post_init__(self):
        """Validate options after initialization."""
        self._validate_types()

    def _validate_types(self):
        """Ensure all option values have correct types."""
        if not isinstance(self.allowed_certificate_types, AllowedCertificateTypes):
            raise ValueError("allowed_certificate_types must be an AllowedCertificateTypes set")

        if len(self.allowed_certificate_types) == 0:
            raise ValueError("allowed_certificate_types must allow at least one certificate type")

        if not isinstance(self.revocation_flag, RevocationFlag):
            raise ValueError("revocation_flag must be a RevocationFlag")

        if not isinstance(self.revocation_mode, RevocationMode):
            raise ValueError("revocation_mode must be a RevocationMode")

        if not isinstance(self.validate_certificate_use, bool):
            raise ValueError("validate_certificate_use must be a boolean")

        if not isinstance(self.validate_validity_period, bool):
            raise ValueError("validate_validity_period must be a boolean")

        if not isinstance(self.claims_issuer, str) or not self.claims_issuer.strip():
            raise ValueError("claims_issuer must be a non-empty string")

        if not isinstance(self.chain_build_timeout_seconds, (int, float)) or self.chain_build_timeout_seconds <= 0:
            raise ValueError("chain_build_timeout_seconds must be a positive number")

        if (not isinstance(self.revocation_fetch_timeout_seconds, (int, float))
                or self.revocation_fetch_timeout_seconds <= 0):
            raise ValueError("revocation_fetch_timeout_seconds must be a positive number")

