"""
Security models for client certificate authentication.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, Optional, Tuple

from cryptography import x509


CLIENT_AUTHENTICATION_OID = "1.3.6.1.5.5.7.3.2"

AUTHENTICATION_SCHEME = "Certificate"
CERTIFICATE_PROPERTY_KEY = "Certificate"


class CertificateType(Enum):
    """Categories a client certificate can fall into."""
    SELF_SIGNED = "selfsigned"
    CHAINED = "chained"


class AllowedCertificateTypes:
    """Immutable set of certificate types a deployment accepts."""

    __slots__ = ("_types",)

    def __init__(self, types: Iterable[CertificateType] = ()):
        types = frozenset(types)
        for certificate_type in types:
            if not isinstance(certificate_type, CertificateType):
                raise TypeError(f"Not a certificate type: {certificate_type!r}")
        object.__setattr__(self, "_types", types)

    def __setattr__(self, name, value):
        raise AttributeError("AllowedCertificateTypes is immutable")

    @classmethod
    def of(cls, *types: CertificateType) -> "AllowedCertificateTypes":
        return cls(types)

    @property
    def types(self) -> FrozenSet[CertificateType]:
        return self._types

    def __contains__(self, certificate_type) -> bool:
        return certificate_type in self._types

    def __iter__(self):
        return iter(sorted(self._types, key=lambda t: t.value))

    def __len__(self) -> int:
        return len(self._types)

    def __eq__(self, other) -> bool:
        if not isinstance(other, AllowedCertificateTypes):
            return NotImplemented
        return self._types == other._types

    def __hash__(self) -> int:
        return hash(self._types)

    def __repr__(self) -> str:
        names = ", ".join(t.name for t in self)
        return f"AllowedCertificateTypes({names})"


AllowedCertificateTypes.CHAINED = AllowedCertificateTypes.of(CertificateType.CHAINED)
AllowedCertificateTypes.SELF_SIGNED = AllowedCertificateTypes.of(CertificateType.SELF_SIGNED)
AllowedCertificateTypes.ALL = AllowedCertificateTypes.of(
    CertificateType.CHAINED, CertificateType.SELF_SIGNED
)


class RevocationFlag(Enum):
    """Which elements of a chain are checked for revocation."""
    END_CERTIFICATE_ONLY = "end_certificate_only"
    ENTIRE_CHAIN = "entire_chain"
    EXCLUDE_ROOT = "exclude_root"


class RevocationMode(Enum):
    """How revocation information is obtained."""
    NO_CHECK = "no_check"
    ONLINE = "online"
    ONLINE_REQUIRED = "online_required"
    OFFLINE = "offline"


class VerificationFlag(Enum):
    """Relaxations applied while building a chain."""
    ALLOW_UNKNOWN_CERTIFICATE_AUTHORITY = "allow_unknown_certificate_authority"
    IGNORE_END_REVOCATION_UNKNOWN = "ignore_end_revocation_unknown"
    IGNORE_NOT_TIME_VALID = "ignore_not_time_valid"


@dataclass(frozen=True)
class ChainPolicy:
    """Settings handed to the path builder for a single validation."""
    revocation_flag: RevocationFlag
    revocation_mode: RevocationMode
    verification_flags: FrozenSet[VerificationFlag] = frozenset()
    application_policy: Tuple[str, ...] = ()
    extra_store: Tuple[x509.Certificate, ...] = ()

    def allows(self, flag: VerificationFlag) -> bool:
        return flag in self.verification_flags


class ChainStatusFlag(Enum):
    """Problems the path builder can report for a chain."""
    NOT_TIME_VALID = "NotTimeValid"
    REVOKED = "Revoked"
    NOT_SIGNATURE_VALID = "NotSignatureValid"
    NOT_VALID_FOR_USAGE = "NotValidForUsage"
    UNTRUSTED_ROOT = "UntrustedRoot"
    PARTIAL_CHAIN = "PartialChain"
    REVOCATION_STATUS_UNKNOWN = "RevocationStatusUnknown"
    OFFLINE_REVOCATION = "OfflineRevocation"
    INVALID_BASIC_CONSTRAINTS = "InvalidBasicConstraints"
    TIMED_OUT = "TimedOut"


@dataclass(frozen=True)
class ChainElementStatus:
    """One diagnostic entry produced while building a chain."""
    status: ChainStatusFlag
    information: str

    def __str__(self):
        return f"{self.status.value} {self.information}"


@dataclass(frozen=True)
class ChainValidationResult:
    """Outcome of a single chain build."""
    is_valid: bool
    chain_status: Tuple[ChainElementStatus, ...] = ()

    @classmethod
    def valid(cls) -> "ChainValidationResult":
        return cls(is_valid=True)

    @classmethod
    def invalid(cls, chain_status: Iterable[ChainElementStatus]) -> "ChainValidationResult":
        return cls(is_valid=False, chain_status=tuple(chain_status))


class ClaimTypes:
    ISSUER = "issuer"
    THUMBPRINT = "thumbprint"
    X500_DISTINGUISHED_NAME = "x500distinguishedname"
    SERIAL_NUMBER = "serialnumber"
    DNS = "dns"
    NAME = "name"
    EMAIL = "email"
    UPN = "upn"
    URI = "uri"


class ClaimValueTypes:
    STRING = "http://www.w3.org/2001/XMLSchema#string"
    HEX_BINARY = "http://www.w3.org/2001/XMLSchema#hexBinary"


@dataclass(frozen=True)
class Claim:
    """A typed statement about an authenticated identity."""
    type: str
    value: str
    value_type: str
    issuer: str


@dataclass(frozen=True)
class ClaimsPrincipal:
    """An authenticated identity made of ordered claims."""
    claims: Tuple[Claim, ...]
    authentication_type: str = AUTHENTICATION_SCHEME

    def find_first(self, claim_type: str) -> Optional[Claim]:
        for claim in self.claims:
            if claim.type == claim_type:
                return claim
        return None

    @property
    def name(self) -> Optional[str]:
        claim = self.find_first(ClaimTypes.NAME)
        return claim.value if claim else None


class AuthenticationStatus(Enum):
    NO_RESULT = "no_result"
    REJECTED = "rejected"
    VALID = "valid"


@dataclass(frozen=True)
class AuthenticationResult:
    """Result of client certificate authentication."""
    status: AuthenticationStatus
    failure_message: Optional[str] = None
    chain_status: Tuple[ChainElementStatus, ...] = ()
    principal: Optional[ClaimsPrincipal] = None
    properties: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def no_result(cls) -> "AuthenticationResult":
        return cls(status=AuthenticationStatus.NO_RESULT)

    @classmethod
    def fail(cls, message: str,
             chain_status: Iterable[ChainElementStatus] = ()) -> "AuthenticationResult":
        return cls(
            status=AuthenticationStatus.REJECTED,
            failure_message=message,
            chain_status=tuple(chain_status)
        )

    @classmethod
    def success(cls, principal: ClaimsPrincipal,
                properties: Optional[Dict[str, Any]] = None) -> "AuthenticationResult":
        if principal is None:
            raise ValueError("A successful result requires a principal")
        return cls(
            status=AuthenticationStatus.VALID,
            principal=principal,
            properties=dict(properties or {})
        )

    @property
    def succeeded(self) -> bool:
        return self.status is AuthenticationStatus.VALID

    @property
    def rejected(self) -> bool:
        return self.status is AuthenticationStatus.REJECTED

    @property
    def none(self) -> bool:
        return self.status is AuthenticationStatus.NO_RESULT
