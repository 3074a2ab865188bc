"""
Configuration data models for the certificate authentication service.
"""
from dataclasses import dataclass, field
from typing import List

from ..security.options import CertificateAuthenticationOptions


LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass
class Config:
    """Application settings: the engine options plus the HTTPS server around them."""

    authentication: CertificateAuthenticationOptions = field(
        default_factory=CertificateAuthenticationOptions
    )

    # TLS listener
    server_cert_path: str = "certs/server.crt"
    server_key_path: str = "certs/server.key"
    client_ca_path: str = "certs/ca.crt"
    client_cert_required: bool = False
    trust_proxy_certificate_headers: bool = False
    api_port: int = 8443

    # Logging
    log_level: str = "INFO"
    log_file_path: str = "logs/certauth.log"
    audit_log_enabled: bool = True

    def __post_init__(self):
        """Validate configuration after initialization."""
        self._validate_types()

    def _validate_types(self):
        if not isinstance(self.authentication, CertificateAuthenticationOptions):
            raise ValueError("authentication must be CertificateAuthenticationOptions")

        if not isinstance(self.client_cert_required, bool):
            raise ValueError("client_cert_required must be a boolean")

        if not isinstance(self.trust_proxy_certificate_headers, bool):
            raise ValueError("trust_proxy_certificate_headers must be a boolean")

        if isinstance(self.api_port, bool) or not isinstance(self.api_port, int) or not 0 < self.api_port < 65536:
            raise ValueError("api_port must be an integer between 1 and 65535")

        if self.log_level not in LOG_LEVELS:
            raise ValueError(f"log_level must be one of: {', '.join(LOG_LEVELS)}")


@dataclass(frozen=True)
class ConfigIssue:
    """A single problem found while checking the configuration."""
    field: str
    message: str
    severity: str = "error"

    @property
    def is_error(self) -> bool:
        return self.severity == "error"

    def __str__(self):
        return f"[{self.severity}] {self.field}: {self.message}"


@dataclass
class ConfigValidationResult:
    """Outcome of checking a configuration; only errors make it invalid."""
    issues: List[ConfigIssue] = field(default_factory=list)

    @property
    def errors(self) -> List[ConfigIssue]:
        return [issue for issue in self.issues if issue.is_error]

    @property
    def warnings(self) -> List[ConfigIssue]:
        return [issue for issue in self.issues if not issue.is_error]

    @property
    def is_valid(self) -> bool:
        return not self.errors

    def error(self, field_name: str, message: str):
        self.issues.append(ConfigIssue(field_name, message))

    def warn(self, field_name: str, message: str):
        self.issues.append(ConfigIssue(field_name, message, "warning"))

    def summary(self) -> str:
        """One line per issue, errors first."""
        if not self.issues:
            return "Configuration is valid"
        return "\n".join(f"  {issue}" for issue in self.errors + self.warnings)
