"""
Configuration service for loading and validating application settings.
"""
import os
import configparser
from enum import Enum
from typing import Optional, Dict, Any, Tuple
import logging

from ..models.config import Config, CertificateAuthenticationOptions, ConfigValidationResult
from ..security.models import (
    AllowedCertificateTypes, CertificateType, RevocationFlag, RevocationMode
)


# INI key -> (field name, type) per section; keys may also appear flat in [DEFAULT]
_AUTHENTICATION_KEYS: Dict[str, Tuple[str, type]] = {
    "allowed_certificate_types": ("allowed_certificate_types", AllowedCertificateTypes),
    "revocation_flag": ("revocation_flag", RevocationFlag),
    "revocation_mode": ("revocation_mode", RevocationMode),
    "validate_certificate_use": ("validate_certificate_use", bool),
    "validate_validity_period": ("validate_validity_period", bool),
    "claims_issuer": ("claims_issuer", str),
    "chain_build_timeout_seconds": ("chain_build_timeout_seconds", float),
    "revocation_fetch_timeout_seconds": ("revocation_fetch_timeout_seconds", float),
    "trusted_ca_path": ("trusted_ca_path", str),
    "intermediate_ca_path": ("intermediate_ca_path", str),
    "crl_path": ("crl_path", str),
}

_SERVER_KEYS: Dict[str, Tuple[str, type]] = {
    "cert_path": ("server_cert_path", str),
    "key_path": ("server_key_path", str),
    "client_ca_path": ("client_ca_path", str),
    "client_cert_required": ("client_cert_required", bool),
    "trust_proxy_certificate_headers": ("trust_proxy_certificate_headers", bool),
    "port": ("api_port", int),
}

_APP_KEYS: Dict[str, Tuple[str, type]] = {
    "log_level": ("log_level", str),
    "log_file_path": ("log_file_path", str),
    "audit_log_enabled": ("audit_log_enabled", bool),
}

_SECTIONS = {
    "authentication": _AUTHENTICATION_KEYS,
    "server": _SERVER_KEYS,
    "app": _APP_KEYS,
}


class ConfigService:
    """Service for loading and validating application configuration."""

    def __init__(self, config_path: Optional[str] = None):
        self.logger = logging.getLogger(__name__)
        self._config = None
        if config_path:
            self._config = self.load_config(config_path)

    def get_config(self) -> Config:
        """
        Get the loaded configuration.

        Raises:
            ValueError: If no configuration has been loaded
        """
        if self._config is None:
            raise ValueError("No configuration loaded. Call load_config() first.")
        return self._config

    def load_config(self, config_path: str) -> Config:
        """
        Load configuration from an INI file.

        Args:
            config_path: Path to the configuration file

        Returns:
            Config object with loaded settings

        Raises:
            FileNotFoundError: If config file doesn't exist
            ValueError: If the file cannot be parsed or a setting is invalid
        """
        if not os.path.exists(config_path):
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        config = self._create_config_from_data(self._load_config_file(config_path))

        validation_result = self.validate_config(config)
        if not validation_result.is_valid:
            raise ValueError(f"Configuration validation failed:\n{validation_result.summary()}")
        if validation_result.warnings:
            self.logger.warning(f"Configuration loaded with warnings:\n{validation_result.summary()}")

        self._config = config
        return config

    def _load_config_file(self, config_path: str) -> Dict[str, Dict[str, str]]:
        """Read the INI file into {section: {key: value}}, folding flat keys into their section."""
        config_parser = configparser.ConfigParser(interpolation=None)

        try:
            config_parser.read(config_path)
        except configparser.Error as e:
            raise ValueError(f"Failed to parse configuration file: {e}")

        config_data: Dict[str, Dict[str, str]] = {section: {} for section in _SECTIONS}

        # Flat keys in [DEFAULT] go to whichever section knows them
        for key, value in config_parser.defaults().items():
            for section, keys in _SECTIONS.items():
                if key in keys:
                    config_data[section][key] = value

        for section in _SECTIONS:
            if config_parser.has_section(section):
                for key, value in config_parser.items(section, raw=True):
                    config_data[section][key] = value

        return config_data

    def _create_config_from_data(self, config_data: Dict[str, Dict[str, str]]) -> Config:
        """Create Config object from configuration data."""
        values: Dict[str, Dict[str, Any]] = {section: {} for section in _SECTIONS}

        for section, keys in _SECTIONS.items():
            for key, raw_value in config_data.get(section, {}).items():
                if key not in keys:
                    self.logger.debug(f"Ignoring unknown setting {section}.{key}")
                    continue
                field_name, field_type = keys[key]
                try:
                    values[section][field_name] = self._convert_value(raw_value, field_type)
                except (ValueError, TypeError) as e:
                    raise ValueError(f"Invalid value for {section}.{key}: {raw_value} ({e})")

        try:
            authentication = CertificateAuthenticationOptions(**values["authentication"])
        except ValueError as e:
            raise ValueError(f"Invalid authentication settings: {e}")

        return Config(authentication=authentication, **values["server"], **values["app"])

    def _convert_value(self, raw_value: Any, field_type) -> Any:
        """Convert a raw configuration string to the field type."""
        if field_type == bool:
            return self._parse_bool(raw_value)
        if field_type == int:
            return int(raw_value)
        if field_type == float:
            return float(raw_value)
        if field_type == AllowedCertificateTypes:
            return self._parse_certificate_types(raw_value)
        if isinstance(field_type, type) and issubclass(field_type, Enum):
            return self._parse_enum(raw_value, field_type)
        if field_type == str:
            value = str(raw_value).strip() if raw_value is not None else None
            return value or None
        return raw_value

    def _parse_bool(self, value: Any) -> bool:
        """Parse boolean value from string."""
        if isinstance(value, bool):
            return value
        if isinstance(value, str):
            return value.lower() in ("true", "yes", "1", "on", "enabled")
        return bool(value)

    def _parse_enum(self, value: str, enum_type):
        """Parse an enum by member name, ignoring case and separators (EntireChain, entire_chain)."""
        normalized = _squash(str(value))
        for member in enum_type:
            if normalized == _squash(member.name):
                return member
        choices = ", ".join(member.value for member in enum_type)
        raise ValueError(f"expected one of: {choices}")

    def _parse_certificate_types(self, value: str) -> AllowedCertificateTypes:
        """Parse a comma separated list of certificate types, or 'all'."""
        names = [_squash(name) for name in str(value).split(",")]
        names = [name for name in names if name]
        if names == ["all"]:
            return AllowedCertificateTypes.ALL

        types = []
        for name in names:
            matches = [t for t in CertificateType if _squash(t.name) == name]
            if not matches:
                raise ValueError(f"unknown certificate type '{name}'")
            types.append(matches[0])
        return AllowedCertificateTypes(types)

    def validate_config(self, config: Config) -> ConfigValidationResult:
        """
        Check a configuration for problems the dataclasses cannot see on their own.

        Missing trust material is an error, since every chained certificate would
        fail. Settings that work but weaken or break validation are warnings.
        """
        result = ConfigValidationResult()
        options = config.authentication
        allowed = options.allowed_certificate_types

        for field_name in ("trusted_ca_path", "intermediate_ca_path", "crl_path"):
            path = getattr(options, field_name)
            if path and not os.path.exists(path):
                result.error(field_name, f"Path not found: {path}")

        if CertificateType.CHAINED in allowed and not options.trusted_ca_path:
            result.warn("trusted_ca_path", "No trusted CA configured; chained certificates will fail validation")

        if CertificateType.SELF_SIGNED in allowed:
            result.warn("allowed_certificate_types",
                        "Self signed certificates are allowed; use a validate hook to pin accepted certificates")

        if not options.validate_validity_period:
            result.warn("validate_validity_period", "Expired certificates will be accepted")

        if not options.validate_certificate_use:
            result.warn("validate_certificate_use", "Certificates without client authentication usage will be accepted")

        if options.revocation_mode is RevocationMode.OFFLINE and not options.crl_path:
            result.warn("crl_path", "Offline revocation checking without local CRLs will reject chained certificates")

        if options.chain_build_timeout_seconds <= options.revocation_fetch_timeout_seconds:
            result.warn("chain_build_timeout_seconds", "Chain build timeout should exceed the revocation fetch timeout")

        if config.trust_proxy_certificate_headers:
            result.warn("trust_proxy_certificate_headers",
                        "Client certificates are read from request headers; the proxy must strip them from client requests")

        if CertificateType.SELF_SIGNED in allowed and config.client_ca_path:
            result.warn("client_ca_path",
                        "The TLS handshake verifies client certificates against client_ca_path; "
                        "self signed certificates must be listed there to reach the engine")

        for field_name in ("server_cert_path", "server_key_path", "client_ca_path"):
            path = getattr(config, field_name)
            if path and not os.path.exists(path):
                result.warn(field_name, f"File not found: {path}")

        log_dir = os.path.dirname(config.log_file_path or "")
        if log_dir and not os.path.exists(log_dir):
            result.warn("log_file_path", f"Log directory does not exist and will be created: {log_dir}")

        return result

    def create_default_config_file(self, config_path: str) -> None:
        """Write a configuration file holding the default settings."""
        config_content = """# certauth configuration

[authentication]
# chained, selfsigned, or all
allowed_certificate_types = chained
# end_certificate_only, entire_chain, exclude_root
revocation_flag = exclude_root
# no_check, online, online_required, offline
revocation_mode = online
validate_certificate_use = true
validate_validity_period = true
claims_issuer = LOCAL AUTHORITY
chain_build_timeout_seconds = 15
revocation_fetch_timeout_seconds = 5
# PEM/DER file or directory of trusted roots; required for chained certificates
trusted_ca_path =
intermediate_ca_path =
crl_path =

[server]
cert_path = certs/server.crt
key_path = certs/server.key
# CAs the TLS handshake accepts client certificates from
client_ca_path = certs/ca.crt
client_cert_required = false
# Accept client certificates forwarded by a TLS terminating proxy (SSL_CLIENT_CERT,
# X-SSL-CERT). Enable only when the proxy strips these headers from client requests.
trust_proxy_certificate_headers = false
port = 8443

[app]
log_level = INFO
log_file_path = logs/certauth.log
audit_log_enabled = true
"""

        config_dir = os.path.dirname(config_path)
        if config_dir:
            os.makedirs(config_dir, exist_ok=True)

        with open(config_path, 'w') as f:
            f.write(config_content)


def _squash(value: str) -> str:
    return value.strip().lower().replace("_", "").replace("-", "").replace(" ", "")
