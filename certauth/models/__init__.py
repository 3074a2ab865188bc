"""
Models package for the certificate authentication application.
"""

from .config import Config, CertificateAuthenticationOptions, ConfigIssue, ConfigValidationResult

__all__ = [
    'Config',
    'CertificateAuthenticationOptions',
    'ConfigIssue',
    'ConfigValidationResult'
]
