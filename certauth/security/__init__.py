"""
Security package for client certificate authentication.
"""
from .models import (
    AllowedCertificateTypes, AuthenticationResult, AuthenticationStatus, CertificateType,
    ChainElementStatus, ChainPolicy, ChainStatusFlag, ChainValidationResult, Claim,
    ClaimsPrincipal, ClaimTypes, ClaimValueTypes, RevocationFlag, RevocationMode,
    VerificationFlag
)
from .options import CertificateAuthenticationOptions
from .certificate import ClientCertificate
from .classifier import is_self_signed
from .chain_policy import build_chain_policy
from .chain_builder import ChainBuilderInterface, ChainBuildResult, X509ChainBuilder
from .chain_validator import ChainValidator
from .claims import create_principal, map_claims
from .events import (
    AuthenticationFailedContext, CertificateValidatedContext, FailureHook, ValidateHook
)
from .authentication_service import CertificateAuthenticationService

__all__ = [
    'AllowedCertificateTypes',
    'AuthenticationResult',
    'AuthenticationStatus',
    'CertificateType',
    'ChainElementStatus',
    'ChainPolicy',
    'ChainStatusFlag',
    'ChainValidationResult',
    'Claim',
    'ClaimsPrincipal',
    'ClaimTypes',
    'ClaimValueTypes',
    'RevocationFlag',
    'RevocationMode',
    'VerificationFlag',
    'CertificateAuthenticationOptions',
    'ClientCertificate',
    'is_self_signed',
    'build_chain_policy',
    'ChainBuilderInterface',
    'ChainBuildResult',
    'X509ChainBuilder',
    'ChainValidator',
    'create_principal',
    'map_claims',
    'AuthenticationFailedContext',
    'CertificateValidatedContext',
    'FailureHook',
    'ValidateHook',
    'CertificateAuthenticationService'
]
