"""
Extension points called during certificate authentication.
"""
import inspect
from dataclasses import dataclass
from typing import Any, Callable, Optional

from .certificate import ClientCertificate
from .models import AuthenticationResult
from .options import CertificateAuthenticationOptions


@dataclass(frozen=True)
class CertificateValidatedContext:
    """Passed to the validate hook after the chain built successfully."""
    certificate: ClientCertificate
    options: CertificateAuthenticationOptions
    request_context: Any = None


@dataclass(frozen=True)
class AuthenticationFailedContext:
    """Passed to the failure hook when authentication raised unexpectedly."""
    exception: Exception
    options: CertificateAuthenticationOptions
    certificate: Optional[ClientCertificate] = None
    request_context: Any = None


class ValidateHook:
    """
    Decides the outcome for a certificate whose chain is valid.

    Return a successful result to supply a custom principal, a failed result
    to reject the certificate, or None to use the default certificate claims.
    """

    async def try_validate(self, context: CertificateValidatedContext) -> Optional[AuthenticationResult]:
        raise NotImplementedError

    @staticmethod
    def from_callable(func: Callable) -> "ValidateHook":
        """Wrap a plain or async function taking the context."""
        return _CallableValidateHook(func)


class FailureHook:
    """
    Handles unexpected errors raised while authenticating.

    Return a result to replace the error, or None to let it propagate.
    """

    async def try_recover(self, context: AuthenticationFailedContext) -> Optional[AuthenticationResult]:
        raise NotImplementedError

    @staticmethod
    def from_callable(func: Callable) -> "FailureHook":
        """Wrap a plain or async function taking the context."""
        return _CallableFailureHook(func)


class DeferringValidateHook(ValidateHook):
    """Default validate hook: always use the certificate claims."""

    async def try_validate(self, context):
        return None


class PropagatingFailureHook(FailureHook):
    """Default failure hook: never handle the error."""

    async def try_recover(self, context):
        return None


class _CallableValidateHook(ValidateHook):

    def __init__(self, func: Callable):
        self.func = func

    async def try_validate(self, context):
        return await _call(self.func, context)


class _CallableFailureHook(FailureHook):

    def __init__(self, func: Callable):
        self.func = func

    async def try_recover(self, context):
        return await _call(self.func, context)


async def _call(func: Callable, context):
    result = func(context)
    if inspect.isawaitable(result):
        result = await result
    return result
