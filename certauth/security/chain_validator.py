"""
Runs the path builder for one authentication attempt and interprets its result.
"""
import asyncio
import logging
from typing import Optional

from .certificate import ClientCertificate
from .chain_builder import ChainBuilderInterface
from .models import ChainElementStatus, ChainPolicy, ChainStatusFlag, ChainValidationResult


class ChainValidator:
    """Validates a client certificate chain exactly once per request."""

    def __init__(self, chain_builder: ChainBuilderInterface, timeout: Optional[float] = 15):
        """
        Initialize the chain validator.

        Args:
            chain_builder: Path building engine
            timeout: Seconds to wait for a chain build, None to wait indefinitely
        """
        self.chain_builder = chain_builder
        self.timeout = timeout
        self.logger = logging.getLogger(__name__)

    async def validate(self, cert: ClientCertificate, policy: ChainPolicy) -> ChainValidationResult:
        """
        Build the chain for ``cert`` under ``policy``.

        Chain building may block on revocation downloads, so it runs in a worker
        thread. Cancellation of the calling task propagates; exceeding the
        timeout yields an invalid result with a single TIMED_OUT status.
        """
        try:
            build_result = await asyncio.wait_for(
                asyncio.to_thread(self.chain_builder.build, cert, policy),
                timeout=self.timeout
            )
        except asyncio.TimeoutError:
            self.logger.warning(f"Chain build timed out after {self.timeout} seconds")
            return ChainValidationResult.invalid([
                ChainElementStatus(
                    ChainStatusFlag.TIMED_OUT,
                    f"Chain build did not complete within {self.timeout} seconds"
                )
            ])

        if build_result.is_valid:
            return ChainValidationResult.valid()
        return ChainValidationResult.invalid(build_result.chain_status)
