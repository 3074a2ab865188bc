"""
X.509 path building with time, usage and revocation checks.
"""
import logging
import os
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable, List, Optional, Sequence, Tuple, Union

import requests
from cryptography import x509
from cryptography.exceptions import InvalidSignature, UnsupportedAlgorithm
from cryptography.x509.oid import ExtendedKeyUsageOID
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .certificate import ClientCertificate
from .classifier import is_self_signed
from .models import (
    ChainElementStatus, ChainPolicy, ChainStatusFlag, RevocationFlag, RevocationMode,
    VerificationFlag
)


MAX_CHAIN_DEPTH = 10

_CERTIFICATE_SUFFIXES = ('.crt', '.pem', '.cer', '.der')
_CRL_SUFFIXES = ('.crl', '.pem', '.der')


@dataclass(frozen=True)
class ChainBuildResult:
    """Path found for a certificate and every problem seen while building it."""
    chain: Tuple[x509.Certificate, ...]
    chain_status: Tuple[ChainElementStatus, ...]

    @property
    def is_valid(self) -> bool:
        return not self.chain_status


class ChainBuilderInterface:
    """Interface for path building engines."""

    def build(self, cert: ClientCertificate, policy: ChainPolicy,
              moment: Optional[datetime] = None) -> ChainBuildResult:
        """Build and check a path from ``cert`` to a trust anchor."""
        raise NotImplementedError


class CrlFetcher:
    """Downloads certificate revocation lists from distribution points."""

    def __init__(self, timeout: float = 5, max_retries: int = 2, backoff_factor: float = 0.5):
        """
        Initialize the CRL fetcher.

        Args:
            timeout: Request timeout in seconds
            max_retries: Maximum number of retry attempts
            backoff_factor: Factor for exponential backoff between retries
        """
        self.timeout = timeout
        self.max_retries = max_retries
        self.backoff_factor = backoff_factor
        self.logger = logging.getLogger(__name__)
        self.session = self._create_session()

    def _create_session(self) -> requests.Session:
        """Create a requests session with retry configuration."""
        session = requests.Session()

        retry_strategy = Retry(
            total=self.max_retries,
            backoff_factor=self.backoff_factor,
            status_forcelist=[429, 500, 502, 503, 504],
            allowed_methods=["HEAD", "GET"]
        )

        adapter = HTTPAdapter(max_retries=retry_strategy)
        session.mount("http://", adapter)
        session.mount("https://", adapter)
        session.headers.update({
            'Accept': 'application/pkix-crl, application/x-pkcs7-crl, */*;q=0.5',
        })

        return session

    def fetch(self, url: str) -> x509.CertificateRevocationList:
        """
        Download and parse a CRL.

        Raises:
            requests.RequestException: If the download fails
            ValueError: If the response is not a CRL
        """
        self.logger.debug(f"Fetching CRL: {url}")
        response = self.session.get(url, timeout=self.timeout)
        response.raise_for_status()
        return load_crl(response.content)


class X509ChainBuilder(ChainBuilderInterface):
    """Builds certificate paths against configured trust anchors."""

    def __init__(self,
                 trusted_roots: Iterable[x509.Certificate] = (),
                 intermediates: Iterable[x509.Certificate] = (),
                 crls: Iterable[x509.CertificateRevocationList] = (),
                 crl_fetcher: Optional[CrlFetcher] = None):
        self.trusted_roots = tuple(trusted_roots)
        self.intermediates = tuple(intermediates)
        self.crls = tuple(crls)
        self.crl_fetcher = crl_fetcher
        self.logger = logging.getLogger(__name__)

    @classmethod
    def from_options(cls, options) -> "X509ChainBuilder":
        """Load trust anchors, intermediates and CRLs from configured paths."""
        trusted_roots = load_certificates(options.trusted_ca_path) if options.trusted_ca_path else []
        intermediates = load_certificates(options.intermediate_ca_path) if options.intermediate_ca_path else []
        crls = load_crls(options.crl_path) if options.crl_path else []

        builder = cls(
            trusted_roots=trusted_roots,
            intermediates=intermediates,
            crls=crls,
            crl_fetcher=CrlFetcher(timeout=options.revocation_fetch_timeout_seconds)
        )
        builder.logger.info(
            f"Loaded {len(trusted_roots)} trusted roots, {len(intermediates)} intermediates "
            f"and {len(crls)} CRLs"
        )
        return builder

    def build(self, cert: Union[ClientCertificate, x509.Certificate], policy: ChainPolicy,
              moment: Optional[datetime] = None) -> ChainBuildResult:
        leaf = cert.certificate if isinstance(cert, ClientCertificate) else cert
        moment = moment or datetime.now(timezone.utc)
        statuses: List[ChainElementStatus] = []

        chain = self._build_path(leaf, policy, statuses)
        self._check_trust(chain[-1], policy, statuses)
        self._check_basic_constraints(chain, statuses)
        self._check_issuer_key_usage(chain, statuses)
        self._check_time_validity(chain, policy, moment, statuses)
        self._check_application_policy(chain, policy, statuses)
        self._check_revocation(chain, policy, moment, statuses)

        return ChainBuildResult(chain=tuple(chain), chain_status=tuple(statuses))

    def _build_path(self, leaf: x509.Certificate, policy: ChainPolicy,
                    statuses: List[ChainElementStatus]) -> List[x509.Certificate]:
        """Walk issuer links from the leaf to a trust anchor or a dead end."""
        candidates = self.trusted_roots + tuple(policy.extra_store) + self.intermediates
        path = [leaf]
        current = leaf

        while True:
            if self._is_trusted(current) or is_self_signed(current):
                break

            if len(path) >= MAX_CHAIN_DEPTH:
                statuses.append(ChainElementStatus(
                    ChainStatusFlag.PARTIAL_CHAIN,
                    f"Chain exceeds the maximum depth of {MAX_CHAIN_DEPTH}"
                ))
                break

            issuer, name_matched = self._find_issuer(current, candidates, path)
            if issuer is None:
                subject = current.subject.rfc4514_string()
                if name_matched:
                    statuses.append(ChainElementStatus(
                        ChainStatusFlag.NOT_SIGNATURE_VALID,
                        f"The signature of {subject} does not verify against its issuer"
                    ))
                else:
                    statuses.append(ChainElementStatus(
                        ChainStatusFlag.PARTIAL_CHAIN,
                        f"Unable to find the issuer of {subject}"
                    ))
                break

            path.append(issuer)
            current = issuer

        self.logger.debug(f"Built certificate path with {len(path)} certificates")
        return path

    def _find_issuer(self, cert: x509.Certificate, candidates: Sequence[x509.Certificate],
                     path: Sequence[x509.Certificate]) -> Tuple[Optional[x509.Certificate], bool]:
        name_matched = False
        for candidate in candidates:
            if candidate.subject != cert.issuer or candidate in path:
                continue
            name_matched = True
            try:
                cert.verify_directly_issued_by(candidate)
            except (InvalidSignature, ValueError, TypeError, UnsupportedAlgorithm) as e:
                self.logger.debug(f"Candidate issuer rejected: {e}")
                continue
            return candidate, True
        return None, name_matched

    def _is_trusted(self, cert: x509.Certificate) -> bool:
        # The extra store only helps build the path; trust comes from the roots.
        return cert in self.trusted_roots

    def _check_trust(self, anchor: x509.Certificate, policy: ChainPolicy,
                     statuses: List[ChainElementStatus]):
        # A dead end that is not a root was already reported as a partial chain.
        if self._is_trusted(anchor) or not is_self_signed(anchor):
            return
        if policy.allows(VerificationFlag.ALLOW_UNKNOWN_CERTIFICATE_AUTHORITY):
            return
        statuses.append(ChainElementStatus(
            ChainStatusFlag.UNTRUSTED_ROOT,
            f"{anchor.subject.rfc4514_string()} is not a trusted root certificate"
        ))

    def _check_basic_constraints(self, chain: Sequence[x509.Certificate],
                                 statuses: List[ChainElementStatus]):
        # Intermediate CAs between the leaf and the issuer being checked,
        # not counting self-issued ones (RFC 5280 section 4.2.1.9).
        cas_below = 0
        for index, issuer in enumerate(chain[1:], start=1):
            subject = issuer.subject.rfc4514_string()
            try:
                constraints = issuer.extensions.get_extension_for_class(x509.BasicConstraints).value
            except x509.ExtensionNotFound:
                constraints = None

            if constraints is None or not constraints.ca:
                statuses.append(ChainElementStatus(
                    ChainStatusFlag.INVALID_BASIC_CONSTRAINTS,
                    f"{subject} is not a certificate authority"
                ))
            elif constraints.path_length is not None and cas_below > constraints.path_length:
                statuses.append(ChainElementStatus(
                    ChainStatusFlag.INVALID_BASIC_CONSTRAINTS,
                    f"{subject} allows {constraints.path_length} intermediate CAs below it, "
                    f"the chain has {cas_below}"
                ))

            if issuer.subject != issuer.issuer:
                cas_below += 1

    def _check_issuer_key_usage(self, chain: Sequence[x509.Certificate],
                                statuses: List[ChainElementStatus]):
        for issuer in chain[1:]:
            try:
                key_usage = issuer.extensions.get_extension_for_class(x509.KeyUsage).value
            except x509.ExtensionNotFound:
                continue
            if not key_usage.key_cert_sign:
                statuses.append(ChainElementStatus(
                    ChainStatusFlag.NOT_VALID_FOR_USAGE,
                    f"{issuer.subject.rfc4514_string()} is not allowed to sign certificates"
                ))

    def _check_time_validity(self, chain: Sequence[x509.Certificate], policy: ChainPolicy,
                             moment: datetime, statuses: List[ChainElementStatus]):
        if policy.allows(VerificationFlag.IGNORE_NOT_TIME_VALID):
            return
        for cert in chain:
            subject = cert.subject.rfc4514_string()
            if moment < cert.not_valid_before_utc:
                statuses.append(ChainElementStatus(
                    ChainStatusFlag.NOT_TIME_VALID,
                    f"{subject} is not valid before {cert.not_valid_before_utc.isoformat()}"
                ))
            elif moment > cert.not_valid_after_utc:
                statuses.append(ChainElementStatus(
                    ChainStatusFlag.NOT_TIME_VALID,
                    f"{subject} expired on {cert.not_valid_after_utc.isoformat()}"
                ))

    def _check_application_policy(self, chain: Sequence[x509.Certificate], policy: ChainPolicy,
                                  statuses: List[ChainElementStatus]):
        required = policy.application_policy
        if not required:
            return

        for index, cert in enumerate(chain):
            subject = cert.subject.rfc4514_string()
            try:
                usage = cert.extensions.get_extension_for_class(x509.ExtendedKeyUsage).value
            except x509.ExtensionNotFound:
                # Issuers without the extension do not restrict usage; the leaf must assert it.
                if index == 0:
                    statuses.append(ChainElementStatus(
                        ChainStatusFlag.NOT_VALID_FOR_USAGE,
                        f"{subject} has no extended key usage for {', '.join(required)}"
                    ))
                continue

            usages = {oid.dotted_string for oid in usage}
            if ExtendedKeyUsageOID.ANY_EXTENDED_KEY_USAGE.dotted_string in usages:
                continue
            missing = [oid for oid in required if oid not in usages]
            if missing:
                statuses.append(ChainElementStatus(
                    ChainStatusFlag.NOT_VALID_FOR_USAGE,
                    f"{subject} is not valid for {', '.join(missing)}"
                ))

    def _check_revocation(self, chain: Sequence[x509.Certificate], policy: ChainPolicy,
                          moment: datetime, statuses: List[ChainElementStatus]):
        mode = policy.revocation_mode
        if mode is RevocationMode.NO_CHECK:
            return

        for index, cert, issuer in self._revocation_targets(chain, policy.revocation_flag):
            subject = cert.subject.rfc4514_string()
            crl, fetch_failed = self._find_crl(cert, issuer, mode, moment)

            if crl is None:
                if mode is RevocationMode.ONLINE:
                    self.logger.debug(f"Revocation status of {subject} unknown, continuing")
                    continue
                if index == 0 and policy.allows(VerificationFlag.IGNORE_END_REVOCATION_UNKNOWN):
                    continue
                statuses.append(ChainElementStatus(
                    ChainStatusFlag.REVOCATION_STATUS_UNKNOWN,
                    f"The revocation status of {subject} could not be determined"
                ))
                if fetch_failed:
                    statuses.append(ChainElementStatus(
                        ChainStatusFlag.OFFLINE_REVOCATION,
                        f"The revocation server for {subject} could not be reached"
                    ))
                continue

            revoked = crl.get_revoked_certificate_by_serial_number(cert.serial_number)
            if revoked is not None:
                statuses.append(ChainElementStatus(
                    ChainStatusFlag.REVOKED,
                    f"{subject} was revoked on {revoked.revocation_date_utc.isoformat()}"
                ))

    def _revocation_targets(self, chain: Sequence[x509.Certificate], flag: RevocationFlag):
        """Yield (index, certificate, issuer) for each element whose status is checked."""
        for index, cert in enumerate(chain):
            if flag is RevocationFlag.END_CERTIFICATE_ONLY and index > 0:
                break

            if index + 1 < len(chain):
                issuer = chain[index + 1]
            elif is_self_signed(cert):
                if flag is RevocationFlag.EXCLUDE_ROOT and index > 0:
                    continue
                issuer = cert
            else:
                continue

            yield index, cert, issuer

    def _find_crl(self, cert: x509.Certificate, issuer: x509.Certificate, mode: RevocationMode,
                  moment: datetime) -> Tuple[Optional[x509.CertificateRevocationList], bool]:
        for crl in self.crls:
            if self._crl_applies(crl, issuer, moment):
                return crl, False

        if mode is RevocationMode.OFFLINE or self.crl_fetcher is None:
            return None, False

        fetch_failed = False
        for url in crl_distribution_points(cert):
            try:
                crl = self.crl_fetcher.fetch(url)
            except (requests.RequestException, ValueError) as e:
                self.logger.warning(f"Failed to fetch CRL from {url}: {e}")
                fetch_failed = True
                continue
            if self._crl_applies(crl, issuer, moment):
                return crl, False
        return None, fetch_failed

    def _crl_applies(self, crl: x509.CertificateRevocationList, issuer: x509.Certificate,
                     moment: datetime) -> bool:
        if crl.issuer != issuer.subject:
            return False
        if crl.last_update_utc > moment:
            return False
        next_update = crl.next_update_utc
        if next_update is not None and next_update < moment:
            return False
        try:
            return crl.is_signature_valid(issuer.public_key())
        except (TypeError, UnsupportedAlgorithm):
            return False


def crl_distribution_points(cert: x509.Certificate) -> List[str]:
    """Return the HTTP(S) CRL distribution point URLs of a certificate."""
    try:
        points = cert.extensions.get_extension_for_class(x509.CRLDistributionPoints).value
    except x509.ExtensionNotFound:
        return []

    urls = []
    for point in points:
        for name in point.full_name or []:
            if isinstance(name, x509.UniformResourceIdentifier) and name.value.lower().startswith(('http://', 'https://')):
                urls.append(name.value)
    return urls


def load_crl(data: bytes) -> x509.CertificateRevocationList:
    """Parse a PEM or DER encoded CRL."""
    if b"-----BEGIN" in data:
        return x509.load_pem_x509_crl(data)
    return x509.load_der_x509_crl(data)


def load_certificates(path: str) -> List[x509.Certificate]:
    """Load certificates from a PEM/DER file or from every certificate file in a directory."""
    certificates = []
    for file_path in _files_at(path, _CERTIFICATE_SUFFIXES):
        with open(file_path, 'rb') as f:
            data = f.read()
        if b"-----BEGIN CERTIFICATE-----" in data:
            certificates.extend(x509.load_pem_x509_certificates(data))
        else:
            certificates.append(x509.load_der_x509_certificate(data))
    return certificates


def load_crls(path: str) -> List[x509.CertificateRevocationList]:
    """Load CRLs from a file or from every CRL file in a directory."""
    crls = []
    for file_path in _files_at(path, _CRL_SUFFIXES):
        with open(file_path, 'rb') as f:
            crls.append(load_crl(f.read()))
    return crls


def _files_at(path: str, suffixes: Tuple[str, ...]) -> List[str]:
    if not os.path.exists(path):
        raise FileNotFoundError(f"Certificate path not found: {path}")

    if not os.path.isdir(path):
        return [path]

    return [
        os.path.join(path, filename)
        for filename in sorted(os.listdir(path))
        if filename.lower().endswith(suffixes)
    ]
