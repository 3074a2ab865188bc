"""
Parsed, immutable view of a client certificate.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.x509.oid import NameOID, ObjectIdentifier


UPN_OID = ObjectIdentifier("1.3.6.1.4.1.311.20.2.3")

# Universal string tags accepted inside an otherName value
_DER_STRING_TAGS = {0x0C, 0x13, 0x16, 0x1E}


@dataclass(frozen=True)
class ClientCertificate:
    """A client certificate as presented on the connection."""
    raw_data: bytes
    certificate: x509.Certificate

    @classmethod
    def from_der(cls, raw_data: bytes) -> "ClientCertificate":
        """Parse DER bytes. Raises ValueError when the bytes are not a certificate."""
        raw_data = bytes(raw_data)
        return cls(raw_data=raw_data, certificate=x509.load_der_x509_certificate(raw_data))

    @property
    def subject(self) -> str:
        return self.certificate.subject.rfc4514_string()

    @property
    def issuer(self) -> str:
        return self.certificate.issuer.rfc4514_string()

    @property
    def serial_number(self) -> str:
        serial = f"{self.certificate.serial_number:X}"
        if len(serial) % 2:
            serial = "0" + serial
        return serial

    @property
    def thumbprint(self) -> str:
        return self.certificate.fingerprint(hashes.SHA1()).hex().upper()

    @property
    def sha256_thumbprint(self) -> str:
        return self.certificate.fingerprint(hashes.SHA256()).hex().upper()

    @property
    def not_before(self) -> datetime:
        return self.certificate.not_valid_before_utc

    @property
    def not_after(self) -> datetime:
        return self.certificate.not_valid_after_utc

    @property
    def raw_data_string(self) -> str:
        """Hex encoding of the DER bytes, reversible with bytes.fromhex."""
        return self.raw_data.hex().upper()

    @property
    def dns_name(self) -> Optional[str]:
        return _first(self._san_values(x509.DNSName)) or self._subject_attribute(NameOID.COMMON_NAME)

    @property
    def simple_name(self) -> Optional[str]:
        for oid in (NameOID.COMMON_NAME, NameOID.ORGANIZATIONAL_UNIT_NAME,
                    NameOID.ORGANIZATION_NAME, NameOID.EMAIL_ADDRESS):
            value = self._subject_attribute(oid)
            if value:
                return value
        return (_first(self._san_values(x509.RFC822Name))
                or _first(self._san_values(x509.DNSName))
                or _first(self._san_values(x509.UniformResourceIdentifier)))

    @property
    def email(self) -> Optional[str]:
        return (self._subject_attribute(NameOID.EMAIL_ADDRESS)
                or _first(self._san_values(x509.RFC822Name)))

    @property
    def upn(self) -> Optional[str]:
        for other_name in self._san_values(x509.OtherName):
            if other_name.type_id == UPN_OID:
                value = _decode_der_string(other_name.value)
                if value:
                    return value
        return None

    @property
    def uri(self) -> Optional[str]:
        return _first(self._san_values(x509.UniformResourceIdentifier))

    def _subject_attribute(self, oid: ObjectIdentifier) -> Optional[str]:
        attributes = self.certificate.subject.get_attributes_for_oid(oid)
        if not attributes:
            return None
        value = attributes[0].value
        return value if isinstance(value, str) else None

    def _san_values(self, general_name_type) -> List:
        try:
            extension = self.certificate.extensions.get_extension_for_class(
                x509.SubjectAlternativeName
            )
        except x509.ExtensionNotFound:
            return []
        return extension.value.get_values_for_type(general_name_type)


def _first(values: List) -> Optional[str]:
    return values[0] if values else None


def _decode_der_string(data: bytes) -> Optional[str]:
    """Decode a DER string value, unwrapping one explicit [0] tag if present."""
    if len(data) >= 2 and data[0] == 0xA0:
        data = _der_content(data)
        if data is None:
            return None
    if len(data) < 2 or data[0] not in _DER_STRING_TAGS:
        return None
    content = _der_content(data)
    if content is None:
        return None
    if data[0] == 0x1E:
        return content.decode("utf-16-be", errors="replace")
    return content.decode("utf-8", errors="replace")


def _der_content(data: bytes) -> Optional[bytes]:
    length = data[1]
    offset = 2
    if length & 0x80:
        count = length & 0x7F
        if count == 0 or len(data) < 2 + count:
            return None
        length = int.from_bytes(data[2:2 + count], "big")
        offset = 2 + count
    if len(data) < offset + length:
        return None
    return data[offset:offset + length]
