from datetime import datetime
from typing import List, Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, field_validator

from echo_server import der

# X.520 attribute types used in the certificate Name
OID_COUNTRY_NAME = "2.5.4.6"
OID_STATE_OR_PROVINCE_NAME = "2.5.4.8"
OID_LOCALITY_NAME = "2.5.4.7"
OID_ORGANIZATION_NAME = "2.5.4.10"
OID_COMMON_NAME = "2.5.4.3"


class CertificateProfile(BaseModel):
    """Subject, validity period and key parameters for a generated certificate."""
    model_config = ConfigDict(frozen=True)

    country: str = "GB"
    state: str = "London"
    locality: str = "London"
    organization: str = "Mendhak"
    common_name: str = "my.example.com"
    validity_days: int = 365
    key_size: int = 2048
    public_exponent: int = 65537

    @field_validator("country", "state", "locality", "organization", "common_name")
    @classmethod
    def _printable(cls, value: str) -> str:
        # Raises DerEncodingError (a ValueError) for characters outside
        # the PrintableString alphabet.
        der.printable_string(value)
        return value

    @field_validator("validity_days")
    @classmethod
    def _positive_days(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("validity_days must be positive")
        return value

    @field_validator("key_size")
    @classmethod
    def _key_size(cls, value: int) -> int:
        if value < 1024:
            raise ValueError("key_size must be at least 1024 bits")
        return value

    def name_attributes(self) -> List[Tuple[str, str]]:
        """(OID, value) pairs in encoding order: C, ST, L, O, CN."""
        return [
            (OID_COUNTRY_NAME, self.country),
            (OID_STATE_OR_PROVINCE_NAME, self.state),
            (OID_LOCALITY_NAME, self.locality),
            (OID_ORGANIZATION_NAME, self.organization),
            (OID_COMMON_NAME, self.common_name),
        ]


class SelfSignedCertificate(BaseModel):
    model_config = ConfigDict(frozen=True)

    key_pem: bytes
    cert_pem: str
    cert_der: bytes
    serial_number: bytes
    not_before: datetime
    not_after: datetime


class HttpsCredentials(BaseModel):
    """PEM key and certificate handed to the HTTPS listener."""
    model_config = ConfigDict(frozen=True)

    key: bytes
    cert: bytes
    source: Literal["configured", "default", "generated"]
    key_path: Optional[str] = None
    cert_path: Optional[str] = None
