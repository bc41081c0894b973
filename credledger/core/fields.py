# credledger/core/fields.py
import secrets
import string
from dataclasses import dataclass, astuple
from datetime import datetime, timezone
from typing import Dict, Optional, Tuple

from credledger.core.errors import InvalidInput

MIN_GRADUATION_YEAR = 1950
MAX_YEARS_AHEAD = 5

CERT_ID_PREFIX = "CERT"
_CERT_ID_ALPHABET = string.digits + string.ascii_uppercase
_CERT_ID_SUFFIX_LEN = 9


@dataclass(frozen=True)
class CredentialFields:
    """
    Plaintext of one credential. Only its hash ever reaches the ledger.
    Field order here is the hashing order.
    """
    name: str
    roll_number: str
    degree: str
    branch: str
    graduation_year: str
    cert_id: str

    def as_tuple(self) -> Tuple[str, ...]:
        return astuple(self)

    def problems(self, current_year: Optional[int] = None) -> Dict[str, str]:
        """Field name -> message for every field that fails validation."""
        found = {}
        labels = {
            "name": "Name is required",
            "roll_number": "Roll number is required",
            "degree": "Degree is required",
            "branch": "Branch is required",
            "graduation_year": "Graduation year is required",
            "cert_id": "Certificate ID is required",
        }
        for key, message in labels.items():
            if not str(getattr(self, key)).strip():
                found[key] = message

        if "graduation_year" not in found:
            year_now = current_year or datetime.now(timezone.utc).year
            try:
                year = int(self.graduation_year)
            except ValueError:
                found["graduation_year"] = "Graduation year must be a number"
            else:
                if year < MIN_GRADUATION_YEAR or year > year_now + MAX_YEARS_AHEAD:
                    found["graduation_year"] = "Please enter a valid year"
        return found

    def validate(self, current_year: Optional[int] = None) -> "CredentialFields":
        found = self.problems(current_year)
        if found:
            detail = "; ".join(f"{k}: {v}" for k, v in found.items())
            raise InvalidInput(f"Invalid credential fields ({detail})")
        return self


def generate_cert_id(year: Optional[int] = None) -> str:
    """Fresh id in the CERT-<year>-<9 base36 chars> format."""
    year = year or datetime.now(timezone.utc).year
    suffix = "".join(secrets.choice(_CERT_ID_ALPHABET) for _ in range(_CERT_ID_SUFFIX_LEN))
    return f"{CERT_ID_PREFIX}-{year}-{suffix}"
