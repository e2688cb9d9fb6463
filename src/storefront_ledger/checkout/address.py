"""Shipping address resolution and validation."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Dict, Mapping, Optional

from ..errors import ValidationError

PINCODE_LENGTH = 6


@dataclass(frozen=True)
class Address:
    address: str
    city: str
    state: str
    pincode: str
    phone: str = ""

    def to_dict(self) -> Dict[str, str]:
        return asdict(self)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "Address":
        return cls(
            address=str(data.get("address") or "").strip(),
            city=str(data.get("city") or "").strip(),
            state=str(data.get("state") or "").strip(),
            pincode=str(data.get("pincode") or "").strip(),
            phone=str(data.get("phone") or "").strip(),
        )


def registered_address(user: Mapping[str, Any]) -> Optional[Address]:
    """Build the shipping address from the user's profile, if one is on file.

    The profile address is either a plain line or a mapping of
    ``street, locality, city, state, pincode``; city, state and pincode fall back
    to top-level profile fields.
    """
    profile = user.get("address")
    if not profile:
        return None
    if isinstance(profile, str):
        line, fields = profile, {}
    else:
        fields = profile
        line = ", ".join(str(fields[key]) for key in ("street", "locality") if fields.get(key))
    return Address(
        address=line.strip(),
        city=str(fields.get("city") or user.get("city") or "").strip(),
        state=str(fields.get("state") or user.get("state") or "").strip(),
        pincode=str(fields.get("pincode") or user.get("pincode") or "").strip(),
        phone=str(user.get("phone") or "").strip(),
    )


def validate_address(address: Address, registered: bool = False) -> Address:
    """
    Check that an address is complete and its pincode is exactly 6 digits.

    The registered-profile path and the manual path share this check; only
    the message differs, pointing the shopper at the right place to fix it.

    Raises:
        ValidationError: On a missing field or malformed pincode
    """
    if not (address.address and address.city and address.state and address.pincode):
        if registered:
            raise ValidationError("Please complete your registered address in profile settings")
        raise ValidationError("Please fill in all address fields")

    if len(address.pincode) != PINCODE_LENGTH or not address.pincode.isdigit():
        if registered:
            raise ValidationError("Please enter a valid 6-digit pincode in your profile")
        raise ValidationError("Please enter a valid 6-digit pincode")

    return address
