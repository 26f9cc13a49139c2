"""
Biller reference number rules.

Each biller assigns references in its own format. Rules are plain values
so the settlement matcher and payment capture can be handed whichever one
applies to the integration at hand.
"""

import re
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from .errors import MalformedReference


_SEPARATORS = re.compile(r"[\s-]")
_DIGITS = re.compile(r"[0-9]+")


def clean_reference(reference: str) -> str:
    """Strip spaces and hyphens the cashier may have typed."""
    return _SEPARATORS.sub("", reference)


def luhn_valid(reference: str) -> bool:
    """Luhn mod-10 check over an all-digit reference."""
    if not _DIGITS.fullmatch(reference):
        return False
    total = 0
    for position, char in enumerate(reversed(reference)):
        digit = int(char)
        if position % 2 == 1:
            digit *= 2
            if digit > 9:
                digit -= 9
        total += digit
    return total % 10 == 0


@dataclass(frozen=True)
class ReferenceRule:
    """Format rule for one biller's references."""
    name: str
    exact_length: int
    numeric: bool = True
    checksum: Optional[Callable[[str], bool]] = None

    def __post_init__(self):
        if self.exact_length <= 0:
            raise ValueError("exact_length must be > 0")

    def validate(self, reference: str) -> str:
        """Return the cleaned reference if it satisfies the rule.

        Raises:
            MalformedReference: If length, digits or checksum fail
        """
        cleaned = clean_reference(reference)
        if len(cleaned) != self.exact_length:
            raise MalformedReference(
                f"{self.name} reference must be exactly {self.exact_length} "
                f"characters, got {len(cleaned)}"
            )
        if self.numeric and not _DIGITS.fullmatch(cleaned):
            raise MalformedReference(f"{self.name} reference must be numeric digits only")
        if self.checksum is not None and not self.checksum(cleaned):
            raise MalformedReference(
                f"{self.name} reference checksum validation failed. "
                "Please verify the reference number."
            )
        return cleaned

    def is_valid(self, reference: str) -> bool:
        try:
            self.validate(reference)
        except MalformedReference:
            return False
        return True


def settlement_file_rule(length: int = 30, name: str = "DIESTEL") -> ReferenceRule:
    """Rule for references arriving in the settlement feed: length and digits only."""
    return ReferenceRule(name=name, exact_length=length)


SERVICE_REFERENCE_RULES: Dict[str, ReferenceRule] = {
    "CFE": ReferenceRule("CFE", 12),
    "TELMEX": ReferenceRule("TELMEX", 10),
    "GNM": ReferenceRule("GNM", 16),
    "CABLEVISION": ReferenceRule("CABLEVISION", 7),
    "TELCEL": ReferenceRule("TELCEL", 10),
    "DIESTEL": ReferenceRule("DIESTEL", 30, checksum=luhn_valid),
}


def base_service_code(service_code: str) -> str:
    """Resolve suffixed codes like TELMEX-001 to TELMEX."""
    return service_code.split("-")[0].strip().upper()


def validate_reference(
    service_code: str,
    reference: str,
    rules: Optional[Dict[str, ReferenceRule]] = None,
) -> str:
    """Validate a payment reference against its service's rule.

    Returns:
        The cleaned reference

    Raises:
        MalformedReference: If no rule exists or the reference fails it
    """
    rules = SERVICE_REFERENCE_RULES if rules is None else rules
    code = base_service_code(service_code)
    rule = rules.get(code)
    if rule is None:
        raise MalformedReference(f"No validation rules defined for service: {code}")
    return rule.validate(reference)
