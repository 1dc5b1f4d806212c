"""Validators shared by the server evaluator and the client validator module.

The client module (`validators.js`, written next to the artifacts) implements
the same checks under camelCase names.
"""

import re
from typing import Any

_DIGITS_RE = re.compile(r"^\d+$", re.ASCII)
_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def detect_card_type(digits: str) -> str:
	if digits.startswith("4"):
		return "visa"
	if digits.startswith("5"):
		return "mastercard"
	if digits.startswith(("34", "37")):
		return "amex"
	if digits.startswith("6011"):
		return "discover"
	return "unknown"


def card_length(card_type: str) -> int:
	return 15 if card_type == "amex" else 16


def luhn(digits: str) -> bool:
	"""Mod 10 checksum."""
	total = 0
	for i, ch in enumerate(reversed(digits)):
		d = int(ch)
		if i % 2 == 1:
			d *= 2
			if d > 9:
				d -= 9
		total += d
	return total % 10 == 0


def valid_card_number(digits: Any) -> bool:
	"""Digits only, expected length for the detected card type, Luhn checksum."""
	if not isinstance(digits, str) or not _DIGITS_RE.match(digits):
		return False
	return len(digits) == card_length(detect_card_type(digits)) and luhn(digits)


def valid_email(value: Any) -> bool:
	if not isinstance(value, str):
		return False
	return _EMAIL_RE.match(value) is not None
