from mako.template import Template

# Client renditions of lockstep.rx.validators
VALIDATORS_TEMPLATE = Template(
	"""// Generated by lockstep. Do not edit.
const DIGITS = /^\\d+$/;
const EMAIL = /^[^\\s@]+@[^\\s@]+\\.[^\\s@]+$/;

export function detectCardType(digits) {
  if (digits.startsWith("4")) return "visa";
  if (digits.startsWith("5")) return "mastercard";
  if (digits.startsWith("34") || digits.startsWith("37")) return "amex";
  if (digits.startsWith("6011")) return "discover";
  return "unknown";
}

export function cardLength(cardType) {
  return cardType === "amex" ? 15 : 16;
}

export function luhn(digits) {
  let total = 0;
  for (let i = 0; i < digits.length; i++) {
    let d = Number(digits[digits.length - 1 - i]);
    if (i % 2 === 1) {
      d *= 2;
      if (d > 9) d -= 9;
    }
    total += d;
  }
  return total % 10 === 0;
}

export function validCardNumber(digits) {
  if (typeof digits !== "string" || !DIGITS.test(digits)) return false;
  return digits.length === cardLength(detectCardType(digits)) && luhn(digits);
}

export function validEmail(value) {
  return typeof value === "string" && EMAIL.test(value);
}
"""
)
