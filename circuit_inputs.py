"""Verifier circuit input assembly.

Takes the output of the email-verification-input generator for a raw email
and adds what the keyword circuit needs on top of it:

- byte offsets of every required keyword in the email body,
- whether the From/To domains equal the DKIM domain,
- the decimal form of the prover's hex address.

Offsets are computed against the body decoded one byte per character, so
they agree with the byte positions the circuit sees.
"""

import json
import re
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Sequence, Tuple, Union

from errors import GeneratorError, InvalidAddress, MalformedHeaders, MissingKeyword

STRING_PRESELECTOR = "email contains keywords @"

REQUIRED_GENERATOR_FIELDS = ('emailHeader', 'pubkey', 'signature', 'emailBody')

_FROM_RE = re.compile(r"From:\s*[^<]*<([^>]+)>", re.IGNORECASE)
_TO_RE = re.compile(r"To:\s*[^<]*<([^>]+)>", re.IGNORECASE)
_DOMAIN_RE = re.compile(r"@([a-zA-Z0-9.-]+)")
_HEX_RE = re.compile(r"^[0-9a-fA-F]+$")


@dataclass(frozen=True)
class KeywordMatch:
    keyword: str
    byte_index: int


@dataclass(frozen=True)
class VerifierCircuitInputs:
    keyword_index: str
    from_domain_match: bool
    to_domain_match: bool
    address: str
    passthrough: Dict[str, Any] = field(default_factory=dict)
    keyword_matches: Tuple[KeywordMatch, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        """Return the record in the shape the circuit consumes."""
        result = dict(self.passthrough)
        result.update({
            'keywordIndex': self.keyword_index,
            'fromDomainMatch': self.from_domain_match,
            'toDomainMatch': self.to_domain_match,
            'address': self.address,
        })
        return result


def decode_body(body: Sequence[Union[int, str]]) -> str:
    """Decode a body byte sequence one code point per byte."""
    chars = []
    for position, item in enumerate(body):
        if isinstance(item, int) and not isinstance(item, bool):
            value = item
        elif isinstance(item, str) and item.isascii() and item.isdigit():
            value = int(item)
        else:
            raise GeneratorError(f"Email body element {position} is not a byte: {item!r}")
        if not 0 <= value <= 255:
            raise GeneratorError(f"Email body element {position} is out of byte range: {value}")
        chars.append(chr(value))
    return "".join(chars)


def _keyword_as_bytes(keyword: str) -> str:
    # Match the UTF-8 bytes of the keyword against the byte-decoded body.
    return keyword.encode("utf-8").decode("latin-1")


def find_keyword_indices(body_text: str, keywords: Sequence[str]) -> List[KeywordMatch]:
    """Return the leftmost byte offset of every keyword, in input order."""
    for keyword in keywords:
        if not keyword:
            raise MissingKeyword("Required keyword must not be empty", keyword=keyword)
        if _keyword_as_bytes(keyword) not in body_text:
            raise MissingKeyword(f"Required keyword not found in email body: {keyword}", keyword=keyword)

    matches = []
    for keyword in keywords:
        index = body_text.find(_keyword_as_bytes(keyword))
        if index == -1:
            raise MissingKeyword(f"Keyword not found: {keyword}", keyword=keyword)
        matches.append(KeywordMatch(keyword=keyword, byte_index=index))
    return matches


def extract_header_addresses(header_lines: Sequence[str]) -> Tuple[str, str]:
    """Return the first From and To addresses written as '<addr>'."""
    headers = "\n".join(header_lines)
    from_match = _FROM_RE.search(headers)
    to_match = _TO_RE.search(headers)

    if not from_match or not to_match:
        missing = "From" if not from_match else "To"
        raise MalformedHeaders("From or To fields are missing in email headers.", field=missing)

    return from_match.group(1), to_match.group(1)


def extract_domain(value: str, field_name: str = "address") -> str:
    """Return the domain following the first '@' in value."""
    domain_match = _DOMAIN_RE.search(value)
    if not domain_match:
        raise MalformedHeaders(f"Invalid email address in {field_name}: {value}", field=field_name)
    return domain_match.group(1)


def hex_address_to_decimal(address: str) -> str:
    """Interpret a hex address big-endian and return it as a decimal string."""
    if not isinstance(address, str):
        raise InvalidAddress(f"Address must be a hex string, got {type(address).__name__}",
                             address=str(address))
    payload = address.strip()
    if payload[:2] in ("0x", "0X"):
        payload = payload[2:]

    if not payload or not _HEX_RE.match(payload):
        raise InvalidAddress(f"Invalid hex address: {address!r}", address=address)
    if len(payload) % 2:
        payload = "0" + payload

    return str(int.from_bytes(bytes.fromhex(payload), "big"))


def _validate_generator_output(output: Any) -> Dict[str, Any]:
    if not isinstance(output, dict):
        raise GeneratorError(f"Email input generator returned {type(output).__name__}, expected an object")
    missing = [name for name in REQUIRED_GENERATOR_FIELDS if output.get(name) is None]
    if missing:
        raise GeneratorError(f"Email input generator output is missing: {', '.join(missing)}")
    return output


def generate_verifier_circuit_inputs(
    email: Union[str, bytes],
    address: str,
    keywords: Sequence[str],
    generator: Callable[..., Dict[str, Any]],
) -> VerifierCircuitInputs:
    """Assemble the keyword circuit inputs for one email.

    generator is the external email-verification-input generator; it is
    called with the raw email and the SHA precompute selector.
    """
    verifier_inputs = _validate_generator_output(
        generator(email, sha_precompute_selector=STRING_PRESELECTOR)
    )

    body_text = decode_body(verifier_inputs['emailBody'])
    matches = find_keyword_indices(body_text, keywords)

    from_address, to_address = extract_header_addresses(verifier_inputs['emailHeader'])
    from_domain = extract_domain(from_address, "From")
    to_domain = extract_domain(to_address, "To")
    # The DKIM domain is read from the joined pubkey field, as the circuit
    # inputs have always been produced.
    dkim_domain = extract_domain("".join(str(part) for part in verifier_inputs['pubkey']), "pubkey")

    from_domain_match = from_domain == dkim_domain
    to_domain_match = to_domain == dkim_domain
    logging.debug(f"Domains from={from_domain} to={to_domain} dkim={dkim_domain}")

    decimal_address = hex_address_to_decimal(address)

    return VerifierCircuitInputs(
        keyword_index=",".join(str(m.byte_index) for m in matches),
        from_domain_match=from_domain_match,
        to_domain_match=to_domain_match,
        address=decimal_address,
        passthrough=dict(verifier_inputs),
        keyword_matches=tuple(matches),
    )


def write_inputs_json(inputs: VerifierCircuitInputs, path: str) -> None:
    """Write the assembled inputs to path as pretty-printed JSON."""
    with open(path, "w", encoding="utf-8") as f:
        json.dump(inputs.to_dict(), f, indent=2)
        f.write("\n")
    logging.info(f"Wrote verifier circuit inputs to {path}")
