"""Command line access to DKIM key resolution and circuit input assembly.

Usage:
  python cli.py dkim-key google example.com
  python cli.py dkim-key google example.com --json
  python cli.py circuit-inputs sample.eml 0xabc... "invoice,paid" \\
      --generator-output generated.json --output inputs.json
"""

import sys
import json
import logging
import argparse
from typing import List, Optional

from circuit_inputs import generate_verifier_circuit_inputs, write_inputs_json
from dkim_resolver import DKIMKeyResolver, ResolverConfig
from email_generators import PrecomputedInputsGenerator, load_generator
from errors import ZKEmailInputError


def parse_keywords(raw: str) -> List[str]:
    """Split a comma-separated keyword list, trimming each entry."""
    return [k.strip() for k in raw.split(",")]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Resolve DKIM keys and assemble keyword circuit inputs.")
    parser.add_argument('-v', '--verbose', action='store_true', default=False,
        help='turn verbose mode on')
    sub = parser.add_subparsers(dest='command', required=True)

    key = sub.add_parser('dkim-key', help='Resolve the DKIM public key for a selector and domain')
    key.add_argument('selector')
    key.add_argument('domain')
    key.add_argument('--timeout', type=float, default=None,
        help='Per-request timeout in seconds')
    key.add_argument('--json', action='store_true', default=False,
        help='Print the whole record as JSON')

    inputs = sub.add_parser('circuit-inputs', help='Assemble verifier circuit inputs for an email')
    inputs.add_argument('email_file', help='Raw .eml file')
    inputs.add_argument('address', help='Hex address of the prover')
    inputs.add_argument('keywords', help='Comma-separated keywords the body must contain')
    source = inputs.add_mutually_exclusive_group(required=True)
    source.add_argument('--generator-output', metavar='FILE',
        help='JSON produced by the email verifier input generator')
    source.add_argument('--generator', metavar='MODULE:ATTR',
        help='Import path of a generator callable')
    inputs.add_argument('-o', '--output', default='inputs.json',
        help='Where to write the inputs JSON: default=inputs.json')
    return parser


def run_dkim_key(args) -> int:
    config = ResolverConfig.from_env()
    if args.timeout is not None:
        config.timeout = args.timeout
    record = DKIMKeyResolver(config).resolve(args.selector, args.domain)
    if args.json:
        print(json.dumps(record.to_dict(), indent=2))
    else:
        print(record.public_key_base64)
    return 0


def run_circuit_inputs(args) -> int:
    if args.generator_output:
        generator = PrecomputedInputsGenerator(args.generator_output)
    else:
        generator = load_generator(args.generator)

    with open(args.email_file, 'rb') as f:
        email = f.read()

    inputs = generate_verifier_circuit_inputs(email, args.address, parse_keywords(args.keywords), generator)
    write_inputs_json(inputs, args.output)
    print(f"keywordIndex={inputs.keyword_index} fromDomainMatch={inputs.from_domain_match} "
          f"toDomainMatch={inputs.to_domain_match}")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING)

    try:
        if args.command == 'dkim-key':
            return run_dkim_key(args)
        return run_circuit_inputs(args)
    except ZKEmailInputError as e:
        logging.error(f"{type(e).__name__}: {e}")
        return 1
    except OSError as e:
        logging.error(f"I/O error: {e}")
        return 1


if __name__ == '__main__':
    sys.exit(main())
