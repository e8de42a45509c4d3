"""
Fake email-verification-input generator output for circuit input tests.
"""

DEFAULT_HEADERS = [
    'DKIM-Signature: v=1; a=rsa-sha256; d=example.com; s=sel;',
    'From: Alice <alice@example.com>',
    'To: Bob <bob@example.com>',
    'Subject: Payment',
]


def body_bytes(text):
    """Encode text the way the generator does: one numeric string per byte."""
    return [str(b) for b in text.encode('utf-8')]


def generator_output(body='Hello keyword1 and keyword2', headers=None, pubkey=None):
    return {
        'emailHeader': list(headers if headers is not None else DEFAULT_HEADERS),
        'emailHeaderLength': '640',
        'emailBody': body_bytes(body),
        'emailBodyLength': str(len(body.encode('utf-8'))),
        'pubkey': list(pubkey if pubkey is not None else ['dkim-key', '@example.com']),
        'signature': ['1234', '5678'],
        'precomputedSHA': ['0'] * 32,
        'bodyHashIndex': '123',
    }


def make_generator(output, calls=None):
    """Return a generator callable that records its arguments and returns output."""
    calls = [] if calls is None else calls

    def generator(email, sha_precompute_selector=None):
        calls.append((email, sha_precompute_selector))
        return output
    generator.calls = calls
    return generator
