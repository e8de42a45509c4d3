"""Exception classes for DKIM key resolution and circuit input assembly."""

from typing import List, Optional


class ZKEmailInputError(Exception):
    """Base class for every terminal error raised by this package."""
    code = "EINPUT"


class DKIMResolutionError(ZKEmailInputError):
    code = "ENODATA"

    def __init__(self, message: str, selector: Optional[str] = None, domain: Optional[str] = None):
        super().__init__(message)
        self.selector = selector
        self.domain = domain


class InvalidRecordName(DKIMResolutionError):
    code = "EINVAL"


class ResolutionExhausted(DKIMResolutionError):
    """Neither DoH provider nor the archive had a key for selector/domain."""

    def __init__(self, message: str, selector: str, domain: str, attempts: Optional[List] = None):
        super().__init__(message, selector=selector, domain=domain)
        self.attempts = attempts or []


class MalformedRecord(DKIMResolutionError):
    """A TXT record was found but carries no usable p= tag."""

    def __init__(self, message: str, record: str, selector: Optional[str] = None, domain: Optional[str] = None):
        super().__init__(message, selector=selector, domain=domain)
        self.record = record


class SourceUnavailable(DKIMResolutionError):
    """The archive could not be queried; there is no further fallback."""

    def __init__(self, message: str, selector: Optional[str] = None, domain: Optional[str] = None,
                 status_code: Optional[int] = None):
        super().__init__(message, selector=selector, domain=domain)
        self.status_code = status_code


class CircuitInputError(ZKEmailInputError):
    code = "EINPUT"


class MissingKeyword(CircuitInputError):
    code = "EKEYWORD"

    def __init__(self, message: str, keyword: str):
        super().__init__(message)
        self.keyword = keyword


class MalformedHeaders(CircuitInputError):
    code = "EHEADER"

    def __init__(self, message: str, field: str):
        super().__init__(message)
        self.field = field


class InvalidAddress(CircuitInputError):
    code = "EADDRESS"

    def __init__(self, message: str, address: str):
        super().__init__(message)
        self.address = address


class GeneratorError(CircuitInputError):
    """The email-verification-input generator failed or returned a bad shape."""
    code = "EGENERATOR"
