import os
import re
import enum
import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple

import requests
import dns.name
import dns.exception
import idna

from errors import InvalidRecordName, MalformedRecord, ResolutionExhausted, SourceUnavailable

GOOGLE_DOH_URL = "https://dns.google/resolve"
CLOUDFLARE_DOH_URL = "https://cloudflare-dns.com/dns-query"
ZKEMAIL_ARCHIVE_URL = "https://archive.prove.email/api/key"

TXT_RECORD_TYPE = 16
DEFAULT_TIMEOUT = 5.0

OUTCOME_FOUND = "found"
OUTCOME_EMPTY = "empty"
OUTCOME_FAILED = "failed"

_TXT_CHUNK_RE = re.compile(r'"([^"]*)"')


class KeySource(enum.Enum):
    DOH_PRIMARY = "doh_primary"
    DOH_SECONDARY = "doh_secondary"
    ARCHIVE = "archive"


@dataclass(frozen=True)
class DKIMKeyRecord:
    """Result of a successful resolution. Never cached between calls."""
    selector: str
    domain: str
    public_key_base64: str
    source: KeySource
    raw_record: str = ""

    def to_dict(self) -> Dict[str, str]:
        return {
            'selector': self.selector,
            'domain': self.domain,
            'publicKey': self.public_key_base64,
            'source': self.source.value,
        }


@dataclass(frozen=True)
class SourceOutcome:
    """Tagged result of one source attempt.

    'empty' means the source answered without a record, 'failed' means the
    source could not be queried. Both move the chain to the next source.
    """
    source: KeySource
    status: str
    value: Optional[str] = None
    detail: str = ""

    @property
    def found(self) -> bool:
        return self.status == OUTCOME_FOUND


@dataclass
class ResolverConfig:
    primary_doh_url: str = GOOGLE_DOH_URL
    secondary_doh_url: str = CLOUDFLARE_DOH_URL
    archive_url: str = ZKEMAIL_ARCHIVE_URL
    timeout: float = DEFAULT_TIMEOUT
    extra_headers: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_env(cls) -> "ResolverConfig":
        """Build a config from DKIM_* environment variables."""
        timeout = os.environ.get("DKIM_HTTP_TIMEOUT")
        return cls(
            primary_doh_url=os.environ.get("DKIM_PRIMARY_DOH_URL", GOOGLE_DOH_URL),
            secondary_doh_url=os.environ.get("DKIM_SECONDARY_DOH_URL", CLOUDFLARE_DOH_URL),
            archive_url=os.environ.get("DKIM_ARCHIVE_URL", ZKEMAIL_ARCHIVE_URL),
            timeout=float(timeout) if timeout else DEFAULT_TIMEOUT,
        )


def domain_to_ascii(domain: str) -> str:
    """Convert Unicode domain names to ASCII using IDNA."""
    domain = domain.strip().rstrip(".")
    if domain.isascii():
        return domain
    try:
        return idna.encode(domain, uts46=True).decode("ascii")
    except idna.IDNAError as e:
        raise InvalidRecordName(f"Invalid domain name {domain!r}: {e}", domain=domain) from e


def build_record_name(selector: str, domain: str) -> str:
    """Return the DKIM TXT record name '<selector>._domainkey.<domain>'."""
    if not selector or not selector.strip():
        raise InvalidRecordName("DKIM selector must not be empty", selector=selector, domain=domain)
    if not domain or not domain.strip(". "):
        raise InvalidRecordName("DKIM domain must not be empty", selector=selector, domain=domain)

    name = f"{selector.strip()}._domainkey.{domain_to_ascii(domain)}"
    try:
        dns.name.from_text(name)
    except dns.exception.DNSException as e:
        raise InvalidRecordName(f"Invalid DKIM record name {name!r}: {e}",
                                selector=selector, domain=domain) from e
    return name


def clean_txt_value(raw: str) -> str:
    """Strip the quoting DoH JSON puts around TXT data.

    Long keys are split into several quoted character-strings
    ('"v=DKIM1; p=MII" "BIjAN..."'), which are joined back together.
    """
    value = raw.strip()
    chunks = _TXT_CHUNK_RE.findall(value)
    if len(chunks) > 1 and not _TXT_CHUNK_RE.sub("", value).strip():
        return "".join(chunks)
    return value.replace('"', "")


def parse_dkim_tags(record: str) -> Dict[str, str]:
    """Parse a ';'-delimited tag=value list. The first occurrence of a tag wins."""
    tags = {}
    for tag_spec in record.split(";"):
        if "=" not in tag_spec:
            continue
        key, value = [x.strip() for x in tag_spec.split("=", 1)]
        if key and key not in tags:
            tags[key] = value
    return tags


def extract_public_key(record: str, selector: Optional[str] = None, domain: Optional[str] = None) -> str:
    """Return the base64 p= value of a DKIM record."""
    public_key = parse_dkim_tags(record).get("p")
    if not public_key:
        raise MalformedRecord(f"No p= field found in DKIM record: {record}",
                              record=record, selector=selector, domain=domain)
    return public_key


class DKIMKeyResolver:
    """Resolve DKIM public keys through DoH providers with an archive fallback."""

    def __init__(self, config: Optional[ResolverConfig] = None,
                 http_client: Optional[Callable] = None):
        self.config = config or ResolverConfig()
        self.http_client = http_client or requests.get
        self.strategies: List[Tuple[KeySource, Callable[[str, str, str], SourceOutcome]]] = [
            (KeySource.DOH_PRIMARY,
             lambda name, selector, domain: self.query_doh(self.config.primary_doh_url, name,
                                                           KeySource.DOH_PRIMARY)),
            (KeySource.DOH_SECONDARY,
             lambda name, selector, domain: self.query_doh(self.config.secondary_doh_url, name,
                                                           KeySource.DOH_SECONDARY)),
            (KeySource.ARCHIVE,
             lambda name, selector, domain: self.query_archive(selector, domain)),
        ]

    def query_doh(self, server_url: str, record_name: str, source: KeySource) -> SourceOutcome:
        """Query a DoH JSON endpoint for the TXT record. Never raises for transport errors."""
        params = {
            'name': record_name,
            'type': str(TXT_RECORD_TYPE),
        }
        headers = {'accept': 'application/dns-json'}
        headers.update(self.config.extra_headers)

        try:
            response = self.http_client(server_url, params=params, headers=headers,
                                        timeout=self.config.timeout)
        except requests.RequestException as e:
            logging.debug(f"DNS-over-HTTPS query to {server_url} failed: {e}")
            return SourceOutcome(source, OUTCOME_FAILED, detail=str(e))

        if not 200 <= response.status_code < 300:
            logging.debug(f"DNS-over-HTTPS query to {server_url} returned HTTP {response.status_code}")
            return SourceOutcome(source, OUTCOME_FAILED, detail=f"HTTP {response.status_code}")

        try:
            data = response.json()
        except ValueError as e:
            logging.debug(f"DNS-over-HTTPS response from {server_url} is not JSON: {e}")
            return SourceOutcome(source, OUTCOME_FAILED, detail="invalid JSON")

        # 0 = NOERROR
        status = data.get('Status') if isinstance(data, dict) else None
        answers = data.get('Answer') if isinstance(data, dict) else None
        if status != 0 or not answers:
            return SourceOutcome(source, OUTCOME_EMPTY, detail=f"Status {status}, no answer")

        if not isinstance(answers, list):
            return SourceOutcome(source, OUTCOME_FAILED, detail="unexpected Answer payload")

        for answer in answers:
            if isinstance(answer, dict) and answer.get('type') == TXT_RECORD_TYPE:
                txt = answer.get('data')
                if not isinstance(txt, str):
                    logging.debug(f"DNS-over-HTTPS answer from {server_url} has no TXT data: {txt!r}")
                    return SourceOutcome(source, OUTCOME_FAILED, detail="TXT answer without string data")
                return SourceOutcome(source, OUTCOME_FOUND, value=clean_txt_value(txt), detail=server_url)

        return SourceOutcome(source, OUTCOME_EMPTY, detail="no TXT answer")

    def query_archive(self, selector: str, domain: str) -> SourceOutcome:
        """Look the key up in the archive by bare domain, then match the selector."""
        try:
            response = self.http_client(self.config.archive_url, params={'domain': domain},
                                        timeout=self.config.timeout)
        except requests.RequestException as e:
            raise SourceUnavailable(f"ZKEmail DNS Archive call failed for {domain}: {e}",
                                    selector=selector, domain=domain) from e

        if not 200 <= response.status_code < 300:
            raise SourceUnavailable(
                f"ZKEmail DNS Archive call failed with status={response.status_code}",
                selector=selector, domain=domain, status_code=response.status_code)

        try:
            data = response.json()
        except ValueError as e:
            raise SourceUnavailable(f"ZKEmail DNS Archive returned invalid JSON for {domain}",
                                    selector=selector, domain=domain,
                                    status_code=response.status_code) from e

        if not isinstance(data, list):
            raise SourceUnavailable(f"ZKEmail DNS Archive returned unexpected payload for {domain}",
                                    selector=selector, domain=domain,
                                    status_code=response.status_code)

        for entry in data:
            if isinstance(entry, dict) and entry.get('selector') == selector:
                value = entry.get('value')
                if not isinstance(value, str):
                    raise SourceUnavailable(
                        f"ZKEmail DNS Archive record for {selector} on {domain} has no string value",
                        selector=selector, domain=domain, status_code=response.status_code)
                return SourceOutcome(KeySource.ARCHIVE, OUTCOME_FOUND,
                                     value=clean_txt_value(value),
                                     detail=self.config.archive_url)

        return SourceOutcome(KeySource.ARCHIVE, OUTCOME_EMPTY,
                             detail=f"no record for selector {selector} among {len(data)}")

    def resolve(self, selector: str, domain: str) -> DKIMKeyRecord:
        """Resolve the DKIM key for selector/domain, stopping at the first source with an answer."""
        record_name = build_record_name(selector, domain)
        ascii_domain = domain_to_ascii(domain)
        attempts = []

        for source, strategy in self.strategies:
            if source is KeySource.ARCHIVE:
                logging.info(f"DNS over HTTPS failed for {record_name} => fallback to ZK Email Archive")
            outcome = strategy(record_name, selector, ascii_domain)
            attempts.append(outcome)
            logging.debug(f"{source.value} lookup for {record_name}: {outcome.status} {outcome.detail}")

            if outcome.found:
                public_key = extract_public_key(outcome.value, selector=selector, domain=domain)
                return DKIMKeyRecord(
                    selector=selector,
                    domain=domain,
                    public_key_base64=public_key,
                    source=source,
                    raw_record=outcome.value,
                )

        summary = ", ".join(f"{a.source.value}={a.status}" for a in attempts)
        raise ResolutionExhausted(f"No DKIM key found for {record_name} ({summary})",
                                  selector=selector, domain=domain, attempts=attempts)

    def resolve_public_key(self, selector: str, domain: str) -> str:
        return self.resolve(selector, domain).public_key_base64


def fetch_dkim_public_key(selector: str, domain: str, config: Optional[ResolverConfig] = None) -> str:
    """Resolve and return the raw base64 p= field for selector/domain."""
    return DKIMKeyResolver(config).resolve_public_key(selector, domain)
