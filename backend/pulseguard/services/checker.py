"""Checker service - HTTP(S), ping, DNS, TCP and SSL probes.

Every probe returns a CheckResult. Network and parse errors are converted to
offline/timeout results; nothing raised inside a probe reaches the scheduler.
"""
import asyncio
import contextlib
import logging
import re
import socket
import ssl
import sys
import time
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple
from urllib.parse import urlsplit

import dns.asyncresolver
import dns.exception
import httpx
from cryptography import x509
from cryptography.hazmat.primitives import hashes

from ..config import settings
from ..models.enums import ServiceStatus, ServiceType
from ..schemas.service import parse_headers

logger = logging.getLogger(__name__)


@dataclass
class CheckResult:
    """Normalized outcome of one probe."""
    status: ServiceStatus
    response_time_ms: Optional[int] = None
    message: str = ""
    status_code: Optional[int] = None
    content_match: Optional[bool] = None
    data: dict = field(default_factory=dict)


@dataclass(frozen=True)
class ProbeTarget:
    """What to probe, detached from the database row."""
    type: ServiceType
    target: str
    host: Optional[str] = None
    port: Optional[int] = None
    content_match: Optional[str] = None
    headers: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_service(cls, service) -> "ProbeTarget":
        try:
            service_type = ServiceType((service.type or "HTTP").upper())
        except ValueError:
            logger.warning(f"Service {service.id} has unknown type '{service.type}', checking as HTTP")
            service_type = ServiceType.HTTP
        return cls(
            type=service_type,
            target=service.target,
            host=service.host,
            port=service.port,
            content_match=service.content_match or None,
            headers=parse_headers(service.headers, service.id),
        )

    def _split_target(self) -> Tuple[Optional[str], Optional[int]]:
        raw = self.target.strip()
        parts = urlsplit(raw if "://" in raw else f"//{raw}")
        try:
            port = parts.port
        except ValueError:
            port = None
        return parts.hostname, port

    @property
    def hostname(self) -> str:
        if self.host:
            return self.host
        host, _ = self._split_target()
        return host or self.target

    def port_or(self, default: int) -> int:
        if self.port:
            return self.port
        _, port = self._split_target()
        return port or default


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)


# "/pattern/flags" - flags follow the JavaScript letters the UI accepts
_DELIMITED_PATTERN = re.compile(r"^/(.+)/([gimsuyx]*)$", re.DOTALL)
_PATTERN_FLAGS = {"i": re.IGNORECASE, "m": re.MULTILINE, "s": re.DOTALL, "x": re.VERBOSE}


@dataclass(frozen=True)
class ContentPattern:
    """Expected response content: a delimited regex or a plain substring."""
    raw: str
    regex: Optional[re.Pattern] = None

    @classmethod
    def parse(cls, raw: str) -> "ContentPattern":
        match = _DELIMITED_PATTERN.match(raw)
        if match:
            flags = 0
            for letter in match.group(2):
                flags |= _PATTERN_FLAGS.get(letter, 0)
            try:
                return cls(raw=raw, regex=re.compile(match.group(1), flags))
            except re.error as e:
                logger.warning(f"Invalid content pattern {raw!r} ({e}), using substring search")
        return cls(raw=raw)

    def matches(self, body: str) -> bool:
        if self.regex is not None:
            return self.regex.search(body) is not None
        return self.raw.lower() in body.lower()

    def describe(self, limit: int = 50) -> str:
        text = self.raw if len(self.raw) <= limit else f"{self.raw[:limit]}..."
        return f"'{text}'"


class Probe:
    """One protocol check. Subclasses implement check()."""

    def __init__(self, timeout: float):
        self.timeout = timeout

    @property
    def timeout_ms(self) -> int:
        return int(self.timeout * 1000)

    async def check(self, target: ProbeTarget) -> CheckResult:
        raise NotImplementedError


class HttpProbe(Probe):
    """HEAD request, or GET when the response body has to be validated.

    Status mapping:
    - timeout = timeout, any other transport error = offline
    - 5xx = offline, other non-2xx = degraded
    - 2xx without the expected content = degraded (the endpoint did answer)
    - 2xx otherwise = online
    """

    def __init__(self, timeout: float, user_agent: str, transport: Optional[httpx.AsyncBaseTransport] = None):
        super().__init__(timeout)
        self.user_agent = user_agent
        self.transport = transport

    async def check(self, target: ProbeTarget) -> CheckResult:
        url = target.target
        if not url.startswith(("http://", "https://")):
            url = f"{'https' if target.type == ServiceType.HTTPS else 'http'}://{url}"

        pattern = ContentPattern.parse(target.content_match) if target.content_match else None
        method = "GET" if pattern else "HEAD"
        headers = {"User-Agent": self.user_agent, **target.headers}

        start = time.monotonic()
        try:
            # Certificate problems are reported by the SSL probe, not here
            async with httpx.AsyncClient(
                timeout=self.timeout,
                follow_redirects=True,
                verify=False,
                transport=self.transport,
            ) as client:
                response = await client.request(method, url, headers=headers)
        except httpx.TimeoutException:
            return CheckResult(
                status=ServiceStatus.TIMEOUT,
                response_time_ms=self.timeout_ms,
                message=f"Timeout - No response in {self.timeout:g}s",
            )
        except Exception as e:
            return CheckResult(
                status=ServiceStatus.OFFLINE,
                response_time_ms=_elapsed_ms(start),
                message=f"Error: {str(e) or type(e).__name__}",
            )

        response_time = _elapsed_ms(start)
        code = response.status_code

        if code >= 500:
            return CheckResult(
                status=ServiceStatus.OFFLINE,
                response_time_ms=response_time,
                message=f"HTTP {code} - Server Error",
                status_code=code,
            )

        if not (200 <= code < 300):
            return CheckResult(
                status=ServiceStatus.DEGRADED,
                response_time_ms=response_time,
                message=f"HTTP {code} - {response.reason_phrase}",
                status_code=code,
            )

        if pattern is not None:
            if not pattern.matches(response.text):
                return CheckResult(
                    status=ServiceStatus.DEGRADED,
                    response_time_ms=response_time,
                    message=f"HTTP {code} - Content mismatch: {pattern.describe()} not found",
                    status_code=code,
                    content_match=False,
                )
            return CheckResult(
                status=ServiceStatus.ONLINE,
                response_time_ms=response_time,
                message=f"HTTP {code} - OK, content verified",
                status_code=code,
                content_match=True,
            )

        return CheckResult(
            status=ServiceStatus.ONLINE,
            response_time_ms=response_time,
            message=f"HTTP {code} - OK",
            status_code=code,
        )


_PING_TIME = re.compile(r"time\s*[=<>]\s*([\d.]+)\s*ms", re.IGNORECASE)
_PING_SUCCESS = re.compile(
    r"ttl=|bytes from|reply from|icmp_seq|\b1 (?:packets )?received|(?<![\d.])0(?:\.0+)?% packet loss",
    re.IGNORECASE,
)


def parse_ping_output(output: str) -> Tuple[bool, Optional[float]]:
    """Extract (success, round trip ms) from ping output.

    Handles Linux, macOS and Windows formats, including "time<1ms".
    """
    match = _PING_TIME.search(output)
    rtt = float(match.group(1)) if match else None
    return bool(_PING_SUCCESS.search(output)), rtt


class PingProbe(Probe):
    """Single ICMP echo via the system ping binary."""

    def _command(self, host: str) -> List[str]:
        if sys.platform == "win32":
            return ["ping", "-n", "1", "-w", str(self.timeout_ms), host]
        return ["ping", "-c", "1", "-W", str(max(1, int(self.timeout))), host]

    async def check(self, target: ProbeTarget) -> CheckResult:
        host = target.hostname
        start = time.monotonic()
        try:
            proc = await asyncio.create_subprocess_exec(
                *self._command(host),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            return CheckResult(
                status=ServiceStatus.OFFLINE,
                response_time_ms=_elapsed_ms(start),
                message=f"Ping failed: {e}",
            )

        try:
            # Small buffer over the per-echo timeout for process startup
            stdout, _ = await asyncio.wait_for(proc.communicate(), timeout=self.timeout + 2)
        except asyncio.TimeoutError:
            with contextlib.suppress(ProcessLookupError):
                proc.kill()
            await proc.wait()
            return CheckResult(
                status=ServiceStatus.OFFLINE,
                response_time_ms=self.timeout_ms,
                message="Ping failed - timeout",
            )

        elapsed = _elapsed_ms(start)
        output = stdout.decode(errors="replace")
        success, rtt = parse_ping_output(output)
        logger.debug(f"Ping {host}: rc={proc.returncode} success={success} rtt={rtt}")

        if proc.returncode == 0 and success:
            ping_time = round(rtt) if rtt is not None else elapsed
            return CheckResult(
                status=ServiceStatus.ONLINE,
                response_time_ms=ping_time,
                message=f"Ping successful - {ping_time}ms",
            )

        return CheckResult(
            status=ServiceStatus.OFFLINE,
            response_time_ms=elapsed,
            message="Ping failed - Host unreachable",
        )


class DnsProbe(Probe):
    """Resolve A, then AAAA, then fall back to the system resolver."""

    async def _resolve_records(self, host: str, record_type: str) -> List[str]:
        resolver = dns.asyncresolver.Resolver()
        resolver.lifetime = self.timeout
        answer = await resolver.resolve(host, record_type)
        return [rr.to_text() for rr in answer]

    async def _resolve_system(self, host: str) -> List[str]:
        loop = asyncio.get_running_loop()
        infos = await asyncio.wait_for(loop.getaddrinfo(host, None), timeout=self.timeout)
        addresses: List[str] = []
        for _family, _type, _proto, _canon, sockaddr in infos:
            if sockaddr[0] not in addresses:
                addresses.append(sockaddr[0])
        return addresses

    async def check(self, target: ProbeTarget) -> CheckResult:
        host = target.hostname
        start = time.monotonic()
        addresses: List[str] = []
        record_type = None
        last_error = None

        for candidate in ("A", "AAAA"):
            try:
                addresses = await self._resolve_records(host, candidate)
            except dns.exception.DNSException as e:
                last_error = f"{candidate}: {e}"
                continue
            if addresses:
                record_type = candidate
                break

        if not addresses:
            try:
                addresses = await self._resolve_system(host)
                record_type = "system"
            except (OSError, asyncio.TimeoutError) as e:
                last_error = f"system: {str(e) or 'timeout'}"

        response_time = _elapsed_ms(start)

        if addresses:
            shown = ", ".join(addresses[:3])
            more = "..." if len(addresses) > 3 else ""
            return CheckResult(
                status=ServiceStatus.ONLINE,
                response_time_ms=response_time,
                message=f"DNS resolved - {shown}{more}",
                data={"addresses": addresses, "record_type": record_type},
            )

        return CheckResult(
            status=ServiceStatus.OFFLINE,
            response_time_ms=response_time,
            message=f"DNS resolution failed - {last_error or 'No addresses found'}",
        )


class TcpProbe(Probe):
    """Plain TCP connect."""

    default_port = 80

    async def check(self, target: ProbeTarget) -> CheckResult:
        host = target.hostname
        port = target.port_or(self.default_port)
        start = time.monotonic()
        try:
            _, writer = await asyncio.wait_for(asyncio.open_connection(host, port), timeout=self.timeout)
        except asyncio.TimeoutError:
            return CheckResult(
                status=ServiceStatus.OFFLINE,
                response_time_ms=self.timeout_ms,
                message=f"TCP port {port} connection timeout",
            )
        except OSError as e:
            return CheckResult(
                status=ServiceStatus.OFFLINE,
                response_time_ms=_elapsed_ms(start),
                message=f"TCP error: {e}",
            )

        response_time = _elapsed_ms(start)
        writer.close()
        with contextlib.suppress(OSError):
            await writer.wait_closed()
        return CheckResult(
            status=ServiceStatus.ONLINE,
            response_time_ms=response_time,
            message=f"TCP port {port} is open",
        )


@dataclass(frozen=True)
class CertificateInfo:
    """Fields read from a peer certificate."""
    subject: str
    issuer: str
    valid_from: datetime
    valid_to: datetime
    fingerprint: str
    serial_number: str

    def as_dict(self) -> dict:
        data = asdict(self)
        data["valid_from"] = self.valid_from.isoformat()
        data["valid_to"] = self.valid_to.isoformat()
        return data


def evaluate_certificate(cert: CertificateInfo, now: datetime, response_time_ms: Optional[int] = None) -> CheckResult:
    """Map certificate validity to a status.

    Status thresholds (days until expiry, floored):
    - below 0 = offline (expired)
    - 0-6 = degraded, renewal needed
    - 7-29 = degraded
    - 30+ = online
    """
    days = (cert.valid_to - now).days
    data = cert.as_dict()
    data["days_until_expiry"] = days

    if days < 0:
        status, message = ServiceStatus.OFFLINE, f"SSL expired {abs(days)} days ago"
    elif days < 7:
        status, message = ServiceStatus.DEGRADED, f"SSL expires in {days} days - renewal needed"
    elif days < 30:
        status, message = ServiceStatus.DEGRADED, f"SSL expires in {days} days"
    else:
        status, message = ServiceStatus.ONLINE, f"SSL valid - expires in {days} days"

    return CheckResult(status=status, response_time_ms=response_time_ms, message=message, data=data)


class SslProbe(Probe):
    """Read the peer certificate and check its expiry."""

    default_port = 443

    def _fetch_certificate(self, host: str, port: int) -> Optional[CertificateInfo]:
        """Blocking TLS handshake that returns the peer certificate."""
        # We only want to read the certificate, not validate trust
        context = ssl.create_default_context()
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE

        with socket.create_connection((host, port), timeout=self.timeout) as sock:
            with context.wrap_socket(sock, server_hostname=host) as ssock:
                # getpeercert() returns an empty dict under CERT_NONE
                cert_der = ssock.getpeercert(binary_form=True)

        if not cert_der:
            return None

        cert = x509.load_der_x509_certificate(cert_der)
        return CertificateInfo(
            subject=cert.subject.rfc4514_string(),
            issuer=cert.issuer.rfc4514_string(),
            valid_from=cert.not_valid_before_utc,
            valid_to=cert.not_valid_after_utc,
            fingerprint=cert.fingerprint(hashes.SHA256()).hex(":").upper(),
            serial_number=format(cert.serial_number, "X"),
        )

    async def check(self, target: ProbeTarget) -> CheckResult:
        host = target.hostname
        port = target.port_or(self.default_port)
        start = time.monotonic()
        try:
            loop = asyncio.get_running_loop()
            cert = await asyncio.wait_for(
                loop.run_in_executor(None, self._fetch_certificate, host, port),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            return CheckResult(
                status=ServiceStatus.OFFLINE,
                response_time_ms=self.timeout_ms,
                message="SSL check timeout",
            )
        except Exception as e:
            return CheckResult(
                status=ServiceStatus.OFFLINE,
                response_time_ms=_elapsed_ms(start),
                message=f"SSL error: {e}",
            )

        response_time = _elapsed_ms(start)
        if cert is None:
            return CheckResult(
                status=ServiceStatus.OFFLINE,
                response_time_ms=response_time,
                message="No SSL certificate found",
            )

        return evaluate_certificate(cert, datetime.now(timezone.utc), response_time)


class CheckerService:
    """Routes a target to the probe for its service type."""

    def __init__(
        self,
        http_timeout: float = settings.http_timeout_seconds,
        ping_timeout: float = settings.ping_timeout_seconds,
        dns_timeout: float = settings.dns_timeout_seconds,
        tcp_timeout: float = settings.tcp_timeout_seconds,
        ssl_timeout: float = settings.ssl_timeout_seconds,
        user_agent: str = settings.user_agent,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        http_probe = HttpProbe(http_timeout, user_agent, transport=transport)
        self.ssl_probe = SslProbe(ssl_timeout)
        self.probes: Dict[ServiceType, Probe] = {
            ServiceType.HTTP: http_probe,
            ServiceType.HTTPS: http_probe,
            ServiceType.PING: PingProbe(ping_timeout),
            ServiceType.DNS: DnsProbe(dns_timeout),
            ServiceType.TCP: TcpProbe(tcp_timeout),
            ServiceType.SSL: self.ssl_probe,
        }

    async def check(self, target: ProbeTarget) -> CheckResult:
        """Run the probe matching target.type."""
        probe = self.probes.get(target.type, self.probes[ServiceType.HTTP])
        try:
            return await probe.check(target)
        except Exception as e:
            logger.exception(f"Probe {type(probe).__name__} crashed for {target.target}")
            return CheckResult(status=ServiceStatus.OFFLINE, message=f"Check failed: {e}")

    async def check_service(self, service) -> CheckResult:
        return await self.check(ProbeTarget.from_service(service))

    async def inspect_certificate(self, target: ProbeTarget) -> CheckResult:
        """Run the SSL probe against any target, e.g. to refresh expiry data for HTTPS."""
        try:
            return await self.ssl_probe.check(target)
        except Exception as e:
            logger.exception(f"Certificate inspection crashed for {target.target}")
            return CheckResult(status=ServiceStatus.OFFLINE, message=f"SSL check failed: {e}")


# Global instance
checker_service = CheckerService()
