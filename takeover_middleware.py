import logging
import os
import threading
from typing import Callable, List, Optional

import dns.exception
import dns.resolver

from fingerprint_middleware import ProviderIdentity, match_provider, normalize_host
from verification_middleware import Finding, RiskStatus, VerificationEngine

logger = logging.getLogger(__name__)

# =============================
# Global concurrency guard (DNS side)
# =============================
_NET_SEM = threading.BoundedSemaphore(value=int(os.environ.get("NET_CONCURRENCY", "128")))


# =============================
# DNS resolver helpers (system-first, public fallback)
# =============================
def _make_resolver(timeout: float = 2.0, lifetime: float = 3.0, nameservers: Optional[List[str]] = None) -> dns.resolver.Resolver:
    """
    Build a resolver. If nameservers is None -> use system resolver; otherwise set explicit servers.
    Timeouts/lifetime can be overridden by env: DNS_TIMEOUT / DNS_LIFETIME.
    Without DNS_LIFETIME the lifetime is stretched to cover at least one full query.
    """
    r = dns.resolver.Resolver(configure=(nameservers is None))
    if nameservers:
        r.nameservers = nameservers
    r.timeout = float(os.environ.get("DNS_TIMEOUT", timeout))
    r.lifetime = float(os.environ.get("DNS_LIFETIME", max(lifetime, r.timeout + 1.0)))
    return r

_RESOLVER_POOLS: List[List[str]] = [
    ["8.8.8.8", "8.8.4.4"],           # Google
    ["1.1.1.1", "1.0.0.1"],           # Cloudflare
    ["9.9.9.9", "149.112.112.112"],   # Quad9
]

# Answers that settle the question; asking another resolver will not change them.
_DEFINITIVE = (dns.resolver.NXDOMAIN, dns.resolver.NoAnswer)


def _resolve_with_multi_fallback(name: str, rtype: str, attempts: int = 1, use_public: bool = True):
    """
    Resolution strategy:
      1) Try system resolver once.
      2) On transport trouble (timeouts, SERVFAIL), fall back across public resolver pools.
    NXDOMAIN / NoAnswer are returned to the caller straight away.
    """
    last_exc = None
    try:
        with _NET_SEM:
            return _make_resolver().resolve(name, rtype, raise_on_no_answer=True)
    except _DEFINITIVE:
        raise
    except dns.exception.DNSException as e:
        last_exc = e
    if use_public:
        for pool in _RESOLVER_POOLS:
            for _ in range(max(1, int(attempts))):
                try:
                    with _NET_SEM:
                        return _make_resolver(nameservers=pool).resolve(name, rtype, raise_on_no_answer=True)
                except _DEFINITIVE:
                    raise
                except dns.exception.DNSException as e:
                    last_exc = e
                    continue
    if last_exc:
        raise last_exc
    raise dns.exception.DNSException("Resolution failed without specific exception")


def _direct_cnames(name: str, use_public: bool = True) -> List[str]:
    try:
        ans = _resolve_with_multi_fallback(name, "CNAME", use_public=use_public)
    except _DEFINITIVE:
        return []
    return [str(r.target) for r in ans]


def resolve_cnames(domain: str, follow_chain: bool = False, max_hops: int = 10, use_public: bool = True) -> List[str]:
    """
    CNAME targets of `domain`, un-normalized.

    Default: the domain's own CNAME record(s). With follow_chain, every hop of the
    chain is returned in order. Transport failures raise dns.exception.DNSException.
    """
    first = _direct_cnames(domain, use_public=use_public)
    if not follow_chain or not first:
        return first
    chain: List[str] = [first[0]]
    current = first[0]
    for _ in range(max_hops - 1):
        try:
            nxt = _direct_cnames(current, use_public=use_public)
        except dns.exception.DNSException as e:
            logger.debug("Stopped following chain at %s: %s", current, e)
            break
        if not nxt or nxt[0] in chain:
            break
        chain.append(nxt[0])
        current = nxt[0]
    return chain


# =============================
# Takeover Middleware
# =============================
class TakeoverMiddleware:
    """Per-domain pipeline: CNAME lookup -> normalize -> fingerprint -> verify."""

    def __init__(
        self,
        engine: VerificationEngine,
        follow_chain: bool = False,
        public_fallback: bool = True,
        resolver: Optional[Callable[[str], List[str]]] = None,
    ):
        self.engine = engine
        self.follow_chain = follow_chain
        self.public_fallback = public_fallback
        self._resolve = resolver or self._default_resolve

    def _default_resolve(self, domain: str) -> List[str]:
        return resolve_cnames(domain, follow_chain=self.follow_chain, use_public=self.public_fallback)

    def analyze(
        self,
        domain: str,
        on_event: Optional[Callable[[str], None]] = None,
        on_finding: Optional[Callable[[Finding], None]] = None,
    ) -> List[Finding]:
        say = on_event or (lambda _msg: None)
        say(f"[*] Checking domain: {domain}")

        try:
            raw_targets = self._resolve(domain)
        except dns.exception.DNSException as e:
            logger.warning("CNAME lookup for %s failed: %s", domain, e)
            say(f"    -> DNS lookup failed ({e.__class__.__name__}). Skipping.")
            return []

        targets = [t for t in (normalize_host(x) for x in raw_targets) if t]
        if not targets:
            logger.info("No CNAME record for %s", domain)
            say("    -> No CNAME record found. Skipping.")
            return []

        findings: List[Finding] = []
        for target in targets:
            say(f"    -> CNAME target: {target}")
            finding = self._verify_one(domain, target, say)
            findings.append(finding)
            if on_finding:
                on_finding(finding)
        return findings

    def _verify_one(self, domain: str, target: str, say: Callable[[str], None]) -> Finding:
        provider = ProviderIdentity.OTHER
        try:
            provider = match_provider(target)
            return self.engine.verify(domain, target, provider, on_hint=lambda h: say(f"       -> {h}"))
        except Exception as e:
            logger.exception("Verification of %s -> %s crashed", domain, target)
            return Finding(domain, target, provider, RiskStatus.UNKNOWN, f"Verification failed: {e}")
