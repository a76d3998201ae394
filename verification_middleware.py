import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Optional

from fingerprint_middleware import ProviderIdentity, extract_s3_bucket, match_provider
from probe_middleware import BucketProbe, HttpProbe, HttpResult

logger = logging.getLogger(__name__)


# =============================
# Risk classification
# =============================
class RiskStatus(Enum):
    VULNERABLE = "VULNERABLE"
    POTENTIALLY_VULNERABLE = "POTENTIALLY_VULNERABLE"
    NOT_VULNERABLE = "NOT_VULNERABLE"
    NOT_CLEAR = "NOT_CLEAR"
    EDGE_CASE = "EDGE_CASE"
    UNKNOWN = "UNKNOWN"


FINDING_FIELDS = ("domain", "cname_target", "provider", "status", "reason")


@dataclass(frozen=True)
class Finding:
    domain: str
    cname_target: str
    provider: ProviderIdentity
    status: RiskStatus
    reason: str

    def as_dict(self) -> Dict[str, str]:
        return {
            "domain": self.domain,
            "cname_target": self.cname_target,
            "provider": self.provider.value,
            "status": self.status.value,
            "reason": self.reason,
        }


NEEDS_HTTP = "Needs HTTP probe (HTTP client unavailable)"
NEEDS_HTTPS = "Needs HTTPS probe (HTTP client unavailable)"
NEEDS_BUCKET = "Needs bucket probe (S3 client unavailable)"

CLOUDFRONT_REASON = (
    "CloudFront uses distributions; dangling CNAME alone isn't enough, "
    "manual review required (need distribution ownership)"
)


@dataclass(frozen=True)
class BodySignature:
    """
    One 'default page' check: a marker in the body flips the verdict.
    no_probe is the status reported when the body cannot be fetched at all; it
    defaults to the miss status.
    """
    marker: str
    hit: RiskStatus
    hit_reason: str
    miss: RiskStatus
    miss_reason: str
    no_probe: Optional[RiskStatus] = None


BODY_SIGNATURES: Dict[ProviderIdentity, BodySignature] = {
    ProviderIdentity.GITHUB_PAGES: BodySignature(
        "there isn't a github pages site here",
        RiskStatus.VULNERABLE, "GitHub Pages default 'no site' page",
        RiskStatus.POTENTIALLY_VULNERABLE, "GitHub Pages present; check repo/user ownership",
    ),
    ProviderIdentity.HEROKU: BodySignature(
        "no such app",
        RiskStatus.VULNERABLE, "Heroku shows 'No such app' for this hostname",
        RiskStatus.POTENTIALLY_VULNERABLE, "Heroku present; verify domain binding",
    ),
    ProviderIdentity.FASTLY: BodySignature(
        "fastly error: unknown domain",
        RiskStatus.VULNERABLE, "Fastly reports unknown domain (no service bound)",
        RiskStatus.NOT_CLEAR, "Fastly present; no default unknown-domain response",
    ),
    ProviderIdentity.SHOPIFY: BodySignature(
        "sorry, this shop is currently unavailable",
        RiskStatus.EDGE_CASE, "Legacy Shopify page; modern takeover usually not possible",
        RiskStatus.NOT_VULNERABLE, "Shopify requires merchant portal control",
        no_probe=RiskStatus.NOT_CLEAR,
    ),
    ProviderIdentity.SQUARESPACE: BodySignature(
        "no such site at this address",
        RiskStatus.VULNERABLE, "Squarespace default 'no such site' page",
        RiskStatus.POTENTIALLY_VULNERABLE, "Squarespace present; verify if domain unbound",
    ),
    ProviderIdentity.TUMBLR: BodySignature(
        "there's nothing here",
        RiskStatus.VULNERABLE, "Tumblr default unconfigured page",
        RiskStatus.POTENTIALLY_VULNERABLE, "Tumblr present; manual verification needed",
    ),
    ProviderIdentity.WORDPRESS_COM: BodySignature(
        "do you want to register",
        RiskStatus.POTENTIALLY_VULNERABLE, "WordPress.com domain not registered message",
        RiskStatus.NOT_CLEAR, "WordPress.com present; usually requires site ownership",
    ),
    ProviderIdentity.AZURE_APPSERVICE: BodySignature(
        "404 web site not found",
        RiskStatus.POTENTIALLY_VULNERABLE, "Default App Service 404; if app name free, could be claimed",
        RiskStatus.NOT_CLEAR, "App Service present; no default 404",
        no_probe=RiskStatus.POTENTIALLY_VULNERABLE,
    ),
}

_S3_HTTP_HINTS = ("nosuchbucket", "nosuchwebsiteconfiguration")


def _contains(haystack: str, needle: str) -> bool:
    return needle in (haystack or "").replace("\r", "").lower()


class VerificationEngine:
    """
    Turns (domain, CNAME target) into a Finding using the provider's decision table.

    http_probe / bucket_probe may be None, meaning the capability is missing in this
    environment; affected branches report an inconclusive status and say so.
    on_hint receives advisory one-liners that never change a verdict.
    """

    def __init__(
        self,
        http_probe: Optional[HttpProbe] = None,
        bucket_probe: Optional[BucketProbe] = None,
        http_hints: bool = False,
        on_hint: Optional[Callable[[str], None]] = None,
    ):
        self.http_probe = http_probe
        self.bucket_probe = bucket_probe
        self.http_hints = http_hints
        self.on_hint = on_hint
        self._handlers = {
            ProviderIdentity.AWS_S3: self._verify_s3,
            ProviderIdentity.NETLIFY: self._verify_netlify,
            ProviderIdentity.VERCEL: self._verify_vercel,
            ProviderIdentity.AZURE_STORAGE_STATIC: self._verify_azure_storage,
            ProviderIdentity.CLOUDFRONT: self._verify_cloudfront,
        }

    def verify(self, domain: str, target: str, provider: Optional[ProviderIdentity] = None,
               on_hint: Optional[Callable[[str], None]] = None) -> Finding:
        if provider is None:
            provider = match_provider(target)
        if provider in self._handlers:
            status, reason = self._handlers[provider](domain, target, on_hint or self.on_hint)
        elif provider in BODY_SIGNATURES:
            status, reason = self._verify_body(domain, BODY_SIGNATURES[provider])
        else:
            status, reason = RiskStatus.UNKNOWN, "Unrecognized provider or pattern; add a matcher"
        logger.debug("%s -> %s [%s] %s", domain, target, provider.value, status.value)
        return Finding(domain, target, provider, status, reason)

    # ---- per-provider procedures ----

    def _verify_body(self, domain: str, sig: BodySignature):
        if self.http_probe is None:
            return sig.no_probe or sig.miss, NEEDS_HTTP
        body = self.http_probe.fetch_body(domain).body
        if _contains(body, sig.marker):
            return sig.hit, sig.hit_reason
        return sig.miss, sig.miss_reason

    def _verify_s3(self, domain: str, target: str, on_hint):
        bucket = extract_s3_bucket(target)
        if not bucket:
            return RiskStatus.UNKNOWN, "Could not extract bucket from target"

        if self.bucket_probe is None:
            verdict = (RiskStatus.NOT_VULNERABLE, NEEDS_BUCKET)
        elif self.bucket_probe.bucket_exists(bucket) is False:
            verdict = (RiskStatus.VULNERABLE, f"Bucket '{bucket}' does not exist and may be claimable")
        else:
            verdict = (RiskStatus.NOT_VULNERABLE, f"Bucket '{bucket}' exists (or not listable anonymously)")

        if self.http_hints and self.http_probe is not None:
            headers = self.http_probe.fetch_head(domain).header_text
            if any(_contains(headers, h) for h in _S3_HTTP_HINTS) and on_hint:
                on_hint(f"HTTP hint: S3 error visible on {domain}")
        return verdict

    def _verify_netlify(self, domain: str, target: str, on_hint):
        if self.http_probe is None:
            return RiskStatus.NOT_CLEAR, NEEDS_HTTP
        head = self.http_probe.fetch_head(domain)
        body = self.http_probe.fetch_body(domain)
        if _contains(head.header_text + body.body, "not found"):
            return RiskStatus.POTENTIALLY_VULNERABLE, "Netlify returns 404; modern Netlify requires DNS verification"
        return RiskStatus.NOT_CLEAR, "Netlify present; manual check needed"

    def _verify_vercel(self, domain: str, target: str, on_hint):
        if self.http_probe is None:
            return RiskStatus.NOT_CLEAR, NEEDS_HTTP
        head: HttpResult = self.http_probe.fetch_head(domain)
        body = self.http_probe.fetch_body(domain)
        if not _contains(head.header_text, "x-vercel-id"):
            return RiskStatus.NOT_CLEAR, "Could not fingerprint Vercel headers"
        if _contains(body.body, "deployment_not_found") or _contains(body.body, "project_not_found"):
            return RiskStatus.POTENTIALLY_VULNERABLE, "Vercel default error; check if project unclaimed"
        return RiskStatus.NOT_CLEAR, "Vercel present; non-default content"

    def _verify_azure_storage(self, domain: str, target: str, on_hint):
        if self.http_probe is None:
            return RiskStatus.NOT_CLEAR, NEEDS_HTTPS
        headers = self.http_probe.fetch_https_head(target).header_text
        if _contains(headers, "x-ms-error-code: resourcenotfound"):
            return RiskStatus.NOT_VULNERABLE, "Storage account exists (resource missing)"
        return RiskStatus.NOT_CLEAR, "Account existence unclear; check in Azure"

    def _verify_cloudfront(self, domain: str, target: str, on_hint):
        return RiskStatus.NOT_CLEAR, CLOUDFRONT_REASON
