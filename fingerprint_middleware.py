import re
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple


# =============================
# Provider identities
# =============================
class ProviderIdentity(Enum):
    AWS_S3 = "AWS_S3"
    GITHUB_PAGES = "GITHUB_PAGES"
    HEROKU = "HEROKU"
    FASTLY = "FASTLY"
    NETLIFY = "NETLIFY"
    VERCEL = "VERCEL"
    SHOPIFY = "SHOPIFY"
    SQUARESPACE = "SQUARESPACE"
    TUMBLR = "TUMBLR"
    WORDPRESS_COM = "WORDPRESS_COM"
    AZURE_APPSERVICE = "AZURE_APPSERVICE"
    AZURE_STORAGE_STATIC = "AZURE_STORAGE_STATIC"
    CLOUDFRONT = "CLOUDFRONT"
    OTHER = "OTHER"


def normalize_host(host: str) -> str:
    """Lowercase and drop the trailing root dot."""
    return (host or "").lower().rstrip(".")


# =============================
# Fingerprint rules
# =============================
_REGION = r"[a-z0-9-]+"


@dataclass(frozen=True)
class ProviderRule:
    provider: ProviderIdentity
    exact: Tuple[str, ...] = ()
    suffixes: Tuple[str, ...] = ()
    patterns: Tuple[re.Pattern, ...] = ()

    def matches_exact(self, target: str) -> bool:
        return target in self.exact

    def matches_generic(self, target: str) -> bool:
        if any(target.endswith(suf) for suf in self.suffixes):
            return True
        return any(rx.fullmatch(target) for rx in self.patterns)


# Priority order; literal hosts are checked across every rule before any suffix,
# so tumblr.map.fastly.net lands on TUMBLR and never on the generic FASTLY suffix.
PROVIDER_RULES: Tuple[ProviderRule, ...] = (
    ProviderRule(
        ProviderIdentity.AWS_S3,
        suffixes=(".s3.amazonaws.com",),
        patterns=(
            re.compile(rf".+\.s3\.{_REGION}\.amazonaws\.com"),
            re.compile(rf".+\.s3-website-{_REGION}\.amazonaws\.com"),
            re.compile(rf".+\.s3-website\.{_REGION}\.amazonaws\.com"),
            re.compile(rf".+\.s3\.dualstack\.{_REGION}\.amazonaws\.com"),
        ),
    ),
    ProviderRule(ProviderIdentity.GITHUB_PAGES, suffixes=(".github.io",)),
    ProviderRule(ProviderIdentity.HEROKU, suffixes=(".herokuapp.com", ".herokudns.com")),
    ProviderRule(ProviderIdentity.FASTLY, suffixes=(".fastly.net",)),
    ProviderRule(
        ProviderIdentity.NETLIFY,
        exact=("apex-loadbalancer.netlify.com",),
        suffixes=(".netlify.com", ".netlify.app", ".netlifyglobalcdn.com"),
    ),
    ProviderRule(ProviderIdentity.VERCEL, suffixes=(".vercel.app", ".vercel-dns.com", ".zeit.world")),
    ProviderRule(ProviderIdentity.SHOPIFY, exact=("shops.myshopify.com",), suffixes=(".myshopify.com",)),
    ProviderRule(ProviderIdentity.SQUARESPACE, exact=("ext-cust.squarespace.com",), suffixes=(".squarespace.com",)),
    ProviderRule(
        ProviderIdentity.TUMBLR,
        exact=("domains.tumblr.com", "tumblr.map.fastly.net"),
        suffixes=(".domains.tumblr.com",),
    ),
    ProviderRule(ProviderIdentity.WORDPRESS_COM, exact=("lb.wordpress.com",), suffixes=(".wordpress.com",)),
    ProviderRule(ProviderIdentity.AZURE_APPSERVICE, suffixes=(".azurewebsites.net",)),
    ProviderRule(ProviderIdentity.AZURE_STORAGE_STATIC, suffixes=(".blob.core.windows.net", ".web.core.windows.net")),
    ProviderRule(ProviderIdentity.CLOUDFRONT, suffixes=(".cloudfront.net",)),
)


def match_provider(target: str, rules: Tuple[ProviderRule, ...] = PROVIDER_RULES) -> ProviderIdentity:
    """
    Classify a normalized CNAME target.

    Two passes over the ordered rules: exact literals first, then suffix/regex
    rules in priority order. Anything unmatched is OTHER.
    """
    for rule in rules:
        if rule.matches_exact(target):
            return rule.provider
    for rule in rules:
        if rule.matches_generic(target):
            return rule.provider
    return ProviderIdentity.OTHER


# =============================
# S3 bucket extraction
# =============================
_BUCKET = r"([a-z0-9.-]+)"

S3_BUCKET_PATTERNS: Tuple[re.Pattern, ...] = (
    re.compile(rf"^{_BUCKET}\.s3\.amazonaws\.com$"),
    re.compile(rf"^{_BUCKET}\.s3\.{_REGION}\.amazonaws\.com$"),
    re.compile(rf"^{_BUCKET}\.s3-website-{_REGION}\.amazonaws\.com$"),
    re.compile(rf"^{_BUCKET}\.s3-website\.{_REGION}\.amazonaws\.com$"),
    re.compile(rf"^{_BUCKET}\.s3\.dualstack\.{_REGION}\.amazonaws\.com$"),
)


def extract_s3_bucket(target: str) -> Optional[str]:
    for rx in S3_BUCKET_PATTERNS:
        m = rx.match(target or "")
        if m:
            return m.group(1)
    return None
