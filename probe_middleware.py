import logging
import os
import threading
import time
from dataclasses import dataclass, field
from typing import Dict, Optional

import boto3
import requests
import urllib3
from botocore import UNSIGNED
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

logger = logging.getLogger(__name__)

# Probes run with verify=False against provider edges.
urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)

USER_AGENT = "DangleHaunt/1"

DEFAULT_HEAD_TIMEOUT = float(os.environ.get("DANGLEHAUNT_HTTP_TIMEOUT", "6.0"))
DEFAULT_BODY_TIMEOUT = float(os.environ.get("DANGLEHAUNT_BODY_TIMEOUT", "8.0"))
DEFAULT_S3_REGION = os.environ.get("DANGLEHAUNT_S3_REGION", "us-east-1")

_MAX_BODY_BYTES = 256 * 1024

# =============================
# Global concurrency guard
# =============================
_NET_SEM = threading.BoundedSemaphore(value=int(os.environ.get("NET_CONCURRENCY", "128")))


# =============================
# HTTP probe
# =============================
@dataclass(frozen=True)
class HttpResult:
    status: Optional[int] = None
    reason: str = ""
    headers: Dict[str, str] = field(default_factory=dict)
    body: str = ""

    def __bool__(self) -> bool:
        return self.status is not None or bool(self.headers) or bool(self.body)

    @property
    def header_text(self) -> str:
        """Status line plus one `name: value` line per header, like `curl -I` prints."""
        if not self:
            return ""
        lines = [f"HTTP {self.status} {self.reason}".rstrip()]
        lines.extend(f"{k}: {v}" for k, v in self.headers.items())
        return "\n".join(lines)


EMPTY_RESULT = HttpResult()


def _read_body(resp: requests.Response, deadline: float) -> str:
    """
    Read at most _MAX_BODY_BYTES of the body, stopping at `deadline` (time.monotonic()).
    Reads are one byte at a time so a server that trickles data cannot hold the
    probe past the deadline; whatever arrived before a stall or cut-off is kept.
    """
    buf = bytearray()
    try:
        for chunk in resp.iter_content(chunk_size=1):
            buf += chunk
            if len(buf) >= _MAX_BODY_BYTES or time.monotonic() >= deadline:
                break
    except requests.RequestException as e:
        logger.debug("Body read from %s cut short: %s", resp.url, e)
    raw = bytes(buf[:_MAX_BODY_BYTES])
    try:
        return raw.decode(resp.encoding or "utf-8", errors="replace")
    except LookupError:
        return raw.decode("utf-8", errors="replace")


class HttpProbe:
    """
    HEAD/GET a hostname over plain HTTP first, then HTTPS when nothing came back.
    Every failure degrades to EMPTY_RESULT; nothing here raises.
    """

    def __init__(self, head_timeout: float = DEFAULT_HEAD_TIMEOUT, body_timeout: float = DEFAULT_BODY_TIMEOUT,
                 session: Optional[requests.Session] = None):
        self.head_timeout = head_timeout
        self.body_timeout = body_timeout
        self._session = session or requests.Session()
        self._session.headers.update({"User-Agent": USER_AGENT})

    def _request(self, method: str, url: str, timeout: float, follow: bool) -> HttpResult:
        deadline = time.monotonic() + timeout
        try:
            with _NET_SEM:
                resp = self._session.request(method, url, timeout=timeout, allow_redirects=follow, verify=False,
                                             stream=True)
                try:
                    body = "" if method == "HEAD" else _read_body(resp, deadline)
                    return HttpResult(
                        status=resp.status_code,
                        reason=resp.reason or "",
                        headers={k: v for k, v in resp.headers.items()},
                        body=body,
                    )
                finally:
                    resp.close()
        except requests.RequestException as e:
            logger.debug("%s %s failed: %s", method, url, e)
            return EMPTY_RESULT

    def fetch_head(self, host: str) -> HttpResult:
        res = self._request("HEAD", f"http://{host}", self.head_timeout, follow=False)
        if not res:
            res = self._request("HEAD", f"https://{host}", self.head_timeout, follow=False)
        return res

    def fetch_body(self, host: str) -> HttpResult:
        res = self._request("GET", f"http://{host}", self.body_timeout, follow=True)
        if not res.body:
            alt = self._request("GET", f"https://{host}", self.body_timeout, follow=True)
            if alt:
                res = alt
        return res

    def fetch_https_head(self, host: str) -> HttpResult:
        return self._request("HEAD", f"https://{host}", self.head_timeout, follow=False)


# =============================
# Anonymous S3 existence check
# =============================
class BucketProbe:
    """
    Credential-less S3 listing, the equivalent of `aws s3 ls s3://<b> --no-sign-request`.

    bucket_exists() -> False only on NoSuchBucket; True on success or any other
    S3 error (AccessDenied, redirects to another region, ...); None when S3
    could not be reached at all.
    """

    def __init__(self, region: str = DEFAULT_S3_REGION, timeout: float = DEFAULT_HEAD_TIMEOUT, client=None):
        self.region = region
        if client is None:
            client = boto3.client(
                "s3",
                region_name=region,
                config=Config(
                    signature_version=UNSIGNED,
                    connect_timeout=timeout,
                    read_timeout=timeout,
                    retries={"max_attempts": 1},
                ),
            )
        self._client = client

    def bucket_exists(self, name: str) -> Optional[bool]:
        try:
            with _NET_SEM:
                self._client.list_objects_v2(Bucket=name, MaxKeys=1)
            return True
        except ClientError as e:
            code = (e.response.get("Error") or {}).get("Code", "")
            if code == "NoSuchBucket":
                return False
            logger.debug("S3 listing of %s answered %s", name, code)
            return True
        except BotoCoreError as e:
            logger.warning("S3 existence check for %s failed: %s", name, e)
            return None
