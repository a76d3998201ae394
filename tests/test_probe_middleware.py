import socket
import threading
import time

import boto3
import pytest
import requests
from botocore import UNSIGNED
from botocore.config import Config
from botocore.exceptions import EndpointConnectionError
from botocore.stub import Stubber

from probe_middleware import EMPTY_RESULT, BucketProbe, HttpProbe, HttpResult


class FakeResponse:
    def __init__(self, status=200, reason="OK", headers=None, text=""):
        self.status_code = status
        self.reason = reason
        self.headers = headers or {}
        self.encoding = "utf-8"
        self.url = ""
        self.closed = False
        self._content = text.encode("utf-8")

    def iter_content(self, chunk_size=1):
        for i in range(0, len(self._content), chunk_size):
            yield self._content[i:i + chunk_size]

    def close(self):
        self.closed = True


class FakeSession:
    """Maps URL -> FakeResponse; anything unmapped raises ConnectionError."""

    def __init__(self, routes):
        self.routes = routes
        self.headers = {}
        self.seen = []

    def request(self, method, url, **kwargs):
        self.seen.append((method, url, kwargs.get("allow_redirects")))
        assert kwargs.get("stream") is True
        resp = self.routes.get((method, url))
        if resp is None:
            raise requests.ConnectionError(f"refused: {url}")
        return resp


def test_http_result_truthiness_and_header_text():
    assert not EMPTY_RESULT
    assert EMPTY_RESULT.header_text == ""
    r = HttpResult(status=404, reason="Not Found", headers={"X-Vercel-Id": "abc"})
    assert r
    assert r.header_text == "HTTP 404 Not Found\nX-Vercel-Id: abc"


def test_fetch_body_prefers_http():
    s = FakeSession({("GET", "http://a.example.com"): FakeResponse(text="plain")})
    res = HttpProbe(session=s).fetch_body("a.example.com")
    assert res.body == "plain"
    assert s.seen == [("GET", "http://a.example.com", True)]


def test_fetch_body_falls_back_to_https():
    s = FakeSession({("GET", "https://a.example.com"): FakeResponse(text="secure")})
    res = HttpProbe(session=s).fetch_body("a.example.com")
    assert res.body == "secure"
    assert [u for _, u, _ in s.seen] == ["http://a.example.com", "https://a.example.com"]


def test_fetch_body_empty_http_body_retries_https():
    s = FakeSession({
        ("GET", "http://a.example.com"): FakeResponse(text=""),
        ("GET", "https://a.example.com"): FakeResponse(text="There isn't a GitHub Pages site here."),
    })
    assert "GitHub Pages" in HttpProbe(session=s).fetch_body("a.example.com").body


def test_fetch_body_total_failure_is_empty():
    res = HttpProbe(session=FakeSession({})).fetch_body("down.example.com")
    assert res == EMPTY_RESULT


def test_body_is_capped_and_response_closed():
    resp = FakeResponse(text="a" * (300 * 1024))
    res = HttpProbe(session=FakeSession({("GET", "http://big.example.com"): resp})).fetch_body("big.example.com")
    assert len(res.body) == 256 * 1024
    assert resp.closed


def test_head_response_is_closed_without_reading_body():
    resp = FakeResponse(404, "Not Found", {"Server": "edge"}, text="ignored")
    res = HttpProbe(session=FakeSession({("HEAD", "http://a.example.com"): resp})).fetch_head("a.example.com")
    assert (res.status, res.body) == (404, "")
    assert resp.closed


@pytest.fixture
def trickle_server():
    """Local HTTP server that drips its body one byte every 0.1 s for ten seconds."""
    srv = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    srv.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
    srv.bind(("127.0.0.1", 0))
    srv.listen(4)
    srv.settimeout(0.2)
    stop = threading.Event()

    def serve():
        while not stop.is_set():
            try:
                conn, _ = srv.accept()
            except OSError:
                continue
            with conn:
                conn.settimeout(5)
                try:
                    conn.recv(4096)
                    conn.sendall(b"HTTP/1.1 200 OK\r\nContent-Type: text/html; charset=utf-8\r\n"
                                 b"Connection: close\r\n\r\n")
                    for _ in range(100):
                        if stop.is_set():
                            break
                        conn.sendall(b"x")
                        time.sleep(0.1)
                except OSError:
                    pass

    t = threading.Thread(target=serve, daemon=True)
    t.start()
    yield f"127.0.0.1:{srv.getsockname()[1]}"
    stop.set()
    t.join(timeout=2)
    srv.close()


def test_slow_body_stops_at_deadline(trickle_server):
    session = requests.Session()
    session.trust_env = False
    started = time.monotonic()
    res = HttpProbe(body_timeout=0.5, session=session).fetch_body(trickle_server)
    elapsed = time.monotonic() - started
    assert elapsed < 3
    assert res.status == 200
    assert res.body and set(res.body) == {"x"}


def test_fetch_head_does_not_follow_redirects_and_falls_back():
    s = FakeSession({("HEAD", "https://a.example.com"): FakeResponse(301, "Moved", {"Location": "/x"})})
    res = HttpProbe(session=s).fetch_head("a.example.com")
    assert res.status == 301
    assert res.body == ""
    assert all(follow is False for _, _, follow in s.seen)


def test_fetch_https_head_only_tries_https():
    s = FakeSession({})
    assert HttpProbe(session=s).fetch_https_head("acct.blob.core.windows.net") == EMPTY_RESULT
    assert s.seen == [("HEAD", "https://acct.blob.core.windows.net", False)]


def test_session_gets_user_agent():
    s = FakeSession({})
    HttpProbe(session=s)
    assert s.headers["User-Agent"].startswith("DangleHaunt")


@pytest.fixture
def s3_client():
    return boto3.client("s3", region_name="us-east-1", config=Config(signature_version=UNSIGNED))


def test_bucket_missing(s3_client):
    with Stubber(s3_client) as stub:
        stub.add_client_error("list_objects_v2", service_error_code="NoSuchBucket", http_status_code=404,
                              expected_params={"Bucket": "gone-bucket", "MaxKeys": 1})
        assert BucketProbe(client=s3_client).bucket_exists("gone-bucket") is False


def test_bucket_listable(s3_client):
    with Stubber(s3_client) as stub:
        stub.add_response("list_objects_v2", {"Name": "open-bucket", "KeyCount": 0, "IsTruncated": False},
                          {"Bucket": "open-bucket", "MaxKeys": 1})
        assert BucketProbe(client=s3_client).bucket_exists("open-bucket") is True


def test_bucket_access_denied_counts_as_existing(s3_client):
    with Stubber(s3_client) as stub:
        stub.add_client_error("list_objects_v2", service_error_code="AccessDenied", http_status_code=403)
        assert BucketProbe(client=s3_client).bucket_exists("private-bucket") is True


def test_bucket_unreachable_is_inconclusive():
    class DeadClient:
        def list_objects_v2(self, **kwargs):
            raise EndpointConnectionError(endpoint_url="https://s3.amazonaws.com")

    assert BucketProbe(client=DeadClient()).bucket_exists("whatever") is None
