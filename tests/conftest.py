import pytest

from probe_middleware import EMPTY_RESULT, HttpResult


class FakeHttpProbe:
    """Stands in for HttpProbe; records which hosts were fetched."""

    def __init__(self, body="", headers=None, status=200, reason="OK", https_headers=None):
        self._body = HttpResult(status=status, reason=reason, headers={}, body=body) if body else EMPTY_RESULT
        self._head = HttpResult(status=status, reason=reason, headers=dict(headers or {})) if headers else EMPTY_RESULT
        self._https_head = (HttpResult(status=404, reason="Not Found", headers=dict(https_headers))
                            if https_headers else EMPTY_RESULT)
        self.calls = []

    def fetch_body(self, host):
        self.calls.append(("body", host))
        return self._body

    def fetch_head(self, host):
        self.calls.append(("head", host))
        return self._head

    def fetch_https_head(self, host):
        self.calls.append(("https_head", host))
        return self._https_head


class FakeBucketProbe:
    def __init__(self, exists):
        self.exists = exists
        self.calls = []

    def bucket_exists(self, name):
        self.calls.append(name)
        return self.exists


@pytest.fixture
def fake_http():
    return FakeHttpProbe


@pytest.fixture
def fake_bucket():
    return FakeBucketProbe
