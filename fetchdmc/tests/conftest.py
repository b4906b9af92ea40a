"""
Shared fixtures: test data paths and an offline stand-in for requests.Session
so that no test ever touches a real web service
"""
import os
import pytest


TEST_DATA = os.path.join(os.path.dirname(__file__), "test_data")


class FakeResponse:
    """Minimal requests.Response look-alike"""
    def __init__(self, status_code=200, content=b"", chunks=None,
                 reason="OK", text=""):
        self.status_code = status_code
        self.content = content
        self.chunks = chunks
        self.reason = reason
        self.text = text

    @property
    def ok(self):
        return self.status_code < 400

    def iter_content(self, chunk_size=1):
        if self.chunks is not None:
            yield from self.chunks
        elif self.content:
            yield self.content

    def __enter__(self):
        return self

    def __exit__(self, *args):
        return False


class FakeSession:
    """
    Records every GET and answers it with `handler(url, params)`, which may
    return a FakeResponse or raise
    """
    def __init__(self, handler):
        self.handler = handler
        self.calls = []
        self.headers = {}
        self.auth = None

    def get(self, url, params=None, stream=False):
        self.calls.append((url, dict(params or {})))
        return self.handler(url, params or {})


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    """Service URLs must come from the built-in defaults during tests"""
    for name in ["SERVICEBASE", "METADATAWS", "TIMESERIESWS", "SACPZWS",
                 "RESPWS"]:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def test_data():
    """Path to the test data directory"""
    return TEST_DATA


@pytest.fixture
def channel_xml():
    """Channel-level StationXML for II.BFO with three channel epochs"""
    with open(os.path.join(TEST_DATA, "test_channels.xml"), "rb") as f:
        return f.read()


@pytest.fixture
def station_xml():
    """Station-level StationXML for IU.ANMO with two station epochs"""
    with open(os.path.join(TEST_DATA, "test_stations.xml"), "rb") as f:
        return f.read()


@pytest.fixture
def make_session():
    """Factory for FakeSessions"""
    return FakeSession


@pytest.fixture
def make_response():
    """Factory for FakeResponses"""
    return FakeResponse
