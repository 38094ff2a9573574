import asyncio
import threading
import time
from types import SimpleNamespace

import pytest
from aiohttp import web

from domain.errors import ReverseLookupError
from infrastructure.http.lookup_client import SearchChLookupClient, create_lookup_client, parse_response

FOUND_XML = """<?xml version="1.0" encoding="utf-8"?>
<feed xml:lang="en" xmlns="http://www.w3.org/2005/Atom"
      xmlns:openSearch="http://a9.com/-/spec/opensearchrss/1.0/"
      xmlns:tel="http://tel.search.ch/api/spec/result/1.0/">
  <title type="text">tel.search.ch API Search Results</title>
  <openSearch:totalResults>1</openSearch:totalResults>
  <entry>
    <title type="text">Muster, Hans</title>
    <tel:name>Muster</tel:name>
    <tel:firstname>Hans</tel:firstname>
    <tel:street>Bahnhofstrasse 1</tel:street>
    <tel:zip>8001</tel:zip>
    <tel:city>Zürich</tel:city>
    <tel:phone>+41441234567</tel:phone>
  </entry>
</feed>"""

EMPTY_XML = """<?xml version="1.0" encoding="utf-8"?>
<feed xmlns="http://www.w3.org/2005/Atom"><title>none</title></feed>"""

PHONE_ONLY_XML = """<feed xmlns="http://www.w3.org/2005/Atom" xmlns:tel="http://tel.search.ch/api/spec/result/1.0/">
<entry><tel:phone>+41441234567</tel:phone><tel:name>  </tel:name></entry></feed>"""

OTHER_NS_XML = """<result xmlns:t="urn:some-newer-schema">
<entry><t:name>Beispiel AG</t:name><t:city>Bern</t:city></entry></result>"""


def quiet(_msg):
    pass


# -----------------------------
# Response parsing
# -----------------------------
def test_parse_found_entry():
    result = parse_response(FOUND_XML, "+41441234567", quiet)
    assert result.name == "Muster"
    assert result.phone == "+41441234567"
    assert result.address == "Bahnhofstrasse 1"
    assert result.zip == "8001"
    assert result.city == "Zürich"
    assert result.raw_source == FOUND_XML


def test_parse_without_entry_is_no_match():
    assert parse_response(EMPTY_XML, "+41", quiet) is None


def test_parse_phone_only_entry_is_no_match():
    assert parse_response(PHONE_ONLY_XML, "+41441234567", quiet) is None


def test_parse_falls_back_to_local_names():
    result = parse_response(OTHER_NS_XML, "+41", quiet)
    assert result.name == "Beispiel AG"
    assert result.city == "Bern"


def test_parse_malformed_xml_is_logged_not_raised():
    messages = []
    assert parse_response("<feed><entry>", "+41", messages.append) is None
    assert any(m.startswith("❌") for m in messages)


def test_parse_accepts_bytes_with_declared_encoding():
    body = FOUND_XML.replace("utf-8", "iso-8859-1").encode("iso-8859-1")
    result = parse_response(body, "+41441234567", quiet)
    assert result.city == "Zürich"
    assert isinstance(result.raw_source, str)


# -----------------------------
# Local provider
# -----------------------------
class FakeProvider:
    def __init__(self):
        self.status = 200
        self.body = FOUND_XML
        self.delay = 0.0
        self.requests = []
        self.cancelled = threading.Event()
        self.url = None

    async def handler(self, request):
        self.requests.append(dict(request.query))
        if self.delay:
            try:
                await asyncio.sleep(self.delay)
            except asyncio.CancelledError:
                self.cancelled.set()
                raise
        if isinstance(self.body, bytes):
            return web.Response(status=self.status, body=self.body, content_type="application/xml")
        return web.Response(status=self.status, text=self.body, content_type="application/xml")


@pytest.fixture
def provider():
    fake = FakeProvider()
    loop = asyncio.new_event_loop()
    thread = threading.Thread(target=loop.run_forever, daemon=True)
    thread.start()

    async def start():
        app = web.Application()
        app.router.add_get("/api/", fake.handler)
        runner = web.AppRunner(app, handler_cancellation=True)
        await runner.setup()
        site = web.TCPSite(runner, "127.0.0.1", 0)
        await site.start()
        return runner

    runner = asyncio.run_coroutine_threadsafe(start(), loop).result(timeout=5)
    host, port = runner.addresses[0][:2]
    fake.url = f"http://{host}:{port}/api/"
    yield fake
    asyncio.run_coroutine_threadsafe(runner.cleanup(), loop).result(timeout=5)
    loop.call_soon_threadsafe(loop.stop)
    thread.join(timeout=5)
    loop.close()


@pytest.fixture
def make_client(provider):
    clients = []

    def _make(**kwargs):
        kwargs.setdefault("base_url", provider.url)
        kwargs.setdefault("timeout", 5.0)
        client = SearchChLookupClient(kwargs.pop("api_key", "secret"), quiet, **kwargs)
        clients.append(client)
        return client

    yield _make
    for client in clients:
        client.close()


def test_lookup_sends_number_and_key(provider, make_client):
    result = make_client().lookup("+41441234567")
    assert result.name == "Muster"
    assert provider.requests == [{"was": "+41441234567", "key": "secret", "lang": "en"}]


def test_undecodable_body_is_no_match(provider, make_client):
    provider.body = b"<feed>\xff\xfe</feed>"
    assert make_client().lookup("+41441234567") is None


def test_utf8_bytes_body_is_decoded(provider, make_client):
    provider.body = FOUND_XML.encode("utf-8")
    assert make_client().lookup("+41441234567").city == "Zürich"


def test_non_success_status_is_no_match(provider, make_client):
    provider.status = 403
    assert make_client().lookup("+41441234567") is None
    assert len(provider.requests) == 1


def test_disabled_client_makes_no_network_calls(provider, make_client):
    client = make_client(enable=False)
    assert client.lookup("+41441234567") is None
    assert client.submit("+41441234567").result(timeout=1) is None
    assert provider.requests == []
    assert client.loop is None


def test_missing_key_makes_no_network_calls(provider, make_client):
    messages = []
    client = SearchChLookupClient("  ", messages.append, base_url=provider.url)
    assert client.lookup("+41441234567") is None
    assert client.lookup("+41441234567") is None
    assert provider.requests == []
    assert sum(m.startswith("⚠️") for m in messages) == 1


def test_deadline_raises_lookup_error_and_aborts_request(provider, make_client):
    provider.delay = 5.0
    client = make_client()
    started = time.monotonic()
    with pytest.raises(ReverseLookupError):
        client.lookup("+41441234567", timeout=0.3)
    assert time.monotonic() - started < 2.0
    assert provider.cancelled.wait(timeout=3)


def test_cancelling_submitted_lookup_abandons_request(provider, make_client):
    provider.delay = 5.0
    client = make_client()
    future = client.submit("+41441234567")
    deadline = time.monotonic() + 3
    while not provider.requests and time.monotonic() < deadline:
        time.sleep(0.02)
    assert future.cancel()
    assert provider.cancelled.wait(timeout=3)


def test_unreachable_provider_raises_lookup_error(make_client):
    client = make_client(base_url="http://127.0.0.1:9/api/", timeout=2.0)
    with pytest.raises(ReverseLookupError):
        client.lookup("+41441234567")


def test_unknown_provider_disables_lookup():
    settings = SimpleNamespace(
        enable=True, provider="Yellow", api_key="secret", base_url="http://127.0.0.1:9/", timeout=1.0, language="en"
    )
    messages = []
    client = create_lookup_client(settings, messages.append)
    assert not client.active
    assert any("Unknown lookup provider" in m for m in messages)


def test_search_ch_provider_is_selected():
    settings = SimpleNamespace(
        enable=True, provider="SearchCh", api_key="secret", base_url="http://x/", timeout=1.0, language="de"
    )
    client = create_lookup_client(settings, quiet)
    assert client.active
    assert client.language == "de"
