"""
Tests for the HTTP API and the realtime channel.
"""
import pytest
import requests
from fastapi.testclient import TestClient

from api.config import Config
from api.main import create_app
from api.routes import proxy
from api.service import MonitorService
from monitor.database import db_connect, db_get_config, db_init, db_replace_listings, db_set_config
from monitor.errors import AuthenticationError, TransportError
from monitor.models import Listing
from monitor.notifier import EmailNotifier

RESULTS_HTML = """
<div id="content"><ul class="hz-Listings hz-Listings--list-view">
  <li class="hz-Listing hz-Listing--list-item">
    <a class="hz-Listing-coverLink" href="/v/1"></a>
    <img class="hz-Listing-image-item" src="/img/1.jpg">
    <h3 class="hz-Listing-title">Gazelle</h3>
    <p class="hz-Listing-description">Nette fiets</p>
    <p class="hz-Listing-price">€ 250</p>
  </li>
</ul></div>
"""


class FakePage:
    url = "https://site.example/l/fietsen/"

    async def wait_for_selector(self, selector, state=None, timeout=None):
        return None

    async def content(self):
        return RESULTS_HTML

    async def close(self):
        pass


class FakeSession:
    def __init__(self):
        self.fail = None
        self.invalidated = 0

    def update_settings(self, website):
        pass

    def invalidate(self):
        self.invalidated += 1

    async def ensure_ready(self):
        if self.fail is not None:
            raise self.fail

    async def open_target(self, target):
        return FakePage()

    async def close(self):
        pass


class Outbox:
    def __init__(self):
        self.sent = []
        self.error = None

    def __call__(self, settings, to, subject, html):
        if self.error is not None:
            raise self.error
        self.sent.append((to, subject, html))
        return "250 OK"


@pytest.fixture
def db_path(tmp_path):
    path = str(tmp_path / "monitor.db")
    conn = db_connect(path)
    db_init(conn)
    db_set_config(conn, "website", {
        "loginUrl": "https://site.example/login",
        "targetUrl": "https://site.example/l/fietsen/",
        "selectors": ["#content"],
    })
    db_set_config(conn, "schedule", "*/10 * * * *")
    db_set_config(conn, "email", {
        "enabled": False,
        "service": "gmail",
        "auth": {"user": "monitor@example.com", "pass": "pw"},
        "from": "monitor@example.com",
        "to": "me@example.com",
        "apiKey": "secret-key",
    })
    conn.close()
    return path


@pytest.fixture
def outbox():
    return Outbox()


@pytest.fixture
def service(db_path, outbox):
    return MonitorService(db_path, session=FakeSession(), notifier=EmailNotifier(outbox))


@pytest.fixture
def client(service, tmp_path, monkeypatch):
    monkeypatch.setattr(Config, "DATA_DIR", str(tmp_path / "data"))
    monkeypatch.setattr(Config, "DB_PATH", service.db_path)
    app = create_app(service, scheduler_enabled=False)
    with TestClient(app) as c:
        yield c


def test_health(client):
    resp = client.get("/api/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"


def test_items_empty(client):
    assert client.get("/api/items").json() == {"listings": []}


def test_items_use_dashboard_field_names(client, service):
    conn = db_connect(service.db_path)
    db_replace_listings(conn, "#content", [
        Listing(title="Step", price="€ 9", url="https://site.example/v/2", image_url="https://site.example/s.jpg"),
    ])
    conn.close()

    listings = client.get("/api/items").json()["listings"]
    assert len(listings) == 1
    assert listings[0]["imageUrl"] == "https://site.example/s.jpg"
    assert listings[0]["selector"] == "#content"
    assert listings[0]["timestamp"]


def test_get_config(client):
    body = client.get("/api/config").json()
    assert body["schedule"] == "*/10 * * * *"
    assert body["website"]["selectors"] == ["#content"]
    assert body["email"]["apiKey"] == "secret-key"


def test_update_config_reanchors_schedule(client, service):
    resp = client.post("/api/config", json={"schedule": "0 */2 * * *", "theme": {"mode": "dark"}})
    assert resp.status_code == 200
    assert resp.json()["success"] is True
    assert service.orchestrator.schedule_interval_ms == 2 * 60 * 60 * 1000

    conn = db_connect(service.db_path)
    assert db_get_config(conn, "schedule") == "0 */2 * * *"
    assert db_get_config(conn, "theme") == {"mode": "dark"}
    conn.close()


def test_update_website_forces_new_login(client, service):
    client.post("/api/config", json={"website": {"targetUrl": "https://site.example/other", "selectors": ["#x"]}})
    assert service.session.invalidated == 1
    assert client.get("/api/config").json()["website"]["targetUrl"] == "https://site.example/other"


def test_manual_check(client):
    resp = client.post("/api/check")
    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is True
    assert body["results"]["targets"][0]["newItems"] == 1

    listings = client.get("/api/items").json()["listings"]
    assert listings[0]["title"] == "Gazelle"
    assert listings[0]["imageUrl"] == "https://site.example/img/1.jpg"


def test_manual_check_rejected_while_running(client, service):
    service.orchestrator.is_check_running = True
    try:
        resp = client.post("/api/check")
    finally:
        service.orchestrator.is_check_running = False
    assert resp.status_code == 429
    assert resp.json() == {"error": "Check already running"}


def test_manual_check_failure(client, service):
    service.session.fail = AuthenticationError("Login verification failed")
    resp = client.post("/api/check")
    assert resp.status_code == 500
    body = resp.json()
    assert body["code"] == "AUTH_FAILED"
    assert body["details"] == "Login verification failed"
    assert service.orchestrator.is_check_running is False


def test_check_events_reach_websocket_clients(client):
    with client.websocket_connect("/ws") as ws:
        first = ws.receive_json()
        assert first["event"] == "nextCheck"
        assert isinstance(first["data"]["nextCheck"], int)

        client.post("/api/check")
        events = [ws.receive_json()["event"] for _ in range(3)]
        assert events == ["checking", "listingsUpdate", "nextCheck"]


def test_websocket_ignores_client_frames(client, service):
    with client.websocket_connect("/ws") as ws:
        assert ws.receive_json()["event"] == "nextCheck"
        ws.send_bytes(b"\x00\x01")
        ws.send_text("ping")

        client.post("/api/check")
        assert ws.receive_json()["event"] == "checking"
        assert len(service.publisher.connections) == 1
    assert service.publisher.connections == set()


def test_test_email_requires_api_key(client, outbox):
    resp = client.post("/api/test-email", json={}, headers={"x-api-key": "wrong"})
    assert resp.status_code == 401
    assert outbox.sent == []


def test_test_email_sends(client, outbox):
    resp = client.post("/api/test-email", json={"to": "other@example.com"}, headers={"x-api-key": "secret-key"})
    assert resp.status_code == 200
    assert resp.json()["info"] == "250 OK"
    assert outbox.sent[0][0] == "other@example.com"
    assert "Test Email" in outbox.sent[0][2]


def test_send_email_transport_failure(client, outbox):
    outbox.error = TransportError("connection refused")
    resp = client.post(
        "/api/send-email",
        json={"to": "me@example.com", "subject": "Hi", "content": "<p>x</p>"},
        headers={"x-api-key": "secret-key"},
    )
    assert resp.status_code == 500
    assert resp.json()["code"] == "TRANSPORT_FAILED"


def test_send_email_unconfigured(client, service):
    conn = db_connect(service.db_path)
    db_set_config(conn, "email", {"apiKey": "secret-key"})
    conn.close()
    resp = client.post(
        "/api/send-email",
        json={"to": "me@example.com", "subject": "Hi", "content": "<p>x</p>"},
        headers={"x-api-key": "secret-key"},
    )
    assert resp.status_code == 500
    assert resp.json()["error"] == "Email service not configured"


def test_proxy_image_requires_url(client):
    assert client.get("/api/proxy-image").status_code == 400


class FakeImageResponse:
    headers = {"content-type": "image/png"}

    def __init__(self, chunks):
        self.chunks = chunks
        self.chunk_sizes = []
        self.closed = False

    def iter_content(self, chunk_size=1):
        self.chunk_sizes.append(chunk_size)
        yield from self.chunks

    def close(self):
        self.closed = True


def test_proxy_image_streams_content(client, monkeypatch):
    upstream = FakeImageResponse([b"\x89PNG", b"\r\n\x1a\n", b"rest"])
    monkeypatch.setattr(proxy, "fetch_image", lambda url, referer="": upstream)
    resp = client.get("/api/proxy-image", params={"url": "https://site.example/a.png"})
    assert resp.status_code == 200
    assert resp.content == b"\x89PNG\r\n\x1a\nrest"
    assert resp.headers["content-type"] == "image/png"
    assert resp.headers["cache-control"] == "public, max-age=31536000"
    assert upstream.chunk_sizes == [proxy.CHUNK_SIZE]
    assert upstream.closed


def test_proxy_image_upstream_error(client, monkeypatch):
    def boom(url, referer=""):
        raise requests.ConnectionError("unreachable")

    monkeypatch.setattr(proxy, "fetch_image", boom)
    resp = client.get("/api/proxy-image", params={"url": "https://site.example/a.png"})
    assert resp.status_code == 500


def test_export_and_reset(client, service):
    conn = db_connect(service.db_path)
    db_replace_listings(conn, "#content", [Listing(title="A", url="1"), Listing(title="B", url="2")])
    conn.close()

    resp = client.get("/api/export/csv")
    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("text/csv")
    lines = resp.text.strip().splitlines()
    assert lines[0].startswith("id,title,price,imageUrl")
    assert len(lines) == 3

    assert client.post("/api/reset").json() == {"success": True, "removed": 2}
    assert client.get("/api/items").json() == {"listings": []}
