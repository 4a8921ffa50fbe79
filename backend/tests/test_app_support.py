import logging

from fastapi import FastAPI
from fastapi.testclient import TestClient

from core import scheduler
from core.config import Settings, settings
from core.middleware import install_middleware


def test_cors_origins_comma_separated():
    s = Settings(ALLOW_ORIGINS="https://a.example.org/, https://b.example.org,,null")
    assert s.cors_origins() == ["https://a.example.org", "https://b.example.org"]


def test_cors_origins_json_array():
    s = Settings(ALLOW_ORIGINS='["https://a.example.org", "undefined"]')
    assert s.cors_origins() == ["https://a.example.org"]


def test_cors_origins_empty():
    assert Settings(ALLOW_ORIGINS="").cors_origins() == []


def test_request_logging_middleware(caplog):
    app = FastAPI()
    install_middleware(app)

    @app.get("/ping")
    def ping():
        return {"ok": True}

    with caplog.at_level(logging.INFO, logger="api"):
        resp = TestClient(app).get("/ping")

    assert resp.status_code == 200
    assert resp.headers["X-Response-Time"].endswith("ms")
    assert any("GET /ping -> 200" in r.getMessage() for r in caplog.records)


def test_scheduler_disabled(monkeypatch):
    monkeypatch.setattr(settings, "INVENTORY_SYNC_INTERVAL_MINUTES", 0)
    scheduler.start_scheduler()
    assert scheduler.scheduler.get_job("easyverein_inventory_sync") is None


def test_scheduled_sync_logs_instead_of_raising(monkeypatch, caplog):
    from modules.inventory.sync import service as sync_service

    class ExplodingSync:
        def sync(self):
            raise RuntimeError("db down")

    monkeypatch.setattr(sync_service, "InventorySyncService", ExplodingSync)

    with caplog.at_level(logging.ERROR, logger="core.scheduler"):
        scheduler.run_inventory_sync()

    assert any("db down" in r.getMessage() for r in caplog.records)
