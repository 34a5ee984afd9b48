# =============================================================================
# tests/integration/test_offline_engine.py
# Integration Tests for OfflineEngine
# =============================================================================
"""
End-to-end behavior of the engine over a real SQLite store and a fake
remote: install/activate, fetch routing, offline writes, replay on
reconnect, and the message API.
"""

import pytest

from edge_core.config.settings import with_overrides
from edge_core.offline import notifications
from edge_core.offline.commands import ForceSync, GetStatus, StoreData
from edge_core.offline.lifecycle import LifecycleState
from edge_core.offline.local_database import LocalDatabase
from edge_core.offline.models import HttpRequest, HttpResponse
from edge_core.offline.offline_engine import OfflineEngine


class TestInstallActivate:
    """Test the platform lifecycle events"""

    def test_install_precaches_critical_resources(self, engine, remote):
        generation = engine.on_install()

        assert generation.state == LifecycleState.WAITING
        assert set(remote.urls()) >= {"/", "/offline.html", "/manifest.json", "/api/menu", "/api/settings"}

        engine.on_activate()
        assert engine.cache.lookup(HttpRequest("/manifest.json")) is not None

    def test_new_version_replaces_old_caches(self, engine, store):
        engine.on_install()
        engine.on_activate()

        engine.settings = with_overrides(engine.settings, cache_name="edge-offline-v2")
        engine.on_install()
        engine.on_activate()

        assert store.cache_names() == ["edge-offline-v2"]
        assert engine.status()["lifecycle"]["active"] == "edge-offline-v2"

    def test_offline_reinstall_keeps_serving_cache(self, engine, remote):
        engine.on_install()
        engine.on_activate()
        remote.online = False

        generation = engine.on_install()
        response = engine.on_fetch(HttpRequest("/api/menu"))

        assert generation.state == LifecycleState.REDUNDANT
        assert engine.status()["lifecycle"]["active"] == "edge-offline-v1"
        assert response.status == 200
        assert response.from_cache

    def test_open_client_holds_back_new_version(self, engine, settings, store):
        engine.on_install()
        engine.on_activate()
        client = engine.acquire_client()

        engine.settings = with_overrides(settings, cache_name="edge-offline-v2")
        waiting = engine.on_install()

        assert engine.on_activate() is None
        assert waiting.state == LifecycleState.WAITING
        assert engine.cache.cache_name == "edge-offline-v1"

        assert engine.release_client(client) is waiting
        assert waiting.state == LifecycleState.ACTIVE
        assert store.cache_names() == ["edge-offline-v2"]


class TestFetch:
    """Test on_fetch routing"""

    def test_menu_served_from_cache_within_ttl(self, engine, remote, clock):
        engine.on_fetch(HttpRequest("/api/menu"))
        clock.advance(1000)

        response = engine.on_fetch(HttpRequest("/api/menu"))

        assert response.from_cache
        assert remote.urls() == ["/api/menu"]

    def test_offline_write_is_queued_and_replayed(self, engine, remote, notifier):
        """POST /api/orders offline -> 202 + queued; reconnect -> delivered once"""
        engine.connectivity.set_online(False)
        remote.online = False

        response = engine.on_fetch(HttpRequest("/api/orders", "POST", body=b'{"table": 4}'))

        assert response.status == 202
        assert response.json() == {"error": "Offline", "message": "This request will be synced when online"}
        assert engine.sync.status().count == 1

        remote.online = True
        engine.connectivity.check_connection()

        assert engine.sync.status().count == 0
        assert remote.urls("POST") == ["/api/orders", "/api/orders"]
        completed = notifier.recent(notifications.SYNC_COMPLETED)[-1]["data"]
        assert completed["successful"] == 1

    def test_online_write_goes_straight_through(self, engine, remote):
        response = engine.on_fetch(HttpRequest("/api/orders", "POST", body=b"{}"))

        assert response.status == 200
        assert engine.sync.status().count == 0

    def test_queued_task_carries_tenant_header(self, settings, store, remote, notifier, clock, inline):
        engine = OfflineEngine(
            with_overrides(settings, tenant_id="tenant-42"),
            store=store, remote=remote, notifier=notifier,
            probe=lambda: False, scheduler=inline, executor=inline, clock=clock,
        )
        engine.start(background=False)
        remote.online = False

        engine.on_fetch(HttpRequest("/api/orders", "POST", body=b"{}"))

        task = engine.sync.pending_tasks()[0]
        assert task.payload["headers"]["X-Tenant-ID"] == "tenant-42"
        engine.shutdown()

    def test_offline_orders_read_from_mirror(self, engine, remote):
        engine.store_offline_data(orders=[{"id": "o1", "total": 20}])
        remote.online = False

        response = engine.on_fetch(HttpRequest("/api/orders"))

        assert response.status == 200
        assert response.offline
        assert response.json() == [{"id": "o1", "total": 20}]

    def test_offline_navigation_gets_offline_page(self, engine, remote):
        remote.responses["/offline.html"] = HttpResponse(body=b"<h1>Offline</h1>")
        engine.on_install()
        engine.on_activate()
        remote.online = False

        response = engine.on_fetch(HttpRequest("/reservations", navigate=True))
        assert response.body == b"<h1>Offline</h1>"

    def test_uncached_asset_offline_is_503(self, engine, remote):
        remote.online = False
        response = engine.on_fetch(HttpRequest("/images/logo.webp"))

        assert response.status == 503
        assert response.offline

    def test_cross_origin_requests_ignored(self, settings, store, remote, notifier, clock, inline):
        engine = OfflineEngine(
            with_overrides(settings, origin="https://pos.example.com"),
            store=store, remote=remote, notifier=notifier,
            probe=lambda: True, scheduler=inline, executor=inline, clock=clock,
        )

        assert engine.on_fetch(HttpRequest("https://cdn.other.com/lib.js")) is None
        assert engine.on_fetch(HttpRequest("https://pos.example.com/api/menu")).status == 200
        assert engine.on_fetch(HttpRequest("/api/menu")).status == 200


class TestSyncTrigger:
    """Test the background-sync event"""

    def test_offline_sync_tag_drains(self, engine, remote):
        remote.online = False
        engine.connectivity.set_online(False)
        engine.on_fetch(HttpRequest("/api/inventory/sku-1", "PATCH", body=b"{}"))
        remote.online = True

        result = engine.on_sync("offline-sync")
        assert result.successful == 1

    def test_other_tags_ignored(self, engine):
        assert engine.on_sync("periodic-refresh") is None


class TestMessages:
    """Test the message API"""

    def test_store_and_get_offline_data(self, engine):
        reply = engine.on_message({
            "type": "STORE_OFFLINE_DATA",
            "data": {
                "orders": [{"id": "o1"}],
                "customers": [{"id": "c1", "name": "Lea"}],
                "settings": {"currency": "CHF"},
            },
        })
        assert reply == {"success": True}

        data = engine.on_message({"type": "GET_OFFLINE_DATA"})["data"]
        assert data["orders"] == [{"id": "o1"}]
        assert data["customers"] == [{"id": "c1", "name": "Lea"}]
        assert data["inventory"] == []
        assert data["settings"] == {"currency": "CHF"}

    def test_last_write_wins(self, engine):
        engine.execute(StoreData(orders=[{"id": "o1", "status": "paid", "updated_at": 200}]))
        engine.execute(StoreData(orders=[{"id": "o1", "status": "open", "updated_at": 100}]))
        assert engine.store.get(LocalDatabase.ORDERS, "o1")["status"] == "paid"

        engine.execute(StoreData(orders=[{"id": "o1", "status": "closed", "updated_at": 300}]))
        assert engine.store.get(LocalDatabase.ORDERS, "o1")["status"] == "closed"

    def test_force_sync_while_offline_consumes_a_retry(self, engine, remote):
        remote.online = False
        engine.connectivity.set_online(False)
        engine.on_fetch(HttpRequest("/api/orders", "POST", body=b"{}"))

        reply = engine.execute(ForceSync())

        assert reply["success"]
        assert reply["result"]["retried"] == 1
        assert engine.sync.pending_tasks()[0].retry_count == 1

    def test_clear_cache(self, engine, notifier):
        engine.on_fetch(HttpRequest("/api/menu"))
        assert engine.on_message({"type": "CLEAR_CACHE"}) == {"success": True}

        assert engine.cache.status()["entries"] == 0
        assert notifier.recent(notifications.CACHE_CLEARED)

    def test_status(self, engine):
        engine.on_fetch(HttpRequest("/api/menu"))
        status = engine.execute(GetStatus())["status"]

        assert status["cache"]["entries"] == 1
        assert status["sync"]["count"] == 0
        assert status["connectivity"]["is_online"] is True
        assert set(status["offline_records"]) == set(LocalDatabase.DOMAIN_PARTITIONS)

    def test_skip_waiting(self, engine, settings):
        engine.on_install()
        engine.on_activate()
        engine.acquire_client()

        engine.settings = with_overrides(settings, cache_name="edge-offline-v2")
        generation = engine.on_install()
        assert engine.on_activate() is None

        assert engine.on_message({"type": "SKIP_WAITING"}) == {"success": True}
        assert generation.state == LifecycleState.ACTIVE

    def test_full_resync_drops_records_deleted_remotely(self, engine, remote):
        engine.on_message({"type": "STORE_OFFLINE_DATA", "data": {"orders": [{"id": "o1"}, {"id": "o2"}]}})
        engine.on_message({"type": "STORE_OFFLINE_DATA", "data": {"customers": [{"id": "c1"}]}})

        reply = engine.on_message({
            "type": "STORE_OFFLINE_DATA",
            "data": {"orders": [{"id": "o2"}], "replace": True},
        })

        assert reply == {"success": True}
        data = engine.on_message({"type": "GET_OFFLINE_DATA"})["data"]
        assert data["orders"] == [{"id": "o2"}]
        assert data["customers"] == [{"id": "c1"}]

        remote.online = False
        assert engine.on_fetch(HttpRequest("/api/orders")).json() == [{"id": "o2"}]

    def test_incremental_store_keeps_other_records(self, engine):
        engine.execute(StoreData(orders=[{"id": "o1"}, {"id": "o2"}]))
        engine.execute(StoreData(orders=[{"id": "o2", "total": 5}]))

        ids = [r["id"] for r in engine.get_offline_data()["orders"]]
        assert ids == ["o1", "o2"]

    def test_record_without_id_is_rejected_whole(self, engine, notifier):
        reply = engine.on_message({
            "type": "STORE_OFFLINE_DATA",
            "data": {"orders": [{"id": "o1"}], "inventory": [{"name": "flour"}]},
        })

        assert reply["success"] is False
        assert reply["error"]["error_type"] == "StorageError"
        assert reply["error"]["details"]["partition"] == "inventory"
        assert engine.store.count(LocalDatabase.ORDERS) == 0
        assert engine.store.count(LocalDatabase.INVENTORY) == 0
    def test_unknown_message(self, engine, notifier):
        reply = engine.on_message({"type": "MESH_DISCOVER"})

        assert reply["success"] is False
        assert reply["error"]["code"] == "CMD_001"


class TestEngineLifecycle:
    """Test construction and shutdown"""

    def test_context_manager_starts_and_stops_timers(self, settings, store, remote, clock, inline):
        engine = OfflineEngine(
            settings, store=store, remote=remote,
            probe=lambda: True, scheduler=inline, executor=inline, clock=clock,
        )
        with engine:
            assert engine.lifecycle.timers_running
            assert engine.connectivity.is_monitoring

        assert not engine.lifecycle.timers_running
        assert not engine.connectivity.is_monitoring

    def test_from_config(self, tmp_path, monkeypatch):
        path = tmp_path / "edge.toml"
        path.write_text(
            '[offline]\n'
            'cache_name = "edge-offline-v9"\n'
            f'db_path = "{(tmp_path / "cfg.db").as_posix()}"\n'
        )
        monkeypatch.delenv("EDGE_CACHE_NAME", raising=False)
        monkeypatch.delenv("EDGE_DB_PATH", raising=False)

        engine = OfflineEngine.from_config(path, probe=lambda: False)

        assert engine.cache.cache_name == "edge-offline-v9"
        assert engine.store.db_path == tmp_path / "cfg.db"
        engine.shutdown()
