"""
Tests for the admin HTTP server and route handlers.

Runs a real AdminServer on an ephemeral localhost port.
"""

from __future__ import annotations

import http.client
import io
import shutil
import sqlite3
import tempfile
import unittest
import zipfile
from http import HTTPStatus
from pathlib import Path

import requests

from sproutvault.backup import BackupService, RestoreService, pack
from sproutvault.client import AdminClient, AuthenticationError
from sproutvault.config.runtime import ConfigReloader, RuntimeConfig
from sproutvault.server import (
    AdminServer,
    OperationInProgressError,
    RouteContext,
    check_authorization,
    get_route,
    list_routes,
    operation_lock,
)
from sproutvault.storage import StoreGuard

TOKEN = "s3cret-admin-token"


def _create_tracker_store(path: Path, migrations: list[str], baby_name: str = "Robin") -> None:
    conn = sqlite3.connect(str(path))
    conn.execute(
        "CREATE TABLE _prisma_migrations (id TEXT PRIMARY KEY, migration_name TEXT, finished_at TEXT)"
    )
    for i, name in enumerate(migrations):
        conn.execute(
            "INSERT INTO _prisma_migrations VALUES (?, ?, ?)", (str(i), name, "2025-01-01")
        )
    conn.execute("CREATE TABLE AppConfig (id TEXT PRIMARY KEY, adminPass TEXT)")
    conn.execute("INSERT INTO AppConfig VALUES ('1', 'encrypted-secret')")
    conn.execute("CREATE TABLE Baby (id INTEGER PRIMARY KEY, name TEXT)")
    conn.execute("INSERT INTO Baby (name) VALUES (?)", (baby_name,))
    conn.commit()
    conn.close()


class DeploymentTestCase(unittest.TestCase):
    """Temporary deployment wired into a RouteContext."""

    admin_token = TOKEN

    def setUp(self) -> None:
        self.temp_dir = Path(tempfile.mkdtemp())
        (self.temp_dir / "db").mkdir()
        self.db_path = self.temp_dir / "db" / "baby-tracker.db"
        self.env_path = self.temp_dir / ".env"
        _create_tracker_store(self.db_path, ["20250901000000_new"], baby_name="Live")
        self.env_path.write_text('ENC_HASH="live"\n')

        self.guard = StoreGuard(self.db_path)
        self.runtime_config = RuntimeConfig.from_file(self.env_path)
        self.context = RouteContext(
            backup_service=BackupService(self.guard, self.env_path),
            restore_service=RestoreService(
                self.guard, self.env_path, ConfigReloader(self.runtime_config)
            ),
            admin_token=self.admin_token,
            max_upload_bytes=1024 * 1024,
        )

    def tearDown(self) -> None:
        self.guard.close()
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def store_bytes(self, migrations: list[str], baby_name: str = "Restored") -> bytes:
        path = self.temp_dir / "upload-source.db"
        _create_tracker_store(path, migrations, baby_name=baby_name)
        data = path.read_bytes()
        path.unlink()
        return data


class TestOperationLock(unittest.TestCase):
    """Tests for the single-flight guard."""

    def test_second_holder_rejected(self) -> None:
        with operation_lock("store-a"):
            with self.assertRaises(OperationInProgressError):
                with operation_lock("store-a"):
                    pass

    def test_different_keys_independent(self) -> None:
        with operation_lock("store-a"):
            with operation_lock("store-b"):
                pass

    def test_released_after_error(self) -> None:
        with self.assertRaises(RuntimeError):
            with operation_lock("store-a"):
                raise RuntimeError("boom")

        with operation_lock("store-a"):
            pass


class TestRouting(DeploymentTestCase):
    """Tests for route lookup and authorization."""

    def test_get_route(self) -> None:
        handler, requires_admin = get_route("POST", "/api/database/restore/")
        self.assertTrue(requires_admin)
        self.assertIsNone(get_route("GET", "/api/database/restore"))
        self.assertFalse(get_route("GET", "/api/health")[1])

    def test_list_routes(self) -> None:
        self.assertIn("POST /api/database/pre-migration-check", list_routes())

    def test_authorization(self) -> None:
        self.assertIsNone(check_authorization(self.context, f"Bearer {TOKEN}"))
        self.assertEqual(
            check_authorization(self.context, None).status, HTTPStatus.UNAUTHORIZED
        )
        self.assertEqual(
            check_authorization(self.context, "Bearer wrong").status, HTTPStatus.UNAUTHORIZED
        )
        self.assertEqual(
            check_authorization(self.context, f"Basic {TOKEN}").status, HTTPStatus.UNAUTHORIZED
        )

    def test_authorization_without_configured_token(self) -> None:
        self.context.admin_token = ""

        response = check_authorization(self.context, "Bearer anything")

        self.assertEqual(response.status, HTTPStatus.SERVICE_UNAVAILABLE)


class TestAdminServer(DeploymentTestCase):
    """End-to-end tests against a running server."""

    def setUp(self) -> None:
        super().setUp()
        self.server = AdminServer(self.context, host="127.0.0.1", port=0)
        self.assertTrue(self.server.start())
        self.base_url = self.server.get_url()
        self.auth = {"Authorization": f"Bearer {TOKEN}"}

    def tearDown(self) -> None:
        self.server.stop()
        super().tearDown()

    def post(self, path: str, data: bytes = b"", filename: str | None = None, headers=None):
        params = {"filename": filename} if filename else None
        return requests.post(
            f"{self.base_url}{path}",
            data=data,
            params=params,
            headers=self.auth if headers is None else headers,
            timeout=30,
        )

    def test_server_running(self) -> None:
        self.assertTrue(self.server.is_running())
        self.assertNotEqual(self.server.port, 0)

    def test_health_needs_no_token(self) -> None:
        response = requests.get(f"{self.base_url}/api/health", timeout=30)

        self.assertEqual(response.status_code, 200)
        data = response.json()
        self.assertEqual(data["status"], "healthy")
        self.assertTrue(data["store_present"])
        self.assertFalse(data["store_quiesced"])

    def test_unknown_route(self) -> None:
        response = requests.get(f"{self.base_url}/api/nothing", timeout=30)

        self.assertEqual(response.status_code, 404)
        self.assertFalse(response.json()["success"])

    def test_backup_requires_token(self) -> None:
        self.assertEqual(self.post("/api/database/backup", headers={}).status_code, 401)
        self.assertEqual(
            self.post(
                "/api/database/backup", headers={"Authorization": "Bearer wrong"}
            ).status_code,
            401,
        )

    def test_backup_download(self) -> None:
        response = self.post("/api/database/backup")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.headers["Content-Type"], "application/zip")
        self.assertRegex(
            response.headers["Content-Disposition"],
            r'attachment; filename="sprout-track-backup-\d{4}-\d{2}-\d{2}\.zip"',
        )
        with zipfile.ZipFile(io.BytesIO(response.content)) as zf:
            self.assertEqual(zf.read("baby-tracker.db"), self.db_path.read_bytes())

    def test_restore_bundle(self) -> None:
        upload = pack(self.store_bytes(["20250901000000_new"]), "ENC_HASH=new\n")

        response = self.post("/api/database/restore", upload, filename="backup.zip")

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertTrue(body["success"])
        self.assertFalse(body["data"]["adminResetRequired"])
        self.assertIn("baby-tracker.db.backup-", body["data"]["storeBackup"])
        self.assertEqual(self.runtime_config.get("ENC_HASH"), "new")

    def test_restore_old_store_reports_reset(self) -> None:
        upload = pack(self.store_bytes(["20240101000000_init"]))

        response = self.post("/api/database/restore", upload, filename="backup.zip")

        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.json()["data"]["adminResetRequired"])

    def test_restore_empty_body(self) -> None:
        response = self.post("/api/database/restore", b"", filename="backup.zip")

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["error"], "No file provided")

    def test_restore_rejected_upload(self) -> None:
        live = self.db_path.read_bytes()

        response = self.post("/api/database/restore", b"not a zip", filename="backup.zip")

        self.assertEqual(response.status_code, 400)
        self.assertFalse(response.json()["success"])
        self.assertEqual(self.db_path.read_bytes(), live)

    def test_restore_failure_reports_backup(self) -> None:
        upload = pack(b"SQLite format 3\x00" + b"\xff" * 512)

        response = self.post("/api/database/restore", upload, filename="backup.zip")

        self.assertEqual(response.status_code, 500)
        self.assertIn(".backup-", response.json()["storeBackup"])

    def test_pre_migration_check(self) -> None:
        live = self.db_path.read_bytes()
        upload = pack(self.store_bytes(["20250807141402_add_feedback_model"]))

        response = self.post("/api/database/pre-migration-check", upload, filename="backup.zip")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(
            response.json()["data"],
            {
                "adminResetRequired": True,
                "latestGeneration": "20250807141402_add_feedback_model",
                "isOlderThanBaseline": True,
            },
        )
        self.assertEqual(self.db_path.read_bytes(), live)

    def test_concurrent_operation_conflict(self) -> None:
        with operation_lock(self.context.lock_key):
            response = self.post("/api/database/backup")

        self.assertEqual(response.status_code, 409)

    def test_upload_too_large(self) -> None:
        conn = http.client.HTTPConnection("127.0.0.1", self.server.port, timeout=30)
        try:
            conn.putrequest("POST", "/api/database/restore?filename=backup.zip")
            conn.putheader("Authorization", f"Bearer {TOKEN}")
            conn.putheader("Content-Length", str(10 * 1024 * 1024))
            conn.endheaders()
            response = conn.getresponse()
            self.assertEqual(response.status, 413)
            response.read()
        finally:
            conn.close()

    def test_client_round_trip(self) -> None:
        client = AdminClient(self.base_url, token=TOKEN)
        try:
            self.assertEqual(client.health()["status"], "healthy")

            path = client.download_backup(self.temp_dir / "downloads")
            self.assertTrue(path.name.startswith("sprout-track-backup-"))

            result = client.pre_migration_check(path)
            self.assertFalse(result["adminResetRequired"])

            result = client.restore(path)
            self.assertFalse(result["legacyFormat"])
        finally:
            client.close()

    def test_client_wrong_token(self) -> None:
        client = AdminClient(self.base_url, token="wrong")
        try:
            with self.assertRaises(AuthenticationError):
                client.download_backup(self.temp_dir)
        finally:
            client.close()


class TestServerWithoutToken(DeploymentTestCase):
    """Privileged routes are disabled when no token is configured."""

    admin_token = ""

    def test_backup_refused(self) -> None:
        server = AdminServer(self.context, port=0)
        server.start()
        try:
            response = requests.post(
                f"{server.get_url()}/api/database/backup",
                headers={"Authorization": "Bearer anything"},
                timeout=30,
            )
        finally:
            server.stop()

        self.assertEqual(response.status_code, 503)


class TestServerLifecycle(DeploymentTestCase):
    """Tests for starting and stopping the server."""

    def test_stop_without_start(self) -> None:
        AdminServer(self.context, port=0).stop()

    def test_start_twice(self) -> None:
        server = AdminServer(self.context, port=0)
        try:
            self.assertTrue(server.start())
            self.assertTrue(server.start())
        finally:
            server.stop()
        self.assertFalse(server.is_running())

    def test_port_in_use(self) -> None:
        first = AdminServer(self.context, port=0)
        first.start()
        try:
            second = AdminServer(self.context, port=first.port)
            self.assertFalse(second.start())
        finally:
            first.stop()


if __name__ == "__main__":
    unittest.main()
