"""Tests for the admin API client with a mocked requests session."""

import shutil
import tempfile
import unittest
from pathlib import Path
from unittest.mock import MagicMock, patch

import requests

from sproutvault.client import (
    AdminClient,
    AuthenticationError,
    ClientError,
    OperationInProgressError,
)


def _response(status: int, json_data=None, content: bytes = b"", headers=None) -> MagicMock:
    response = MagicMock()
    response.status_code = status
    response.reason = "Reason"
    response.content = content
    response.headers = headers or {}
    if json_data is None:
        response.json.side_effect = ValueError("no json")
    else:
        response.json.return_value = json_data
    return response


class TestAdminClient(unittest.TestCase):
    """Tests for AdminClient."""

    def setUp(self) -> None:
        self.temp_dir = Path(tempfile.mkdtemp())

    def tearDown(self) -> None:
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    @patch("sproutvault.client.requests.Session")
    def test_token_header(self, mock_session_class: MagicMock) -> None:
        session = MagicMock()
        session.headers = {}
        mock_session_class.return_value = session

        AdminClient("http://localhost:8080/", token="abc")

        self.assertEqual(session.headers["Authorization"], "Bearer abc")

    @patch("sproutvault.client.requests.Session")
    def test_download_backup(self, mock_session_class: MagicMock) -> None:
        session = MagicMock()
        session.request.return_value = _response(
            200,
            content=b"PK zip bytes",
            headers={"Content-Disposition": 'attachment; filename="sprout-track-backup-2025-01-02.zip"'},
        )
        mock_session_class.return_value = session

        client = AdminClient("http://localhost:8080", token="abc")
        path = client.download_backup(self.temp_dir / "out")

        self.assertEqual(path, self.temp_dir / "out" / "sprout-track-backup-2025-01-02.zip")
        self.assertEqual(path.read_bytes(), b"PK zip bytes")
        session.request.assert_called_once()
        args, kwargs = session.request.call_args
        self.assertEqual(args, ("POST", "http://localhost:8080/api/database/backup"))

    @patch("sproutvault.client.requests.Session")
    def test_restore_sends_filename(self, mock_session_class: MagicMock) -> None:
        session = MagicMock()
        session.request.return_value = _response(
            200, {"success": True, "data": {"adminResetRequired": True}}
        )
        mock_session_class.return_value = session
        upload = self.temp_dir / "backup.zip"
        upload.write_bytes(b"data")

        result = AdminClient("http://localhost:8080", token="abc").restore(upload)

        self.assertEqual(result, {"adminResetRequired": True})
        kwargs = session.request.call_args.kwargs
        self.assertEqual(kwargs["params"], {"filename": "backup.zip"})
        self.assertEqual(kwargs["data"], b"data")

    @patch("sproutvault.client.requests.Session")
    def test_missing_upload_file(self, mock_session_class: MagicMock) -> None:
        mock_session_class.return_value = MagicMock()

        with self.assertRaises(ClientError):
            AdminClient("http://localhost:8080").restore(self.temp_dir / "missing.zip")

    @patch("sproutvault.client.requests.Session")
    def test_error_statuses(self, mock_session_class: MagicMock) -> None:
        session = MagicMock()
        mock_session_class.return_value = session
        client = AdminClient("http://localhost:8080", token="abc")

        session.request.return_value = _response(401, {"error": "Invalid admin token"})
        with self.assertRaises(AuthenticationError) as cm:
            client.health()
        self.assertEqual(str(cm.exception), "Invalid admin token")

        session.request.return_value = _response(409, {"error": "busy"})
        with self.assertRaises(OperationInProgressError):
            client.health()

        session.request.return_value = _response(500)
        with self.assertRaises(ClientError) as cm:
            client.health()
        self.assertEqual(cm.exception.status_code, 500)
        self.assertIn("HTTP 500", str(cm.exception))

    @patch("sproutvault.client.requests.Session")
    def test_connection_error(self, mock_session_class: MagicMock) -> None:
        session = MagicMock()
        session.request.side_effect = requests.exceptions.ConnectionError("refused")
        mock_session_class.return_value = session

        with self.assertRaises(ClientError) as cm:
            AdminClient("http://localhost:8080").health()

        self.assertIsNone(cm.exception.status_code)

    @patch("sproutvault.client.requests.Session")
    def test_timeout(self, mock_session_class: MagicMock) -> None:
        session = MagicMock()
        session.request.side_effect = requests.exceptions.Timeout("slow")
        mock_session_class.return_value = session

        with self.assertRaises(ClientError):
            AdminClient("http://localhost:8080").health()


if __name__ == "__main__":
    unittest.main()
