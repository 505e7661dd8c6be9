"""
Unit tests for ControlPlaneClient.
"""

import unittest
from unittest.mock import MagicMock

import requests

from control_plane import ControlPlaneClient
from errors import ProviderAPIError, RegistrationError, RemovalError


def _response(status_code, payload=None, text=""):
    resp = MagicMock()
    resp.status_code = status_code
    resp.json.return_value = payload or {}
    resp.text = text
    return resp


class TestControlPlaneClient(unittest.TestCase):
    """Test token issuance and runner management calls."""

    def setUp(self):
        self.session = MagicMock()
        self.session.headers = {}
        self.client = ControlPlaneClient("acme/app", "pat-123", session=self.session)

    def test_auth_header_set(self):
        self.assertEqual(self.session.headers["Authorization"], "token pat-123")

    def test_registration_token_success(self):
        """Test a registration token is parsed from the response."""
        self.session.post.return_value = _response(
            201, {"token": "reg-abc", "expires_at": "2026-10-17T13:00:00Z"}
        )

        token = self.client.create_registration_token()

        self.assertEqual(token.token, "reg-abc")
        self.assertEqual(token.expires_at, "2026-10-17T13:00:00Z")
        url = self.session.post.call_args[0][0]
        self.assertEqual(
            url,
            "https://api.github.com/repos/acme/app/actions/runners/registration-token",
        )

    def test_registration_null_token(self):
        """Test a missing token is rejected instead of passed on."""
        self.session.post.return_value = _response(201, {"token": None})
        with self.assertRaises(RegistrationError):
            self.client.create_registration_token()

    def test_registration_literal_null_token(self):
        self.session.post.return_value = _response(201, {"token": "null"})
        with self.assertRaises(RegistrationError):
            self.client.create_registration_token()

    def test_registration_forbidden(self):
        self.session.post.return_value = _response(403, text="Resource not accessible")
        with self.assertRaises(RegistrationError) as ctx:
            self.client.create_registration_token()
        self.assertIn("403", str(ctx.exception))

    def test_registration_connection_error(self):
        self.session.post.side_effect = requests.exceptions.ConnectionError("down")
        with self.assertRaises(RegistrationError):
            self.client.create_registration_token()

    def test_removal_token_uses_remove_endpoint(self):
        self.session.post.return_value = _response(201, {"token": "rm-xyz"})

        token = self.client.create_removal_token()

        self.assertEqual(token.token, "rm-xyz")
        self.assertTrue(
            self.session.post.call_args[0][0].endswith("actions/runners/remove-token")
        )

    def test_removal_token_failure(self):
        self.session.post.side_effect = requests.exceptions.Timeout("timeout")
        with self.assertRaises(RemovalError):
            self.client.create_removal_token()

    def test_list_runners_paginates(self):
        self.session.get.side_effect = [
            _response(200, {"total_count": 3, "runners": [{"id": 1}, {"id": 2}]}),
            _response(200, {"total_count": 3, "runners": [{"id": 3}]}),
        ]

        runners = self.client.list_runners()

        self.assertEqual([r["id"] for r in runners], [1, 2, 3])
        self.assertEqual(self.session.get.call_count, 2)

    def test_list_runners_error(self):
        self.session.get.return_value = _response(500, text="boom")
        with self.assertRaises(ProviderAPIError):
            self.client.list_runners()

    def test_list_runners_connection_error(self):
        self.session.get.side_effect = requests.exceptions.ConnectionError("down")
        with self.assertRaises(ProviderAPIError):
            self.client.list_runners()

    def test_delete_runner_rejected(self):
        self.session.delete.return_value = _response(422, text="runner busy")
        with self.assertRaises(RemovalError):
            self.client.delete_runner(7)

    def test_delete_runner_already_gone(self):
        self.session.delete.return_value = _response(404)
        self.client.delete_runner(7)

    def test_prune_offline_runners(self):
        """Test only offline, idle runners with the fleet prefix are removed."""
        self.session.get.return_value = _response(
            200,
            {
                "total_count": 4,
                "runners": [
                    {"id": 1, "name": "gh-runner-a1", "status": "offline", "busy": False},
                    {"id": 2, "name": "gh-runner-b2", "status": "online", "busy": False},
                    {"id": 3, "name": "laptop", "status": "offline", "busy": False},
                    {"id": 4, "name": "gh-runner-c3", "status": "offline", "busy": False},
                ],
            },
        )
        self.session.delete.side_effect = [_response(204), _response(500, text="err")]

        removed = self.client.prune_offline_runners("gh-runner")

        self.assertEqual(removed, ["gh-runner-a1"])
        deleted_urls = [c[0][0] for c in self.session.delete.call_args_list]
        self.assertTrue(deleted_urls[0].endswith("actions/runners/1"))
        self.assertTrue(deleted_urls[1].endswith("actions/runners/4"))


if __name__ == "__main__":
    unittest.main()
