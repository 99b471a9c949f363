from __future__ import annotations

import os
import unittest
from types import SimpleNamespace
from unittest.mock import patch

from timeclock.errors import ApiError
from timeclock.security import (
    ROLE_ADMIN,
    ROLE_EMPLOYEE,
    client_ip,
    create_access_token,
    decode_token,
    ensure_login_attempt_allowed,
    hash_password,
    is_ip_allowed,
    register_login_failure,
    register_login_success,
    verify_admin_credentials,
    verify_password,
)
from timeclock.settings import get_allowed_punch_ips, get_settings, get_trusted_proxy_ips

TEST_ENV = {
    "JWT_SECRET": "timeclock-test-secret-0123456789abcdef",
    "ADMIN_USER": "admin",
}


class SecurityTests(unittest.TestCase):
    def setUp(self) -> None:
        get_settings.cache_clear()

    def tearDown(self) -> None:
        get_settings.cache_clear()

    def test_empty_allow_list_admits_every_ip(self) -> None:
        self.assertTrue(is_ip_allowed("10.0.0.5", []))
        self.assertTrue(is_ip_allowed(None, []))

    def test_allow_list_requires_exact_match(self) -> None:
        allow_list = ["10.0.0.5", "10.0.0.6"]
        self.assertTrue(is_ip_allowed("10.0.0.6", allow_list))
        self.assertFalse(is_ip_allowed("10.0.0.7", allow_list))
        self.assertFalse(is_ip_allowed(None, allow_list))

    def test_allow_list_is_read_from_csv_setting(self) -> None:
        with patch.dict(os.environ, {"ALLOWED_PUNCH_IPS": " 10.0.0.5, ,10.0.0.6 "}, clear=False):
            get_settings.cache_clear()
            self.assertEqual(get_allowed_punch_ips(), ["10.0.0.5", "10.0.0.6"])

    def test_forwarded_header_ignored_from_untrusted_peer(self) -> None:
        request = SimpleNamespace(
            client=SimpleNamespace(host="203.0.113.9"),
            headers={"x-forwarded-for": "10.0.0.5", "x-real-ip": "10.0.0.5"},
        )
        with patch.dict(os.environ, {"TRUSTED_PROXY_IPS": ""}, clear=False):
            get_settings.cache_clear()
            self.assertEqual(client_ip(request), "203.0.113.9")  # type: ignore[arg-type]

    def test_forwarded_header_used_behind_trusted_proxy(self) -> None:
        with patch.dict(os.environ, {"TRUSTED_PROXY_IPS": "10.0.0.1, 10.0.0.2"}, clear=False):
            get_settings.cache_clear()
            self.assertEqual(get_trusted_proxy_ips(), ["10.0.0.1", "10.0.0.2"])

            forwarded = SimpleNamespace(
                client=SimpleNamespace(host="10.0.0.1"),
                headers={"x-forwarded-for": "198.51.100.7, 10.0.0.1"},
            )
            real_ip = SimpleNamespace(client=SimpleNamespace(host="10.0.0.2"), headers={"x-real-ip": " 198.51.100.8 "})
            bare = SimpleNamespace(client=SimpleNamespace(host="10.0.0.2"), headers={})

            self.assertEqual(client_ip(forwarded), "198.51.100.7")  # type: ignore[arg-type]
            self.assertEqual(client_ip(real_ip), "198.51.100.8")  # type: ignore[arg-type]
            self.assertEqual(client_ip(bare), "10.0.0.2")  # type: ignore[arg-type]

    def test_missing_peer_has_no_client_ip(self) -> None:
        request = SimpleNamespace(client=None, headers={"x-forwarded-for": "10.0.0.5"})
        self.assertIsNone(client_ip(request))  # type: ignore[arg-type]

    def test_employee_token_round_trip(self) -> None:
        with patch.dict(os.environ, TEST_ENV, clear=False):
            get_settings.cache_clear()
            token, expires_in, claims = create_access_token(
                sub="alice",
                username="alice",
                role=ROLE_EMPLOYEE,
                employee_id=7,
                expires_minutes=60,
            )
            payload = decode_token(token, expected_role=ROLE_EMPLOYEE)

        self.assertEqual(expires_in, 3600)
        self.assertEqual(payload["employee_id"], 7)
        self.assertEqual(payload["jti"], claims["jti"])

    def test_employee_token_cannot_reach_admin_routes(self) -> None:
        with patch.dict(os.environ, TEST_ENV, clear=False):
            get_settings.cache_clear()
            token, _, _ = create_access_token(sub="alice", username="alice", role=ROLE_EMPLOYEE, employee_id=7)
            with self.assertRaises(ApiError) as ctx:
                decode_token(token, expected_role=ROLE_ADMIN)

        self.assertEqual(ctx.exception.status_code, 403)
        self.assertEqual(ctx.exception.code, "FORBIDDEN")

    def test_tampered_token_is_rejected(self) -> None:
        with patch.dict(os.environ, TEST_ENV, clear=False):
            get_settings.cache_clear()
            token, _, _ = create_access_token(sub="admin", username="admin")
            with self.assertRaises(ApiError) as ctx:
                decode_token(token[:-2] + "xx", expected_role=ROLE_ADMIN)

        self.assertEqual(ctx.exception.code, "INVALID_TOKEN")

    def test_password_hash_and_admin_credentials(self) -> None:
        password_hash = hash_password("s3cret")
        self.assertTrue(verify_password("s3cret", password_hash))
        self.assertFalse(verify_password("wrong", password_hash))
        self.assertFalse(verify_password("s3cret", "not-a-hash"))

        with patch.dict(os.environ, {**TEST_ENV, "ADMIN_PASS_HASH": f"'{password_hash}'"}, clear=False):
            get_settings.cache_clear()
            self.assertTrue(verify_admin_credentials("admin", "s3cret"))
            self.assertFalse(verify_admin_credentials("root", "s3cret"))

    def test_login_throttle_blocks_after_repeated_failures(self) -> None:
        key = "employee:throttle-test"
        register_login_success(key)
        for _ in range(10):
            ensure_login_attempt_allowed(key)
            register_login_failure(key)

        with self.assertRaises(ApiError) as ctx:
            ensure_login_attempt_allowed(key)
        self.assertEqual(ctx.exception.status_code, 429)

        register_login_success(key)
        ensure_login_attempt_allowed(key)


if __name__ == "__main__":
    unittest.main()
