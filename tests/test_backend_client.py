import asyncio
import json
import time
import unittest

import httpx

from branchdesk.clients.backend_client import AuthError, BackendClient, BackendError
from branchdesk.clients.http_client import HTTPClient
from branchdesk.core.config import Settings
from branchdesk.schemas.auth import AuthUser, Session
from branchdesk.utils.cache import LocalStore

BASE_URL = "https://project.example.co"


def token_payload(user_id="u1", access_token="access-1", expires_in=3600):
    return {
        "access_token": access_token,
        "token_type": "bearer",
        "expires_in": expires_in,
        "refresh_token": "refresh-1",
        "user": {"id": user_id, "email": "ayse@example.com", "role": "authenticated"},
    }


class BackendClientTestBase(unittest.IsolatedAsyncioTestCase):
    def handler(self, request: httpx.Request) -> httpx.Response:
        raise NotImplementedError

    async def asyncSetUp(self):
        self.requests = []

        def record(request):
            self.requests.append(request)
            return self.handler(request)

        self.settings = Settings(backend_url=BASE_URL, backend_anon_key="anon-key",
                                 http_max_retries=0, session_cache_key="session")
        self.http = HTTPClient(self.settings, transport=httpx.MockTransport(record))
        self.store = LocalStore()
        self.client = BackendClient(self.http, self.settings, self.store)
        self.events = []
        self.client.auth.on_auth_state_change(lambda event, session: self.events.append((event, session)))

    async def asyncTearDown(self):
        await self.http.aclose()


class SignInTests(BackendClientTestBase):
    def handler(self, request):
        body = json.loads(request.content)
        if body.get("password") == "secret":
            return httpx.Response(200, json=token_payload())
        return httpx.Response(400, json={"code": 400, "error_code": "invalid_credentials",
                                         "msg": "Invalid login credentials"})

    async def test_sign_in_stores_session_and_notifies(self):
        session = await self.client.auth.sign_in_with_password("ayse@example.com", "secret")

        request = self.requests[0]
        self.assertEqual(request.method, "POST")
        self.assertEqual(request.url.path, "/auth/v1/token")
        self.assertEqual(request.url.params["grant_type"], "password")
        self.assertEqual(request.headers["apikey"], "anon-key")
        self.assertEqual(session.user.id, "u1")
        self.assertIsNotNone(session.expires_at)
        self.assertEqual(self.events, [("SIGNED_IN", session)])
        self.assertEqual(json.loads(self.store.get_item("session"))["access_token"], "access-1")
        self.assertEqual(self.client.auth.access_token, "access-1")

    async def test_sign_in_failure_raises_auth_error(self):
        with self.assertRaises(AuthError) as ctx:
            await self.client.auth.sign_in_with_password("ayse@example.com", "wrong")

        self.assertEqual(ctx.exception.status_code, 400)
        self.assertEqual(ctx.exception.code, "invalid_credentials")
        self.assertEqual(ctx.exception.message, "Invalid login credentials")
        self.assertEqual(self.events, [])
        self.assertIsNone(self.store.get_item("session"))

    async def test_unsubscribed_listener_is_not_called(self):
        calls = []
        subscription = self.client.auth.on_auth_state_change(lambda e, s: calls.append(e))
        subscription.unsubscribe()

        await self.client.auth.sign_in_with_password("ayse@example.com", "secret")

        self.assertEqual(calls, [])


class SessionRestoreTests(BackendClientTestBase):
    refresh_status = 200

    def handler(self, request):
        if request.url.path == "/auth/v1/token":
            if self.refresh_status != 200:
                return httpx.Response(self.refresh_status, json={"error": "invalid_grant",
                                                                 "error_description": "Invalid Refresh Token"})
            return httpx.Response(200, json=token_payload(access_token="access-2"))
        if request.url.path == "/auth/v1/logout":
            return httpx.Response(204)
        return httpx.Response(404)

    def store_session(self, expires_at):
        session = Session(access_token="access-1", refresh_token="refresh-1",
                          expires_at=expires_at, user=AuthUser(id="u1"))
        self.store.set_item("session", session.model_dump_json())

    async def test_get_session_without_stored_session(self):
        self.assertIsNone(await self.client.auth.get_session())
        self.assertEqual(self.requests, [])

    async def test_get_session_restores_valid_session(self):
        self.store_session(int(time.time()) + 3600)

        session = await self.client.auth.get_session()

        self.assertEqual(session.access_token, "access-1")
        self.assertEqual(self.requests, [])

    async def test_get_session_refreshes_expired_session(self):
        self.store_session(int(time.time()) - 10)

        session = await self.client.auth.get_session()

        self.assertEqual(session.access_token, "access-2")
        self.assertEqual(self.requests[0].url.params["grant_type"], "refresh_token")
        self.assertEqual(json.loads(self.requests[0].content), {"refresh_token": "refresh-1"})
        self.assertEqual([e for e, _ in self.events], ["TOKEN_REFRESHED"])

    async def test_rejected_refresh_drops_session(self):
        self.refresh_status = 400
        self.store_session(int(time.time()) - 10)

        self.assertIsNone(await self.client.auth.get_session())
        self.assertIsNone(self.store.get_item("session"))
        self.assertEqual(self.events, [("SIGNED_OUT", None)])

    async def test_sign_out_revokes_and_forgets_session(self):
        self.store_session(int(time.time()) + 3600)

        await self.client.auth.sign_out()

        self.assertEqual(self.requests[0].url.path, "/auth/v1/logout")
        self.assertEqual(self.requests[0].headers["authorization"], "Bearer access-1")
        self.assertIsNone(self.store.get_item("session"))
        self.assertEqual(self.events, [("SIGNED_OUT", None)])


class SignOutFailureTests(BackendClientTestBase):
    def handler(self, request):
        return httpx.Response(500, json={"msg": "internal error"})

    async def test_sign_out_failure_still_clears_locally(self):
        self.store.set_item("session", Session(access_token="a", user=AuthUser(id="u1")).model_dump_json())

        with self.assertRaises(AuthError):
            await self.client.auth.sign_out()

        self.assertIsNone(self.store.get_item("session"))
        self.assertEqual(self.events, [("SIGNED_OUT", None)])


class TableQueryTests(BackendClientTestBase):
    def handler(self, request):
        path = request.url.path
        if request.method == "GET" and path == "/rest/v1/users":
            if request.headers["accept"] == "application/vnd.pgrst.object+json":
                if request.url.params["id"] == "eq.missing":
                    return httpx.Response(406, json={
                        "code": "PGRST116",
                        "message": "JSON object requested, multiple (or no) rows returned",
                        "details": "The result contains 0 rows",
                    })
                return httpx.Response(200, json={"id": "u1", "branch_id": "b1"})
            return httpx.Response(200, json=[{"id": "u1", "branch_id": "b1"}, {"id": "u2", "branch_id": "b1"}])
        if request.method == "PATCH" and path == "/rest/v1/shifts":
            return httpx.Response(200, json=[{"user_id": "u2", "day": "monday", "shift": "evening"}])
        if request.method == "DELETE" and path == "/rest/v1/inventory":
            return httpx.Response(200, json=[])
        return httpx.Response(404, json={"message": "not found"})

    async def test_select_sends_equality_filters(self):
        rows = await self.client.table("users").eq("branch_id", "b1").select()

        request = self.requests[0]
        self.assertEqual(request.url.params["branch_id"], "eq.b1")
        self.assertEqual(request.url.params["select"], "*")
        self.assertEqual(request.headers["authorization"], "Bearer anon-key")
        self.assertEqual(len(rows), 2)

    async def test_single_requests_object_and_fails_on_no_rows(self):
        row = await self.client.table("users").eq("id", "u1").single()
        self.assertEqual(row["id"], "u1")

        with self.assertRaises(BackendError) as ctx:
            await self.client.table("users").eq("id", "missing").single()
        self.assertEqual(ctx.exception.status_code, 406)
        self.assertEqual(ctx.exception.code, "PGRST116")
        self.assertEqual(ctx.exception.details, "The result contains 0 rows")

    async def test_update_uses_patch_with_representation(self):
        rows = await self.client.table("shifts").eq("user_id", "u2").eq("day", "monday").update({"shift": "evening"})

        request = self.requests[0]
        self.assertEqual(request.method, "PATCH")
        self.assertEqual(request.headers["prefer"], "return=representation")
        self.assertEqual(request.url.params["day"], "eq.monday")
        self.assertEqual(json.loads(request.content), {"shift": "evening"})
        self.assertEqual(rows[0]["shift"], "evening")

    async def test_delete_returns_deleted_rows(self):
        rows = await self.client.table("inventory").eq("id", 7).delete()

        self.assertEqual(self.requests[0].url.params["id"], "eq.7")
        self.assertEqual(rows, [])

    async def test_writes_require_a_filter(self):
        with self.assertRaises(ValueError):
            await self.client.table("inventory").delete()
        with self.assertRaises(ValueError):
            await self.client.table("shifts").update({"shift": "x"})
        self.assertEqual(self.requests, [])

    async def test_boolean_filter_values(self):
        await self.client.table("users").eq("break", True).select()

        self.assertEqual(self.requests[0].url.params["break"], "eq.true")

    async def test_error_response_raises_backend_error(self):
        with self.assertRaises(BackendError) as ctx:
            await self.client.table("branches").eq("id", 1).select()

        self.assertEqual(ctx.exception.status_code, 404)
        self.assertEqual(ctx.exception.message, "not found")


class AuthenticatedTableTests(BackendClientTestBase):
    def handler(self, request):
        if request.url.path == "/auth/v1/token":
            return httpx.Response(200, json=token_payload())
        return httpx.Response(200, json=[])

    async def test_table_requests_carry_session_token(self):
        await self.client.auth.sign_in_with_password("ayse@example.com", "secret")

        await self.client.table("inventory").eq("branch_id", "b1").select()

        self.assertEqual(self.requests[-1].headers["authorization"], "Bearer access-1")
        self.assertEqual(self.requests[-1].headers["apikey"], "anon-key")


class ExpiredTokenTests(BackendClientTestBase):
    refresh_status = 200

    def handler(self, request):
        if request.url.path == "/auth/v1/token":
            if request.url.params["grant_type"] == "password":
                return httpx.Response(200, json=token_payload(access_token="first", expires_in=1))
            if self.refresh_status != 200:
                return httpx.Response(self.refresh_status, json={"error": "invalid_grant",
                                                                 "error_description": "Invalid Refresh Token"})
            return httpx.Response(200, json=token_payload(access_token="second"))
        return httpx.Response(200, json=[])

    async def test_expired_token_is_refreshed_before_table_request(self):
        await self.client.auth.sign_in_with_password("ayse@example.com", "secret")

        await self.client.table("inventory").eq("branch_id", "b1").select()

        grant_types = [r.url.params.get("grant_type") for r in self.requests]
        self.assertEqual(grant_types, ["password", "refresh_token", None])
        self.assertEqual(self.requests[-1].headers["authorization"], "Bearer second")
        self.assertEqual([e for e, _ in self.events], ["SIGNED_IN", "TOKEN_REFRESHED"])

    async def test_fresh_token_is_not_refreshed_again(self):
        await self.client.auth.sign_in_with_password("ayse@example.com", "secret")
        await self.client.table("inventory").eq("branch_id", "b1").select()

        await self.client.table("users").eq("branch_id", "b1").select()

        grant_types = [r.url.params.get("grant_type") for r in self.requests]
        self.assertEqual(grant_types.count("refresh_token"), 1)
        self.assertEqual(self.requests[-1].headers["authorization"], "Bearer second")

    async def test_concurrent_requests_share_one_refresh(self):
        await self.client.auth.sign_in_with_password("ayse@example.com", "secret")

        await asyncio.gather(
            self.client.table("inventory").eq("branch_id", "b1").select(),
            self.client.table("users").eq("branch_id", "b1").select(),
        )

        grant_types = [r.url.params.get("grant_type") for r in self.requests]
        self.assertEqual(grant_types.count("refresh_token"), 1)

    async def test_rejected_refresh_signs_out_and_uses_anon_key(self):
        self.refresh_status = 400
        await self.client.auth.sign_in_with_password("ayse@example.com", "secret")

        await self.client.table("inventory").eq("branch_id", "b1").select()

        self.assertEqual(self.requests[-1].headers["authorization"], "Bearer anon-key")
        self.assertEqual(self.events[-1], ("SIGNED_OUT", None))
        self.assertIsNone(self.store.get_item("session"))


class TransportFailureTests(BackendClientTestBase):
    def handler(self, request):
        raise httpx.ConnectError("connection refused", request=request)

    async def test_transport_failure_becomes_backend_error(self):
        with self.assertRaises(BackendError):
            await self.client.table("users").eq("id", "u1").select()

    async def test_transport_failure_on_sign_in_becomes_auth_error(self):
        with self.assertRaises(AuthError):
            await self.client.auth.sign_in_with_password("ayse@example.com", "secret")


if __name__ == "__main__":
    unittest.main()
