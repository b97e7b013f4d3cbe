import json
import tempfile
import unittest
from pathlib import Path

import httpx

from threeblades.api import ClientContext
from threeblades.client import HTTPError, NotFoundError, ThreeBladesClient, TransportError, ValidationError

ROOT = "https://api.example.test/v1"


class _Recorder:
    """MockTransport handler that serves canned JSON per (method, path) and records every request."""

    def __init__(self, routes: dict[tuple[str, str], object]) -> None:
        self.routes = routes
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        key = (request.method, request.url.path)
        if key not in self.routes:
            return httpx.Response(404, json={"detail": "Not found."})
        payload = self.routes[key]
        if callable(payload):
            payload = payload(request)
        if payload is None:
            return httpx.Response(204)
        return httpx.Response(200, json=payload)

    def paths(self, method: str | None = None) -> list[str]:
        return [r.url.path for r in self.requests if method is None or r.method == method]


def _ctx(recorder: _Recorder, **scope) -> ClientContext:
    client = ThreeBladesClient(root=ROOT, token="tok_123")
    client._http = httpx.Client(transport=httpx.MockTransport(recorder), follow_redirects=True)  # type: ignore[attr-defined]
    scope.setdefault("namespace", "acme")
    return ClientContext(client, **scope)


class TestProjectResolution(unittest.TestCase):
    def test_project_id_is_looked_up_once(self) -> None:
        rec = _Recorder(
            {
                ("GET", "/v1/acme/projects/"): [{"id": "pid", "name": "p1"}],
                ("GET", "/v1/acme/projects/pid/servers/"): [],
            }
        )
        with _ctx(rec, project="p1") as ctx:
            ctx.list_servers()
            ctx.list_servers()
            self.assertEqual(ctx.resolve_project_id(), "pid")

        self.assertEqual(rec.paths().count("/v1/acme/projects/"), 1)
        self.assertEqual(dict(rec.requests[0].url.params), {"name": "p1"})

    def test_configured_project_id_skips_lookup(self) -> None:
        rec = _Recorder({("GET", "/v1/acme/projects/pid/servers/"): []})
        with _ctx(rec, project="p1", project_id="pid") as ctx:
            ctx.list_servers()
        self.assertEqual(rec.paths(), ["/v1/acme/projects/pid/servers/"])

    def test_first_match_wins(self) -> None:
        rec = _Recorder({("GET", "/v1/acme/projects/"): [{"id": "a", "name": "dup"}, {"id": "b", "name": "dup"}]})
        with _ctx(rec) as ctx:
            self.assertEqual(ctx.project_id_by_name("dup"), "a")

    def test_no_match_is_not_found(self) -> None:
        rec = _Recorder({("GET", "/v1/acme/projects/"): []})
        with _ctx(rec, project="p1") as ctx, self.assertRaises(NotFoundError) as err:
            ctx.resolve_project_id()
        self.assertEqual(str(err.exception), "There is no project with name: 'p1'")
        self.assertEqual(err.exception.kind, "project")

    def test_failed_list_call_is_not_reported_as_not_found(self) -> None:
        def boom(request: httpx.Request) -> httpx.Response:
            return httpx.Response(500, text="upstream down")

        with _ctx(_Recorder({}), project="p1") as ctx:
            ctx.client._http = httpx.Client(transport=httpx.MockTransport(boom))  # type: ignore[attr-defined]
            with self.assertRaises(HTTPError) as err:
                ctx.resolve_project_id()
            self.assertNotIsInstance(err.exception, NotFoundError)
            self.assertEqual(err.exception.status_code, 500)
            self.assertIsNone(ctx.project_id)

    def test_connection_failure_during_lookup_is_transport_error(self) -> None:
        def refuse(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        with _ctx(_Recorder({}), project="p1") as ctx:
            ctx.client._http = httpx.Client(transport=httpx.MockTransport(refuse))  # type: ignore[attr-defined]
            with self.assertRaises(TransportError) as err:
                ctx.resolve_project_id()
            self.assertNotIsInstance(err.exception, NotFoundError)

    def test_record_without_id_is_transport_error(self) -> None:
        rec = _Recorder({("GET", "/v1/acme/projects/"): [{"name": "p1"}]})
        with _ctx(rec, project="p1") as ctx, self.assertRaises(TransportError):
            ctx.resolve_project_id()

    def test_blank_project_fails_without_request(self) -> None:
        rec = _Recorder({})
        with _ctx(rec) as ctx, self.assertRaises(ValidationError):
            ctx.list_servers()
        self.assertEqual(rec.requests, [])

    def test_blank_namespace_fails_without_request(self) -> None:
        rec = _Recorder({})
        with _ctx(rec, namespace="") as ctx, self.assertRaises(ValidationError):
            ctx.list_hosts()
        self.assertEqual(rec.requests, [])

    def test_other_project_name_does_not_touch_memo(self) -> None:
        def by_name(request: httpx.Request):
            return [{"id": "pid-" + request.url.params["name"]}]

        rec = _Recorder({("GET", "/v1/acme/projects/"): by_name})
        with _ctx(rec, project="p1") as ctx:
            self.assertEqual(ctx.project_id_by_name("other"), "pid-other")
            self.assertEqual(ctx.project_id_by_name("p1"), "pid-p1")
            self.assertEqual(ctx.project_id_by_name("p1"), "pid-p1")
            self.assertEqual(ctx.project_id, "pid-p1")
        self.assertEqual(len(rec.requests), 2)


class TestServerResolution(unittest.TestCase):
    def _rec(self) -> _Recorder:
        return _Recorder({("GET", "/v1/acme/projects/pid/servers/"): [{"id": "sid", "name": "s1"}]})

    def test_explicit_id_needs_no_request(self) -> None:
        rec = self._rec()
        with _ctx(rec, project_id="pid") as ctx:
            self.assertEqual(ctx.resolve_server_id(server_id="given"), "given")
        self.assertEqual(rec.requests, [])

    def test_name_lookup(self) -> None:
        rec = self._rec()
        with _ctx(rec, project_id="pid") as ctx:
            self.assertEqual(ctx.resolve_server_id(name="s1"), "sid")
        self.assertEqual(dict(rec.requests[0].url.params), {"name": "s1"})

    def test_falls_back_to_configured_server_and_memoizes(self) -> None:
        rec = self._rec()
        with _ctx(rec, project_id="pid", server="s1") as ctx:
            self.assertEqual(ctx.resolve_server_id(), "sid")
            self.assertEqual(ctx.resolve_server_id(), "sid")
        self.assertEqual(len(rec.requests), 1)

    def test_server_lookup_failure_propagates(self) -> None:
        rec = _Recorder({})
        with _ctx(rec, project_id="pid") as ctx, self.assertRaises(HTTPError) as err:
            ctx.resolve_server_id(name="s1")
        self.assertEqual(err.exception.status_code, 404)
        self.assertNotIsInstance(err.exception, NotFoundError)

    def test_host_lookup_failure_propagates(self) -> None:
        rec = _Recorder({("GET", "/v1/acme/hosts/"): lambda request: {"unexpected": "shape"}})
        with _ctx(rec) as ctx, self.assertRaises(TransportError) as err:
            ctx.host_id_by_name("h1")
        self.assertNotIsInstance(err.exception, NotFoundError)

    def test_nothing_to_resolve(self) -> None:
        with _ctx(self._rec(), project_id="pid") as ctx, self.assertRaises(ValidationError):
            ctx.resolve_server_id()

    def test_server_action(self) -> None:
        rec = _Recorder({("POST", "/v1/acme/projects/pid/servers/sid/start/"): None})
        with _ctx(rec, project_id="pid") as ctx:
            ctx.server_action("sid", "start")
            with self.assertRaises(ValidationError):
                ctx.server_action("sid", "reboot")
        self.assertEqual(rec.paths("POST"), ["/v1/acme/projects/pid/servers/sid/start/"])

    def test_trigger_lookups(self) -> None:
        rec = _Recorder(
            {
                ("GET", "/v1/acme/projects/pid/servers/sid/triggers/"): [{"id": "t1", "name": "nightly"}],
                ("GET", "/v1/acme/projects/pid/servers/sid/triggers/t1/"): {"id": "t1"},
            }
        )
        with _ctx(rec, project_id="pid") as ctx:
            self.assertEqual(ctx.server_trigger_by_name("sid", "nightly")["id"], "t1")
            self.assertEqual(ctx.server_trigger_by_id("sid", "t1"), {"id": "t1"})


class TestOtherLookups(unittest.TestCase):
    def test_host_user_and_file(self) -> None:
        rec = _Recorder(
            {
                ("GET", "/v1/acme/hosts/"): [{"id": "hid"}],
                ("GET", "/v1/users/profiles/"): [{"id": "uid"}],
                ("GET", "/v1/users/profiles/uid/"): {"id": "uid", "username": "bob"},
                ("GET", "/v1/acme/projects/pid/project_files/"): [{"id": "fid", "name": "main.py"}],
            }
        )
        with _ctx(rec, project_id="pid") as ctx:
            self.assertEqual(ctx.host_id_by_name("h1"), "hid")
            self.assertEqual(ctx.user_by_username("bob")["id"], "uid")
            self.assertEqual(ctx.user_by_email("bob@example.test")["id"], "uid")
            self.assertEqual(ctx.user_by_id("uid")["username"], "bob")
            self.assertEqual(ctx.file_by_name("main.py")["id"], "fid")

        params = [dict(r.url.params) for r in rec.requests]
        self.assertEqual(
            params,
            [{"name": "h1"}, {"username": "bob"}, {"email": "bob@example.test"}, {}, {"name": "main.py"}],
        )

    def test_blank_lookup_value_is_validation_error(self) -> None:
        rec = _Recorder({})
        with _ctx(rec) as ctx, self.assertRaises(ValidationError):
            ctx.host_id_by_name("")
        self.assertEqual(rec.requests, [])


class TestResources(unittest.TestCase):
    def test_list_query_combines_filters_and_paging(self) -> None:
        from threeblades.flags import FilterSet, ListFlags

        rec = _Recorder({("GET", "/v1/acme/projects/"): {"count": 0, "results": []}})
        filters = FilterSet()
        filters.set("private=true")
        with _ctx(rec) as ctx:
            self.assertEqual(ctx.list_projects(ListFlags(limit=5, order="name"), filters), [])
        self.assertEqual(dict(rec.requests[0].url.params), {"private": "true", "limit": "5", "ordering": "name"})

    def test_updates_are_partial(self) -> None:
        rec = _Recorder({("PATCH", "/v1/acme/hosts/hid/"): {"id": "hid", "port": 2222}})
        with _ctx(rec) as ctx:
            ctx.update_host("hid", {"port": 2222})
        self.assertEqual(json.loads(rec.requests[0].content), {"port": 2222})

    def test_billing_kinds(self) -> None:
        rec = _Recorder({("GET", "/v1/acme/billing/plans/"): [{"id": "plan1"}]})
        with _ctx(rec) as ctx:
            self.assertEqual(ctx.list_billing("plans"), [{"id": "plan1"}])
            with self.assertRaises(ValidationError):
                ctx.list_billing("coupons")

    def test_obtain_token_posts_credentials_without_auth(self) -> None:
        rec = _Recorder({("POST", "/v1/auth/jwt-token-auth/"): {"token": "jwt-abc"}})
        with _ctx(rec) as ctx:
            self.assertEqual(ctx.obtain_token("bob", "pw"), "jwt-abc")
        self.assertEqual(json.loads(rec.requests[0].content), {"username": "bob", "password": "pw"})
        self.assertIsNone(rec.requests[0].headers.get("authorization"))

    def test_obtain_token_requires_token_in_response(self) -> None:
        rec = _Recorder({("POST", "/v1/auth/jwt-token-auth/"): {"non_field_errors": ["bad"]}})
        with _ctx(rec) as ctx, self.assertRaises(ValidationError):
            ctx.obtain_token("bob", "pw")

    def test_upload_file_is_multipart(self) -> None:
        rec = _Recorder({("POST", "/v1/acme/projects/pid/project_files/"): {"id": "fid"}})
        with tempfile.TemporaryDirectory() as td:
            path = Path(td) / "main.py"
            path.write_text("print('hi')\n", encoding="utf-8")
            with _ctx(rec, project_id="pid") as ctx:
                self.assertEqual(ctx.upload_file(path), {"id": "fid"})

        request = rec.requests[0]
        self.assertTrue(request.headers["content-type"].startswith("multipart/form-data"))
        self.assertIn(b'name="file"; filename="main.py"', request.content)
        self.assertIn(b"print('hi')", request.content)
        self.assertIn(b'name="project"', request.content)

    def test_upload_from_content_is_json(self) -> None:
        rec = _Recorder({("POST", "/v1/acme/projects/pid/project_files/"): {"id": "fid"}})
        with _ctx(rec, project_id="pid") as ctx:
            ctx.upload_file(name="a.txt", content="aGk=")
        self.assertEqual(
            json.loads(rec.requests[0].content),
            {"project": "pid", "name": "a.txt", "base64_data": "aGk="},
        )


if __name__ == "__main__":
    unittest.main()
