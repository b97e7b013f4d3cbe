from __future__ import annotations

import mimetypes
from pathlib import Path
from typing import Any, Mapping

from .client import NotFoundError, ThreeBladesClient, TransportError, ValidationError, api_path
from .config import Config
from .flags import ListFlags

JWT_TOKEN_AUTH = "/auth/jwt-token-auth/"

PROJECTS = "/{namespace}/projects/"
PROJECT = PROJECTS + "{id}/"
COLLABORATORS = PROJECT.replace("{id}", "{project_id}") + "collaborators/"
SERVERS = PROJECT.replace("{id}", "{project_id}") + "servers/"
SERVER = SERVERS + "{id}/"
SERVER_ACTION = SERVER + "{action}/"
SERVER_TRIGGERS = SERVERS + "{server_id}/triggers/"
SERVER_TRIGGER = SERVER_TRIGGERS + "{id}/"
FILES = PROJECT.replace("{id}", "{project_id}") + "project_files/"
FILE = FILES + "{id}/"
HOSTS = "/{namespace}/hosts/"
HOST = HOSTS + "{id}/"
USERS = "/users/profiles/"
USER = USERS + "{id}/"
BILLING = "/{namespace}/billing/{kind}/"
BILLING_ITEM = BILLING + "{id}/"
TRIGGERS = "/{namespace}/triggers/"

BILLING_KINDS = ("plans", "subscriptions", "invoices", "cards")
SERVER_ACTIONS = ("start", "stop", "terminate")


def _query(list_flags: ListFlags | None = None, filters: Mapping[str, str] | None = None, **extra: Any) -> dict[str, Any]:
    query: dict[str, Any] = dict(filters or {})
    query.update({k: v for k, v in extra.items() if v is not None})
    if list_flags is not None:
        list_flags.apply(query)
    return query


def record_id(record: Any, kind: str) -> str:
    if isinstance(record, Mapping) and record.get("id"):
        return str(record["id"])
    raise TransportError(f"The API returned a {kind} without an id")


class ClientContext:
    """
    Per-command view of the API: the HTTP client plus the tenant scope
    (namespace, project, server) it works in.

    Name lookups issue a filtered list call and take the first record. The
    configured project's ID is resolved at most once per context.
    """

    def __init__(
        self,
        client: ThreeBladesClient,
        *,
        namespace: str | None = None,
        project: str | None = None,
        project_id: str | None = None,
        server: str | None = None,
        server_id: str | None = None,
    ) -> None:
        self.client = client
        self.namespace = namespace or ""
        self.project = project or ""
        self.project_id: str | None = project_id or None
        self.server = server or ""
        self.server_id: str | None = server_id or None

    @classmethod
    def from_config(cls, cfg: Config, client: ThreeBladesClient | None = None) -> "ClientContext":
        if client is None:
            client = ThreeBladesClient(root=cfg.root, token=cfg.token, timeout_s=cfg.timeout_s)
        return cls(
            client,
            namespace=cfg.namespace,
            project=cfg.project,
            project_id=cfg.project_id,
            server=cfg.server,
            server_id=cfg.server_id,
        )

    def close(self) -> None:
        self.client.close()

    def __enter__(self) -> "ClientContext":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # scope

    def require_namespace(self) -> str:
        if not self.namespace:
            raise ValidationError(
                "Namespace is blank. Set it with --namespace, THREEBLADES_NAMESPACE or `tbs config set --namespace`."
            )
        return self.namespace

    def _path(self, template: str, **params: Any) -> str:
        if "{namespace}" in template:
            params["namespace"] = self.require_namespace()
        return api_path(template, **params)

    def _first(self, kind: str, path: str, field: str, value: str, **query: Any) -> Any:
        if not value:
            raise ValidationError(f"A {kind} {field} is required.")
        items = self.client.list(path, params={field: value, **query})
        if not items:
            raise NotFoundError(kind, value, field)
        return items[0]

    # resolver

    def _lookup_project_id(self, name: str) -> str:
        return record_id(self._first("project", self._path(PROJECTS), "name", name), "project")

    def resolve_project_id(self) -> str:
        if self.project_id:
            return self.project_id
        if not self.project:
            raise ValidationError(
                "Project name is blank. Set it with --project, THREEBLADES_PROJECT or `tbs env --project`."
            )
        self.project_id = self._lookup_project_id(self.project)
        return self.project_id

    def project_id_by_name(self, name: str) -> str:
        if name and name == self.project:
            return self.resolve_project_id()
        return self._lookup_project_id(name)

    def server_by_name(self, name: str) -> dict[str, Any]:
        path = self._path(SERVERS, project_id=self.resolve_project_id())
        return self._first("server", path, "name", name)

    def server_by_id(self, server_id: str) -> dict[str, Any]:
        return self.client.read(self._path(SERVER, project_id=self.resolve_project_id(), id=server_id))

    def server_id_by_name(self, name: str) -> str:
        return record_id(self.server_by_name(name), "server")

    def resolve_server_id(self, name: str | None = None, server_id: str | None = None) -> str:
        """Pick the server from explicit --uuid / --name, falling back to the configured server."""
        if server_id:
            return server_id
        if name:
            return self.server_id_by_name(name)
        if self.server_id:
            return self.server_id
        if not self.server:
            raise ValidationError("You have to specify server id or name")
        self.server_id = self.server_id_by_name(self.server)
        return self.server_id

    def host_id_by_name(self, name: str) -> str:
        return record_id(self._first("host", self._path(HOSTS), "name", name), "host")

    def user_by_username(self, username: str) -> dict[str, Any]:
        return self._first("user", USERS, "username", username)

    def user_by_email(self, email: str) -> dict[str, Any]:
        return self._first("user", USERS, "email", email)

    def user_by_id(self, user_id: str) -> dict[str, Any]:
        return self.client.read(api_path(USER, id=user_id))

    def file_by_name(self, name: str) -> dict[str, Any]:
        path = self._path(FILES, project_id=self.resolve_project_id())
        return self._first("file", path, "name", name)

    def file_id_by_name(self, name: str) -> str:
        return record_id(self.file_by_name(name), "file")

    def server_trigger_by_name(self, server_id: str, name: str) -> dict[str, Any]:
        path = self._path(SERVER_TRIGGERS, project_id=self.resolve_project_id(), server_id=server_id)
        return self._first("trigger", path, "name", name)

    def server_trigger_by_id(self, server_id: str, trigger_id: str) -> dict[str, Any]:
        path = self._path(SERVER_TRIGGER, project_id=self.resolve_project_id(), server_id=server_id, id=trigger_id)
        return self.client.read(path)

    # auth

    def obtain_token(self, username: str, password: str) -> str:
        payload = self.client.call(
            "POST",
            JWT_TOKEN_AUTH,
            json_body={"username": username, "password": password},
            auth=False,
        )
        token = payload.get("token") if isinstance(payload, dict) else None
        if not isinstance(token, str) or not token:
            raise ValidationError("Login response did not include a token.")
        return token

    # projects

    def list_projects(self, list_flags: ListFlags | None = None, filters: Mapping[str, str] | None = None) -> list[Any]:
        return self.client.list(self._path(PROJECTS), params=_query(list_flags, filters))

    def create_project(self, body: dict[str, Any]) -> Any:
        return self.client.create(self._path(PROJECTS), body)

    def update_project(self, project_id: str, body: dict[str, Any]) -> Any:
        return self.client.partial_update(self._path(PROJECT, id=project_id), body)

    def delete_project(self, project_id: str) -> None:
        self.client.delete(self._path(PROJECT, id=project_id))

    def add_collaborator(self, project_id: str, member: str, owner: bool = False) -> Any:
        path = self._path(COLLABORATORS, project_id=project_id)
        return self.client.create(path, {"owner": owner, "member": member})

    # servers

    def list_servers(self, list_flags: ListFlags | None = None, filters: Mapping[str, str] | None = None) -> list[Any]:
        path = self._path(SERVERS, project_id=self.resolve_project_id())
        return self.client.list(path, params=_query(list_flags, filters))

    def create_server(self, body: dict[str, Any]) -> Any:
        return self.client.create(self._path(SERVERS, project_id=self.resolve_project_id()), body)

    def update_server(self, server_id: str, body: dict[str, Any]) -> Any:
        path = self._path(SERVER, project_id=self.resolve_project_id(), id=server_id)
        return self.client.partial_update(path, body)

    def server_action(self, server_id: str, action: str) -> Any:
        if action not in SERVER_ACTIONS:
            raise ValidationError(f"Unknown server action: {action}")
        path = self._path(SERVER_ACTION, project_id=self.resolve_project_id(), id=server_id, action=action)
        return self.client.create(path)

    # files

    def list_files(self, list_flags: ListFlags | None = None, filters: Mapping[str, str] | None = None) -> list[Any]:
        path = self._path(FILES, project_id=self.resolve_project_id())
        return self.client.list(path, params=_query(list_flags, filters))

    def delete_file(self, file_id: str) -> None:
        self.client.delete(self._path(FILE, project_id=self.resolve_project_id(), id=file_id))

    def upload_file(self, path: str | Path | None = None, *, name: str = "", content: str = "") -> Any:
        """
        Upload a local file as multipart, or, without ``path``, create a file
        from ``name`` plus base64 ``content``.
        """
        project_id = self.resolve_project_id()
        url = self._path(FILES, project_id=project_id)
        fields = {k: v for k, v in {"project": project_id, "name": name, "base64_data": content}.items() if v}
        if path is None:
            return self.client.create(url, fields)
        local = Path(path).expanduser().resolve()
        ctype, _ = mimetypes.guess_type(str(local))
        files = {"file": (local.name, local.read_bytes(), ctype or "application/octet-stream")}
        return self.client.call("POST", url, data=fields, files=files)

    # hosts

    def list_hosts(self, list_flags: ListFlags | None = None, filters: Mapping[str, str] | None = None) -> list[Any]:
        return self.client.list(self._path(HOSTS), params=_query(list_flags, filters))

    def create_host(self, body: dict[str, Any]) -> Any:
        return self.client.create(self._path(HOSTS), body)

    def update_host(self, host_id: str, body: dict[str, Any]) -> Any:
        return self.client.partial_update(self._path(HOST, id=host_id), body)

    def delete_host(self, host_id: str) -> None:
        self.client.delete(self._path(HOST, id=host_id))

    # accounts

    def create_user(self, body: dict[str, Any]) -> Any:
        return self.client.create(USERS, body)

    def update_user(self, user_id: str, body: dict[str, Any]) -> Any:
        return self.client.partial_update(api_path(USER, id=user_id), body)

    def delete_user(self, user_id: str) -> None:
        self.client.delete(api_path(USER, id=user_id))

    # billing: plans, subscriptions, invoices, cards

    def _billing_kind(self, kind: str) -> str:
        if kind not in BILLING_KINDS:
            raise ValidationError(f"Unknown billing resource: {kind}")
        return kind

    def list_billing(self, kind: str, list_flags: ListFlags | None = None) -> list[Any]:
        path = self._path(BILLING, kind=self._billing_kind(kind))
        return self.client.list(path, params=_query(list_flags))

    def read_billing(self, kind: str, item_id: str) -> Any:
        return self.client.read(self._path(BILLING_ITEM, kind=self._billing_kind(kind), id=item_id))

    def create_billing(self, kind: str, body: dict[str, Any]) -> Any:
        return self.client.create(self._path(BILLING, kind=self._billing_kind(kind)), body)

    def update_billing(self, kind: str, item_id: str, body: dict[str, Any]) -> Any:
        path = self._path(BILLING_ITEM, kind=self._billing_kind(kind), id=item_id)
        return self.client.partial_update(path, body)

    def delete_billing(self, kind: str, item_id: str) -> None:
        self.client.delete(self._path(BILLING_ITEM, kind=self._billing_kind(kind), id=item_id))

    # triggers

    def create_trigger(self, body: dict[str, Any]) -> Any:
        return self.client.create(self._path(TRIGGERS), body)
