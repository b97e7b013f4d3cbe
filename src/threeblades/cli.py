from __future__ import annotations

import argparse
import getpass
import json
import shlex
import sys
import textwrap
import uuid
from dataclasses import asdict
from typing import Any

from ._version import __version__
from .api import ClientContext, record_id
from .client import HTTPError, ThreeBladesClient, ThreeBladesError, ValidationError
from .config import (
    Config,
    clear_token,
    config_path,
    load_config,
    merge_config,
    redact_token,
    save_config,
    save_token,
)
from .flags import ListFlags, add_filter_argument, add_list_arguments, comma_list, json_value
from .renderer import render

SERVER_TYPES = ("restful", "cron", "jupyter")
PLAN_INTERVALS = ("day", "week", "month", "year")


def _feedback(msg: str) -> None:
    # stdout is reserved for rendered payloads.
    print(msg, file=sys.stderr)


def _error(msg: str) -> None:
    print(f"error: {msg}", file=sys.stderr)


def _warn(msg: str) -> None:
    print(f"warning: {msg}", file=sys.stderr)


def _is_uuid(value: str) -> bool:
    try:
        uuid.UUID(value)
    except ValueError:
        return False
    return True


def _read_stdin(prompt: str) -> str:
    print(prompt, end="", file=sys.stderr, flush=True)
    return input().strip()


def _confirm(prompt: str, assume_yes: bool = False) -> bool:
    if assume_yes:
        return True
    try:
        answer = _read_stdin(prompt)
    except EOFError:
        return False
    return answer.lower() not in ("n", "no")


def _drop_empty(d: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in d.items() if v is not None and v != "" and v != {}}


def _add_runtime_overrides(parser: argparse.ArgumentParser, *, suppress: bool = False) -> None:
    # Accepted before and after the subcommand:
    #   tbs --namespace acme project ls
    #   tbs project ls --namespace acme
    # Subcommand copies use SUPPRESS so they never clobber a value given before the subcommand.
    default = argparse.SUPPRESS if suppress else None
    parser.add_argument("--config", default=default, help="Config file path")
    parser.add_argument("--root", default=default, help="API root URL")
    parser.add_argument("--namespace", default=default, help="3Blades namespace")
    parser.add_argument("--project", default=default, help="Project name")
    parser.add_argument("--token", default=default, help="Auth token (overrides token file/env)")
    parser.add_argument("--timeout-s", type=float, default=default, help="HTTP timeout in seconds")


def _command(
    sub: Any,
    name: str,
    help: str,
    *,
    fmt: bool = True,
    listing: bool = False,
    filters: str | None = None,
) -> argparse.ArgumentParser:
    p = sub.add_parser(name, help=help)
    _add_runtime_overrides(p, suppress=True)
    if fmt:
        p.add_argument(
            "-f",
            "--format",
            default=None,
            help="Output format: json, or a row template such as '{{.Name}}\\t{{.ID}}'",
        )
    if listing:
        add_list_arguments(p)
    if filters:
        add_filter_argument(p, filters)
    return p


def _add_yes(p: argparse.ArgumentParser) -> None:
    p.add_argument("-y", "--yes", action="store_true", help="Do not ask for confirmation")


def _add_server_body_arguments(p: argparse.ArgumentParser) -> None:
    p.add_argument("--image", help="Server image")
    p.add_argument("--resources", help="Server resources")
    p.add_argument("--startup-script", help="Server startup script")
    p.add_argument("--function", help="Function to run")
    p.add_argument("--script", help="Script to run")
    p.add_argument("--command", help="Command to run")
    p.add_argument("--type", choices=SERVER_TYPES, help="Server type")


def _add_account_body_arguments(p: argparse.ArgumentParser, verb: str) -> None:
    p.add_argument("--first-name", help=f"{verb} account first name")
    p.add_argument("--last-name", help=f"{verb} account last name")
    p.add_argument("--url", help=f"{verb} account url")
    p.add_argument("--avatar-url", help=f"{verb} account avatar url")
    p.add_argument("--bio", help=f"{verb} account bio")
    p.add_argument("--location", help=f"{verb} account location")
    p.add_argument("--company", help=f"{verb} account company")
    p.add_argument("--timezone", help=f"{verb} account timezone")


def _add_trigger_action_arguments(p: argparse.ArgumentParser, prefix: str, label: str) -> None:
    p.add_argument(f"--{prefix}-action", help=f"{label} action")
    p.add_argument(f"--{prefix}-method", help=f"{label} method")
    p.add_argument(f"--{prefix}-model", help=f"{label} type")
    p.add_argument(f"--{prefix}-object", help=f"{label} object")
    p.add_argument(f"--{prefix}-payload", type=json_value, help=f"{label} payload (JSON)")


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="tbs",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        description="3Blades CLI.",
        epilog=textwrap.dedent(
            """\
            Environment variables:
              THREEBLADES_ROOT, THREEBLADES_NAMESPACE, THREEBLADES_PROJECT,
              THREEBLADES_TOKEN, THREEBLADES_TIMEOUT_S, THREEBLADES_CONFIG_PATH
            """
        ),
    )
    _add_runtime_overrides(p)
    p.add_argument("--version", action="version", version=f"tbs {__version__}")

    sub = p.add_subparsers(dest="cmd", required=True)

    # login / logout / env
    login = _command(sub, "login", "Login to 3Blades and store the token", fmt=False)
    login.add_argument("-u", "--username", help="Username")
    login.add_argument("-p", "--password", help="Password")
    login.add_argument("--force", action="store_true", help="Log in again even if a token is stored")

    _command(sub, "logout", "Remove the stored token", fmt=False)

    env = sub.add_parser("env", help="Print env variables for later use")
    env.add_argument("--namespace", default=argparse.SUPPRESS, help="Namespace")
    env.add_argument("--project", default=argparse.SUPPRESS, help="Project name")

    # config
    cfg = sub.add_parser("config", help="Manage local config")
    cfg_sub = cfg.add_subparsers(dest="subcmd", required=True)
    cfg_sub.add_parser("path", help="Print config path")
    cfg_sub.add_parser("show", help="Show config (token redacted)")
    cfg_set = cfg_sub.add_parser("set", help="Set config fields")
    cfg_set.add_argument("--root", dest="set_root")
    cfg_set.add_argument("--namespace", dest="set_namespace")
    cfg_set.add_argument("--project", dest="set_project")
    cfg_set.add_argument("--project-id", dest="set_project_id")
    cfg_set.add_argument("--server", dest="set_server")
    cfg_set.add_argument("--server-id", dest="set_server_id")
    cfg_set.add_argument("--limit", dest="set_limit", type=int)
    cfg_set.add_argument("--timeout-s", dest="set_timeout_s", type=float)
    cfg_set.add_argument(
        "--format",
        dest="set_formats",
        action="append",
        default=[],
        metavar="ENTITY=FORMAT",
        help="Default output format for an entity, e.g. project=json (repeatable)",
    )

    # project
    project = sub.add_parser("project", help="Handle projects")
    project_sub = project.add_subparsers(dest="subcmd", required=True)

    _command(project_sub, "ls", "List projects", listing=True, filters="name=test,private=true")

    project_create = _command(project_sub, "create", "Create project")
    project_create.add_argument("--name", help="Project name")
    project_create.add_argument("--description", default="", help="Project description")
    project_create.add_argument("--private", "--privacy", dest="private", action="store_true", help="Make the project private")
    project_create.add_argument("--members", type=comma_list, default=[], help="Project members (comma separated)")

    project_update = _command(project_sub, "update", "Update project")
    project_update.add_argument("--uuid", help="Project id")
    project_update.add_argument("--name", help="Project name")
    project_update.add_argument("--description", help="Project description")
    project_update.add_argument(
        "--private", "--privacy", dest="private", action=argparse.BooleanOptionalAction, default=None, help="Project privacy"
    )
    project_update.add_argument("--members", type=comma_list, default=[], help="Project members (comma separated)")

    project_delete = _command(project_sub, "delete", "Delete project", fmt=False)
    project_delete.add_argument("--name", help="Project name")
    project_delete.add_argument("--uuid", help="Project id")
    _add_yes(project_delete)

    project_adduser = _command(project_sub, "adduser", "Add collaborator to project", fmt=False)
    project_adduser.add_argument("email", help="Collaborator email or username")

    # server
    server = sub.add_parser("server", help="User server management")
    server_sub = server.add_subparsers(dest="subcmd", required=True)

    _command(server_sub, "ls", "List servers", listing=True, filters="name=test")

    server_create = _command(server_sub, "create", "Create server")
    server_create.add_argument("--name", help="Server name")
    _add_server_body_arguments(server_create)

    server_update = _command(server_sub, "update", "Update server")
    server_update.add_argument("--uuid", help="Server id")
    server_update.add_argument("--name", help="Server name")
    _add_server_body_arguments(server_update)

    server_describe = _command(server_sub, "describe", "Server details")
    server_describe.add_argument("--name", help="Server name")
    server_describe.add_argument("--uuid", help="Server id")

    for action, help_text in (("start", "Start server"), ("stop", "Stop server"), ("terminate", "Terminate server")):
        server_action = _command(server_sub, action, help_text, fmt=False)
        server_action.add_argument("--name", help="Server name")
        server_action.add_argument("--uuid", help="Server id")

    # file
    file_cmd = sub.add_parser("file", help="File management")
    file_sub = file_cmd.add_subparsers(dest="subcmd", required=True)

    _command(file_sub, "ls", "List files", listing=True, filters="name=main.py")

    file_delete = _command(file_sub, "delete", "Delete files", fmt=False)
    file_delete.add_argument("targets", nargs="+", metavar="NAME_OR_ID", help="File names or ids")

    file_upload = _command(file_sub, "upload", "Upload files")
    file_upload.add_argument("paths", nargs="*", metavar="PATH", help="Local files to upload")
    file_upload.add_argument("--name", default="", help="The file's name, only used together with --content")
    file_upload.add_argument("--content", default="", help="Content as base64 encoded string")

    # host
    host = sub.add_parser("host", help="Handle your hosts")
    host_sub = host.add_subparsers(dest="subcmd", required=True)

    _command(host_sub, "ls", "List hosts", listing=True, filters="name=test")

    host_create = _command(host_sub, "create", "Create host")
    host_create.add_argument("--name", help="Host name")
    host_create.add_argument("--ip", help="Host ip")
    host_create.add_argument("--port", type=int, help="Host port")

    host_update = _command(host_sub, "update", "Update host")
    host_update.add_argument("--uuid", help="Host id")
    host_update.add_argument("--name", help="Host name")
    host_update.add_argument("--ip", help="Host ip")
    host_update.add_argument("--port", type=int, help="Host port")

    host_delete = _command(host_sub, "delete", "Delete host", fmt=False)
    host_delete.add_argument("--name", help="Host name")
    host_delete.add_argument("--uuid", help="Host id")
    _add_yes(host_delete)

    # account
    account = sub.add_parser("account", help="Manage accounts")
    account_sub = account.add_subparsers(dest="subcmd", required=True)

    account_create = _command(account_sub, "create", "Create account")
    account_create.add_argument("--username", help="New account username (required)")
    account_create.add_argument("--password", help="New account password (required)")
    account_create.add_argument("--email", help="New account email (required)")
    _add_account_body_arguments(account_create, "New")

    account_describe = _command(account_sub, "describe", "Get information for existing account")
    account_describe.add_argument("--uuid", help="User id")
    account_describe.add_argument("--username", help="Username")
    account_describe.add_argument("--email", help="User email")

    account_update = _command(account_sub, "update", "Update account")
    account_update.add_argument("--uuid", help="User id")
    account_update.add_argument("--username", help="Update account username")
    account_update.add_argument("--password", help="Update account password")
    account_update.add_argument("--email", help="Update account email")
    _add_account_body_arguments(account_update, "Update")

    account_delete = _command(account_sub, "delete", "Delete user", fmt=False)
    account_delete.add_argument("--uuid", help="User id")
    account_delete.add_argument("--username", help="Username")
    account_delete.add_argument("--email", help="User email")

    # plan
    plan = sub.add_parser("plan", help="View plans, or manage them if you have the proper permissions")
    plan_sub = plan.add_subparsers(dest="subcmd", required=True)

    _command(plan_sub, "ls", "List available plans", listing=True)

    plan_create = _command(plan_sub, "create", "Create a plan")
    plan_create.add_argument("--name", help="Name of the plan")
    plan_create.add_argument("--amount", type=int, default=0, help="Amount, in cents, the plan will cost")
    plan_create.add_argument("--interval", choices=PLAN_INTERVALS, default="month", help="Billing interval")
    plan_create.add_argument("--interval-count", type=int, default=1, help="Number of intervals between each billing")
    plan_create.add_argument("--currency", default="usd", help="ISO currency code, e.g. usd")
    plan_create.add_argument("--statement-descriptor", help="Extra info shown on the customer's card statement")
    plan_create.add_argument("--trial-period", type=int, help="Length of the plan's trial period, in days")

    plan_update = _command(plan_sub, "update", "Update plan information")
    plan_update.add_argument("--uuid", help="Plan id")
    plan_update.add_argument("--name", help="Name of the plan")
    plan_update.add_argument("--statement-descriptor", help="Extra info shown on the customer's card statement")
    plan_update.add_argument("--trial-period", type=int, help="Length of the plan's trial period, in days")

    plan_describe = _command(plan_sub, "describe", "Plan details")
    plan_describe.add_argument("--uuid", help="Plan id")

    plan_delete = _command(plan_sub, "delete", "Delete a plan and all subscriptions to it", fmt=False)
    plan_delete.add_argument("--uuid", help="Plan id")
    _add_yes(plan_delete)

    # subscription
    subscription = sub.add_parser("subscription", help="Manage your subscriptions")
    subscription_sub = subscription.add_subparsers(dest="subcmd", required=True)

    _command(subscription_sub, "ls", "List subscriptions", listing=True)

    subscription_create = _command(subscription_sub, "create", "Create new subscription")
    subscription_create.add_argument("--plan", help="Plan id")

    subscription_describe = _command(subscription_sub, "describe", "Subscription details")
    subscription_describe.add_argument("--uuid", help="Subscription id")

    subscription_cancel = _command(subscription_sub, "cancel", "Cancel a subscription", fmt=False)
    subscription_cancel.add_argument("--uuid", help="Subscription id")
    _add_yes(subscription_cancel)

    # invoice
    invoice = sub.add_parser("invoice", help="View invoices")
    invoice_sub = invoice.add_subparsers(dest="subcmd", required=True)

    _command(invoice_sub, "ls", "List invoices", listing=True)

    invoice_describe = _command(invoice_sub, "describe", "Details for an individual invoice")
    invoice_describe.add_argument("--uuid", help="Invoice id")

    # billing (credit cards)
    billing = sub.add_parser("billing", help="Handle credit cards")
    billing_sub = billing.add_subparsers(dest="subcmd", required=True)

    _command(billing_sub, "ls", "List payment methods", listing=True)

    billing_describe = _command(billing_sub, "describe", "Credit card details")
    billing_describe.add_argument("--uuid", help="Card id")

    billing_update = _command(billing_sub, "update", "Update credit card information")
    billing_update.add_argument("--uuid", help="Card id")
    billing_update.add_argument("--name", help="Cardholder name")
    billing_update.add_argument("--address-line1", help="Address line one")
    billing_update.add_argument("--address-line2", help="Address line two")
    billing_update.add_argument("--city", help="City")
    billing_update.add_argument("--state", help="State")
    billing_update.add_argument("--country", help="Country")
    billing_update.add_argument("--zip-code", help="ZIP code")

    billing_rm = _command(billing_sub, "rm", "Delete a credit card", fmt=False)
    billing_rm.add_argument("--uuid", help="Card id")
    _add_yes(billing_rm)

    # trigger
    trigger = sub.add_parser("trigger", help="Handle triggers")
    trigger_sub = trigger.add_subparsers(dest="subcmd", required=True)

    trigger_create = _command(trigger_sub, "create", "Create trigger")
    _add_trigger_action_arguments(trigger_create, "cause", "Cause")
    _add_trigger_action_arguments(trigger_create, "effect", "Effect")
    trigger_create.add_argument("--webhook-url", help="Webhook url")
    trigger_create.add_argument("--webhook-config", type=json_value, help="Webhook config (JSON)")
    trigger_create.add_argument("--schedule", help="Cron schedule")

    trigger_slack = _command(trigger_sub, "slack", "Send slack message after an event")
    trigger_slack.add_argument("--webhook", help="Slack webhook url")
    trigger_slack.add_argument("--text", default="", help="Text to send")
    trigger_slack.add_argument("--channel", default="", help="Channel to send to")
    trigger_slack.add_argument("--username", default="3blades-bot", help="Name the message is posted as")
    trigger_slack.add_argument("--icon-url", default="", help="Icon for the message")
    trigger_slack.add_argument("--action", help="Cause action")
    trigger_slack.add_argument("--method", help="Cause method")
    trigger_slack.add_argument("--model", help="Cause type")
    trigger_slack.add_argument("--object", help="Cause object")

    trigger_describe = _command(trigger_sub, "describe", "Server trigger details")
    trigger_describe.add_argument("--server", dest="server_name", help="Server name")
    trigger_describe.add_argument("--server-uuid", help="Server id")
    trigger_describe.add_argument("--name", help="Trigger name")
    trigger_describe.add_argument("--uuid", help="Trigger id")

    return p


def _load_cfg(args: argparse.Namespace) -> Config:
    base = load_config(getattr(args, "config", None))
    return merge_config(
        base,
        root=getattr(args, "root", None),
        namespace=getattr(args, "namespace", None),
        project=getattr(args, "project", None),
        token=getattr(args, "token", None),
        timeout_s=getattr(args, "timeout_s", None),
    )


def _client_from_cfg(cfg: Config) -> ThreeBladesClient:
    return ThreeBladesClient(root=cfg.root, token=cfg.token, timeout_s=cfg.timeout_s)


def _make_context(args: argparse.Namespace) -> tuple[Config, ClientContext]:
    cfg = _load_cfg(args)
    return cfg, ClientContext.from_config(cfg, _client_from_cfg(cfg))


def _render(args: argparse.Namespace, cfg: Config, entity: str, payload: Any) -> None:
    fmt = getattr(args, "format", None)
    if fmt is None:
        fmt = cfg.format_for(entity)
    render(fmt, payload, sys.stdout)


def _list_flags(args: argparse.Namespace, cfg: Config) -> ListFlags:
    return ListFlags.from_args(args, default_limit=cfg.limit)


def cmd_login(args: argparse.Namespace) -> int:
    cfg = _load_cfg(args)
    if cfg.token and not args.force:
        _feedback("Already logged in. Use --force to log in again.")
        return 0

    username = args.username or _read_stdin("Username: ")
    password = args.password or getpass.getpass("Password: ").strip()
    if not username or not password:
        raise ValidationError("Username and password are required.")

    with ClientContext.from_config(cfg, _client_from_cfg(cfg)) as ctx:
        token = ctx.obtain_token(username, password)
    save_token(token, getattr(args, "config", None))
    _feedback("Login successful")
    return 0


def cmd_logout(args: argparse.Namespace) -> int:
    if clear_token(getattr(args, "config", None)):
        _feedback("Token cleared.")
    else:
        _feedback("No token stored.")
    return 0


def cmd_env(args: argparse.Namespace) -> int:
    namespace = getattr(args, "namespace", None)
    project = getattr(args, "project", None)
    lines: list[str] = []
    invocation = "tbs env"
    if namespace:
        lines.append(f"export THREEBLADES_NAMESPACE={shlex.quote(namespace)}")
        invocation += f" --namespace={shlex.quote(namespace)}"
    if project:
        lines.append(f"export THREEBLADES_PROJECT={shlex.quote(project)}")
        invocation += f" --project={shlex.quote(project)}"
    lines.append("")
    lines.append("# Run this command to configure your shell:")
    lines.append(f"# eval $({invocation})")
    print("\n".join(lines))
    return 0


def cmd_config(args: argparse.Namespace) -> int:
    path_override = getattr(args, "config", None)
    if args.subcmd == "path":
        print(str(config_path(path_override)))
        return 0

    if args.subcmd == "show":
        cfg = load_config(path_override)
        d = asdict(cfg)
        d["token"] = redact_token(cfg.token)
        print(json.dumps(d, indent=2, sort_keys=True))
        return 0

    if args.subcmd == "set":
        cfg = load_config(path_override)
        formats = dict(cfg.formats)
        for item in args.set_formats:
            entity, sep, fmt = item.partition("=")
            if not sep or not entity.strip() or not fmt:
                raise ValidationError(f"--format expects ENTITY=FORMAT, got {item!r}")
            formats[entity.strip()] = fmt
        updates: dict[str, Any] = {
            "root": args.set_root,
            "namespace": args.set_namespace,
            "project": args.set_project,
            "project_id": args.set_project_id,
            "server": args.set_server,
            "server_id": args.set_server_id,
            "limit": args.set_limit,
            "timeout_s": args.set_timeout_s,
        }
        d = asdict(cfg)
        d.update({k: v for k, v in updates.items() if v is not None})
        d["formats"] = formats
        if args.set_project is not None and args.set_project != cfg.project and args.set_project_id is None:
            d["project_id"] = None
        if args.set_server is not None and args.set_server != cfg.server and args.set_server_id is None:
            d["server_id"] = None
        new_cfg = Config(**d)
        path = save_config(new_cfg, path_override)
        _feedback(f"Saved: {path}")
        return 0

    raise AssertionError("unreachable")


def _add_members(ctx: ClientContext, project_id: str, members: list[str]) -> int:
    failures = 0
    for member in members:
        try:
            ctx.add_collaborator(project_id, member)
        except HTTPError as e:
            failures += 1
            messages = _member_errors(e)
            if messages:
                for msg in messages:
                    _error(msg)
            else:
                _error(f"Error adding member: {member}.")
            continue
        except ThreeBladesError as e:
            failures += 1
            _error(f"Error adding member: {member}. {e}")
            continue
        _feedback(f"Member added: {member}")
    return failures


def _member_errors(err: HTTPError) -> list[str]:
    if err.status_code != 400:
        return []
    try:
        body = json.loads(err.body)
    except json.JSONDecodeError:
        return []
    if isinstance(body, dict) and isinstance(body.get("member"), list):
        return [str(m) for m in body["member"]]
    return []


def cmd_project(args: argparse.Namespace) -> int:
    cfg, ctx = _make_context(args)
    with ctx:
        if args.subcmd == "ls":
            items = ctx.list_projects(_list_flags(args, cfg), args.filters)
            _render(args, cfg, "project", items)
            return 0

        if args.subcmd == "create":
            if not args.name:
                raise ValidationError("You need to provide name for your project")
            body = {"name": args.name, "description": args.description, "private": args.private, "collaborators": []}
            created = ctx.create_project(body)
            failures = _add_members(ctx, record_id(created, "project"), args.members)
            _feedback("Project successfully created")
            _render(args, cfg, "project", created)
            return 1 if failures else 0

        if args.subcmd == "update":
            if not args.name and not args.uuid:
                raise ValidationError("You must provide either project name or id")
            project_id = args.uuid or ctx.project_id_by_name(args.name)
            failures = _add_members(ctx, project_id, args.members)
            body = _drop_empty({"name": args.name, "description": args.description, "private": args.private})
            updated = ctx.update_project(project_id, body)
            _feedback("Project updated.")
            _render(args, cfg, "project", updated)
            return 1 if failures else 0

        if args.subcmd == "delete":
            if not args.name and not args.uuid:
                raise ValidationError("You must specify project name or id")
            label = args.name or args.uuid
            if not _confirm(f"Are you sure you want to delete project '{label}'? (Y/n): ", args.yes):
                _feedback("Aborted")
                return 0
            project_id = args.uuid or ctx.project_id_by_name(args.name)
            ctx.delete_project(project_id)
            _feedback("Project deleted")
            return 0

        if args.subcmd == "adduser":
            failures = _add_members(ctx, ctx.resolve_project_id(), [args.email])
            return 1 if failures else 0

    raise AssertionError("unreachable")


def _server_body(args: argparse.Namespace) -> dict[str, Any]:
    config = _drop_empty({"script": args.script, "function": args.function, "command": args.command, "type": args.type})
    return _drop_empty(
        {
            "name": args.name,
            "image_name": args.image,
            "environment_resources": args.resources,
            "startup_script": args.startup_script,
            "config": config,
        }
    )


def cmd_server(args: argparse.Namespace) -> int:
    cfg, ctx = _make_context(args)
    with ctx:
        if args.subcmd == "ls":
            items = ctx.list_servers(_list_flags(args, cfg), args.filters)
            _render(args, cfg, "server", items)
            return 0

        if args.subcmd == "create":
            if not args.name:
                raise ValidationError("You need to provide name for your server")
            body = _server_body(args)
            body["connected"] = []
            _render(args, cfg, "server", ctx.create_server(body))
            return 0

        if args.subcmd == "update":
            server_id = ctx.resolve_server_id(args.name, args.uuid)
            _render(args, cfg, "server", ctx.update_server(server_id, _server_body(args)))
            return 0

        if args.subcmd == "describe":
            if args.uuid:
                server = ctx.server_by_id(args.uuid)
            elif args.name:
                server = ctx.server_by_name(args.name)
            else:
                server = ctx.server_by_id(ctx.resolve_server_id())
            _render(args, cfg, "server", server)
            return 0

        if args.subcmd in ("start", "stop", "terminate"):
            server_id = ctx.resolve_server_id(args.name, args.uuid)
            ctx.server_action(server_id, args.subcmd)
            past = {"start": "started", "stop": "stopped", "terminate": "terminated"}[args.subcmd]
            _feedback(f"Server {past}")
            return 0

    raise AssertionError("unreachable")


def cmd_file(args: argparse.Namespace) -> int:
    cfg, ctx = _make_context(args)
    with ctx:
        if args.subcmd == "ls":
            items = ctx.list_files(_list_flags(args, cfg), args.filters)
            _render(args, cfg, "file", items)
            return 0

        if args.subcmd == "delete":
            ctx.resolve_project_id()
            failures = 0
            for target in args.targets:
                try:
                    file_id = target if _is_uuid(target) else ctx.file_id_by_name(target)
                    ctx.delete_file(file_id)
                except ThreeBladesError as e:
                    failures += 1
                    _error(f"{target}: {_describe_error(e)}")
                    continue
                _feedback(f"File {target} deleted")
            return 1 if failures else 0

        if args.subcmd == "upload":
            if not args.paths:
                if not args.name or not args.content:
                    raise ValidationError("Provide files to upload, or --name together with --content.")
                _render(args, cfg, "file", ctx.upload_file(name=args.name, content=args.content))
                return 0
            if args.name and len(args.paths) > 1:
                _warn(f"--name {args.name!r} is applied to all {len(args.paths)} uploaded files")
            failures = 0
            for path in args.paths:
                try:
                    uploaded = ctx.upload_file(path, name=args.name, content=args.content)
                except (OSError, ThreeBladesError) as e:
                    failures += 1
                    _error(f"There was an error uploading file: {path}: {_describe_error(e)}")
                    continue
                _render(args, cfg, "file", uploaded)
            return 1 if failures else 0

    raise AssertionError("unreachable")


def cmd_host(args: argparse.Namespace) -> int:
    cfg, ctx = _make_context(args)
    with ctx:
        if args.subcmd == "ls":
            items = ctx.list_hosts(_list_flags(args, cfg), args.filters)
            _render(args, cfg, "host", items)
            return 0

        if args.subcmd == "create":
            if not args.name:
                raise ValidationError("You need to provide name for your host")
            body = _drop_empty({"name": args.name, "ip": args.ip, "port": args.port})
            _render(args, cfg, "host", ctx.create_host(body))
            return 0

        if args.subcmd == "update":
            if not args.name and not args.uuid:
                raise ValidationError("You must provide either host name or id")
            host_id = args.uuid or ctx.host_id_by_name(args.name)
            body = _drop_empty({"name": args.name, "ip": args.ip, "port": args.port})
            _render(args, cfg, "host", ctx.update_host(host_id, body))
            return 0

        if args.subcmd == "delete":
            if not args.name and not args.uuid:
                raise ValidationError("You must provide host name or id")
            label = args.name or args.uuid
            if not _confirm(f"Are you sure you want to delete host '{label}'? (Y/n): ", args.yes):
                _feedback("Aborted")
                return 0
            host_id = args.uuid or ctx.host_id_by_name(args.name)
            ctx.delete_host(host_id)
            _feedback("Host deleted")
            return 0

    raise AssertionError("unreachable")


def _account_body(args: argparse.Namespace) -> dict[str, Any]:
    profile = _drop_empty(
        {
            "url": args.url,
            "avatar_url": args.avatar_url,
            "bio": args.bio,
            "location": args.location,
            "company": args.company,
            "timezone": args.timezone,
        }
    )
    return _drop_empty(
        {
            "username": args.username,
            "password": args.password,
            "email": args.email,
            "first_name": args.first_name,
            "last_name": args.last_name,
            "profile": profile,
        }
    )


def _find_user(ctx: ClientContext, args: argparse.Namespace) -> dict[str, Any]:
    if args.uuid:
        return ctx.user_by_id(args.uuid)
    if args.username:
        return ctx.user_by_username(args.username)
    if args.email:
        return ctx.user_by_email(args.email)
    raise ValidationError("You must specify --uuid, --username or --email")


def cmd_account(args: argparse.Namespace) -> int:
    cfg, ctx = _make_context(args)
    with ctx:
        if args.subcmd == "create":
            missing = [flag for flag in ("username", "password", "email") if not getattr(args, flag)]
            if missing:
                raise ValidationError("You need to provide flags: " + ", ".join(missing))
            _render(args, cfg, "user", ctx.create_user(_account_body(args)))
            return 0

        if args.subcmd == "describe":
            _render(args, cfg, "user", _find_user(ctx, args))
            return 0

        if args.subcmd == "update":
            if not args.uuid:
                raise ValidationError("You must specify the account --uuid")
            _render(args, cfg, "user", ctx.update_user(args.uuid, _account_body(args)))
            return 0

        if args.subcmd == "delete":
            user_id = args.uuid or record_id(_find_user(ctx, args), "user")
            ctx.delete_user(user_id)
            _feedback("User deleted.")
            return 0

    raise AssertionError("unreachable")


def _require_uuid(args: argparse.Namespace, what: str) -> str:
    if not args.uuid:
        raise ValidationError(f"You must specify the {what} --uuid")
    return args.uuid


def cmd_plan(args: argparse.Namespace) -> int:
    cfg, ctx = _make_context(args)
    with ctx:
        if args.subcmd == "ls":
            _render(args, cfg, "plan", ctx.list_billing("plans", _list_flags(args, cfg)))
            return 0

        if args.subcmd == "create":
            if not args.name:
                raise ValidationError("You need to provide name for your plan")
            body = _drop_empty(
                {
                    "name": args.name,
                    "amount": args.amount,
                    "interval": args.interval,
                    "interval_count": args.interval_count,
                    "currency": args.currency,
                    "statement_descriptor": args.statement_descriptor,
                    "trial_period_days": args.trial_period,
                }
            )
            created = ctx.create_billing("plans", body)
            _feedback("Plan successfully created")
            _render(args, cfg, "plan", created)
            return 0

        if args.subcmd == "update":
            body = _drop_empty(
                {
                    "name": args.name,
                    "statement_descriptor": args.statement_descriptor,
                    "trial_period_days": args.trial_period,
                }
            )
            updated = ctx.update_billing("plans", _require_uuid(args, "plan"), body)
            _feedback("Plan updated")
            _render(args, cfg, "plan", updated)
            return 0

        if args.subcmd == "describe":
            _render(args, cfg, "plan", ctx.read_billing("plans", _require_uuid(args, "plan")))
            return 0

        if args.subcmd == "delete":
            plan_id = _require_uuid(args, "plan")
            if not _confirm("Are you sure you want to delete this plan? (Y/n): ", args.yes):
                _feedback("Aborted")
                return 0
            ctx.delete_billing("plans", plan_id)
            _feedback("Plan deleted")
            return 0

    raise AssertionError("unreachable")


def cmd_subscription(args: argparse.Namespace) -> int:
    cfg, ctx = _make_context(args)
    with ctx:
        if args.subcmd == "ls":
            _render(args, cfg, "subscription", ctx.list_billing("subscriptions", _list_flags(args, cfg)))
            return 0

        if args.subcmd == "create":
            if not args.plan:
                raise ValidationError("You must specify the --plan id")
            created = ctx.create_billing("subscriptions", {"plan": args.plan})
            _feedback("Subscription successfully created")
            _render(args, cfg, "subscription", created)
            return 0

        if args.subcmd == "describe":
            item = ctx.read_billing("subscriptions", _require_uuid(args, "subscription"))
            _render(args, cfg, "subscription", item)
            return 0

        if args.subcmd == "cancel":
            subscription_id = _require_uuid(args, "subscription")
            if not _confirm("Are you sure you want to cancel this subscription? (Y/n): ", args.yes):
                _feedback("Aborted")
                return 0
            ctx.delete_billing("subscriptions", subscription_id)
            _feedback("Subscription canceled.")
            return 0

    raise AssertionError("unreachable")


def cmd_invoice(args: argparse.Namespace) -> int:
    cfg, ctx = _make_context(args)
    with ctx:
        if args.subcmd == "ls":
            _render(args, cfg, "invoice", ctx.list_billing("invoices", _list_flags(args, cfg)))
            return 0

        if args.subcmd == "describe":
            _render(args, cfg, "invoice", ctx.read_billing("invoices", _require_uuid(args, "invoice")))
            return 0

    raise AssertionError("unreachable")


def cmd_billing(args: argparse.Namespace) -> int:
    cfg, ctx = _make_context(args)
    with ctx:
        if args.subcmd == "ls":
            _render(args, cfg, "billing", ctx.list_billing("cards", _list_flags(args, cfg)))
            return 0

        if args.subcmd == "describe":
            _render(args, cfg, "billing", ctx.read_billing("cards", _require_uuid(args, "card")))
            return 0

        if args.subcmd == "update":
            body = _drop_empty(
                {
                    "name": args.name,
                    "address_line1": args.address_line1,
                    "address_line2": args.address_line2,
                    "address_city": args.city,
                    "address_state": args.state,
                    "address_country": args.country,
                    "address_zip": args.zip_code,
                }
            )
            updated = ctx.update_billing("cards", _require_uuid(args, "card"), body)
            _feedback("Card updated.")
            _render(args, cfg, "billing", updated)
            return 0

        if args.subcmd == "rm":
            card_id = _require_uuid(args, "card")
            if not _confirm("Are you sure you want to delete this card? (Y/n): ", args.yes):
                _feedback("Aborted")
                return 0
            ctx.delete_billing("cards", card_id)
            _feedback("Card deleted.")
            return 0

    raise AssertionError("unreachable")


def _trigger_action(args: argparse.Namespace, prefix: str) -> dict[str, Any] | None:
    action = getattr(args, f"{prefix}_action")
    method = getattr(args, f"{prefix}_method")
    if not action or not method:
        return None
    return _drop_empty(
        {
            "action_name": action,
            "method": method,
            "model": getattr(args, f"{prefix}_model"),
            "object_id": getattr(args, f"{prefix}_object"),
            "payload": getattr(args, f"{prefix}_payload"),
        }
    )


def cmd_trigger(args: argparse.Namespace) -> int:
    cfg, ctx = _make_context(args)
    with ctx:
        if args.subcmd == "create":
            body: dict[str, Any] = {}
            if cause := _trigger_action(args, "cause"):
                body["cause"] = cause
            if effect := _trigger_action(args, "effect"):
                body["effect"] = effect
            if args.webhook_url:
                body["webhook"] = _drop_empty({"url": args.webhook_url, "config": args.webhook_config})
            if args.schedule:
                body["schedule"] = args.schedule
            if not body:
                raise ValidationError(
                    "Nothing to create: give a cause or effect (action + method), a --webhook-url or a --schedule."
                )
            _render(args, cfg, "trigger", ctx.create_trigger(body))
            return 0

        if args.subcmd == "slack":
            if not args.webhook:
                raise ValidationError("You must specify the Slack --webhook url")
            body = {
                "cause": _drop_empty(
                    {"action_name": args.action, "method": args.method, "model": args.model, "object_id": args.object}
                ),
                "webhook": {
                    "url": args.webhook,
                    "config": {
                        "text": args.text,
                        "username": args.username,
                        "icon_url": args.icon_url,
                        "channel": args.channel,
                    },
                },
            }
            _render(args, cfg, "trigger", ctx.create_trigger(body))
            return 0

        if args.subcmd == "describe":
            if not args.name and not args.uuid:
                raise ValidationError("You must specify trigger name or id")
            server_id = ctx.resolve_server_id(args.server_name, args.server_uuid)
            if args.uuid:
                item = ctx.server_trigger_by_id(server_id, args.uuid)
            else:
                item = ctx.server_trigger_by_name(server_id, args.name)
            _render(args, cfg, "trigger", item)
            return 0

    raise AssertionError("unreachable")


_STATUS_HINTS = {
    400: "The API rejected the request.",
    401: "Not logged in or the token expired; run `tbs login`.",
    403: "Your account has no access here; check --namespace.",
    404: "Nothing at that address; check --namespace, --project and the ids you passed.",
}


def _format_http_error(err: HTTPError) -> str:
    parts = [f"HTTP {err.status_code}"]
    if hint := _STATUS_HINTS.get(err.status_code):
        parts.append(hint)
    parts.extend(err.messages())
    return " ".join(parts)


def _describe_error(err: BaseException) -> str:
    if isinstance(err, HTTPError):
        return _format_http_error(err)
    return str(err)


COMMANDS = {
    "login": cmd_login,
    "logout": cmd_logout,
    "env": cmd_env,
    "config": cmd_config,
    "project": cmd_project,
    "server": cmd_server,
    "file": cmd_file,
    "host": cmd_host,
    "account": cmd_account,
    "plan": cmd_plan,
    "subscription": cmd_subscription,
    "invoice": cmd_invoice,
    "billing": cmd_billing,
    "trigger": cmd_trigger,
}


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        return COMMANDS[args.cmd](args)
    except ThreeBladesError as e:
        _error(_describe_error(e))
        return 1
    except KeyboardInterrupt:
        _feedback("Aborted")
        return 130


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
