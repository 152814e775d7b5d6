"""
vaultkeeper: command-line client.

Usage:
    vaultkeeper register alice
    vaultkeeper login alice
    vaultkeeper add-text "shopping list" --title groceries --content "milk, eggs"
    vaultkeeper upload ./passport.pdf
    vaultkeeper list
    vaultkeeper download 7 --out ~/Downloads
    vaultkeeper delete 7
    vaultkeeper logout

The session token is kept in the OS keyring between commands. The login
password doubles as the vault password; it is prompted for (or read from
VAULTKEEPER_PASSWORD) and never stored.
"""

from __future__ import annotations

import argparse
import getpass
import logging
import os
import sys
from typing import Optional

from . import commands
from ...config import load_config
from ...core.logging_config import configure_logging
from ...core.models import DataType
from ...network.client import VaultClient, discover_server
from ...network.status import RpcError
from ...security import keystore
from ...version import get_version_info

logger = logging.getLogger(__name__)

PASSWORD_ENV = "VAULTKEEPER_PASSWORD"


def _prompt_password(prompt: str) -> str:
    value = os.environ.get(PASSWORD_ENV)
    if value:
        return value
    return getpass.getpass(prompt)


def resolve_address(config):
    """Configured host/port, or the first advertised server when no host is configured."""
    if "server_host" not in config.model_fields_set:
        found = discover_server()
        if found:
            return found
        logger.debug("no server advertised, falling back to %s", config.server_host)
    return config.server_host, config.server_port


def make_client(args, config, token: Optional[str] = None) -> VaultClient:
    host, port = resolve_address(config)
    return VaultClient(host, port, timeout=args.timeout, token=token)


def _session():
    try:
        return keystore.load_token()
    except RuntimeError as e:
        print(f"ERROR: {e}")
        return None


def _require_session():
    session = _session()
    if session is None:
        print("ERROR: not logged in; run `vaultkeeper login <login>` first")
    return session


def _report(result, ok_message: str) -> int:
    if result.success:
        print(ok_message)
        return 0
    print(f"ERROR: {result.error}")
    return 1


# --- command handlers ---

def cmd_ping(args, config) -> int:
    try:
        reply = make_client(args, config).ping()
    except (RpcError, OSError) as e:
        print(f"ERROR: {commands.describe_error(e)}")
        return 1
    print(f"OK: server version {reply.get('version', 'unknown')}")
    return 0


def cmd_register(args, config) -> int:
    password = _prompt_password(f"Password for {args.login}: ")
    result = commands.register(make_client(args, config), args.login, password)
    if result.success:
        keystore.save_token(result.login, result.token)
    return _report(result, f"OK: {result.message}")


def cmd_login(args, config) -> int:
    password = _prompt_password(f"Password for {args.login}: ")
    result = commands.login(make_client(args, config), args.login, password)
    if result.success:
        keystore.save_token(result.login, result.token)
    return _report(result, f"OK: {result.message}")


def cmd_logout(args, config) -> int:
    session = _session()
    if session is None:
        print("Not logged in.")
        return 0
    keystore.delete_token(session[0])
    print(f"OK: logged out {session[0]}")
    return 0


def _save(args, config, data_type, payload) -> int:
    session = _require_session()
    if session is None:
        return 1
    login, token = session
    password = _prompt_password(f"Password for {login}: ")
    result = commands.save_secret(make_client(args, config, token), password, args.name, data_type, payload)
    record_id = result.record.record_id if result.record else None
    return _report(result, f"OK: saved {data_type.value} record {record_id}")


def cmd_add_credential(args, config) -> int:
    secret = getpass.getpass(f"Password stored for {args.service}: ")
    return _save(args, config, DataType.CREDENTIALS,
                 commands.credential_payload(args.service, args.username, secret, args.url))


def cmd_add_card(args, config) -> int:
    cvv = getpass.getpass("CVV: ")
    return _save(args, config, DataType.CARD,
                 commands.card_payload(args.card_name, args.number, args.expiry, cvv, args.cardholder))


def cmd_add_text(args, config) -> int:
    return _save(args, config, DataType.TEXT, commands.text_payload(args.title, args.content))


def cmd_upload(args, config) -> int:
    session = _require_session()
    if session is None:
        return 1
    login, token = session
    password = _prompt_password(f"Password for {login}: ")
    result = commands.upload_file(make_client(args, config, token), password, args.path)
    record_id = result.record.record_id if result.record else None
    return _report(result, f"OK: uploaded {args.path} as record {record_id}")


def _fetch(args, config):
    session = _require_session()
    if session is None:
        return None
    login, token = session
    password = _prompt_password(f"Password for {login}: ")
    result = commands.get_vaults(make_client(args, config, token), password, streamed=not args.unary)
    if result.error:
        print(f"ERROR: {result.error}")
        return None
    return result


def cmd_list(args, config) -> int:
    result = _fetch(args, config)
    if result is None:
        return 1
    if not result.vaults:
        print("(vault is empty)")
        return 0
    for item in result.vaults:
        rec = item.record
        line = f"{rec.record_id:>5}  {rec.data_type.value:<12} {rec.name}  [{rec.created_at:%Y-%m-%d %H:%M}]"
        if not item.decrypted:
            line += "  (cannot decrypt)"
        elif rec.data_type == DataType.BINARY:
            line += f"  {commands.format_file_size(len(item.data))}"
        print(line)
        if args.show and item.decrypted and rec.data_type != DataType.BINARY:
            for key, value in item.as_json().items():
                print(f"         {key}: {value}")
    return 0


def cmd_download(args, config) -> int:
    args.unary = False
    result = _fetch(args, config)
    if result is None:
        return 1
    for item in result.vaults:
        if item.record.record_id == args.record_id:
            download = commands.save_download(item, args.out)
            return _report(download, f"OK: {download.message}")
    print(f"ERROR: record {args.record_id} not found")
    return 1


def cmd_delete(args, config) -> int:
    session = _require_session()
    if session is None:
        return 1
    result = commands.deactivate_vault(make_client(args, config, session[1]), args.record_id)
    return _report(result, f"OK: deleted record {args.record_id}")


def cmd_change_password(args, config) -> int:
    session = _require_session()
    if session is None:
        return 1
    login, token = session
    current = getpass.getpass("Current password: ")
    new = getpass.getpass("New password: ")
    if new != getpass.getpass("Repeat new password: "):
        print("ERROR: passwords do not match")
        return 1
    result = commands.change_password(make_client(args, config, token), login, current, new)
    return _report(result, "OK: password changed")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="vaultkeeper", description="VaultKeeper client")
    parser.add_argument("--config", dest="config_path", default=None, help="JSON config file")
    parser.add_argument("--host", default=None)
    parser.add_argument("--port", type=int, default=None)
    parser.add_argument("--timeout", type=float, default=30.0, help="call timeout in seconds")
    parser.add_argument("--env", choices=["local", "dev", "prod"], default=None)
    parser.add_argument("--version", action="version", version=get_version_info())

    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("ping", help="check the server").set_defaults(func=cmd_ping)

    p = sub.add_parser("register", help="create an account")
    p.add_argument("login")
    p.set_defaults(func=cmd_register)

    p = sub.add_parser("login", help="log in and keep the session token")
    p.add_argument("login")
    p.set_defaults(func=cmd_login)

    sub.add_parser("logout", help="forget the session token").set_defaults(func=cmd_logout)

    p = sub.add_parser("add-credential", help="store a login for some service")
    p.add_argument("name")
    p.add_argument("--service", required=True)
    p.add_argument("--username", required=True)
    p.add_argument("--url", default="")
    p.set_defaults(func=cmd_add_credential)

    p = sub.add_parser("add-card", help="store a payment card")
    p.add_argument("name")
    p.add_argument("--card-name", default="")
    p.add_argument("--number", required=True)
    p.add_argument("--expiry", required=True)
    p.add_argument("--cardholder", required=True)
    p.set_defaults(func=cmd_add_card)

    p = sub.add_parser("add-text", help="store a text note")
    p.add_argument("name")
    p.add_argument("--title", default="")
    p.add_argument("--content", required=True)
    p.set_defaults(func=cmd_add_text)

    p = sub.add_parser("upload", help="encrypt and upload a file")
    p.add_argument("path")
    p.set_defaults(func=cmd_upload)

    p = sub.add_parser("list", help="list stored records")
    p.add_argument("--show", action="store_true", help="print decrypted fields")
    p.add_argument("--unary", action="store_true", help="fetch in a single reply instead of streaming")
    p.set_defaults(func=cmd_list)

    p = sub.add_parser("download", help="decrypt a stored file to disk")
    p.add_argument("record_id", type=int)
    p.add_argument("--out", default=".")
    p.set_defaults(func=cmd_download)

    p = sub.add_parser("delete", help="soft-delete a record")
    p.add_argument("record_id", type=int)
    p.set_defaults(func=cmd_delete)

    sub.add_parser("change-password", help="change the login password").set_defaults(func=cmd_change_password)

    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    config = load_config(args.config_path, {
        "server_host": args.host,
        "server_port": args.port,
        "env": args.env,
    })
    configure_logging(config.env)
    return args.func(args, config)


if __name__ == "__main__":
    sys.exit(main())
