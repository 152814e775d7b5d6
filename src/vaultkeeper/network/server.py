"""
VaultKeeper server:
- Serves the /vaultkeeper.Vault/* methods over framed TCP, one call per connection
- Optionally advertises itself with Zeroconf (_vaultkeeper._tcp.local.)

Call shapes:
    unary          call, message, end   ->  message, status
    client stream  call, message*, end  ->  message, status      (UploadFile)
    server stream  call, message, end   ->  message*, status     (GetStreamedVaults)

Usage:
    vaultkeeper-server --db ./vaultkeeper.db --port 8099 --advertise
"""

import argparse
import logging
import socket
import threading
from typing import Dict, Optional, Tuple

from zeroconf import ServiceInfo, Zeroconf

from . import framing
from .context import CallContext
from .framing import Message
from .interceptors import (
    AuthInterceptor,
    LoggingInterceptor,
    RecoveryInterceptor,
    CHANGE_PASSWORD,
    DEACTIVATE_VAULT,
    GET_STREAMED_VAULTS,
    GET_VAULTS,
    LOGIN_USER,
    PING,
    REGISTER_USER,
    SAVE_VAULT,
    UPLOAD_FILE,
    chain_stream,
    chain_unary,
    require_user_id,
)
from .status import RpcError, StatusCode, to_rpc_error
from .transfer import emit_records, receive_upload
from ..config import load_config
from ..core.exceptions import VaultKeeperError
from ..core.logging_config import configure_logging
from ..core.models import DataType, record_from_header
from ..database.models import open_repositories
from ..security.passwords import BcryptHasher
from ..security.tokens import JWTAuthenticator
from ..service import UserService, VaultService
from ..version import __version__

logger = logging.getLogger(__name__)

SERVICE_TYPE = "_vaultkeeper._tcp.local."
IDLE_TIMEOUT = 30.0
DRAIN_TIMEOUT = 2.0

UNARY = "unary"
STREAM = "stream"


class ServerStream:
    """Read/write side of one call on an accepted connection."""

    __slots__ = ("_conn", "context", "_ended")

    def __init__(self, conn, context: CallContext):
        self._conn = conn
        self.context = context
        self._ended = False

    def recv(self) -> Optional[Message]:
        """Next message from the client, or None once it half-closed."""
        if self._ended:
            return None
        frame = framing.recv_frame(self._conn)
        if frame is None:
            raise ConnectionError("client disconnected before ending the call")
        header, payload = frame
        if header["kind"] == framing.END:
            self._ended = True
            return None
        if header["kind"] != framing.MESSAGE:
            raise RpcError(StatusCode.INVALID_ARGUMENT, f"unexpected {header['kind']} frame")
        body = header.get("body")
        return Message(body=body if isinstance(body, dict) else {}, payload=payload)

    def send(self, message: Message) -> None:
        framing.send_message(self._conn, message)


def _int_field(body, name):
    value = body.get(name)
    if not isinstance(value, int) or isinstance(value, bool):
        raise RpcError(StatusCode.INVALID_ARGUMENT, f"{name} must be an integer")
    return value


class VaultServer:
    """Dispatch calls to the user and vault services through the interceptor chain."""

    def __init__(self, user_service: UserService, vault_service: VaultService, authenticator,
                 token_ttl=3600, interceptors=None):
        self.user_service = user_service
        self.vault_service = vault_service
        self.authenticator = authenticator
        self.token_ttl = token_ttl
        if interceptors is None:
            interceptors = [LoggingInterceptor(), RecoveryInterceptor(), AuthInterceptor(authenticator)]
        self.interceptors = list(interceptors)

        self._socket = None
        self._should_stop = threading.Event()
        self.methods: Dict[str, Tuple[str, object]] = {}
        self._register_methods()

    def _register_methods(self):
        unary = {
            PING: self.ping,
            REGISTER_USER: self.register_user,
            LOGIN_USER: self.login_user,
            SAVE_VAULT: self.save_vault,
            GET_VAULTS: self.get_vaults,
            DEACTIVATE_VAULT: self.deactivate_vault,
            CHANGE_PASSWORD: self.change_password,
        }
        for method, handler in unary.items():
            self.methods[method] = (UNARY, chain_unary(self.interceptors, handler))

        streams = {
            UPLOAD_FILE: self.upload_file,
            GET_STREAMED_VAULTS: self.get_streamed_vaults,
        }
        for method, handler in streams.items():
            self.methods[method] = (STREAM, chain_stream(self.interceptors, handler))

    # --- unary handlers ---

    def ping(self, ctx, request):
        self.user_service.ping()
        return Message(body={"status": "ok", "version": __version__})

    def register_user(self, ctx, request):
        user = self.user_service.register(request.body.get("login"), request.body.get("password"))
        token = self.authenticator.create_token(user.user_id, self.token_ttl)
        return Message(body={"user_id": user.user_id, "token": token})

    def login_user(self, ctx, request):
        token = self.user_service.login(
            request.body.get("login"), request.body.get("password"), self.authenticator, self.token_ttl
        )
        return Message(body={"token": token})

    def save_vault(self, ctx, request):
        user_id = require_user_id(ctx)
        record = record_from_header(request.body.get("record") or {}, request.payload)
        # ownership always comes from the token, never from the request
        record.user_id = user_id
        saved = self.vault_service.save(record)
        return Message(body={"record": saved.to_header()})

    def get_vaults(self, ctx, request):
        user_id = require_user_id(ctx)
        records = self.vault_service.get_by_user(user_id)
        headers = []
        for record in records:
            header = record.to_header()
            header["size"] = len(record.encrypted_data)
            headers.append(header)
        return Message(body={"records": headers}, payload=b"".join(r.encrypted_data for r in records))

    def deactivate_vault(self, ctx, request):
        user_id = require_user_id(ctx)
        self.vault_service.deactivate(user_id, _int_field(request.body, "id"))
        return Message(body={})

    def change_password(self, ctx, request):
        user_id = require_user_id(ctx)
        body = request.body
        self.user_service.change_password(
            user_id, body.get("login"), body.get("current_password"), body.get("new_password")
        )
        return Message(body={})

    # --- stream handlers ---

    def upload_file(self, stream):
        user_id = require_user_id(stream.context)
        file_name, meta_data, blob = receive_upload(stream)
        record = record_from_header(
            {"user_id": user_id, "name": file_name, "data_type": DataType.BINARY.value, "meta_data": meta_data},
            blob,
        )
        saved = self.vault_service.save(record)
        logger.info("upload stored as record id=%s (%d bytes)", saved.record_id, len(blob))
        return Message(body={"record": saved.to_header()})

    def get_streamed_vaults(self, stream):
        user_id = require_user_id(stream.context)
        # the request carries no fields but must still be consumed
        stream.recv()
        records = self.vault_service.get_by_user(user_id)
        emit_records(stream, records)
        return None

    # --- connection handling ---

    def handle_client(self, conn, addr):
        """Serve exactly one call on an accepted connection."""
        logger.debug("connection from %s", addr)
        conn.settimeout(IDLE_TIMEOUT)
        try:
            frame = framing.recv_frame(conn)
            if frame is None:
                return
            header, _ = frame
            if header["kind"] != framing.CALL:
                framing.send_status(conn, StatusCode.INVALID_ARGUMENT, "call frame expected")
                return

            method = header.get("method", "")
            metadata = header.get("metadata")
            timeout = header.get("timeout")
            if not isinstance(method, str):
                framing.send_status(conn, StatusCode.INVALID_ARGUMENT, "method must be a string")
                return
            if timeout is not None and (not isinstance(timeout, (int, float)) or isinstance(timeout, bool)):
                framing.send_status(conn, StatusCode.INVALID_ARGUMENT, "timeout must be a number")
                return

            ctx = CallContext.with_timeout(method, metadata if isinstance(metadata, dict) else None, timeout)
            self._dispatch(conn, ctx)
        except (ConnectionError, socket.timeout) as e:
            logger.info("connection from %s dropped: %s", addr, e)
        except OSError as e:
            logger.warning("socket error with %s: %s", addr, e)
        except VaultKeeperError as e:
            # malformed call frame
            logger.info("rejected call from %s: %s", addr, e)
            err = to_rpc_error(e)
            self._send_final_status(conn, err.code, err.message)
        except Exception:
            logger.exception("unhandled error serving %s", addr)
            self._send_final_status(conn, StatusCode.INTERNAL, "internal error")
        finally:
            self._close(conn)
            logger.debug("disconnected %s", addr)

    def _send_final_status(self, conn, code, message):
        try:
            framing.send_status(conn, code, message)
        except OSError as e:
            logger.debug("could not send status: %s", e)

    def _dispatch(self, conn, ctx: CallContext):
        entry = self.methods.get(ctx.method)
        if entry is None:
            framing.send_status(conn, StatusCode.UNIMPLEMENTED, f"unknown method {ctx.method}")
            return

        shape, handler = entry
        stream = ServerStream(conn, ctx)
        try:
            if shape == UNARY:
                request = stream.recv() or Message()
                reply = handler(ctx, request)
                ctx.check_deadline()
            else:
                reply = handler(stream)
            if reply is not None:
                stream.send(reply)
        except RpcError as e:
            framing.send_status(conn, e.code, e.message)
            return
        except VaultKeeperError as e:
            # raised while framing the reply, outside the interceptors
            err = to_rpc_error(e)
            framing.send_status(conn, err.code, err.message)
            return
        framing.send_status(conn, StatusCode.OK)

    def _close(self, conn):
        # let the client finish writing so it can read our status before we close
        try:
            conn.shutdown(socket.SHUT_WR)
            conn.settimeout(DRAIN_TIMEOUT)
            while conn.recv(65536):
                pass
        except OSError:
            pass
        finally:
            conn.close()

    def bind(self, host="", port=0):
        """Create the listening socket; returns the bound port."""
        s = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        s.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        s.bind((host, port))
        s.listen(16)
        self._socket = s
        self._should_stop.clear()
        return s.getsockname()[1]

    @property
    def port(self):
        return self._socket.getsockname()[1] if self._socket else None

    def serve_forever(self):
        """Accept connections until stop() is called; one thread per connection."""
        if self._socket is None:
            raise RuntimeError("bind() must be called before serve_forever()")
        s = self._socket
        logger.info("VaultKeeper server listening on port %d", self.port)

        while not self._should_stop.is_set():
            try:
                # short timeout so the loop can periodically check the stop flag
                s.settimeout(0.5)
                conn, addr = s.accept()
                conn.settimeout(None)
                t = threading.Thread(target=self.handle_client, args=(conn, addr), daemon=True)
                t.start()
            except socket.timeout:
                continue
            except OSError as e:
                # raised when stop() closes the listening socket
                if not self._should_stop.is_set():
                    logger.error("unexpected error in server loop: %s", e)
                break

        if self._socket is not None:
            try:
                self._socket.close()
            except OSError:
                pass
            self._socket = None
        logger.info("server listener stopped")

    def start(self, host="", port=0):
        """Bind and serve in a background thread; returns (thread, port)."""
        bound = self.bind(host, port)
        t = threading.Thread(target=self.serve_forever, daemon=True)
        t.start()
        return t, bound

    def stop(self):
        """Signal the accept loop to exit and close the listening socket."""
        if self._socket is None:
            return
        self._should_stop.set()
        try:
            self._socket.close()
        except OSError as e:
            logger.warning("error closing server socket: %s", e)


def build_server(config, hasher=None) -> VaultServer:
    """Wire storage, services and the authenticator from a Config.

    Raises WeakSecretError when the configured secret is too short.
    """
    authenticator = JWTAuthenticator(config.jwt_secret)
    users, vault = open_repositories(config.db_path)
    return VaultServer(
        UserService(users, hasher or BcryptHasher()),
        VaultService(vault),
        authenticator,
        token_ttl=config.token_ttl,
    )


def get_local_ip():
    """A trick to get the current IP using a UDP socket."""
    s = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    try:
        s.connect(("8.8.8.8", 80))
        return s.getsockname()[0]
    except OSError:
        return "127.0.0.1"
    finally:
        s.close()


def advertise_service(name, port, service=SERVICE_TYPE):
    """Advertise this server using Zeroconf."""
    zeroconf = Zeroconf()
    local_ip = get_local_ip()
    info = ServiceInfo(
        service,
        f"{name}.{service}",
        addresses=[socket.inet_aton(local_ip)],
        port=port,
        properties={"name": name, "version": __version__},
        server=f"{socket.gethostname()}.local.",
    )
    zeroconf.register_service(info)
    logger.info("Zeroconf service registered: %s @ %s:%d (%s)", name, local_ip, port, service)
    return zeroconf, info


def build_parser():
    parser = argparse.ArgumentParser(description="VaultKeeper server")
    parser.add_argument("--config", dest="config_path", default=None, help="JSON config file")
    parser.add_argument("--host", dest="server_host", default=None)
    parser.add_argument("--port", dest="server_port", type=int, default=None)
    parser.add_argument("--db", dest="db_path", default=None)
    parser.add_argument("--env", dest="env", choices=["local", "dev", "prod"], default=None)
    parser.add_argument("--token-ttl", dest="token_ttl", type=int, default=None)
    parser.add_argument("--advertise", dest="advertise", action="store_true", default=None)
    parser.add_argument("--name", default=None, help="Zeroconf instance name")
    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)
    overrides = {k: v for k, v in vars(args).items() if k not in ("config_path", "name")}
    config = load_config(args.config_path, overrides)
    configure_logging(config.env)

    server = build_server(config)
    port = server.bind(config.server_host, config.server_port)

    zeroconf = info = None
    if config.advertise:
        name = args.name or f"VaultKeeper-{socket.gethostname()}"
        zeroconf, info = advertise_service(name, port)

    try:
        server.serve_forever()
    except KeyboardInterrupt:
        logger.info("shutting down")
        server.stop()
    finally:
        if zeroconf is not None:
            logger.info("unregistering Zeroconf service")
            try:
                zeroconf.unregister_service(info)
            finally:
                zeroconf.close()


if __name__ == "__main__":
    main()
