"""
gateway/connection.py — Persistent, device-authenticated gateway connection

One GatewayConnection owns one WebSocket to the gateway at a time:

  1. transport opens            → AWAITING_CHALLENGE (nothing sent yet)
  2. `connect.challenge` event  → AUTHENTICATING, signed `connect` request
  3. hello ok                   → CONNECTED, issued device token cached
  4. hello rejected             → transport closed with 4000
  5. transport closed (any cause) → DISCONNECTED, pending requests fail,
                                   one reconnect scheduled after a fixed delay

All transitions, dispatch and the pending-request map live on the event
loop that called start(); nothing here needs a lock.

Usage:
    conn = GatewayConnection(url, identity_store=..., token_store=...,
                             on_status=print, on_event=print)
    conn.start()
    payload = await conn.request("sessions.list", {"limit": 50})
    await conn.stop()
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Optional

from websockets.asyncio.client import connect as ws_connect
from websockets.exceptions import ConnectionClosed, InvalidHandshake, InvalidURI
from websockets.protocol import State

from exceptions import (
    GatewayClosedError,
    GatewayError,
    GatewayNotConnectedError,
    GatewayRequestError,
    GatewayTimeoutError,
    MissingNonceError,
)
from gateway.handshake import DEFAULT_ROLE, DEFAULT_SCOPES, ClientInfo, build_connect_params
from gateway.identity import DeviceIdentity, DeviceIdentityStore
from gateway.protocol import (
    CONNECT_METHOD,
    EventFrame,
    RequestFrame,
    ResponseFrame,
    parse_frame,
)
from gateway.state import ConnectionState, StatusUpdate, TransportEvent, next_state
from gateway.token_store import DeviceTokenStore
from observability.logger import get_logger

if TYPE_CHECKING:
    from config.settings import GatewayTarget, Settings

log = get_logger(__name__)

DEFAULT_ORIGIN = "http://localhost:18789"
DEFAULT_RECONNECT_DELAY = 1.0
HANDSHAKE_CLOSE_CODE = 4000
ABNORMAL_CLOSURE = 1006
INTERNAL_ERROR_CLOSE_CODE = 1011
MAX_FRAME_BYTES = 16 * 2**20

StatusCallback = Callable[[StatusUpdate], None]
EventCallback = Callable[[dict[str, Any]], None]
ConnectFn = Callable[..., Awaitable[Any]]


class GatewayConnection:
    """
    Authenticated request/response + event stream over one WebSocket.

    Collaborators use start(), stop(), request() and the two callbacks.
    """

    def __init__(
        self,
        url: str,
        *,
        identity_store: DeviceIdentityStore,
        token_store: DeviceTokenStore,
        token: Optional[str] = None,
        client: Optional[ClientInfo] = None,
        role: str = DEFAULT_ROLE,
        scopes: Optional[list[str]] = None,
        origin: str = DEFAULT_ORIGIN,
        reconnect_delay: float = DEFAULT_RECONNECT_DELAY,
        request_timeout: Optional[float] = None,
        on_status: Optional[StatusCallback] = None,
        on_event: Optional[EventCallback] = None,
        connect: Optional[ConnectFn] = None,
    ):
        self._url = url
        self._token = token
        self._client = client or ClientInfo()
        self._role = role
        self._scopes = list(scopes if scopes is not None else DEFAULT_SCOPES)
        self._origin = origin
        self._reconnect_delay = reconnect_delay
        self._request_timeout = request_timeout
        self._on_status = on_status
        self._on_event = on_event
        self._connect_fn: ConnectFn = connect or ws_connect
        self._log = log.bind(url=url)

        self._token_store = token_store
        self._identity: DeviceIdentity = identity_store.load_or_create()

        self._ws: Any = None
        self._state = ConnectionState.DISCONNECTED
        self._pending: dict[str, asyncio.Future] = {}
        self._transport_task: Optional[asyncio.Task] = None
        self._handshake_task: Optional[asyncio.Task] = None
        self._reconnect_handle: Optional[asyncio.TimerHandle] = None
        self._connect_sent = False
        self._connect_nonce: Optional[str] = None
        self._running = False

    @classmethod
    def from_settings(
        cls,
        settings: "Settings",
        target: "GatewayTarget",
        *,
        on_status: Optional[StatusCallback] = None,
        on_event: Optional[EventCallback] = None,
    ) -> "GatewayConnection":
        gw = settings.gateway
        identity_dir = settings.identity_dir
        return cls(
            target.url,
            identity_store=DeviceIdentityStore(identity_dir / "device.json"),
            token_store=DeviceTokenStore(identity_dir / "device-auth.json"),
            token=target.token,
            client=ClientInfo(
                id=gw.client_id,
                mode=gw.client_mode,
                version=gw.client_version,
                locale=gw.locale,
            ),
            role=gw.role,
            scopes=list(gw.scopes),
            origin=gw.origin,
            reconnect_delay=gw.reconnect_delay_seconds,
            request_timeout=gw.request_timeout_seconds,
            on_status=on_status,
            on_event=on_event,
        )

    # ─────────────────────────────────────────────────────────────────────────
    # Introspection
    # ─────────────────────────────────────────────────────────────────────────

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    @property
    def identity(self) -> DeviceIdentity:
        return self._identity

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    @property
    def reconnect_scheduled(self) -> bool:
        return self._reconnect_handle is not None

    def cached_device_token(self) -> Optional[str]:
        """Device token cached for this identity and role, if any."""
        return self._token_store.load(self._identity.device_id, self._role)

    # ─────────────────────────────────────────────────────────────────────────
    # Lifecycle
    # ─────────────────────────────────────────────────────────────────────────

    def start(self) -> None:
        """Open the transport unless it is already open, opening, or scheduled."""
        self._running = True
        if self._transport_task is not None and not self._transport_task.done():
            return
        if self._reconnect_handle is not None:
            return
        self._open()

    async def stop(self) -> None:
        """
        Close the transport and forget all per-connection state.

        Pending requests are abandoned (their futures are cancelled, not
        failed) and no reconnect or callback happens after this returns.
        """
        self._running = False
        if self._reconnect_handle is not None:
            self._reconnect_handle.cancel()
            self._reconnect_handle = None

        ws, self._ws = self._ws, None
        current = asyncio.current_task()
        tasks = [
            t for t in (self._handshake_task, self._transport_task)
            if t is not None and not t.done() and t is not current
        ]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._handshake_task = None
        self._transport_task = None

        if ws is not None:
            await ws.close()

        for fut in self._pending.values():
            fut.cancel()
        self._pending.clear()
        self._state = ConnectionState.DISCONNECTED
        self._connect_sent = False
        self._connect_nonce = None
        self._log.info("gateway.stopped")

    # ─────────────────────────────────────────────────────────────────────────
    # Requests
    # ─────────────────────────────────────────────────────────────────────────

    async def request(
        self,
        method: str,
        params: Any = None,
        *,
        timeout: Optional[float] = None,
    ) -> Any:
        """
        Send a request and return the response payload.

        Raises GatewayNotConnectedError immediately unless the handshake has
        completed on an open transport, GatewayRequestError if the gateway
        answers ok=false, and GatewayClosedError if the connection drops first.
        """
        if self._state is not ConnectionState.CONNECTED:
            raise GatewayNotConnectedError()
        return await self._send_request(method, params, timeout=timeout)

    async def _send_request(
        self,
        method: str,
        params: Any = None,
        *,
        timeout: Optional[float] = None,
    ) -> Any:
        ws = self._ws
        if ws is None or ws.state is not State.OPEN:
            raise GatewayNotConnectedError()

        frame = RequestFrame(method=method, params=params)
        fut: asyncio.Future = asyncio.get_running_loop().create_future()
        self._pending[frame.id] = fut
        try:
            try:
                await ws.send(frame.to_json())
            except ConnectionClosed:
                # the transport loop sees the same close and fails fut
                pass

            timeout = timeout if timeout is not None else self._request_timeout
            if timeout is None:
                return await fut
            try:
                return await asyncio.wait_for(fut, timeout)
            except asyncio.TimeoutError:
                raise GatewayTimeoutError(f"{method} timed out after {timeout}s") from None
        finally:
            self._pending.pop(frame.id, None)

    # ─────────────────────────────────────────────────────────────────────────
    # Transport loop
    # ─────────────────────────────────────────────────────────────────────────

    def _open(self) -> None:
        self._transport_task = asyncio.create_task(self._run_transport())

    async def _run_transport(self) -> None:
        try:
            ws = await self._connect_fn(
                self._url,
                origin=self._origin,
                max_size=MAX_FRAME_BYTES,
            )
        except (OSError, InvalidHandshake, InvalidURI, asyncio.TimeoutError) as exc:
            self._log.warning("gateway.connect_failed", error=str(exc), error_type=type(exc).__name__)
            self._handle_close(ABNORMAL_CLOSURE, str(exc))
            return

        if not self._running:
            await ws.close()
            return

        self._ws = ws
        self._handle_open()
        try:
            async for raw in ws:
                self._dispatch(raw)
        except ConnectionClosed:
            pass
        except Exception:
            self._log.exception("gateway.receive_loop_failed")
        finally:
            if self._ws is ws:
                self._ws = None
                # no-op when the gateway already closed it
                await ws.close(INTERNAL_ERROR_CLOSE_CODE, "internal error")
                code = ws.close_code if ws.close_code is not None else ABNORMAL_CLOSURE
                self._handle_close(code, ws.close_reason or "")

    def _handle_open(self) -> None:
        self._connect_sent = False
        self._connect_nonce = None
        self._log.info("gateway.ws_open")
        self._transition(TransportEvent.OPENED)

    def _handle_close(self, code: int, reason: str) -> None:
        self._connect_sent = False
        self._connect_nonce = None

        pending = list(self._pending.values())
        self._pending.clear()
        for fut in pending:
            if not fut.done():
                fut.set_exception(GatewayClosedError(code, reason))

        self._log.info("gateway.closed", code=code, reason=reason, failed_requests=len(pending))
        if not self._running:
            return
        self._transition(TransportEvent.CLOSED, code=code, reason=reason)
        self._schedule_reconnect()

    def _schedule_reconnect(self) -> None:
        if self._reconnect_handle is not None:
            return
        loop = asyncio.get_running_loop()
        self._reconnect_handle = loop.call_later(self._reconnect_delay, self._fire_reconnect)
        self._log.info("gateway.reconnect_scheduled", delay=self._reconnect_delay)

    def _fire_reconnect(self) -> None:
        self._reconnect_handle = None
        if self._running:
            self._open()

    # ─────────────────────────────────────────────────────────────────────────
    # Inbound dispatch
    # ─────────────────────────────────────────────────────────────────────────

    def _dispatch(self, raw: Any) -> None:
        frame = parse_frame(raw)
        if frame is None:
            return

        if isinstance(frame, EventFrame):
            if frame.is_challenge:
                self._handle_challenge(frame)
            else:
                self._emit_event(frame.raw)
            return

        self._settle(frame)

    def _settle(self, frame: ResponseFrame) -> None:
        fut = self._pending.pop(frame.id, None)
        if fut is None or fut.done():
            return
        if frame.ok:
            fut.set_result(frame.payload)
        else:
            fut.set_exception(GatewayRequestError(frame.error_message or "request failed"))

    def _handle_challenge(self, frame: EventFrame) -> None:
        self._connect_nonce = frame.nonce()
        self._connect_sent = False
        self._log.info("gateway.challenge", has_nonce=self._connect_nonce is not None)
        self._transition(TransportEvent.CHALLENGE)

        if self._handshake_task is not None and not self._handshake_task.done():
            self._handshake_task.cancel()
        self._handshake_task = asyncio.create_task(self._send_connect())

    # ─────────────────────────────────────────────────────────────────────────
    # Handshake
    # ─────────────────────────────────────────────────────────────────────────

    async def _send_connect(self) -> None:
        if self._connect_sent:
            return
        self._connect_sent = True

        try:
            params = build_connect_params(
                self._identity,
                nonce=self._connect_nonce,
                client=self._client,
                role=self._role,
                scopes=self._scopes,
                token=self._token,
            )
        except MissingNonceError as exc:
            self._log.error("gateway.missing_nonce")
            await self._fail_handshake(str(exc), reason="missing nonce")
            return

        try:
            hello = await self._send_request(CONNECT_METHOD, params)
        except GatewayError as exc:
            self._log.warning("gateway.hello_failed", error=str(exc))
            await self._fail_handshake(str(exc), reason="connect failed")
            return

        self._persist_device_token(hello)
        self._connect_nonce = None
        self._log.info("gateway.hello_ok", device_id=self._identity.device_id)
        self._transition(TransportEvent.HELLO_OK)

    async def _fail_handshake(self, error: str, *, reason: str) -> None:
        self._transition(TransportEvent.HELLO_FAILED, error=error)
        ws = self._ws
        if ws is not None:
            await ws.close(HANDSHAKE_CLOSE_CODE, reason)

    def _persist_device_token(self, hello: Any) -> None:
        auth = hello.get("auth") if isinstance(hello, dict) else None
        if not isinstance(auth, dict):
            return
        issued = auth.get("deviceToken")
        if not isinstance(issued, str) or not issued:
            return
        granted = auth.get("scopes")
        scopes = granted if isinstance(granted, list) else self._scopes
        try:
            self._token_store.save(self._identity.device_id, self._role, issued, scopes)
        except OSError as exc:
            self._log.error("gateway.token_persist_failed", error=str(exc))

    # ─────────────────────────────────────────────────────────────────────────
    # Notifications
    # ─────────────────────────────────────────────────────────────────────────

    def _transition(self, event: TransportEvent, **extra: Any) -> None:
        self._state = next_state(self._state, event)
        self._emit_status(
            StatusUpdate(
                connected=self._state is ConnectionState.CONNECTED,
                phase=self._state.value,
                **extra,
            )
        )

    def _emit_status(self, update: StatusUpdate) -> None:
        if self._on_status is None:
            return
        try:
            self._on_status(update)
        except Exception:
            self._log.exception("gateway.on_status_failed")

    def _emit_event(self, envelope: dict[str, Any]) -> None:
        if self._on_event is None:
            return
        try:
            self._on_event(envelope)
        except Exception:
            self._log.exception("gateway.on_event_failed", event_name=envelope.get("event"))
