from __future__ import annotations

from contextlib import contextmanager
import socket
import threading
import time
from typing import Any, Callable, Iterator

import requests
from requests.adapters import HTTPAdapter
from urllib3.connection import HTTPConnection
from urllib3.connectionpool import HTTPConnectionPool, HTTPSConnectionPool
from urllib3.poolmanager import PoolManager, ProxyManager

from .config import TransportConfig
from .timer import RequestTrace


def keepalive_socket_options(interval_seconds: float) -> list[tuple[int, int, int]]:
    options = list(HTTPConnection.default_socket_options)
    options.append((socket.SOL_SOCKET, socket.SO_KEEPALIVE, 1))
    seconds = max(1, int(interval_seconds))
    for name in ("TCP_KEEPIDLE", "TCP_KEEPINTVL"):
        opt = getattr(socket, name, None)
        if opt is not None:
            options.append((socket.IPPROTO_TCP, opt, seconds))
    return options


def _active_trace(slot: threading.local | None) -> RequestTrace | None:
    if slot is None:
        return None
    return getattr(slot, "trace", None)


class _TracingPoolMixin:
    trace_slot: threading.local | None = None
    idle_timeout_seconds: float | None = None

    def _get_conn(self, timeout=None):
        conn = super()._get_conn(timeout=timeout)
        idle_since = getattr(conn, "_idle_since", None)
        if (
            idle_since is not None
            and self.idle_timeout_seconds is not None
            and time.monotonic() - idle_since > self.idle_timeout_seconds
        ):
            # A closed connection reconnects on its next request.
            conn.close()
        return conn

    def _put_conn(self, conn) -> None:
        if conn is not None:
            conn._idle_since = time.monotonic()
        super()._put_conn(conn)

    def _validate_conn(self, conn) -> None:
        super()._validate_conn(conn)
        trace = _active_trace(self.trace_slot)
        if trace is None:
            return
        # Dial and handshake here so the connection is usable when got_conn fires.
        if getattr(conn, "sock", None) is None:
            conn.connect()
        trace.got_conn()

    def _make_request(self, conn, method, url, *args, **kwargs):
        response = super()._make_request(conn, method, url, *args, **kwargs)
        trace = _active_trace(self.trace_slot)
        if trace is not None:
            trace.got_first_response_byte()
        return response


class TracingHTTPConnectionPool(_TracingPoolMixin, HTTPConnectionPool):
    pass


class TracingHTTPSConnectionPool(_TracingPoolMixin, HTTPSConnectionPool):
    pass


class _TracingManagerMixin:
    def _install_tracing(self, trace_slot: threading.local, idle_timeout_seconds: float | None) -> None:
        self.pool_classes_by_scheme = {
            "http": TracingHTTPConnectionPool,
            "https": TracingHTTPSConnectionPool,
        }
        self._trace_slot = trace_slot
        self._idle_timeout_seconds = idle_timeout_seconds

    def _new_pool(self, scheme, host, port, request_context=None):
        pool = super()._new_pool(scheme, host, port, request_context=request_context)
        pool.trace_slot = self._trace_slot
        pool.idle_timeout_seconds = self._idle_timeout_seconds
        return pool


class TracingPoolManager(_TracingManagerMixin, PoolManager):
    def __init__(
        self,
        trace_slot: threading.local,
        idle_timeout_seconds: float | None,
        num_pools: int = 10,
        headers: dict[str, str] | None = None,
        **connection_pool_kw: Any,
    ) -> None:
        super().__init__(num_pools=num_pools, headers=headers, **connection_pool_kw)
        self._install_tracing(trace_slot, idle_timeout_seconds)


class TracingProxyManager(_TracingManagerMixin, ProxyManager):
    def __init__(
        self,
        trace_slot: threading.local,
        idle_timeout_seconds: float | None,
        proxy_url: str,
        **kwargs: Any,
    ) -> None:
        super().__init__(proxy_url, **kwargs)
        self._install_tracing(trace_slot, idle_timeout_seconds)


class TracingAdapter(HTTPAdapter):
    """HTTPAdapter whose pools report connection and response-head events.

    The trace of the request in flight is kept per thread, so one adapter
    serves every worker thread. Direct and proxied requests are traced alike.
    """

    def __init__(self, config: TransportConfig) -> None:
        self._transport_config = config
        self._trace_slot = threading.local()
        super().__init__(
            pool_connections=config.host_pools,
            pool_maxsize=config.max_idle_per_host,
            max_retries=0,
        )

    def _socket_options(self) -> list[tuple[int, int, int]]:
        return keepalive_socket_options(self._transport_config.keepalive_interval_seconds)

    def init_poolmanager(self, connections, maxsize, block=False, **pool_kwargs):
        self._pool_connections = connections
        self._pool_maxsize = maxsize
        self._pool_block = block
        pool_kwargs.setdefault("socket_options", self._socket_options())
        self.poolmanager = TracingPoolManager(
            self._trace_slot,
            self._transport_config.idle_timeout_seconds,
            num_pools=connections,
            maxsize=maxsize,
            block=block,
            **pool_kwargs,
        )

    def proxy_manager_for(self, proxy, **proxy_kwargs):
        if proxy in self.proxy_manager or proxy.lower().startswith("socks"):
            return super().proxy_manager_for(proxy, **proxy_kwargs)
        proxy_kwargs.setdefault("socket_options", self._socket_options())
        manager = TracingProxyManager(
            self._trace_slot,
            self._transport_config.idle_timeout_seconds,
            proxy,
            proxy_headers=self.proxy_headers(proxy),
            num_pools=self._pool_connections,
            maxsize=self._pool_maxsize,
            block=self._pool_block,
            **proxy_kwargs,
        )
        self.proxy_manager[proxy] = manager
        return manager

    @contextmanager
    def tracing(self, trace: RequestTrace | None) -> Iterator[None]:
        previous = getattr(self._trace_slot, "trace", None)
        self._trace_slot.trace = trace
        try:
            yield
        finally:
            self._trace_slot.trace = previous


class Transport:
    """Explicitly constructed HTTP transport shared by all workers."""

    def __init__(self, config: TransportConfig, session: requests.Session | None = None) -> None:
        self.config = config
        self.session = session or requests.Session()
        self.adapter = TracingAdapter(config)
        self.session.mount("http://", self.adapter)
        self.session.mount("https://", self.adapter)

    @property
    def timeout(self) -> tuple[float, float | None]:
        return (self.config.connect_timeout_seconds, self.config.read_timeout_seconds)

    def get(
        self,
        url: str,
        *,
        trace: RequestTrace | None = None,
        on_response: Callable[[requests.Response], None] | None = None,
    ) -> requests.Response:
        hooks = None
        if on_response is not None:

            def _hook(response: requests.Response, *args: Any, **kwargs: Any) -> None:
                on_response(response)

            hooks = {"response": [_hook]}
        with self.adapter.tracing(trace):
            # One GET, one response: a redirect surfaces as a non-2xx status.
            return self.session.get(
                url, stream=True, timeout=self.timeout, hooks=hooks, allow_redirects=False
            )

    def close(self) -> None:
        self.session.close()
