"""
客户端网络封装：负责连接服务器、心跳保活、断线退避重连，并以行分隔 JSON 收发帧。

线程模型：
- LineTransport 的接收线程只负责按行切分并放入队列，不触碰任何会话状态
- ConnectionManager.pump() 在持有者线程中取出帧、处理握手/心跳/请求应答，
  再把普通帧交给上层（频道路由）
"""
from __future__ import annotations

import itertools
import logging
import socket
import threading
from dataclasses import dataclass
from enum import Enum
from queue import Empty, SimpleQueue
from typing import Any, Callable, Dict, List, Optional, Tuple
from urllib.parse import urlsplit

from drawguess.shared.constants import (
    BACKOFF_BASE_MS,
    BACKOFF_CAP_MS,
    BUFFER_SIZE,
    CONNECT_TIMEOUT,
    ENDPOINT_SCHEMES,
    HANDSHAKE_TIMEOUT,
    HEARTBEAT_INTERVAL,
    HEARTBEAT_TOLERANCE,
    KEEPALIVE_INTERVAL,
    KEEPALIVE_PATH,
    MAX_RECONNECT_ATTEMPTS,
    MSG_CONNECT,
    MSG_CONNECTED,
    MSG_ERROR,
    MSG_PING,
    MSG_PONG,
    MSG_REQUEST,
    MSG_RESPONSE,
)
from drawguess.shared.errors import ConnectionLostError, HandshakeError, ProtocolError, TransportError
from drawguess.shared.protocols import Message
from drawguess.client.timers import Scheduler, TimerHandle

logger = logging.getLogger(__name__)

CLIENT_NAME = "drawguess-client"

# 接收线程结束时放入队列的标记
TRANSPORT_CLOSED = object()


def parse_endpoint(endpoint: str) -> Tuple[str, int]:
    """解析 tcp://host:port 形式的连接地址"""
    if not isinstance(endpoint, str) or not endpoint:
        raise ValueError(f"invalid endpoint: {endpoint!r}")
    parts = urlsplit(endpoint)
    if parts.scheme not in ENDPOINT_SCHEMES:
        raise ValueError(f"unsupported endpoint scheme: {endpoint!r}")
    try:
        port = parts.port
    except ValueError as exc:
        raise ValueError(f"invalid endpoint port: {endpoint!r}") from exc
    if not parts.hostname or port is None:
        raise ValueError(f"endpoint must include host and port: {endpoint!r}")
    return parts.hostname, port


def backoff_delay(attempt: int, base_ms: int = BACKOFF_BASE_MS, cap_ms: int = BACKOFF_CAP_MS) -> int:
    """第 attempt 次重试前的等待毫秒数：min(base * 2^attempt, cap)"""
    if attempt < 0:
        raise ValueError("attempt must be >= 0")
    return min(base_ms * (2 ** attempt), cap_ms)


class LineTransport:
    """线程驱动的 TCP 传输，按行收发 JSON 文本。"""

    def __init__(self, host: str, port: int, connect_timeout: float = CONNECT_TIMEOUT) -> None:
        self.host = host
        self.port = port
        self.connect_timeout = connect_timeout
        self.sock: Optional[socket.socket] = None
        self._recv_thread: Optional[threading.Thread] = None
        self._running = threading.Event()
        self._buf = bytearray()
        self.inbox: SimpleQueue = SimpleQueue()

    @property
    def connected(self) -> bool:
        return bool(self.sock) and self._running.is_set()

    def open(self) -> None:
        """建立连接并启动接收线程，失败抛出 OSError"""
        sock = socket.create_connection((self.host, self.port), timeout=self.connect_timeout)
        # 连接成功后取消超时，接收线程阻塞读取
        sock.settimeout(None)
        self.sock = sock
        self._running.set()
        self._recv_thread = threading.Thread(target=self._recv_loop, name="drawguess-recv", daemon=True)
        self._recv_thread.start()

    def send_line(self, text: str) -> None:
        sock = self.sock
        if sock is None:
            raise OSError("transport is closed")
        try:
            sock.sendall((text + "\n").encode("utf-8"))
        except OSError:
            self.close()
            raise

    def poll(self) -> List[Any]:
        items: List[Any] = []
        while True:
            try:
                items.append(self.inbox.get_nowait())
            except Empty:
                break
        return items

    def close(self) -> None:
        self._running.clear()
        try:
            if self.sock:
                try:
                    self.sock.shutdown(socket.SHUT_RDWR)
                except OSError:
                    pass
                self.sock.close()
        finally:
            self.sock = None

    # 内部方法
    def _recv_loop(self) -> None:
        sock = self.sock
        try:
            while self._running.is_set() and sock:
                data = sock.recv(BUFFER_SIZE)
                if not data:
                    break
                self._buf.extend(data)
                while True:
                    try:
                        idx = self._buf.index(ord("\n"))
                    except ValueError:
                        break
                    raw = bytes(self._buf[:idx])
                    del self._buf[: idx + 1]
                    if raw.strip():
                        self.inbox.put(raw.decode("utf-8", errors="replace"))
        except OSError as exc:
            logger.debug("接收线程退出: %s", exc)
        finally:
            self.inbox.put(TRANSPORT_CLOSED)
            self.close()


TransportFactory = Callable[[str, int], Any]


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    FAILED = "failed"


@dataclass(frozen=True)
class ConnectionEvent:
    """连接状态迁移事件"""

    state: ConnectionState
    previous: ConnectionState
    session_id: Optional[str] = None
    error: Optional[Exception] = None

    @property
    def fatal(self) -> bool:
        return self.state is ConnectionState.FAILED


class ConnectionManager:
    """单会话唯一的双工连接持有者（显式状态机）"""

    def __init__(
        self,
        scheduler: Scheduler,
        transport_factory: TransportFactory = LineTransport,
        username: str = "",
        heartbeat_interval: float = HEARTBEAT_INTERVAL,
        heartbeat_tolerance: float = HEARTBEAT_TOLERANCE,
        handshake_timeout: float = HANDSHAKE_TIMEOUT,
        backoff_base_ms: int = BACKOFF_BASE_MS,
        backoff_cap_ms: int = BACKOFF_CAP_MS,
        max_attempts: int = MAX_RECONNECT_ATTEMPTS,
        keepalive_interval: Optional[float] = KEEPALIVE_INTERVAL,
    ) -> None:
        self.scheduler = scheduler
        self.transport_factory = transport_factory
        self.username = username
        self.heartbeat_interval = heartbeat_interval
        self.heartbeat_tolerance = heartbeat_tolerance
        self.handshake_timeout = handshake_timeout
        self.backoff_base_ms = backoff_base_ms
        self.backoff_cap_ms = backoff_cap_ms
        self.max_attempts = max_attempts

        self.state = ConnectionState.DISCONNECTED
        self.endpoint: Optional[str] = None
        self.session_id: Optional[str] = None
        self.attempt = 0
        self.last_heartbeat: Optional[float] = None

        self._address: Optional[Tuple[str, int]] = None
        self._transport = None
        self._on_ready: Optional[Callable[[str], None]] = None
        self._on_error: Optional[Callable[[Exception], None]] = None
        self._listeners: List[Callable[[ConnectionEvent], None]] = []
        self._frame_handlers: List[Callable[[Message], None]] = []
        self._handshake_timer: Optional[TimerHandle] = None
        self._heartbeat_timer: Optional[TimerHandle] = None
        self._retry_timer: Optional[TimerHandle] = None
        self._pending_requests: Dict[str, Callable[[Any], None]] = {}
        self._request_ids = itertools.count(1)
        self.keepalive = KeepAlive(self, keepalive_interval) if keepalive_interval else None

    @property
    def connected(self) -> bool:
        return self.state is ConnectionState.CONNECTED

    # 订阅
    def add_listener(self, listener: Callable[[ConnectionEvent], None]) -> None:
        self._listeners.append(listener)

    def on_frame(self, handler: Callable[[Message], None]) -> None:
        self._frame_handlers.append(handler)

    # 生命周期
    def connect(
        self,
        endpoint: str,
        on_ready: Optional[Callable[[str], None]] = None,
        on_error: Optional[Callable[[Exception], None]] = None,
    ) -> None:
        """建立连接并握手；成功后 on_ready(session_id) 每次连接恰好触发一次"""
        address = parse_endpoint(endpoint)
        self._teardown()
        self.endpoint = endpoint
        self._address = address
        self._on_ready = on_ready
        self._on_error = on_error
        self.attempt = 0
        self._set_state(ConnectionState.CONNECTING)
        self._start_attempt()

    def reconnect(self) -> None:
        """手动重连：取代任何挂起的退避定时器，避免并发的重复连接尝试"""
        if self._address is None:
            raise RuntimeError("connect() has not been called")
        self._teardown()
        self.attempt = 0
        self._set_state(ConnectionState.CONNECTING)
        self._start_attempt()

    def disconnect(self) -> None:
        """主动断开：取消所有定时器并销毁连接"""
        self._teardown()
        self.session_id = None
        self.attempt = 0
        self._set_state(ConnectionState.DISCONNECTED)

    def mark_dead(self, reason: str) -> None:
        """外部探测（保活）判定连接已死"""
        self._connection_dropped(TransportError(reason))

    # 发送
    def send(self, msg: Message) -> bool:
        if not self.connected or self._transport is None:
            logger.debug("未连接，丢弃消息: type=%s", msg.type)
            return False
        return self._write(msg)

    def request(self, path: str, callback: Callable[[Any], None], params: Optional[Dict[str, Any]] = None) -> Optional[str]:
        """一次性请求/应答；连接不可用或中途断开时 callback(None)"""
        if not self.connected:
            logger.debug("未连接，请求失败: %s", path)
            callback(None)
            return None
        request_id = f"req-{next(self._request_ids)}"
        self._pending_requests[request_id] = callback
        payload: Dict[str, Any] = {"request_id": request_id, "path": path}
        if params:
            payload["params"] = params
        if not self._write(Message(MSG_REQUEST, payload)):
            return None
        return request_id

    # 主循环
    def pump(self) -> int:
        """处理已到达的帧并推进定时器，返回处理的帧数"""
        handled = 0
        transport = self._transport
        if transport is not None:
            for item in transport.poll():
                if transport is not self._transport:
                    # 处理过程中连接已被替换，旧连接剩余帧作废
                    break
                if item is TRANSPORT_CLOSED:
                    self._on_transport_closed()
                    break
                self._handle_line(item)
                handled += 1
        self.scheduler.run_due()
        return handled

    # 内部：连接尝试
    def _start_attempt(self) -> None:
        self._retry_timer = None
        host, port = self._address
        transport = self.transport_factory(host, port)
        try:
            transport.open()
        except OSError as exc:
            self._attempt_failed(TransportError(f"connect {self.endpoint} failed: {exc}"))
            return
        self._transport = transport
        logger.info("已连接 %s，等待握手 (attempt=%d)", self.endpoint, self.attempt)
        if not self._write(Message(MSG_CONNECT, {"username": self.username, "client": CLIENT_NAME})):
            return
        self._handshake_timer = self.scheduler.call_later(
            self.handshake_timeout, self._on_handshake_timeout, name="handshake-timeout"
        )

    def _on_handshake(self, data: Dict[str, Any]) -> None:
        if self.connected:
            logger.debug("忽略重复握手帧")
            return
        session_id = data.get("session_id") or data.get("sessionId")
        if not isinstance(session_id, str) or not session_id:
            self._attempt_failed(HandshakeError("handshake did not yield a session id"))
            return
        self._cancel(self._handshake_timer)
        self._handshake_timer = None
        self.session_id = session_id
        self.attempt = 0
        self.last_heartbeat = self.scheduler.now()
        self._heartbeat_timer = self.scheduler.call_every(self.heartbeat_interval, self._heartbeat, name="heartbeat")
        if self.keepalive:
            self.keepalive.start()
        logger.info("握手完成，session_id=%s", session_id)
        self._set_state(ConnectionState.CONNECTED)
        if self._on_ready:
            try:
                self._on_ready(session_id)
            except Exception:
                logger.exception("on_ready 回调异常")

    def _on_handshake_timeout(self) -> None:
        self._handshake_timer = None
        self._attempt_failed(HandshakeError(f"handshake timed out after {self.handshake_timeout}s"))

    def _attempt_failed(self, error: TransportError) -> None:
        self._close_transport()
        logger.warning("连接尝试失败 (attempt=%d): %s", self.attempt, error)
        # 最后一次失败只报告致命错误
        if self.attempt < self.max_attempts:
            self._notify_error(error)
        self._schedule_retry(error)

    def _connection_dropped(self, error: TransportError) -> None:
        if not self.connected:
            return
        logger.warning("连接断开: %s", error)
        self._stop_liveness()
        self._close_transport()
        self._fail_pending_requests()
        # 新一轮重连，计数清零
        self.attempt = 0
        self._schedule_retry(error)

    def _schedule_retry(self, error: TransportError) -> None:
        if self.attempt >= self.max_attempts:
            fatal = ConnectionLostError(self.attempt, error)
            logger.error("重连次数耗尽，放弃: %s", fatal)
            self._set_state(ConnectionState.FAILED, error=fatal)
            self._notify_error(fatal)
            return
        delay_ms = backoff_delay(self.attempt, self.backoff_base_ms, self.backoff_cap_ms)
        self.attempt += 1
        logger.info("%d ms 后重连 (attempt=%d/%d)", delay_ms, self.attempt, self.max_attempts)
        self._set_state(ConnectionState.RECONNECTING, error=error)
        self._retry_timer = self.scheduler.call_later(delay_ms / 1000.0, self._start_attempt, name="reconnect")

    def _on_transport_closed(self) -> None:
        if self.connected:
            self._connection_dropped(TransportError("connection closed by peer"))
        elif self._transport is not None:
            self._cancel(self._handshake_timer)
            self._handshake_timer = None
            self._attempt_failed(HandshakeError("connection closed during handshake"))

    # 内部：心跳
    def _heartbeat(self) -> None:
        if not self.connected:
            return
        now = self.scheduler.now()
        if self.last_heartbeat is not None and now - self.last_heartbeat > self.heartbeat_interval * self.heartbeat_tolerance:
            self._connection_dropped(TransportError("heartbeat timeout"))
            return
        self._write(Message(MSG_PING, {"ts": now}))

    def _stop_liveness(self) -> None:
        self._cancel(self._heartbeat_timer)
        self._heartbeat_timer = None
        if self.keepalive:
            self.keepalive.stop()

    # 内部：收帧
    def _handle_line(self, raw: str) -> None:
        try:
            msg = Message.from_json(raw)
        except ProtocolError as exc:
            logger.warning("丢弃无法解析的帧: %s", exc)
            return
        # 任何入站帧都视为对端存活
        self.last_heartbeat = self.scheduler.now()
        t = msg.type
        if t == MSG_CONNECTED:
            self._on_handshake(msg.data)
            return
        if not self.connected:
            logger.debug("握手前收到帧，丢弃: type=%s", t)
            return
        if t == MSG_PING:
            self._write(Message(MSG_PONG, {"ts": msg.data.get("ts")}))
        elif t == MSG_PONG:
            pass
        elif t == MSG_RESPONSE:
            self._resolve_request(msg.data)
        elif t == MSG_ERROR:
            logger.warning("服务器错误: %s", msg.data.get("msg"))
        else:
            for handler in list(self._frame_handlers):
                try:
                    handler(msg)
                except Exception:
                    logger.exception("帧处理器异常: type=%s", t)

    def _resolve_request(self, data: Dict[str, Any]) -> None:
        callback = self._pending_requests.pop(data.get("request_id"), None)
        if callback is None:
            logger.debug("未知请求应答: %r", data.get("request_id"))
            return
        status = data.get("status", 200)
        ok = isinstance(status, int) and 200 <= status < 300
        if not ok:
            logger.warning("请求失败: status=%s", status)
        body = data.get("body") if ok else None
        try:
            callback(body)
        except Exception:
            logger.exception("请求回调异常")

    def _fail_pending_requests(self) -> None:
        pending, self._pending_requests = self._pending_requests, {}
        for callback in pending.values():
            try:
                callback(None)
            except Exception:
                logger.exception("请求回调异常")

    # 内部：工具
    def _write(self, msg: Message) -> bool:
        transport = self._transport
        if transport is None:
            return False
        try:
            transport.send_line(msg.to_json())
            return True
        except OSError as exc:
            if self.connected:
                self._connection_dropped(TransportError(f"send failed: {exc}"))
            else:
                self._attempt_failed(TransportError(f"send failed: {exc}"))
            return False

    def _teardown(self) -> None:
        for timer in (self._handshake_timer, self._heartbeat_timer, self._retry_timer):
            self._cancel(timer)
        self._handshake_timer = self._heartbeat_timer = self._retry_timer = None
        if self.keepalive:
            self.keepalive.stop()
        self._close_transport()
        self._fail_pending_requests()

    def _close_transport(self) -> None:
        self._cancel(self._handshake_timer)
        self._handshake_timer = None
        transport, self._transport = self._transport, None
        if transport is not None:
            try:
                transport.close()
            except OSError:
                pass

    @staticmethod
    def _cancel(timer: Optional[TimerHandle]) -> None:
        if timer is not None:
            timer.cancel()

    def _notify_error(self, error: Exception) -> None:
        if self._on_error:
            try:
                self._on_error(error)
            except Exception:
                logger.exception("on_error 回调异常")

    def _set_state(self, state: ConnectionState, error: Optional[Exception] = None) -> None:
        previous = self.state
        if previous is state and error is None:
            return
        self.state = state
        event = ConnectionEvent(state=state, previous=previous, session_id=self.session_id, error=error)
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("连接状态监听器异常")


class KeepAlive:
    """保活探测：周期性发出廉价请求，上一次探测仍未应答即判定连接已死；连接关闭后自行停止"""

    def __init__(self, manager: ConnectionManager, interval: float, path: str = KEEPALIVE_PATH) -> None:
        self.manager = manager
        self.interval = interval
        self.path = path
        self._timer: Optional[TimerHandle] = None
        self._outstanding = False

    @property
    def running(self) -> bool:
        return self._timer is not None

    def start(self) -> None:
        self.stop()
        self._timer = self.manager.scheduler.call_every(self.interval, self._probe, name="keepalive")

    def stop(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self._outstanding = False

    def _probe(self) -> None:
        if not self.manager.connected:
            self.stop()
            return
        if self._outstanding:
            self.stop()
            self.manager.mark_dead("keep-alive probe unanswered")
            return
        self._outstanding = True
        self.manager.request(self.path, self._on_reply)

    def _on_reply(self, body: Any) -> None:
        self._outstanding = False


__all__ = [
    "TRANSPORT_CLOSED",
    "LineTransport",
    "ConnectionState",
    "ConnectionEvent",
    "ConnectionManager",
    "KeepAlive",
    "backoff_delay",
    "parse_endpoint",
]
