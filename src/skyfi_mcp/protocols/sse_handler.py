"""
SSE 事件处理器

管理 Server-Sent Events 客户端：注册、单播、广播、保活和空闲清理。
每个连接的保活由其自身的事件流生成器负责，连接关闭时随之结束。
"""

import asyncio
import json
import logging
import threading
import time
import uuid
from dataclasses import dataclass
from typing import Dict, Any, List, Optional, AsyncGenerator

from ..core.timeutils import utc_now_iso

logger = logging.getLogger(__name__)

DEFAULT_KEEPALIVE_INTERVAL = 30.0
DEFAULT_MAX_INACTIVE_MINUTES = 30


@dataclass(frozen=True)
class SSEEvent:
    """已序列化的事件"""
    event: str
    data: str


def serialize_event_data(data: Any) -> str:
    """序列化事件数据为单行 JSON"""
    return json.dumps(data, ensure_ascii=False, separators=(',', ':'))


class SSEClient:
    """SSE 客户端连接"""

    def __init__(self, client_id: str, loop: asyncio.AbstractEventLoop):
        self.client_id = client_id
        self.loop = loop
        self.queue: "asyncio.Queue[Optional[SSEEvent]]" = asyncio.Queue()
        self.created_at = time.time()
        self.last_activity = time.time()
        self.active = True

    def deliver(self, item: Optional[SSEEvent]) -> None:
        """把事件放入队列；从其他线程调用时交给连接所属的事件循环"""
        try:
            running_loop = asyncio.get_running_loop()
        except RuntimeError:
            running_loop = None

        if running_loop is self.loop:
            self.queue.put_nowait(item)
        elif not self.loop.is_closed():
            self.loop.call_soon_threadsafe(self.queue.put_nowait, item)

    def push(self, event: SSEEvent) -> None:
        if not self.active:
            return
        self.deliver(event)
        self.last_activity = time.time()

    def close(self) -> None:
        """关闭连接，唤醒事件流使其结束"""
        if not self.active:
            return
        self.active = False
        self.deliver(None)


class SSEHandler:
    """SSE 事件处理器"""

    def __init__(self, keepalive_interval: float = DEFAULT_KEEPALIVE_INTERVAL):
        """
        初始化 SSE 处理器

        Args:
            keepalive_interval: 保活 ping 的发送周期（秒）
        """
        self.keepalive_interval = keepalive_interval

        self.connections: Dict[str, SSEClient] = {}
        self.connection_lock = threading.Lock()

        self.event_stats = {
            "total_connections": 0,
            "events_sent": 0,
            "clients_cleaned": 0
        }

        logger.debug("SSE 事件处理器初始化完成")

    def connect(self) -> SSEClient:
        """
        注册新客户端并立即推送 connected 事件，需在事件循环中调用

        Returns:
            新注册的客户端
        """
        client = SSEClient(str(uuid.uuid4()), asyncio.get_running_loop())

        with self.connection_lock:
            self.connections[client.client_id] = client
            self.event_stats["total_connections"] += 1

        logger.info(f"SSE 客户端已连接: {client.client_id}")

        self.send(client.client_id, "connected", {
            "clientId": client.client_id,
            "timestamp": utc_now_iso()
        })
        return client

    def get_client(self, client_id: str) -> Optional[SSEClient]:
        with self.connection_lock:
            return self.connections.get(client_id)

    def remove_client(self, client_id: str) -> bool:
        """
        注销客户端（幂等）

        Returns:
            本次调用是否移除了客户端
        """
        with self.connection_lock:
            client = self.connections.pop(client_id, None)
        if client is None:
            return False
        client.close()
        logger.info(f"SSE 客户端已断开: {client_id}")
        return True

    def send(self, client_id: str, event: str, data: Any) -> bool:
        """
        发送事件到指定客户端

        Args:
            client_id: 客户端ID
            event: 事件名称
            data: 事件数据

        Returns:
            客户端是否存在
        """
        client = self.get_client(client_id)
        if client is None:
            return False

        client.push(SSEEvent(event, serialize_event_data(data)))
        with self.connection_lock:
            self.event_stats["events_sent"] += 1
        return True

    def broadcast(self, event: str, data: Any) -> int:
        """
        广播事件到当前所有客户端（尽力而为）

        Args:
            event: 事件名称
            data: 事件数据

        Returns:
            投递的客户端数量
        """
        payload = SSEEvent(event, serialize_event_data(data))

        with self.connection_lock:
            clients = list(self.connections.values())
            self.event_stats["events_sent"] += len(clients)

        for client in clients:
            client.push(payload)

        logger.debug(f"SSE 广播已发送: event={event} clients={len(clients)}")
        return len(clients)

    async def event_stream(self, client_id: str) -> AsyncGenerator[Dict[str, str], None]:
        """
        生成客户端的事件流，包含周期性的 ping 保活

        Args:
            client_id: 客户端ID

        Yields:
            sse-starlette 可识别的事件字典
        """
        client = self.get_client(client_id)
        if client is None:
            logger.error(f"连接不存在: {client_id}")
            return

        loop = asyncio.get_running_loop()
        next_ping = loop.time() + self.keepalive_interval

        try:
            while client.active:
                timeout = max(0.0, next_ping - loop.time())
                try:
                    item = await asyncio.wait_for(client.queue.get(), timeout=timeout)
                except asyncio.TimeoutError:
                    next_ping += self.keepalive_interval
                    if not self.send(client_id, "ping", {"timestamp": utc_now_iso()}):
                        break
                    continue

                if item is None:
                    break

                yield {"event": item.event, "data": item.data}
        finally:
            self.remove_client(client_id)

    async def open_stream(self) -> AsyncGenerator[Dict[str, str], None]:
        """
        连接并生成事件流；客户端在首次迭代时才注册，
        未开始迭代就断开的连接不会留在注册表中

        Yields:
            sse-starlette 可识别的事件字典，首个事件为 connected
        """
        client = self.connect()
        try:
            async for item in self.event_stream(client.client_id):
                yield item
        finally:
            self.remove_client(client.client_id)

    def cleanup_inactive_clients(self,
                                 max_inactive_minutes: float = DEFAULT_MAX_INACTIVE_MINUTES) -> List[str]:
        """
        关闭并移除空闲超时的客户端

        Args:
            max_inactive_minutes: 最大空闲时间（分钟）

        Returns:
            被移除的客户端ID列表
        """
        now = time.time()
        threshold = max_inactive_minutes * 60

        with self.connection_lock:
            stale = [client for client in self.connections.values()
                     if now - client.last_activity > threshold]
            for client in stale:
                del self.connections[client.client_id]
            self.event_stats["clients_cleaned"] += len(stale)

        for client in stale:
            client.close()

        removed = [client.client_id for client in stale]
        if removed:
            logger.info(f"清理了 {len(removed)} 个空闲 SSE 客户端: {removed}")
        return removed

    def close_all(self) -> int:
        """关闭所有客户端"""
        with self.connection_lock:
            clients = list(self.connections.values())
            self.connections.clear()

        for client in clients:
            client.close()
        return len(clients)

    def get_client_count(self) -> int:
        with self.connection_lock:
            return len(self.connections)

    def get_connection_stats(self) -> Dict[str, Any]:
        """
        获取连接统计信息

        Returns:
            统计信息
        """
        with self.connection_lock:
            connections = {
                client_id: {
                    "created_at": client.created_at,
                    "last_activity": client.last_activity,
                    "queue_size": client.queue.qsize()
                }
                for client_id, client in self.connections.items()
            }
            stats = dict(self.event_stats)
        return {
            **stats,
            "active_connections": len(connections),
            "connections": connections
        }
