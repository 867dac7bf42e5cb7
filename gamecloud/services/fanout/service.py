"""Live status fanout over persistent connections.

Subscriptions are keyed by server id. Each server id has its own lock, so
publishes for one server reach its subscribers in call order while other
servers proceed independently. Locks live in a weak-value map and vanish once
nobody holds or waits on them.
"""

import asyncio
import weakref
from typing import Any, Protocol

from gamecloud.common.logging import logger
from gamecloud.common.metrics import (
    fanout_dropped_connections_total,
    fanout_messages_total,
    fanout_subscribers,
)
from gamecloud.services.ledger.store import LedgerStore


class Connection(Protocol):
    async def send_json(self, data: Any) -> None: ...


def status_message(server_id: str, status: str) -> dict[str, str]:
    return {"type": "status", "server_id": server_id, "status": status}


class StatusFanout:
    """Maps server ids to subscribed connections and pushes status changes."""

    def __init__(self, store: LedgerStore, service_name: str = "gamecloud", send_timeout_seconds: float = 5.0) -> None:
        self.store = store
        self.service_name = service_name
        self.send_timeout_seconds = send_timeout_seconds
        # Connections are keyed by id(); websocket objects are not hashable.
        self._subscribers: dict[str, dict[int, Connection]] = {}
        self._by_connection: dict[int, set[str]] = {}
        # Connections dropped after a failed send or teardown; entries vanish with the object.
        self._dropped: weakref.WeakValueDictionary[int, Connection] = weakref.WeakValueDictionary()
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()

    def _lock_for(self, server_id: str) -> asyncio.Lock:
        lock = self._locks.get(server_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[server_id] = lock
        return lock

    def _update_gauge(self) -> None:
        total = sum(len(conns) for conns in self._subscribers.values())
        fanout_subscribers.labels(service=self.service_name).set(float(total))

    def _remove(self, server_id: str, connection: Connection) -> None:
        key = id(connection)
        conns = self._subscribers.get(server_id)
        if conns is not None:
            conns.pop(key, None)
            if not conns:
                del self._subscribers[server_id]
        servers = self._by_connection.get(key)
        if servers is not None:
            servers.discard(server_id)
            if not servers:
                del self._by_connection[key]
        self._update_gauge()

    def _forget(self, connection: Connection) -> None:
        for server_id in list(self._by_connection.get(id(connection), ())):
            self._remove(server_id, connection)

    def _discard(self, connection: Connection) -> None:
        self._forget(connection)
        self._dropped[id(connection)] = connection

    def _is_dropped(self, connection: Connection) -> bool:
        return self._dropped.get(id(connection)) is connection

    async def _send(self, connection: Connection, message: dict) -> bool:
        try:
            await asyncio.wait_for(connection.send_json(message), timeout=self.send_timeout_seconds)
            return True
        except Exception as exc:
            logger.info("fanout send failed server_id=%s error=%r", message.get("server_id"), exc)
            return False

    async def snapshot(self, server_id: str) -> str | None:
        """Current status straight from the ledger, or None for unknown ids."""

        return await asyncio.to_thread(self.store.get_server_status, server_id)

    async def subscribe(self, server_id: str, connection: Connection) -> bool:
        """Register interest and send the current status as the first message.

        Unknown server ids get an error message and are not registered.
        """

        async with self._lock_for(server_id):
            status = await self.snapshot(server_id)
            if status is None:
                await self._send(
                    connection,
                    {"type": "error", "server_id": server_id, "detail": "unknown server"},
                )
                return False
            if self._is_dropped(connection):
                # Dropped by another server's publish while the snapshot was read.
                return False
            self._subscribers.setdefault(server_id, {})[id(connection)] = connection
            self._by_connection.setdefault(id(connection), set()).add(server_id)
            self._update_gauge()
            if not await self._send(connection, status_message(server_id, status)):
                self._discard(connection)
                fanout_dropped_connections_total.labels(service=self.service_name).inc()
                return False
        logger.info("subscriber added server_id=%s status=%s", server_id, status)
        return True

    async def unsubscribe(self, server_id: str, connection: Connection) -> None:
        """Remove one subscription; unknown pairs are ignored."""

        async with self._lock_for(server_id):
            self._remove(server_id, connection)

    async def drop_connection(self, connection: Connection) -> None:
        """Remove every subscription held by a closed connection."""

        self._discard(connection)

    async def publish(self, server_id: str, status: str) -> int:
        """Send `status` to every subscriber of `server_id`.

        Connections that fail to receive are dropped entirely. Returns the
        number of successful deliveries.
        """

        message = status_message(server_id, status)
        delivered = 0
        async with self._lock_for(server_id):
            for connection in list(self._subscribers.get(server_id, {}).values()):
                if await self._send(connection, message):
                    delivered += 1
                else:
                    self._discard(connection)
                    fanout_dropped_connections_total.labels(service=self.service_name).inc()
        fanout_messages_total.labels(service=self.service_name).inc(delivered)
        return delivered

    def subscriber_count(self, server_id: str) -> int:
        return len(self._subscribers.get(server_id, {}))

    def subscriptions_of(self, connection: Connection) -> set[str]:
        return set(self._by_connection.get(id(connection), ()))
