"""Real-time log delivery over WebSocket connections.

Each connection gets a ConnectionSession holding its subscriptions
(client chosen file id -> follower). Outgoing messages go through a
queue drained by the transport. Closing a session cancels every follower
it owns; close() is the single cleanup point for every exit path and can
be called any number of times.
"""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any

import anyio
from pydantic import ValidationError

from logpeek import prometheus as prom
from logpeek.models import LogViewerMessage
from logpeek.parser import LogParser, ParseResult, serialize_entry
from logpeek.plugins import UnknownPluginError
from logpeek.reader import FileFollower, inspect


logger = logging.getLogger(__name__)

HEARTBEAT_INTERVAL = 30.0

ALREADY_SUBSCRIBED = 'Already subscribed to this file'
NOT_SUBSCRIBED = 'Not subscribed to this file'


@dataclass
class Subscription:
    file_id: str
    file_path: str
    plugin_id: str
    log_type: str
    follower: FileFollower | None = None
    filters: dict[str, Any] = field(default_factory=dict)

    def matches(self, result: ParseResult) -> bool:
        level = self.filters.get('level')
        if level:
            levels = level if isinstance(level, list) else [level]
            if result.parsed.get('level') not in levels:
                return False
        search = self.filters.get('search')
        if search and str(search).lower() not in result.raw.content.lower():
            return False
        return True

    def cancel(self):
        follower, self.follower = self.follower, None
        if follower is None:
            return
        if not follower.closed:
            prom.active_follow_subscriptions.dec()
        follower.cancel()


class ConnectionSession:
    """Subscriptions and the outgoing message queue of one connection."""

    def __init__(self, parser: LogParser, follow_options: dict | None = None):
        self.parser = parser
        self.follow_options = follow_options or {}
        self.subscriptions: dict[str, Subscription] = {}
        self.outgoing: asyncio.Queue[dict | None] = asyncio.Queue()
        self.alive = True
        self.closed = False

    def send(self, message: dict):
        if not self.closed:
            self.outgoing.put_nowait(message)

    def send_error(self, message: str, file_id: str | None = None):
        payload: dict[str, Any] = {'type': 'error', 'message': message}
        if file_id is not None:
            payload['fileId'] = file_id
        self.send(payload)

    def mark_alive(self):
        self.alive = True

    async def handle_text(self, text: str):
        """Dispatch one client frame. Any frame counts as a heartbeat answer."""
        self.mark_alive()
        try:
            message = json.loads(text)
        except json.JSONDecodeError:
            self.send_error('Invalid message format')
            return
        if not isinstance(message, dict):
            self.send_error('Invalid message format')
            return
        await self.handle_message(message)

    async def handle_message(self, message: dict):
        msg_type = message.get('type')
        if msg_type == 'pong':
            return
        if msg_type == 'ping':
            self.send({'type': 'pong'})
            return
        raw_id = message.get('fileId')
        try:
            frame = LogViewerMessage.model_validate(message)
        except ValidationError as e:
            error = e.errors()[0]
            field_name = error['loc'][0] if error['loc'] else 'message'
            file_id = str(raw_id) if isinstance(raw_id, str | int) else None
            self.send_error(f'Invalid message: {field_name}: {error["msg"]}', file_id)
            return
        if frame.type not in ('subscribe', 'unsubscribe', 'filter'):
            self.send_error(f'Unknown message type: {frame.type}')
            return
        if frame.file_id is None or frame.file_id == '':
            self.send_error('fileId is required')
            return

        file_id = str(frame.file_id)
        if frame.type == 'subscribe':
            if not frame.plugin_id or not frame.file_path:
                self.send_error('pluginId and filePath are required', file_id)
                return
            await self.subscribe(
                file_id,
                plugin_id=frame.plugin_id,
                file_path=frame.file_path,
                log_type=frame.log_type or 'access',
                follow=frame.follow is not False,
                from_line=frame.from_line or 0,
            )
        elif frame.type == 'unsubscribe':
            self.unsubscribe(file_id)
        else:
            self.apply_filter(file_id, frame.filters or {})

    async def subscribe(
        self, file_id: str, plugin_id: str, file_path: str, log_type: str, follow: bool = True, from_line: int = 0
    ):
        if file_id in self.subscriptions:
            self.send_error(ALREADY_SUBSCRIBED, file_id)
            return

        subscription = Subscription(file_id=file_id, file_path=file_path, plugin_id=plugin_id, log_type=log_type)
        # Registered before the first await so a duplicate subscribe is rejected
        self.subscriptions[file_id] = subscription

        info = await anyio.to_thread.run_sync(inspect, file_path)
        if not info.exists or not info.readable:
            self._discard(subscription)
            self.send_error(f'File not found or not readable: {file_path}', file_id)
            return
        read_compressed = await anyio.to_thread.run_sync(self.parser.settings.read_compressed, plugin_id)

        self.send(
            {
                'type': 'subscribed',
                'fileId': file_id,
                'fileInfo': {
                    'size': info.size,
                    'modified': info.modified.isoformat() if info.modified else None,
                    'compressed': info.compressed,
                    'rotated': info.rotated,
                },
            }
        )

        def on_result(result: ParseResult):
            if self.closed or self.subscriptions.get(file_id) is not subscription:
                return
            if not subscription.matches(result):
                return
            self.send(
                {
                    'type': 'log-line',
                    'fileId': file_id,
                    'log': serialize_entry(result.parsed),
                    'lineNumber': result.raw.line_number,
                }
            )

        try:
            follower = await self.parser.stream_parse(
                plugin_id,
                file_path,
                log_type,
                on_result,
                follow_file=follow,
                from_line=from_line,
                read_compressed=read_compressed,
                **self.follow_options,
            )
        except UnknownPluginError as e:
            self._discard(subscription)
            self.send_error(str(e), file_id)
            return

        if follower is None or follower.closed:
            return
        prom.active_follow_subscriptions.inc()
        if self.closed or self.subscriptions.get(file_id) is not subscription:
            # Connection closed or unsubscribed while the replay was running
            prom.active_follow_subscriptions.dec()
            follower.cancel()
            return
        subscription.follower = follower
        logger.debug(f'Following {file_path} as {file_id}')

    def _discard(self, subscription: Subscription):
        if self.subscriptions.get(subscription.file_id) is subscription:
            del self.subscriptions[subscription.file_id]

    def unsubscribe(self, file_id: str):
        subscription = self.subscriptions.pop(file_id, None)
        if subscription is None:
            self.send_error(NOT_SUBSCRIBED, file_id)
            return
        subscription.cancel()
        self.send({'type': 'unsubscribed', 'fileId': file_id})

    def apply_filter(self, file_id: str, filters: dict):
        subscription = self.subscriptions.get(file_id)
        if subscription is None:
            self.send_error(NOT_SUBSCRIBED, file_id)
            return
        subscription.filters = dict(filters)
        self.send({'type': 'filter-applied', 'fileId': file_id, 'filters': subscription.filters})

    def close(self):
        """Cancel every subscription and stop the outgoing queue. Idempotent."""
        if self.closed:
            return
        self.closed = True
        subscriptions, self.subscriptions = self.subscriptions, {}
        for subscription in subscriptions.values():
            subscription.cancel()
        self.outgoing.put_nowait(None)


class LogViewerHub:
    """All live sessions and the heartbeat that reaps idle ones."""

    def __init__(
        self, parser: LogParser, heartbeat_interval: float = HEARTBEAT_INTERVAL, follow_options: dict | None = None
    ):
        self.parser = parser
        self.heartbeat_interval = heartbeat_interval
        self.follow_options = follow_options or {}
        self.sessions: set[ConnectionSession] = set()

    def connect(self) -> ConnectionSession:
        session = ConnectionSession(self.parser, follow_options=self.follow_options)
        self.sessions.add(session)
        prom.active_websocket_connections.inc()
        session.send({'type': 'connected', 'message': 'Connected to log viewer'})
        return session

    def disconnect(self, session: ConnectionSession):
        session.close()
        if session in self.sessions:
            self.sessions.discard(session)
            prom.active_websocket_connections.dec()

    def heartbeat(self):
        """One heartbeat cycle.

        Sessions that did not answer the previous ping are closed, the
        others are pinged and must send any frame before the next cycle.
        """
        for session in list(self.sessions):
            if not session.alive:
                logger.info(f'Closing idle log viewer connection ({len(session.subscriptions)} subscriptions)')
                self.disconnect(session)
                continue
            session.alive = False
            session.send({'type': 'ping'})

    async def run_heartbeat(self):
        while True:
            await asyncio.sleep(self.heartbeat_interval)
            self.heartbeat()

    def close_all(self):
        for session in list(self.sessions):
            self.disconnect(session)
