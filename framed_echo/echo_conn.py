"""
EchoConn is the asyncio.Protocol for one accepted client. It turns the callback style of the transport
(data_received, eof_received, connection_lost) into the read()/write() pair the protocol engine awaits on,
and runs the engine in its own task for the lifetime of the connection.

- connection_made(transport): start the engine task, or close straight away when over the concurrency limit.
- data_received(data): buffer the bytes and wake a pending read().
- eof_received(): the peer closed its write side. Returning True keeps our side open so the engine can still
  send the echo for the bytes it has not processed yet.
- connection_lost(exc): the transport is gone. exc is None when it was closed cleanly, otherwise the OS error.
- pause_writing()/resume_writing(): transport write buffer crossed its high/low water mark.
"""
import logging
import asyncio
from ._types import ConnectionScope
from .config import Config
from .flow_control import FlowControl
from .protocol import ReadFailed, WriteFailed
from . import protocol
from .server_state import ServerState
from .util import get_local_addr, get_remote_addr, format_addr

logger = logging.getLogger(__name__)


class EchoConn(asyncio.Protocol):

    def __init__(self,
                 config: Config,
                 server_state: ServerState,
                 handler=None,
                 loop: asyncio.AbstractEventLoop | None = None):
        self.loop = loop or asyncio.get_event_loop()
        self.config = config
        self.handler = handler or protocol.run

        # Per-connection state
        self.transport: asyncio.Transport | None = None
        self.flow_control: FlowControl | None = None
        self.scope: ConnectionScope | None = None
        self.client_label = "unknown"
        self.limit_concurrency = config.limit_concurrency

        self.buffer = bytearray()
        self.data_event = asyncio.Event()
        self.eof = False
        self.disconnected = False
        self.exc: Exception | None = None
        self.task: asyncio.Task[None] | None = None

        # Shared server state
        self.server_state = server_state
        self.connections = server_state.connections
        self.tasks = server_state.tasks

    def connection_made(self, transport: asyncio.Transport):
        self.transport = transport
        self.flow_control = FlowControl(transport)
        self.scope = ConnectionScope(
            client=get_remote_addr(transport),
            server=get_local_addr(transport),
        )
        self.client_label = format_addr(self.scope["client"])

        if self.limit_concurrency is not None and (
            len(self.connections) >= self.limit_concurrency or len(self.tasks) >= self.limit_concurrency
        ):
            # Rejected connections never get the ready byte.
            logger.warning("Exceeded concurrency limit, closing connection from %s", self.client_label)
            transport.close()
            return

        self.connections.add(self)
        logger.info("got new connection from %s", self.client_label)

        self.task = self.loop.create_task(self.run_protocol())
        self.task.add_done_callback(self.tasks.discard)
        self.tasks.add(self.task)

    def data_received(self, data: bytes):
        logger.debug("Data received from %s: %d bytes", self.client_label, len(data))
        self.buffer.extend(data)
        self.flow_control.update_read_buffer(len(self.buffer))
        self.data_event.set()

    def eof_received(self):
        self.eof = True
        self.data_event.set()
        return True

    def connection_lost(self, exc: Exception | None = None) -> None:
        """
        Called when the peer aborts the connection (exc is set), or after the transport was closed, either by
        run_protocol once the engine is done or by the event loop on a fatal write error.
        The transport is already closed here; we only wake whoever is blocked on it.
        """
        self.connections.discard(self)
        self.disconnected = True
        if exc is not None:
            self.exc = exc
        self.data_event.set()
        if self.flow_control is not None:
            self.flow_control.resume_writing()  # a writer stalled on drain() must see the loss

    async def read(self, n: int) -> bytes:
        while not self.buffer and not self.eof and not self.disconnected:
            self.data_event.clear()
            try:
                await asyncio.wait_for(self.data_event.wait(), timeout=self.config.timeout_read)
            except asyncio.TimeoutError as exc:
                raise ReadFailed(
                    "no data from {} within {}s".format(self.client_label, self.config.timeout_read)
                ) from exc

        if self.buffer:
            data = bytes(self.buffer[:n])
            del self.buffer[:n]
            self.flow_control.update_read_buffer(len(self.buffer))
            return data

        if self.eof:
            return b""

        raise ReadFailed("connection to {} lost".format(self.client_label)) from self.exc

    async def write(self, data: bytes) -> None:
        self._check_writable()
        self.transport.write(data)
        if self.flow_control.write_paused:
            try:
                await self.flow_control.drain(self.config.timeout_write)
            except asyncio.TimeoutError as exc:
                raise WriteFailed(
                    "{} did not accept data within {}s".format(self.client_label, self.config.timeout_write)
                ) from exc
        # A send error inside transport.write() closes the transport right away,
        # connection_lost only follows on the next loop iteration.
        self._check_writable()

    def _check_writable(self) -> None:
        if self.disconnected or self.transport.is_closing():
            raise WriteFailed("cannot send to {}: connection closed".format(self.client_label)) from self.exc

    async def run_protocol(self) -> None:
        try:
            if self.server_state.slots_exhausted():
                logger.info("%s waiting for a free slot", self.client_label)
            async with self.server_state.slot():
                await self.handler(self, self.config.read_size)
        except (ReadFailed, WriteFailed) as exc:
            logger.warning("%s connection failed: %s", self.client_label, exc)
        except Exception as exc:
            msg = "Exception in connection handler: {}".format(exc)
            logger.error(msg, exc_info=exc)
        finally:
            self.server_state.total_connections += 1
            self.transport.close()
            logger.info("%s connection done", self.client_label)

    def shutdown(self) -> None:
        """
        Called by the server to commence a graceful shutdown.
        The engine finishes whatever is already buffered, sees EOF and returns; run_protocol then closes.
        """
        self.eof = True
        self.data_event.set()

    def pause_writing(self) -> None:
        self.flow_control.pause_writing()

    def resume_writing(self) -> None:
        self.flow_control.resume_writing()
