from typing import TYPE_CHECKING
import asyncio
import contextlib
if TYPE_CHECKING:
    from .echo_conn import EchoConn

class ServerState:
    """
    Shared server state that is available b/w all EchoConn instances
    """
    def __init__(self, max_active: int | None = None):
        """
        One EchoConn per accepted client. It is added on connection_made and removed on connection_lost,
        so during shutdown this is the set of peers that still have a transport open.
        """
        self.connections: set["EchoConn"] = set()
        """
        The task running the protocol engine for each connection, including those still waiting for a slot.
        """
        self.tasks: set[asyncio.Task[None]] = set()
        self.total_connections = 0
        # With max_active=1 clients are served strictly one after another, in accept order.
        self._slots = asyncio.Semaphore(max_active) if max_active is not None else None

    def slot(self):
        """Async context manager held for as long as a connection is being served."""
        if self._slots is None:
            return contextlib.nullcontext()
        return self._slots

    def slots_exhausted(self) -> bool:
        return self._slots is not None and self._slots.locked()
