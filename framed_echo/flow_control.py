"""
Back-pressure between an asyncio transport and the protocol engine.

Inbound: EchoConn buffers whatever the transport delivers until the engine reads it. Once that buffer holds
more than `high_water` bytes the transport stops reading from the socket, and it starts again when the engine
has consumed the buffer down to `low_water`. The peer then sees TCP back-pressure instead of us growing memory.

Outbound: the transport calls pause_writing()/resume_writing() around its own buffer limits. The engine awaits
drain() after each byte, so it stops producing while the transport is paused.
"""
import asyncio

HIGH_WATER_LIMIT_READ = 65536


class FlowControl:

    def __init__(self, transport: asyncio.Transport, high_water: int = HIGH_WATER_LIMIT_READ,
                 low_water: int | None = None):
        self._transport = transport
        self.high_water = high_water
        self.low_water = high_water // 4 if low_water is None else low_water
        self.read_paused = False
        self._can_write = asyncio.Event()
        self._can_write.set()

    def update_read_buffer(self, size: int) -> None:
        if size > self.high_water and not self.read_paused:
            self.read_paused = True
            self._transport.pause_reading()
        elif size <= self.low_water and self.read_paused:
            self.read_paused = False
            self._transport.resume_reading()

    @property
    def write_paused(self) -> bool:
        return not self._can_write.is_set()

    def pause_writing(self) -> None:
        self._can_write.clear()

    def resume_writing(self) -> None:
        self._can_write.set()

    async def drain(self, timeout: float | None = None) -> None:
        """Wait until the transport accepts writes again. Raises asyncio.TimeoutError after `timeout` seconds."""
        await asyncio.wait_for(self._can_write.wait(), timeout=timeout)
