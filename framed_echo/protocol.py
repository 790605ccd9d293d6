"""
The framed-echo protocol, independent of any socket or event loop.

On connect the server sends a single `*`. After that it ignores everything the
client sends until it sees `^`, which opens a message. Inside a message every
byte is echoed back incremented by one (255 wraps to 0) until `$` closes the
message and the server goes back to ignoring bytes.
The delimiters are never echoed. A `^` inside a message is ordinary data, and a
`$` outside a message is just ignored.

The only thing carried from one read to the next is the ProtocolState, so a
message can start in one chunk and end several chunks later.
"""
import logging
from ._types import ByteStream, ProtocolState

logger = logging.getLogger(__name__)

READY_BYTE = b"*"
START_BYTE = ord("^")
STOP_BYTE = ord("$")
READ_SIZE = 1024


class ReadFailed(ConnectionError):
    pass


class WriteFailed(ConnectionError):
    pass


def increment(byte: int) -> int:
    return (byte + 1) % 256


def step(state: ProtocolState, byte: int) -> tuple[ProtocolState, int | None]:
    """
    Apply one byte to the state machine.
    Returns the next state and the byte to send back, or None when nothing is echoed.
    """
    if state is ProtocolState.WAITING_FOR_START:
        if byte == START_BYTE:
            return ProtocolState.IN_MESSAGE, None
        return ProtocolState.WAITING_FOR_START, None

    if byte == STOP_BYTE:
        return ProtocolState.WAITING_FOR_START, None
    return ProtocolState.IN_MESSAGE, increment(byte)


async def run(conn: ByteStream, read_size: int = READ_SIZE) -> None:
    """
    Serve one connection until the peer stops sending.

    Returns normally on a clean EOF, raises ReadFailed or WriteFailed otherwise.
    The caller owns `conn` and is responsible for closing it.
    """
    await conn.write(READY_BYTE)

    state = ProtocolState.WAITING_FOR_START
    while True:
        chunk = await conn.read(read_size)
        if not chunk:
            # peer has finished sending
            return

        logger.debug("Processing %d bytes in state %s", len(chunk), state.name)
        for byte in chunk:
            state, out = step(state, byte)
            if out is not None:
                await conn.write(bytes((out,)))
