from enum import Enum
from typing import Protocol, TypedDict


class ProtocolState(Enum):
    WAITING_FOR_START = "waiting_for_start"
    IN_MESSAGE = "in_message"


class ConnectionScope(TypedDict):
    client: tuple[str, int] | None
    server: tuple[str, int] | None


class ByteStream(Protocol):
    async def read(self, n: int) -> bytes:
        ...

    async def write(self, data: bytes) -> None:
        ...
