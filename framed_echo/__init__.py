from .config import Config
from .protocol import ReadFailed, WriteFailed, run
from .server import Server

__all__ = ["Config", "ReadFailed", "Server", "WriteFailed", "run"]
