from .protocol import READ_SIZE

DEFAULT_PORT = 8080
DEFAULT_BACKLOG = 10


class Config:

    def __init__(
            self,
            host=None,
            port=DEFAULT_PORT,
            backlog=DEFAULT_BACKLOG,
            read_size=READ_SIZE,
            limit_concurrency=None,
            max_active=None,
            timeout_read=None,
            timeout_write=None,
            timeout_graceful_shutdown=None
    ):
        # host=None listens on every interface, IPv4 and IPv6
        self.host = host
        self.port = port
        self.backlog = backlog
        self.read_size = read_size
        # over limit_concurrency connections are closed at once, over max_active they wait their turn
        self.limit_concurrency = limit_concurrency
        self.max_active = max_active
        self.timeout_read = timeout_read
        self.timeout_write = timeout_write
        self.timeout_graceful_shutdown = timeout_graceful_shutdown
