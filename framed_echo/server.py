import asyncio
import functools
import signal
import sys
import logging
import click
from .config import Config, DEFAULT_PORT, DEFAULT_BACKLOG
from .echo_conn import EchoConn
from .protocol import READ_SIZE
from .server_state import ServerState


HANDLED_SIGNALS = (signal.SIGINT, signal.SIGTERM)

LOG_LEVELS = {
    "critical": logging.CRITICAL,
    "error": logging.ERROR,
    "warning": logging.WARNING,
    "info": logging.INFO,
    "debug": logging.DEBUG,
}


logger = logging.getLogger(__name__)


class Server:
    """
    Listens for clients and runs one EchoConn per accepted connection until asked to exit.

    The first SIGINT/SIGTERM starts a graceful shutdown: no new connections are accepted and every
    live connection is treated as if its peer had sent EOF. A second signal abandons the wait.
    """

    def __init__(self, config: Config):
        self.config = config
        self.server_state = ServerState(max_active=config.max_active)
        self.started = False
        self.exit_event = asyncio.Event()
        self.force_exit = False
        self.server: asyncio.Server | None = None

    @property
    def should_exit(self) -> bool:
        return self.exit_event.is_set()

    def run(self) -> None:
        return asyncio.run(self.serve())

    async def serve(self) -> None:
        loop = asyncio.get_running_loop()
        installed = self.install_signal_handlers(loop)
        try:
            logger.info("Starting server...")
            await self.startup()
            await self.exit_event.wait()
            await self.shutdown()
            logger.info("Server shutdown complete!")
        finally:
            for sig in installed:
                loop.remove_signal_handler(sig)

    async def startup(self) -> None:
        loop = asyncio.get_running_loop()
        factory = functools.partial(EchoConn, config=self.config, server_state=self.server_state, loop=loop)
        try:
            server = await loop.create_server(factory,
                                              host=self.config.host,
                                              port=self.config.port,
                                              backlog=self.config.backlog,
                                              reuse_address=True
                                              )
        except OSError as exc:
            logger.error(exc)
            sys.exit(1)

        self.server = server
        self.started = True
        self._log_startup_message()

    @property
    def port(self) -> int:
        """
        The port actually bound, which differs from the configured one when that is 0.
        """
        return self.server.sockets[0].getsockname()[1]

    def _log_startup_message(self):
        addr_format = "%s:%d"
        host = "0.0.0.0" if self.config.host is None else self.config.host
        if ":" in host:
            # It's an IPv6 address.
            addr_format = "[%s]:%d"

        message = f"Framed echo server running on {addr_format} (Press CTRL+C to quit)"
        color_message = "Framed echo server running on " + click.style(addr_format, bold=True) + " (Press CTRL+C to quit)"
        logger.info(
            message,
            host,
            self.port,
            extra={"color_message": color_message},
        )
        logger.info("waiting for connections...")

    async def shutdown(self) -> None:
        logger.info("Shutting down server...")
        self.server.close()

        for connection in list(self.server_state.connections):
            connection.shutdown()

        pending = set(self.server_state.tasks)
        if pending and not self.force_exit:
            logger.info("Waiting for %d connection(s) to finish. (CTRL+C to force quit)", len(pending))
            _, pending = await asyncio.wait(pending, timeout=self.config.timeout_graceful_shutdown)

        if pending:
            logger.warning("Graceful shutdown timed out. Forcing exit.")
            for task in pending:
                task.cancel(msg="Task cancelled due to timeout during graceful shutdown")
            await asyncio.gather(*pending, return_exceptions=True)

        await self.server.wait_closed()

    def install_signal_handlers(self, loop: asyncio.AbstractEventLoop) -> list[int]:
        installed = []
        for sig in HANDLED_SIGNALS:
            try:
                loop.add_signal_handler(sig, self.handle_exit, sig)
            except (NotImplementedError, RuntimeError):
                # no loop signal handlers on Windows, or outside the main thread
                continue
            installed.append(sig)
        return installed

    def handle_exit(self, sig: int) -> None:
        if self.should_exit:
            logger.warning("Received %s again, not waiting for connections.", signal.Signals(sig).name)
            self.force_exit = True
            for task in self.server_state.tasks:
                task.cancel(msg="Forced exit")
        else:
            self.exit_event.set()


@click.command()
@click.option("--host", type=str, default=None, help="Bind socket to this host. Defaults to every interface.")
@click.option("--port", type=int, default=DEFAULT_PORT, show_default=True, help="Bind socket to this port.")
@click.option("--backlog", type=int, default=DEFAULT_BACKLOG, show_default=True,
              help="Maximum number of connections waiting to be accepted.")
@click.option("--read-size", type=click.IntRange(min=1), default=READ_SIZE, show_default=True,
              help="Maximum number of bytes taken from a connection per read.")
@click.option("--limit-concurrency", type=click.IntRange(min=1), default=None,
              help="Close new connections without serving them once this many are active.")
@click.option("--max-active", type=click.IntRange(min=1), default=None,
              help="Serve at most this many connections at once; later ones wait their turn. "
                   "1 serves clients one after another.")
@click.option("--timeout-read", type=float, default=None,
              help="Close a connection that sends nothing for this many seconds.")
@click.option("--timeout-write", type=float, default=None,
              help="Close a connection that accepts no data for this many seconds.")
@click.option("--timeout-graceful-shutdown", type=float, default=None,
              help="Maximum number of seconds to wait for connections to finish on shutdown.")
@click.option("--log-level", type=click.Choice(list(LOG_LEVELS.keys())), default="info", show_default=True,
              help="Log level.")
def main(host, port, backlog, read_size, limit_concurrency, max_active, timeout_read, timeout_write,
         timeout_graceful_shutdown, log_level):
    logging.basicConfig(level=LOG_LEVELS[log_level], format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    config = Config(
        host=host,
        port=port,
        backlog=backlog,
        read_size=read_size,
        limit_concurrency=limit_concurrency,
        max_active=max_active,
        timeout_read=timeout_read,
        timeout_write=timeout_write,
        timeout_graceful_shutdown=timeout_graceful_shutdown,
    )
    Server(config).run()


if __name__ == '__main__':
    main()
