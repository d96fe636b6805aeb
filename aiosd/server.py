import logging
import signal
import trio

from aiosd import monotime
from aiosd.exceptions import ActivationError, NotifyError
from aiosd.listen import open_listeners
from aiosd.watchdog import keepalive, watchdog_interval


logger = logging.getLogger(__name__)


class Server:
    """
    Echo server, the lifecycle is reported to the supervisor and the
    listening sockets are inherited from it when socket-activated.
    """

    def __init__(self, host, port, notifier, greeting_path=''):
        self.host = host
        self.port = port
        self.notifier = notifier
        self.greeting_path = greeting_path
        self.greeting = b""

    def reload(self):
        """ Read the greeting sent to every new connection. """
        if not self.greeting_path:
            self.greeting = b""
            return
        with open(self.greeting_path, 'rb') as file:
            self.greeting = file.read()

    async def handle(self, stream):
        logger.info("Connection with %s established.", stream)
        try:
            if self.greeting:
                await stream.send_all(self.greeting)
            async for chunk in stream:
                await stream.send_all(chunk)
        except trio.BrokenResourceError:
            logger.warning("Connection with %s broken.", stream)
        logger.info("Connection with %s closed.", stream)

    async def _notify(self, coro):
        try:
            await coro
        except NotifyError:
            logger.exception("Failed to notify the supervisor.")

    async def _onreload(self):
        start = monotime.now()
        await self._notify(self.notifier.reloading())
        try:
            self.reload()
        except OSError as exc:
            logger.error("Reload failed, keeping the previous greeting: %s", exc)
            await self._notify(self.notifier.error(exc, exc.errno or 1))
            return
        logger.info("Reloaded in %.3f seconds.", monotime.since(start))
        await self._notify(self.notifier.ready())

    async def _onsignal(self):
        with trio.open_signal_receiver(signal.SIGHUP, signal.SIGTERM, signal.SIGINT) as signal_aiter:
            async for signum in signal_aiter:
                if signum == signal.SIGHUP:
                    await self._onreload()
                    continue
                if self._nursery.cancel_scope.cancel_called:
                    raise KeyboardInterrupt()
                await self._notify(self.notifier.stopping())
                self._nursery.cancel_scope.cancel()

    async def get_listeners(self):
        """
        The listeners passed by the supervisor, bind our own when the
        process was not socket-activated.
        """
        try:
            listeners = open_listeners()
        except ActivationError as exc:
            for error in exc.exceptions:
                logger.error("%s", error)
            listeners = exc.listeners
        if listeners:
            return listeners

        logger.info("Listening on %s port %s.", self.host, self.port)
        return await trio.open_tcp_listeners(self.port, host=self.host)

    async def serve(self):
        self.reload()
        listeners = await self.get_listeners()
        async with trio.open_nursery() as self._nursery:
            self._nursery.start_soon(self._onsignal)
            # ping twice per interval, as sd_watchdog_enabled(3) advises
            await self._nursery.start(keepalive, self.notifier, watchdog_interval() / 2)
            await self._nursery.start(trio.serve_listeners, self.handle, listeners)
            await self._notify(self.notifier.status(f"Serving on {len(listeners)} socket(s)"))
            await self._notify(self.notifier.ready())
