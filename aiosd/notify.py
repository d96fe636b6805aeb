"""
Status notification, tell the supervisor about the service lifecycle.

Each message is a single datagram of ``KEY=VALUE`` lines sent to the
unix socket named by ``NOTIFY_SOCKET``. When that variable is not set
the service is not supervised and every notification silently does
nothing.

See https://www.freedesktop.org/software/systemd/man/latest/sd_notify.html
"""

__all__ = ['Notifier', 'NullNotifier', 'get_notifier', 'sanitize']

import logging
import socket
import sys
import trio
from typing import Callable, Optional, Union

import aiosd
from aiosd import monotime
from aiosd.config import config as cfg
from aiosd.exceptions import ErrMonotonicClock, ErrNotifySend, ErrNotifySocket


logger = logging.getLogger(__name__)

READY = b"READY=1"
RELOADING = b"RELOADING=1"
STOPPING = b"STOPPING=1"
WATCHDOG = b"WATCHDOG=1"
WATCHDOG_TRIGGER = b"WATCHDOG=trigger"
STATUS_PREFIX = b"STATUS="
ERRNO_PREFIX = b"ERRNO="
MONOTONIC_USEC_PREFIX = b"MONOTONIC_USEC="


def sanitize(data: Union[str, bytes]) -> bytes:
    """
    Replace the new-lines of ``data`` by spaces, a new-line would
    otherwise start a new ``KEY=VALUE`` field.
    """
    if isinstance(data, str):
        data = data.encode()
    return bytes(data).replace(b'\n', b' ')


class Notifier:
    """
    Send notifications to the supervisor socket at ``socket_path``,
    default to the ``NOTIFY_SOCKET`` environment variable. A socket is
    opened, written and closed for each message.

    ``clock`` is the source of the ``MONOTONIC_USEC`` timestamp sent
    while reloading, it must return CLOCK_MONOTONIC microseconds.
    """

    def __init__(
        self,
        socket_path: Optional[str] = None,
        clock: Optional[Callable[[], int]] = None,
    ) -> None:
        self.socket_path = cfg.NOTIFY_SOCKET if socket_path is None else socket_path
        self.clock = monotime.usec if clock is None else clock

    def __repr__(self):
        return f'{type(self).__name__}({self.socket_path!r})'

    @property
    def address(self) -> str:
        """ The socket address, ``@`` denotes the abstract namespace. """
        if self.socket_path.startswith('@'):
            return '\0' + self.socket_path[1:]
        return self.socket_path

    async def notify(self, payload: Union[str, bytes]) -> None:
        """
        Send ``payload`` as-is in a single datagram.

        Use the other methods when possible. When many fields must be
        sent, join them in one payload instead of calling this method
        many times: each call is a distinct message for the supervisor.
        """
        if not self.socket_path:
            return
        if isinstance(payload, str):
            payload = payload.encode()

        try:
            sock = trio.socket.socket(socket.AF_UNIX, socket.SOCK_DGRAM)
        except OSError as exc:
            raise ErrNotifySocket(self.socket_path) from exc
        with sock:
            try:
                await sock.connect(self.address)
            except OSError as exc:
                raise ErrNotifySocket(self.socket_path) from exc
            try:
                await sock.send(payload)
            except OSError as exc:
                raise ErrNotifySend(self.socket_path) from exc
        logger.log(aiosd.IO, "send to %s: %s", self.socket_path, payload)

    async def ready(self) -> None:
        """ The service finished starting up or reloading. """
        await self.notify(READY)

    async def reloading(self) -> None:
        """
        The service starts reloading, call :meth:`ready` (or
        :meth:`error`) once done.

        The current monotonic time is sent along so it works with
        ``Type=notify-reload`` services.
        """
        try:
            usec = self.clock()
        except OSError as exc:
            raise ErrMonotonicClock() from exc
        await self.notify(b"\n".join([
            RELOADING,
            MONOTONIC_USEC_PREFIX + str(usec).encode(),
        ]))

    async def stopping(self) -> None:
        """ The service is shutting down. """
        await self.notify(STOPPING)

    async def status(self, text: Union[str, bytes]) -> None:
        """
        Free-form status line, shown by ``systemctl status`` and in the
        journal.
        """
        await self.notify(STATUS_PREFIX + sanitize(text))

    async def error(self, err: Union[BaseException, str, bytes], errno: int = 0) -> None:
        """
        Report a failure: the message as status and, when positive,
        ``errno`` as the error code of the service.
        """
        if isinstance(err, BaseException):
            err = str(err)
        fields = [STATUS_PREFIX + sanitize(err)]
        if errno > 0:
            fields.append(ERRNO_PREFIX + str(errno).encode())
        await self.notify(b"\n".join(fields))

    async def watchdog(self) -> None:
        """ Keep-alive, see :func:`aiosd.watchdog.keepalive`. """
        await self.notify(WATCHDOG)

    async def watchdog_trigger(self) -> None:
        """
        Report an internal failure now, same outcome as missing a
        watchdog keep-alive.
        """
        await self.notify(WATCHDOG_TRIGGER)


class NullNotifier(Notifier):
    """ Notifier for systems without a supervisor socket, does nothing. """

    def __init__(self, socket_path=None, clock=None) -> None:
        super().__init__('', clock)

    async def notify(self, payload):
        pass

    async def reloading(self):
        pass


def get_notifier(socket_path=None, clock=None) -> Notifier:
    """ The notifier fit for the current system. """
    if sys.platform.startswith('linux'):
        return Notifier(socket_path, clock)
    return NullNotifier()
