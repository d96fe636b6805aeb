"""
Socket activation, use the sockets opened by the supervisor.

The supervisor (systemd or compatible) binds the sockets of the service
on its behalf and passes them at exec time as file descriptors starting
at :data:`SD_LISTEN_FDS_START`. Three environment variables describe
them: ``LISTEN_PID``, ``LISTEN_FDS`` and ``LISTEN_FDNAMES``.

See https://www.freedesktop.org/software/systemd/man/latest/sd_listen_fds.html
"""

__all__ = [
    'SD_LISTEN_FDS_START', 'InheritedFd', 'NamedListener', 'NamedReceiver',
    'listen_fds', 'open_listeners', 'open_packet_receivers',
    'open_tls_listeners',
]

import dataclasses
import logging
import os
import socket
import ssl
import sys
import trio
from typing import List, Optional

from aiosd.exceptions import ActivationError, ErrOpenListener, ErrOpenPacketConn


logger = logging.getLogger(__name__)

SD_LISTEN_FDS_START = 3
_LISTEN_ENV = ('LISTEN_PID', 'LISTEN_FDS', 'LISTEN_FDNAMES')
_TCP_FAMILIES = (socket.AF_INET, socket.AF_INET6)
_PACKET_TYPES = (socket.SOCK_DGRAM, socket.SOCK_RAW)


@dataclasses.dataclass(frozen=True)
class InheritedFd:
    fd: int
    name: str


def listen_fds(unset_environment=False, environ=None) -> List[InheritedFd]:
    """
    Get the file descriptors passed by the supervisor.

    Returns an empty list when ``LISTEN_PID`` is not our pid or when
    ``LISTEN_FDS`` is missing, this is the normal case for a process
    that was not socket-activated. Each descriptor is marked
    close-on-exec so it doesn't leak to our own child processes.

    When ``unset_environment`` is true, the three ``LISTEN_*`` variables
    are removed, whatever the outcome, so a child process doesn't try to
    claim the same descriptors.

    The descriptors are NOT closed, the caller owns them.
    """
    if environ is None:
        environ = os.environ
    try:
        if not sys.platform.startswith('linux'):
            return []
        return _resolve(
            environ.get('LISTEN_PID', ''),
            environ.get('LISTEN_FDS', ''),
            environ.get('LISTEN_FDNAMES', ''),
        )
    finally:
        if unset_environment:
            for var in _LISTEN_ENV:
                environ.pop(var, None)


def _resolve(listen_pid, listen_fds, listen_fdnames):
    try:
        pid = int(listen_pid)
    except ValueError:
        logger.debug("LISTEN_PID=%r is not usable, not socket-activated.", listen_pid)
        return []
    if pid != os.getpid():
        logger.debug("LISTEN_PID=%s is not our pid, not socket-activated.", pid)
        return []

    try:
        count = int(listen_fds)
    except ValueError:
        logger.debug("LISTEN_FDS=%r is not usable, not socket-activated.", listen_fds)
        return []

    names = listen_fdnames.split(':')
    inherited = []
    for i in range(count):
        fd = SD_LISTEN_FDS_START + i
        try:
            os.set_inheritable(fd, False)
        except OSError as exc:
            logger.warning("Cannot set close-on-exec on fd %s: %s", fd, exc)
        name = names[i] if i < len(names) and names[i] else f'LISTEN_FD_{fd}'
        inherited.append(InheritedFd(fd, name))

    logger.debug("Inherited %s file descriptor(s): %s", len(inherited), inherited)
    return inherited


class NamedListener(trio.abc.Listener):
    """
    A trio listener on an inherited socket, tagged with the name the
    supervisor gave it (``FileDescriptorName=`` in the socket unit).

    The name is not unique, all the sockets of a same ``.socket`` unit
    share it, it defaults to the name of the unit with recent systemd
    or to ``LISTEN_FD_<fd>``.
    """

    def __init__(self, listener, name: str) -> None:
        self.listener = listener
        self.name = name

    def __repr__(self):
        return f'{type(self).__name__}({self.name!r}, {self.listener!r})'

    @property
    def socket(self):
        """ The underlying trio socket, also when wrapped in TLS. """
        listener = self.listener
        while isinstance(listener, trio.SSLListener):
            listener = listener.transport_listener
        return listener.socket

    async def accept(self):
        return await self.listener.accept()

    async def aclose(self):
        await self.listener.aclose()


class NamedReceiver:
    """
    A trio datagram socket on an inherited descriptor, tagged with the
    name the supervisor gave it. Every other attribute is looked up on
    the socket (``recvfrom``, ``sendto``, ``family``, ...).
    """

    def __init__(self, socket, name: str) -> None:
        self.socket = socket
        self.name = name

    def __repr__(self):
        return f'{type(self).__name__}({self.name!r}, {self.socket!r})'

    def __getattr__(self, attr):
        if attr == 'socket':
            raise AttributeError(attr)
        return getattr(self.socket, attr)

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()

    def close(self):
        self.socket.close()


def _dup_socket(inherited):
    """
    Create a socket on a duplicate of the inherited descriptor, family
    and type are detected from the descriptor itself.
    """
    fd = os.dup(inherited.fd)
    try:
        return socket.socket(fileno=fd)
    except BaseException:
        os.close(fd)
        raise


def _to_listener(inherited):
    sock = _dup_socket(inherited)
    try:
        return trio.SocketListener(trio.socket.from_stdlib_socket(sock))
    except BaseException:
        sock.close()
        raise


def _to_receiver(inherited):
    sock = _dup_socket(inherited)
    if sock.type not in _PACKET_TYPES:
        sock.close()
        raise ValueError(f"{sock.type!r} is not a datagram or raw socket")
    return trio.socket.from_stdlib_socket(sock)


def _open_all(convert, wrap, error_cls, kind):
    opened = []
    errors = []
    inherited_fds = listen_fds(unset_environment=True)
    for inherited in inherited_fds:
        try:
            handle = convert(inherited)
        except (OSError, ValueError) as exc:
            error = error_cls(inherited, exc)
            error.__cause__ = exc
            logger.debug("%s", error)
            errors.append(error)
            continue
        # the handle uses its own duplicate of the descriptor
        os.close(inherited.fd)
        opened.append(wrap(handle, inherited.name))

    if inherited_fds:
        logger.info("Opened %s of %s inherited %s(s).", len(opened), len(inherited_fds), kind)
    if errors:
        raise ActivationError(f"unable to open {len(errors)} inherited {kind}(s)", errors, opened)
    return opened


def open_listeners() -> List[NamedListener]:
    """
    Open a :class:`NamedListener` on each inherited stream socket, in
    the order they were passed.

    :raises ActivationError: when some descriptors could not be opened,
        the successfully opened ones are available in its
        ``listeners`` attribute.
    """
    return _open_all(_to_listener, NamedListener, ErrOpenListener, 'listener')


def open_packet_receivers() -> List[NamedReceiver]:
    """
    Open a :class:`NamedReceiver` on each inherited datagram (or raw IP)
    socket, in the order they were passed.

    :raises ActivationError: same as :func:`open_listeners`.
    """
    return _open_all(_to_receiver, NamedReceiver, ErrOpenPacketConn, 'packet conn')


def open_tls_listeners(ssl_context: Optional[ssl.SSLContext]) -> List[NamedListener]:
    """
    Same as :func:`open_listeners` but the TCP listeners are wrapped in
    a :class:`trio.SSLListener` using ``ssl_context``. Unix listeners are
    left as-is. Without a context the listeners are not wrapped at all.
    """
    try:
        listeners = open_listeners()
    except ActivationError as exc:
        _wrap_tls(exc.listeners, ssl_context)
        raise

    _wrap_tls(listeners, ssl_context)
    return listeners


def _wrap_tls(listeners, ssl_context):
    if ssl_context is None:
        return
    for listener in listeners:
        if listener.socket.family in _TCP_FAMILIES:
            listener.listener = trio.SSLListener(listener.listener, ssl_context)
