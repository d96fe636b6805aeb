import contextlib
import functools
import inspect
import os
import socket
import sys
import tempfile
import unittest
from unittest import mock

import trio

import aiosd
from aiosd.notify import Notifier


linux_only = unittest.skipUnless(sys.platform.startswith('linux'), "supervisor protocol is linux-only")

# Where the test "supervisor" puts the inherited sockets, far from the
# descriptors already used by the test runner.
FAKE_LISTEN_FDS_START = 200


async def waitfor(predicate, timeout=.1, sleep=.01):
    """ Wait at most ``timeout`` secs for ``predicate()`` be be truthy. """
    with trio.move_on_after(timeout):
        while not predicate():
            await trio.sleep(sleep)
        return True
    return False


class AsyncTestCase(unittest.TestCase):
    """
    Run the ``atest_*`` coroutines as ``test_*`` methods, inside a
    nursery that is cancelled once the test returns.
    """
    clock = None

    def __init_subclass__(cls, /, *args, **kwargs):
        for fname, corofunc in inspect.getmembers(cls, inspect.iscoroutinefunction):
            if not fname.startswith('atest_'):
                continue

            @functools.partial(setattr, cls, fname[1:])
            @functools.wraps(corofunc)
            def test_x(self, corofunc=corofunc):
                async def atest_x():
                    async with trio.open_nursery() as nursery:
                        await corofunc(self, nursery)
                        nursery.cancel_scope.cancel()
                trio.run(atest_x, clock=self.clock() if self.clock else None)

        super().__init_subclass__(*args, **kwargs)


class NotifyReceiver:
    """ The supervisor end of the notify socket, in a temporary directory. """

    def __init__(self):
        self._tmpdir = tempfile.TemporaryDirectory()
        self.path = os.path.join(self._tmpdir.name, 'notify.sock')
        self.socket = socket.socket(socket.AF_UNIX, socket.SOCK_DGRAM)
        self.socket.bind(self.path)
        self.socket.settimeout(1)

    def recv(self):
        """ Receive one datagram, as the supervisor would. """
        return self.socket.recv(16 << 10)

    def pending(self):
        """ Whether a datagram is waiting to be received. """
        self.socket.setblocking(False)
        try:
            self.socket.recv(16 << 10, socket.MSG_PEEK)
        except BlockingIOError:
            return False
        finally:
            self.socket.settimeout(1)
        return True

    def close(self):
        self.socket.close()
        self._tmpdir.cleanup()


class RecordingNotifier(Notifier):
    """ Keep the notifications in memory instead of sending them. """

    def __init__(self, clock=lambda: 4162392170):
        super().__init__('@recording', clock)
        self.sent = []

    async def notify(self, payload):
        self.sent.append(payload)


@contextlib.contextmanager
def inherited_sockets(*socks, names=None):
    """
    Put ``socks`` where a socket-activated process finds them: on
    consecutive descriptors with the ``LISTEN_*`` variables set for the
    current process.
    """
    fds = []
    for i, sock in enumerate(socks):
        fd = FAKE_LISTEN_FDS_START + i
        os.dup2(sock.fileno(), fd, inheritable=True)
        fds.append(fd)

    environ = {
        'LISTEN_PID': str(os.getpid()),
        'LISTEN_FDS': str(len(socks)),
    }
    if names is not None:
        environ['LISTEN_FDNAMES'] = names

    try:
        with mock.patch.object(aiosd.listen, 'SD_LISTEN_FDS_START', FAKE_LISTEN_FDS_START), \
             mock.patch.dict(os.environ, environ):
            yield fds
    finally:
        for fd in fds:
            with contextlib.suppress(OSError):
                os.close(fd)
