import os
import unittest
from unittest import mock

import trio
import trio.testing

from aiosd.exceptions import ErrNotifySend
from aiosd.watchdog import keepalive, watchdog_interval
from .common import AsyncTestCase, RecordingNotifier, linux_only


@linux_only
class TestWatchdogInterval(unittest.TestCase):
    def test_configured(self):
        environ = {'WATCHDOG_USEC': '5000000', 'WATCHDOG_PID': str(os.getpid())}
        self.assertEqual(watchdog_interval(environ), 5)
        environ['WATCHDOG_USEC'] = '1500'
        self.assertEqual(watchdog_interval(environ), .0015)

    def test_not_configured(self):
        pid = str(os.getpid())
        for environ in [
            {},
            {'WATCHDOG_PID': pid},
            {'WATCHDOG_USEC': '5000000'},
            {'WATCHDOG_USEC': '', 'WATCHDOG_PID': pid},
            {'WATCHDOG_USEC': '0', 'WATCHDOG_PID': pid},
            {'WATCHDOG_USEC': '-5000000', 'WATCHDOG_PID': pid},
            {'WATCHDOG_USEC': '5s', 'WATCHDOG_PID': pid},
            {'WATCHDOG_USEC': '5000000', 'WATCHDOG_PID': 'self'},
            {'WATCHDOG_USEC': '5000000', 'WATCHDOG_PID': str(os.getpid() + 1)},
        ]:
            with self.subTest(environ=environ):
                self.assertEqual(watchdog_interval(environ), 0)

    def test_os_environ(self):
        environ = {'WATCHDOG_USEC': '2000000', 'WATCHDOG_PID': str(os.getpid())}
        with mock.patch.dict(os.environ, environ):
            self.assertEqual(watchdog_interval(), 2)

    def test_other_platforms(self):
        environ = {'WATCHDOG_USEC': '5000000', 'WATCHDOG_PID': str(os.getpid())}
        with mock.patch('sys.platform', 'darwin'):
            self.assertEqual(watchdog_interval(environ), 0)


class TestKeepalive(AsyncTestCase):
    def clock(self):
        return trio.testing.MockClock(autojump_threshold=0)

    async def atest_ping_every_interval(self, nursery):
        notifier = RecordingNotifier()
        interval = await nursery.start(keepalive, notifier, 5)
        self.assertEqual(interval, 5)
        self.assertEqual(notifier.sent, [], "first ping after one interval")

        await trio.sleep(12)
        self.assertEqual(notifier.sent, [b"WATCHDOG=1"] * 2)

        nursery.cancel_scope.cancel()

    async def atest_interval_from_environment(self, nursery):
        notifier = RecordingNotifier()
        with mock.patch('aiosd.watchdog.watchdog_interval', return_value=3) as interval_mock:
            self.assertEqual(await nursery.start(keepalive, notifier), 3)
        interval_mock.assert_called_once_with()

        await trio.sleep(10)
        self.assertEqual(len(notifier.sent), 3)

    async def atest_stop_when_cancelled(self, nursery):
        notifier = RecordingNotifier()
        with trio.CancelScope() as cancel_scope:
            async with trio.open_nursery() as inner:
                await inner.start(keepalive, notifier, 1)
                await trio.sleep(3.5)
                cancel_scope.cancel()
        self.assertEqual(len(notifier.sent), 3)

        await trio.sleep(10)
        self.assertEqual(len(notifier.sent), 3)

    async def atest_inactive(self, nursery):
        notifier = RecordingNotifier()
        with mock.patch('aiosd.watchdog.watchdog_interval', return_value=0):
            start = trio.current_time()
            async with trio.open_nursery() as inner:
                self.assertEqual(await inner.start(keepalive, notifier), 0)
            self.assertEqual(trio.current_time(), start, "returns right away")
        self.assertEqual(notifier.sent, [])

    async def atest_failure_does_not_stop(self, nursery):
        notifier = RecordingNotifier()
        sent = notifier.notify
        failures = iter([ErrNotifySend('/run/notify.sock')])

        async def notify(payload):
            for exc in failures:
                raise exc
            await sent(payload)
        notifier.notify = notify

        with self.assertLogs('aiosd.watchdog', 'ERROR'):
            await nursery.start(keepalive, notifier, 1)
            await trio.sleep(3.5)
        self.assertEqual(notifier.sent, [b"WATCHDOG=1"] * 2)

    async def atest_fixed_ticks_with_slow_send(self, nursery):
        notifier = RecordingNotifier()
        pings = []

        async def notify(payload):
            await trio.sleep(.5)
            pings.append(trio.current_time())
        notifier.notify = notify

        start = trio.current_time()
        await nursery.start(keepalive, notifier, 5)
        await trio.sleep(16)
        self.assertEqual([ping - start for ping in pings], [5.5, 10.5, 15.5])
