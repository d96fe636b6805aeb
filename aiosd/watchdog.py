"""
Supervisor watchdog, prove the service is alive.

When the service unit sets ``WatchdogSec=``, the supervisor expects a
``WATCHDOG=1`` notification at least once per interval and considers
the service failed otherwise.
"""

__all__ = ['watchdog_interval', 'keepalive']

import logging
import os
import sys
import trio

from aiosd.exceptions import NotifyError


logger = logging.getLogger(__name__)


def watchdog_interval(environ=None) -> float:
    """
    The watchdog interval in seconds, read from ``WATCHDOG_USEC`` and
    ``WATCHDOG_PID``.

    Returns 0 when the watchdog is not configured for this process,
    that is when one of the variables is missing or invalid, or when
    ``WATCHDOG_PID`` is not our pid.
    """
    if not sys.platform.startswith('linux'):
        return 0
    if environ is None:
        environ = os.environ
    watchdog_usec = environ.get('WATCHDOG_USEC', '')
    watchdog_pid = environ.get('WATCHDOG_PID', '')

    # misconfigured is reported the same as not configured
    try:
        usec = int(watchdog_usec)
        pid = int(watchdog_pid)
    except ValueError:
        logger.debug("WATCHDOG_USEC=%r WATCHDOG_PID=%r, watchdog disabled.",
            watchdog_usec, watchdog_pid)
        return 0
    if usec < 1 or pid != os.getpid():
        logger.debug("WATCHDOG_USEC=%s WATCHDOG_PID=%s, watchdog disabled.", usec, pid)
        return 0

    return usec / 1_000_000


async def keepalive(notifier, interval=None, *, task_status=trio.TASK_STATUS_IGNORED):
    """
    Send a keep-alive to the supervisor every ``interval`` seconds until
    cancelled. The interval defaults to :func:`watchdog_interval`, the
    task ends right away when it is 0.

    It is meant to be started in a nursery, the interval in use is
    returned by ``nursery.start``::

        async with trio.open_nursery() as nursery:
            interval = await nursery.start(keepalive, notifier)
    """
    if interval is None:
        interval = watchdog_interval()
    task_status.started(interval)
    if not interval:
        logger.debug("Watchdog not configured, no keep-alive.")
        return

    logger.info("Sending watchdog keep-alive every %s seconds.", interval)
    deadline = trio.current_time() + interval
    while True:
        # fixed ticks, whatever the time spent sending
        await trio.sleep_until(deadline)
        deadline += interval
        try:
            await notifier.watchdog()
        except NotifyError:
            logger.exception("Failed to send keep-alive to watchdog.")
