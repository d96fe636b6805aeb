""" Monotonic clock, immune to wall-clock adjustments. """

import time

try:
    _CLOCK = time.CLOCK_MONOTONIC
except AttributeError:  # not a POSIX system
    now = time.monotonic_ns
else:
    def now() -> int:
        """ Current CLOCK_MONOTONIC time, in nanoseconds. """
        return time.clock_gettime_ns(_CLOCK)


def since(t: int) -> float:
    """ Seconds elapsed since ``t``, a value previously returned by :func:`now`. """
    return (now() - t) / 1_000_000_000


def usec() -> int:
    """ Current CLOCK_MONOTONIC time, in microseconds. """
    return now() // 1000
