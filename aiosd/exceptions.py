__all__ = [
    'SdError', 'NotifyError', 'ErrNotifySocket', 'ErrNotifySend',
    'ErrMonotonicClock', 'ConversionError', 'ErrOpenListener',
    'ErrOpenPacketConn', 'ActivationError',
]


class SdError(Exception):
    """
    Abstract supervisor protocol exception

    Subclasses define a ``msg`` template, the positional arguments
    given to the constructor are used to fill it.
    """
    prefix = "aiosd"
    msg = "{}"

    def __init__(self, *args):
        super().__init__(type(self).format(*args))

    @classmethod
    def format(cls, *args):
        return "{prefix}: {error}".format(
            prefix=cls.prefix,
            error=cls.msg.format(*args),
        )


class NotifyError(SdError):
    prefix = "sdnotify"

class ErrNotifySocket(NotifyError):
    msg = "unable to open NOTIFY_SOCKET {}"

class ErrNotifySend(NotifyError):
    msg = "failed to send message to {}"

class ErrMonotonicClock(NotifyError):
    msg = "unable to get current monotonic time"


class ConversionError(SdError):
    """ An inherited file descriptor could not be used as a socket. """
    prefix = "sdlisten"

    def __init__(self, inherited, cause):
        super().__init__(inherited.name, cause)
        self.fd = inherited.fd
        self.name = inherited.name

class ErrOpenListener(ConversionError):
    msg = "unable to open listener ({}): {}"

class ErrOpenPacketConn(ConversionError):
    msg = "unable to open packet conn ({}): {}"


class ActivationError(ExceptionGroup):
    """
    Some of the inherited file descriptors could not be opened.

    The ``exceptions`` are the individual :class:`ConversionError`, the
    ``listeners`` are the listeners (or receivers) that were opened
    successfully, they remain owned by whoever caught the exception.
    They belong to this group only, the groups derived by ``split()``
    or ``except*`` have no listeners so they are never handed twice.
    """
    def __new__(cls, message, excs, listeners=()):
        self = super().__new__(cls, message, excs)
        self.listeners = list(listeners)
        return self

    def derive(self, excs):
        return ActivationError(self.message, excs)
