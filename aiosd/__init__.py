import logging
from importlib.metadata import version

__version__ = version('aiosd')

from aiosd.config import config as cfg
logger = logging.getLogger(__package__)
IO = logging.INFO - 5
logging.addLevelName(IO, 'IO')
logger.setLevel(cfg.LOGLEVEL)

import aiosd.exceptions
import aiosd.monotime
import aiosd.listen
import aiosd.notify
import aiosd.watchdog
