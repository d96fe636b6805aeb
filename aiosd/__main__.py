import argparse
import logging
import os
import sys
import textwrap
import trio

import aiosd
from aiosd.config import config as cfg
from aiosd.notify import get_notifier
from aiosd.server import Server

logger = logging.getLogger(__name__)

# Color the [LEVEL] part of messages, need new terminal on Windows
# https://github.com/odoo/odoo/blob/13.0/odoo/netsvc.py#L57-L100
class ColoredFormatter(logging.Formatter):
    colors = {
        logging.DEBUG: (34, 49),  # blue
        aiosd.IO: (37, 49),  # white
        logging.INFO: (32, 49),  # green
        logging.WARNING: (33, 49),  # yellow
        logging.ERROR: (31, 49),  # red
        logging.CRITICAL: (37, 41),  # white fg, red bg
    }
    def format(self, record):
        fg, bg = type(self).colors.get(record.levelno, (32, 49))
        record.levelname = f'\033[1;{fg}m\033[1;{bg}m{record.levelname}\033[0m'
        return super().format(record)

def main():
    # Dummy argparse, used only for --help and --version
    parser = argparse.ArgumentParser(
        prog=aiosd.__name__,
        usage=f"{sys.executable} -m {aiosd.__name__}",
        description="echo service integrated with the systemd supervisor",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=textwrap.dedent(f"""\
            environment variables:
              HOST           address to bind when not socket-activated (default: localhost)
              PORT           port to bind when not socket-activated (default: 7777)
              GREETING       file sent to every new connection, re-read on SIGHUP (default: )
              LOGLEVEL       logging verbosity (default: WARNING)

            set by the supervisor:
              LISTEN_PID, LISTEN_FDS, LISTEN_FDNAMES    socket activation
              NOTIFY_SOCKET                             status notification
              WATCHDOG_USEC, WATCHDOG_PID               watchdog keep-alive
        """)
    )
    parser.add_argument(
        '-V', '--version',
        action='version',
        version=f'{aiosd.__name__} {aiosd.__version__}',
    )
    parser.parse_args()

    stderr = logging.StreamHandler()
    stderr.formatter = (
        ColoredFormatter('%(asctime)s [%(levelname)s] %(message)s')
        if hasattr(sys.stderr, 'fileno') and os.isatty(sys.stderr.fileno()) else
        logging.Formatter('[%(levelname)s] %(message)s')
    )
    root_logger = logging.getLogger('')
    root_logger.handlers.clear()
    root_logger.addHandler(stderr)

    server = Server(cfg.HOST, cfg.PORT, get_notifier(), cfg.GREETING)
    try:
        trio.run(server.serve)
    except Exception:
        logger.critical("Dead", exc_info=True)
    finally:
        logging.shutdown()


if __name__ == '__main__':
    main()
