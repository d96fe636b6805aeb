import os
from types import SimpleNamespace


config = SimpleNamespace()
config.NOTIFY_SOCKET = os.getenv('NOTIFY_SOCKET', '')
config.LOGLEVEL = os.getenv('LOGLEVEL', 'WARNING')
config.HOST = os.getenv('HOST', 'localhost')
config.PORT = int(os.getenv('PORT', 7777))
config.GREETING = os.getenv('GREETING', '')
