import collections
import logging
import sys

from PySide6.QtCore import QtMsgType, qInstallMessageHandler

LOG_LEVEL = logging.DEBUG
LOG_FORMAT = '[%(asctime)s] <%(module)s> %(levelname)s:  %(message)s'
LOG_DATEFMT = '%Y-%m-%d %H:%M:%S'

TANK_SIZE = 1000

tank = None


def set_logging_level(level):
    """
    Sets the logging level for the root logger.

    Args:
        level (int): The logging level to set. Should be one of the standard logging levels.
    """
    if not isinstance(level, int):
        raise ValueError('Logging level must be an integer.')
    if level not in (
            logging.DEBUG,
            logging.INFO,
            logging.WARNING,
            logging.ERROR,
            logging.CRITICAL,
    ):
        raise ValueError('Invalid logging level. Use one of the standard logging levels, e.g., logging.DEBUG.')

    logging.getLogger().setLevel(level)


def qt_message_handler(mode, context, message):
    """
    Converts Qt messages to standard Python logging.
    """
    logger = logging.getLogger('Qt')

    message = message.strip()

    if mode == QtMsgType.QtDebugMsg:
        logger.debug(message)
    elif mode == QtMsgType.QtInfoMsg:
        logger.info(message)
    elif mode == QtMsgType.QtWarningMsg:
        logger.warning(message)
    elif mode == QtMsgType.QtCriticalMsg:
        logger.error(message)
    elif mode == QtMsgType.QtFatalMsg:
        logger.critical(message)
        sys.exit(1)


def setup_logging(enable_stream_handler=True, enable_qt_handler=True, log_level=LOG_LEVEL):
    """
    Configures the root logger and the message tank read by :func:`get_logs`.

    Args:
        enable_stream_handler (bool): Also log to stdout.
        enable_qt_handler (bool): Route Qt's own messages through Python logging.
        log_level (int): Level for the root logger and the installed handlers.

    Returns:
        TankHandler: The installed in-memory handler.
    """
    global tank

    set_logging_level(log_level)
    root_logger = logging.getLogger()

    # Clear all handlers to avoid formatting conflicts
    root_logger.handlers.clear()

    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATEFMT)

    if enable_stream_handler:
        stream_handler = logging.StreamHandler(sys.stdout)
        stream_handler.setFormatter(formatter)
        stream_handler.setLevel(log_level)
        root_logger.addHandler(stream_handler)

    tank = TankHandler()
    tank.setFormatter(formatter)
    tank.setLevel(log_level)
    root_logger.addHandler(tank)

    if enable_qt_handler:
        qInstallMessageHandler(qt_message_handler)

    return tank


def get_logs(level=logging.NOTSET, modules=None):
    """
    Messages kept by the installed tank. Empty before :func:`setup_logging` ran.

    Args:
        level (int): The minimum logging level.
        modules (Iterable[str], optional): Only messages logged from these module names.

    Returns:
        list[str]: Formatted log messages, oldest first.
    """
    if tank is None:
        return []
    return tank.get_logs(level=level, modules=modules)


class TankHandler(logging.Handler):
    """
    Keeps the most recent formatted log messages in memory.

    Degraded saves, unreachable remotes and failed reconciliations land here,
    so an application can show what did not reach the remote store.

    Attributes:
        tank (collections.deque): Level, module name and message of each record,
            at most ``TANK_SIZE`` entries.
    """

    def __init__(self, size=TANK_SIZE):
        super().__init__()
        self.tank = collections.deque(maxlen=size)

    def emit(self, record):
        try:
            message = self.format(record)
            self.tank.append((record.levelno, record.module, message))
        except Exception:
            self.handleError(record)

    def get_logs(self, level=logging.NOTSET, modules=None):
        """
        Returns the stored messages with a level >= ``level``, optionally
        limited to records logged from ``modules``.
        """
        modules = set(modules) if modules is not None else None
        return [
            msg for lvl, module, msg in list(self.tank)
            if lvl >= level and (modules is None or module in modules)
        ]

    def clear_logs(self):
        self.tank.clear()
