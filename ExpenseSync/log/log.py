"""Logging setup for ExpenseSync.

Everything is logged through the root logger. Messages go to stdout and into a
bounded in-memory tank, so the last sync runs can be inspected afterwards with
the ``logs`` command even when the console was quiet. Qt's own warnings are
bridged into the same stream.
"""
import collections
import logging
import sys
from typing import Deque, List, Optional, Tuple

from PySide6.QtCore import QtMsgType, qInstallMessageHandler

from ..core.signals import signals

LOG_LEVEL = logging.INFO
LOG_FORMAT = '[%(asctime)s] <%(module)s> %(levelname)s:  %(message)s'
LOG_DATEFMT = '%Y-%m-%d %H:%M:%S'

TANK_MAX_RECORDS = 5000

LEVELS = (logging.DEBUG, logging.INFO, logging.WARNING, logging.ERROR, logging.CRITICAL)

QT_LEVELS = {
    QtMsgType.QtDebugMsg: logging.DEBUG,
    QtMsgType.QtInfoMsg: logging.INFO,
    QtMsgType.QtWarningMsg: logging.WARNING,
    QtMsgType.QtCriticalMsg: logging.ERROR,
    QtMsgType.QtFatalMsg: logging.CRITICAL,
}

# Third-party loggers that would otherwise echo request urls at debug level
QUIET_LOGGERS = ('urllib3', 'requests')


def set_logging_level(level: int) -> None:
    """
    Sets the level of the root logger and of every installed handler.

    Args:
        level (int): One of the standard logging levels.

    Raises:
        ValueError: If the level is not a standard logging level.
    """
    if not isinstance(level, int) or level not in LEVELS:
        raise ValueError(f'Invalid logging level: {level!r}. Use one of the standard levels, e.g. logging.DEBUG.')

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    for handler in root_logger.handlers:
        handler.setLevel(level)


def set_console_level(level: int) -> None:
    """Set the level of the stdout handler only, the log tank keeps collecting."""
    for handler in logging.getLogger().handlers:
        if isinstance(handler, logging.StreamHandler) and not isinstance(handler, TankHandler):
            handler.setLevel(level)


def qt_message_handler(mode, context, message):
    """Forward a Qt message to the ``Qt`` logger at the matching level.

    A fatal Qt message terminates the process after it was logged.
    """
    level = QT_LEVELS.get(mode, logging.WARNING)
    logging.getLogger('Qt').log(level, message.strip())
    if mode == QtMsgType.QtFatalMsg:
        sys.exit(1)


def setup_logging(level: int = LOG_LEVEL) -> None:
    """
    Installs the stdout and tank handlers on the root logger.

    Calling it again replaces the handlers, so the tank starts empty.

    Args:
        level (int): Level of the root logger and the stdout handler. The tank
            always records debug messages.
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()

    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATEFMT)

    console = logging.StreamHandler(sys.stdout)
    console.setFormatter(formatter)
    console.setLevel(level)

    tank = TankHandler()
    tank.setFormatter(formatter)
    tank.setLevel(logging.DEBUG)

    root_logger.addHandler(console)
    root_logger.addHandler(tank)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    qInstallMessageHandler(qt_message_handler)


def get_tank_handler() -> Optional['TankHandler']:
    """Return the tank handler installed on the root logger, if any."""
    return next((h for h in logging.getLogger().handlers if isinstance(h, TankHandler)), None)


class TankHandler(logging.Handler):
    """
    Keeps the most recent formatted log messages in memory.

    An error level message emits ``signals.showLogs`` so a front end can surface
    the log after a failed sync.

    Attributes:
        tank (deque[tuple[int, str, str]]): Level, logger name and formatted message.
    """

    def __init__(self, max_records: int = TANK_MAX_RECORDS):
        super().__init__()
        self.tank: Deque[Tuple[int, str, str]] = collections.deque(maxlen=max_records)

    @property
    def max_records(self) -> int:
        return self.tank.maxlen

    def emit(self, record):
        try:
            self.tank.append((record.levelno, record.name or '', self.format(record)))
        except (Exception, KeyboardInterrupt):
            self.handleError(record)
            return

        if record.levelno >= logging.ERROR:
            signals.showLogs.emit()

    def get_logs(self, level: int = logging.NOTSET, name: Optional[str] = None) -> List[str]:
        """
        Returns the stored messages, oldest first.

        Args:
            level (int, optional): Minimum level of the returned messages.
            name (str, optional): Only return messages of this logger or its children.

        Returns:
            list[str]: The formatted messages.
        """
        return [
            message for lvl, logger_name, message in self.tank
            if lvl >= level and (name is None or logger_name == name or logger_name.startswith(f'{name}.'))
        ]

    def clear_logs(self):
        self.tank.clear()
