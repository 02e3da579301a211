import os
import sys
import shutil
import gzip
import logging
from logging.handlers import RotatingFileHandler

from colorama import init as colorama_init, Fore, Style

import settings

_LEVEL_COLORS = {
    logging.DEBUG:    Style.DIM,
    logging.INFO:     Fore.CYAN,
    logging.WARNING:  Fore.YELLOW,
    logging.ERROR:    Fore.RED,
    logging.CRITICAL: Fore.RED + Style.BRIGHT,
}


class SafeRotatingFileHandler(RotatingFileHandler):
    """
    RotatingFileHandler that survives a locked log file and gzips the
    rotated backup.

    The embryo restarts itself often, so several generations of the process
    may append to the same log over its lifetime.
    """
    def rotate(self, source: str, dest: str) -> None:
        try:
            os.rename(source, dest)
        except PermissionError:
            try:
                shutil.copy2(source, dest)
                # truncate so the live process keeps writing to a small file
                with open(source, 'w'):
                    pass
            except OSError as e:
                logging.getLogger(__name__).error(f"[LOGGING] Rotate fallback failed: {e}")

    def doRollover(self) -> None:
        if self.stream:
            try:
                self.stream.close()
            except OSError:
                pass
        self.stream = None

        try:
            super().doRollover()
        except FileNotFoundError:
            return

        if self.backupCount > 0:
            backup_name = f"{self.baseFilename}.1"
            if os.path.exists(backup_name):
                with open(backup_name, 'rb') as f_in, gzip.open(f"{backup_name}.gz", 'wb') as f_out:
                    shutil.copyfileobj(f_in, f_out)
                os.remove(backup_name)

        self.stream = self._open()


class ColorFormatter(logging.Formatter):
    """Colour the level name for terminal output."""
    def format(self, record: logging.LogRecord) -> str:
        text = super().format(record)
        color = _LEVEL_COLORS.get(record.levelno)
        if not color:
            return text
        return text.replace(record.levelname, f"{color}{record.levelname}{Style.RESET_ALL}", 1)


def configure_logging(
    log_file_path: str = settings.LOG_FILE,
    max_bytes: int = 10 * 1024 * 1024,
    backup_count: int = 5,
    level: int = logging.INFO,
    console: bool = True,
    fmt: str = "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt: str = "%Y-%m-%d %H:%M:%S"
) -> None:
    """
    Configure the root logger with a SafeRotatingFileHandler and, optionally,
    a coloured stderr handler.

    - log_file_path: path to the active log file
    - max_bytes:    file size threshold to trigger a rotation
    - backup_count: how many rotated files to keep before oldest is purged
    - console:      also log to stderr with colorama-coloured levels
    """
    colorama_init(autoreset=True)
    logger = logging.getLogger()
    logger.setLevel(level)

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    file_handler = SafeRotatingFileHandler(
        filename=log_file_path,
        maxBytes=max_bytes,
        backupCount=backup_count,
        encoding="utf-8"
    )
    file_handler.setLevel(level)
    file_handler.setFormatter(logging.Formatter(fmt=fmt, datefmt=datefmt))
    logger.addHandler(file_handler)

    if console:
        stream_handler = logging.StreamHandler(sys.stderr)
        stream_handler.setLevel(level)
        stream_handler.setFormatter(ColorFormatter(fmt=fmt, datefmt=datefmt))
        logger.addHandler(stream_handler)
