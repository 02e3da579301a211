# restart_supervisor.py — relaunch the embryo as a detached process and step aside

import os
import sys
import time
import logging
import subprocess
from typing import Any, Callable, List, Mapping, Optional, Sequence

import psutil

import settings
from errors import RestartExhaustedError, describe_error

logger = logging.getLogger(__name__)


def current_command() -> List[str]:
    """
    Interpreter plus the argv this process was started with, with the script
    path made absolute so the child resolves it the same way.
    """
    argv = list(sys.argv)
    if argv and argv[0] and os.path.isfile(argv[0]):
        argv[0] = os.path.abspath(argv[0])
    return [sys.executable, *argv]


def detached_popen_kwargs() -> dict:
    kwargs: dict = {"stdin": subprocess.DEVNULL, "close_fds": True}
    if os.name == "nt":
        kwargs["creationflags"] = (
            getattr(subprocess, "DETACHED_PROCESS", 0)
            | getattr(subprocess, "CREATE_NEW_PROCESS_GROUP", 0)
        )
    else:
        kwargs["start_new_session"] = True
    return kwargs


def spawn_detached(
    command: Sequence[str],
    env: Optional[Mapping[str, str]] = None,
    stdout: Any = subprocess.DEVNULL,
    stderr: Any = subprocess.DEVNULL
) -> psutil.Popen:
    """
    Start `command` in its own session with no handle on our stdin, so it
    outlives this process and is not hit by signals sent to our group.
    """
    return psutil.Popen(
        list(command),
        env=dict(env) if env is not None else None,
        stdout=stdout,
        stderr=stderr,
        **detached_popen_kwargs()
    )


class RestartSupervisor:
    """
    Spawn a fresh copy of the current program and exit once it is running.

    Two things count as a failed attempt: the spawn itself raising, and the
    child exiting non-zero inside `early_exit_window`. Both wait `delay`
    seconds and try again, up to `max_attempts`. A child that survives the
    window (or exits 0 inside it) is left on its own and this process exits
    with status 0; its later health is the next generation's concern.
    """

    def __init__(
        self,
        command: Optional[Sequence[str]] = None,
        max_attempts: int = settings.MAX_RESTART_ATTEMPTS,
        delay: float = settings.RESTART_DELAY,
        early_exit_window: float = settings.EARLY_EXIT_WINDOW,
        spawner: Callable[[Sequence[str]], Any] = spawn_detached,
        sleep: Callable[[float], None] = time.sleep,
        exit_fn: Callable[[int], Any] = sys.exit
    ):
        self.command = list(command) if command is not None else current_command()
        self.max_attempts = max_attempts
        self.delay = delay
        self.early_exit_window = early_exit_window
        self.spawner = spawner
        self.sleep = sleep
        self.exit_fn = exit_fn

    def _early_exit_code(self, child) -> Optional[int]:
        if self.early_exit_window <= 0:
            return None
        try:
            return child.wait(timeout=self.early_exit_window)
        except (psutil.TimeoutExpired, subprocess.TimeoutExpired):
            return None

    def _log_child_state(self, child) -> None:
        try:
            status = psutil.Process(child.pid).status()
        except psutil.Error:
            status = "exited"
        logger.info(f"[RESTART] Child pid={child.pid} status={status}")

    def _retry(self, attempt: int) -> None:
        self.sleep(self.delay)
        return self.restart(attempt + 1)

    def restart(self, attempt: int = 1) -> None:
        if attempt > self.max_attempts:
            raise RestartExhaustedError(f"Failed to restart after {self.max_attempts} attempts")

        logger.info(f"[RESTART] Restarting process (attempt {attempt}/{self.max_attempts})...")
        try:
            child = self.spawner(self.command)
        except (OSError, ValueError, subprocess.SubprocessError, psutil.Error) as e:
            logger.error(f"[RESTART] Restart failed: {describe_error(e)}")
            return self._retry(attempt)

        code = self._early_exit_code(child)
        if code is not None and code != 0:
            logger.error(f"[RESTART] Child process exited with code {code}")
            return self._retry(attempt)

        self._log_child_state(child)
        logger.info("[RESTART] Handoff complete; exiting current process")
        self.exit_fn(0)
