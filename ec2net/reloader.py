# This file is part of ec2net. See LICENSE file for license information.
"""Elect a single networkd reload among concurrently configuring processes.

Each process that may change networkd configuration registers itself with
a file in a shared lock directory. On exit it removes its file and tries
to remove the directory. Only the last registrant succeeds, and it reloads
networkd if any participant raised the reload flag meanwhile.
"""
import contextlib
import errno
import logging
import os
import signal
import threading
import time
from typing import Callable, Dict, Optional

from ec2net import atomic_helper, subp
from ec2net.settings import Settings

LOG = logging.getLogger(__name__)

EXIT_SIGNALS = (signal.SIGTERM, signal.SIGHUP)
REGISTER_RETRY_SLEEP = 0.01


class RegistrationError(RuntimeError):
    pass


def _exit_on_signal(signum, _frame):
    raise SystemExit(128 + signum)


class Registration:
    """A live registration. Releasing it may reload networkd."""

    def __init__(self, coordinator: "ReloadCoordinator", iface: str):
        self.coordinator = coordinator
        self.iface = iface
        self.path = os.path.join(coordinator.settings.lockdir, iface)
        self.released = False
        self.reloaded = False
        self._saved_handlers: Dict[int, Callable] = {}

    def __enter__(self):
        return self

    def __exit__(self, excp_type, excp_value, excp_traceback):
        self.release()

    def catch_signals(self):
        """Turn termination signals into SystemExit so release() runs."""
        if threading.current_thread() is not threading.main_thread():
            return
        for signum in EXIT_SIGNALS:
            self._saved_handlers[signum] = signal.signal(
                signum, _exit_on_signal
            )

    def _restore_signals(self):
        for signum, handler in self._saved_handlers.items():
            signal.signal(signum, handler)
        self._saved_handlers.clear()

    def release(self) -> bool:
        """Unregister and reload networkd if we were the last registrant.

        Safe to call more than once. Returns True when this call reloaded
        networkd.
        """
        if self.released:
            return False
        self.released = True
        try:
            self.reloaded = self.coordinator.unregister(self.path)
        finally:
            self._restore_signals()
        return self.reloaded


class ReloadCoordinator:
    def __init__(
        self,
        settings: Settings,
        run_cmd: Optional[Callable] = None,
        sleep_fn: Callable[[float], None] = time.sleep,
        pid: Optional[int] = None,
    ):
        self.settings = settings
        self._run_cmd = run_cmd or subp.subp
        self._sleep = sleep_fn
        self.pid = os.getpid() if pid is None else pid

    def register(self, iface: str, catch_signals: bool = True) -> Registration:
        """Register this process as one that may change networkd config.

        A peer that is last to finish removes the lock directory, which
        can race with our registration; that case is retried a bounded
        number of times.

        @raises RegistrationError: when registration kept failing.
        """
        if not iface:
            raise ValueError("Cannot register without an interface")
        registration = Registration(self, iface)
        if catch_signals:
            registration.catch_signals()
        try:
            for _ in range(self.settings.register_max_attempts):
                try:
                    atomic_helper.write_file(
                        registration.path, "{0}\n".format(self.pid)
                    )
                except FileNotFoundError:
                    LOG.debug(
                        "Lock directory %s vanished while registering %s",
                        self.settings.lockdir,
                        iface,
                    )
                    self._sleep(REGISTER_RETRY_SLEEP)
                    continue
                LOG.debug("Registered %s as networkd reloader", iface)
                return registration
        except BaseException:
            # Interrupted after the file landed: it must not outlive us.
            if os.path.lexists(registration.path):
                registration.release()
            else:
                registration._restore_signals()
            raise
        registration._restore_signals()
        raise RegistrationError(
            "Unable to register {0} in {1} after {2} attempts".format(
                iface,
                self.settings.lockdir,
                self.settings.register_max_attempts,
            )
        )

    def flag_reload(self):
        """Record that networkd has to be reloaded by the last registrant."""
        flag = self.settings.reload_flag
        os.makedirs(os.path.dirname(flag) or ".", exist_ok=True)
        with open(flag, "a"):
            pass
        LOG.debug("Raised reload flag %s", flag)

    def unregister(self, path: str) -> bool:
        with contextlib.suppress(FileNotFoundError):
            os.unlink(path)
        try:
            os.rmdir(self.settings.lockdir)
        except OSError as e:
            if e.errno not in (errno.ENOTEMPTY, errno.EEXIST, errno.ENOENT):
                raise
            LOG.debug("Deferring networkd reload to another process")
            return False
        return self._maybe_reload()

    def _maybe_reload(self) -> bool:
        flag = self.settings.reload_flag
        if not os.path.exists(flag):
            LOG.debug("No networkd reload needed")
            return False
        with contextlib.suppress(FileNotFoundError):
            os.unlink(flag)
        try:
            self._run_cmd(
                list(self.settings.reload_command),
                timeout=self.settings.reload_timeout,
            )
        except subp.ProcessExecutionError as e:
            LOG.error("Failed to reload networkd: %s", e)
            return False
        LOG.info("Reloaded networkd")
        return True
