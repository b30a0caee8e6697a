"""Online/offline detection.

:class:`ConnectivityMonitor` probes a TCP endpoint (by default the remote
store's host) and emits a signal on every transition. Polling is driven by a
``QTimer``; other sources, such as OS network events, can feed transitions
through :meth:`ConnectivityMonitor.set_online`.
"""
import logging
import socket
from typing import Optional

from PySide6 import QtCore

from ..settings import lib


class ConnectivityMonitor(QtCore.QObject):
    """Observe reachability and emit transitions.

    Signals:
        connectivityChanged (bool): Emitted with the new state on every transition.
        becameOnline (): Emitted on an offline -> online transition.
        becameOffline (): Emitted on an online -> offline transition.
    """
    connectivityChanged = QtCore.Signal(bool)
    becameOnline = QtCore.Signal()
    becameOffline = QtCore.Signal()

    def __init__(
            self,
            host: Optional[str] = None,
            port: Optional[int] = None,
            timeout: Optional[float] = None,
            interval: Optional[int] = None,
            parent: Optional[QtCore.QObject] = None
    ) -> None:
        super().__init__(parent)

        config = {}
        if None in (host, port, timeout, interval):
            config = lib.get_settings().get_section('connectivity')

        self.host: str = host if host is not None else config['host']
        self.port: int = port if port is not None else config['port']
        self.timeout: float = timeout if timeout is not None else config['timeout']

        # None until the first probe or report
        self._online: Optional[bool] = None

        self.timer = QtCore.QTimer(self)
        self.timer.setInterval(interval if interval is not None else config['interval'])
        self.timer.timeout.connect(self.poll)

    @property
    def is_online(self) -> bool:
        return bool(self._online)

    def is_reachable(self) -> bool:
        """Probe the endpoint once. The probe is bounded by ``timeout`` seconds."""
        try:
            with socket.create_connection((self.host, self.port), timeout=self.timeout):
                return True
        except OSError as ex:
            logging.debug(f'{self.host}:{self.port} is not reachable: {ex}')
            return False

    @QtCore.Slot()
    def poll(self) -> bool:
        """Probe and report the result. Returns the probed state."""
        state = self.is_reachable()
        self.set_online(state)
        return state

    @QtCore.Slot(bool)
    def set_online(self, state: bool) -> None:
        """Report a connectivity state; signals are only emitted on a change."""
        state = bool(state)
        if state == self._online:
            return

        self._online = state
        logging.info(f'Connectivity changed: {"online" if state else "offline"}')
        self.connectivityChanged.emit(state)
        if state:
            self.becameOnline.emit()
        else:
            self.becameOffline.emit()

    def start(self) -> None:
        """Probe immediately, then keep polling on the timer."""
        self.poll()
        self.timer.start()

    def stop(self) -> None:
        self.timer.stop()
