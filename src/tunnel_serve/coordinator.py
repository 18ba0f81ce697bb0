"""Exit coordination.

The coordinator is the only place that decides when the tool stops and
with which status. Two independent sources can trigger it: the keyboard,
where the confirmation key must be pressed twice within a short window,
and the tunnel session, whose termination always ends the tool.
"""

import asyncio
import os
import signal
import sys
import termios
import tty
from collections.abc import Callable
from enum import Enum
from typing import TextIO

from pydantic import BaseModel, ConfigDict, Field

from .common.logging import get_logger
from .common.utils import EXIT_FAILURE, EXIT_SUCCESS, exit_status_for
from .tunnel.session import TunnelSession

logger = get_logger(__name__)

CTRL_C = "\x03"


class CoordinatorState(str, Enum):
    """Exit coordinator state enumeration."""

    IDLE = "idle"
    ARMED = "armed"
    TERMINATED = "terminated"


class CoordinatorSettings(BaseModel):
    """Configuration for keyboard shutdown confirmation."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    confirm_key: str = Field(
        default=CTRL_C, min_length=1, max_length=1, description="Confirmation key"
    )
    window: float = Field(
        default=1.0, gt=0.0, le=10.0, description="Seconds to press the key again"
    )

    @property
    def key_label(self) -> str:
        if self.confirm_key == CTRL_C:
            return "Ctrl+C"
        if self.confirm_key == "\x1b":
            return "Esc"
        return repr(self.confirm_key)


class KeyboardInput:
    """Reads single keypresses from a terminal on the event loop.

    While attached the terminal is in cbreak mode with signal generation
    disabled, so Ctrl+C arrives as a character instead of SIGINT.
    """

    def __init__(self, on_key: Callable[[str], None], stream: TextIO | None = None):
        self._on_key = on_key
        self._stream = stream
        self._loop: asyncio.AbstractEventLoop | None = None
        self._fd: int | None = None
        self._saved_mode: list | None = None  # type: ignore[type-arg]

    @property
    def attached(self) -> bool:
        return self._fd is not None

    def attach(self, loop: asyncio.AbstractEventLoop) -> bool:
        """Enter immediate keypress mode.

        Returns:
            True if the stream is a terminal and is now being read
        """
        if self.attached:
            return True

        stream = self._stream or sys.stdin
        try:
            if not stream.isatty():
                return False
            fd = stream.fileno()
        except (AttributeError, ValueError, OSError):
            return False

        self._saved_mode = termios.tcgetattr(fd)
        tty.setcbreak(fd)
        mode = termios.tcgetattr(fd)
        mode[tty.LFLAG] &= ~termios.ISIG
        termios.tcsetattr(fd, termios.TCSANOW, mode)

        loop.add_reader(fd, self._on_readable)
        self._loop = loop
        self._fd = fd
        logger.debug("Keyboard attached", fd=fd)
        return True

    def _on_readable(self) -> None:
        assert self._fd is not None
        try:
            data = os.read(self._fd, 64)
        except OSError as e:
            logger.warning("Keyboard read failed", error=str(e))
            data = b""

        if not data:
            # stdin closed, keep the terminal mode until detach restores it
            assert self._loop is not None
            self._loop.remove_reader(self._fd)
            return

        for key in data.decode("utf-8", errors="ignore"):
            self._on_key(key)

    def detach(self) -> None:
        """Leave immediate keypress mode and restore the terminal."""
        if self._fd is None:
            return
        fd = self._fd
        self._fd = None

        if self._loop is not None:
            self._loop.remove_reader(fd)
            self._loop = None
        if self._saved_mode is not None:
            try:
                termios.tcsetattr(fd, termios.TCSADRAIN, self._saved_mode)
            except termios.error as e:
                logger.warning("Failed to restore terminal mode", error=str(e))
            self._saved_mode = None
        logger.debug("Keyboard detached", fd=fd)


class ExitCoordinator:
    """Decides when the tool terminates and with which exit status."""

    def __init__(
        self,
        settings: CoordinatorSettings | None = None,
        loop: asyncio.AbstractEventLoop | None = None,
        stdin: TextIO | None = None,
        on_armed: Callable[[], None] | None = None,
    ):
        """Initialize coordinator.

        Args:
            settings: Confirmation key and window
            loop: Event loop, defaults to the running loop
            stdin: Keyboard stream, defaults to sys.stdin
            on_armed: Called after the first confirmation keypress
        """
        self.settings = settings or CoordinatorSettings()
        self._loop = loop
        self._on_armed = on_armed
        self._state = CoordinatorState.IDLE
        self._reset_handle: asyncio.TimerHandle | None = None
        self._session: TunnelSession | None = None
        self._exit: asyncio.Future[int] | None = None
        self._exit_status: int | None = None
        self._keyboard = KeyboardInput(self.feed, stdin)
        self._signals: list[signal.Signals] = []

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    @property
    def state(self) -> CoordinatorState:
        return self._state

    @property
    def exit_status(self) -> int | None:
        """Exit status once terminated, otherwise None."""
        return self._exit_status

    @property
    def keyboard_attached(self) -> bool:
        return self._keyboard.attached

    def _future(self) -> "asyncio.Future[int]":
        if self._exit is None:
            self._exit = self.loop.create_future()
            if self._exit_status is not None:
                self._exit.set_result(self._exit_status)
        return self._exit

    @property
    def exit_future(self) -> "asyncio.Future[int]":
        """Future resolved with the exit status once terminated."""
        return self._future()

    def feed(self, key: str) -> None:
        """Process one keypress."""
        if self._state == CoordinatorState.TERMINATED:
            return

        if key != self.settings.confirm_key:
            if self._state == CoordinatorState.ARMED:
                logger.debug("Shutdown confirmation cancelled by other key")
            self._reset()
            return

        if self._state == CoordinatorState.IDLE:
            self._state = CoordinatorState.ARMED
            self._reset_handle = self.loop.call_later(
                self.settings.window, self._on_window_elapsed
            )
            logger.debug("Shutdown armed", window=self.settings.window)
            if self._on_armed is not None:
                self._on_armed()
            return

        logger.info("Shutdown confirmed")
        self.terminate(EXIT_SUCCESS)

    def _on_window_elapsed(self) -> None:
        self._reset_handle = None
        if self._state == CoordinatorState.ARMED:
            logger.debug("Shutdown confirmation window elapsed")
            self._reset()

    def _cancel_timer(self) -> None:
        if self._reset_handle is not None:
            self._reset_handle.cancel()
            self._reset_handle = None

    def _reset(self) -> None:
        self._cancel_timer()
        if self._state != CoordinatorState.TERMINATED:
            self._state = CoordinatorState.IDLE

    def watch(self, session: TunnelSession) -> None:
        """Terminate the tool when the session ends, and stop it on exit."""
        self._session = session
        session.on_terminated(self._on_session_terminated)

    def _on_session_terminated(self, exit_code: int | None) -> None:
        status = exit_status_for(exit_code)
        if status == EXIT_SUCCESS:
            logger.info("Tunnel closed", exit_code=exit_code)
        else:
            logger.error("Tunnel terminated abnormally", exit_code=exit_code)
        self.terminate(status)

    def terminate(self, status: int = EXIT_SUCCESS) -> None:
        """End the run with the given status.

        Only the first call has an effect: the session is stopped, the
        keyboard is released and the status is delivered to ``wait()``.
        """
        if self._state == CoordinatorState.TERMINATED:
            logger.debug("Already terminated", requested_status=status)
            return

        self._state = CoordinatorState.TERMINATED
        self._exit_status = status
        self._cancel_timer()

        if self._session is not None:
            self._session.stop()
        self.detach()

        if self._exit is not None and not self._exit.done():
            self._exit.set_result(status)
        logger.info("Terminating", status=status)

    def fail(self) -> None:
        """Terminate with the failure status."""
        self.terminate(EXIT_FAILURE)

    async def wait(self) -> int:
        """Block until termination and return the exit status."""
        return await self._future()

    def attach(self) -> bool:
        """Start listening for shutdown input.

        On a terminal the keyboard is read directly. Otherwise SIGINT counts
        as a confirmation keypress. SIGTERM always terminates cleanly.

        Returns:
            True if the keyboard is attached
        """
        attached = self._keyboard.attach(self.loop)
        if not attached:
            self._add_signal_handler(
                signal.SIGINT, lambda: self.feed(self.settings.confirm_key)
            )
        self._add_signal_handler(signal.SIGTERM, lambda: self.terminate(EXIT_SUCCESS))
        return attached

    def _add_signal_handler(
        self, sig: signal.Signals, callback: Callable[[], None]
    ) -> None:
        try:
            self.loop.add_signal_handler(sig, callback)
        except (NotImplementedError, RuntimeError, ValueError) as e:
            logger.debug("Signal handler unavailable", signal=sig.name, error=str(e))
            return
        self._signals.append(sig)

    def detach(self) -> None:
        """Restore normal input handling. Safe to call more than once."""
        self._keyboard.detach()
        for sig in self._signals:
            self.loop.remove_signal_handler(sig)
        self._signals = []
