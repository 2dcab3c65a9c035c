"""Keyboard input from the controlling terminal."""

import logging
import os
import selectors
import sys
import termios
import tty

from livetop.events import WakeChannel

logger = logging.getLogger(__name__)

_ESCAPE = 0x1B

# How long a partial escape sequence waits for the rest before it is taken
# as a lone escape key (seconds)
ESCAPE_DELAY = 0.05

_KEY_SEQUENCES = {
    b"\x1b[A": "up",
    b"\x1bOA": "up",
    b"\x1b[B": "down",
    b"\x1bOB": "down",
    b"\x1b[C": "right",
    b"\x1bOC": "right",
    b"\x1b[D": "left",
    b"\x1bOD": "left",
    b"\x1b[5~": "pageup",
    b"\x1b[6~": "pagedown",
    b"\x1b[H": "home",
    b"\x1bOH": "home",
    b"\x1b[1~": "home",
    b"\x1b[7~": "home",
    b"\x1b[F": "end",
    b"\x1bOF": "end",
    b"\x1b[4~": "end",
    b"\x1b[8~": "end",
}


class TerminalSetupError(RuntimeError):
    """The terminal session could not be prepared."""


def decode_keys(data: bytes) -> list[str]:
    """
    Split raw terminal input into key names.

    Known escape sequences become names such as 'up' or 'pagedown', a lone
    escape becomes 'escape' and everything else is returned character by
    character.
    """
    keys: list[str] = []
    index = 0
    while index < len(data):
        if data[index] == _ESCAPE:
            for sequence, name in _KEY_SEQUENCES.items():
                if data.startswith(sequence, index):
                    keys.append(name)
                    index += len(sequence)
                    break
            else:
                keys.append("escape")
                index += 1
            continue
        end = data.find(_ESCAPE, index)
        if end == -1:
            end = len(data)
        keys.extend(data[index:end].decode("utf-8", errors="replace"))
        index = end
    return keys


def _utf8_length(lead: int) -> int:
    if lead >= 0xF0:
        return 4
    if lead >= 0xE0:
        return 3
    return 2


def split_incomplete(data: bytes) -> tuple[bytes, bytes]:
    """
    Split off a trailing key that a later read may still complete.

    The tail is held back when it is a proper prefix of a known escape
    sequence or the leading bytes of a multi-byte UTF-8 character.

    Returns:
        The bytes ready to decode and the held-back tail.
    """
    start = data.rfind(_ESCAPE)
    if start != -1:
        tail = data[start:]
        if any(len(tail) < len(sequence) and sequence.startswith(tail) for sequence in _KEY_SEQUENCES):
            return data[:start], tail
    for back in range(1, min(3, len(data)) + 1):
        byte = data[-back]
        if byte & 0xC0 == 0x80:  # continuation byte, keep looking for the lead
            continue
        if 0xC0 <= byte < 0xF8 and _utf8_length(byte) > back:
            return data[:-back], data[-back:]
        break
    return data, b""


class TerminalKeyReader:
    """
    Blocking key reader for a tty in cbreak mode.

    Use as a context manager: entering switches the terminal to cbreak mode,
    leaving restores the saved attributes. read_keys() waits on both the tty
    and a private WakeChannel so another thread can unblock it with wake().
    A key split across two reads is held back until the rest arrives, or
    until ESCAPE_DELAY passes without more input.
    """

    def __init__(self, fd: int | None = None) -> None:
        if fd is None:
            try:
                fd = sys.stdin.fileno()
            except (AttributeError, ValueError, OSError) as exc:
                raise TerminalSetupError("standard input has no file descriptor") from exc
        if not os.isatty(fd):
            raise TerminalSetupError("standard input is not a terminal")
        self._fd = fd
        self._wake = WakeChannel()
        self._selector = selectors.DefaultSelector()
        self._selector.register(self._fd, selectors.EVENT_READ)
        self._selector.register(self._wake.fileno(), selectors.EVENT_READ)
        self._saved_attributes: list | None = None
        self._pending = b""

    def __enter__(self) -> "TerminalKeyReader":
        try:
            self._saved_attributes = termios.tcgetattr(self._fd)
            tty.setcbreak(self._fd)
        except termios.error as exc:
            self.close()
            raise TerminalSetupError(f"cannot switch terminal to cbreak mode: {exc}") from exc
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if self._saved_attributes is not None:
            try:
                termios.tcsetattr(self._fd, termios.TCSADRAIN, self._saved_attributes)
            except termios.error:
                logger.warning("Could not restore terminal attributes")
            self._saved_attributes = None
        self.close()

    def read_keys(self) -> list[str]:
        """
        Block until input or a wake-up arrives.

        Returns:
            Decoded keys. The list is empty when woken by wake() or when
            only part of a key has arrived so far.

        Raises:
            EOFError: if the terminal was closed.
        """
        timeout = ESCAPE_DELAY if self._pending else None
        ready = {key.fd for key, _ in self._selector.select(timeout)}
        if not ready:
            # Nothing followed the held-back bytes, so they were a whole key
            data, self._pending = self._pending, b""
            return decode_keys(data)
        if self._wake.fileno() in ready:
            self._wake.drain()
        if self._fd not in ready:
            return []
        try:
            data = os.read(self._fd, 64)
        except OSError as exc:  # EIO once the controlling terminal is gone
            raise EOFError("terminal input closed") from exc
        if not data:
            raise EOFError("terminal input closed")
        data, self._pending = split_incomplete(self._pending + data)
        return decode_keys(data)

    def wake(self) -> None:
        """Unblock a pending read_keys() from another thread."""
        self._wake.notify()

    def close(self) -> None:
        """Release the selector and wake channel."""
        if self._wake.closed:
            return
        self._selector.close()
        self._wake.close()
