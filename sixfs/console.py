"""Line-buffered console input with erase and kill editing, and kernel printf."""

from __future__ import annotations

import sys
from typing import Callable, Optional, TextIO

INPUT_BUF_SIZE = 128
_DIGITS = "0123456789abcdef"


def _ctrl(x: str) -> str:
    return chr(ord(x) - ord("@"))


_EOF = _ctrl("D")
_KILL = _ctrl("U")
_ERASE = _ctrl("H")
_DUMP = _ctrl("P")
_DELETE = "\x7f"


class Console:
    """Console input editing and output.

    ``interrupt`` receives typed characters; they are echoed to ``output``
    and become readable once a whole line, an end-of-file or a full buffer
    has arrived.
    """

    def __init__(
        self,
        output: Optional[TextIO] = None,
        on_process_dump: Optional[Callable[[], None]] = None,
    ):
        self.output = output if output is not None else sys.stdout
        self._on_process_dump = on_process_dump
        self._buf = [""] * INPUT_BUF_SIZE
        self._r = 0  # read index
        self._w = 0  # write index
        self._e = 0  # edit index

    def _putc(self, c: str) -> None:
        self.output.write(c)

    def _erase(self) -> None:
        self.output.write("\b \b")

    def interrupt(self, c: str) -> None:
        """Handle one typed character."""
        if len(c) != 1:
            raise ValueError("interrupt takes a single character")
        if c == _DUMP:
            if self._on_process_dump is not None:
                self._on_process_dump()
        elif c == _KILL:
            while self._e != self._w and self._buf[(self._e - 1) % INPUT_BUF_SIZE] != "\n":
                self._e -= 1
                self._erase()
        elif c in (_ERASE, _DELETE):
            if self._e != self._w:
                self._e -= 1
                self._erase()
        elif c != "\0" and self._e - self._r < INPUT_BUF_SIZE:
            if c == "\r":
                c = "\n"
            self._putc(c)
            self._buf[self._e % INPUT_BUF_SIZE] = c
            self._e += 1
            if c == "\n" or c == _EOF or self._e - self._r == INPUT_BUF_SIZE:
                self._w = self._e

    def read(self, n: int) -> str:
        """Read up to n characters, at most one line.

        Returns "" at end of file and raises BlockingIOError when no
        completed input is waiting.
        """
        target = n
        out = []
        while n > 0:
            if self._r == self._w:
                if not out:
                    raise BlockingIOError("no console input available")
                break
            c = self._buf[self._r % INPUT_BUF_SIZE]
            self._r += 1
            if c == _EOF:
                if n < target:
                    # Keep the end-of-file so the next read returns nothing.
                    self._r -= 1
                break
            out.append(c)
            n -= 1
            if c == "\n":
                break
        return "".join(out)

    def write(self, data: str) -> int:
        """Send characters to the console; returns how many were written."""
        for c in data:
            self._putc(c)
        return len(data)


def _to_int32(value: int) -> int:
    return ((int(value) + 2**31) % 2**32) - 2**31


def _format_int(value: int, base: int) -> str:
    v = _to_int32(value)
    x = -v if v < 0 else v
    digits = []
    while True:
        digits.append(_DIGITS[x % base])
        x //= base
        if x == 0:
            break
    if v < 0:
        digits.append("-")
    return "".join(reversed(digits))


def kformat(fmt: str, *args) -> str:
    """Format like the kernel printf: only %d, %x, %p, %s and %%."""
    if fmt is None:
        raise ValueError("null fmt")
    values = iter(args)

    def next_arg():
        try:
            return next(values)
        except StopIteration:
            raise TypeError("not enough arguments for format") from None

    out = []
    chars = iter(fmt)
    for c in chars:
        if c != "%":
            out.append(c)
            continue
        spec = next(chars, None)
        if spec is None:
            break
        if spec == "d":
            out.append(_format_int(next_arg(), 10))
        elif spec == "x":
            out.append(_format_int(next_arg(), 16))
        elif spec == "p":
            out.append("0x" + format(int(next_arg()) & (2**64 - 1), "016x"))
        elif spec == "s":
            s = next_arg()
            out.append("(null)" if s is None else str(s))
        elif spec == "%":
            out.append("%")
        else:
            out.append("%" + spec)
    return "".join(out)