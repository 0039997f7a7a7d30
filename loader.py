"""
LS-8 Program Loader
====================
Reads ``.ls8`` program listings: one byte per line written as a binary
literal, optionally followed by a comment.

    # print8.ls8
    10000010 # LDI R0,8
    00000000
    00001000
    01000111 # PRN R0
    00000000
    00000001 # HLT

Lines that do not start with ``0`` or ``1`` (blank lines, comment-only
lines) are skipped.  Bytes are returned in file order, ready to be placed
in RAM starting at address 0.
"""

from __future__ import annotations
import re

from ls8 import LS8, RAM_SIZE

_BYTE_RE = re.compile(r"[01]+")


class ProgramLoadError(Exception):
    def __init__(self, msg: str, line: int = 0):
        self.line = line
        super().__init__(f"Line {line}: {msg}" if line else msg)


def parse_program(text: str) -> bytearray:
    """Parse listing text into program bytes."""
    program = bytearray()
    for lineno, raw in enumerate(text.splitlines(), 1):
        m = _BYTE_RE.match(raw.strip())
        if not m:
            continue
        digits = m.group(0)
        if len(digits) > 8:
            raise ProgramLoadError(f"Binary literal wider than 8 bits: {digits}", lineno)
        program.append(int(digits, 2))
        if len(program) > RAM_SIZE:
            raise ProgramLoadError(f"Program exceeds {RAM_SIZE} bytes of RAM", lineno)
    return program


def read_program(path: str) -> bytearray:
    """Read and parse a listing file.  OSError propagates to the caller."""
    with open(path, "r") as f:
        try:
            text = f.read()
        except UnicodeDecodeError as e:
            raise ProgramLoadError(f"Not a text listing: {e.reason} at byte {e.start}") from e
    return parse_program(text)


def load_program(cpu: LS8, path: str) -> int:
    """Load the listing at *path* into *cpu* at address 0.  Returns byte count."""
    program = read_program(path)
    cpu.load_bytes(program, 0)
    return len(program)
