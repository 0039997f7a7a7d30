"""
LS-8 Assembler
===============
Translates LS-8 assembly text into raw bytecode and back.

Supports:
  - Labels (terminated with ':')
  - All LS-8 mnemonics (LDI, PRN, PUSH, POP, CALL, RET, JMP, JEQ, JNE,
    HLT, ADD, MUL, CMP)
  - Immediate literals (decimal, 0x hex, 0b binary) or label names
  - Comments (';' or '#' to end of line)
  - .org and .db directives

Usage:
  from asm import assemble, to_listing
  bytecode = assemble(source_text)
  text = to_listing(bytecode)       # .ls8 listing for the loader
"""

from __future__ import annotations
import re

from ls8 import Op, OPERANDS_SHIFT, RAM_SIZE, NUM_REGS, MASK8

# Mnemonic -> opcode byte
MNEMONICS = {op.name.lower(): op for op in Op}

# Instructions whose two operands are both registers
REG_REG = {Op.ADD, Op.MUL, Op.CMP}

_LABEL_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

# ---------------------------------------------------------------------------
#  Parser helpers
# ---------------------------------------------------------------------------

class AsmError(Exception):
    def __init__(self, line: int, msg: str):
        self.line = line
        super().__init__(f"Line {line}: {msg}" if line else msg)


def _parse_reg(lineno: int, tok: str) -> int:
    """Parse 'R0'-'R7' or 'r0'-'r7'. Returns register index."""
    tok = tok.strip().lower()
    if tok.startswith("r") and tok[1:].isdigit():
        n = int(tok[1:])
        if 0 <= n < NUM_REGS:
            return n
    raise AsmError(lineno, f"Invalid register: {tok!r}")

def _parse_imm(lineno: int, tok: str) -> int:
    """Parse an immediate value (decimal, 0x hex or 0b binary)."""
    tok = tok.strip()
    try:
        val = int(tok, 0)
    except ValueError:
        raise AsmError(lineno, f"Invalid number: {tok!r}") from None
    if not 0 <= val <= MASK8:
        raise AsmError(lineno, f"Value {val} does not fit in a byte")
    return val

def _split_ops(rest: str) -> list[str]:
    """Split operand string by comma, trimming whitespace."""
    return [s.strip() for s in rest.split(",") if s.strip()]

def _split_mnemonic(text: str) -> tuple[str, str]:
    """Split 'MNEM operands' -> (mnem, operands_str)."""
    parts = text.split(None, 1)
    if len(parts) == 1:
        return parts[0], ""
    return parts[0], parts[1]

def _strip_comment(raw: str) -> str:
    for marker in (";", "#"):
        idx = raw.find(marker)
        if idx != -1:
            raw = raw[:idx]
    return raw.strip()

def _resolve(lineno: int, tok: str, labels: dict[str, int]) -> int:
    """Resolve a token that is either an immediate or a label reference."""
    tok = tok.strip()
    if tok in labels:
        val = labels[tok]
        if val > MASK8:
            raise AsmError(lineno, f"Label '{tok}' is at {val:#x}, outside the 8-bit address space")
        return val
    if _LABEL_RE.match(tok):
        raise AsmError(lineno, f"Undefined label: {tok}")
    return _parse_imm(lineno, tok)

# ---------------------------------------------------------------------------
#  Assembler
# ---------------------------------------------------------------------------

def assemble(source: str) -> bytearray:
    """
    Two-pass assembler.
    Pass 1: collect labels, compute instruction sizes.
    Pass 2: emit bytecode with resolved addresses.
    """
    cleaned: list[tuple[int, str]] = []
    for i, raw in enumerate(source.split("\n"), 1):
        stripped = _strip_comment(raw)
        if stripped:
            cleaned.append((i, stripped))

    # ---- Pass 1: label collection and size computation ----
    labels: dict[str, int] = {}
    sizes: list[tuple[int, str, int]] = []  # (line_no, text, size_bytes)
    pc = 0

    for lineno, text in cleaned:
        # A label may share its line with an instruction
        while ":" in text:
            lbl, text = text.split(":", 1)
            lbl = lbl.strip()
            text = text.strip()
            if not _LABEL_RE.match(lbl):
                raise AsmError(lineno, f"Invalid label: {lbl!r}")
            if lbl in labels:
                raise AsmError(lineno, f"Duplicate label: {lbl}")
            labels[lbl] = pc
        if not text:
            continue

        lower = text.lower()
        if lower.startswith(".org"):
            target = _parse_imm(lineno, text[4:])
            if target < pc:
                raise AsmError(lineno, f".org {target:#x} is behind current address {pc:#x}")
            sizes.append((lineno, text, target - pc))
            pc = target
            continue
        if lower.startswith(".db"):
            n = len(_split_ops(text[3:]))
            sizes.append((lineno, text, n))
            pc += n
            continue

        sz = _instruction_size(lineno, text)
        sizes.append((lineno, text, sz))
        pc += sz

    if pc > RAM_SIZE:
        raise AsmError(cleaned[-1][0], f"Program is {pc} bytes; RAM holds {RAM_SIZE}")

    # ---- Pass 2: emit bytes ----
    code = bytearray()
    for lineno, text, sz in sizes:
        lower = text.lower()
        if lower.startswith(".org"):
            code.extend(bytes(sz))
            continue
        if lower.startswith(".db"):
            for tok in _split_ops(text[3:]):
                code.append(_resolve(lineno, tok, labels))
            continue

        emitted = _emit_instruction(lineno, text, labels)
        assert len(emitted) == sz, f"Size mismatch line {lineno}: expected {sz}, got {len(emitted)}"
        code.extend(emitted)

    return code


def _lookup(lineno: int, mnem: str) -> Op:
    op = MNEMONICS.get(mnem.lower())
    if op is None:
        raise AsmError(lineno, f"Unknown mnemonic: {mnem!r}")
    return op


def _instruction_size(lineno: int, text: str) -> int:
    """Compute the byte size of one assembly instruction."""
    mnem, _ = _split_mnemonic(text)
    return (_lookup(lineno, mnem) >> OPERANDS_SHIFT) + 1


def _emit_instruction(lineno: int, text: str, labels: dict[str, int]) -> bytearray:
    """Emit bytecode for one instruction."""
    mnem, rest = _split_mnemonic(text)
    op = _lookup(lineno, mnem)
    ops = _split_ops(rest)
    want = op >> OPERANDS_SHIFT
    if len(ops) != want:
        raise AsmError(lineno, f"{op.name} takes {want} operand(s), got {len(ops)}")

    out = bytearray([op])
    if op == Op.LDI:
        out.append(_parse_reg(lineno, ops[0]))
        out.append(_resolve(lineno, ops[1], labels))
    elif op in REG_REG:
        out.append(_parse_reg(lineno, ops[0]))
        out.append(_parse_reg(lineno, ops[1]))
    elif want == 1:
        out.append(_parse_reg(lineno, ops[0]))
    return out

# ---------------------------------------------------------------------------
#  Disassembler
# ---------------------------------------------------------------------------

def disasm_one(mem: bytearray | bytes, addr: int,
               mem_size: int = RAM_SIZE) -> tuple[str, int]:
    """Disassemble one instruction at `addr`. Returns (text, byte_count)."""
    def rb(a):
        return mem[a % mem_size] if (a % mem_size) < len(mem) else 0

    b0 = rb(addr)
    try:
        op = Op(b0)
    except ValueError:
        return f".db {b0:#04x}", 1

    n = op >> OPERANDS_SHIFT
    a = rb(addr + 1)
    b = rb(addr + 2)
    if op == Op.LDI:
        return f"LDI R{a & 7},{b}", 3
    if op in REG_REG:
        return f"{op.name} R{a & 7},R{b & 7}", 3
    if n == 1:
        return f"{op.name} R{a & 7}", 2
    return op.name, 1


def to_listing(code: bytearray | bytes) -> str:
    """Render bytecode as an .ls8 listing, annotating each instruction."""
    lines = []
    addr = 0
    while addr < len(code):
        text, size = disasm_one(code, addr)
        size = min(size, len(code) - addr)
        lines.append(f"{code[addr]:08b} # {text}")
        for i in range(1, size):
            lines.append(f"{code[addr + i]:08b}")
        addr += size
    return "\n".join(lines) + "\n"
