"""
LS-8 Bytecode Emulator
=======================
A step emulator for the LS-8 architecture: 8-bit PC, eight 8-bit general
registers (R7 doubles as the stack pointer), an 8-bit FL register and a flat
256-byte RAM shared by code and data.

Every instruction is decoded from raw bytes in memory.  The opcode byte
carries its own metadata, ``AABCDDDD``:

    AA    number of operand bytes that follow (0-2)
    B     1 if the instruction is an ALU operation
    C     1 if the instruction sets PC itself
    DDDD  instruction identifier

All addresses (RAM, PC, SP) wrap modulo 256.
"""

from __future__ import annotations
import enum
from dataclasses import dataclass
from typing import Callable, Optional

# ---------------------------------------------------------------------------
#  Constants
# ---------------------------------------------------------------------------

RAM_SIZE = 256
MASK8    = 0xFF

NUM_REGS = 8
REG_MASK = 0b0000_0111
SP_REG   = 7        # R7 is the stack pointer
SP_INIT  = 0xF4     # empty stack

# FL bits
FL_EQ = 0  # E
FL_GT = 1  # G
FL_LT = 2  # L

# Opcode metadata
OPERANDS_SHIFT = 6
ALU_BIT        = 0b0010_0000
SETS_PC_BIT    = 0b0001_0000

# ---------------------------------------------------------------------------
#  Helpers
# ---------------------------------------------------------------------------

def u8(v: int) -> int:
    """Mask to unsigned 8 bits."""
    return v & MASK8

# ---------------------------------------------------------------------------
#  Errors
# ---------------------------------------------------------------------------

class LS8Error(Exception):
    """Base for emulator-generated faults."""
    pass

class IllegalInstructionError(LS8Error):
    def __init__(self, opcode: int, pc: int):
        self.opcode = opcode
        self.pc = pc
        super().__init__(f"Unknown instruction {opcode:#04x} at address {pc:#04x}")

class HaltError(LS8Error):
    pass

class StepLimitError(LS8Error):
    def __init__(self, steps: int):
        self.steps = steps
        super().__init__(f"Step limit of {steps} reached without HLT")

# ---------------------------------------------------------------------------
#  Instruction set
# ---------------------------------------------------------------------------

class Op(enum.IntEnum):
    HLT  = 0b0000_0001
    RET  = 0b0001_0001
    PUSH = 0b0100_0101
    POP  = 0b0100_0110
    PRN  = 0b0100_0111
    CALL = 0b0101_0000
    JMP  = 0b0101_0100
    JEQ  = 0b0101_0101
    JNE  = 0b0101_0110
    LDI  = 0b1000_0010
    ADD  = 0b1010_0000
    MUL  = 0b1010_0010
    CMP  = 0b1010_0111


@dataclass(frozen=True)
class Instruction:
    """One decoded instruction: what to run and how PC moves afterwards."""
    op: Op
    operand_count: int
    is_alu: bool
    sets_pc: bool
    operand_a: int = 0
    operand_b: int = 0

    @property
    def size(self) -> int:
        return self.operand_count + 1


def decode(opcode: int, operand_a: int = 0, operand_b: int = 0,
           pc: int = 0) -> Instruction:
    """Decode *opcode* into an Instruction.

    Raises IllegalInstructionError (tagged with *pc*) for bytes that are not
    part of the instruction set.
    """
    try:
        op = Op(opcode)
    except ValueError:
        raise IllegalInstructionError(opcode, pc) from None
    return Instruction(
        op=op,
        operand_count=opcode >> OPERANDS_SHIFT,
        is_alu=bool(opcode & ALU_BIT),
        sets_pc=bool(opcode & SETS_PC_BIT),
        operand_a=operand_a,
        operand_b=operand_b,
    )

# ---------------------------------------------------------------------------
#  Memory
# ---------------------------------------------------------------------------

class Memory:
    """256 bytes of RAM.  Addresses wrap, values are masked to a byte."""

    def __init__(self, size: int = RAM_SIZE):
        self.size = size
        self.data = bytearray(size)

    def read(self, addr: int) -> int:
        return self.data[addr % self.size]

    def write(self, addr: int, val: int):
        self.data[addr % self.size] = u8(val)

    def load(self, data: bytes | bytearray, addr: int = 0):
        """Copy raw bytes into memory starting at *addr*."""
        for i, b in enumerate(data):
            self.data[(addr + i) % self.size] = u8(b)

    def clear(self):
        self.data[:] = bytes(self.size)

# ---------------------------------------------------------------------------
#  Register file
# ---------------------------------------------------------------------------

class RegisterFile:
    """R0-R7 plus the FL comparison register."""

    def __init__(self):
        self.regs: list[int] = [0] * NUM_REGS
        self.regs[SP_REG] = SP_INIT
        self.fl: int = 0

    def get(self, index: int) -> int:
        return self.regs[index & REG_MASK]

    def set(self, index: int, val: int):
        self.regs[index & REG_MASK] = u8(val)

    @property
    def sp(self) -> int:
        return self.regs[SP_REG]

    @sp.setter
    def sp(self, value: int):
        self.regs[SP_REG] = u8(value)

    # -- Flags --

    def set_flags(self, eq: bool, gt: bool, lt: bool):
        self.fl = (int(eq) << FL_EQ) | (int(gt) << FL_GT) | (int(lt) << FL_LT)

    def flag(self, bit: int) -> bool:
        return bool((self.fl >> bit) & 1)

    def clear_flags(self):
        self.fl = 0

    def reset(self):
        self.regs = [0] * NUM_REGS
        self.regs[SP_REG] = SP_INIT
        self.fl = 0

# ---------------------------------------------------------------------------
#  CPU
# ---------------------------------------------------------------------------

class LS8:
    """LS-8 emulator, bytecode level."""

    def __init__(self):
        self.ram = Memory()
        self.reg = RegisterFile()
        self.pc: int = 0

        # State
        self.halted: bool = False
        self.steps: int = 0

        # Callbacks
        self.on_output: Optional[Callable[[int], None]] = None  # PRN sink
        self.on_step: Optional[Callable[[int, Instruction], None]] = None

        self._handlers = {
            Op.LDI:  self._op_ldi,
            Op.PRN:  self._op_prn,
            Op.PUSH: self._op_push,
            Op.POP:  self._op_pop,
            Op.CALL: self._op_call,
            Op.RET:  self._op_ret,
            Op.JMP:  self._op_jmp,
            Op.JEQ:  self._op_jeq,
            Op.JNE:  self._op_jne,
            Op.HLT:  self._op_hlt,
        }

    # -- Property shortcuts --

    @property
    def fl(self) -> int:
        return self.reg.fl

    @property
    def sp(self) -> int:
        return self.reg.sp

    @sp.setter
    def sp(self, value: int):
        self.reg.sp = value

    # -- Memory access --

    def ram_read(self, addr: int) -> int:
        return self.ram.read(addr)

    def ram_write(self, addr: int, val: int):
        self.ram.write(addr, val)

    # -- Stack helpers --

    def push(self, val: int):
        self.sp = self.sp - 1
        self.ram_write(self.sp, val)

    def pop(self) -> int:
        val = self.ram_read(self.sp)
        self.sp = self.sp + 1
        return val

    # -- ALU --

    def alu(self, op: Op, reg_a: int, reg_b: int):
        a = self.reg.get(reg_a)
        b = self.reg.get(reg_b)

        if op == Op.ADD:
            self.reg.set(reg_a, a + b)
        elif op == Op.MUL:
            self.reg.set(reg_a, a * b)
        elif op == Op.CMP:
            self.reg.set_flags(eq=a == b, gt=a > b, lt=a < b)
        else:
            raise IllegalInstructionError(int(op), self.pc)

    # =====================================================================
    #  STEP - the core decode/execute loop
    # =====================================================================

    def fetch(self) -> Instruction:
        """Decode the instruction at PC without executing it."""
        opcode = self.ram_read(self.pc)
        operand_a = self.ram_read(self.pc + 1)
        operand_b = self.ram_read(self.pc + 2)
        return decode(opcode, operand_a, operand_b, pc=self.pc)

    def step(self) -> Instruction:
        """Execute one instruction and return it."""
        if self.halted:
            raise HaltError("CPU is halted")

        ins = self.fetch()
        if self.on_step:
            self.on_step(self.pc, ins)

        if ins.is_alu:
            self.alu(ins.op, ins.operand_a, ins.operand_b)
        else:
            self._handlers[ins.op](ins)

        if not ins.sets_pc and not self.halted:
            self.pc = u8(self.pc + ins.size)
        self.steps += 1
        return ins

    # =====================================================================
    #  Instruction handlers
    # =====================================================================

    def _op_ldi(self, ins: Instruction):
        self.reg.set(ins.operand_a, ins.operand_b)

    def _op_prn(self, ins: Instruction):
        val = self.reg.get(ins.operand_a)
        if self.on_output:
            self.on_output(val)
        else:
            print(val)

    def _op_push(self, ins: Instruction):
        self.push(self.reg.get(ins.operand_a))

    def _op_pop(self, ins: Instruction):
        self.reg.set(ins.operand_a, self.pop())

    def _op_call(self, ins: Instruction):
        self.push(self.pc + ins.size)
        self.pc = self.reg.get(ins.operand_a)

    def _op_ret(self, ins: Instruction):
        self.pc = self.pop()

    def _op_jmp(self, ins: Instruction):
        self.pc = self.reg.get(ins.operand_a)

    def _op_jeq(self, ins: Instruction):
        self._branch(ins, self.reg.flag(FL_EQ))

    def _op_jne(self, ins: Instruction):
        self._branch(ins, not self.reg.flag(FL_EQ))

    def _op_hlt(self, ins: Instruction):
        self.halted = True

    def _branch(self, ins: Instruction, taken: bool):
        # Conditional jumps consume FL whichever way they go.
        if taken:
            self.pc = self.reg.get(ins.operand_a)
        else:
            self.pc = u8(self.pc + ins.size)
        self.reg.clear_flags()

    # -- Run loop --

    def run(self, max_steps: Optional[int] = None) -> int:
        """Run until HLT.  Returns the number of instructions executed.

        With *max_steps*, raises StepLimitError if HLT is not reached in
        that many instructions.
        """
        start = self.steps
        while not self.halted:
            if max_steps is not None and self.steps - start >= max_steps:
                raise StepLimitError(max_steps)
            self.step()
        return self.steps - start

    # -- Reset / load --

    def reset(self):
        """Power-on state: PC=0, FL=0, registers cleared, SP=0xF4, RAM zeroed."""
        self.ram.clear()
        self.reg.reset()
        self.pc = 0
        self.halted = False
        self.steps = 0

    def load_bytes(self, data: bytes | bytearray, addr: int = 0):
        """Write raw bytes into memory at the given address."""
        self.ram.load(data, addr)

    # -- Debug / introspection --

    def flags_str(self) -> str:
        return (f"L={int(self.reg.flag(FL_LT))} "
                f"G={int(self.reg.flag(FL_GT))} "
                f"E={int(self.reg.flag(FL_EQ))}")

    def dump_regs(self) -> str:
        lines = []
        for i in range(NUM_REGS):
            tag = " <SP" if i == SP_REG else ""
            lines.append(f"  R{i} = {self.reg.get(i):#04x} ({self.reg.get(i):3d}){tag}")
        lines.append(f"  PC = {self.pc:#04x}  FL = {self.fl:#010b}  {self.flags_str()}")
        return "\n".join(lines)

    def trace_line(self) -> str:
        """One-line state summary: PC, the next three bytes, registers."""
        raw = " ".join(f"{self.ram_read(self.pc + i):02X}" for i in range(3))
        regs = " ".join(f"{self.reg.get(i):02X}" for i in range(NUM_REGS))
        return f"{self.pc:02X} | {raw} | {regs} | FL={self.fl:03b}"
