#!/usr/bin/env python3
"""
LS-8 Command Line / Monitor
============================
Runs LS-8 program listings and hosts an interactive debug monitor.

Provides:
  - Program loading (.ls8 listings or assembly source)
  - Run with optional instruction trace and step limit
  - Assemble-only mode producing .ls8 listings
  - Run / step / breakpoint execution in the monitor
  - Register and memory inspection / modification
  - Disassembly

Usage:
  python cli.py PROGRAM [--asm] [--trace] [--max-steps N] [--monitor]
  python cli.py --assemble SRC.asm OUT.ls8
"""

from __future__ import annotations
import argparse
import cmd
import shlex
import sys
from typing import Optional

from ls8 import LS8, LS8Error, HaltError, Instruction, NUM_REGS, u8
from asm import assemble, to_listing, disasm_one, AsmError
from loader import read_program, ProgramLoadError


def load_source(path: str, is_asm: bool = False) -> bytearray:
    """Read *path* as an .ls8 listing (or assembly when *is_asm*)."""
    if not is_asm:
        return read_program(path)
    with open(path, "r") as f:
        try:
            text = f.read()
        except UnicodeDecodeError as e:
            raise AsmError(0, f"Not a text source: {e.reason} at byte {e.start}") from e
    return assemble(text)

# ---------------------------------------------------------------------------
#  Monitor
# ---------------------------------------------------------------------------

class LS8CLI(cmd.Cmd):
    """Interactive monitor for the LS-8 emulator."""

    intro = (
        "\n"
        "LS-8 Monitor\n"
        "Type 'help' for commands.  'quit' to exit.\n"
    )
    prompt = "LS8> "

    def __init__(self, cpu: Optional[LS8] = None, stdout=None):
        super().__init__(stdout=stdout)
        self.cpu = cpu if cpu is not None else LS8()
        self.breakpoints: set[int] = set()
        self.cpu.on_output = self._prn_handler

    def _out(self, text: str = ""):
        self.stdout.write(text + "\n")

    def _prn_handler(self, value: int):
        self._out(str(value))

    # -- Parsing helpers --

    def _parse_addr(self, s: str) -> int:
        """Parse an address (0x hex / decimal, register name, pc or sp)."""
        s = s.strip().lower()
        if s.startswith("r") and s[1:].isdigit():
            return self.cpu.reg.get(int(s[1:]))
        if s == "pc":
            return self.cpu.pc
        if s == "sp":
            return self.cpu.sp
        return u8(int(s, 0))

    def _parse_int(self, s: str) -> int:
        return int(s.strip(), 0)

    def onecmd(self, line):
        try:
            return super().onecmd(line)
        except (ValueError, IndexError) as e:
            self._out(f"Error: {e}")
            return False

    # ================================================================
    #  Commands
    # ================================================================

    # -- Loading --

    def do_load(self, arg):
        """Load an .ls8 listing at address 0: load <file>"""
        parts = shlex.split(arg)
        if not parts:
            self._out("Usage: load <file>")
            return
        try:
            code = load_source(parts[0])
        except (OSError, ProgramLoadError) as e:
            self._out(f"Error: {e}")
            return
        self.cpu.reset()
        self.cpu.load_bytes(code)
        self._out(f"Loaded {len(code)} bytes from '{parts[0]}'")

    def do_asm(self, arg):
        """Assemble source and load: asm <file.asm>
        Or inline:  asm -e "LDI R0,1; PRN R0; HLT" """
        parts = shlex.split(arg)
        if not parts:
            self._out("Usage: asm <file.asm>  OR  asm -e \"code\"")
            return
        try:
            if parts[0] == "-e":
                source = parts[1].replace(";", "\n") if len(parts) > 1 else ""
                code = assemble(source)
            else:
                code = load_source(parts[0], is_asm=True)
        except (OSError, AsmError) as e:
            self._out(f"Error: {e}")
            return
        self.cpu.reset()
        self.cpu.load_bytes(code)
        self._out(f"Assembled {len(code)} bytes")

    def do_reset(self, arg):
        """Reset CPU to power-on state (clears RAM)."""
        self.cpu.reset()
        self._out("CPU reset.")

    # -- Execution --

    def do_step(self, arg):
        """Step N instructions: step [count]"""
        count = self._parse_int(arg) if arg.strip() else 1
        for _ in range(count):
            addr_before = self.cpu.pc
            text, _ = disasm_one(self.cpu.ram.data, addr_before)
            try:
                self.cpu.step()
            except HaltError:
                self._out("CPU is halted.")
                break
            except LS8Error as e:
                self._out(f"Fault: {e}")
                break
            self._out(f"  {addr_before:#04x}: {text}")
            if self.cpu.halted:
                self._out("CPU halted.")
                break

    def do_run(self, arg):
        """Run until HLT or breakpoint: run [max_steps]"""
        max_steps = self._parse_int(arg) if arg.strip() else 1_000_000
        if self.cpu.halted:
            self._out("CPU is halted.")
            return
        for n in range(max_steps):
            if n and self.cpu.pc in self.breakpoints:
                self._out(f"Breakpoint hit at {self.cpu.pc:#04x}")
                return
            try:
                self.cpu.step()
            except LS8Error as e:
                self._out(f"Fault: {e}")
                return
            if self.cpu.halted:
                self._out(f"CPU halted after {self.cpu.steps} steps.")
                return
        self._out(f"Stopped after {max_steps} steps.")

    def do_continue(self, arg):
        """Alias for 'run'."""
        self.do_run(arg)
    do_c = do_continue

    # -- Breakpoints --

    def do_bp(self, arg):
        """Set breakpoint: bp <address>"""
        if not arg.strip():
            if self.breakpoints:
                self._out("Breakpoints:")
                for a in sorted(self.breakpoints):
                    self._out(f"  {a:#04x}")
            else:
                self._out("No breakpoints set.")
            return
        addr = self._parse_addr(arg)
        self.breakpoints.add(addr)
        self._out(f"Breakpoint set at {addr:#04x}")

    def do_bpd(self, arg):
        """Delete breakpoint: bpd <address|all>"""
        if arg.strip().lower() == "all":
            self.breakpoints.clear()
            self._out("All breakpoints cleared.")
            return
        addr = self._parse_addr(arg)
        self.breakpoints.discard(addr)
        self._out(f"Breakpoint at {addr:#04x} removed.")

    # -- Inspection --

    def do_regs(self, arg):
        """Show CPU registers."""
        self._out(self.cpu.dump_regs())
        self._out(f"  Steps: {self.cpu.steps}")

    def do_flags(self, arg):
        """Show FL register."""
        self._out(f"  FL={self.cpu.fl:#010b}  {self.cpu.flags_str()}")

    def do_setreg(self, arg):
        """Set register: setreg <R0-R7|pc|sp> <value>"""
        parts = shlex.split(arg)
        if len(parts) < 2:
            self._out("Usage: setreg <reg> <value>")
            return
        reg_s = parts[0].lower()
        val = u8(self._parse_int(parts[1]))
        if reg_s == "pc":
            self.cpu.pc = val
        elif reg_s == "sp":
            self.cpu.sp = val
        elif reg_s.startswith("r") and reg_s[1:].isdigit():
            idx = int(reg_s[1:])
            if 0 <= idx < NUM_REGS:
                self.cpu.reg.set(idx, val)
            else:
                self._out("Register must be R0-R7.")
                return
        else:
            self._out("Unknown register.")
            return
        self._out(f"  {reg_s.upper()} = {val:#04x}")

    def do_dump(self, arg):
        """Hex dump memory: dump [address] [count]
        Defaults to the whole of RAM."""
        parts = shlex.split(arg)
        addr = self._parse_addr(parts[0]) if parts else 0
        count = self._parse_int(parts[1]) if len(parts) > 1 else 256

        for row_start in range(addr, addr + count, 16):
            hex_bytes = []
            for i in range(16):
                if row_start + i < addr + count:
                    hex_bytes.append(f"{self.cpu.ram_read(row_start + i):02x}")
                else:
                    hex_bytes.append("  ")
            hex_str = ' '.join(hex_bytes[:8]) + '  ' + ' '.join(hex_bytes[8:])
            self._out(f"  {u8(row_start):#04x}: {hex_str}")

    def do_setmem(self, arg):
        """Set memory bytes: setmem <address> <byte> [byte] ..."""
        parts = shlex.split(arg)
        if len(parts) < 2:
            self._out("Usage: setmem <addr> <byte...>")
            return
        addr = self._parse_addr(parts[0])
        for i, tok in enumerate(parts[1:]):
            self.cpu.ram_write(addr + i, self._parse_int(tok))
        self._out(f"  Wrote {len(parts) - 1} bytes at {addr:#04x}")

    def do_disasm(self, arg):
        """Disassemble: disasm [address] [count]
        Defaults to current PC, 16 instructions."""
        parts = shlex.split(arg)
        addr = self._parse_addr(parts[0]) if parts else self.cpu.pc
        count = self._parse_int(parts[1]) if len(parts) > 1 else 16

        for _ in range(count):
            text, size = disasm_one(self.cpu.ram.data, addr)
            raw = ' '.join(f"{self.cpu.ram_read(addr + i):02x}" for i in range(size))
            marker = ">>>" if addr == self.cpu.pc else "   "
            self._out(f"  {marker} {addr:#04x}: {raw:<9s} {text}")
            addr = u8(addr + size)

    # -- Exit --

    def do_quit(self, arg):
        """Exit the monitor."""
        return True
    do_q = do_quit

    def do_EOF(self, arg):
        self._out()
        return True

    def default(self, line):
        self._out(f"Unknown command: {line!r}.  Type 'help'.")

    def emptyline(self):
        pass

# ---------------------------------------------------------------------------
#  Entry point
# ---------------------------------------------------------------------------

class _ArgumentParser(argparse.ArgumentParser):
    """Usage errors exit with status 1, like every other fatal error."""

    def error(self, message):
        self.print_usage(sys.stderr)
        self.exit(1, f"{self.prog}: error: {message}\n")


def _trace(cpu: LS8, pc: int, ins: Instruction):
    text, _ = disasm_one(cpu.ram.data, pc)
    print(f"TRACE {cpu.trace_line()} | {text}", file=sys.stderr)


def main(argv: Optional[list[str]] = None):
    parser = _ArgumentParser(
        prog="ls8",
        description="LS-8 emulator",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="Examples:\n"
               "  ls8 programs/print8.ls8\n"
               "  ls8 --trace programs/call.ls8\n"
               "  ls8 --asm programs/mult.asm\n"
               "  ls8 --assemble programs/mult.asm mult.ls8\n"
               "  ls8 --monitor programs/stack.ls8\n"
    )
    parser.add_argument("program", nargs="?",
                        help="Program listing (.ls8) to run")
    parser.add_argument("--asm", action="store_true",
                        help="Treat PROGRAM as assembly source")
    parser.add_argument("--trace", action="store_true",
                        help="Print each executed instruction to stderr")
    parser.add_argument("--max-steps", type=int, default=None, metavar="N",
                        help="Abort if HLT is not reached within N instructions")
    parser.add_argument("--monitor", action="store_true",
                        help="Load PROGRAM and enter the debug monitor")
    parser.add_argument("--assemble", nargs=2, metavar=("SRC", "OUT"),
                        help="Assemble SRC to an .ls8 listing OUT and exit")
    args = parser.parse_args(argv)

    # ---- Assemble-only mode -------------------------------------------
    if args.assemble:
        src_path, out_path = args.assemble
        try:
            code = load_source(src_path, is_asm=True)
        except OSError as e:
            print(f"ls8: cannot open '{src_path}': {e.strerror}", file=sys.stderr)
            sys.exit(1)
        except AsmError as e:
            print(f"Assembly error: {e}", file=sys.stderr)
            sys.exit(1)
        try:
            with open(out_path, "w") as f:
                f.write(to_listing(code))
        except OSError as e:
            print(f"ls8: cannot write '{out_path}': {e.strerror}", file=sys.stderr)
            sys.exit(1)
        print(f"Assembled {src_path} -> {out_path} ({len(code)} bytes)")
        return

    if args.program is None and not args.monitor:
        parser.error("the following arguments are required: program")

    cpu = LS8()

    if args.program is not None:
        try:
            code = load_source(args.program, is_asm=args.asm)
        except OSError as e:
            print(f"ls8: cannot open '{args.program}': {e.strerror}", file=sys.stderr)
            sys.exit(1)
        except (ProgramLoadError, AsmError) as e:
            print(f"ls8: {args.program}: {e}", file=sys.stderr)
            sys.exit(1)
        cpu.load_bytes(code)

    if args.monitor:
        cli = LS8CLI(cpu)
        try:
            cli.cmdloop()
        except KeyboardInterrupt:
            print("\nInterrupted. Goodbye.")
        return

    if args.trace:
        cpu.on_step = lambda pc, ins: _trace(cpu, pc, ins)

    try:
        cpu.run(max_steps=args.max_steps)
    except LS8Error as e:
        sys.stdout.flush()
        print(e, file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
