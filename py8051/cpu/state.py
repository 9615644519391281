"""Register file of the 8051 core.

Internal RAM doubles as the register banks: R0..R7 of bank ``n`` live at
``n * 8`` .. ``n * 8 + 7``, with the bank chosen by PSW bits RS1:RS0. The stack
grows upwards through internal RAM and ``sp`` always points at the most
recently pushed byte.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from .errors import StackOverflowError, StackUnderflowError

FLAG_P = 0x01
FLAG_UD = 0x02
FLAG_OV = 0x04
FLAG_RS0 = 0x08
FLAG_RS1 = 0x10
FLAG_F0 = 0x20
FLAG_AC = 0x40
FLAG_CY = 0x80

IRAM_SIZE = 0x100
RESET_SP = 0x07

# Special function registers held directly in CPUState.
SFR_SP = 0x81
SFR_DPL = 0x82
SFR_DPH = 0x83
SFR_PSW = 0xD0
SFR_ACC = 0xE0
SFR_B = 0xF0

CORE_SFRS = frozenset({SFR_SP, SFR_DPL, SFR_DPH, SFR_PSW, SFR_ACC, SFR_B})

SFR_NAMES = {
    0x80: "P0",
    SFR_SP: "SP",
    SFR_DPL: "DPL",
    SFR_DPH: "DPH",
    0x87: "PCON",
    0x88: "TCON",
    0x89: "TMOD",
    0x8A: "TL0",
    0x8B: "TL1",
    0x8C: "TH0",
    0x8D: "TH1",
    0x90: "P1",
    0x98: "SCON",
    0x99: "SBUF",
    0xA0: "P2",
    0xA8: "IE",
    0xB0: "P3",
    0xB8: "IP",
    SFR_PSW: "PSW",
    SFR_ACC: "ACC",
    SFR_B: "B",
}


def parity(value: int) -> bool:
    """True when ``value`` has an odd number of set bits."""

    return bin(value & 0xFF).count("1") % 2 == 1


@dataclass
class CPUState:
    """Snapshot of the 8051 register file."""

    iram: bytearray = field(default_factory=lambda: bytearray(IRAM_SIZE))
    a: int = 0x00
    b: int = 0x00
    dptr: int = 0x0000
    sp: int = RESET_SP
    psw: int = 0x00
    pc: int = 0x0000

    def clone(self) -> "CPUState":
        return CPUState(bytearray(self.iram), self.a, self.b, self.dptr, self.sp, self.psw, self.pc)

    def copy_from(self, other: "CPUState") -> None:
        """Overwrite every register with the contents of ``other`` in place."""

        self.iram[:] = other.iram
        self.a = other.a
        self.b = other.b
        self.dptr = other.dptr
        self.sp = other.sp
        self.psw = other.psw
        self.pc = other.pc

    # ------------------------------------------------------------------
    # Flags

    def get_flag(self, flag: int) -> bool:
        return (self.psw & flag) != 0

    def set_flag(self, flag: int, enabled: bool) -> None:
        if enabled:
            self.psw |= flag
        else:
            self.psw &= ~flag & 0xFF

    def update_parity(self) -> None:
        self.set_flag(FLAG_P, parity(self.a))

    # ------------------------------------------------------------------
    # Register banks

    @property
    def bank_base(self) -> int:
        return ((self.psw >> 3) & 0x03) * 8

    def register_address(self, index: int) -> int:
        """Internal RAM address of ``R<index>`` in the active bank."""

        if not 0 <= index <= 7:
            raise ValueError(f"register index out of range: {index}")
        return self.bank_base + index

    def indirect_address(self, index: int) -> int:
        """Pointer held in R0 or R1, as used by the ``@Ri`` forms."""

        if index not in (0, 1):
            raise ValueError(f"indirect register must be R0 or R1, got R{index}")
        return self.iram[self.register_address(index)]

    # ------------------------------------------------------------------
    # Stack

    def push_byte(self, value: int) -> None:
        if self.sp >= 0xFF:
            raise StackOverflowError(f"push with SP={self.sp:#04x} would wrap past 0xFF")
        self.sp += 1
        self.iram[self.sp] = value & 0xFF

    def pop_byte(self) -> int:
        if self.sp < 0x01:
            raise StackUnderflowError(f"pop with SP={self.sp:#04x} would wrap below 0x00")
        value = self.iram[self.sp]
        self.sp -= 1
        return value

    def push_word(self, value: int) -> None:
        # Low byte first, matching the order LCALL/ACALL use on silicon.
        if self.sp > 0xFD:
            raise StackOverflowError(f"push of a word with SP={self.sp:#04x} would wrap past 0xFF")
        self.iram[self.sp + 1] = value & 0xFF
        self.iram[self.sp + 2] = (value >> 8) & 0xFF
        self.sp += 2

    def pop_word(self) -> int:
        if self.sp < 0x02:
            raise StackUnderflowError(f"pop of a word with SP={self.sp:#04x} would wrap below 0x00")
        high = self.iram[self.sp]
        low = self.iram[self.sp - 1]
        self.sp -= 2
        return (high << 8) | low
