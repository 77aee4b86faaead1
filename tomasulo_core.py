# tomasulo_core.py
# -------------------------------------------------------------
# Núcleo do simulador didático do Algoritmo de Tomasulo
# (sem interface gráfica; dirigido por "advance" externo)
# -------------------------------------------------------------

from __future__ import annotations
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Sequence, Union
import re

# ==========================
# Parâmetros padrão
# ==========================
# F0, F2, ..., F14 seguidos de R0..R7
REGISTER_NAMES = [f"F{i}" for i in range(0, 16, 2)] + [f"R{i}" for i in range(8)]

DEFAULT_UNIT_COUNTS = {
    "Load": 2,
    "Add": 3,
    "Mult": 2,
    "Store": 2,
}


class UnitType(str, Enum):
    LOAD = "Load"
    ADD = "Add"
    MULT = "Mult"
    STORE = "Store"


# nome do construtor -> (mnemônico exibido, tipo de unidade, formato)
MNEMONICS = {
    "LD": ("L.D", UnitType.LOAD, "I"),
    "SD": ("S.D", UnitType.STORE, "I"),
    "ADDD": ("ADD.D", UnitType.ADD, "R"),
    "SUBD": ("SUB.D", UnitType.ADD, "R"),
    "MULD": ("MUL.D", UnitType.MULT, "R"),
    "DIVD": ("DIV.D", UnitType.MULT, "R"),
}


# ==========================
# Erros
# ==========================
class TomasuloError(Exception):
    """Base de todos os erros do simulador."""


class ProtocolViolation(TomasuloError, RuntimeError):
    """Writeback pedido a uma unidade sem instrução em andamento."""


class MalformedInstruction(TomasuloError, ValueError):
    """Mnemônico desconhecido ou operandos inválidos na montagem."""


class UnknownRegister(TomasuloError, KeyError):
    def __str__(self):
        return f"Registrador desconhecido: {self.args[0]}"


# ==========================
# Registradores
# ==========================
@dataclass
class Register:
    name: str
    value: Any = None  # não usado pela simulação, só a tag importa


class RegisterFile:
    """Conjunto fixo de registradores nomeados."""

    def __init__(self, names: Optional[Sequence[str]] = None):
        self.names: List[str] = list(REGISTER_NAMES if names is None else names)
        self.regs: Dict[str, Register] = {n: Register(n) for n in self.names}

    def __getitem__(self, name: str) -> Register:
        try:
            return self.regs[name]
        except KeyError:
            raise UnknownRegister(name) from None

    def __contains__(self, name: object) -> bool:
        return name in self.regs

    def __iter__(self) -> Iterator[Register]:
        for name in self.names:
            yield self.regs[name]

    def __len__(self) -> int:
        return len(self.names)


@dataclass
class RegisterStatusSlot:
    name: str
    tag: Optional["FunctionalUnit"] = None  # unidade que produzirá o valor

    def full(self) -> bool:
        return self.tag is not None

    def available(self) -> bool:
        return self.tag is None

    def __str__(self):
        return "" if self.tag is None else str(self.tag)


class RegisterStatusTable:
    """Campo Qi de cada registrador: qual unidade vai escrevê-lo."""

    def __init__(self, regfile: RegisterFile):
        self.regfile = regfile
        self.slots: Dict[str, RegisterStatusSlot] = {
            r.name: RegisterStatusSlot(r.name) for r in regfile
        }

    def slot(self, reg: str) -> RegisterStatusSlot:
        try:
            return self.slots[reg]
        except KeyError:
            raise UnknownRegister(reg) from None

    def tag_of(self, reg: str) -> Optional["FunctionalUnit"]:
        return self.slot(reg).tag

    def set_tag(self, reg: str, unit: Optional["FunctionalUnit"]):
        # sobrescreve; nunca acumula produtores
        self.slot(reg).tag = unit

    def __iter__(self) -> Iterator[RegisterStatusSlot]:
        return iter(self.slots.values())

    def snapshot(self) -> Dict[str, str]:
        return {name: str(slot) for name, slot in self.slots.items()}


# ==========================
# Instruções
# ==========================
@dataclass(frozen=True)
class Address:
    """Endereço simbólico Regs[base] +/- deslocamento."""

    register: str
    offset: Optional[int] = None

    def __str__(self):
        if self.offset is None:
            return f"Regs[{self.register}]"
        sign = " - " if self.offset < 0 else " + "
        return f"Regs[{self.register}]{sign}{abs(self.offset)}"


@dataclass
class Instruction:
    op: str
    type: UnitType
    rd: str
    rs: str
    rt: Optional[str] = None
    offset: Optional[int] = None
    index: int = -1  # posição no programa

    @property
    def form(self) -> str:
        return "I" if self.type in (UnitType.LOAD, UnitType.STORE) else "R"

    @property
    def base(self) -> Optional[str]:
        # ST guarda a base em rd (pares trocados na montagem)
        if self.type is UnitType.LOAD:
            return self.rs
        if self.type is UnitType.STORE:
            return self.rd
        return None

    def destination(self) -> Optional[str]:
        """Registrador escrito pela instrução; ST escreve na memória."""
        if self.type is UnitType.STORE:
            return None
        return self.rd

    def wants(self) -> List[str]:
        if self.form == "R":
            return [self.rs, self.rt]
        return [self.rs]

    def __str__(self):
        if self.form == "R":
            return f"{self.op} {self.rd},{self.rs},{self.rt}"
        if self.type is UnitType.STORE:
            return f"{self.op} {self.rs},{self.offset}({self.rd})"
        return f"{self.op} {self.rd},{self.offset}({self.rs})"


# ==========================
# Unidades funcionais (estações de reserva)
# ==========================
def _fmt(value: Any) -> str:
    return "" if value is None else str(value)


@dataclass(eq=False, repr=False)
class FunctionalUnit:
    name: str
    type: UnitType
    status: RegisterStatusTable
    busy: bool = False
    op: Optional[str] = None
    Vj: Any = None
    Vk: Any = None
    Qj: Optional["FunctionalUnit"] = None  # tag = a própria unidade produtora
    Qk: Optional["FunctionalUnit"] = None
    A: Optional[Address] = None
    result: Optional[bool] = None
    instruction: Optional[Instruction] = None  # referência, não é dona

    def __str__(self):
        return self.name

    def __repr__(self):
        return f"<FunctionalUnit {self.name} busy={self.busy}>"

    @property
    def address_pending(self) -> bool:
        return self.busy and self.type is UnitType.LOAD and self.A is None

    @property
    def ready(self) -> bool:
        return self.busy and self.Qj is None and self.Qk is None

    def _bind_source(self, reg: str):
        # cada operando ocupa o par (Vj, Qj) e depois (Vk, Qk)
        producer = self.status.tag_of(reg)
        first = self.Vj is None and self.Qj is None
        if producer is not None:
            if first:
                self.Qj = producer
            else:
                self.Qk = producer
        elif first:
            self.Vj = Address(reg)
        else:
            self.Vk = Address(reg)

    def issue(self, instruction: Instruction) -> Optional["FunctionalUnit"]:
        if self.busy:
            return None
        self.instruction = instruction
        self.busy = True
        self.op = instruction.op
        if instruction.type is UnitType.STORE:
            self.A = Address(instruction.base, instruction.offset)
        for reg in instruction.wants():
            self._bind_source(reg)
        return self

    def execute(self) -> Optional["FunctionalUnit"]:
        if self.instruction is None or not self.busy:
            return None
        if self.address_pending:
            # LD passo 1: A <- Vj + A
            self.A = Address(self.instruction.base, self.instruction.offset)
            return None
        if self.Qj is not None or self.Qk is not None:
            return None
        self.Vj = None
        self.Vk = None
        self.result = True
        return self

    def waiting_on(self, other: "FunctionalUnit") -> bool:
        # False se Qj OU Qk estiver vazio, mesmo que o outro coincida.
        # Provável bug latente herdado; mantido até confirmar a semântica desejada.
        if self.Qj is None or self.Qk is None:
            return False
        return other is self.Qj or other is self.Qk

    def resolve(self, producer: "FunctionalUnit") -> "FunctionalUnit":
        if self.Qj is producer:
            self.Qj = None
            self.Vj = True
        if self.Qk is producer:
            self.Qk = None
            self.Vk = True
        return self

    def clear(self) -> "FunctionalUnit":
        self.instruction = None
        self.busy = False
        self.op = None
        self.Vj = self.Vk = None
        self.Qj = self.Qk = None
        self.A = None
        self.result = None
        for slot in self.status:
            if slot.tag is self:
                slot.tag = None
        return self

    def snapshot(self) -> Dict[str, Any]:
        return {
            "Name": self.name,
            "Busy": self.busy,
            "Op": _fmt(self.op),
            "Vj": _fmt(self.Vj),
            "Vk": _fmt(self.Vk),
            "Qj": _fmt(self.Qj),
            "Qk": _fmt(self.Qk),
            "A": _fmt(self.A),
            "Result": _fmt(self.result),
        }


class FunctionalUnitPool:
    """Grupos tipados de unidades; emissão e broadcast no CDB."""

    def __init__(self, status: RegisterStatusTable, counts: Optional[Dict[str, int]] = None):
        self.status = status
        sizes = dict(DEFAULT_UNIT_COUNTS)
        if counts:
            sizes.update({UnitType(k).value: v for k, v in counts.items()})

        self.units: Dict[UnitType, List[FunctionalUnit]] = {}
        for kind in UnitType:
            n = int(sizes[kind.value])
            if n < 1:
                raise ValueError(f"Quantidade inválida de unidades {kind.value}: {n}")
            self.units[kind] = [
                FunctionalUnit(f"{kind.value}{i}", kind, status) for i in range(n)
            ]

    def __iter__(self) -> Iterator[FunctionalUnit]:
        for kind in UnitType:
            yield from self.units[kind]

    def __getitem__(self, name: str) -> FunctionalUnit:
        for unit in self:
            if unit.name == name:
                return unit
        raise KeyError(name)

    def units_of(self, kind: Union[UnitType, str]) -> List[FunctionalUnit]:
        return self.units[UnitType(kind)]

    def free_count(self, kind: Union[UnitType, str]) -> int:
        return sum(1 for u in self.units_of(kind) if not u.busy)

    def issue(self, instruction: Instruction) -> Optional[FunctionalUnit]:
        for unit in self.units[instruction.type]:
            if not unit.busy:
                return unit.issue(instruction)
        return None  # stall estrutural

    def consumers_of(self, producer: FunctionalUnit) -> List[FunctionalUnit]:
        return [u for u in self if u.waiting_on(producer)]

    def write_back(self, unit: FunctionalUnit) -> FunctionalUnit:
        if not unit.busy:
            raise ProtocolViolation(f"Unidade {unit.name} tentou writeback sem instrução")
        # broadcast no CDB: todas as unidades, inclusive a própria
        for other in self:
            other.resolve(unit)
        unit.clear()
        return unit

    def snapshot(self) -> List[Dict[str, Any]]:
        return [u.snapshot() for u in self]


# ==========================
# Montagem
# ==========================
def _mnemonic_key(mnemonic: str) -> str:
    return mnemonic.strip().upper().replace(".", "")


class Assembler:
    def __init__(self, regfile: Optional[RegisterFile] = None):
        self.regfile = regfile if regfile is not None else RegisterFile()

    def _reg(self, tok: Any) -> str:
        if not isinstance(tok, str):
            raise MalformedInstruction(f"Registrador inválido: {tok!r}")
        name = tok.strip().upper()
        if name not in self.regfile:
            raise MalformedInstruction(f"Registrador inválido: {tok}")
        return name

    @staticmethod
    def _offset(tok: Any) -> int:
        if isinstance(tok, bool):
            raise MalformedInstruction(f"Deslocamento inválido: {tok!r}")
        if isinstance(tok, int):
            return tok
        try:
            return int(str(tok).strip())
        except ValueError:
            raise MalformedInstruction(f"Deslocamento inválido: {tok!r}") from None

    def build(self, mnemonic: str, *operands: Any) -> Instruction:
        if not isinstance(mnemonic, str) or _mnemonic_key(mnemonic) not in MNEMONICS:
            raise MalformedInstruction(f"Opcode inválido: {mnemonic}")
        op, kind, form = MNEMONICS[_mnemonic_key(mnemonic)]
        if len(operands) != 3:
            raise MalformedInstruction(f"{op} espera 3 operandos, recebeu {len(operands)}")

        if form == "R":
            rd, rs, rt = (self._reg(o) for o in operands)
            return Instruction(op=op, type=kind, rd=rd, rs=rs, rt=rt)

        rd, rs = self._reg(operands[0]), self._reg(operands[1])
        offset = self._offset(operands[2])
        if kind is UnitType.STORE:
            # (valor, base) -> rd = base, rs = valor
            rd, rs = rs, rd
        return Instruction(op=op, type=kind, rd=rd, rs=rs, offset=offset)

    def LD(self, rd, rs, offset):
        return self.build("LD", rd, rs, offset)

    def SD(self, value, base, offset):
        return self.build("SD", value, base, offset)

    def ADDD(self, rd, rs, rt):
        return self.build("ADDD", rd, rs, rt)

    def SUBD(self, rd, rs, rt):
        return self.build("SUBD", rd, rs, rt)

    def MULD(self, rd, rs, rt):
        return self.build("MULD", rd, rs, rt)

    def DIVD(self, rd, rs, rt):
        return self.build("DIVD", rd, rs, rt)


def assemble(text: str, regfile: Optional[RegisterFile] = None) -> List[Instruction]:
    asm = Assembler(regfile)
    out: List[Instruction] = []
    for lineno, raw in enumerate(text.splitlines(), start=1):
        line = re.split(r"[#;]", raw, maxsplit=1)[0].strip()
        if not line:
            continue
        parts = [p for p in re.split(r"[\s,()]+", line) if p]
        mnemonic, operands = parts[0], parts[1:]

        known = MNEMONICS.get(_mnemonic_key(mnemonic))
        if known is not None and known[2] == "I" and len(operands) == 3:
            # L.D rd, off(base) -> (rd, base, off)
            operands = [operands[0], operands[2], operands[1]]
        try:
            instr = asm.build(mnemonic, *operands)
        except MalformedInstruction as e:
            raise MalformedInstruction(f"Linha {lineno}: {e}") from e
        instr.index = len(out)
        out.append(instr)
    return out


# ==========================
# Status das instruções
# ==========================
class Phase(Enum):
    WAITING = "Waiting"
    ISSUED = "Issued"
    EXECUTED = "Executed"
    WROTE_RESULT = "WriteResult"


class StepOutcome(Enum):
    ISSUED = "issued"
    ADDRESS = "address"
    EXECUTED = "executed"
    WROTE_RESULT = "wrote_result"
    STALLED_STRUCTURAL = "stalled_structural"
    STALLED_DATA = "stalled_data"
    DONE = "done"


PROGRESS = (
    StepOutcome.ISSUED,
    StepOutcome.ADDRESS,
    StepOutcome.EXECUTED,
    StepOutcome.WROTE_RESULT,
)


@dataclass
class StepResult:
    index: int
    outcome: StepOutcome
    unit: Optional[str] = None

    @property
    def progressed(self) -> bool:
        return self.outcome in PROGRESS


@dataclass
class InstructionStatus:
    instruction: Instruction
    issued: bool = False
    executed: bool = False
    wrote_result: bool = False
    unit: Optional[FunctionalUnit] = None
    issued_at: Optional[int] = None
    executed_at: Optional[int] = None
    wrote_at: Optional[int] = None

    @property
    def phase(self) -> Phase:
        if self.wrote_result:
            return Phase.WROTE_RESULT
        if self.executed:
            return Phase.EXECUTED
        if self.issued:
            return Phase.ISSUED
        return Phase.WAITING

    def issue(self, pool: FunctionalUnitPool, status: RegisterStatusTable) -> Optional[FunctionalUnit]:
        if self.issued:
            return None
        reserved = pool.issue(self.instruction)
        if reserved is None:
            return None
        dest = self.instruction.destination()
        if dest is not None:
            # renomeação: dest passa a esperar por esta unidade
            status.set_tag(dest, reserved)
        self.unit = reserved
        self.issued = True
        return reserved

    def execute(self) -> Optional[FunctionalUnit]:
        if not self.issued or self.executed:
            return None
        done = self.unit.execute()
        if done is not None:
            self.executed = True
        return done

    def write_result(self, pool: FunctionalUnitPool, status: RegisterStatusTable) -> Optional[FunctionalUnit]:
        if not self.executed or self.wrote_result:
            return None
        unit = pool.write_back(self.unit)
        dest = self.instruction.destination()
        if dest is not None and status.tag_of(dest) is unit:
            status.set_tag(dest, None)
        self.wrote_result = True
        self.unit = None
        return unit

    def advance(self, pool: FunctionalUnitPool, status: RegisterStatusTable) -> StepOutcome:
        phase = self.phase
        if phase is Phase.WROTE_RESULT:
            return StepOutcome.DONE
        if phase is Phase.EXECUTED:
            self.write_result(pool, status)
            return StepOutcome.WROTE_RESULT
        if phase is Phase.ISSUED:
            computing_address = self.unit.address_pending
            if self.execute() is not None:
                return StepOutcome.EXECUTED
            return StepOutcome.ADDRESS if computing_address else StepOutcome.STALLED_DATA
        if self.issue(pool, status) is None:
            return StepOutcome.STALLED_STRUCTURAL
        return StepOutcome.ISSUED

    def snapshot(self) -> Dict[str, Any]:
        return {
            "Instruction": str(self.instruction),
            "Issue": self.issued,
            "Execute": self.executed,
            "Write result": self.wrote_result,
            "Unit": _fmt(self.unit),
            "Issue @": _fmt(self.issued_at),
            "Execute @": _fmt(self.executed_at),
            "Write @": _fmt(self.wrote_at),
        }


class InstructionStatusLog:
    """Instruções em ordem de programa e a fase de cada uma."""

    def __init__(self, pool: FunctionalUnitPool, status: RegisterStatusTable):
        self.pool = pool
        self.status = status
        self.entries: List[InstructionStatus] = []
        self.steps = 0  # avanços que tiveram efeito

    def read(self, instruction: Instruction) -> InstructionStatus:
        # cópia própria: a mesma Instruction pode aparecer mais de uma vez
        entry = InstructionStatus(replace(instruction, index=len(self.entries)))
        self.entries.append(entry)
        return entry

    def __len__(self) -> int:
        return len(self.entries)

    def __getitem__(self, index: int) -> InstructionStatus:
        return self.entries[index]

    def __iter__(self) -> Iterator[InstructionStatus]:
        return iter(self.entries)

    @property
    def done(self) -> bool:
        return all(e.wrote_result for e in self.entries)

    def advance(self, index: int, at: Optional[int] = None) -> StepResult:
        if not 0 <= index < len(self.entries):
            raise IndexError(f"Instrução inexistente: {index}")
        entry = self.entries[index]
        before = entry.unit
        outcome = entry.advance(self.pool, self.status)

        if outcome in PROGRESS:
            self.steps += 1
            mark = self.steps if at is None else at
            if outcome is StepOutcome.ISSUED:
                entry.issued_at = mark
            elif outcome is StepOutcome.EXECUTED:
                entry.executed_at = mark
            elif outcome is StepOutcome.WROTE_RESULT:
                entry.wrote_at = mark

        unit = entry.unit or before
        return StepResult(index, outcome, None if unit is None else unit.name)

    def snapshot(self) -> List[Dict[str, Any]]:
        return [e.snapshot() for e in self.entries]


# ==========================
# Simulador
# ==========================
class TomasuloSim:
    def __init__(
        self,
        program: Union[str, Sequence[Instruction]] = "",
        unit_counts: Optional[Dict[str, int]] = None,
        registers: Optional[Sequence[str]] = None,
    ):
        self.regfile = RegisterFile(registers)
        self.status = RegisterStatusTable(self.regfile)
        self.pool = FunctionalUnitPool(self.status, unit_counts)
        self.asm = Assembler(self.regfile)
        self.log = InstructionStatusLog(self.pool, self.status)

        if isinstance(program, str):
            program = assemble(program, self.regfile)
        for instr in program:
            self.log.read(instr)

        self.cycle = 0
        self.bubble_cycles = 0

        # Log do passo atual e acumulado
        self.events: List[str] = []
        self.history: List[str] = []

    @property
    def program(self) -> List[Instruction]:
        return [e.instruction for e in self.log]

    @property
    def done(self) -> bool:
        return self.log.done

    def _record(self, result: StepResult):
        entry = self.log[result.index]
        instr = entry.instruction
        outcome = result.outcome
        if outcome is StepOutcome.ISSUED:
            msg = f"Issue: {instr} -> {result.unit}"
        elif outcome is StepOutcome.ADDRESS:
            msg = f"Endereço: {instr} :: A = {entry.unit.A}"
        elif outcome is StepOutcome.EXECUTED:
            msg = f"Exec: {instr} em {result.unit}"
        elif outcome is StepOutcome.WROTE_RESULT:
            msg = f"Write: {instr} -> CDB({result.unit})"
        elif outcome is StepOutcome.STALLED_STRUCTURAL:
            msg = f"Stall estrutural: {instr} (nenhuma unidade {instr.type.value} livre)"
        elif outcome is StepOutcome.STALLED_DATA:
            pending = [str(q) for q in (entry.unit.Qj, entry.unit.Qk) if q is not None]
            msg = f"Stall de dados: {instr} aguarda {', '.join(pending)}"
        else:
            msg = f"Concluída: {instr}"
        self.events.append(msg)
        self.history.append(msg)

    # ----------- Um clique em uma instrução -----------
    def advance(self, index: int) -> StepResult:
        self.events = []
        result = self.log.advance(index)
        self._record(result)
        return result

    # ----------- Um ciclo: cada instrução tenta avançar uma fase -----------
    def step_cycle(self) -> List[StepResult]:
        if self.done:
            return []
        self.cycle += 1
        self.events = []

        results: List[StepResult] = []
        issue_tried = False
        for index, entry in enumerate(self.log):
            if entry.wrote_result:
                continue
            if not entry.issued:
                # emissão em ordem, uma por ciclo
                if issue_tried:
                    continue
                issue_tried = True
            result = self.log.advance(index, at=self.cycle)
            self._record(result)
            results.append(result)
            if result.outcome is StepOutcome.STALLED_STRUCTURAL:
                self.bubble_cycles += 1
        return results

    def run(self, max_cycles: int = 1000) -> int:
        start = self.cycle
        while not self.done and self.cycle - start < max_cycles:
            results = self.step_cycle()
            if not any(r.progressed for r in results):
                break
        return self.cycle - start

    # ----------- Estado para a interface -----------
    def snapshot(self) -> Dict[str, Any]:
        return {
            "instructions": self.log.snapshot(),
            "units": self.pool.snapshot(),
            "register_status": self.status.snapshot(),
        }

    def metrics(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "Ciclos": self.cycle,
            "Avanços": self.log.steps,
            "Emitidas": sum(1 for e in self.log if e.issued),
            "Executadas": sum(1 for e in self.log if e.executed),
            "Concluídas": sum(1 for e in self.log if e.wrote_result),
            "Bolhas (stall de emissão)": self.bubble_cycles,
        }
        for kind in UnitType:
            units = self.pool.units_of(kind)
            out[f"{kind.value} ocupadas"] = sum(1 for u in units if u.busy)
        return out


# ==========================
# Programa exemplo
# ==========================
DEFAULT_PROGRAM = """
# Sequência clássica do livro-texto (Hennessy & Patterson)
L.D   F6,32(R2)
L.D   F2,44(R3)
MUL.D F0,F2,F4
ADD.D F10,F12,F8
SUB.D F8,F2,F6
DIV.D F10,F0,F6
ADD.D F6,F8,F2
S.D   F6,32(R2)
"""
