"""intermediate representation produced by the ir lowering.

Every function body becomes a flat tuple of instructions, roughly three
address code. Instruction ids are dense and scoped to their function: the
instruction with id ``n`` is ``function.instructions[n]``. Locals are SSA-like
``Variable(name, generation)`` values; a write always creates a new
generation. Storage slots are shared by all functions of a contract and are
only referenced from instructions.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar, Dict, FrozenSet, Iterator, List, Optional, Set, Tuple, Union

from models.ast import SourceLocation
from models.findings import Diagnostic, DiagnosticKind


class Visibility(Enum):
    PUBLIC = "public"
    EXTERNAL = "external"
    INTERNAL = "internal"
    PRIVATE = "private"

    @property
    def externally_callable(self) -> bool:
        return self in (Visibility.PUBLIC, Visibility.EXTERNAL)


class Mutability(Enum):
    PURE = "pure"
    VIEW = "view"
    PAYABLE = "payable"
    NONPAYABLE = "nonpayable"

    @property
    def is_constant(self) -> bool:
        return self in (Mutability.PURE, Mutability.VIEW)


class Opcode(Enum):
    ASSIGN = "assign"
    BINARY = "binary"
    UNARY = "unary"
    CONDITION = "condition"
    EXTERNAL_CALL = "external_call"
    STORAGE_READ = "storage_read"
    STORAGE_WRITE = "storage_write"
    INTERNAL_CALL = "internal_call"
    RETURN = "return"
    PHI = "phi"
    JUMP = "jump"
    LABEL = "label"
    REVERT = "revert"


class CallKind(Enum):
    HIGH_LEVEL = "high_level"
    CALL = "call"
    DELEGATECALL = "delegatecall"
    STATICCALL = "staticcall"
    SEND = "send"
    TRANSFER = "transfer"

    @property
    def is_low_level(self) -> bool:
        return self in (CallKind.CALL, CallKind.DELEGATECALL, CallKind.STATICCALL, CallKind.SEND)

    @property
    def default_forwards_gas(self) -> bool:
        # send/transfer only forward the 2300 gas stipend
        return self not in (CallKind.SEND, CallKind.TRANSFER)


@dataclass(frozen=True)
class Variable:
    name: str
    generation: int = 0

    @property
    def is_temporary(self) -> bool:
        return self.name.startswith("%")

    def __str__(self) -> str:
        return f"{self.name}_{self.generation}"


@dataclass(frozen=True)
class Constant:
    value: Any
    type_name: Optional[str] = None

    def __str__(self) -> str:
        return repr(self.value)


@dataclass(frozen=True)
class EnvValue:
    """transaction / block context value such as msg.sender"""
    name: str

    def __str__(self) -> str:
        return self.name


Operand = Union[Variable, Constant, EnvValue]


@dataclass(frozen=True)
class StorageSlot:
    name: str
    type_name: str
    index: int

    def __str__(self) -> str:
        return self.name


@dataclass(frozen=True)
class Instruction:
    id: int
    location: Optional[SourceLocation] = field(default=None, compare=False, kw_only=True)

    OPCODE: ClassVar[Opcode]
    IS_TERMINATOR: ClassVar[bool] = False

    @property
    def op(self) -> Opcode:
        return self.OPCODE

    def defs(self) -> Tuple[Variable, ...]:
        dest = getattr(self, "dest", None)
        return (dest,) if dest is not None else ()

    def uses(self) -> Tuple[Operand, ...]:
        return ()

    def used_variables(self) -> Tuple[Variable, ...]:
        return tuple(o for o in self.uses() if isinstance(o, Variable))


@dataclass(frozen=True)
class Assignment(Instruction):
    dest: Variable
    source: Operand
    # declaration without initializer
    is_default: bool = False
    OPCODE: ClassVar[Opcode] = Opcode.ASSIGN

    def uses(self) -> Tuple[Operand, ...]:
        return (self.source,)

    def __str__(self) -> str:
        suffix = "  ; default" if self.is_default else ""
        return f"{self.dest} = {self.source}{suffix}"


@dataclass(frozen=True)
class BinaryOp(Instruction):
    dest: Variable
    operator: str
    left: Operand
    right: Operand
    OPCODE: ClassVar[Opcode] = Opcode.BINARY

    def uses(self) -> Tuple[Operand, ...]:
        return (self.left, self.right)

    def __str__(self) -> str:
        return f"{self.dest} = {self.left} {self.operator} {self.right}"


@dataclass(frozen=True)
class UnaryOp(Instruction):
    dest: Variable
    operator: str
    operand: Operand
    OPCODE: ClassVar[Opcode] = Opcode.UNARY

    def uses(self) -> Tuple[Operand, ...]:
        return (self.operand,)

    def __str__(self) -> str:
        return f"{self.dest} = {self.operator}{self.operand}"


@dataclass(frozen=True)
class Condition(Instruction):
    cond: Operand
    true_label: int
    false_label: int
    # lowered from require/assert: the false edge reverts
    is_require: bool = False
    OPCODE: ClassVar[Opcode] = Opcode.CONDITION
    IS_TERMINATOR: ClassVar[bool] = True

    def uses(self) -> Tuple[Operand, ...]:
        return (self.cond,)

    def __str__(self) -> str:
        kind = "require" if self.is_require else "if"
        return f"{kind} {self.cond} goto L{self.true_label} else L{self.false_label}"


@dataclass(frozen=True)
class Jump(Instruction):
    label: int
    OPCODE: ClassVar[Opcode] = Opcode.JUMP
    IS_TERMINATOR: ClassVar[bool] = True

    def __str__(self) -> str:
        return f"goto L{self.label}"


@dataclass(frozen=True)
class Label(Instruction):
    label: int
    OPCODE: ClassVar[Opcode] = Opcode.LABEL

    def __str__(self) -> str:
        return f"L{self.label}:"


@dataclass(frozen=True)
class Return(Instruction):
    values: Tuple[Operand, ...] = ()
    OPCODE: ClassVar[Opcode] = Opcode.RETURN
    IS_TERMINATOR: ClassVar[bool] = True

    def uses(self) -> Tuple[Operand, ...]:
        return self.values

    def __str__(self) -> str:
        return "return " + ", ".join(str(v) for v in self.values)


@dataclass(frozen=True)
class Revert(Instruction):
    message: Optional[str] = None
    OPCODE: ClassVar[Opcode] = Opcode.REVERT
    IS_TERMINATOR: ClassVar[bool] = True

    def __str__(self) -> str:
        return f"revert {self.message!r}" if self.message else "revert"


@dataclass(frozen=True)
class Phi(Instruction):
    dest: Variable
    sources: Tuple[Variable, ...]
    OPCODE: ClassVar[Opcode] = Opcode.PHI

    def uses(self) -> Tuple[Operand, ...]:
        return self.sources

    def __str__(self) -> str:
        return f"{self.dest} = phi({', '.join(str(s) for s in self.sources)})"


@dataclass(frozen=True)
class StorageRead(Instruction):
    dest: Variable
    # None when reading through a storage pointer (see `base`)
    slot: Optional[StorageSlot]
    key: Tuple[Operand, ...] = ()
    base: Optional[Variable] = None
    member: Optional[str] = None
    OPCODE: ClassVar[Opcode] = Opcode.STORAGE_READ

    def uses(self) -> Tuple[Operand, ...]:
        return self.key + ((self.base,) if self.base is not None else ())

    def __str__(self) -> str:
        return f"{self.dest} = sload {_storage_ref(self.slot, self.base, self.key, self.member)}"


@dataclass(frozen=True)
class StorageWrite(Instruction):
    slot: Optional[StorageSlot]
    value: Operand
    key: Tuple[Operand, ...] = ()
    base: Optional[Variable] = None
    member: Optional[str] = None
    OPCODE: ClassVar[Opcode] = Opcode.STORAGE_WRITE

    def uses(self) -> Tuple[Operand, ...]:
        return self.key + ((self.base,) if self.base is not None else ()) + (self.value,)

    def __str__(self) -> str:
        return f"sstore {_storage_ref(self.slot, self.base, self.key, self.member)} = {self.value}"


@dataclass(frozen=True)
class InternalCall(Instruction):
    dest: Optional[Variable]
    callee: str
    arguments: Tuple[Operand, ...] = ()
    # language builtin (selfdestruct, keccak256, ...) rather than a contract function
    builtin: bool = False
    OPCODE: ClassVar[Opcode] = Opcode.INTERNAL_CALL

    def uses(self) -> Tuple[Operand, ...]:
        return self.arguments

    def __str__(self) -> str:
        lhs = f"{self.dest} = " if self.dest is not None else ""
        return f"{lhs}call {self.callee}({', '.join(str(a) for a in self.arguments)})"


@dataclass(frozen=True)
class ExternalCallSite(Instruction):
    """call whose target is not statically known to be the current contract"""
    dest: Optional[Variable]
    kind: CallKind
    target: Operand
    function_name: Optional[str] = None
    arguments: Tuple[Operand, ...] = ()
    value: Optional[Operand] = None
    forwards_gas: bool = True
    OPCODE: ClassVar[Opcode] = Opcode.EXTERNAL_CALL

    def uses(self) -> Tuple[Operand, ...]:
        extra = (self.value,) if self.value is not None else ()
        return (self.target,) + self.arguments + extra

    @property
    def can_reenter(self) -> bool:
        return self.forwards_gas and self.kind != CallKind.STATICCALL

    def describe(self) -> str:
        if self.kind == CallKind.HIGH_LEVEL:
            return f"{self.target}.{self.function_name or '?'}()"
        return f"{self.target}.{self.kind.value}()"

    def __str__(self) -> str:
        lhs = f"{self.dest} = " if self.dest is not None else ""
        value = f" value={self.value}" if self.value is not None else ""
        return f"{lhs}{self.describe()}{value}"


def _storage_ref(slot, base, key, member) -> str:
    root = str(slot) if slot is not None else f"*{base}"
    text = root + "".join(f"[{k}]" for k in key)
    return f"{text}.{member}" if member else text


@dataclass(frozen=True)
class LocalVariable:
    name: str
    type_name: Optional[str] = None
    storage_location: Optional[str] = None
    is_parameter: bool = False

    @property
    def is_storage_pointer(self) -> bool:
        return self.storage_location == "storage"


@dataclass(frozen=True)
class Dependencies:
    """what an operand was computed from, following the ssa def chain"""
    env: FrozenSet[str] = frozenset()
    slots: FrozenSet[str] = frozenset()
    calls: FrozenSet[int] = frozenset()
    instructions: FrozenSet[int] = frozenset()


@dataclass(frozen=True)
class Function:
    name: str
    contract_name: str
    visibility: Visibility
    mutability: Mutability
    instructions: Tuple[Instruction, ...] = ()
    modifiers: Tuple[str, ...] = ()
    is_constructor: bool = False
    parameters: Tuple[str, ...] = ()
    returns: Tuple[str, ...] = ()
    locals: Tuple[LocalVariable, ...] = ()
    diagnostics: Tuple[Diagnostic, ...] = ()
    _definitions: Dict[Variable, Instruction] = field(init=False, repr=False, compare=False)
    _users: Dict[Variable, Tuple[Instruction, ...]] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        for position, instruction in enumerate(self.instructions):
            if instruction.id != position:
                raise ValueError(
                    f"{self.contract_name}.{self.name}: instruction at position {position} has id {instruction.id}"
                )
        definitions: Dict[Variable, Instruction] = {}
        users: Dict[Variable, List[Instruction]] = {}
        for instruction in self.instructions:
            for var in instruction.defs():
                definitions[var] = instruction
            for var in instruction.used_variables():
                users.setdefault(var, []).append(instruction)
        object.__setattr__(self, "_definitions", definitions)
        object.__setattr__(self, "_users", {k: tuple(v) for k, v in users.items()})

    @property
    def qualified_name(self) -> str:
        return f"{self.contract_name}.{self.name}"

    @property
    def analyzable(self) -> bool:
        return not any(d.kind == DiagnosticKind.UNSUPPORTED_CONSTRUCT for d in self.diagnostics)

    @property
    def is_entry_point(self) -> bool:
        return self.visibility.externally_callable and not self.is_constructor

    def instruction(self, instruction_id: int) -> Instruction:
        return self.instructions[instruction_id]

    def local(self, name: str) -> Optional[LocalVariable]:
        for local in self.locals:
            if local.name == name:
                return local
        return None

    def external_calls(self) -> List[ExternalCallSite]:
        return [i for i in self.instructions if isinstance(i, ExternalCallSite)]

    def internal_calls(self) -> List[InternalCall]:
        return [i for i in self.instructions if isinstance(i, InternalCall)]

    def storage_writes(self) -> List[StorageWrite]:
        return [i for i in self.instructions if isinstance(i, StorageWrite)]

    def storage_reads(self) -> List[StorageRead]:
        return [i for i in self.instructions if isinstance(i, StorageRead)]

    def slots_read(self) -> Set[str]:
        return {i.slot.name for i in self.storage_reads() if i.slot is not None}

    def slots_written(self) -> Set[str]:
        return {i.slot.name for i in self.storage_writes() if i.slot is not None}

    def definition_of(self, variable: Variable) -> Optional[Instruction]:
        return self._definitions.get(variable)

    def users_of(self, variable: Variable) -> Tuple[Instruction, ...]:
        return self._users.get(variable, ())

    def dependencies(self, operand: Operand) -> Dependencies:
        """transitive origins of an operand (env values, storage slots, calls)"""
        env: Set[str] = set()
        slots: Set[str] = set()
        calls: Set[int] = set()
        seen: Set[int] = set()
        stack: List[Operand] = [operand]
        while stack:
            current = stack.pop()
            if isinstance(current, EnvValue):
                env.add(current.name)
                continue
            if not isinstance(current, Variable):
                continue
            definition = self._definitions.get(current)
            if definition is None or definition.id in seen:
                continue
            seen.add(definition.id)
            if isinstance(definition, StorageRead) and definition.slot is not None:
                slots.add(definition.slot.name)
            if isinstance(definition, (ExternalCallSite, InternalCall)):
                calls.add(definition.id)
            stack.extend(definition.uses())
        return Dependencies(
            env=frozenset(env),
            slots=frozenset(slots),
            calls=frozenset(calls),
            instructions=frozenset(seen),
        )

    def iter_forward_uses(self, variable: Variable) -> Iterator[Instruction]:
        """instructions that consume `variable` directly or through derived values"""
        seen: Set[int] = set()
        stack: List[Variable] = [variable]
        while stack:
            current = stack.pop()
            for user in self._users.get(current, ()):
                if user.id in seen:
                    continue
                seen.add(user.id)
                yield user
                stack.extend(user.defs())

    def dump(self) -> str:
        return "\n".join(f"{i.id:4d}  {i}" for i in self.instructions)

    def __repr__(self) -> str:
        return f"Function({self.qualified_name}, {len(self.instructions)} instructions)"


@dataclass(frozen=True)
class Contract:
    name: str
    functions: Tuple[Function, ...] = ()
    storage_slots: Tuple[StorageSlot, ...] = ()
    kind: str = "contract"
    modifier_names: Tuple[str, ...] = ()

    def function(self, name: str) -> Optional[Function]:
        for fn in self.functions:
            if fn.name == name:
                return fn
        return None

    def slot(self, name: str) -> Optional[StorageSlot]:
        for slot in self.storage_slots:
            if slot.name == name:
                return slot
        return None

    def entry_points(self) -> List[Function]:
        return [fn for fn in self.functions if fn.is_entry_point]

    @property
    def diagnostics(self) -> List[Diagnostic]:
        return [d for fn in self.functions for d in fn.diagnostics]

    def __repr__(self) -> str:
        return f"Contract({self.name}, {len(self.functions)} functions, {len(self.storage_slots)} slots)"
