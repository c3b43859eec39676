"""ast -> ir lowering

Lowers validated front-end ast (models.ast) into the flat instruction form of
models.ir. Expressions are lowered post-order so every storage access and
every call ends up as its own instruction ahead of whatever consumes it.
Locals get a fresh ssa generation on each write; control-flow joins and loop
headers carry Phi instructions for locals whose version differs per path.

An unsupported construct aborts lowering of the enclosing function only: the
function is kept with no instructions and an UNSUPPORTED_CONSTRUCT diagnostic.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, replace
from typing import Dict, List, NamedTuple, Optional, Sequence, Tuple

from models.ast import ContractDecl, Expression, FunctionDecl, ModifierDecl, SourceUnit, Statement
from models.findings import Diagnostic, DiagnosticKind, UnsupportedConstruct
from models.ir import (
    Assignment,
    BinaryOp,
    CallKind,
    Condition,
    Constant,
    Contract,
    EnvValue,
    ExternalCallSite,
    Function,
    Instruction,
    InternalCall,
    Jump,
    Label,
    LocalVariable,
    Mutability,
    Operand,
    Phi,
    Return,
    Revert,
    StorageRead,
    StorageSlot,
    StorageWrite,
    UnaryOp,
    Variable,
    Visibility,
)

logger = logging.getLogger(__name__)

ENV_ROOTS = ("msg", "tx", "block")

ENV_ALIASES = {
    "now": "block.timestamp",
}

BUILTIN_FUNCTIONS = {
    "selfdestruct", "suicide", "keccak256", "sha256", "sha3", "ripemd160",
    "ecrecover", "addmod", "mulmod", "blockhash", "gasleft",
}

# namespaces whose members are builtins rather than contract calls
BUILTIN_NAMESPACES = {"abi", "string", "bytes", "type"}

_TYPE_CONVERSION = re.compile(r"^(address|payable|bool|string|bytes\d*|u?int\d*)$")

_COMPOUND_OPERATORS = {"+=", "-=", "*=", "/=", "%=", "|=", "&=", "^=", "<<=", ">>="}

# send/transfer forward this much gas; an explicit gas option at or below it cannot reenter
GAS_STIPEND = 2300
# value returned from inside an inlined modifier body when the function names no return variables
RETURN_SLOT = "%return"

_LOW_LEVEL_KINDS = {
    "call": CallKind.CALL,
    "delegatecall": CallKind.DELEGATECALL,
    "staticcall": CallKind.STATICCALL,
    "send": CallKind.SEND,
    "transfer": CallKind.TRANSFER,
}


def zero_value(type_name: Optional[str]) -> Constant:
    """default value a declaration without initializer holds"""
    if not type_name:
        return Constant(0, type_name)
    if type_name == "bool":
        return Constant(False, type_name)
    if type_name.startswith("address"):
        return Constant("0x0", type_name)
    if type_name in ("string", "bytes"):
        return Constant("", type_name)
    return Constant(0, type_name)


class _StorageRef(NamedTuple):
    slot: Optional[StorageSlot]
    base: Optional[Variable]
    key: Tuple[Operand, ...]
    member: Optional[str]


@dataclass
class _LoopTargets:
    break_label: int
    continue_label: int


class _FunctionBuilder:
    """lowers one function; single use"""

    def __init__(
        self,
        contract: ContractDecl,
        decl: FunctionDecl,
        slots: Dict[str, StorageSlot],
        constants: Dict[str, Constant],
        modifiers: Dict[str, ModifierDecl],
    ):
        self.contract = contract
        self.decl = decl
        self.slots = slots
        self.constants = constants
        self.modifiers = modifiers
        self.function_names = {f.name for f in contract.functions}

        self.instructions: List[Instruction] = []
        self.locals: Dict[str, LocalVariable] = {}
        self._env: Dict[str, Variable] = {}
        self._generations: Dict[str, int] = {}
        self._pending: Dict[int, List[Dict[str, Variable]]] = {}
        self._reachable = True
        self._next_label = 0
        self._next_temp = 0
        self._loops: List[_LoopTargets] = []
        self._return_targets: List[int] = []
        self._placeholder_layers: List[int] = []
        self._location = decl.location

    # emission helpers

    def _emit(self, cls, **fields) -> Instruction:
        instruction = cls(id=len(self.instructions), location=self._location, **fields)
        self.instructions.append(instruction)
        return instruction

    def _temp(self) -> Variable:
        name = f"%t{self._next_temp}"
        self._next_temp += 1
        return Variable(name, 0)

    def _new_version(self, name: str) -> Variable:
        generation = self._generations.get(name, -1) + 1
        self._generations[name] = generation
        var = Variable(name, generation)
        self._env[name] = var
        return var

    def _new_label(self) -> int:
        label = self._next_label
        self._next_label += 1
        return label

    def _jump(self, label: int) -> None:
        self._emit(Jump, label=label)
        self._pending.setdefault(label, []).append(dict(self._env))
        self._reachable = False

    def _branch(self, cond: Operand, true_label: int, false_label: int, is_require: bool = False) -> None:
        self._emit(Condition, cond=cond, true_label=true_label, false_label=false_label, is_require=is_require)
        self._pending.setdefault(true_label, []).append(dict(self._env))
        self._pending.setdefault(false_label, []).append(dict(self._env))
        self._reachable = False

    def _place_label(self, label: int) -> bool:
        """start a new block at `label`; False when nothing reaches it"""
        incoming = self._pending.pop(label, [])
        if self._reachable:
            incoming.append(dict(self._env))
        if not incoming:
            self._reachable = False
            return False
        self._emit(Label, label=label)
        self._reachable = True
        self._env = self._merge(incoming)
        return True

    def _merge(self, incoming: List[Dict[str, Variable]]) -> Dict[str, Variable]:
        if len(incoming) == 1:
            return dict(incoming[0])
        merged: Dict[str, Variable] = {}
        phis: List[Tuple[str, Tuple[Variable, ...]]] = []
        for name, first in incoming[0].items():
            if not all(name in env for env in incoming[1:]):
                # declared on one path only; out of scope after the join
                continue
            versions: List[Variable] = []
            for env in incoming:
                if env[name] not in versions:
                    versions.append(env[name])
            if len(versions) == 1:
                merged[name] = first
            else:
                phis.append((name, tuple(versions)))
        self._env = merged
        for name, versions in phis:
            dest = self._new_version(name)
            self._emit(Phi, dest=dest, sources=versions)
        return self._env

    # entry

    def build(self) -> Tuple[Instruction, ...]:
        for param in self.decl.parameters + self.decl.returns:
            self.locals[param.name] = LocalVariable(
                name=param.name,
                type_name=param.type_name,
                storage_location=param.storage_location,
                is_parameter=True,
            )
            self._new_version(param.name)
        if self.decl.body is None:
            return ()
        self._lower_layer(0)
        return tuple(self.instructions)

    def _lower_layer(self, index: int) -> None:
        """inline modifier `index` around the rest of the chain"""
        invocations = self.decl.modifiers
        while index < len(invocations) and invocations[index].name not in self.modifiers:
            # inherited or unknown modifier, recorded by name only
            index += 1
        if index >= len(invocations):
            self._lower_block(self.decl.body or [])
            return
        invocation = invocations[index]
        modifier = self.modifiers[invocation.name]
        for param, arg in zip(modifier.parameters, invocation.arguments):
            value = self._lower_expression(arg)
            self.locals[param.name] = LocalVariable(name=param.name, type_name=param.type_name)
            self._emit(Assignment, dest=self._new_version(param.name), source=value)
        self._placeholder_layers.append(index + 1)
        try:
            self._lower_block(modifier.body)
        finally:
            self._placeholder_layers.pop()

    def _lower_placeholder(self) -> None:
        if not self._placeholder_layers:
            raise UnsupportedConstruct("placeholder outside modifier", _loc(self._location))
        after = self._new_label()
        self._return_targets.append(after)
        saved_layers = self._placeholder_layers
        self._placeholder_layers = []
        try:
            self._lower_layer(saved_layers[-1])
        finally:
            self._placeholder_layers = saved_layers
            self._return_targets.pop()
        self._place_label(after)

    # statements

    def _lower_block(self, statements: Sequence[Statement]) -> None:
        for statement in statements:
            if not self._reachable:
                break
            self._lower_statement(statement)

    def _lower_statement(self, stmt: Statement) -> None:
        previous = self._location
        if stmt.location is not None:
            self._location = stmt.location
        try:
            handler = getattr(self, f"_stmt_{stmt.kind}", None)
            if handler is None:
                raise UnsupportedConstruct(stmt.kind, _loc(self._location))
            handler(stmt)
        finally:
            self._location = previous

    def _stmt_expression(self, stmt: Statement) -> None:
        expr = stmt.expression
        if expr.kind == "call" and expr.base is None and expr.name in ("require", "assert", "revert"):
            message = _literal_text(expr.arguments[1]) if len(expr.arguments) > 1 else None
            if expr.name == "revert":
                message = _literal_text(expr.arguments[0]) if expr.arguments else None
                self._emit(Revert, message=message)
                self._reachable = False
                return
            if not expr.arguments:
                raise UnsupportedConstruct(f"{expr.name} without condition", _loc(self._location))
            self._lower_require(expr.arguments[0], message)
            return
        self._lower_expression(expr)

    def _stmt_block(self, stmt: Statement) -> None:
        self._lower_block(stmt.body)

    _stmt_unchecked = _stmt_block

    def _stmt_placeholder(self, stmt: Statement) -> None:
        self._lower_placeholder()

    def _stmt_declare(self, stmt: Statement) -> None:
        local = LocalVariable(name=stmt.name, type_name=stmt.type_name, storage_location=stmt.storage_location)
        self.locals[stmt.name] = local
        if stmt.value is None:
            self._emit(Assignment, dest=self._new_version(stmt.name), source=zero_value(stmt.type_name), is_default=True)
            return
        if local.is_storage_pointer:
            ref = self._resolve_storage(stmt.value)
            if ref is not None:
                self._emit(
                    StorageRead,
                    dest=self._new_version(stmt.name),
                    slot=ref.slot,
                    key=ref.key,
                    base=ref.base,
                    member=ref.member,
                )
                return
        value = self._lower_expression(stmt.value)
        self._emit(Assignment, dest=self._new_version(stmt.name), source=value)

    def _stmt_assign(self, stmt: Statement) -> None:
        operator = stmt.operator
        if operator == "=":
            value = self._lower_expression(stmt.value)
            self._store(stmt.target, value)
            return
        if operator not in _COMPOUND_OPERATORS:
            raise UnsupportedConstruct(f"assignment operator {operator}", _loc(self._location))
        current = self._lower_expression(stmt.target)
        rhs = self._lower_expression(stmt.value)
        result = self._temp()
        self._emit(BinaryOp, dest=result, operator=operator[:-1], left=current, right=rhs)
        self._store(stmt.target, result)

    def _stmt_delete(self, stmt: Statement) -> None:
        type_name = None
        if stmt.target.kind == "identifier":
            slot = self.slots.get(stmt.target.name)
            local = self.locals.get(stmt.target.name)
            type_name = slot.type_name if slot else (local.type_name if local else None)
        self._store(stmt.target, zero_value(type_name))

    def _stmt_if(self, stmt: Statement) -> None:
        cond = self._lower_expression(stmt.condition)
        then_label = self._new_label()
        else_label = self._new_label() if stmt.orelse else None
        end_label = self._new_label()
        self._branch(cond, then_label, else_label if else_label is not None else end_label)
        if self._place_label(then_label):
            self._lower_block(stmt.body)
        if else_label is not None:
            if self._reachable:
                self._jump(end_label)
            if self._place_label(else_label):
                self._lower_block(stmt.orelse)
        self._place_label(end_label)

    def _stmt_while(self, stmt: Statement) -> None:
        self._lower_loop(stmt.condition, stmt.body, update=None)

    def _stmt_for(self, stmt: Statement) -> None:
        if stmt.init is not None:
            self._lower_statement(stmt.init)
        self._lower_loop(stmt.condition, stmt.body, update=stmt.update)

    def _lower_loop(self, condition: Optional[Expression], body: List[Statement], update: Optional[Statement]) -> None:
        header = self._new_label()
        body_label = self._new_label()
        continue_label = self._new_label() if update is not None else header
        exit_label = self._new_label()

        assigned = _assigned_names(body + ([update] if update is not None else []))
        self._place_label(header)
        header_phis: List[Tuple[int, str]] = []
        for name in list(self._env):
            if name in assigned and name in self.locals:
                previous = self._env[name]
                phi = self._emit(Phi, dest=self._new_version(name), sources=(previous,))
                header_phis.append((phi.id, name))

        cond = self._lower_expression(condition) if condition is not None else Constant(True, "bool")
        self._branch(cond, body_label, exit_label)
        self._place_label(body_label)
        self._loops.append(_LoopTargets(break_label=exit_label, continue_label=continue_label))
        try:
            self._lower_block(body)
        finally:
            self._loops.pop()
        if update is not None:
            if self._place_label(continue_label):
                self._lower_statement(update)
        if self._reachable:
            self._jump(header)

        back_edges = self._pending.pop(header, [])
        for index, name in header_phis:
            phi = self.instructions[index]
            sources = list(phi.sources)
            for env in back_edges:
                version = env.get(name)
                if version is not None and version != phi.dest and version not in sources:
                    sources.append(version)
            self.instructions[index] = replace(phi, sources=tuple(sources))
        self._place_label(exit_label)

    def _stmt_break(self, stmt: Statement) -> None:
        if not self._loops:
            raise UnsupportedConstruct("break outside loop", _loc(self._location))
        self._jump(self._loops[-1].break_label)

    def _stmt_continue(self, stmt: Statement) -> None:
        if not self._loops:
            raise UnsupportedConstruct("continue outside loop", _loc(self._location))
        self._jump(self._loops[-1].continue_label)

    def _stmt_require(self, stmt: Statement) -> None:
        self._lower_require(stmt.condition, stmt.message)

    _stmt_assert = _stmt_require

    def _lower_require(self, condition: Expression, message: Optional[str]) -> None:
        cond = self._lower_expression(condition)
        ok_label = self._new_label()
        fail_label = self._new_label()
        self._branch(cond, ok_label, fail_label, is_require=True)
        self._place_label(fail_label)
        self._emit(Revert, message=message)
        self._reachable = False
        self._place_label(ok_label)

    def _stmt_revert(self, stmt: Statement) -> None:
        self._emit(Revert, message=stmt.message)
        self._reachable = False

    def _stmt_return(self, stmt: Statement) -> None:
        values: Tuple[Operand, ...] = ()
        if stmt.value is not None:
            values = (self._lower_expression(stmt.value),)
        if self._return_targets:
            # return inside an inlined body resumes the enclosing modifier
            names = [p.name for p in self.decl.returns] or [RETURN_SLOT]
            for name, value in zip(names, values):
                self._emit(Assignment, dest=self._new_version(name), source=value)
            self._jump(self._return_targets[-1])
            return
        self._emit(Return, values=values)
        self._reachable = False

    def _stmt_emit(self, stmt: Statement) -> None:
        for arg in stmt.arguments:
            self._lower_expression(arg)

    # stores

    def _store(self, target: Expression, value: Operand) -> None:
        if target.kind == "identifier" and target.name in self._env:
            self._emit(Assignment, dest=self._new_version(target.name), source=value)
            return
        ref = self._resolve_storage(target)
        if ref is not None:
            self._emit(StorageWrite, slot=ref.slot, value=value, key=ref.key, base=ref.base, member=ref.member)
            return
        if target.kind == "identifier":
            if target.name in self.constants:
                raise UnsupportedConstruct(f"write to constant {target.name}", _loc(self._location))
            # undeclared name, treated as an implicit local
            self.locals.setdefault(target.name, LocalVariable(name=target.name))
            self._emit(Assignment, dest=self._new_version(target.name), source=value)
            return
        if target.kind in ("index", "member"):
            # memory aggregate: model as a new version of the root local
            root = _root_identifier(target)
            if target.kind == "index":
                self._lower_expression(target.index)
            if root is not None and root in self._env:
                previous = self._env[root]
                self._emit(BinaryOp, dest=self._new_version(root), operator="store", left=previous, right=value)
                return
        raise UnsupportedConstruct(f"assignment to {target.kind}", _loc(self._location))

    def _resolve_storage(self, expr: Expression) -> Optional[_StorageRef]:
        if expr.kind == "identifier":
            name = expr.name
            if name in self._env:
                local = self.locals.get(name)
                if local is not None and local.is_storage_pointer:
                    return _StorageRef(None, self._env[name], (), None)
                return None
            slot = self.slots.get(name)
            return _StorageRef(slot, None, (), None) if slot is not None else None
        if expr.kind == "index":
            ref = self._resolve_storage(expr.base)
            if ref is None:
                return None
            key = self._lower_expression(expr.index)
            return ref._replace(key=ref.key + (key,))
        if expr.kind == "member":
            if expr.base.kind == "identifier" and expr.base.name in ENV_ROOTS:
                return None
            ref = self._resolve_storage(expr.base)
            if ref is None:
                return None
            member = expr.name if ref.member is None else f"{ref.member}.{expr.name}"
            return ref._replace(member=member)
        return None

    # expressions

    def _lower_expression(self, expr: Expression) -> Operand:
        previous = self._location
        if expr.location is not None:
            self._location = expr.location
        try:
            handler = getattr(self, f"_expr_{expr.kind}", None)
            if handler is None:
                raise UnsupportedConstruct(expr.kind, _loc(self._location))
            return handler(expr)
        finally:
            self._location = previous

    def _expr_literal(self, expr: Expression) -> Operand:
        return Constant(expr.value, expr.type_name)

    def _expr_identifier(self, expr: Expression) -> Operand:
        name = expr.name
        if name in self._env:
            return self._env[name]
        if name in self.constants:
            return self.constants[name]
        if name in self.slots:
            dest = self._temp()
            self._emit(StorageRead, dest=dest, slot=self.slots[name])
            return dest
        if name == "this":
            return EnvValue("this")
        if name in ENV_ALIASES:
            return EnvValue(ENV_ALIASES[name])
        return Constant(name, "unresolved")

    def _expr_member(self, expr: Expression) -> Operand:
        base = expr.base
        if base.kind == "identifier" and base.name in ENV_ROOTS and base.name not in self._env:
            return EnvValue(f"{base.name}.{expr.name}")
        ref = self._resolve_storage(expr)
        if ref is not None:
            return self._read_storage(ref)
        operand = self._lower_expression(base)
        dest = self._temp()
        self._emit(BinaryOp, dest=dest, operator="member", left=operand, right=Constant(expr.name, "member"))
        return dest

    def _expr_index(self, expr: Expression) -> Operand:
        ref = self._resolve_storage(expr)
        if ref is not None:
            return self._read_storage(ref)
        operand = self._lower_expression(expr.base)
        index = self._lower_expression(expr.index)
        dest = self._temp()
        self._emit(BinaryOp, dest=dest, operator="index", left=operand, right=index)
        return dest

    def _read_storage(self, ref: _StorageRef) -> Variable:
        dest = self._temp()
        self._emit(StorageRead, dest=dest, slot=ref.slot, key=ref.key, base=ref.base, member=ref.member)
        return dest

    def _expr_binary(self, expr: Expression) -> Operand:
        # && and || are evaluated eagerly, both sides always lowered
        left = self._lower_expression(expr.left)
        right = self._lower_expression(expr.right)
        dest = self._temp()
        self._emit(BinaryOp, dest=dest, operator=expr.operator, left=left, right=right)
        return dest

    def _expr_unary(self, expr: Expression) -> Operand:
        if expr.operator in ("++", "--"):
            current = self._lower_expression(expr.operand)
            updated = self._temp()
            self._emit(BinaryOp, dest=updated, operator=expr.operator[0], left=current, right=Constant(1, "uint256"))
            self._store(expr.operand, updated)
            return updated if expr.prefix else current
        if expr.operator == "delete":
            self._store(expr.operand, zero_value(None))
            return Constant(None, "void")
        operand = self._lower_expression(expr.operand)
        dest = self._temp()
        self._emit(UnaryOp, dest=dest, operator=expr.operator, operand=operand)
        return dest

    def _expr_call(self, expr: Expression) -> Operand:
        kind = expr.resolved_call_kind
        name = expr.name
        if kind in _LOW_LEVEL_KINDS:
            return self._lower_external_call(expr, _LOW_LEVEL_KINDS[kind])
        if kind == "external":
            base = expr.base
            if base.kind == "identifier" and base.name == "this":
                return self._lower_internal_call(name, expr.arguments, builtin=False)
            if base.kind == "identifier" and base.name in BUILTIN_NAMESPACES:
                return self._lower_internal_call(f"{base.name}.{name}", expr.arguments, builtin=True)
            if name in ("push", "pop"):
                ref = self._resolve_storage(base)
                if ref is not None:
                    args = [self._lower_expression(a) for a in expr.arguments]
                    value = args[0] if args else Constant(None, "void")
                    member = name if ref.member is None else f"{ref.member}.{name}"
                    self._emit(StorageWrite, slot=ref.slot, value=value, key=ref.key, base=ref.base, member=member)
                    return Constant(None, "void")
            return self._lower_external_call(expr, CallKind.HIGH_LEVEL)
        if kind == "builtin":
            return self._lower_internal_call(name, expr.arguments, builtin=True)
        if _TYPE_CONVERSION.match(name) and len(expr.arguments) == 1 and name not in self.function_names:
            return self._lower_expression(expr.arguments[0])
        builtin = name in BUILTIN_FUNCTIONS and name not in self.function_names
        return self._lower_internal_call(name, expr.arguments, builtin=builtin)

    def _lower_internal_call(self, callee: str, arguments: List[Expression], builtin: bool) -> Operand:
        args = tuple(self._lower_expression(a) for a in arguments)
        dest = self._temp()
        self._emit(InternalCall, dest=dest, callee=callee, arguments=args, builtin=builtin)
        return dest

    def _lower_external_call(self, expr: Expression, kind: CallKind) -> Operand:
        target = self._lower_expression(expr.base)
        value = self._lower_expression(expr.call_value) if expr.call_value is not None else None
        forwards_gas = kind.default_forwards_gas
        if expr.call_gas is not None:
            gas = self._lower_expression(expr.call_gas)
            if isinstance(gas, Constant) and isinstance(gas.value, int) and gas.value <= GAS_STIPEND:
                forwards_gas = False
        args = tuple(self._lower_expression(a) for a in expr.arguments)
        if kind in (CallKind.SEND, CallKind.TRANSFER) and value is None and args:
            # addr.send(amount) carries the amount as its only argument
            value, args = args[0], args[1:]
        dest = None if kind == CallKind.TRANSFER else self._temp()
        self._emit(
            ExternalCallSite,
            dest=dest,
            kind=kind,
            target=target,
            function_name=expr.name if kind == CallKind.HIGH_LEVEL else None,
            arguments=args,
            value=value,
            forwards_gas=forwards_gas,
        )
        return dest if dest is not None else Constant(None, "void")


def _loc(location) -> Optional[str]:
    return str(location) if location is not None else None


def _literal_text(expr: Expression) -> Optional[str]:
    if expr.kind == "literal" and expr.value is not None:
        return str(expr.value)
    return None


def _root_identifier(expr: Expression) -> Optional[str]:
    while expr.kind in ("index", "member"):
        expr = expr.base
    return expr.name if expr.kind == "identifier" else None


def _assigned_names(statements: Sequence[Statement]) -> set:
    """local names a statement list may reassign (for loop header phis)"""
    names: set = set()

    def visit_expr(expr: Optional[Expression]) -> None:
        if expr is None:
            return
        if expr.kind == "unary" and expr.operator in ("++", "--", "delete"):
            root = _root_identifier(expr.operand)
            if root:
                names.add(root)
        for child in (expr.base, expr.index, expr.left, expr.right, expr.operand, expr.call_value, expr.call_gas):
            visit_expr(child)
        for arg in expr.arguments:
            visit_expr(arg)

    def visit(stmt: Optional[Statement]) -> None:
        if stmt is None:
            return
        if stmt.kind in ("assign", "delete") and stmt.target is not None:
            root = _root_identifier(stmt.target)
            if root:
                names.add(root)
        if stmt.kind == "declare" and stmt.name:
            names.add(stmt.name)
        for expr in (stmt.expression, stmt.target, stmt.value, stmt.condition):
            visit_expr(expr)
        for arg in stmt.arguments:
            visit_expr(arg)
        for child in stmt.body + stmt.orelse:
            visit(child)
        visit(stmt.init)
        visit(stmt.update)

    for statement in statements:
        visit(statement)
    return names


class IRLowering:
    """lowers contracts of a validated SourceUnit into ir Contracts"""

    def lower_source_unit(self, unit: SourceUnit) -> List[Contract]:
        return [self.lower_contract(decl) for decl in unit.contracts]

    def lower_contract(self, decl: ContractDecl) -> Contract:
        slots: Dict[str, StorageSlot] = {}
        constants: Dict[str, Constant] = {}
        for var in decl.state_variables:
            if var.is_constant:
                init = var.initial_value
                value = init.value if init is not None and init.kind == "literal" else var.name
                constants[var.name] = Constant(value, var.type_name)
                continue
            slots[var.name] = StorageSlot(name=var.name, type_name=var.type_name, index=len(slots))
        modifiers = {m.name: m for m in decl.modifiers}

        functions = tuple(
            self.lower_function(decl, fn, slots, constants, modifiers) for fn in decl.functions
        )
        contract = Contract(
            name=decl.name,
            functions=functions,
            storage_slots=tuple(slots.values()),
            kind=decl.kind,
            modifier_names=tuple(modifiers),
        )
        logger.debug(
            f"Lowered {decl.name}",
            extra={
                "contract": decl.name,
                "functions": len(functions),
                "instructions": sum(len(f.instructions) for f in functions),
                "slots": len(slots),
            },
        )
        return contract

    def lower_function(
        self,
        contract: ContractDecl,
        decl: FunctionDecl,
        slots: Dict[str, StorageSlot],
        constants: Dict[str, Constant],
        modifiers: Dict[str, ModifierDecl],
    ) -> Function:
        builder = _FunctionBuilder(contract, decl, slots, constants, modifiers)
        diagnostics: Tuple[Diagnostic, ...] = ()
        try:
            instructions = builder.build()
        except UnsupportedConstruct as exc:
            logger.warning(
                f"Skipping {contract.name}.{decl.name}: {exc}",
                extra={"contract": contract.name, "function": decl.name, "construct": exc.construct},
            )
            instructions = ()
            diagnostics = (
                Diagnostic(
                    kind=DiagnosticKind.UNSUPPORTED_CONSTRUCT,
                    message=str(exc),
                    contract=contract.name,
                    function=decl.name,
                ),
            )
        return Function(
            name=decl.name,
            contract_name=contract.name,
            visibility=Visibility(decl.visibility),
            mutability=Mutability(decl.mutability),
            instructions=instructions,
            modifiers=tuple(m.name for m in decl.modifiers),
            is_constructor=decl.is_constructor,
            parameters=tuple(p.name for p in decl.parameters),
            returns=tuple(p.name for p in decl.returns),
            locals=tuple(builder.locals.values()),
            diagnostics=diagnostics,
        )


def lower_source_unit(unit: SourceUnit) -> List[Contract]:
    return IRLowering().lower_source_unit(unit)
