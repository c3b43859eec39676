"""access-control: privileged operations reachable without a caller check"""

from __future__ import annotations

import re
from typing import List, Optional, Set, Tuple

from cal.context import AnalysisContext
from cal.call_graph import touched_slots
from cal.detectors.base import AbstractDetector
from models.findings import Confidence, Finding, Impact, VulnerabilityType
from models.ir import (
    BinaryOp,
    CallKind,
    Condition,
    EnvValue,
    ExternalCallSite,
    Function,
    Instruction,
    InternalCall,
    StorageRead,
    StorageWrite,
)

PRIVILEGED_SLOT = re.compile(
    r"(owner|admin|role|implementation|governance|operator|minter|controller|authority|guardian|pauser|upgrader)",
    re.IGNORECASE,
)
# mappings consulted with msg.sender as key that grant permission
AUTH_MAPPING = re.compile(r"(owner|admin|role|operator|minter|controller|authority|guardian|authori[sz]ed|whitelist|allowed)", re.IGNORECASE)
AUTH_CALLEE = re.compile(r"(role|owner|admin|auth)", re.IGNORECASE)
GUARD_MODIFIER = re.compile(r"(^only|only$|auth|restricted|requiresAuth)", re.IGNORECASE)

DESTRUCT_BUILTINS = ("selfdestruct", "suicide")
SENDER = "msg.sender"
ORIGIN = "tx.origin"

Operation = Tuple[Instruction, str]


def authorization_sources(fn: Function, condition: Condition) -> Set[str]:
    """caller identities (msg.sender / tx.origin) a condition authorizes against"""
    sources: Set[str] = set()
    deps = fn.dependencies(condition.cond)
    for instruction_id in sorted(deps.instructions):
        instruction = fn.instruction(instruction_id)
        if isinstance(instruction, BinaryOp) and instruction.operator in ("==", "!="):
            for side in (instruction.left, instruction.right):
                if isinstance(side, EnvValue) and side.name in (SENDER, ORIGIN):
                    sources.add(side.name)
        elif isinstance(instruction, StorageRead) and instruction.slot is not None:
            if AUTH_MAPPING.search(instruction.slot.name):
                sources |= {k.name for k in instruction.key if isinstance(k, EnvValue) and k.name in (SENDER, ORIGIN)}
        elif isinstance(instruction, InternalCall) and AUTH_CALLEE.search(instruction.callee):
            sources |= {a.name for a in instruction.arguments if isinstance(a, EnvValue) and a.name in (SENDER, ORIGIN)}
    return sources


class AccessControlDetector(AbstractDetector):
    """
    entry points that write an owner/admin style slot, self-destruct or
    delegatecall (directly or through internal callees) without a guard
    modifier or a dominating check on the caller. conditions that authorize
    against tx.origin alone are reported separately.
    """

    ARGUMENT = "access-control"
    HELP = "Privileged operation without a caller check"
    IMPACT = Impact.HIGH
    CONFIDENCE = Confidence.MEDIUM
    VULNERABILITY_TYPE = VulnerabilityType.ACCESS_CONTROL

    def analyze(self, context: AnalysisContext) -> List[Finding]:
        findings: List[Finding] = []
        for fn in context.analyzable_functions():
            context.check_cancelled()
            findings.extend(self._tx_origin_checks(fn))
            if not fn.is_entry_point or self._has_guard_modifier(context, fn):
                continue
            unguarded = [
                (instruction, reason)
                for instruction, reason in self._sensitive_operations(context, fn)
                if not self._checked_before(context, fn, instruction.id)
            ]
            if not unguarded:
                continue
            reasons = list(dict.fromkeys(reason for _, reason in unguarded))
            findings.append(self.finding(
                fn,
                f"{fn.qualified_name} is externally callable and {', '.join(reasons)} without checking the caller",
                sorted({instruction.id for instruction, _ in unguarded}),
            ))
        return findings

    def _tx_origin_checks(self, fn: Function) -> List[Finding]:
        findings = []
        for instruction in fn.instructions:
            if not isinstance(instruction, Condition):
                continue
            sources = authorization_sources(fn, instruction)
            if ORIGIN in sources and SENDER not in sources:
                findings.append(self.finding(
                    fn,
                    f"{fn.qualified_name} authorizes the caller with tx.origin at instruction {instruction.id}",
                    (instruction.id,),
                    impact=Impact.MEDIUM,
                    confidence=Confidence.MEDIUM,
                    vulnerability_type=VulnerabilityType.TX_ORIGIN,
                ))
        return findings

    def _has_guard_modifier(self, context: AnalysisContext, fn: Function) -> bool:
        # declared modifiers are inlined and judged by the checks they contain
        return any(
            GUARD_MODIFIER.search(name) and name not in context.contract.modifier_names
            for name in fn.modifiers
        )

    def _direct_operations(self, fn: Function) -> List[Operation]:
        operations: List[Operation] = []
        for instruction in fn.instructions:
            if isinstance(instruction, StorageWrite):
                for slot in sorted(touched_slots(fn, instruction)):
                    if PRIVILEGED_SLOT.search(slot):
                        operations.append((instruction, f"writes '{slot}'"))
            elif isinstance(instruction, InternalCall) and instruction.builtin:
                if instruction.callee in DESTRUCT_BUILTINS:
                    operations.append((instruction, f"calls {instruction.callee}"))
            elif isinstance(instruction, ExternalCallSite) and instruction.kind == CallKind.DELEGATECALL:
                operations.append((instruction, "delegatecalls"))
        return operations

    def _sensitive_operations(self, context: AnalysisContext, fn: Function) -> List[Operation]:
        operations = self._direct_operations(fn)
        for call in fn.internal_calls():
            if call.builtin:
                continue
            reason = self._callee_operation(context, call.callee)
            if reason is not None:
                operations.append((call, f"{reason} via {call.callee}()"))
        return sorted(operations, key=lambda op: op[0].id)

    def _callee_operation(self, context: AnalysisContext, callee: str) -> Optional[str]:
        """first privileged operation an internal callee performs unguarded, if any"""
        for name in sorted(context.call_graph.reachable_functions(callee)):
            function = context.contract.function(name)
            if function is None or self._has_guard_modifier(context, function) or self._checks_caller(function):
                continue
            operations = self._direct_operations(function)
            if operations:
                return operations[0][1]
        return None

    def _checks_caller(self, fn: Function) -> bool:
        return any(
            authorization_sources(fn, i) for i in fn.instructions if isinstance(i, Condition)
        )

    def _checked_before(self, context: AnalysisContext, fn: Function, instruction_id: int) -> bool:
        cfg = context.cfg(fn)
        for instruction in fn.instructions:
            if instruction.id == instruction_id or not cfg.dominates(instruction.id, instruction_id):
                continue
            if isinstance(instruction, Condition) and authorization_sources(fn, instruction):
                return True
            if isinstance(instruction, InternalCall) and not instruction.builtin:
                for name in context.call_graph.reachable_functions(instruction.callee):
                    callee = context.contract.function(name)
                    if callee is not None and self._checks_caller(callee):
                        return True
        return False
