"""reentrancy: storage written after a call that can reenter the contract"""

from __future__ import annotations

import logging
import re
from typing import Dict, FrozenSet, List, Optional, Set, Tuple

from cal.analyses import CallWriteOrdering
from cal.context import AnalysisContext
from cal.detectors.base import AbstractDetector
from models.findings import Confidence, Finding, Impact, VulnerabilityType
from models.ir import Condition, Constant, ExternalCallSite, Function, InternalCall, StorageWrite

logger = logging.getLogger(__name__)

# modifiers the front-end did not supply but whose name promises a reentrancy lock
LOCK_MODIFIERS = re.compile(r"^(nonReentrant|noReentrancy|noReentrant|reentrancyGuard|lock|mutex)$", re.IGNORECASE)

Pair = Tuple[int, int, str]


class ReentrancyDetector(AbstractDetector):
    ARGUMENT = "reentrancy"
    HELP = "Storage written after an external call that can reenter"
    IMPACT = Impact.HIGH
    CONFIDENCE = Confidence.MEDIUM
    VULNERABILITY_TYPE = VulnerabilityType.REENTRANCY
    REQUIRES = (CallWriteOrdering,)

    def analyze(self, context: AnalysisContext) -> List[Finding]:
        findings: List[Finding] = []
        for fn in context.analyzable_functions():
            context.check_cancelled()
            if fn.is_constructor:
                continue
            grouped: Dict[Tuple[int, str], List[int]] = {}
            for call_id, write_id, slot in sorted(self._violations(context, fn)):
                grouped.setdefault((call_id, slot), []).append(write_id)
            for (call_id, slot), writes in sorted(grouped.items()):
                locks = self._held_locks(context, fn, call_id)
                if locks:
                    # cross-function reentrancy is only sought where a lock hides the in-function pair
                    cross = self._cross_function(context, fn, call_id, slot, writes, locks)
                    if cross is not None:
                        findings.append(cross)
                    continue
                findings.append(self._report(context, fn, call_id, slot, writes))
        return findings

    def _violations(self, context: AnalysisContext, fn: Function) -> FrozenSet[Pair]:
        """pairs live on some path that leaves the function without reverting"""
        result = context.result(CallWriteOrdering, fn)
        pairs: Set[Pair] = set()
        for block in context.cfg(fn).normal_exit_blocks():
            if block.instructions:
                pairs |= result.after(block.instructions[-1].id)[2]
        return frozenset(pairs)

    def _report(self, context: AnalysisContext, fn: Function, call_id: int, slot: str, writes: List[int]) -> Finding:
        cfg = context.cfg(fn)
        call = fn.instruction(call_id)
        first = writes[0]
        evidence = tuple(dict.fromkeys(cfg.path_instructions(call_id, first) + tuple(writes[1:])))

        confidence = self.CONFIDENCE
        if isinstance(call, InternalCall) or not cfg.dominates(call_id, first):
            confidence = confidence.lowered()
        if isinstance(call, ExternalCallSite):
            what = f"external call {call.describe()}"
        else:
            what = f"call to {call.callee}() which reaches an external call"
        return self.finding(
            fn,
            f"{fn.qualified_name} writes '{slot}' after {what} at instruction {call_id}",
            evidence,
            confidence=confidence,
            slot=slot,
        )

    def _held_locks(self, context: AnalysisContext, fn: Function, call_id: int) -> Set[str]:
        """reentrancy locks held while `call_id` executes"""
        locks = {
            f"modifier:{name}" for name in fn.modifiers
            if LOCK_MODIFIERS.match(name) and name not in context.contract.modifier_names
        }
        cfg = context.cfg(fn)
        checked: Set[str] = set()
        set_before: Set[str] = set()
        released: Set[str] = set()
        for instruction in fn.instructions:
            if isinstance(instruction, Condition) and instruction.is_require:
                if cfg.dominates(instruction.id, call_id):
                    checked |= fn.dependencies(instruction.cond).slots
            elif (
                isinstance(instruction, StorageWrite)
                and instruction.slot is not None
                and not instruction.key
                and isinstance(instruction.value, Constant)
            ):
                if cfg.dominates(instruction.id, call_id):
                    set_before.add(instruction.slot.name)
                elif cfg.dominates(call_id, instruction.id):
                    released.add(instruction.slot.name)
        return locks | (checked & set_before & released)

    def _checks_lock(self, context: AnalysisContext, name: str, locks: Set[str]) -> bool:
        function = context.contract.function(name)
        if function is None:
            return False
        if any(f"modifier:{m}" in locks for m in function.modifiers):
            return True
        for reachable in context.call_graph.reachable_functions(name):
            callee = context.contract.function(reachable)
            if callee is None:
                continue
            for instruction in callee.instructions:
                if isinstance(instruction, Condition) and instruction.is_require:
                    if callee.dependencies(instruction.cond).slots & locks:
                        return True
        return False

    def _cross_function(
        self,
        context: AnalysisContext,
        fn: Function,
        call_id: int,
        slot: str,
        writes: List[int],
        locks: Set[str],
    ) -> Optional[Finding]:
        """the lock protects this function, but not other entry points sharing `slot`"""
        exposed = []
        for name in sorted(context.call_graph.entry_points()):
            if name == fn.name:
                continue
            other = context.contract.function(name)
            if other is None or not other.analyzable:
                continue
            if not context.call_graph.touches_slot(name, slot):
                continue
            if self._checks_lock(context, name, locks):
                continue
            exposed.append(name)
        if not exposed:
            return None
        logger.debug(
            f"Cross-function reentrancy candidate in {fn.qualified_name}",
            extra={"function": fn.qualified_name, "slot": slot, "exposed": exposed},
        )
        return self.finding(
            fn,
            f"{fn.qualified_name} holds a reentrancy lock but writes '{slot}' after the call at "
            f"instruction {call_id}; unguarded {', '.join(exposed)} can reenter and use it",
            (call_id,) + tuple(writes),
            impact=Impact.MEDIUM,
            confidence=Confidence.LOW,
            vulnerability_type=VulnerabilityType.CROSS_FUNCTION_REENTRANCY,
            slot=slot,
        )
