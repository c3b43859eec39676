"""unchecked-lowlevel: low-level call results that are never inspected"""

from __future__ import annotations

from typing import List

from cal.context import AnalysisContext
from cal.detectors.base import AbstractDetector
from cal.ir_lowering import RETURN_SLOT
from models.findings import Confidence, Finding, Impact, VulnerabilityType
from models.ir import Assignment, CallKind, Condition, ExternalCallSite, Function, Return

_CHECKED_KINDS = (CallKind.CALL, CallKind.DELEGATECALL, CallKind.STATICCALL, CallKind.SEND)


class UncheckedLowLevelCallDetector(AbstractDetector):
    """
    the success flag of call/delegatecall/staticcall/send counts as checked
    once it, or a value derived from it, reaches a branch or is returned
    (including through a named return variable).
    """

    ARGUMENT = "unchecked-lowlevel"
    HELP = "Return value of a low-level call is ignored"
    IMPACT = Impact.MEDIUM
    CONFIDENCE = Confidence.MEDIUM
    VULNERABILITY_TYPE = VulnerabilityType.UNCHECKED_CALL

    def analyze(self, context: AnalysisContext) -> List[Finding]:
        findings: List[Finding] = []
        for fn in context.analyzable_functions():
            context.check_cancelled()
            for call in fn.external_calls():
                if call.kind not in _CHECKED_KINDS or call.dest is None:
                    continue
                if self._is_checked(fn, call):
                    continue
                findings.append(self.finding(
                    fn,
                    f"{fn.qualified_name} ignores the result of {call.describe()} at instruction {call.id}",
                    (call.id,),
                ))
        return findings

    def _is_checked(self, fn: Function, call: ExternalCallSite) -> bool:
        returned = set(fn.returns) | {RETURN_SLOT}
        for user in fn.iter_forward_uses(call.dest):
            if isinstance(user, (Condition, Return)):
                return True
            if isinstance(user, Assignment) and user.dest.name in returned:
                return True
        return False
