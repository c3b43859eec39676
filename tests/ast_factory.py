"""
Builders for front-end AST dicts used across the test suite.

Each helper returns the plain dict shape a front-end would hand over, so the
tests exercise the same validation path (models.ast.parse_source_unit) as
real input.
"""
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT / "src"))

from cal.detectors.base import AbstractDetector  # noqa: E402
from cal.detectors.registry import DetectorRegistry  # noqa: E402
from cal.ir_lowering import IRLowering  # noqa: E402
from cal.pipeline import DetectorPipeline  # noqa: E402
from config import AnalysisOptions  # noqa: E402
from models.ast import parse_source_unit  # noqa: E402


# expressions

def ident(name):
    return {"kind": "identifier", "name": name}


def lit(value, type_name="uint256"):
    return {"kind": "literal", "value": value, "type_name": type_name}


def member(base, name):
    if isinstance(base, str):
        base = ident(base)
    return {"kind": "member", "base": base, "name": name}


def index(base, key):
    if isinstance(base, str):
        base = ident(base)
    return {"kind": "index", "base": base, "index": key}


def binary(operator, left, right):
    return {"kind": "binary", "operator": operator, "left": left, "right": right}


def unary(operator, operand, prefix=True):
    return {"kind": "unary", "operator": operator, "operand": operand, "prefix": prefix}


def call(name, *arguments, base=None, call_kind=None, value=None, gas=None):
    node = {"kind": "call", "name": name, "arguments": list(arguments)}
    if base is not None:
        node["base"] = base
    if call_kind is not None:
        node["call_kind"] = call_kind
    if value is not None:
        node["call_value"] = value
    if gas is not None:
        node["call_gas"] = gas
    return node


def low_call(target, kind="call", *arguments, value=None, gas=None):
    """target.call{value: ...}(...) and friends"""
    if not arguments and kind in ("call", "delegatecall", "staticcall"):
        arguments = (lit("", "bytes"),)
    return call(kind, *arguments, base=target, call_kind=kind, value=value, gas=gas)


def sender():
    return member("msg", "sender")


def origin():
    return member("tx", "origin")


# statements

def expr(expression):
    return {"kind": "expression", "expression": expression}


def assign(target, value, operator="="):
    if isinstance(target, str):
        target = ident(target)
    return {"kind": "assign", "target": target, "value": value, "operator": operator}


def declare(name, type_name="uint256", value=None, storage_location=None):
    node = {"kind": "declare", "name": name, "type_name": type_name}
    if value is not None:
        node["value"] = value
    if storage_location is not None:
        node["storage_location"] = storage_location
    return node


def if_(condition, body, orelse=()):
    return {"kind": "if", "condition": condition, "body": list(body), "orelse": list(orelse)}


def while_(condition, body):
    return {"kind": "while", "condition": condition, "body": list(body)}


def for_(init, condition, update, body):
    return {"kind": "for", "init": init, "condition": condition, "update": update, "body": list(body)}


def require(condition, message=None):
    node = {"kind": "require", "condition": condition}
    if message is not None:
        node["message"] = message
    return node


def revert(message=None):
    return {"kind": "revert", "message": message}


def ret(value=None):
    node = {"kind": "return"}
    if value is not None:
        node["value"] = value
    return node


def emit(event, *arguments):
    return {"kind": "emit", "event": event, "arguments": list(arguments)}


def delete(target):
    return {"kind": "delete", "target": target}


def placeholder():
    return {"kind": "placeholder"}


def brk():
    return {"kind": "break"}


def cont():
    return {"kind": "continue"}


def stmt(kind, **fields):
    """any other statement kind, e.g. stmt("assembly")"""
    return {"kind": kind, **fields}


# declarations

def param(name, type_name="uint256", storage_location=None):
    node = {"name": name, "type_name": type_name}
    if storage_location is not None:
        node["storage_location"] = storage_location
    return node


def function(name, body=(), visibility="public", mutability="nonpayable", modifiers=(),
             parameters=(), returns=(), kind="function"):
    return {
        "name": name,
        "kind": kind,
        "visibility": visibility,
        "mutability": mutability,
        "modifiers": list(modifiers),
        "parameters": list(parameters),
        "returns": list(returns),
        "body": list(body),
    }


def state_var(name, type_name="uint256", is_constant=False, initial_value=None):
    node = {"name": name, "type_name": type_name, "is_constant": is_constant}
    if initial_value is not None:
        node["initial_value"] = initial_value
    return node


def modifier(name, body, parameters=()):
    return {"name": name, "body": list(body), "parameters": list(parameters)}


def contract(name, functions=(), state_variables=(), modifiers=(), kind="contract"):
    return {
        "name": name,
        "kind": kind,
        "functions": list(functions),
        "state_variables": list(state_variables),
        "modifiers": list(modifiers),
    }


def source_unit(*contracts):
    return {"contracts": list(contracts)}


def lower(*contracts):
    """validate and lower; returns the ir Contracts"""
    return IRLowering().lower_source_unit(parse_source_unit(source_unit(*contracts)))


def lower_one(contract_dict):
    return lower(contract_dict)[0]


# canned contracts

BALANCES = state_var("balances", "mapping(address => uint256)")


def withdraw_vulnerable(name="withdraw"):
    """reads the balance, sends it, then zeroes it"""
    return function(name, [
        declare("amount", value=index("balances", sender())),
        declare("ok", "bool", value=low_call(sender(), "call", value=ident("amount"))),
        require(ident("ok")),
        assign(index("balances", sender()), lit(0)),
    ])


def withdraw_safe(name="withdrawSafe"):
    """checks-effects-interactions order"""
    return function(name, [
        declare("amount", value=index("balances", sender())),
        assign(index("balances", sender()), lit(0)),
        declare("ok", "bool", value=low_call(sender(), "call", value=ident("amount"))),
        require(ident("ok")),
    ])


def deposit():
    return function("deposit", [
        assign(index("balances", sender()), member("msg", "value"), operator="+="),
    ], mutability="payable")


def bank(*functions, name="Bank", extra_state=()):
    return contract(name, functions=functions, state_variables=[BALANCES, *extra_state])


# solved analyses

class _NeedsAnalyses(AbstractDetector):
    ARGUMENT = "needs-analyses"

    def analyze(self, context):
        return []


def solved_context(ir_contract, *analyses, options=None, cancel_event=None):
    """AnalysisContext of `ir_contract` with `analyses` (and their requirements) solved"""
    detector = type("NeedsAnalyses", (_NeedsAnalyses,), {"REQUIRES": tuple(analyses)})()
    pipeline = DetectorPipeline(registry=DetectorRegistry(), options=options or AnalysisOptions())
    return pipeline.prepare(ir_contract, [detector], cancel_event)
