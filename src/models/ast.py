"""input ast schema supplied by the compiler front-end

The core never parses source text. A front-end hands over a tree of
contracts, functions, statements and expressions (as plain dicts or as these
models); `parse_source_unit` validates it and turns structural problems into
`MalformedInput`. Statement and expression kinds the lowering does not model
are accepted here and rejected later, per function, as unsupported
constructs.
"""

from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from models.findings import MalformedInput


class SourceLocation(BaseModel):
    """position of a node in the original source"""

    model_config = ConfigDict(frozen=True)

    file: Optional[str] = None
    line: int = Field(0, ge=0)
    column: int = Field(0, ge=0)

    def __str__(self) -> str:
        prefix = f"{self.file}:" if self.file else ""
        return f"{prefix}{self.line}:{self.column}"


# required fields per expression kind; unknown kinds are left to the lowering
_EXPRESSION_REQUIREMENTS: Dict[str, tuple] = {
    "literal": (),
    "identifier": ("name",),
    "member": ("base", "name"),
    "index": ("base", "index"),
    "binary": ("operator", "left", "right"),
    "unary": ("operator", "operand"),
    "call": ("name",),
}

CALL_KINDS = ("internal", "external", "builtin", "call", "delegatecall", "staticcall", "send", "transfer")


class Expression(BaseModel):
    """expression node; which fields are meaningful depends on `kind`"""

    model_config = ConfigDict(frozen=True)

    kind: str
    value: Any = None
    type_name: Optional[str] = None
    name: Optional[str] = None
    base: Optional[Expression] = None
    index: Optional[Expression] = None
    operator: Optional[str] = None
    left: Optional[Expression] = None
    right: Optional[Expression] = None
    operand: Optional[Expression] = None
    prefix: bool = True
    arguments: List[Expression] = Field(default_factory=list)
    call_kind: Optional[Literal["internal", "external", "builtin", "call", "delegatecall", "staticcall", "send", "transfer"]] = None
    call_value: Optional[Expression] = None
    call_gas: Optional[Expression] = None
    location: Optional[SourceLocation] = None

    @model_validator(mode="after")
    def _check_required_fields(self) -> "Expression":
        for required in _EXPRESSION_REQUIREMENTS.get(self.kind, ()):
            if getattr(self, required) is None:
                raise ValueError(f"{self.kind} expression requires '{required}'")
        if self.kind == "call" and self.call_kind in ("external", "call", "delegatecall", "staticcall", "send", "transfer"):
            if self.base is None:
                raise ValueError(f"{self.call_kind} call '{self.name}' requires a target 'base'")
        return self

    @property
    def resolved_call_kind(self) -> str:
        if self.call_kind:
            return self.call_kind
        return "internal" if self.base is None else "external"


_STATEMENT_REQUIREMENTS: Dict[str, tuple] = {
    "expression": ("expression",),
    "assign": ("target", "value"),
    "declare": ("name",),
    "if": ("condition",),
    "while": ("condition",),
    "require": ("condition",),
    "assert": ("condition",),
    "emit": ("event",),
    "delete": ("target",),
}


class Statement(BaseModel):
    """statement node; which fields are meaningful depends on `kind`"""

    model_config = ConfigDict(frozen=True)

    kind: str
    expression: Optional[Expression] = None
    target: Optional[Expression] = None
    operator: str = "="
    value: Optional[Expression] = None
    name: Optional[str] = None
    type_name: Optional[str] = None
    storage_location: Optional[Literal["storage", "memory", "calldata"]] = None
    condition: Optional[Expression] = None
    body: List[Statement] = Field(default_factory=list)
    orelse: List[Statement] = Field(default_factory=list)
    init: Optional[Statement] = None
    update: Optional[Statement] = None
    message: Optional[str] = None
    event: Optional[str] = None
    arguments: List[Expression] = Field(default_factory=list)
    location: Optional[SourceLocation] = None

    @model_validator(mode="after")
    def _check_required_fields(self) -> "Statement":
        for required in _STATEMENT_REQUIREMENTS.get(self.kind, ()):
            if getattr(self, required) is None:
                raise ValueError(f"{self.kind} statement requires '{required}'")
        return self


class Parameter(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    type_name: str = "uint256"
    storage_location: Optional[Literal["storage", "memory", "calldata"]] = None


class ModifierInvocation(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    arguments: List[Expression] = Field(default_factory=list)


class ModifierDecl(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    parameters: List[Parameter] = Field(default_factory=list)
    body: List[Statement] = Field(default_factory=list)
    location: Optional[SourceLocation] = None


class FunctionDecl(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    kind: Literal["function", "constructor", "fallback", "receive"] = "function"
    visibility: Literal["public", "external", "internal", "private"] = "public"
    mutability: Literal["pure", "view", "payable", "nonpayable"] = "nonpayable"
    modifiers: List[ModifierInvocation] = Field(default_factory=list)
    parameters: List[Parameter] = Field(default_factory=list)
    returns: List[Parameter] = Field(default_factory=list)
    body: Optional[List[Statement]] = None
    location: Optional[SourceLocation] = None

    @field_validator("modifiers", mode="before")
    @classmethod
    def _modifier_names(cls, value: Any) -> Any:
        if isinstance(value, list):
            return [{"name": item} if isinstance(item, str) else item for item in value]
        return value

    @property
    def is_constructor(self) -> bool:
        return self.kind == "constructor"


class StateVariableDecl(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    type_name: str = "uint256"
    visibility: Literal["public", "external", "internal", "private"] = "internal"
    is_constant: bool = False
    is_immutable: bool = False
    initial_value: Optional[Expression] = None


class ContractDecl(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    kind: Literal["contract", "library", "interface", "abstract"] = "contract"
    state_variables: List[StateVariableDecl] = Field(default_factory=list)
    modifiers: List[ModifierDecl] = Field(default_factory=list)
    functions: List[FunctionDecl] = Field(default_factory=list)
    location: Optional[SourceLocation] = None

    @model_validator(mode="after")
    def _unique_members(self) -> "ContractDecl":
        for label, names in (
            ("function", [f.name for f in self.functions]),
            ("state variable", [v.name for v in self.state_variables]),
            ("modifier", [m.name for m in self.modifiers]),
        ):
            seen = set()
            for name in names:
                if name in seen:
                    raise ValueError(f"duplicate {label} '{name}' in contract '{self.name}'")
                seen.add(name)
        return self


class SourceUnit(BaseModel):
    model_config = ConfigDict(frozen=True)

    contracts: List[ContractDecl] = Field(default_factory=list)

    @model_validator(mode="after")
    def _unique_contracts(self) -> "SourceUnit":
        names = [c.name for c in self.contracts]
        if len(names) != len(set(names)):
            raise ValueError("duplicate contract names in source unit")
        return self


Expression.model_rebuild()
Statement.model_rebuild()


def parse_source_unit(data: Union[SourceUnit, Dict[str, Any], List[Dict[str, Any]]]) -> SourceUnit:
    """validate front-end output; raises MalformedInput on structural errors"""
    if isinstance(data, SourceUnit):
        return data
    if isinstance(data, list):
        data = {"contracts": data}
    try:
        return SourceUnit.model_validate(data)
    except ValidationError as exc:
        raise MalformedInput(f"invalid source unit: {exc}") from exc
