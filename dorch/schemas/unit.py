"""
Unit schema - the declarative deployment step.

A Unit is a named step with dependencies and a single action:
- DeployAction: instantiate a compiled contract with constructor args
- CallAction: invoke a method on an already-deployed unit

Action args may contain symbolic values that are resolved at execution time:
- "@unit.<Name>" / "@unit.<Name>.address": deployed address of another unit
- "@account.<name>": address of a named account (deployer, agent, ...)
- {"ether": "<decimal>"}: integer amount of wei

@unit references double as dependency edges, so the graph a registry
describes is the one the executor needs.
"""

import re
from dataclasses import dataclass, field
from typing import Any, Optional, Union

from dorch.errors import UnitValidationError


NAME_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

# Reference patterns (full-string values only)
UNIT_REF_PATTERN = re.compile(r"^@unit\.([A-Za-z_][A-Za-z0-9_]*)(?:\.address)?$")
ACCOUNT_REF_PATTERN = re.compile(r"^@account\.([A-Za-z_][A-Za-z0-9_]*)$")

DEFAULT_SENDER = "deployer"


def unit_ref(name: str) -> str:
    """Build the symbolic reference to a unit's deployed address."""
    return f"@unit.{name}"


def account_ref(name: str) -> str:
    """Build the symbolic reference to a named account."""
    return f"@account.{name}"


def find_unit_refs(value: Any) -> list[str]:
    """
    Collect unit names referenced by @unit.* values, in first-seen order.

    Args:
        value: Arg value (str, list, tuple, dict or primitive)

    Returns:
        Unique referenced unit names
    """
    found: list[str] = []

    def _walk(v: Any) -> None:
        if isinstance(v, str):
            match = UNIT_REF_PATTERN.match(v)
            if match and match.group(1) not in found:
                found.append(match.group(1))
        elif isinstance(v, dict):
            for item in v.values():
                _walk(item)
        elif isinstance(v, (list, tuple)):
            for item in v:
                _walk(item)

    _walk(value)
    return found


@dataclass(frozen=True)
class ContractRef:
    """
    Identity of a compiled contract interface.

    Distinct from the unit name: the same interface can be deployed several
    times under different unit names (ASTOStorage and LPStorage are both
    StakingStorage instances).
    """
    contract_name: str

    def __post_init__(self):
        if not self.contract_name:
            raise UnitValidationError("contract_name must not be empty")


@dataclass(frozen=True)
class DeployAction:
    """Deploy `contract` with constructor `args`."""
    contract: ContractRef
    args: tuple = ()

    kind = "deploy"

    def __post_init__(self):
        object.__setattr__(self, "args", tuple(self.args))

    @property
    def contract_name(self) -> str:
        return self.contract.contract_name


@dataclass(frozen=True)
class CallAction:
    """Call `method` on the contract deployed by unit `target`."""
    target: str
    method: str
    args: tuple = ()

    kind = "call"

    def __post_init__(self):
        if not self.target:
            raise UnitValidationError("Call target must not be empty")
        if not self.method:
            raise UnitValidationError("Call method must not be empty")
        object.__setattr__(self, "args", tuple(self.args))


Action = Union[DeployAction, CallAction]


@dataclass(frozen=True)
class Unit:
    """
    A named deployment step.

    Attributes:
        name: Unique identifier within a registry (also the deployment name)
        action: DeployAction or CallAction
        dependencies: Units that must be executed before this one
        tags: Labels for coarse selection
        once: Idempotency predicate. None uses the action default
              (deploys are tracked, calls are not)
        sender: Named account submitting the transaction
        timeout_s: Confirmation timeout override (network default if None)
        description: Free text for operators
    """
    name: str
    action: Action
    dependencies: tuple[str, ...] = ()
    tags: frozenset[str] = field(default_factory=frozenset)
    once: Optional[bool] = None
    sender: str = DEFAULT_SENDER
    timeout_s: Optional[int] = None
    description: str = ""

    def __post_init__(self):
        if not self.name:
            raise UnitValidationError("Unit name must not be empty")
        if not NAME_PATTERN.match(self.name):
            raise UnitValidationError(
                f"Invalid unit name '{self.name}': use letters, digits and underscores"
            )
        object.__setattr__(self, "dependencies", tuple(self.dependencies))
        object.__setattr__(self, "tags", frozenset(self.tags))

        if self.name in self.dependencies:
            raise UnitValidationError(f"Unit '{self.name}' depends on itself")
        if self.name in self.referenced_units:
            raise UnitValidationError(f"Unit '{self.name}' references its own address")
        if self.timeout_s is not None and self.timeout_s <= 0:
            raise UnitValidationError(f"Unit '{self.name}': timeout_s must be positive")

    @property
    def is_deploy(self) -> bool:
        return isinstance(self.action, DeployAction)

    @property
    def is_call(self) -> bool:
        return isinstance(self.action, CallAction)

    @property
    def idempotent(self) -> bool:
        """Whether an existing record for this unit satisfies it."""
        if self.once is not None:
            return self.once
        return self.is_deploy

    @property
    def referenced_units(self) -> list[str]:
        """Units whose addresses this unit's action needs."""
        refs = []
        if isinstance(self.action, CallAction):
            refs.append(self.action.target)
        for name in find_unit_refs(self.action.args):
            if name not in refs:
                refs.append(name)
        return refs

    @property
    def effective_dependencies(self) -> list[str]:
        """Declared dependencies followed by implicit (referenced) ones."""
        deps = list(dict.fromkeys(self.dependencies))
        for name in self.referenced_units:
            if name not in deps:
                deps.append(name)
        return deps

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary for JSON/YAML output."""
        if isinstance(self.action, DeployAction):
            action = {
                "deploy": {
                    "contract": self.action.contract_name,
                    "args": list(self.action.args),
                }
            }
        else:
            action = {
                "call": {
                    "target": self.action.target,
                    "method": self.action.method,
                    "args": list(self.action.args),
                }
            }
        result: dict[str, Any] = {"name": self.name, **action}
        if self.dependencies:
            result["dependencies"] = list(self.dependencies)
        if self.tags:
            result["tags"] = sorted(self.tags)
        if self.once is not None:
            result["once"] = self.once
        if self.sender != DEFAULT_SENDER:
            result["from"] = self.sender
        if self.timeout_s is not None:
            result["timeout_s"] = self.timeout_s
        if self.description:
            result["description"] = self.description
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Unit":
        """
        Deserialize from dictionary.

        Raises:
            UnitValidationError: If the mapping is not a valid unit
        """
        if not isinstance(data, dict):
            raise UnitValidationError(f"Unit definition must be a mapping, got {type(data).__name__}")
        name = data.get("name")
        if not name:
            raise UnitValidationError(f"Unit definition missing 'name': {data}")

        if ("deploy" in data) == ("call" in data):
            raise UnitValidationError(f"Unit '{name}' must define exactly one of 'deploy' or 'call'")

        if "deploy" in data:
            deploy = data["deploy"] or {}
            action: Action = DeployAction(
                contract=ContractRef(deploy.get("contract", name)),
                args=tuple(deploy.get("args", [])),
            )
        else:
            call = data["call"] or {}
            if "target" not in call or "method" not in call:
                raise UnitValidationError(f"Unit '{name}': call requires 'target' and 'method'")
            action = CallAction(
                target=call["target"],
                method=call["method"],
                args=tuple(call.get("args", [])),
            )

        tags = data.get("tags")
        if isinstance(tags, str):
            tags = [tags]

        return cls(
            name=name,
            action=action,
            dependencies=tuple(data.get("dependencies", [])),
            tags=frozenset(tags or []),
            once=data.get("once"),
            sender=data.get("from", DEFAULT_SENDER),
            timeout_s=data.get("timeout_s"),
            description=data.get("description", ""),
        )
