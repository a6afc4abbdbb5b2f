"""
Unit templates.

One generic "deploy contract with constructor args" definition and one
generic "call method with resolved args" definition, instantiated per
contract / per initialization call instead of hand-copied deploy scripts.

Usage:
    from dorch.templates import deploy_unit, call_unit
    from dorch.schemas import unit_ref

    registry.register(deploy_unit("Controller", args=["@account.deployer"]))
    registry.register(deploy_unit(
        "ASTOStorage",
        contract="StakingStorage",
        args=[unit_ref("Controller")],
    ))
    registry.register(call_unit(
        "ControllerInit",
        target="Controller",
        method="init",
        args=[unit_ref("ASTOStorage")],
    ))
"""

from typing import Any, Iterable, Optional, Sequence

from dorch.schemas import CallAction, ContractRef, DeployAction, Unit, DEFAULT_SENDER


def deploy_unit(
    name: str,
    contract: Optional[str] = None,
    args: Sequence[Any] = (),
    dependencies: Iterable[str] = (),
    tags: Optional[Iterable[str]] = None,
    sender: str = DEFAULT_SENDER,
    timeout_s: Optional[int] = None,
    description: str = "",
    once: Optional[bool] = None,
) -> Unit:
    """
    Build a Deploy unit.

    Args:
        name: Deployment name (also the default contract name)
        contract: Contract interface name when it differs from `name`
        args: Constructor args, may contain @unit.* / @account.* refs
        dependencies: Extra dependencies beyond the ones implied by args
        tags: Selection tags (default: {name})
        sender: Named account submitting the deployment
        timeout_s: Confirmation timeout override
        description: Free text
        once: False redeploys on every run (default: deploy once)
    """
    return Unit(
        name=name,
        action=DeployAction(contract=ContractRef(contract or name), args=tuple(args)),
        dependencies=tuple(dependencies),
        tags=frozenset(tags) if tags is not None else frozenset({name}),
        sender=sender,
        timeout_s=timeout_s,
        description=description,
        once=once,
    )


def call_unit(
    name: str,
    target: str,
    method: str,
    args: Sequence[Any] = (),
    dependencies: Iterable[str] = (),
    tags: Optional[Iterable[str]] = None,
    once: Optional[bool] = None,
    sender: str = DEFAULT_SENDER,
    timeout_s: Optional[int] = None,
    description: str = "",
) -> Unit:
    """
    Build a Call unit.

    The target unit is an implicit dependency. Calls are not tracked unless
    `once` is True.
    """
    return Unit(
        name=name,
        action=CallAction(target=target, method=method, args=tuple(args)),
        dependencies=tuple(dependencies),
        tags=frozenset(tags) if tags is not None else frozenset({name}),
        once=once,
        sender=sender,
        timeout_s=timeout_s,
        description=description,
    )
