"""Non-error results of a sign-in attempt. Failures are raised as SigninError."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, ClassVar, Union


@dataclass
class Artifact:
    """Terminal artifact produced by the dispatcher."""

    response_type: str
    data: Any
    data2: Any = None


@dataclass
class Success:
    name: ClassVar[str] = "success"

    artifact: Artifact
    user_id: str


@dataclass
class SelectPlan:
    """Paid-tier user must pick (or wait for) a plan before signing in."""

    name: ClassVar[str] = "select_plan"

    pricing: dict[str, Any] | None = None
    subscription: dict[str, Any] | None = None


@dataclass
class AwaitMfaChallenge:
    name: ClassVar[str] = "await_mfa_challenge"

    params: dict[str, Any] = field(default_factory=dict)


@dataclass
class PromptMfaSetup:
    name: ClassVar[str] = "prompt_mfa_setup"

    user_id: str


Outcome = Union[Success, SelectPlan, AwaitMfaChallenge, PromptMfaSetup]
