"""Contract Validation: validate(data) -> list of (path, message), never raises.

Invariants:
    - validate_* always returns a list (empty == valid); no uncontrolled exception escapes
    - parse_* returns the model or raises ContractViolationError carrying the same list
    - Paths are dotted locations from the payload root ("$" for the root itself)

Design Decisions:
    - pydantic ValidationError mapped to ContractError records: callers persist them
      as JSON in side-channel meta payloads
"""

from dataclasses import dataclass
from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError

from decisioning.core.errors import ContractViolationError, ErrorContext
from decisioning.schemas.decision_input import DecisionInput
from decisioning.schemas.decision_plan import DecisionPlan
from decisioning.schemas.email_facts import EmailFacts

ModelT = TypeVar("ModelT", bound=BaseModel)


@dataclass(frozen=True)
class ContractError:
    """One validation failure at a payload location."""
    path: str
    message: str

    def to_dict(self) -> dict:
        return {"path": self.path, "message": self.message}


def contract_dump(model: BaseModel) -> dict:
    """JSON-safe dict of a contract model, with wire aliases applied."""
    return model.model_dump(mode="json", by_alias=True)


def _errors_from(exc: ValidationError) -> list[ContractError]:
    errors = []
    for e in exc.errors():
        path = ".".join(str(loc) for loc in e["loc"]) or "$"
        errors.append(ContractError(path=path, message=e["msg"]))
    return errors


def _validate(model_cls: type[BaseModel], data: Any) -> list[ContractError]:
    if isinstance(data, BaseModel):
        data = contract_dump(data)
    if not isinstance(data, dict):
        return [ContractError(path="$", message="expected a JSON object")]
    try:
        model_cls.model_validate(data)
    except ValidationError as e:
        return _errors_from(e)
    return []


def _parse(
    model_cls: type[ModelT], data: Any, context: ErrorContext | None = None,
) -> ModelT:
    if isinstance(data, BaseModel):
        data = contract_dump(data)
    try:
        return model_cls.model_validate(data)
    except ValidationError as e:
        raise ContractViolationError(
            model_cls.__name__, [err.to_dict() for err in _errors_from(e)], context,
        ) from e


def validate_email_facts(data: Any) -> list[ContractError]:
    return _validate(EmailFacts, data)


def validate_decision_input(data: Any) -> list[ContractError]:
    return _validate(DecisionInput, data)


def validate_decision_plan(data: Any) -> list[ContractError]:
    return _validate(DecisionPlan, data)


def parse_email_facts(data: Any, context: ErrorContext | None = None) -> EmailFacts:
    return _parse(EmailFacts, data, context)


def parse_decision_input(data: Any, context: ErrorContext | None = None) -> DecisionInput:
    return _parse(DecisionInput, data, context)


def parse_decision_plan(data: Any, context: ErrorContext | None = None) -> DecisionPlan:
    return _parse(DecisionPlan, data, context)
