import logging
from typing import Any, Dict, List, Optional, Type, TypeVar

from pydantic import BaseModel, ValidationError

from ..error_handling import ToolValidationError

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)


def _field_name(loc) -> str:
    parts = [str(part) for part in loc]
    return ".".join(parts) if parts else "params"


def describe_errors(error: ValidationError) -> List[Dict[str, str]]:
    """One ``{"field", "message"}`` entry per failed constraint, input values omitted."""
    problems = []
    for item in error.errors(include_url=False, include_input=False):
        message = item["msg"]
        # pydantic prefixes messages raised from validators
        if message.startswith("Value error, "):
            message = message[len("Value error, ") :]
        problems.append({"field": _field_name(item["loc"]), "message": message})
    return problems


def validate_params(schema: Type[T], raw: Optional[Any]) -> T:
    """
    Validates raw tool arguments against a Pydantic model.

    Args:
        schema: The Pydantic model class declared by the tool.
        raw: The ``params`` value from the request envelope.

    Returns:
        An instance of the model if validation is successful.

    Raises:
        ToolValidationError: naming each parameter and the constraint it failed.
    """
    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ToolValidationError(
            f"Parameters must be an object, got {type(raw).__name__}",
            [{"field": "params", "message": "must be an object"}],
        )
    try:
        return schema.model_validate(raw)
    except ValidationError as e:
        problems = describe_errors(e)
        summary = "; ".join(f"{p['field']}: {p['message']}" for p in problems)
        logger.debug(f"Validation failed for {schema.__name__}: {summary}")
        raise ToolValidationError(f"Invalid parameters: {summary}", problems) from None
