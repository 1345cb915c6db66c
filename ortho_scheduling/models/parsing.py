"""
Boundary parsing helpers.

Turns raw payloads into validated models and converts pydantic's
ValidationError into the domain error, flattening every violation into
{"loc": ..., "msg": ...} entries so callers can report them all at once.
"""

from typing import Any, Dict, List, Type, TypeVar

from pydantic import BaseModel, ValidationError

from ..exceptions import SchedulingError

ModelT = TypeVar("ModelT", bound=BaseModel)


class ViolationList(ValueError):
    """
    Several cross-field violations raised from one model validator.

    Pydantic wraps it in a single error entry; flatten_errors() unpacks it.
    """

    def __init__(self, violations: List[Dict[str, str]]):
        self.violations = violations
        super().__init__("; ".join(v["msg"] for v in violations))


def violation(loc: str, msg: str) -> Dict[str, str]:
    return {"loc": loc, "msg": msg}


def flatten_errors(exc: ValidationError) -> List[Dict[str, str]]:
    """Flatten a ValidationError into a list of loc/msg entries."""
    flattened: List[Dict[str, str]] = []
    for error in exc.errors():
        inner = (error.get("ctx") or {}).get("error")
        if isinstance(inner, ViolationList):
            prefix = ".".join(str(part) for part in error["loc"])
            for item in inner.violations:
                loc = f"{prefix}.{item['loc']}" if prefix else item["loc"]
                flattened.append(violation(loc, item["msg"]))
            continue
        loc = ".".join(str(part) for part in error["loc"]) or "__root__"
        flattened.append(violation(loc, error["msg"]))
    return flattened


def parse_model(
    model_cls: Type[ModelT],
    payload: Any,
    error_cls: Type[SchedulingError],
) -> ModelT:
    """
    Validate a payload against a model.

    Args:
        model_cls: Pydantic model to build
        payload: Dict (or model instance) from the request boundary
        error_cls: Domain error raised with the flattened violations

    Raises:
        error_cls: With every violation found
    """
    if isinstance(payload, model_cls):
        return payload
    try:
        return model_cls.model_validate(payload)
    except ValidationError as e:
        raise error_cls(flatten_errors(e)) from e
