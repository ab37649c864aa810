"""Request methods understood by the Twelve Data ``complex_data`` endpoint.

A method is either a bare name (``SimpleMethod("time_series")``) or a name with
parameters (``ComplexMethod("atr", {"time_period": 14})``).
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Sequence, Union


@dataclass(frozen=True)
class SimpleMethod:
    name: str


@dataclass(frozen=True)
class ComplexMethod:
    name: str
    params: Dict[str, Any] = field(default_factory=dict)


Method = Union[SimpleMethod, ComplexMethod]

TIME_SERIES = SimpleMethod("time_series")


def serialize_method(method: Method) -> Union[str, Dict[str, Any]]:
    """Serializes one method into its JSON payload form."""
    if isinstance(method, SimpleMethod):
        return method.name
    if isinstance(method, ComplexMethod):
        return {"name": method.name, **method.params}
    raise TypeError(f"Unsupported method type: {type(method).__name__}")


def serialize_methods(methods: Sequence[Method]) -> List[Union[str, Dict[str, Any]]]:
    return [serialize_method(method) for method in methods]
