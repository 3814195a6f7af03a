"""RuntimeContainer — per-run key/value configuration injected into steps and tools.

A container is created fresh for every run with ``create_run()`` and thrown
away when the run ends; nothing is shared between runs.  An optional pydantic
model describes the keys a run may carry and their types, and ``set``
validates against it strictly so a shape mismatch fails at write time rather
than deep inside a consuming step::

    class TenantRuntime(BaseModel):
        tenant_id: str
        multiplier: int

    with create_run(TenantRuntime, tenant_id="acme") as run:
        run.set("multiplier", 3)
        run.get("multiplier")      # 3
        run.get("missing")         # InvalidArgument: not in the schema
"""

from __future__ import annotations

import uuid
from functools import cache
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from pydantic import BaseModel, TypeAdapter, ValidationError

from threadmem.errors import ConfigurationMissing, InvalidArgument

if TYPE_CHECKING:
    from collections.abc import Iterator

SchemaT = TypeVar("SchemaT", bound=BaseModel)

_MISSING = object()


class MemoryRuntime(BaseModel):
    """Keys the memory tools read from the run's container."""

    thread_id: str
    resource_id: str


@cache
def _adapter(annotation: Any) -> TypeAdapter:
    return TypeAdapter(annotation)


class RuntimeContainer(Generic[SchemaT]):
    """Typed, mutable bag of values scoped to a single run."""

    def __init__(self, schema: type[SchemaT] | None = None, run_id: str | None = None) -> None:
        self.schema = schema
        self.run_id = run_id or uuid.uuid4().hex
        self._values: dict[str, Any] = {}

    def __repr__(self) -> str:
        name = self.schema.__name__ if self.schema else "untyped"
        return f"RuntimeContainer({name}, run_id={self.run_id!r}, keys={sorted(self._values)})"

    # -- Validation ------------------------------------------------------------

    def _check_key(self, key: str) -> None:
        if not key:
            msg = "runtime key must not be empty"
            raise InvalidArgument(msg)
        if self.schema is not None and key not in self.schema.model_fields:
            msg = f"{key!r} is not declared by {self.schema.__name__}"
            raise InvalidArgument(msg)

    def _validate(self, key: str, value: Any) -> Any:
        if self.schema is None:
            return value
        annotation = self.schema.model_fields[key].annotation
        try:
            return _adapter(annotation).validate_python(value, strict=True)
        except ValidationError as exc:
            msg = f"{self.schema.__name__}.{key} rejected {value!r}: {exc.errors()[0]['msg']}"
            raise InvalidArgument(msg) from exc

    # -- Access ----------------------------------------------------------------

    def set(self, key: str, value: Any) -> None:
        self._check_key(key)
        self._values[key] = self._validate(key, value)

    def get(self, key: str) -> Any:
        """Return the value for *key*.

        Raises ``ConfigurationMissing`` if the run never set it; readers that
        can cope with absence should use ``get_or`` and name their fallback.
        """
        self._check_key(key)
        value = self._values.get(key, _MISSING)
        if value is _MISSING:
            msg = f"runtime key {key!r} was not set for run {self.run_id}"
            raise ConfigurationMissing(msg)
        return value

    def get_or(self, key: str, default: Any) -> Any:
        self._check_key(key)
        return self._values.get(key, default)

    def has(self, key: str) -> bool:
        return key in self._values

    def delete(self, key: str) -> bool:
        return self._values.pop(key, _MISSING) is not _MISSING

    def keys(self) -> list[str]:
        return list(self._values)

    def as_dict(self) -> dict[str, Any]:
        """Shallow copy of the current values."""
        return dict(self._values)

    def clear(self) -> None:
        self._values.clear()

    def __contains__(self, key: object) -> bool:
        return key in self._values

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._values))

    def __len__(self) -> int:
        return len(self._values)

    # -- Lifetime --------------------------------------------------------------

    def __enter__(self) -> RuntimeContainer[SchemaT]:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.clear()


def create_run(schema: type[SchemaT] | None = None, **initial: Any) -> RuntimeContainer[SchemaT]:
    """Create the container for a new run, optionally pre-populated."""
    container: RuntimeContainer[SchemaT] = RuntimeContainer(schema)
    for key, value in initial.items():
        container.set(key, value)
    return container
