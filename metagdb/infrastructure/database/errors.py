from typing import Any, Sequence


class UpsertError(Exception):
    """Base class for everything raised by the upsert engine."""


class ArgumentCountError(UpsertError, TypeError):
    """A required argument was not supplied."""


class ArgumentValueError(UpsertError, ValueError):
    """An argument is present but empty, of the wrong kind or out of range."""


class ArityMismatchError(UpsertError, ValueError):
    """Value counts do not line up with their field names."""


class StoreError(UpsertError):
    """Failure reported by PostgreSQL while executing a statement."""

    def __init__(self, message: str, statement: str | None = None, params: Sequence[Any] | None = None):
        super().__init__(message)
        self.statement = statement
        self.params = list(params) if params is not None else []

    def __str__(self) -> str:
        msg = super().__str__()
        if self.statement:
            msg = f"{msg}\nSTATEMENT: {self.statement}"
        return msg
