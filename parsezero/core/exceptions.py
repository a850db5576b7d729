from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union


@dataclass
class ErrorDetail:
    message: str
    code: str

    def __str__(self) -> str:
        return self.message

    def __repr__(self) -> str:
        return f"ErrorDetail(message={self.message!r}, code={self.code!r})"


class ParseZeroError(Exception):
    """Base exception for all parsezero errors."""

    default_detail: Union[str, Dict, List] = "An error occurred."
    default_code: str = "error"

    def __init__(
        self,
        detail: Optional[Union[str, Dict, List]] = None,
        code: Optional[str] = None,
    ):
        detail = detail if detail is not None else self.default_detail
        self.detail = self._normalize_detail(detail, code or self.default_code)
        super().__init__(str(self.detail))

    def _normalize_detail(
        self, detail: Union[str, Dict, List], code: Optional[str]
    ) -> Union[ErrorDetail, Dict, List]:
        """Convert details to ErrorDetail objects recursively."""
        if isinstance(detail, str):
            return ErrorDetail(detail, code or self.default_code)
        elif isinstance(detail, dict):
            return {
                key: self._normalize_detail(value, code)
                for key, value in detail.items()
            }
        elif isinstance(detail, list):
            return [self._normalize_detail(item, code) for item in detail]
        return detail


class InvalidConstraintError(ParseZeroError):
    """Error raised when a constraint value does not fit its operator."""

    default_detail = "Invalid constraint value."
    default_code = "invalid_constraint"

    def __init__(self, detail: Optional[str] = None):
        super().__init__(detail, self.default_code)


class UnsupportedOperatorError(ParseZeroError):
    """Error raised for an operator name with no registered constraint."""

    default_detail = "Unsupported query operator."
    default_code = "unsupported_operator"

    def __init__(self, detail: Optional[str] = None):
        super().__init__(detail, self.default_code)


class DuplicatePropertyError(ParseZeroError):
    """Error raised when a property or its remote field is declared twice."""

    default_detail = "Property already defined."
    default_code = "duplicate_property"

    def __init__(self, detail: Optional[str] = None):
        super().__init__(detail, self.default_code)


class RecordNotSavedError(ParseZeroError):
    """Error raised when a record could not be persisted. Carries the record."""

    default_detail = "Record was not saved."
    default_code = "record_not_saved"

    def __init__(self, record: Any, detail: Optional[str] = None):
        self.record = record
        super().__init__(detail, self.default_code)


class IllegalStateError(ParseZeroError):
    """Error raised when an operation is attempted in a state that forbids it."""

    default_detail = "Illegal state."
    default_code = "illegal_state"

    def __init__(self, detail: Optional[str] = None):
        super().__init__(detail, self.default_code)


class UnsupportedChainError(ParseZeroError, AttributeError):
    """Error raised for an unknown chained call on a query."""

    default_detail = "Unsupported query chain."
    default_code = "unsupported_chain"

    def __init__(self, detail: Optional[str] = None):
        super().__init__(detail, self.default_code)


class ConfigError(Exception):
    """Error raised for configuration and registry issues."""
    pass
