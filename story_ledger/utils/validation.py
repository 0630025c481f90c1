"""Input validation utilities for services and agents.

Each helper raises a clear ValueError or TypeError for invalid input so
callers fail before any model call or database write is attempted.
"""


def validate_not_none(value, param_name: str):
    """Validate that a required parameter is not None.

    Raises:
        ValueError: If value is None
    """
    if value is None:
        raise ValueError(f"Parameter '{param_name}' cannot be None")


def validate_not_empty(value: str | None, param_name: str) -> None:
    """Validate that a string parameter is not None or blank.

    Args:
        value: The string value to validate
        param_name: Name of the parameter for error messages

    Raises:
        ValueError: If value is None, empty string, or only whitespace
        TypeError: If value is not a string
    """
    if value is None:
        raise ValueError(f"Parameter '{param_name}' cannot be None")
    if not isinstance(value, str):
        raise TypeError(f"Parameter '{param_name}' must be a string, got {type(value).__name__}")
    if not value.strip():
        raise ValueError(f"Parameter '{param_name}' cannot be empty")


def validate_positive(value: int | float | None, param_name: str) -> None:
    """Validate that a numeric parameter is strictly positive.

    Raises:
        ValueError: If value is None or not positive
        TypeError: If value is not int or float
    """
    if value is None:
        raise ValueError(f"Parameter '{param_name}' cannot be None")
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise TypeError(f"Parameter '{param_name}' must be numeric, got {type(value).__name__}")
    if value <= 0:
        raise ValueError(f"Parameter '{param_name}' must be positive, got {value}")


def validate_unit_index(value: int | None, param_name: str = "unit_index") -> None:
    """Validate a 1-based unit (chapter) index.

    Raises:
        ValueError: If value is None or below 1
        TypeError: If value is not an int
    """
    if value is None:
        raise ValueError(f"Parameter '{param_name}' cannot be None")
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"Parameter '{param_name}' must be an int, got {type(value).__name__}")
    if value < 1:
        raise ValueError(f"Parameter '{param_name}' must be >= 1, got {value}")
