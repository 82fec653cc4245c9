"""
Exception classes for weno_fv with helpful error messages and user guidance.

Fatal conditions of the stencil preprocessing (stencil too small, singular
least-squares system, polynomial order incompatible with the local mesh
dimensionality) are deterministic: retrying reproduces them. They are raised
as subclasses of :class:`WENOError` carrying structured diagnostic data.
"""

from __future__ import annotations

from typing import Any


class WENOError(Exception):
    """
    Base exception for weno_fv errors with context and suggestions.

    The formatted message contains:
    - the component that raised it
    - a clear error description
    - an optional suggested action and error code
    - optional diagnostic data
    """

    def __init__(
        self,
        message: str,
        component: str | None = None,
        suggested_action: str | None = None,
        error_code: str | None = None,
        diagnostic_data: dict[str, Any] | None = None,
    ):
        self.component = component or "weno_fv"
        self.suggested_action = suggested_action
        self.error_code = error_code
        self.diagnostic_data = diagnostic_data or {}

        full_message = f"[{self.component}] {message}"

        if self.suggested_action:
            full_message += f"\nSuggestion: {self.suggested_action}"

        if self.error_code:
            full_message += f"\nError Code: {self.error_code}"

        if self.diagnostic_data:
            full_message += "\nDiagnostic Information:"
            for key, value in self.diagnostic_data.items():
                full_message += f"\n   - {key}: {value}"

        super().__init__(full_message)


class StencilConstructionError(WENOError):
    """Raised when a central stencil cannot reach its required size."""

    def __init__(
        self,
        cell_id: int,
        stencil_size: int,
        required_size: int,
        layers_used: int,
        polynomial_order: int,
    ):
        self.cell_id = cell_id
        diagnostic_data = {
            "cell": cell_id,
            "stencil_size": stencil_size,
            "required_size": required_size,
            "layers_used": layers_used,
            "polynomial_order": polynomial_order,
        }
        super().__init__(
            message=f"Stencil of cell {cell_id} holds {stencil_size} cells, {required_size} required",
            component="StencilBuilder",
            suggested_action=(
                "Reduce the polynomial order, refine the mesh, or raise max_extension_layers"
            ),
            error_code="STENCIL_TOO_SMALL",
            diagnostic_data=diagnostic_data,
        )


class SingularStencilError(WENOError):
    """Raised when the least-squares design matrix of a stencil is rank deficient."""

    def __init__(
        self,
        cell_id: int,
        rank: int,
        n_basis: int,
        condition_number: float,
    ):
        self.cell_id = cell_id
        diagnostic_data = {
            "cell": cell_id,
            "rank": rank,
            "n_basis": n_basis,
            "condition_number": f"{condition_number:.3e}",
        }
        super().__init__(
            message=f"Least-squares system of cell {cell_id} is singular",
            component="StencilBuilder",
            suggested_action="Check for degenerate cells or collinear stencil centres; lower the order",
            error_code="SINGULAR_LEAST_SQUARES",
            diagnostic_data=diagnostic_data,
        )


class DimensionalityError(WENOError):
    """Raised when the polynomial order cannot be represented in the local mesh dimensionality."""

    def __init__(self, cell_id: int, polynomial_order: int, active_dims: tuple[int, ...]):
        self.cell_id = cell_id
        super().__init__(
            message=(
                f"Polynomial order {polynomial_order} requested but stencil of cell {cell_id} "
                f"spans no spatial direction"
            ),
            component="StencilBuilder",
            suggested_action="Use polynomial order 0 or a mesh with neighbouring cells",
            error_code="ORDER_DIMENSION_MISMATCH",
            diagnostic_data={"cell": cell_id, "active_dims": active_dims},
        )


class ConfigurationError(WENOError):
    """Exception raised when a scheme configuration is invalid."""

    def __init__(
        self,
        parameter_name: str,
        provided_value: Any,
        expected_type: type | None = None,
        valid_range: tuple | None = None,
        component: str | None = None,
        reason: str | None = None,
    ):
        diagnostic_data = {
            "parameter": parameter_name,
            "provided_value": str(provided_value),
            "provided_type": type(provided_value).__name__,
        }

        if expected_type:
            diagnostic_data["expected_type"] = expected_type.__name__

        if valid_range:
            diagnostic_data["valid_range"] = f"[{valid_range[0]}, {valid_range[1]}]"

        suggested_action = reason or _generate_configuration_suggestions(
            parameter_name, provided_value, expected_type, valid_range
        )

        super().__init__(
            message=f"Invalid configuration for parameter '{parameter_name}'",
            component=component,
            suggested_action=suggested_action,
            error_code="INVALID_CONFIGURATION",
            diagnostic_data=diagnostic_data,
        )


class DimensionMismatchError(WENOError):
    """Exception raised when array dimensions don't match expected values."""

    def __init__(
        self,
        array_name: str,
        provided_shape: tuple,
        expected_shape: tuple,
        component: str | None = None,
        context: str | None = None,
    ):
        diagnostic_data = {
            "array_name": array_name,
            "provided_shape": str(provided_shape),
            "expected_shape": str(expected_shape),
            "dimension_mismatch": _describe_dimension_mismatch(provided_shape, expected_shape),
        }

        if context:
            diagnostic_data["context"] = context

        super().__init__(
            message=f"Dimension mismatch for {array_name}",
            component=component,
            suggested_action=f"Provide {array_name} with leading shape {expected_shape}",
            error_code="DIMENSION_MISMATCH",
            diagnostic_data=diagnostic_data,
        )


class GeometryNotBuiltError(WENOError):
    """Raised when the stencil geometry is accessed before it was loaded or built."""

    def __init__(self, operation_attempted: str):
        super().__init__(
            message=f"Cannot perform '{operation_attempted}' - stencil geometry is not bound",
            component="GeometryCache",
            suggested_action="Call load_or_build() first",
            error_code="GEOMETRY_NOT_BUILT",
            diagnostic_data={"attempted_operation": operation_attempted},
        )


def _generate_configuration_suggestions(
    parameter_name: str,
    provided_value: Any,
    expected_type: type | None,
    valid_range: tuple | None,
) -> str:
    """Generate specific suggestions for configuration errors."""

    suggestions = []

    if expected_type and not isinstance(provided_value, expected_type):
        suggestions.append(f"Convert {parameter_name} to {expected_type.__name__}")

    if valid_range and isinstance(provided_value, (int, float)):
        if provided_value < valid_range[0]:
            suggestions.append(f"Increase {parameter_name} to at least {valid_range[0]}")
        elif provided_value > valid_range[1]:
            suggestions.append(f"Decrease {parameter_name} to at most {valid_range[1]}")

    return " | ".join(suggestions) if suggestions else f"Check {parameter_name} value and try again"


def _describe_dimension_mismatch(provided_shape: tuple, expected_shape: tuple) -> str:
    """Describe the specific nature of dimension mismatch."""

    if len(provided_shape) < len(expected_shape):
        return f"Too few dimensions: got {len(provided_shape)}, expected at least {len(expected_shape)}"

    mismatches = []
    for i, (provided, expected) in enumerate(zip(provided_shape, expected_shape, strict=False)):
        if provided != expected:
            mismatches.append(f"axis {i}: got {provided}, expected {expected}")

    return " | ".join(mismatches) if mismatches else "trailing dimensions not supported"


__all__ = [
    "ConfigurationError",
    "DimensionMismatchError",
    "DimensionalityError",
    "GeometryNotBuiltError",
    "SingularStencilError",
    "StencilConstructionError",
    "WENOError",
]
