"""
Generic result container for all cohortsurv computations.

The Result class provides a standardized envelope that every estimator
returns. This enables shared tooling for timing, warnings, reproducibility,
and serialization while each estimator defines its own parameter payload.

Design decisions:
    - Generic over parameter payload P for type safety
    - info dict for flexible metadata (method, convergence, diagnostics)
    - timing is optional (don't burden unit tests)
    - provenance for reproducibility (library versions)
    - Immutable (frozen=True) for reproducibility
"""

from dataclasses import dataclass, field
from typing import TypeVar, Generic, Any

P = TypeVar('P')  # Parameter payload type


def _default_provenance() -> dict[str, Any]:
    """Generate minimal provenance metadata."""
    import numpy as np
    import scipy

    import cohortsurv

    return {
        'cohortsurv_version': cohortsurv.__version__,
        'numpy_version': np.__version__,
        'scipy_version': scipy.__version__,
    }


@dataclass(frozen=True)
class Result(Generic[P]):
    """
    Immutable result envelope for statistical computations.

    Type Parameters:
        P: The estimator-specific parameter payload type

    Attributes:
        params: Estimator-specific parameters (curves, coefficients, tests)
        info: Structured metadata (method, convergence, diagnostics)
        timing: Execution timing breakdown, or None if not measured
        backend_name: Identifier of the code path that produced this result
        warnings: Non-fatal issues encountered during computation
        provenance: Reproducibility metadata (library versions)

    Examples:
        >>> # Direct method (no convergence notion)
        >>> Result(
        ...     params=km_params,
        ...     info={'method': 'Kaplan-Meier'},
        ...     timing={'total_seconds': 0.01},
        ...     backend_name='cpu_km'
        ... )

        >>> # Iterative method
        >>> Result(
        ...     params=cox_params,
        ...     info={'method': 'Cox PH', 'status': 'converged', 'n_iter': 5},
        ...     timing={'total_seconds': 0.05},
        ...     backend_name='cpu_cox'
        ... )
    """
    params: P
    info: dict[str, Any]
    timing: dict[str, float] | None
    backend_name: str
    warnings: tuple[str, ...] = field(default_factory=tuple)
    provenance: dict[str, Any] = field(default_factory=_default_provenance)

    def has_warning(self, substring: str) -> bool:
        """Check if any warning contains the given substring."""
        return any(substring in w for w in self.warnings)
