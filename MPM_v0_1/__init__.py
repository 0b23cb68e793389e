# MPM v0.1 - Multivariate Post-Matching for one-hot encoded imputations
# Re-imputes dummy column groups jointly so every factor keeps a single level

from .container import BinarizeParams, MidsContainer
from .encoding import FactorizedResult, binarize, factorize
from .exceptions import (
    ConsistencyError,
    DataCoverageError,
    DomainError,
    PostMatchingError,
    SchemaError,
    StateError,
)
from .matching import post_matching
from .mice import MICEEngine
from .validation import MatchingOptions

__version__ = "0.1.0"
__all__ = [
    "MidsContainer",
    "BinarizeParams",
    "FactorizedResult",
    "MICEEngine",
    "MatchingOptions",
    "binarize",
    "factorize",
    "post_matching",
    "PostMatchingError",
    "SchemaError",
    "DomainError",
    "ConsistencyError",
    "DataCoverageError",
    "StateError",
]
