# core modules
from .core import (
    UncertainArray,
    MeasurementOperator,
    AdaptiveDamping,
    DampingScheduleConfig,
    mse,
    nmse,
    psnr,
    support_error,
    db,
    PrecisionMode,
    MessageMode,
    EMMode,
    TailEvaluation,
    EstimatorState,
    ConfigurationError,
    NumericalDegeneracyWarning,
    DivergenceWarning,
    Diagnostic,
)

# Backend control (set_backend, get_backend)
from .core.backend import set_backend, get_backend

from .core.linalg_utils import (
    resize_param,
    random_normal_array,
    sparse_random_array,
    gaussian_sensing_matrix,
    random_orthogonal_matrix,
)

# Quantizers
from .quantizer import Quantizer, PassThroughQuantizer, uniform_quantizer

# Priors
from .prior import (
    Prior,
    LaplacianPrior,
    LaplacianParams,
    GaussBernoulliPrior,
    GaussBernoulliParams,
)

# Observations
from .observation import (
    Observation,
    GaussianObservation,
    QuantizedObservation,
    make_observation,
)

# Estimators
from .engine import (
    RBPConfig,
    SEConfig,
    RBPEstimator,
    RBPResult,
    StateEvolution,
    StateEvolutionResult,
    reconstruct,
    predict,
)
