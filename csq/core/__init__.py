from .uncertain_array import UncertainArray
from .operator import MeasurementOperator
from .adaptive_damping import AdaptiveDamping, DampingScheduleConfig
from .metrics import mse, nmse, psnr, support_error, db
from .errors import ConfigurationError, NumericalDegeneracyWarning, DivergenceWarning, Diagnostic
from .types import PrecisionMode, MessageMode, EMMode, TailEvaluation, EstimatorState
