from .config import RBPConfig, SEConfig
from .result import RBPResult, RBPSnapshot, StateEvolutionResult
from .monitor import DivergenceMonitor
from .rbp import RBPEstimator, reconstruct
from .state_evolution import StateEvolution, predict
