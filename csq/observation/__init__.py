from .base import Observation
from .gaussian import GaussianObservation
from .quantized import QuantizedObservation, make_observation
