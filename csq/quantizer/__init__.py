from .base import Quantizer, PassThroughQuantizer
from .uniform import uniform_quantizer
