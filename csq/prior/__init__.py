from .base import Prior
from .laplacian import LaplacianPrior, LaplacianParams
from .gauss_bernoulli import GaussBernoulliPrior, GaussBernoulliParams
