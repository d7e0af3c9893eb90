from .config import ModelConfig, replace_config
from .errors import (ScucError, InputFormatError, DimensionMismatchError,
                     TopologyError, ContingencySingularityError,
                     ModelConstructionError, SolverStatusError)
from .model_data import UCInputData
from .input.loaders import load_input
from .engines import SCUCSolver, SolveOutcome, UCSolution
