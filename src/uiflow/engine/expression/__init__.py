from .main import ExpressionEngine, CompiledExpression, default_expression_engine, evaluate, get_dependencies
from .cache import ExpressionCache
from .dependencies import (
    extract_dependencies, merge_declared_dependencies, normalize_dependency, paths_overlap, affects,
)
from .functions import ALLOWED_FUNCTIONS
from .sandbox import DENIED_IDENTIFIERS
from .values import truthy
from ..errors import ExpressionError, ParseError, SandboxViolation, EvaluationRuntimeError
from ..utils.data_parser import UNDEFINED
