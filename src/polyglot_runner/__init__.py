from .classifier import ClassifierRule, ErrorKind, classify, register_rule
from .dispatcher import Dispatcher
from .execution.docker_engine import DockerEngine
from .execution.local_engine import LocalEngine
from .languages import LanguageKind, LanguageSpec, get_language, register_language, supported_languages
from .policy import RunnerPolicy
from .result import ExecutionRequest, ExecutionResult, ExecutionStatus, RequestValidationError

__all__ = [
    "ClassifierRule",
    "Dispatcher",
    "DockerEngine",
    "ErrorKind",
    "ExecutionRequest",
    "ExecutionResult",
    "ExecutionStatus",
    "LanguageKind",
    "LanguageSpec",
    "LocalEngine",
    "RequestValidationError",
    "RunnerPolicy",
    "classify",
    "get_language",
    "register_language",
    "register_rule",
    "supported_languages",
]
