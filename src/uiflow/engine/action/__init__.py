from .definitions import (
    ActionResult, ActionMetadata, ErrorBody, RetryPolicy, ActionNode,
    LeafAction, SequenceAction, ParallelAction, ConditionalAction, ForEachAction,
)
from .context import ActionServices, CancellationToken, PageStateStore
from .registry import ActionRegistry, BaseActionHandler, default_action_registry, register_action
from .resolver import resolve_params
from .parser import parse_action
from .orchestrator import ActionOrchestrator, ActionCallbacks
from .datasource import HttpDatasource, DatasourceConfig, DatasourceResult
from .main import ActionEngineService, default_action_engine, execute_action
