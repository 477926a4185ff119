"""Node execution contract and the in-process callable executor."""

import importlib
import inspect
import threading
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Mapping, Optional
from pydantic import BaseModel, Field

from .exceptions import ConfigurationError
from .logging import get_logger

logger = get_logger(__name__)


class NodeOutcome(BaseModel):
    """Result of one executeNode call: outputs, or an error code and message."""
    outputs: Dict[str, Any] = Field(default_factory=dict, description="Node outputs on success")
    error_code: Optional[str] = Field(None, description="Error code on failure")
    message: Optional[str] = Field(None, description="Error message on failure")

    @property
    def succeeded(self) -> bool:
        return self.error_code is None

    @classmethod
    def success(cls, outputs: Optional[Mapping[str, Any]] = None) -> "NodeOutcome":
        return cls(outputs=dict(outputs or {}))

    @classmethod
    def failure(cls, error_code: str, message: str) -> "NodeOutcome":
        return cls(error_code=error_code, message=message)


class NodeExecutionContext:
    """Per-node call context handed to executors."""

    def __init__(
        self,
        execution_id: str,
        workflow_id: str,
        node_id: str,
        wave: int = 0,
        cancel_event: Optional[threading.Event] = None
    ):
        self.execution_id = execution_id
        self.workflow_id = workflow_id
        self.node_id = node_id
        self.wave = wave
        self.cancel_event = cancel_event or threading.Event()

    @property
    def cancelled(self) -> bool:
        """Executors doing long work should poll this."""
        return self.cancel_event.is_set()

    def __repr__(self) -> str:
        return f"NodeExecutionContext(execution_id={self.execution_id!r}, node_id={self.node_id!r})"


class NodeExecutor(ABC):
    """External collaborator that performs the work of one node kind.

    Implementations own timeouts, retries and credential resolution.
    They may raise; the coordinator records the exception as a node
    failure.
    """

    @abstractmethod
    def execute_node(
        self,
        kind: str,
        config: Dict[str, Any],
        inputs: Dict[str, Any],
        credentials_ref: Optional[str] = None,
        context: Optional[NodeExecutionContext] = None
    ) -> NodeOutcome:
        """Run one node and return its outcome."""

    def cancel_node(self, context: NodeExecutionContext) -> None:
        """Best-effort cancellation of an in-flight node. Default does nothing."""
        return None


NodeHandler = Callable[[Dict[str, Any], Dict[str, Any], NodeExecutionContext], Any]


class CallableNodeExecutor(NodeExecutor):
    """Executor that dispatches each node kind to a registered Python callable.

    Handlers are called as ``handler(config, inputs, context)`` and return
    either a NodeOutcome, an outputs mapping, or None for no outputs.
    """

    def __init__(self, handlers: Optional[Mapping[str, NodeHandler]] = None):
        self._handlers: Dict[str, NodeHandler] = {}
        self._descriptions: Dict[str, str] = {}
        self._lock = threading.Lock()
        for kind, handler in (handlers or {}).items():
            self.register(kind, handler)

    def register(self, kind: str, handler: NodeHandler, description: str = "") -> None:
        """Register a handler for a node kind.

        Args:
            kind: Node kind the handler serves
            handler: Callable accepting (config, inputs, context)
            description: Optional description of the handler

        Raises:
            ConfigurationError: If the kind is empty, already registered or the handler has the wrong shape
        """
        if not kind or not kind.strip():
            raise ConfigurationError("Node kind cannot be empty")
        kind = kind.strip()

        if not callable(handler):
            raise ConfigurationError(f"Handler for '{kind}' must be callable", config_key=kind)

        try:
            inspect.signature(handler).bind(None, None, None)
        except TypeError:
            raise ConfigurationError(
                f"Handler for '{kind}' must accept (config, inputs, context)",
                config_key=kind
            )
        except ValueError:
            # builtins without an inspectable signature are accepted as-is
            pass

        with self._lock:
            if kind in self._handlers:
                raise ConfigurationError(f"Handler for '{kind}' is already registered", config_key=kind)
            self._handlers[kind] = handler
            self._descriptions[kind] = description.strip() if description else ""

        logger.info(f"Registered node handler '{kind}' from {getattr(handler, '__module__', '?')}")

    def unregister(self, kind: str) -> bool:
        """Remove a handler. Returns False if none was registered."""
        with self._lock:
            if kind not in self._handlers:
                return False
            del self._handlers[kind]
            self._descriptions.pop(kind, None)
        logger.info(f"Unregistered node handler '{kind}'")
        return True

    def has_handler(self, kind: str) -> bool:
        return kind in self._handlers

    def list_handlers(self) -> Dict[str, str]:
        """Registered kinds mapped to their descriptions."""
        with self._lock:
            return dict(self._descriptions)

    def execute_node(
        self,
        kind: str,
        config: Dict[str, Any],
        inputs: Dict[str, Any],
        credentials_ref: Optional[str] = None,
        context: Optional[NodeExecutionContext] = None
    ) -> NodeOutcome:
        handler = self._handlers.get(kind)
        if handler is None:
            return NodeOutcome.failure("NO_EXECUTOR", f"No executor registered for node kind '{kind}'")

        if context is None:
            context = NodeExecutionContext(execution_id="", workflow_id="", node_id="")

        # handlers may return an outcome, a plain output map, a bare value or nothing
        result = handler(config, inputs, context)
        if isinstance(result, NodeOutcome):
            return result
        if result is None:
            return NodeOutcome.success()
        if isinstance(result, Mapping):
            return NodeOutcome.success(result)
        return NodeOutcome.success({"result": result})


def load_node_executor(path: str) -> NodeExecutor:
    """
    Import a node executor from a ``module:attribute`` path.

    The attribute may be a NodeExecutor instance, a NodeExecutor subclass, or
    a zero-argument factory returning an instance.

    Raises:
        ConfigurationError: If the path cannot be resolved to a NodeExecutor
    """
    module_name, _, attribute = path.partition(":")
    if not module_name or not attribute:
        raise ConfigurationError(f"Node executor path must look like 'module:attribute', got '{path}'",
                                 config_key="node_executor")

    try:
        module = importlib.import_module(module_name)
        target = getattr(module, attribute)
    except ImportError as e:
        raise ConfigurationError(f"Cannot import node executor module '{module_name}': {e}",
                                 config_key="node_executor")
    except AttributeError as e:
        raise ConfigurationError(f"Node executor '{attribute}' not found in '{module_name}': {e}",
                                 config_key="node_executor")

    # classes and factories are called once with no arguments
    executor = target
    if callable(target) and not isinstance(target, NodeExecutor):
        try:
            executor = target()
        except TypeError as e:
            raise ConfigurationError(f"Cannot build node executor from '{path}': {e}",
                                     config_key="node_executor")

    if not isinstance(executor, NodeExecutor):
        raise ConfigurationError(f"'{path}' does not provide a NodeExecutor", config_key="node_executor")

    logger.info(f"Loaded node executor {type(executor).__name__} from {path}")
    return executor
