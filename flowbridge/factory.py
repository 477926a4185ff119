"""Application factory for creating FastAPI instances."""

from contextlib import asynccontextmanager
from typing import Optional
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .config import AppConfig, get_config, validate_config
from .core.logging import setup_logging, get_logger
from .core.middleware import (
    ErrorHandlingMiddleware,
    RequestLoggingMiddleware,
    PerformanceMonitoringMiddleware
)
from .core.node_executor import CallableNodeExecutor, NodeExecutor, load_node_executor
from .core.protocol_bridge import BridgeRegistry
from .core.template_registry import TemplateRegistry, default_registry
from .api.endpoints import router, init_dependencies


class ApplicationState:
    """Container for application state and components."""

    def __init__(self):
        self.config: Optional[AppConfig] = None
        self.template_registry: Optional[TemplateRegistry] = None
        self.node_executor: Optional[NodeExecutor] = None
        self.bridge_registry: Optional[BridgeRegistry] = None
        self.logger = None


# Global application state
app_state = ApplicationState()


def initialize_core_components(
    config: AppConfig,
    logger,
    executor: Optional[NodeExecutor] = None,
    template_registry: Optional[TemplateRegistry] = None
) -> tuple:
    """Initialize the template registry, node executor and MCP server registry."""
    try:
        template_registry = template_registry or default_registry()

        if executor is None:
            if config.node_executor:
                executor = load_node_executor(config.node_executor)
            else:
                executor = CallableNodeExecutor()
                logger.warning("No node executor configured; action nodes will fail with NO_EXECUTOR")

        bridge_registry = BridgeRegistry(
            template_registry,
            executor,
            protocol_version=config.mcp_protocol_version,
            server_version=config.mcp_server_version,
            tool_per_trigger=config.tool_per_trigger,
            max_workers=config.max_node_workers
        )

        logger.info(
            f"Core components initialized: {len(template_registry)} node kinds, "
            f"executor {type(executor).__name__}"
        )
        return template_registry, executor, bridge_registry

    except Exception as e:
        logger.error(f"Core components initialization failed: {e}")
        raise


def create_lifespan_handler(
    config: AppConfig,
    executor: Optional[NodeExecutor] = None,
    template_registry: Optional[TemplateRegistry] = None
):
    """Create application lifespan handler."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger = setup_logging(
            level=config.log_level.value,
            log_file=config.log_file,
            log_format=config.log_format,
            structured=config.log_structured,
            max_size=config.log_max_size,
            backup_count=config.log_backup_count
        )
        logger.info(f"Starting {config.app_name} v{config.app_version}")

        components = initialize_core_components(config, logger, executor, template_registry)
        registry, node_executor, bridge_registry = components

        app_state.config = config
        app_state.template_registry = registry
        app_state.node_executor = node_executor
        app_state.bridge_registry = bridge_registry
        app_state.logger = logger

        init_dependencies(template_registry=registry, bridge_registry=bridge_registry)
        logger.info("Application startup completed successfully")

        yield

        logger.info(f"Shutting down {config.app_name}")
        for bridge in bridge_registry.list_bridges():
            bridge_registry.remove(bridge.server_id)

    return lifespan


def create_app(
    config: Optional[AppConfig] = None,
    executor: Optional[NodeExecutor] = None,
    template_registry: Optional[TemplateRegistry] = None
) -> FastAPI:
    """Create and configure FastAPI application instance."""
    if config is None:
        config = get_config()

    for warning in validate_config(config):
        get_logger(__name__).warning(f"Configuration warning: {warning}")

    app = FastAPI(
        title=config.app_name,
        description="Validate workflow graphs and serve them as Model Context Protocol tools",
        version=config.app_version,
        debug=config.debug,
        lifespan=create_lifespan_handler(config, executor, template_registry)
    )

    if config.cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=config.cors_origins,
            allow_credentials=True,
            allow_methods=config.cors_methods,
            allow_headers=["*"],
        )

    app.add_middleware(ErrorHandlingMiddleware)
    if config.enable_performance_monitoring:
        app.add_middleware(PerformanceMonitoringMiddleware, slow_request_threshold=config.slow_request_threshold)
        app.add_middleware(RequestLoggingMiddleware)

    app.include_router(router)
    add_health_endpoints(app, config)

    return app


def add_health_endpoints(app: FastAPI, config: AppConfig) -> None:
    """Add health check endpoints to the application."""

    @app.get("/")
    async def root():
        """Root endpoint for basic health check."""
        return {"message": f"{config.app_name} is running", "version": config.app_version}

    @app.get("/health")
    async def health_check():
        """Basic health check endpoint."""
        bridges = app_state.bridge_registry.list_bridges() if app_state.bridge_registry else []
        return {
            "status": "healthy",
            "service": config.app_name.lower().replace(" ", "-"),
            "version": config.app_version,
            "mcp_servers": len(bridges)
        }


def get_app_state() -> ApplicationState:
    """Get the current application state."""
    return app_state
