"""Application startup script and CLI interface."""

import sys
import json
import argparse
from typing import List, Optional
from pydantic import ValidationError

from .config import (
    AppConfig,
    load_config,
    get_development_config,
    get_production_config,
    get_testing_config,
    validate_config
)
from .core.exceptions import ConfigurationError
from .core.graph_analyzer import GraphAnalyzer
from .core.logging import get_logger
from .core.template_registry import default_registry
from .models.core import WorkflowDefinition


def create_argument_parser() -> argparse.ArgumentParser:
    """Create command line argument parser."""
    parser = argparse.ArgumentParser(
        prog="flowbridge",
        description="FlowBridge - validate workflow graphs and serve them as MCP tools"
    )

    # Server configuration
    parser.add_argument(
        "--host",
        help="Host to bind the server to (default: 0.0.0.0)"
    )

    parser.add_argument(
        "--port",
        type=int,
        help="Port to bind the server to (default: 8000)"
    )

    parser.add_argument(
        "--reload",
        action="store_true",
        help="Enable auto-reload for development"
    )

    # Environment configuration
    parser.add_argument(
        "--env",
        choices=["development", "production", "testing"],
        help="Environment configuration preset"
    )

    parser.add_argument(
        "--config",
        help="Path to .env configuration file"
    )

    # Logging configuration
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging level"
    )

    parser.add_argument(
        "--log-file",
        help="Path to log file"
    )

    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug mode"
    )

    # Execution configuration
    parser.add_argument(
        "--max-node-workers",
        type=int,
        help="Worker pool size for the nodes of one execution wave"
    )

    parser.add_argument(
        "--node-executor",
        help="Node executor import path, 'module:attribute'"
    )

    # Commands
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    run_parser = subparsers.add_parser("run", help="Run the HTTP server")
    run_parser.add_argument(
        "--workers",
        type=int,
        default=1,
        help="Number of worker processes (default: 1)"
    )

    config_parser = subparsers.add_parser("config", help="Configuration management")
    config_subparsers = config_parser.add_subparsers(dest="config_command", help="Config commands")
    config_subparsers.add_parser("show", help="Show current configuration")
    config_subparsers.add_parser("validate", help="Validate configuration")

    validate_parser = subparsers.add_parser("validate", help="Validate and analyze a workflow JSON file")
    validate_parser.add_argument("workflow", help="Path to a workflow definition JSON file")

    return parser


def load_configuration(args: argparse.Namespace) -> AppConfig:
    """Load configuration based on command line arguments."""
    if args.env == "development":
        config = get_development_config()
    elif args.env == "production":
        config = get_production_config()
    elif args.env == "testing":
        config = get_testing_config()
    else:
        config = load_config(args.config)

    # Override with command line arguments
    if args.host:
        config.host = args.host
    if args.port:
        config.port = args.port
    if args.reload:
        config.reload = args.reload
    if args.log_level:
        config.log_level = args.log_level
    if args.log_file:
        config.log_file = args.log_file
    if args.debug:
        config.debug = args.debug
    if args.max_node_workers:
        config.max_node_workers = args.max_node_workers
    if args.node_executor:
        config.node_executor = args.node_executor

    return config


def run_server(config: AppConfig, workers: int = 1):
    """Run the HTTP server."""
    import uvicorn
    from .factory import create_app

    logger = get_logger(__name__)
    logger.info(f"Starting server with {workers} worker(s)")

    uvicorn_config = config.get_uvicorn_config()

    if workers > 1:
        uvicorn.run(
            "flowbridge.factory:create_app",
            factory=True,
            workers=workers,
            **uvicorn_config
        )
    else:
        app = create_app(config)
        uvicorn.run(app, **uvicorn_config)


def show_configuration(config: AppConfig):
    """Show current configuration."""
    print("Current Configuration:")
    print(f"  App Name: {config.app_name}")
    print(f"  Version: {config.app_version}")
    print(f"  Debug: {config.debug}")
    print(f"  Host: {config.host}")
    print(f"  Port: {config.port}")
    print(f"  Log Level: {config.log_level.value}")
    print(f"  Max Node Workers: {config.max_node_workers}")
    print(f"  Node Executor: {config.node_executor or '(in-process, no handlers)'}")
    print(f"  MCP Protocol Version: {config.mcp_protocol_version}")
    print(f"  Tool Per Trigger: {config.tool_per_trigger}")


def validate_configuration_command(config: AppConfig) -> int:
    """Validate configuration and show results."""
    try:
        warnings = validate_config(config)
    except ConfigurationError as e:
        print("Configuration validation: FAILED")
        print(f"Error: {e.message}")
        return 1

    print("Configuration validation: PASSED")
    for warning in warnings:
        print(f"Warning: {warning}")
    return 0


def validate_workflow_file(path: str) -> int:
    """Print the structural validation and analysis of a workflow file."""
    try:
        with open(path, "r", encoding="utf-8") as handle:
            definition = WorkflowDefinition.model_validate(json.load(handle))
    except (OSError, ValueError) as e:
        # ValidationError is a ValueError
        kind = "Invalid workflow" if isinstance(e, ValidationError) else "Cannot read workflow"
        print(f"{kind}: {e}")
        return 1

    analyzer = GraphAnalyzer(default_registry())
    validation = analyzer.validate(definition)
    analysis = analyzer.analyze(definition)

    print(json.dumps(
        {"validation": validation.to_wire(), "analysis": analysis.to_wire()},
        indent=2,
        default=str
    ))
    return 0 if validation.is_valid else 1


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the application."""
    parser = create_argument_parser()
    args = parser.parse_args(argv)

    try:
        if args.command == "validate":
            return validate_workflow_file(args.workflow)

        config = load_configuration(args)

        if args.command == "run" or args.command is None:
            validate_config(config)
            run_server(config, getattr(args, 'workers', 1))
            return 0

        if args.command == "config":
            if args.config_command == "show":
                show_configuration(config)
                return 0
            if args.config_command == "validate":
                return validate_configuration_command(config)
            print("Configuration command required. Use --help for options.")
            return 1

        parser.print_help()
        return 1

    except ConfigurationError as e:
        print(f"Error: {e.message}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
