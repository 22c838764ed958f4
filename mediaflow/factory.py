"""Application factory for creating FastAPI instances."""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .api.endpoints import init_dependencies, router
from .config import AppConfig, get_config, validate_config
from .core.agent_runner import AgentRunner, ChatCompletionsAgentRunner
from .core.error_recovery import RetryConfig
from .core.execution_engine import ExecutionEngine
from .core.graph_store import GraphStore, WorkflowAutosaver
from .core.logging import get_logger, setup_logging
from .core.tool_registry import ToolRegistry
from .media.assembler import ClipAssembler, FFmpegRunner
from .media.assets import AssetStore
from .media.providers import ProviderSet
from .media.registry import ModelRegistry
from .storage.database import create_tables, init_database, reset_database_engine
from .tools.media_tools import MediaServices, register_media_tools


class ApplicationState:
    """Container for application state and components."""

    def __init__(self):
        self.config: Optional[AppConfig] = None
        self.tool_registry: Optional[ToolRegistry] = None
        self.graph_store: Optional[GraphStore] = None
        self.autosaver: Optional[WorkflowAutosaver] = None
        self.services: Optional[MediaServices] = None
        self.agent_runner: Optional[AgentRunner] = None
        self.execution_engine: Optional[ExecutionEngine] = None
        self.logger = None


# Global application state
app_state = ApplicationState()


def initialize_database(config: AppConfig, logger) -> GraphStore:
    """Configure the engine, create tables and return the workflow store."""
    session_factory = init_database(
        config.database_url,
        echo=config.database_echo,
        connect_args=config.get_database_connect_args(),
    )
    create_tables()
    logger.info("Database tables created")
    return GraphStore(session_factory)


def initialize_media_services(config: AppConfig, providers: Optional[ProviderSet], logger) -> MediaServices:
    """Build the model registry, provider clients, asset store and clip assembler."""
    assets = AssetStore(
        config.public_dir,
        timeout=config.provider_timeout,
        retry_config=RetryConfig(max_attempts=config.http_retry_attempts),
    )
    services = MediaServices(
        registry=ModelRegistry.default(),
        providers=providers or ProviderSet.from_config(config),
        assets=assets,
        assembler=ClipAssembler(
            FFmpegRunner(config.ffmpeg_binary),
            assets,
            stream_copy=config.stitch_stream_copy,
        ),
    )
    logger.info(f"Media services initialized with {len(services.registry)} model profiles")
    return services


def graceful_shutdown(state: ApplicationState, logger) -> None:
    """Handle graceful shutdown of application components."""
    logger.info(f"Shutting down {state.config.app_name if state.config else 'application'}")

    if state.autosaver is not None:
        try:
            state.autosaver.flush_all()
        except Exception as e:
            logger.error(f"Error while flushing pending workflow saves: {str(e)}")

    if state.execution_engine is not None:
        try:
            state.execution_engine.shutdown()
        except Exception as e:
            logger.error(f"Error during execution engine shutdown: {str(e)}")

    if state.services is not None:
        state.services.providers.close()
        state.services.assets.close()
    if state.agent_runner is not None:
        state.agent_runner.close()

    reset_database_engine()


def create_lifespan_handler(config: AppConfig, providers: Optional[ProviderSet] = None,
                            agent_runner: Optional[AgentRunner] = None):
    """Create application lifespan handler."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Startup
        logger = setup_logging(
            level=config.log_level.value,
            log_file=config.log_file,
            log_format=config.log_format,
            structured=config.log_structured,
            max_size=config.log_max_size,
            backup_count=config.log_backup_count
        )
        logger.info(f"Starting {config.app_name} v{config.app_version}")

        try:
            graph_store = initialize_database(config, logger)
            autosaver = WorkflowAutosaver(graph_store, delay=config.autosave_delay)
            services = initialize_media_services(config, providers, logger)
            runner = agent_runner or ChatCompletionsAgentRunner.from_config(config)

            tool_registry = ToolRegistry()
            register_media_tools(tool_registry)

            execution_engine = ExecutionEngine(
                tool_registry=tool_registry,
                graph_store=graph_store,
                agent_runner=runner,
                services=services,
                max_concurrent_executions=config.max_concurrent_executions,
                max_run_steps=config.max_run_steps,
            )

            app_state.config = config
            app_state.tool_registry = tool_registry
            app_state.graph_store = graph_store
            app_state.autosaver = autosaver
            app_state.services = services
            app_state.agent_runner = runner
            app_state.execution_engine = execution_engine
            app_state.logger = logger

            init_dependencies(graph_store=graph_store, execution_engine=execution_engine, autosaver=autosaver)
            logger.info("Application startup completed successfully")
        except Exception as e:
            logger.error(f"Application startup failed: {e}")
            raise

        yield

        # Shutdown
        graceful_shutdown(app_state, logger)

    return lifespan


def create_app(config: Optional[AppConfig] = None, providers: Optional[ProviderSet] = None,
               agent_runner: Optional[AgentRunner] = None) -> FastAPI:
    """Create and configure FastAPI application instance."""

    # Use provided config or load from environment
    if config is None:
        config = get_config()

    validate_config(config)

    app = FastAPI(
        title=config.app_name,
        description="Workflow engine for agent-driven image and video generation pipelines",
        version=config.app_version,
        debug=config.debug,
        lifespan=create_lifespan_handler(config, providers, agent_runner)
    )

    if config.cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=config.cors_origins,
            allow_credentials=True,
            allow_methods=config.cors_methods,
            allow_headers=["*"],
        )

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
        services = app_state.services
        return {
            "status": "healthy",
            "service": config.app_name.lower().replace(" ", "-"),
            "version": config.app_version,
            "providers": {
                "image": bool(services and services.providers.image),
                "video": bool(services and services.providers.video),
                "agent": app_state.agent_runner is not None,
            },
        }


def get_app_state() -> ApplicationState:
    """Get the current application state."""
    return app_state
