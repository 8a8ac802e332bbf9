"""Shared command infrastructure.

- Exit codes and the exception-to-exit-code mapping
- Configuration and logging setup for a command run
- async_command for running coroutine commands under click
"""

import asyncio
import functools
import logging
import sys
from typing import Any, Callable, Coroutine, NoReturn, Optional

import click

from ..config_manager import OnboardingConfig, create_config_from_env, setup_logging
from ..exceptions import (
    AzurePermissionError,
    ConfigurationError,
    OnboardingError,
    ProvisioningTimeoutError,
)
from ..logging_config import configure_logging

logger = logging.getLogger(__name__)

EXIT_SUCCESS = 0
EXIT_FAILURE = 1
EXIT_CONFIGURATION = 2
EXIT_TIMEOUT = 3
EXIT_PERMISSION = 4
EXIT_INTERRUPTED = 130


def exit_code_for(error: BaseException) -> int:
    """Map a fatal error to the process exit code."""
    if isinstance(error, KeyboardInterrupt):
        return EXIT_INTERRUPTED
    if isinstance(error, ConfigurationError):
        return EXIT_CONFIGURATION
    if isinstance(error, ProvisioningTimeoutError):
        return EXIT_TIMEOUT
    if isinstance(error, AzurePermissionError):
        return EXIT_PERMISSION
    return EXIT_FAILURE


def exit_with_error(message: str, code: int = EXIT_FAILURE) -> NoReturn:
    """Exit with error message."""
    click.echo(f"Error: {message}", err=True)
    sys.exit(code)


def exit_for_exception(error: OnboardingError) -> NoReturn:
    if error.context:
        logger.debug(f"Failure details: {error.to_dict()}")
    exit_with_error(str(error), exit_code_for(error))


def load_config(log_level: Optional[str] = None) -> OnboardingConfig:
    """Read configuration from the environment and configure logging.

    Exits with the configuration exit code if the environment is invalid.
    """
    try:
        config = create_config_from_env(log_level=log_level)
    except ConfigurationError as e:
        exit_with_error(str(e), EXIT_CONFIGURATION)
    setup_logging(config.logging)
    configure_logging(json_output=config.logging.json_output)
    return config


def async_command(f: Callable[..., Coroutine[Any, Any, Any]]) -> Callable[..., Any]:
    """Decorator to make Click commands async-compatible.

    Ctrl-C ends the run with the interrupted exit code.
    """

    @functools.wraps(f)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return asyncio.run(f(*args, **kwargs))
        except KeyboardInterrupt:
            click.echo("\nInterrupted.", err=True)
            sys.exit(EXIT_INTERRUPTED)

    return wrapper
