"""
Registration credential resolution.

The credential is never written anywhere by this module: it is returned to
the caller, which embeds it as instance metadata on the fleet template.
"""

import getpass
import logging
import os
import sys
from typing import Callable, Optional

from dotenv import dotenv_values

from errors import ConfigurationError

logger = logging.getLogger(__name__)

CREDENTIAL_ENV_VAR = "GITHUB_PAT"


def resolve_credential(
    explicit: Optional[str] = None,
    env_file: str = ".env",
    prompt: Optional[Callable[[str], str]] = None,
    interactive: Optional[bool] = None,
) -> str:
    """
    Resolve the registration credential.

    Precedence: explicit value (or GITHUB_PAT in the environment), then the
    local .env file, then an interactive hidden prompt.

    Args:
        explicit: Value passed on the command line
        env_file: Path to a dotenv-style config file
        prompt: Prompt callable, defaults to getpass.getpass
        interactive: Whether prompting is allowed; defaults to stdin being a TTY

    Returns:
        The credential string

    Raises:
        ConfigurationError: If no source yields a credential
    """
    explicit = (explicit or "").strip()
    if explicit:
        logger.debug("Using credential passed explicitly")
        return explicit

    from_env = os.environ.get(CREDENTIAL_ENV_VAR, "").strip()
    if from_env:
        logger.debug(f"Using credential from ${CREDENTIAL_ENV_VAR}")
        return from_env

    if env_file and os.path.isfile(env_file):
        value = (dotenv_values(env_file).get(CREDENTIAL_ENV_VAR) or "").strip()
        if value:
            logger.debug(f"Using credential from {env_file}")
            return value

    if interactive is None:
        interactive = sys.stdin is not None and sys.stdin.isatty()

    if interactive:
        prompt = prompt or getpass.getpass
        value = (prompt("Enter GitHub PAT: ") or "").strip()
        if value:
            return value

    raise ConfigurationError(
        f"No registration credential found. Pass --token, set ${CREDENTIAL_ENV_VAR}, "
        f"or add {CREDENTIAL_ENV_VAR}=... to {env_file}"
    )
