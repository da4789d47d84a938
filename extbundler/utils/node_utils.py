"""Helpers for driving Node.js build tools from Python."""

import json
import shutil
import subprocess
from pathlib import Path
from typing import Any, Dict, List, Optional
import logging

from .exceptions import CompileFailure, ConfigurationError

logger = logging.getLogger(__name__)


def find_tool(name: str, project_dir: Path) -> str:
    """
    Locate a Node CLI, preferring the project's own node_modules/.bin.

    Args:
        name: Executable name (e.g. "esbuild")
        project_dir: Extension project root

    Returns:
        Path to the executable

    Raises:
        ConfigurationError: if the tool cannot be found
    """
    local = project_dir / 'node_modules' / '.bin' / name
    if local.exists():
        return str(local)

    found = shutil.which(name)
    if found:
        return found

    raise ConfigurationError(
        f"'{name}' not found in {project_dir / 'node_modules' / '.bin'} or on PATH. "
        f"Run 'npm install' in the extension project."
    )


def run_tool(cmd: List[str], cwd: Path, tool: str) -> subprocess.CompletedProcess:
    """
    Run a build tool and fail the build on a non-zero exit.

    Raises:
        CompileFailure: if the process exits non-zero
        ConfigurationError: if the executable does not exist
    """
    logger.debug(f"Running {tool}: {' '.join(cmd)}")
    try:
        return subprocess.run(cmd, cwd=cwd, capture_output=True, text=True, encoding='utf-8', check=True)
    except FileNotFoundError as e:
        raise ConfigurationError(f"Cannot execute {tool}: {e}") from e
    except subprocess.CalledProcessError as e:
        logger.error(f"{tool} exited with status {e.returncode}")
        raise CompileFailure(f"{tool} failed", tool=tool, output=e.stderr or e.stdout or "") from None


def run_node_json(
    script: str,
    payload: Dict[str, Any],
    cwd: Path,
    tool: str,
    node_binary: str = 'node',
) -> Dict[str, Any]:
    """
    Run an inline ES module under Node, exchanging JSON over stdin/stdout.

    The script reads one JSON document from stdin and prints one JSON document
    to stdout. Bare imports resolve against ``cwd``'s node_modules.

    Args:
        script: ES module source passed to ``node -e``
        payload: JSON-serializable request
        cwd: Directory the script runs in (the extension project root)
        tool: Name used in log and error messages
        node_binary: Node executable

    Returns:
        Decoded JSON response
    """
    cmd = [node_binary, '--input-type=module', '-e', script]
    logger.debug(f"Running {tool} via {node_binary}")
    try:
        result = subprocess.run(
            cmd,
            cwd=cwd,
            input=json.dumps(payload),
            capture_output=True,
            text=True,
            encoding='utf-8',
            check=True,
        )
    except FileNotFoundError as e:
        raise ConfigurationError(f"Cannot execute {node_binary}: {e}") from e
    except subprocess.CalledProcessError as e:
        logger.error(f"{tool} exited with status {e.returncode}")
        raise CompileFailure(f"{tool} failed", tool=tool, output=e.stderr or "") from None

    try:
        return json.loads(result.stdout)
    except json.JSONDecodeError as e:
        raise CompileFailure(
            f"{tool} returned malformed output: {e}", tool=tool, output=result.stdout[:500]
        ) from None


def node_module_resolves(module: str, cwd: Path, node_binary: str = 'node') -> bool:
    """Return True when ``import(module)`` succeeds from ``cwd``."""
    script = f"await import({json.dumps(module)});"
    try:
        subprocess.run(
            [node_binary, '--input-type=module', '-e', script],
            cwd=cwd,
            capture_output=True,
            check=True,
        )
        return True
    except (FileNotFoundError, subprocess.CalledProcessError):
        return False


def git_describe(cwd: Path) -> Optional[str]:
    """
    Describe the working tree with ``git describe``.

    Returns:
        e.g. "v1.4.0-3-gdeadbee-dev", or None outside a repository
    """
    try:
        result = subprocess.run(
            ['git', 'describe', '--always', '--dirty=-dev', '--broken'],
            cwd=cwd,
            capture_output=True,
            text=True,
            encoding='utf-8',
            check=True,
        )
    except (FileNotFoundError, subprocess.CalledProcessError) as e:
        logger.warning(f"Could not resolve git ref: {e}")
        return None
    return result.stdout.strip() or None
