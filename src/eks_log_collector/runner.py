"""
Bounded external calls.

Every command and local HTTP request the collectors make goes through
run_command() or fetch_url(). Both always return a CommandResult and never
block longer than their timeout.
"""

import shutil
import subprocess
from typing import List, Optional

import requests

from .config import COMMAND_TIMEOUT, HTTP_TIMEOUT
from .models import CollectionStatus, CommandResult

# Only the tail of stderr is kept in the result reason
MAX_REASON_CHARS = 500


def _tail(text: str, limit: int = MAX_REASON_CHARS) -> str:
    text = (text or '').strip()
    if len(text) > limit:
        return '...' + text[-limit:]
    return text


def command_exists(name: str) -> bool:
    return shutil.which(name) is not None


def run_command(
    args: List[str],
    timeout: float = COMMAND_TIMEOUT,
    path: Optional[str] = None,
    append: bool = False,
    capture: bool = False,
) -> CommandResult:
    """
    Run a command with an upper-bound timeout.

    Args:
        args: argv list; args[0] is looked up on PATH
        timeout: seconds before the process is killed
        path: file that receives stdout (truncated unless append=True)
        append: append to path instead of overwriting
        capture: also return stdout as text in CommandResult.output

    A missing binary is SKIPPED; a timeout or non-zero exit is PARTIAL_FAILURE.
    """
    target = ' '.join(args)
    if not args or not command_exists(args[0]):
        return CommandResult(
            target=target,
            status=CollectionStatus.SKIPPED,
            reason=f'command not found: {args[0] if args else ""}',
        )

    out_file = None
    try:
        if path and not capture:
            out_file = open(path, 'ab' if append else 'wb')
            stdout = out_file
        else:
            stdout = subprocess.PIPE
        proc = subprocess.run(
            args,
            stdout=stdout,
            stderr=subprocess.PIPE,
            stdin=subprocess.DEVNULL,
            timeout=timeout,
            check=False,
        )
    except subprocess.TimeoutExpired:
        return CommandResult(
            target=target,
            status=CollectionStatus.PARTIAL_FAILURE,
            reason=f'timed out after {timeout}s',
            path=path,
        )
    except OSError as e:
        return CommandResult(
            target=target,
            status=CollectionStatus.PARTIAL_FAILURE,
            reason=f'failed to run: {e}',
            path=path,
        )
    finally:
        if out_file is not None:
            out_file.close()

    output = ''
    if proc.stdout is not None:
        output = proc.stdout.decode('utf-8', errors='replace')
        if path:
            with open(path, 'a' if append else 'w') as f:
                f.write(output)

    stderr = proc.stderr.decode('utf-8', errors='replace') if proc.stderr else ''
    if proc.returncode != 0:
        reason = f'exit code {proc.returncode}'
        if _tail(stderr):
            reason += f': {_tail(stderr)}'
        return CommandResult(
            target=target,
            status=CollectionStatus.PARTIAL_FAILURE,
            returncode=proc.returncode,
            output=output,
            reason=reason,
            path=path,
        )

    return CommandResult(
        target=target,
        status=CollectionStatus.SUCCESS,
        returncode=0,
        output=output,
        path=path,
    )


def fetch_url(url: str, timeout: float = HTTP_TIMEOUT, path: Optional[str] = None) -> CommandResult:
    """
    GET a local introspection endpoint and optionally store the body in path.
    Timeouts, refused connections and HTTP errors are PARTIAL_FAILURE.
    """
    try:
        response = requests.get(url, timeout=timeout)
        response.raise_for_status()
    except requests.exceptions.Timeout:
        return CommandResult(target=url, status=CollectionStatus.PARTIAL_FAILURE,
                             reason=f'timed out after {timeout}s', path=path)
    except requests.exceptions.ConnectionError:
        return CommandResult(target=url, status=CollectionStatus.PARTIAL_FAILURE,
                             reason='endpoint unreachable', path=path)
    except requests.exceptions.HTTPError as e:
        return CommandResult(target=url, status=CollectionStatus.PARTIAL_FAILURE,
                             returncode=e.response.status_code if e.response is not None else None,
                             reason=f'HTTP error: {e}', path=path)
    except requests.exceptions.RequestException as e:
        return CommandResult(target=url, status=CollectionStatus.PARTIAL_FAILURE,
                             reason=f'request failed: {e}', path=path)

    if path:
        with open(path, 'wb') as f:
            f.write(response.content)

    return CommandResult(
        target=url,
        status=CollectionStatus.SUCCESS,
        returncode=response.status_code,
        output=response.text,
        path=path,
    )
