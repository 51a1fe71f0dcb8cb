import asyncio
import functools
import os
import shlex
import time
import weakref
from typing import Awaitable, Callable, List, Optional, Tuple, TypeVar, Union

from opentelemetry import trace
from opentelemetry.trace.propagation.tracecontext import TraceContextTextMapPropagator

from rpmlocklib import logutil
from rpmlocklib.telemetry import start_as_current_span_async

logger = logutil.get_logger(__name__)
TRACER = trace.get_tracer(__name__)

F = TypeVar('F', bound=Callable[..., Awaitable])


def limit_concurrency(limit: int = 5) -> Callable[[F], F]:
    """A decorator to limit the number of parallel tasks with asyncio.

    Creates per-event-loop semaphores to avoid event loop binding issues.
    Uses BoundedSemaphore to prevent accidentally increasing the original limit.

    Args:
        limit: Maximum number of concurrent executions (must be positive)

    Raises:
        ValueError: If limit is not positive
        TypeError: If decorated function is not async
    """
    if limit <= 0:
        raise ValueError("Limit must be positive")

    _semaphores = weakref.WeakKeyDictionary()

    def executor(func: F) -> F:
        if not asyncio.iscoroutinefunction(func):
            raise TypeError("limit_concurrency can only decorate async functions")

        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            loop = asyncio.get_running_loop()
            if loop not in _semaphores:
                _semaphores[loop] = asyncio.BoundedSemaphore(limit)

            async with _semaphores[loop]:
                return await func(*args, **kwargs)

        return wrapper  # type: ignore

    return executor


@start_as_current_span_async(TRACER, "cmd_gather_async")
async def cmd_gather_async(
    cmd: Union[List[str], str],
    check: bool = True,
    input: Optional[bytes] = None,
    **kwargs,
) -> Tuple[Optional[int], str, str]:
    """Runs a command asynchronously and returns rc,stdout,stderr as a tuple
    :param cmd <string|list>: A shell command
    :param check: If check is True and the exit code was non-zero, it raises a ChildProcessError
    :param input: Bytes to send to the process on stdin
    :param kwargs: Other arguments passing to asyncio.subprocess.create_subprocess_exec
    :return: rc, stdout, stderr
    :raises OSError: if the command cannot be started
    """

    if isinstance(cmd, str):
        cmd_list = shlex.split(cmd)
    else:
        cmd_list = [str(c) for c in cmd]

    # Remove any empty tokens from the command list
    cmd_list = [token for token in cmd_list if token]

    span = trace.get_current_span()
    span.update_name(f"exec {os.path.basename(cmd_list[0])}")
    span.set_attribute("param.cmd", cmd_list)
    span.set_attribute("param.has_input", input is not None)

    # capture stdout and stderr if they are not set in kwargs
    kwargs.setdefault("stdout", asyncio.subprocess.PIPE)
    kwargs.setdefault("stderr", asyncio.subprocess.PIPE)
    kwargs.setdefault("stdin", asyncio.subprocess.PIPE if input is not None else asyncio.subprocess.DEVNULL)

    # Propagate trace context to subprocess
    carrier = {}
    TraceContextTextMapPropagator().inject(carrier)
    if "traceparent" in carrier:
        env = kwargs.get("env")
        if env is None:
            # Per Popen doc, a None env means "inheriting the current process' environment".
            # To inject the trace context, we need to copy the current environment.
            env = kwargs["env"] = os.environ.copy()
        env["TRACEPARENT"] = carrier["traceparent"]

    logger.info(f"Executing:cmd_gather_async: {' '.join(cmd_list)}")

    start_time = time.time()
    proc = await asyncio.subprocess.create_subprocess_exec(cmd_list[0], *cmd_list[1:], **kwargs)
    span.set_attribute("process.pid", proc.pid)

    stdout, stderr = await proc.communicate(input)
    duration_seconds = time.time() - start_time

    stdout = stdout.decode() if stdout else ""
    stderr = stderr.decode() if stderr else ""

    span.set_attribute("result.exit_code", str(proc.returncode))
    span.set_attribute("execution.duration_seconds", duration_seconds)
    if proc.returncode != 0:
        msg = f"Process {cmd_list!r} exited with code {proc.returncode}.\nstdout>>{stdout}<<\nstderr>>{stderr}<<\n"
        span.set_attribute("result.error_message", msg[:500])
        if check:
            raise ChildProcessError(msg)
        else:
            logger.debug(msg)

    return proc.returncode, stdout, stderr
