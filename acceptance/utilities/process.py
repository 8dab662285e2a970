"""
External Tool Execution

Terraform, Packer and gcloud are driven as subprocesses. A nonzero exit is
surfaced as ToolError straight away; none of these calls are retried here.
"""

import subprocess
import time
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

import psutil

DEFAULT_TIMEOUT = 3600
HEARTBEAT_INTERVAL = 60


@dataclass
class ToolResult:
    cmd: List[str]
    returncode: int
    stdout: str
    stderr: str
    duration_seconds: float


class ToolError(Exception):
    """Raised when an external tool exits nonzero or times out."""

    def __init__(self, cmd: Sequence[str], returncode: Optional[int], stderr: str = "", reason: str = ""):
        self.cmd = list(cmd)
        self.returncode = returncode
        self.stderr = stderr
        tail = "\n".join(stderr.strip().splitlines()[-10:])
        detail = reason or f"exited with status {returncode}"
        message = f"{' '.join(self.cmd[:3])} {detail}"
        if tail:
            message += f":\n{tail}"
        super().__init__(message)


def kill_process_tree(pid: int, timeout: float = 10.0):
    """Terminate a process and all of its children, escalating to SIGKILL."""
    try:
        parent = psutil.Process(pid)
    except psutil.NoSuchProcess:
        return

    procs = parent.children(recursive=True) + [parent]
    for proc in procs:
        try:
            proc.terminate()
        except psutil.NoSuchProcess:
            pass

    _, alive = psutil.wait_procs(procs, timeout=timeout)
    for proc in alive:
        try:
            proc.kill()
        except psutil.NoSuchProcess:
            pass


def run_tool(
    cmd: Sequence[str],
    cwd: Optional[str] = None,
    env: Optional[Dict[str, str]] = None,
    timeout: float = DEFAULT_TIMEOUT,
    heartbeat_interval: float = HEARTBEAT_INTERVAL,
    check: bool = True
) -> ToolResult:
    """
    Run an external tool with a periodic 'still running...' heartbeat.

    Args:
        cmd: Command and arguments
        cwd: Working directory
        env: Full environment for the child (default: inherit)
        timeout: Seconds before the whole process tree is killed
        heartbeat_interval: Seconds between heartbeat messages
        check: Raise ToolError on nonzero exit

    Returns:
        ToolResult with captured output

    Raises:
        ToolError: On nonzero exit (when check) or timeout
        FileNotFoundError: If the tool is not installed
    """
    cmd = [str(part) for part in cmd]
    start = time.time()
    proc = subprocess.Popen(
        cmd,
        cwd=cwd,
        env=env,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        text=True
    )

    last_heartbeat = start
    while True:
        try:
            stdout, stderr = proc.communicate(timeout=min(heartbeat_interval, 5.0))
            break
        except subprocess.TimeoutExpired:
            elapsed = time.time() - start
            if elapsed > timeout:
                kill_process_tree(proc.pid)
                stdout, stderr = proc.communicate()
                raise ToolError(cmd, None, stderr, reason=f"timed out after {timeout:.0f}s")
            if time.time() - last_heartbeat >= heartbeat_interval:
                print(f"  ... {cmd[0]} still running ({elapsed:.0f}s)", flush=True)
                last_heartbeat = time.time()

    result = ToolResult(
        cmd=cmd,
        returncode=proc.returncode,
        stdout=stdout,
        stderr=stderr,
        duration_seconds=time.time() - start
    )
    if check and result.returncode != 0:
        raise ToolError(cmd, result.returncode, stderr or stdout)
    return result
