"""
Subprocess runner — the SINGLE PLACE where external programs are run.

Every adapter and the package-state probe go through here: pacman,
yay, makepkg, git, pip and caller-supplied commands. Privilege
escalation, timeouts, output capture and logging are centralised.

Security invariants:
    - Escalation is an explicit ``privileged=True`` per call, using the
      injected PrivilegeEscalation, never ambient shell state
    - With a password: ``sudo -S -k``, password piped via stdin only
    - Password never logged, never written to disk, never in argv
    - Children keep the controlling terminal so sudo can prompt
    - A timeout stops the child and every process it started
"""

from __future__ import annotations

import logging
import os
import shutil
import signal
import subprocess
import time
from collections.abc import Sequence

from pydantic import BaseModel, Field

from archsetup.core.models.settings import PrivilegeEscalation

logger = logging.getLogger(__name__)

# Keep only the tail of long outputs (pacman transactions are chatty)
_OUTPUT_TAIL = 2000

EXIT_COMMAND_NOT_FOUND = 127


class CommandResult(BaseModel):
    """Structured outcome of one subprocess invocation."""

    command: list[str] = Field(default_factory=list)
    exit_code: int | None = None    # None when timed out
    stdout: str = ""
    stderr: str = ""
    timed_out: bool = False
    elapsed_ms: int = 0

    @property
    def ok(self) -> bool:
        return not self.timed_out and self.exit_code == 0

    @property
    def reason(self) -> str:
        """One-line explanation of a failure."""
        if self.timed_out:
            return f"Command timed out: {' '.join(self.command)}"
        if self.exit_code == EXIT_COMMAND_NOT_FOUND and not self.stdout:
            return self.stderr.strip() or f"Command not found: {self.command[0]}"
        detail = _last_line(self.stderr) or _last_line(self.stdout)
        msg = f"Command failed (exit {self.exit_code}): {' '.join(self.command)}"
        return f"{msg}: {detail}" if detail else msg


def _last_line(text: str) -> str:
    for line in reversed(text.strip().splitlines()):
        if line.strip():
            return line.strip()
    return ""


def _tail(text: str | bytes | None) -> str:
    if not text:
        return ""
    if isinstance(text, bytes):
        text = text.decode("utf-8", errors="replace")
    return text[-_OUTPUT_TAIL:]


# Seconds a timed-out command gets between SIGTERM and SIGKILL
_KILL_GRACE = 5


def _ignore_sigint() -> None:
    # Runs in the child between fork and exec. A terminal Ctrl-C then
    # reaches only the pipeline, which stops between steps.
    signal.signal(signal.SIGINT, signal.SIG_IGN)


def _descendants(pid: int) -> list[int]:
    """Every live process below ``pid``, read from /proc."""
    try:
        entries = os.listdir("/proc")
    except OSError:
        return []

    children: dict[int, list[int]] = {}
    for name in entries:
        if not name.isdigit():
            continue
        try:
            with open(f"/proc/{name}/stat", encoding="utf-8", errors="replace") as f:
                stat = f.read()
        except OSError:
            continue
        # comm may contain spaces; fields after ")" are "state ppid ..."
        fields = stat.rsplit(")", 1)[-1].split()
        if len(fields) < 2:
            continue
        children.setdefault(int(fields[1]), []).append(int(name))

    found: list[int] = []
    queue = [pid]
    while queue:
        for child in children.get(queue.pop(), []):
            found.append(child)
            queue.append(child)
    return found


def _signal_all(pids: Sequence[int], sig: signal.Signals) -> None:
    for pid in pids:
        try:
            os.kill(pid, sig)
        except ProcessLookupError:
            continue  # already gone
        except PermissionError:
            # Root-owned command under sudo; sudo relays SIGTERM to it
            logger.debug("cannot signal pid %s", pid)


def _terminate_tree(proc: subprocess.Popen) -> tuple[str | None, str | None]:
    """Stop a timed-out child and everything it started, then reap it.

    SIGTERM first, so sudo can relay it to the escalated command. Whatever
    is still alive after the grace period gets SIGKILL.
    """
    tree = _descendants(proc.pid)
    _signal_all([proc.pid, *tree], signal.SIGTERM)
    try:
        return proc.communicate(timeout=_KILL_GRACE)
    except subprocess.TimeoutExpired:
        pass

    logger.warning("pid %s ignored SIGTERM, killing", proc.pid)
    _signal_all([proc.pid, *tree, *_descendants(proc.pid)], signal.SIGKILL)
    try:
        return proc.communicate(timeout=_KILL_GRACE)
    except subprocess.TimeoutExpired:
        # An unkillable descendant still holds the pipes
        proc.kill()
        proc.wait()
        return None, None


class SubprocessRunner:
    """Blocking command runner with explicit privilege escalation.

    One runner per pipeline. Calls are strictly sequential; the package
    database tolerates exactly one writer.
    """

    def __init__(
        self,
        escalation: PrivilegeEscalation | None = None,
        default_timeout: int | None = 3600,
    ):
        self._escalation = escalation or PrivilegeEscalation()
        self._default_timeout = default_timeout

    @property
    def escalation(self) -> PrivilegeEscalation:
        return self._escalation

    def is_root(self) -> bool:
        return os.geteuid() == 0

    def build_command(self, cmd: Sequence[str], privileged: bool) -> list[str]:
        """Apply privilege escalation to a command line."""
        cmd = list(cmd)
        if not privileged or self.is_root():
            return cmd
        if self._escalation.method == "none":
            return cmd
        if self._escalation.password is not None:
            return ["sudo", "-S", "-k", *cmd]
        return ["sudo", *cmd]

    def run(
        self,
        cmd: Sequence[str],
        *,
        privileged: bool = False,
        timeout: int | None = None,
        input_text: str | None = None,
        cwd: str | os.PathLike[str] | None = None,
        env_overrides: dict[str, str] | None = None,
        stream: bool = False,
    ) -> CommandResult:
        """Run a command to completion (or timeout).

        Args:
            cmd: Argument vector; never passed through a shell.
            privileged: Whether the command needs root.
            timeout: Seconds before the child and its descendants are
                stopped. Falls back to the runner default.
            input_text: Text fed to the child's stdin.
            cwd: Working directory for the child.
            env_overrides: Extra environment variables.
            stream: Let the child write straight to the terminal
                instead of capturing its output.

        Returns:
            CommandResult. Never raises for a failing or missing program.
        """
        full_cmd = self.build_command(cmd, privileged)
        if full_cmd[:1] == ["sudo"]:
            logger.info("escalating via sudo: %s", " ".join(cmd))
        else:
            logger.debug("running: %s", " ".join(full_cmd))

        stdin_data = input_text
        if full_cmd[:3] == ["sudo", "-S", "-k"] and self._escalation.password is not None:
            stdin_data = self._escalation.password.get_secret_value() + "\n" + (input_text or "")

        env = None
        if env_overrides:
            env = os.environ.copy()
            env.update(env_overrides)

        limit = timeout if timeout is not None else self._default_timeout
        start = time.monotonic()
        try:
            proc = subprocess.Popen(
                full_cmd,
                stdin=subprocess.PIPE if stdin_data is not None else None,
                stdout=None if stream else subprocess.PIPE,
                stderr=None if stream else subprocess.PIPE,
                text=True,
                cwd=cwd,
                env=env,
                # Same session: sudo and makepkg need the controlling tty
                preexec_fn=_ignore_sigint,
            )
        except FileNotFoundError:
            return CommandResult(
                command=list(cmd),
                exit_code=EXIT_COMMAND_NOT_FOUND,
                stderr=f"Command not found: {full_cmd[0]}",
                elapsed_ms=int((time.monotonic() - start) * 1000),
            )

        try:
            stdout, stderr = proc.communicate(input=stdin_data, timeout=limit)
        except subprocess.TimeoutExpired:
            logger.warning("Command timed out after %ss: %s", limit, " ".join(cmd))
            stdout, stderr = _terminate_tree(proc)
            return CommandResult(
                command=list(cmd),
                timed_out=True,
                stdout=_tail(stdout),
                stderr=_tail(stderr),
                elapsed_ms=int((time.monotonic() - start) * 1000),
            )

        elapsed_ms = int((time.monotonic() - start) * 1000)
        result = CommandResult(
            command=list(cmd),
            exit_code=proc.returncode,
            stdout=_tail(stdout),
            stderr=_tail(stderr),
            elapsed_ms=elapsed_ms,
        )
        if not result.ok:
            logger.debug("exit %s from %s", proc.returncode, " ".join(cmd))
        return result

    def which(self, name: str) -> str | None:
        """Locate an executable on PATH."""
        return shutil.which(name)
