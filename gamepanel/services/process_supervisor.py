"""Supervisor for the single managed game server process.

One ``ProcessSupervisor`` owns at most one child ``Popen`` handle. Reader
threads push raw stdout/stderr chunks into a bounded ``LogRing``; a watcher
thread reports the exit code and clears the handle. Control calls never
raise for the benign races between a status check and the action itself.
"""

import codecs
import subprocess
import threading
import time
from pathlib import Path

from gamepanel.core.log_ring import DEFAULT_LOG_CAPACITY, LogRing
from gamepanel.core.startup_config import default_launch_args, resolve_launch_args

READ_CHUNK_BYTES = 4096
STOP_COMMAND = "stop"
READER_JOIN_TIMEOUT_SECONDS = 5.0

_registry_lock = threading.Lock()
_supervisors = {}


class ProcessSupervisor:
    """Start/stop/kill the managed server and relay its console."""

    def __init__(
        self,
        server_root,
        executable="java",
        *,
        default_args=None,
        log_capacity=DEFAULT_LOG_CAPACITY,
        log_panel_log=None,
        log_exception=None,
    ):
        self.server_root = Path(server_root)
        self.executable = str(executable)
        self.default_args = list(default_args) if default_args is not None else default_launch_args()
        self.logs = LogRing(log_capacity)
        self._log_panel_log = log_panel_log
        self._log_exception = log_exception
        # Guards the handle; held across check-then-spawn so starts cannot race.
        self._lock = threading.Lock()
        self._stdin_lock = threading.Lock()
        self._process = None
        self._started_at = None

    def _system_log(self, action, command=None, rejection_message=None):
        if callable(self._log_panel_log):
            self._log_panel_log(action, command=command, rejection_message=rejection_message)

    def _report_exception(self, context, exc):
        if callable(self._log_exception):
            self._log_exception(context, exc)

    @property
    def is_running(self):
        with self._lock:
            return self._process is not None

    def start(self):
        """Spawn the server unless one is already running.

        Returns ``True`` only when a new child was spawned. Launch failures
        are reported through the console buffer and the system log.
        """
        with self._lock:
            if self._process is not None:
                return False
            if not self.server_root.is_dir():
                message = f"Server directory not found: {self.server_root}"
                self.logs.append(f"[System Error] {message}")
                self._system_log("server-start", rejection_message=message)
                return False
            args = resolve_launch_args(self.server_root, self.default_args, self._log_exception)
            command = [self.executable, *args]
            try:
                proc = subprocess.Popen(
                    command,
                    cwd=str(self.server_root),
                    stdin=subprocess.PIPE,
                    stdout=subprocess.PIPE,
                    stderr=subprocess.PIPE,
                )
            except (OSError, ValueError, subprocess.SubprocessError) as exc:
                self.logs.append(f"[System Error] Failed to launch {self.executable}: {exc}")
                if isinstance(exc, FileNotFoundError):
                    self.logs.append(
                        f"[System Error] '{self.executable}' command not found! "
                        "Install Java (JDK 17+) or set JAVA_PATH in panel.env"
                    )
                self._system_log("server-start", command=" ".join(command), rejection_message=str(exc))
                return False
            self._process = proc
            self._started_at = time.time()
            self._attach_watchers(proc)
        self._system_log("server-start", command=f"pid={proc.pid} cwd={self.server_root} args={' '.join(args)}")
        return True

    def _attach_watchers(self, proc):
        readers = []
        for name, stream in (("stdout", proc.stdout), ("stderr", proc.stderr)):
            if stream is None:
                continue
            reader = threading.Thread(
                target=self._pump_output,
                args=(stream, name),
                daemon=True,
                name=f"server-{name}",
            )
            reader.start()
            readers.append(reader)
        threading.Thread(
            target=self._await_exit,
            args=(proc, readers),
            daemon=True,
            name="server-exit-watch",
        ).start()

    def _pump_output(self, stream, name):
        """Copy decoded chunks from one child stream until EOF.

        The decoder keeps a multi-byte character split across two reads
        until its remaining bytes arrive.
        """
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        try:
            while True:
                chunk = stream.read1(READ_CHUNK_BYTES)
                if not chunk:
                    break
                text = decoder.decode(chunk)
                if text:
                    self.logs.append(text)
        except (OSError, ValueError) as exc:
            self._report_exception(f"process_supervisor/{name}", exc)
        tail = decoder.decode(b"", final=True)
        if tail:
            self.logs.append(tail)

    def _await_exit(self, proc, readers):
        code = proc.wait()
        # Drain output first so the exit line is the last entry for this child.
        for reader in readers:
            reader.join(timeout=READER_JOIN_TIMEOUT_SECONDS)
        self.logs.append(f"[System] Server process exited with code {code}")
        with self._lock:
            if self._process is proc:
                self._process = None
                self._started_at = None
        try:
            if proc.stdin is not None:
                proc.stdin.close()
        except OSError:
            pass
        self._system_log("server-exit", command=f"pid={proc.pid} code={code}")

    def _write_line(self, text):
        with self._lock:
            proc = self._process
        if proc is None or proc.stdin is None:
            return False
        data = f"{text}\n".encode("utf-8")
        with self._stdin_lock:
            try:
                proc.stdin.write(data)
                proc.stdin.flush()
            except (OSError, ValueError):
                # Child went away between the handle check and the write.
                return False
        return True

    def stop(self):
        """Ask the server to shut down cooperatively."""
        return self._write_line(STOP_COMMAND)

    def send_command(self, text):
        """Forward one console command verbatim; ignored when not running."""
        return self._write_line(text)

    def kill(self):
        """SIGKILL the child and drop the handle without waiting for exit."""
        with self._lock:
            proc = self._process
            if proc is None:
                return False
            try:
                proc.kill()
            except OSError as exc:
                self._report_exception("process_supervisor/kill", exc)
            self._process = None
            self._started_at = None
        self._system_log("server-kill", command=f"pid={proc.pid}")
        return True

    def get_status(self):
        """Return ``{"running", "pid", "started_at", "logs"}`` without touching child I/O."""
        with self._lock:
            proc = self._process
            started_at = self._started_at
        return {
            "running": proc is not None,
            "pid": proc.pid if proc is not None else None,
            "started_at": started_at,
            "logs": self.logs.snapshot(),
        }


def get_supervisor(key, factory):
    """Return the process-wide supervisor for ``key``, building it once."""
    with _registry_lock:
        supervisor = _supervisors.get(key)
        if supervisor is None:
            supervisor = factory()
            _supervisors[key] = supervisor
        return supervisor


def forget_supervisor(key):
    """Drop a registry entry (used when a deployment is torn down)."""
    with _registry_lock:
        return _supervisors.pop(key, None)
