"""ProcessTable — find and terminate processes by name via psutil.

Used by the commit loop to clear stale application instances (e.g. a
CAD session left open by a previous test run) before running the suite.
"""

from __future__ import annotations

import fnmatch

import psutil

from trigger_relay.logging import get_logger

log = get_logger(__name__)


class ProcessTable:
    def __init__(self, terminate_timeout: float = 5.0) -> None:
        self._terminate_timeout = terminate_timeout

    def find_processes_by_name(self, name: str) -> list[int]:
        """PIDs whose name matches *name* (fnmatch pattern, case-insensitive)."""
        pattern = name.lower()
        pids: list[int] = []
        for proc in psutil.process_iter(["pid", "name"]):
            try:
                proc_name = (proc.info["name"] or "").lower()
                if fnmatch.fnmatch(proc_name, pattern) or fnmatch.fnmatch(proc_name, pattern + ".exe"):
                    pids.append(proc.info["pid"])
            except (psutil.NoSuchProcess, psutil.AccessDenied):
                continue
        return sorted(pids)

    def terminate(self, pid: int, force: bool = False) -> bool:
        """Stop *pid*.  Returns True if the process is gone afterwards."""
        try:
            proc = psutil.Process(pid)
            if force:
                proc.kill()
            else:
                proc.terminate()
            proc.wait(timeout=self._terminate_timeout)
        except psutil.NoSuchProcess:
            return True
        except psutil.TimeoutExpired:
            log.warning("process_terminate_timeout", pid=pid, force=force)
            return False
        except psutil.AccessDenied:
            log.warning("process_terminate_denied", pid=pid)
            return False
        log.info("process_terminated", pid=pid, force=force)
        return True

    def terminate_all(self, name: str, force: bool = False) -> dict[int, bool]:
        return {pid: self.terminate(pid, force=force) for pid in self.find_processes_by_name(name)}
