import asyncio
import logging
import re
import time

from crawlops.config import settings
from crawlops.services.orchestrator.exceptions import ExecutionKillError, ExecutionSubmitError

logger = logging.getLogger("crawlops.orchestrator.execution")

SUBMITTED_RE = re.compile(r"Submitted topology:?\s*`?([\w.:-]+?)`?(?:\s|$)", re.MULTILINE)


def parse_topology_id(output: str) -> str | None:
    """Extract the topology id from submission output, if reported."""
    match = SUBMITTED_RE.search(output)
    return match.group(1) if match else None


class ExecutionClient:
    """Submits and kills topologies through the cluster's command-line client."""

    def __init__(
        self,
        command: str | None = None,
        jar_path: str | None = None,
        main_class: str | None = None,
        workdir: str | None = None,
        submit_timeout: float | None = None,
    ):
        self.command = command or settings.storm_command
        self.jar_path = jar_path or settings.storm_jar_path
        self.main_class = main_class or settings.storm_main_class
        self.workdir = workdir or settings.storm_workdir
        self.submit_timeout = submit_timeout or settings.storm_submit_timeout_seconds

    def submit_command(self, config_path: str) -> list[str]:
        return [
            self.command,
            "jar",
            self.jar_path,
            self.main_class,
            "-conf",
            str(config_path),
            "-local",
        ]

    def kill_command(self, topology_id: str) -> list[str]:
        return [self.command, "kill", topology_id, "-w", "0"]

    async def _run(self, args: list[str], timeout: float | None = None) -> tuple[int, str, str]:
        proc = await asyncio.create_subprocess_exec(
            *args,
            cwd=self.workdir,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
        except (asyncio.TimeoutError, asyncio.CancelledError):
            proc.kill()
            await proc.wait()
            raise
        return (
            proc.returncode,
            stdout.decode("utf-8", errors="replace"),
            stderr.decode("utf-8", errors="replace"),
        )

    async def submit(self, job_name: str, config_path) -> str:
        """Launch a topology and return its id.

        Raises ExecutionSubmitError if the process cannot be spawned, times
        out, or exits non-zero. A clean exit without a reported id yields a
        synthetic ``<name>-<epoch ms>`` id.
        """
        args = self.submit_command(config_path)
        logger.info("Submitting topology for %s: %s", job_name, " ".join(args))

        try:
            returncode, stdout, stderr = await self._run(args, timeout=self.submit_timeout)
        except asyncio.TimeoutError:
            raise ExecutionSubmitError(
                f"Topology submission timed out after {self.submit_timeout:.0f}s"
            )
        except OSError as e:
            raise ExecutionSubmitError(f"Failed to launch {self.command}: {e}") from e

        if returncode != 0:
            tail = (stderr or stdout)[-2000:]
            logger.error(
                "Topology submission for %s exited with %d: %s", job_name, returncode, tail
            )
            raise ExecutionSubmitError(
                f"Topology submission exited with status {returncode}",
                returncode=returncode,
                output=tail,
            )

        topology_id = parse_topology_id(stdout)
        if topology_id is None:
            topology_id = f"{job_name}-{int(time.time() * 1000)}"
            logger.warning(
                "No topology id in submission output for %s, using %s", job_name, topology_id
            )
        else:
            logger.info("Submitted topology %s for %s", topology_id, job_name)
        return topology_id

    async def _kill(self, topology_id: str) -> None:
        try:
            returncode, stdout, stderr = await self._run(self.kill_command(topology_id))
        except OSError as e:
            raise ExecutionKillError(f"Failed to launch {self.command}: {e}") from e
        if returncode != 0:
            raise ExecutionKillError(
                f"kill exited with status {returncode}: {(stderr or stdout)[-500:]}"
            )

    async def kill(self, topology_id: str) -> bool:
        """Best-effort termination. Failures are logged, never raised."""
        try:
            await self._kill(topology_id)
        except ExecutionKillError as e:
            logger.warning("Failed to kill topology %s: %s", topology_id, e)
            return False
        logger.info("Killed topology %s", topology_id)
        return True
