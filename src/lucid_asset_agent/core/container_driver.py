"""
Container driver: pull images, create containers and exec inside them.

DockerCliDriver shells out to the docker CLI. Non-zero exit codes raise
RuntimeError carrying the captured output.
"""

from __future__ import annotations

import logging
import subprocess
import threading
from dataclasses import dataclass
from typing import IO, Optional, Protocol

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ContainerHandle:
    container_id: str
    image: str


class ContainerDriver(Protocol):
    def pull_image(self, ref: str) -> None: ...

    def create_container(
        self,
        ref: str,
        *,
        cmd: list[str],
        mounts: list[str],
        ports: dict[str, str],
    ) -> ContainerHandle: ...

    def exec(
        self,
        handle: ContainerHandle,
        *,
        cmd: list[str],
        attach_stdout: bool = True,
        attach_stderr: bool = True,
    ) -> None: ...


class DockerCliDriver:
    """ContainerDriver backed by the `docker` executable."""

    def __init__(self, docker_bin: str = "docker", *, timeout_s: Optional[int] = 600) -> None:
        self.docker_bin = docker_bin
        self.timeout_s = timeout_s

    def _run(self, args: list[str]) -> str:
        completed = subprocess.run(
            [self.docker_bin, *args],
            check=False,
            capture_output=True,
            text=True,
            timeout=self.timeout_s,
        )
        if completed.returncode != 0:
            raise RuntimeError(
                f"docker {args[0]} failed rc={completed.returncode}\n"
                f"stdout:\n{(completed.stdout or '').strip()}\n"
                f"stderr:\n{(completed.stderr or '').strip()}"
            )
        return (completed.stdout or "").strip()

    def pull_image(self, ref: str) -> None:
        logger.info("Pulling image %s", ref)
        self._run(["pull", ref])

    def create_container(
        self,
        ref: str,
        *,
        cmd: list[str],
        mounts: list[str],
        ports: dict[str, str],
    ) -> ContainerHandle:
        args = ["create", "-t"]
        for mount in mounts:
            args += ["-v", mount]
        for container_port, host_port in ports.items():
            args += ["-p", f"{host_port}:{container_port}"]
        args += [ref, *cmd]

        out = self._run(args)
        container_id = out.splitlines()[-1].strip() if out else ""
        if not container_id:
            raise RuntimeError("docker create returned no container id")

        self._run(["start", container_id])
        logger.info("Started container %s from %s", container_id[:12], ref)
        return ContainerHandle(container_id=container_id, image=ref)

    def exec(
        self,
        handle: ContainerHandle,
        *,
        cmd: list[str],
        attach_stdout: bool = True,
        attach_stderr: bool = True,
    ) -> None:
        if not (attach_stdout or attach_stderr):
            self._run(["exec", "-d", handle.container_id, *cmd])
            return

        if attach_stdout:
            stdout = subprocess.PIPE
            stderr = subprocess.STDOUT if attach_stderr else subprocess.DEVNULL
        else:
            stdout = subprocess.DEVNULL
            stderr = subprocess.PIPE

        proc = subprocess.Popen(
            [self.docker_bin, "exec", handle.container_id, *cmd],
            stdout=stdout,
            stderr=stderr,
            text=True,
        )
        stream = proc.stdout if attach_stdout else proc.stderr
        threading.Thread(
            target=_pump_output,
            args=(proc, stream, handle.container_id[:12]),
            daemon=True,
            name=f"docker-exec-{handle.container_id[:12]}",
        ).start()


def _pump_output(proc: subprocess.Popen, stream: Optional[IO[str]], short_id: str) -> None:
    if stream is not None:
        for line in stream:
            logger.info("[%s] %s", short_id, line.rstrip())
    rc = proc.wait()
    if rc != 0:
        logger.warning("[%s] exec exited rc=%s", short_id, rc)
