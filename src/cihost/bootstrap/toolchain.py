"""Toolchain Extender: CLIs inside the container and the docker socket bridge.

Jenkins jobs on this host run Terraform, the AWS CLI and docker itself.
The tools are installed into the running container as root. The host's
docker socket is already bind-mounted; the in-container ``jenkins`` user
gets access by joining a group whose gid matches the socket's owner on
the host.
"""

import logging
import os
import re
import shlex

import httpx

from cihost.bootstrap.launcher import ContainerLauncher
from cihost.bootstrap.state import BootstrapState
from cihost.config import BootstrapConfig
from cihost.errors import PrivilegeBridgeError
from cihost.infra.docker import ContainerAPI, ExecResult
from cihost.logging_schema import LogEvent

logger = logging.getLogger(__name__)

ROOT = "root"
VERSION_PATTERN = re.compile(r"v?(\d+\.\d+\.\d+)")
RELEASES_INDEX_PATTERN = re.compile(r"terraform/(\d+\.\d+\.\d+)/")

VERIFY_COMMANDS = (
    ["terraform", "version"],
    ["docker", "--version"],
    ["aws", "--version"],
)


def parse_version(output: str) -> str | None:
    """Return the first x.y.z version in the first line of output."""
    first_line = output.strip().splitlines()[0] if output.strip() else ""
    match = VERSION_PATTERN.search(first_line)
    return match.group(1) if match else None


class TerraformReleases:
    """Looks up the current Terraform release."""

    def __init__(self, config: BootstrapConfig, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self._config = config.toolchain
        self._transport = transport

    async def latest_version(self) -> str | None:
        """Current version from the checkpoint API, else the releases index."""
        async with httpx.AsyncClient(
            timeout=self._config.http_timeout,
            transport=self._transport,
            follow_redirects=True,
        ) as client:
            try:
                resp = await client.get(self._config.terraform_checkpoint_url)
                resp.raise_for_status()
                version = resp.json().get("current_version")
                if version:
                    return version
            except (httpx.HTTPError, ValueError) as e:
                logger.warning("Checkpoint API unavailable, trying releases index: %s", e)

            try:
                resp = await client.get(self._config.terraform_releases_url)
                resp.raise_for_status()
            except httpx.HTTPError as e:
                logger.error("Could not determine latest Terraform version: %s", e)
                return None
            match = RELEASES_INDEX_PATTERN.search(resp.text)
            return match.group(1) if match else None

    def download_url(self, version: str) -> str:
        return (
            f"{self._config.terraform_releases_url}{version}/"
            f"terraform_{version}_{self._config.terraform_arch}.zip"
        )


class ToolchainExtender:
    def __init__(
        self,
        config: BootstrapConfig,
        containers: ContainerAPI,
        launcher: ContainerLauncher,
        releases: TerraformReleases | None = None,
    ) -> None:
        self._config = config
        self._toolchain = config.toolchain
        self._workload = config.workload
        self._containers = containers
        self._launcher = launcher
        self._releases = releases or TerraformReleases(config)

    async def _exec(self, cmd: list[str], user: str = ROOT) -> ExecResult:
        return await self._containers.exec_run(self._workload.container_name, cmd, user=user)

    async def _shell(self, script: str) -> ExecResult:
        return await self._exec(["sh", "-c", script])

    def _report(self, tool: str, result: ExecResult) -> None:
        if result.ok:
            logger.info("Installed %s", tool, extra={"event": LogEvent.TOOL_INSTALLED, "tool": tool})
        else:
            # Verification after the restart is the gate
            logger.error(
                "Installing %s failed (exit %d): %s",
                tool,
                result.exit_code,
                result.output.strip()[-500:],
                extra={"event": LogEvent.TOOL_INSTALL_FAILED, "tool": tool},
            )

    # =========================================================================
    # Installers
    # =========================================================================

    async def install_base_packages(self) -> None:
        packages = " ".join(shlex.quote(p) for p in self._toolchain.base_packages)
        result = await self._shell(
            "apt-get update -qq && DEBIAN_FRONTEND=noninteractive "
            f"apt-get install -y -qq --no-install-recommends {packages}"
        )
        self._report("base packages", result)

    async def install_terraform(self) -> None:
        """Install Terraform, or update it if a newer release exists."""
        latest = await self._releases.latest_version()
        if latest is None:
            logger.error(
                "Skipping Terraform install, latest version unknown",
                extra={"event": LogEvent.TOOL_INSTALL_FAILED, "tool": "terraform"},
            )
            return

        current = await self._exec(["terraform", "version"])
        installed = parse_version(current.output) if current.ok else None
        if installed == latest:
            logger.info(
                "Terraform %s is up to date",
                installed,
                extra={"event": LogEvent.TOOL_UP_TO_DATE, "tool": "terraform"},
            )
            return

        logger.info("Installing Terraform %s (installed: %s)", latest, installed or "none")
        install_dir = shlex.quote(self._toolchain.install_dir)
        url = shlex.quote(self._releases.download_url(latest))
        result = await self._shell(
            f"cd /tmp && curl -fsSLo terraform.zip {url} "
            f"&& unzip -o -q terraform.zip terraform -d {install_dir} "
            f"&& chmod 0755 {install_dir}/terraform && rm -f terraform.zip"
        )
        self._report(f"terraform {latest}", result)

    async def install_docker_cli(self) -> None:
        if (await self._exec(["docker", "--version"])).ok:
            logger.info("Docker CLI present", extra={"event": LogEvent.TOOL_UP_TO_DATE, "tool": "docker"})
            return
        version = self._toolchain.docker_cli_version
        url = shlex.quote(f"{self._toolchain.docker_cli_url}docker-{version}.tgz")
        install_dir = shlex.quote(self._toolchain.install_dir)
        result = await self._shell(
            f"curl -fsSL {url} | tar -xz -C /tmp docker/docker "
            f"&& install -m 0755 /tmp/docker/docker {install_dir}/docker && rm -rf /tmp/docker"
        )
        self._report(f"docker {version}", result)

    async def install_awscli(self) -> None:
        if (await self._exec(["aws", "--version"])).ok:
            logger.info("AWS CLI present", extra={"event": LogEvent.TOOL_UP_TO_DATE, "tool": "aws"})
            return
        url = shlex.quote(self._toolchain.awscli_url)
        result = await self._shell(
            f"cd /tmp && curl -fsSLo awscliv2.zip {url} && unzip -o -q awscliv2.zip "
            "&& ./aws/install --update && rm -rf aws awscliv2.zip"
        )
        self._report("aws cli", result)

    # =========================================================================
    # Privilege bridge
    # =========================================================================

    def socket_gid(self) -> int:
        """Numeric gid owning the host docker socket, read fresh each run."""
        return os.stat(self._config.docker.socket_path).st_gid

    async def _must(self, cmd: list[str]) -> ExecResult:
        result = await self._exec(cmd)
        if not result.ok:
            raise PrivilegeBridgeError(
                f"{' '.join(cmd)} exited {result.exit_code}: {result.output.strip()}"
            )
        return result

    async def bridge_group(self) -> int:
        """Recreate the docker group with the host socket's gid.

        Deleting first makes the step idempotent and drops a stale gid
        left by the image or an earlier run.

        Returns:
            The gid now assigned to the group
        """
        group = self._toolchain.docker_group
        gid = self.socket_gid()

        if (await self._exec(["getent", "group", group])).ok:
            await self._must(["groupdel", group])
        # -o: the gid may already belong to another group in the image
        await self._must(["groupadd", "-o", "-g", str(gid), group])
        await self._must(["usermod", "-aG", group, self._workload.user])

        logger.info(
            "Group %s bridged with gid %d",
            group,
            gid,
            extra={"event": LogEvent.GROUP_BRIDGED, "group": group, "gid": gid},
        )
        return gid

    async def verify(self) -> None:
        """Prove the toolchain and the bridged socket work for the workload user.

        Raises:
            PrivilegeBridgeError: any check failed
        """
        group = self._toolchain.docker_group
        user = self._workload.user
        failures: list[str] = []

        groups = await self._exec(["id", "-nG", user])
        if not groups.ok or group not in groups.output.split():
            failures.append(f"{user} is not in group {group}: {groups.output.strip()}")

        for cmd in VERIFY_COMMANDS:
            result = await self._exec(cmd)
            if result.ok:
                logger.info("%s: %s", cmd[0], parse_version(result.output) or "ok")
            else:
                failures.append(f"{' '.join(cmd)} exited {result.exit_code}")

        ps = await self._exec(["docker", "ps"], user=user)
        if not ps.ok:
            failures.append(f"{user} cannot use the docker socket: {ps.output.strip()}")

        if failures:
            raise PrivilegeBridgeError("; ".join(failures))

    async def extend(self, state: BootstrapState) -> None:
        """Install tools, bridge the socket group, restart and verify."""
        await self.install_base_packages()
        await self.install_terraform()
        await self.install_docker_cli()
        await self.install_awscli()

        await self.bridge_group()

        # New supplementary groups only apply to processes started afterwards
        await self._containers.restart(self._workload.container_name)
        await self._launcher.wait_responsive()

        await self.verify()
        state.bridge_verified = True
        logger.info("Privilege bridge verified", extra={"event": LogEvent.BRIDGE_VERIFIED})
