"""Bootstrap configuration using pydantic-settings.

Configuration hierarchy:
- DockerConfig: Container engine install and API settings
- StoreConfig: Remote State Store (S3) location
- WorkloadConfig: Jenkins container and Persistent State Directory
- ToolchainConfig: Auxiliary CLIs and the docker group bridge
- MetadataConfig: Instance metadata interface
- ScheduleConfig: Backup artifact and triggers
- LoggingConfig: Logging behavior
- MetricsConfig: Prometheus textfile export
- BootstrapConfig: Main config aggregating all sub-configs

Every model is frozen; components receive the config explicitly.

Environment variable prefix: CIHOST_
Example: CIHOST_S3_BUCKET=my-jenkins-state
"""

from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class DockerConfig(BaseSettings):
    """Container engine configuration."""

    model_config = SettingsConfigDict(env_prefix="CIHOST_DOCKER_", frozen=True)

    # Connection
    host: str = Field(
        default="unix:///var/run/docker.sock",
        description="Docker daemon socket or TCP address",
    )
    socket_path: Path = Field(
        default=Path("/var/run/docker.sock"),
        description="Host control socket bridged into the workload container",
    )

    # Installation
    install_command: list[str] = Field(default=["dnf", "install", "-y", "docker"])
    start_command: list[str] = Field(default=["systemctl", "enable", "--now", "docker"])

    # Readiness: 12 x 5s = 60s ceiling
    ready_interval: float = Field(default=5.0, description="Seconds between /_ping checks")
    ready_attempts: int = Field(default=12, ge=1)

    # Timeouts
    api_timeout: float = Field(default=30.0, description="Docker API call timeout (seconds)")
    image_pull_timeout: float = Field(default=600.0, description="Image pull timeout (seconds)")
    exec_timeout: float = Field(
        default=900.0,
        description="Timeout for a single in-container exec (installers can be slow)",
    )


class StoreConfig(BaseSettings):
    """Remote State Store configuration.

    Credentials come from the instance profile through the default
    botocore chain; there are no key fields on purpose.
    """

    model_config = SettingsConfigDict(env_prefix="CIHOST_S3_", frozen=True)

    bucket: str = Field(default="", description="S3 bucket name (required)")
    prefix: str = Field(default="jenkins_home/", description="Fixed key prefix")
    region: str = Field(default="us-east-1", description="S3 region")
    endpoint: str | None = Field(default=None, description="Custom S3 endpoint URL")

    # Per-call retry for list/download/upload/delete
    retry_attempts: int = Field(default=3, ge=1)
    retry_delay: float = Field(default=2.0, ge=0)

    @property
    def url(self) -> str:
        return f"s3://{self.bucket}/{self.prefix}"


class WorkloadConfig(BaseSettings):
    """Jenkins workload configuration."""

    model_config = SettingsConfigDict(env_prefix="CIHOST_WORKLOAD_", frozen=True)

    image: str = Field(default="jenkins/jenkins:lts")
    container_name: str = Field(default="jenkins")

    # Persistent State Directory
    state_dir: Path = Field(default=Path("/var/jenkins_home"))
    container_home: str = Field(default="/var/jenkins_home")
    user: str = Field(default="jenkins", description="Workload user inside the container")
    uid: int = Field(default=1000, description="UID of the in-container workload user")
    gid: int = Field(default=1000, description="GID of the in-container workload user")

    # Networking
    http_port: int = Field(default=8080, description="Service interface port")
    agent_port: int = Field(default=50000, description="Agent communication port")

    # Image pull: 5 attempts, 10s apart
    pull_attempts: int = Field(default=5, ge=1)
    pull_delay: float = Field(default=10.0)

    # Container responsiveness: no ceiling unless configured
    exec_interval: float = Field(default=2.0)
    exec_max_attempts: int | None = Field(default=None)

    # Readiness: 60 x 5s = 5 min ceiling
    readiness_interval: float = Field(default=5.0)
    readiness_attempts: int = Field(default=60, ge=1)
    initial_password_file: str = Field(default="secrets/initialAdminPassword")
    setup_complete_marker: str = Field(default="jenkins.install.InstallUtil.lastExecVersion")

    # Restored state fix-ups
    location_config_file: str = Field(default="jenkins.model.JenkinsLocationConfiguration.xml")
    executable_globs: list[str] = Field(
        default=["tools/**/bin/*", "tools/**/terraform", "tools/**/*.sh"],
        description="Patterns (relative to state_dir) that must be executable after restore",
    )


class ToolchainConfig(BaseSettings):
    """Auxiliary CLIs installed inside the workload container."""

    model_config = SettingsConfigDict(env_prefix="CIHOST_TOOLCHAIN_", frozen=True)

    base_packages: list[str] = Field(default=["curl", "unzip", "ca-certificates"])

    # Terraform
    terraform_checkpoint_url: str = Field(
        default="https://checkpoint-api.hashicorp.com/v1/check/terraform"
    )
    terraform_releases_url: str = Field(default="https://releases.hashicorp.com/terraform/")
    terraform_arch: str = Field(default="linux_amd64")

    # Docker CLI (static client binary)
    docker_cli_version: str = Field(default="27.3.1")
    docker_cli_url: str = Field(default="https://download.docker.com/linux/static/stable/x86_64/")

    # AWS CLI v2
    awscli_url: str = Field(default="https://awscli.amazonaws.com/awscli-exe-linux-x86_64.zip")

    install_dir: str = Field(default="/usr/local/bin")
    docker_group: str = Field(default="docker")
    http_timeout: float = Field(default=15.0)


class MetadataConfig(BaseSettings):
    """Instance metadata interface."""

    model_config = SettingsConfigDict(env_prefix="CIHOST_METADATA_", frozen=True)

    endpoint: str = Field(default="http://169.254.169.254")
    timeout: float = Field(default=2.0)
    token_ttl: int = Field(default=21600, description="IMDSv2 token TTL (seconds)")


class ScheduleConfig(BaseSettings):
    """Backup artifact and trigger configuration."""

    model_config = SettingsConfigDict(env_prefix="CIHOST_SCHEDULE_", frozen=True)

    artifact_path: Path = Field(default=Path("/usr/local/bin/jenkins-backup"))
    daily_cron: str = Field(default="0 2 * * *", description="Crontab time fields")
    deferred_minutes: int = Field(default=30, ge=1)
    log_path: Path = Field(default=Path("/var/log/jenkins-backup.log"))


class LoggingConfig(BaseSettings):
    """Logging configuration.

    Supports both text and JSON formats:
    - text: Human-readable, what an operator tails on the host
    - json: Structured logging for log shipping
    """

    model_config = SettingsConfigDict(env_prefix="CIHOST_LOGGING_", frozen=True)

    level: str = Field(default="INFO", description="Log level (DEBUG, INFO, WARNING, ERROR)")
    format: str = Field(default="text", description="Log format (text, json)")
    service_name: str = Field(default="cihost", description="Service identifier in logs")
    file_path: Path | None = Field(
        default=Path("/var/log/cihost-bootstrap.log"),
        description="Run log duplicated to this file (None to disable)",
    )
    syslog_address: str | None = Field(
        default="/dev/log",
        description="Syslog socket (None to disable)",
    )


class MetricsConfig(BaseSettings):
    """Prometheus textfile collector export."""

    model_config = SettingsConfigDict(env_prefix="CIHOST_METRICS_", frozen=True)

    textfile_dir: Path | None = Field(
        default=Path("/var/lib/node_exporter/textfile_collector"),
        description="Directory scanned by node_exporter (skipped if missing)",
    )


class BootstrapConfig(BaseSettings):
    """Main configuration aggregating all sub-configs.

    Environment variable prefix: CIHOST_
    Sub-configs use their own prefixes (CIHOST_DOCKER_, CIHOST_S3_, etc.)
    """

    model_config = SettingsConfigDict(
        env_prefix="CIHOST_",
        env_nested_delimiter="__",
        frozen=True,
    )

    docker: DockerConfig = Field(default_factory=DockerConfig)
    s3: StoreConfig = Field(default_factory=StoreConfig)
    workload: WorkloadConfig = Field(default_factory=WorkloadConfig)
    toolchain: ToolchainConfig = Field(default_factory=ToolchainConfig)
    metadata: MetadataConfig = Field(default_factory=MetadataConfig)
    schedule: ScheduleConfig = Field(default_factory=ScheduleConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    metrics: MetricsConfig = Field(default_factory=MetricsConfig)


@lru_cache
def get_config() -> BootstrapConfig:
    """Get cached configuration singleton."""
    return BootstrapConfig()
