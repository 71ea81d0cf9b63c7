"""Provisioning and download configuration models with environment overrides."""

from __future__ import annotations

import os
from pathlib import Path, PurePosixPath
from urllib.parse import urlsplit

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

ENV_PREFIX = "LLAMA_PROVISION_"
WORKSPACE_DIR_ENV_VAR = f"{ENV_PREFIX}WORKSPACE_DIR"
LLAMA_REPO_URL_ENV_VAR = f"{ENV_PREFIX}LLAMA_REPO_URL"
JOBS_ENV_VAR = f"{ENV_PREFIX}JOBS"
MODELS_DIR_ENV_VAR = f"{ENV_PREFIX}MODELS_DIR"
MODEL_URLS_ENV_VAR = f"{ENV_PREFIX}MODEL_URLS"

CUDA_REPO_BASE_URL = "https://developer.download.nvidia.com/compute/cuda"
DEFAULT_MODEL_URLS = (
    "https://huggingface.co/unsloth/Qwen3-8B-128K-GGUF/resolve/main/Qwen3-8B-128K-UD-Q6_K_XL.gguf",
    "https://huggingface.co/unsloth/Qwen3-14B-128K-GGUF/resolve/main/Qwen3-14B-128K-UD-Q4_K_XL.gguf",
    "https://huggingface.co/unsloth/gpt-oss-20b-GGUF/resolve/main/gpt-oss-20b-F16.gguf",
)


class ConfigError(ValueError):
    """Raised when configuration values from the environment are invalid."""


class CudaToolkitConfig(BaseModel):
    """CUDA toolkit release installed from NVIDIA's local apt repository."""

    model_config = ConfigDict(extra="forbid")

    version: str = Field(default="12.8.0", pattern=r"^\d+\.\d+\.\d+$")
    driver_version: str = Field(default="570.86.10", min_length=1)
    distro: str = Field(default="ubuntu2404", pattern=r"^[a-z]+\d+$")
    arch: str = Field(default="x86_64", min_length=1)

    @property
    def short_version(self) -> str:
        """Return major.minor, e.g. '12.8'."""
        major, minor, _patch = self.version.split(".")
        return f"{major}.{minor}"

    @property
    def package_version(self) -> str:
        """Return the dashed form used in package names, e.g. '12-8'."""
        return self.short_version.replace(".", "-")

    @property
    def toolkit_package(self) -> str:
        return f"cuda-toolkit-{self.package_version}"

    @property
    def install_prefix(self) -> PurePosixPath:
        return PurePosixPath(f"/usr/local/cuda-{self.short_version}")

    @property
    def pin_filename(self) -> str:
        return f"cuda-{self.distro}.pin"

    @property
    def pin_url(self) -> str:
        return f"{CUDA_REPO_BASE_URL}/repos/{self.distro}/{self.arch}/{self.pin_filename}"

    @property
    def local_repo_name(self) -> str:
        return f"cuda-repo-{self.distro}-{self.package_version}-local"

    @property
    def installer_filename(self) -> str:
        return f"{self.local_repo_name}_{self.version}-{self.driver_version}-1_amd64.deb"

    @property
    def installer_url(self) -> str:
        return f"{CUDA_REPO_BASE_URL}/{self.version}/local_installers/{self.installer_filename}"


class PyTorchConfig(BaseModel):
    """Pinned PyTorch wheels matching the CUDA toolkit."""

    model_config = ConfigDict(extra="forbid")

    torch_version: str = Field(default="2.8.0", min_length=1)
    torchvision_version: str = Field(default="0.23.0", min_length=1)
    torchaudio_version: str = Field(default="2.8.0", min_length=1)
    index_url: str = Field(default="https://download.pytorch.org/whl/cu128", min_length=1)

    @property
    def requirements(self) -> tuple[str, ...]:
        return (
            f"torch=={self.torch_version}",
            f"torchvision=={self.torchvision_version}",
            f"torchaudio=={self.torchaudio_version}",
        )


class ProvisionConfig(BaseModel):
    """Settings for the instance setup run."""

    model_config = ConfigDict(extra="forbid")

    cuda: CudaToolkitConfig = Field(default_factory=CudaToolkitConfig)
    pytorch: PyTorchConfig = Field(default_factory=PyTorchConfig)
    workspace_dir: Path = Path("/workspace")
    llama_repo_url: str = Field(default="https://github.com/ggml-org/llama.cpp", min_length=1)
    llama_dir_name: str = Field(default="llama.cpp", min_length=1)
    build_dir_name: str = Field(default="build", min_length=1)
    build_config: str = Field(default="Release", min_length=1)
    cmake_options: tuple[str, ...] = ("-DGGML_CUDA=ON",)
    jobs: int | None = Field(default=None, ge=1)
    shell_rc_path: Path = Field(default_factory=lambda: Path.home() / ".bashrc")
    use_sudo: bool = True

    @field_validator("llama_dir_name", "build_dir_name")
    @classmethod
    def validate_plain_name(cls, value: str) -> str:
        """Reject directory names that would escape the workspace."""
        if "/" in value or value in {".", ".."}:
            raise ValueError("directory names must be a single path component.")
        return value

    @property
    def llama_dir(self) -> Path:
        return self.workspace_dir / self.llama_dir_name


class ModelArtifact(BaseModel):
    """One remote model file to fetch."""

    model_config = ConfigDict(extra="forbid")

    url: str = Field(min_length=1)

    @field_validator("url")
    @classmethod
    def validate_url(cls, value: str) -> str:
        """Require an http(s) URL whose path ends in a file name."""
        parsed = urlsplit(value)
        if parsed.scheme not in {"http", "https"} or not parsed.netloc:
            raise ValueError("url must be an absolute http(s) URL.")
        if not PurePosixPath(parsed.path).name:
            raise ValueError("url path must end with a file name.")
        return value

    @property
    def filename(self) -> str:
        """Return the basename of the URL path."""
        return PurePosixPath(urlsplit(self.url).path).name


class DownloadConfig(BaseModel):
    """Settings for the model download run."""

    model_config = ConfigDict(extra="forbid")

    artifacts: list[ModelArtifact] = Field(
        default_factory=lambda: [ModelArtifact(url=url) for url in DEFAULT_MODEL_URLS],
        min_length=1,
    )
    dest_dir: Path = Path(".")
    timeout_seconds: float = Field(default=60.0, gt=0.0)
    trust_env: bool = True


def _load_env_file() -> None:
    """Load `.env` from the working directory without overriding the real environment."""
    load_dotenv(dotenv_path=Path.cwd() / ".env", override=False)


def _parse_jobs(value: str) -> int:
    """Parse the JOBS override."""
    try:
        return int(value)
    except ValueError as error:
        raise ConfigError(f"{JOBS_ENV_VAR} must be an integer, got '{value}'.") from error


def load_provision_config(**overrides: object) -> ProvisionConfig:
    """Build setup configuration from defaults, `.env`, environment and explicit overrides."""
    _load_env_file()
    values: dict[str, object] = {}

    workspace_dir = os.getenv(WORKSPACE_DIR_ENV_VAR)
    if workspace_dir:
        values["workspace_dir"] = Path(workspace_dir)
    repo_url = os.getenv(LLAMA_REPO_URL_ENV_VAR)
    if repo_url:
        values["llama_repo_url"] = repo_url
    jobs = os.getenv(JOBS_ENV_VAR)
    if jobs:
        values["jobs"] = _parse_jobs(jobs)

    values.update({key: value for key, value in overrides.items() if value is not None})
    try:
        return ProvisionConfig.model_validate(values)
    except ValidationError as error:
        raise ConfigError(f"Invalid provisioning configuration: {error}") from error


def load_download_config(
    *,
    urls: list[str] | None = None,
    **overrides: object,
) -> DownloadConfig:
    """Build download configuration from defaults, `.env`, environment and explicit overrides."""
    _load_env_file()
    values: dict[str, object] = {}

    models_dir = os.getenv(MODELS_DIR_ENV_VAR)
    if models_dir:
        values["dest_dir"] = Path(models_dir)

    url_values = urls
    if not url_values:
        env_urls = os.getenv(MODEL_URLS_ENV_VAR)
        if env_urls:
            url_values = [url.strip() for url in env_urls.split(",") if url.strip()]
    if url_values:
        values["artifacts"] = [{"url": url} for url in url_values]

    values.update({key: value for key, value in overrides.items() if value is not None})
    try:
        return DownloadConfig.model_validate(values)
    except ValidationError as error:
        raise ConfigError(f"Invalid download configuration: {error}") from error
