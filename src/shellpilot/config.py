from pathlib import Path
from typing import Any, Literal

from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict

from shellpilot.credentials import DEFAULT_TOKEN_PATH, TokenStore


class TokenSettingsSource(PydanticBaseSettingsSource):
    """
    Custom Pydantic Settings Source that reads the cached bearer token from disk.
    """

    def get_field_value(self, field: Any, field_name: str) -> tuple[Any, str, bool]:
        # Required by the abstract base class; unused because __call__ returns the full dict.
        return None, field_name, False  # pragma: no cover

    def __call__(self) -> dict[str, Any]:
        # Init kwargs, env and .env run first; token_path may come from any of them.
        path = self.current_state.get("token_path")
        store = TokenStore(Path(path) if path else None)

        token = store.read()
        if token:
            return {"api_token": token}
        return {}


class AgentConfig(BaseSettings):
    """
    Configuration for the agent loop, the sandbox and the model transport.
    """

    runtime: Literal["docker"] = "docker"

    # Sandbox
    image_name: str = "shellpilot-sandbox:latest"
    container_name: str = "shellpilot-sandbox"
    container_workdir: str = "/workspace"
    host_workspace: Path = Path("sandbox")
    execution_timeout: float | None = 300.0

    # Model transport
    api_host: str = "http://localhost:4000"
    stream_path: str = "/api/stream/chat/completions"
    exit_path: str = "/api/exit"
    model: str = "qwen2.5-coder-32b-instruct"
    request_timeout: float = 120.0

    # Retry policy
    max_retries: int = 3
    retry_base_delay: float = 2.0

    # Credentials
    token_path: Path = DEFAULT_TOKEN_PATH
    api_token: str | None = None

    enable_audit_logging: bool = True
    display_queue_size: int = 256

    model_config = SettingsConfigDict(
        env_prefix="SHELLPILOT_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        protected_namespaces=(),
    )

    @property
    def stream_url(self) -> str:
        return f"{self.api_host.rstrip('/')}{self.stream_path}"

    @property
    def exit_url(self) -> str:
        return f"{self.api_host.rstrip('/')}{self.exit_path}"

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            TokenSettingsSource(settings_cls),
            file_secret_settings,
        )
