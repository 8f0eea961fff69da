from shellpilot.config import AgentConfig
from shellpilot.runtime import SandboxRuntime
from shellpilot.runtimes.docker import DockerRuntime


class SandboxFactory:
    """
    Factory to create SandboxRuntime instances based on configuration.
    """

    @staticmethod
    def get_runtime(config: AgentConfig) -> SandboxRuntime:
        """
        Returns an instance of the configured SandboxRuntime.
        """
        if config.runtime == "docker":
            return DockerRuntime(
                image=config.image_name,
                container_name=config.container_name,
                work_dir=config.container_workdir,
                host_workspace=config.host_workspace,
                timeout=config.execution_timeout,
            )
        # This should be unreachable due to Pydantic validation, but for safety:
        raise ValueError(f"Unknown runtime: {config.runtime}")  # pragma: no cover
