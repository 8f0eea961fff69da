import hashlib

from loguru import logger


class AuditLogger:
    """Audit trail for side effects.

    Logs a hash of every command or file edit before it is applied.
    """

    def __init__(self, enabled: bool = True):
        """Initializes the AuditLogger.

        Args:
            enabled: Whether to emit audit records.
        """
        self.enabled = enabled
        if self.enabled:
            logger.info("Audit logging enabled")

    def log_pre_execution(self, kind: str, target: str, payload: str) -> str:
        """Log a side effect that is about to happen.

        Args:
            kind: 'command' or 'file'.
            target: The command line or file path.
            payload: The content that identifies the effect (command text or edit).

        Returns:
            str: The SHA-256 hash of the payload.
        """
        digest = hashlib.sha256(payload.encode("utf-8")).hexdigest()
        if self.enabled:
            logger.info(f"AUDIT: {kind} {target!r}. Hash: {digest}, Length: {len(payload)}")
        return digest
