"""Exceptions raised by the miner."""


class MinerError(Exception):
    pass


class ConfigError(MinerError):
    """Invalid strategy or out-of-range option. Raised before the loop starts."""


class LedgerError(MinerError):
    """RPC or submission failure talking to either ledger layer."""


class ConfirmationTimeout(LedgerError):
    def __init__(self, tx_id: str, timeout: float, layer: str = "outer"):
        super().__init__(f"{layer} confirmation for {tx_id} timed out after {timeout:g}s")
        self.tx_id = tx_id
        self.timeout = timeout
        self.layer = layer


class SubmissionFailed(MinerError):
    """All attempts failed. `last_error` is the failure of the final attempt."""

    def __init__(self, attempts: int, last_error: BaseException | None):
        super().__init__(f"mining failed after {attempts} attempt(s): {last_error}")
        self.attempts = attempts
        self.last_error = last_error
