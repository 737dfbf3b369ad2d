class AppError(Exception):
    """Domain error carrying a stable code and an HTTP status."""

    code = "INTERNAL_ERROR"
    status_code = 500

    def __init__(self, message: str, *, code: str | None = None, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        if status_code:
            self.status_code = status_code

    def to_dict(self) -> dict:
        return {"error": {"code": self.code, "message": self.message}}


class AgentNotFound(AppError):
    code = "AGENT_NOT_FOUND"
    status_code = 404


class AgentInactive(AppError):
    code = "AGENT_INACTIVE"
    status_code = 422


class ChannelNotEnabled(AppError):
    code = "CHANNEL_NOT_ENABLED"
    status_code = 422


class WorkspaceNotFound(AppError):
    code = "WORKSPACE_NOT_FOUND"
    status_code = 404


class NoActiveAgent(AppError):
    code = "NO_ACTIVE_AGENT"
    status_code = 404


class ChannelNotFound(AppError):
    code = "NOT_FOUND"
    status_code = 404


class InsufficientCredits(AppError):
    code = "INSUFFICIENT_CREDITS"
    status_code = 402

    def __init__(self, balance: int, required: int):
        super().__init__(f"Insufficient credits. Balance: {balance}, required: {required}.")
        self.balance = balance
        self.required = required


class MissingCredentials(AppError):
    code = "MISSING_CREDENTIALS"
    status_code = 422


class ChannelSendError(AppError):
    code = "CHANNEL_SEND_FAILED"
    status_code = 502


class UnsupportedChannel(AppError):
    code = "UNSUPPORTED_CHANNEL"
    status_code = 422


class InvalidSignature(AppError):
    code = "INVALID_SIGNATURE"
    status_code = 401


class CompletionError(AppError):
    code = "COMPLETION_FAILED"
    status_code = 502


class TicketingError(AppError):
    code = "TICKETING_FAILED"
    status_code = 502
