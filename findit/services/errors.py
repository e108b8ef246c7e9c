from typing import Optional


class FindItError(Exception):
    status_code = 400
    code = "error"

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail

    def to_dict(self) -> dict:
        return {"error": self.code, "detail": self.detail}


class ValidationError(FindItError):
    status_code = 400
    code = "validation_error"

    def __init__(self, detail: str, details: Optional[list] = None):
        super().__init__(detail)
        self.details = details or []

    def to_dict(self) -> dict:
        d = super().to_dict()
        if self.details:
            d["details"] = self.details
        return d


class AmountMismatch(FindItError):
    status_code = 400
    code = "amount_mismatch"


class InvalidStateTransition(FindItError):
    status_code = 409
    code = "invalid_state_transition"


class NotFound(FindItError):
    # also used when the caller may not see the resource
    status_code = 404
    code = "not_found"


class SignatureInvalid(FindItError):
    status_code = 400
    code = "signature_invalid"


class GatewayError(FindItError):
    retryable = False

    def to_dict(self) -> dict:
        d = super().to_dict()
        d["retryable"] = self.retryable
        return d


class GatewayTransientError(GatewayError):
    status_code = 503
    code = "gateway_unavailable"
    retryable = True


class GatewayTerminalError(GatewayError):
    status_code = 402
    code = "gateway_rejected"
    retryable = False
