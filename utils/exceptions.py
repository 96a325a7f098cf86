from fastapi import HTTPException


class CustomException(HTTPException):
    def __init__(self, code: str, message: str, dev_message: str = "", status_code: int = 400, detail: str = ""):
        super().__init__(status_code=status_code, detail=message)
        self.code = code
        self.message = message
        self.dev_message = dev_message
        self.detail = detail

    def to_dict(self):
        return {
            "success": False,
            "code": self.code,
            "error": self.message,
            "detail": self.detail,
        }


class StoreError(Exception):
    """Base class for errors raised by the deployment and credential stores."""

    code = "STORE_ERROR"
    status_code = 500
    public_message = "Internal store error"

    def __init__(self, message: str = ""):
        super().__init__(message or self.public_message)
        self.message = message or self.public_message

    def to_http(self, message: str = "") -> CustomException:
        return CustomException(
            code=self.code,
            message=message or self.public_message,
            dev_message=self.message,
            status_code=self.status_code,
            detail=self.message if self.status_code < 500 else "",
        )


class ValidationError(StoreError):
    """Malformed or missing field, out-of-range port, unknown status. Never retried."""

    code = "VALIDATION_ERROR"
    status_code = 400
    public_message = "Invalid request"

    def to_http(self, message: str = "") -> CustomException:
        # 검증 에러는 사용자가 고칠 수 있도록 원문 메시지를 그대로 노출
        return super().to_http(message or self.message)


class NotFoundError(StoreError):
    code = "NOT_FOUND"
    status_code = 404
    public_message = "Not found"


class KeyConflictError(StoreError):
    """Two writers raced for the same (domain, app_name, version) tuple."""

    code = "KEY_CONFLICT"
    status_code = 500
    public_message = "Version allocation conflict"


class StoreTimeoutError(StoreError):
    code = "STORE_TIMEOUT"
    status_code = 503
    public_message = "Store operation timed out"


class StoreUnavailableError(StoreError):
    code = "STORE_UNAVAILABLE"
    status_code = 503
    public_message = "Store unavailable"


class EmptyBatchError(StoreError):
    code = "EMPTY_BATCH"
    status_code = 400
    public_message = "At least one deployment is required"
