class RelayError(Exception):
    """Base error carrying the HTTP status the API layer responds with."""

    status_code = 500
    detail = "relay error"

    def __init__(self, detail: str = None, status_code: int = None):
        if detail is not None:
            self.detail = detail
        if status_code is not None:
            self.status_code = status_code
        super().__init__(self.detail)


class SessionNotFound(RelayError):
    status_code = 404
    detail = "Session not found"


class FileNotFound(RelayError):
    status_code = 404
    detail = "File not found"


class InvalidPassword(RelayError):
    status_code = 401
    detail = "Invalid password"


class InactiveSession(RelayError):
    status_code = 400
    detail = "Session is not active"


class NoFilesUploaded(RelayError):
    status_code = 400
    detail = "No files uploaded"


class SizeLimitExceeded(RelayError):
    status_code = 413
    detail = "File exceeds the maximum upload size"


class StorageIOError(RelayError):
    status_code = 500
    detail = "Storage error"


class RangeNotSatisfiable(RelayError):
    status_code = 416
    detail = "Requested range not satisfiable"

    def __init__(self, total: int):
        self.total = total
        super().__init__()
