class DataClientError(Exception):
    """Base class."""

    status_code = 500
    code: str | None = None


class DatabaseError(DataClientError):
    pass


class ValidationError(DataClientError):
    status_code = 400


class NoFileProvidedError(ValidationError):
    code = "NO_FILE"


class DisallowedFileTypeError(ValidationError):
    code = "FILE_TYPE"


class FileTooLargeError(ValidationError):
    status_code = 413
    code = "FILE_TOO_LARGE"


class InvalidContentError(ValidationError):
    code = "INVALID_CONTENT"


class ConflictError(DataClientError):
    status_code = 409


class ProcessingInProgressError(ConflictError):
    code = "PROCESSING"


class NotFoundError(DataClientError):
    status_code = 404


class FileRecordNotFoundError(NotFoundError):
    pass


class PageNotFoundError(NotFoundError):
    pass


class CustomerNotFoundError(NotFoundError):
    pass


class BlobNotFoundError(NotFoundError):
    pass


class StorageError(DataClientError):
    status_code = 503


class StorageWriteError(StorageError):
    code = "STORAGE_WRITE"


class MinioError(StorageError):
    pass


class UnknownIngestionError(DataClientError):
    code = "UNKNOWN"


class PermissionDeniedError(DataClientError):
    status_code = 403
