class VinError(Exception):
    """Base class for errors surfaced to API clients."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class VinValidationError(VinError):
    status_code = 400


class SpreadsheetError(VinError):
    status_code = 400


class VinNotFoundError(VinError):
    status_code = 404


class VinConflictError(VinError):
    status_code = 409


class OcrError(VinError):
    status_code = 500


class StorageError(VinError):
    status_code = 500
