from __future__ import annotations

from typing import Optional


class PackageImportError(Exception):
    """
    Base error for the import pipeline. `user_message` is safe to show to the
    uploader; the exception text may carry technical details instead.
    """

    def __init__(
        self,
        user_message: str,
        technical_details: Optional[str] = None,
        is_retriable: bool = False,
    ):
        super().__init__(technical_details or user_message)
        self.user_message = user_message
        self.is_retriable = is_retriable


class ValidationError(PackageImportError):
    def __init__(self, message: str):
        super().__init__(message, is_retriable=False)


class ExtractionError(PackageImportError):
    def __init__(self, message: str, technical_details: Optional[str] = None):
        super().__init__(message, technical_details, is_retriable=False)


class ParsingError(PackageImportError):
    def __init__(self, message: str, technical_details: Optional[str] = None):
        super().__init__(message, technical_details, is_retriable=False)


class DatabaseImportError(PackageImportError):
    def __init__(self, message: str, technical_details: Optional[str] = None, is_retriable: bool = False):
        super().__init__(message, technical_details, is_retriable=is_retriable)


class ImportCancelledError(Exception):
    """Raised from inside extraction when the job's cancellation signal is set."""

    user_message = "Обробку було скасовано"
