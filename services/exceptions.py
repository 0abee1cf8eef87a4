"""
Pipeline Errors
===============
Failure taxonomy shared by every stage. ``main.py`` maps each class to
an HTTP status through ``status_code``.
"""

from typing import Any, Optional


class PipelineError(Exception):
    """Base class for all expected pipeline failures."""

    status_code = 500

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details = details


class ServiceUnavailable(PipelineError):
    """The completion service or network failed. Safe for the caller to retry."""

    status_code = 503


class ExtractionParseError(PipelineError):
    """The model answered, but not with the expected JSON. Not retried."""

    status_code = 422

    def __init__(self, message: str, raw_response: Optional[str] = None):
        super().__init__(message, raw_response=raw_response)
        self.raw_response = raw_response


class DuplicateBlocked(PipelineError):
    """Same invoice number, vendor and amount already recorded for this owner."""

    status_code = 200

    def __init__(self, message: str, document_hash: str, existing_document_id: str):
        super().__init__(message, document_hash=document_hash)
        self.document_hash = document_hash
        self.existing_document_id = existing_document_id


class NotVerifiedError(PipelineError):
    """Monetization requested for a batch that is not ``verified``."""

    status_code = 400


class OwnershipMismatch(PipelineError):
    """Device fingerprint did not match the session being merged."""

    status_code = 403


class SessionNotFound(PipelineError):
    status_code = 404


class VerificationNotFound(PipelineError):
    status_code = 404


class PathwayNotFound(PipelineError):
    status_code = 404


class EmissionsNotFound(PipelineError):
    """Some requested emission ids are unknown or owned by someone else."""

    status_code = 400


class InvalidStatusTransition(PipelineError):
    status_code = 409


class MergeIncomplete(PipelineError):
    """A session merge failed part-way and was rolled back."""

    status_code = 500


class MalformedScore(PipelineError):
    """The scoring model's answer did not match the scoring schema."""

    status_code = 502

    def __init__(self, message: str, raw_response: Optional[str] = None):
        super().__init__(message, raw_response=raw_response)
        self.raw_response = raw_response
