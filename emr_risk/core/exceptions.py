"""
Error taxonomy for the risk engine.

Every error carries a stable ``code`` so bulk responses and HTTP handlers can
report it without leaking exception classes to clients.
"""

from typing import Dict, Optional


class AssessmentError(Exception):
    """Base class for all risk engine errors."""

    code = "assessment_error"

    def __init__(self, message: str, patient_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.patient_id = patient_id

    def to_dict(self) -> Dict[str, str]:
        return {"code": self.code, "message": self.message}


class InvalidInput(AssessmentError):
    """Health signal snapshot failed structural validation."""

    code = "invalid_input"


class SignalUnavailable(AssessmentError):
    """Health signals could not be fetched for a patient."""

    code = "signal_unavailable"


class PatientNotFound(SignalUnavailable):
    """The patient id is unknown to the EMR."""

    code = "patient_not_found"


class StoreUnavailable(AssessmentError):
    """The assessment store could not be read or written."""

    code = "store_unavailable"


class AssessmentCancelled(AssessmentError):
    """A bulk run ended before this patient was assessed."""

    code = "cancelled"


class InternalAssessmentError(AssessmentError):
    """Unexpected failure while assessing a single patient."""

    code = "internal_error"
