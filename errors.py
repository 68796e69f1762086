"""Shared error codes, user-facing messages and exception types."""

from __future__ import annotations

DEVICE_UNAVAILABLE = "DEVICE_UNAVAILABLE"
TRANSPORT_ERROR = "TRANSPORT_ERROR"
BACKEND_NOT_CONFIGURED = "BACKEND_NOT_CONFIGURED"
RECOGNITION_TIMEOUT = "RECOGNITION_TIMEOUT"
TURN_SUBMISSION_FAILURE = "TURN_SUBMISSION_FAILURE"
ASR_PROTOCOL_ERROR = "ASR_PROTOCOL_ERROR"

# Error text the transcription endpoint returns when the hard ceiling is hit.
TRANSCRIPTION_TIMEOUT_ERROR = "Transcription timeout"

ERROR_MESSAGES = {
    DEVICE_UNAVAILABLE: "Microphone is unavailable or permission was denied.",
    TRANSPORT_ERROR: "Connection to the speech service failed.",
    BACKEND_NOT_CONFIGURED: "Speech backend credentials are not configured.",
    RECOGNITION_TIMEOUT: "Transcription timed out.",
    TURN_SUBMISSION_FAILURE: "The tutor response could not be completed.",
    ASR_PROTOCOL_ERROR: "Speech service response format is invalid.",
}


class TutorError(Exception):
    code = ASR_PROTOCOL_ERROR

    def __init__(self, message: str = "") -> None:
        super().__init__(message or ERROR_MESSAGES[self.code])


class DeviceUnavailable(TutorError):
    code = DEVICE_UNAVAILABLE


class TransportError(TutorError):
    code = TRANSPORT_ERROR


class BackendNotConfigured(TutorError):
    code = BACKEND_NOT_CONFIGURED


class TurnSubmissionFailure(TutorError):
    code = TURN_SUBMISSION_FAILURE
