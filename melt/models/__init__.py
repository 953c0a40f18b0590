from .challenge import Challenge, ChallengePublic
from .participant import Participant, ParticipantStatus
from .submission import Submission, SubmissionType
from .photo import Photo, PhotoOrientation
from .customization import CustomizationSettings, CustomizationUpdate

__all__ = [
    "Challenge",
    "ChallengePublic",
    "Participant",
    "ParticipantStatus",
    "Submission",
    "SubmissionType",
    "Photo",
    "PhotoOrientation",
    "CustomizationSettings",
    "CustomizationUpdate",
]
