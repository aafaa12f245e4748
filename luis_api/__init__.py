"""
LUIS API integration

This package provides:
- A throttled, retrying client for the provisioning and prediction surfaces
- Wire mappings for intents, entities, phrase lists, examples and training
- The error taxonomy shared by every workflow stage
- The progress notification channel
"""

from luis_api.client import LuisApiClient, LuisClientConfig
from luis_api.events import ProgressListener, LoggingListener
from luis_api.exceptions import (
    LuisError,
    TransportError,
    ThrottleExhausted,
    ValidationError,
    EntityRangeError,
    CultureMismatch,
    TrainingFailed,
    StageError
)

__all__ = [
    'LuisApiClient',
    'LuisClientConfig',
    'ProgressListener',
    'LoggingListener',
    'LuisError',
    'TransportError',
    'ThrottleExhausted',
    'ValidationError',
    'EntityRangeError',
    'CultureMismatch',
    'TrainingFailed',
    'StageError'
]
