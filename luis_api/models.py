"""
Records returned by (or sent to) the LUIS service and their wire mappings
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class PhraseListMode:
    """Phrase list modes, kept verbatim as the service names them"""
    EXCHANGEABLE = "Exchangeable"
    NON_EXCHANGEABLE = "Non-exchangeable"


class TrainingState(Enum):
    """Per-model training states"""
    QUEUED = "Queued"
    IN_PROGRESS = "In progress"
    SUCCESS = "Success"
    UP_TO_DATE = "Up to date"
    FAILED = "Failed"

    @property
    def is_terminal(self) -> bool:
        return self in (TrainingState.SUCCESS, TrainingState.UP_TO_DATE, TrainingState.FAILED)


# The publish endpoint refuses requests without this body even though it ignores its values
PUBLISH_BODY = {
    'BotFramework': {
        'Enabled': True,
        'AppId': 'string',
        'SubscriptionKey': 'string',
        'Endpoint': 'string'
    },
    'Slack': {
        'Enabled': True,
        'ClientId': 'string',
        'ClientSecret': 'string',
        'RedirectUri': 'string'
    }
}


@dataclass
class AppInfo:
    id: str
    name: str
    culture: str

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> 'AppInfo':
        return cls(id=data.get('id'), name=data.get('name'), culture=data.get('culture'))


@dataclass
class NamedItem:
    """An intent classifier or an entity extractor"""
    id: str
    name: str

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> 'NamedItem':
        return cls(id=data['id'], name=data['name'])

    @staticmethod
    def to_api(name: str) -> Dict[str, Any]:
        return {'name': name}


@dataclass
class RemotePhraseList:
    name: str
    mode: str
    is_active: bool
    phrases: str
    id: Optional[str] = None

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> 'RemotePhraseList':
        return cls(
            id=data.get('id'),
            name=data['name'],
            mode=data.get('mode', PhraseListMode.EXCHANGEABLE),
            is_active=data.get('isActive', True),
            phrases=data.get('phrases', '')
        )

    def to_api(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'mode': self.mode,
            'isActive': self.is_active,
            'phrases': self.phrases
        }


@dataclass(frozen=True)
class LabeledEntity:
    """Entity label as read from the service, in token indices"""
    name: str
    start_token: int
    end_token: int

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> 'LabeledEntity':
        return cls(
            name=data['entityName'],
            start_token=data['startTokenIndex'],
            end_token=data['endTokenIndex']
        )


@dataclass(frozen=True)
class PredictedIntent:
    name: str
    score: float


@dataclass
class LabeledUtterance:
    """An example stored in the application, with the last trained predictions"""
    id: str
    text: str
    intent: str
    tokenized_text: List[str] = field(default_factory=list)
    entities: List[LabeledEntity] = field(default_factory=list)
    predicted_intents: List[PredictedIntent] = field(default_factory=list)
    predicted_entities: List[LabeledEntity] = field(default_factory=list)

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> 'LabeledUtterance':
        return cls(
            id=data['exampleId'],
            text=data['utteranceText'],
            intent=data.get('intentLabel'),
            tokenized_text=list(data.get('tokenizedText') or []),
            entities=[LabeledEntity.from_api(item) for item in data.get('entityLabels') or []],
            predicted_intents=[
                PredictedIntent(item['name'], item['score'])
                for item in data.get('intentPredictions') or []
            ],
            predicted_entities=[
                LabeledEntity.from_api(item) for item in data.get('entityPredictions') or []
            ]
        )


@dataclass(frozen=True)
class EntityLabel:
    """Entity label as sent to the service, in inclusive character offsets"""
    entity_type: str
    start_char: int
    end_char: int

    def to_api(self) -> Dict[str, Any]:
        # The service names these fields after tokens but reads character offsets
        return {
            'entityType': self.entity_type,
            'startToken': self.start_char,
            'endToken': self.end_char
        }


@dataclass
class Example:
    """An example ready to be uploaded"""
    text: str
    intent: str
    entity_labels: List[EntityLabel] = field(default_factory=list)

    def to_api(self) -> Dict[str, Any]:
        return {
            'exampleText': self.text,
            'selectedIntentName': self.intent,
            'entityLabels': [label.to_api() for label in self.entity_labels]
        }


@dataclass
class ExampleCreateResult:
    text: str
    example_id: Optional[str]
    has_error: bool
    error: Any = None

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> 'ExampleCreateResult':
        value = data.get('value') or {}
        return cls(
            text=value.get('utteranceText'),
            example_id=value.get('exampleId'),
            has_error=bool(data.get('hasError')),
            error=data.get('error')
        )


@dataclass
class TrainingStatus:
    model_id: str
    state: TrainingState
    failure_reason: Optional[str] = None

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> 'TrainingStatus':
        details = data.get('details') or {}
        return cls(
            model_id=data['modelId'],
            state=TrainingState(details['status']),
            failure_reason=details.get('failureReason')
        )


@dataclass
class PublishResult:
    url: str
    preview_url: Optional[str] = None
    subscription_key: Optional[str] = None
    publish_date: Optional[str] = None

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> 'PublishResult':
        return cls(
            url=data.get('URL'),
            preview_url=data.get('PreviewURL'),
            subscription_key=data.get('SubscriptionKey'),
            publish_date=data.get('PublishDate')
        )


@dataclass(frozen=True)
class RecognizedEntity:
    """Entity recognized by a live query, in inclusive character offsets"""
    name: str
    start_char: int
    end_char: int


@dataclass
class QueryResult:
    query: str
    predicted_intents: List[PredictedIntent]
    entities: List[RecognizedEntity]

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> 'QueryResult':
        intents = [PredictedIntent(item['intent'], item['score']) for item in data.get('intents') or []]
        if not intents and data.get('topScoringIntent'):
            top = data['topScoringIntent']
            intents = [PredictedIntent(top['intent'], top['score'])]
        return cls(
            query=data.get('query'),
            predicted_intents=intents,
            entities=[
                RecognizedEntity(item['type'], item['startIndex'], item['endIndex'])
                for item in data.get('entities') or []
            ]
        )
