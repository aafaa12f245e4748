"""
Locally authored language model (the desired state of the LUIS application)

The JSON form is the LUIS export format produced by the language model
converter: phrase lists live under ``model_features`` and entity annotations
use token positions.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List


@dataclass(frozen=True)
class Intent:
    name: str


@dataclass(frozen=True)
class Entity:
    name: str


@dataclass(frozen=True)
class PhraseList:
    name: str
    words: str
    exchangeable: bool = True
    active: bool = True

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'PhraseList':
        return cls(
            name=data['name'],
            words=data.get('words', ''),
            # Only an explicit false makes the list non-exchangeable
            exchangeable=data.get('mode') is not False,
            active=data.get('activated', True)
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'mode': self.exchangeable,
            'words': self.words,
            'activated': self.active
        }


@dataclass(frozen=True)
class EntityPosition:
    """Entity annotation in token indices (both ends inclusive)"""
    entity_name: str
    start_token: int
    end_token: int

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'EntityPosition':
        return cls(data['entity'], data['startPos'], data['endPos'])

    def to_dict(self) -> Dict[str, Any]:
        return {'entity': self.entity_name, 'startPos': self.start_token, 'endPos': self.end_token}


@dataclass
class Utterance:
    text: str
    intent: str
    entities: List[EntityPosition] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Utterance':
        return cls(
            text=data['text'],
            intent=data['intent'],
            entities=[EntityPosition.from_dict(item) for item in data.get('entities') or []]
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'text': self.text,
            'intent': self.intent,
            'entities': [entity.to_dict() for entity in self.entities]
        }


@dataclass
class Model:
    """
    Desired state of a LUIS application

    Utterances are expected to reference declared intents and entities; the
    service reports violations when the examples are uploaded.
    """
    culture: str
    intents: List[Intent] = field(default_factory=list)
    entities: List[Entity] = field(default_factory=list)
    phrase_lists: List[PhraseList] = field(default_factory=list)
    utterances: List[Utterance] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Model':
        return cls(
            culture=data['culture'],
            intents=[Intent(item['name']) for item in data.get('intents') or []],
            entities=[Entity(item['name']) for item in data.get('entities') or []],
            phrase_lists=[PhraseList.from_dict(item) for item in data.get('model_features') or []],
            utterances=[Utterance.from_dict(item) for item in data.get('utterances') or []]
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'culture': self.culture,
            'intents': [{'name': intent.name} for intent in self.intents],
            'entities': [{'name': entity.name} for entity in self.entities],
            'model_features': [phrase_list.to_dict() for phrase_list in self.phrase_lists],
            'utterances': [utterance.to_dict() for utterance in self.utterances]
        }
