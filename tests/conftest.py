"""
Shared fixtures: an in-memory LUIS application
"""
import itertools
import pytest
from typing import Dict, List

from luis_api.events import ProgressListener
from luis_api.models import (
    AppInfo, Example, ExampleCreateResult, LabeledEntity, LabeledUtterance, NamedItem,
    PublishResult, QueryResult, RemotePhraseList, TrainingState, TrainingStatus
)
from tokenizer import segment, tokenize


class RecordingListener(ProgressListener):
    """Keeps every progress event"""

    def __init__(self):
        self.events = []

    def on_event(self, event, *args):
        self.events.append((event, args))

    def names(self) -> List[str]:
        return [event for event, _ in self.events]


def token_index(text: str, char: int, attr: str) -> int:
    for index, token in enumerate(segment(text)):
        if getattr(token, attr) == char:
            return index
    raise AssertionError(f"No token {attr} at {char} in {text!r}")


class FakeLuisClient:
    """Mimics the LuisApiClient against an in-memory application"""

    def __init__(self, culture: str = "en-us"):
        self.culture = culture
        self.intents: Dict[str, NamedItem] = {}
        self.entities: Dict[str, NamedItem] = {}
        self.phrase_lists: Dict[str, RemotePhraseList] = {}
        self.examples: Dict[str, LabeledUtterance] = {}
        self.calls = []
        self.training_statuses = [[TrainingStatus("m1", TrainingState.SUCCESS)]]
        self.query_results: Dict[str, QueryResult] = {}
        self.fail_on = None
        self._ids = itertools.count(1)
        self.closed = False

    def _next_id(self) -> str:
        used = set(self.intents) | set(self.entities) | set(self.phrase_lists) | set(self.examples)
        while True:
            item_id = str(next(self._ids))
            if item_id not in used:
                return item_id

    def _call(self, name, *args):
        self.calls.append((name,) + args)
        if self.fail_on == name:
            raise RuntimeError(f"{name} failed")

    async def close(self):
        self.closed = True

    async def get_app(self):
        self._call('get_app')
        return AppInfo(id="app", name="app", culture=self.culture)

    async def export(self):
        self._call('export')
        return {'culture': self.culture, 'intents': [{'name': i.name} for i in self.intents.values()]}

    async def get_intents(self):
        self._call('get_intents')
        return list(self.intents.values())

    async def create_intents(self, names):
        self._call('create_intents', list(names))
        for name in names:
            item_id = self._next_id()
            self.intents[item_id] = NamedItem(item_id, name)

    async def delete_intents(self, ids):
        self._call('delete_intents', list(ids))
        for item_id in ids:
            del self.intents[item_id]

    async def get_entities(self):
        self._call('get_entities')
        return list(self.entities.values())

    async def create_entities(self, names):
        self._call('create_entities', list(names))
        for name in names:
            item_id = self._next_id()
            self.entities[item_id] = NamedItem(item_id, name)

    async def delete_entities(self, ids):
        self._call('delete_entities', list(ids))
        for item_id in ids:
            del self.entities[item_id]

    async def get_phrase_lists(self):
        self._call('get_phrase_lists')
        return list(self.phrase_lists.values())

    async def create_phrase_lists(self, phrase_lists):
        self._call('create_phrase_lists', list(phrase_lists))
        for phrase_list in phrase_lists:
            item_id = self._next_id()
            self.phrase_lists[item_id] = RemotePhraseList(
                phrase_list.name, phrase_list.mode, phrase_list.is_active, phrase_list.phrases, id=item_id
            )

    async def delete_phrase_lists(self, ids):
        self._call('delete_phrase_lists', list(ids))
        for item_id in ids:
            del self.phrase_lists[item_id]

    def add_example(self, text, intent, entities=(), predicted_intents=(), predicted_entities=(),
                    tokenized_text=None) -> LabeledUtterance:
        example = LabeledUtterance(
            id=self._next_id(),
            text=text,
            intent=intent,
            tokenized_text=tokenize(text) if tokenized_text is None else tokenized_text,
            entities=list(entities),
            predicted_intents=list(predicted_intents),
            predicted_entities=list(predicted_entities)
        )
        self.examples[example.id] = example
        return example

    async def get_all_examples(self):
        self._call('get_all_examples')
        return list(self.examples.values())

    async def create_examples(self, examples: List[Example]):
        self._call('create_examples', list(examples))
        results = []
        for example in examples:
            # The service replaces an example with the same text
            for existing in [e for e in self.examples.values() if e.text == example.text]:
                del self.examples[existing.id]
            entities = [
                LabeledEntity(
                    label.entity_type,
                    token_index(example.text, label.start_char, 'start_char'),
                    token_index(example.text, label.end_char, 'end_char')
                )
                for label in example.entity_labels
            ]
            stored = self.add_example(example.text, example.intent, entities)
            results.append(ExampleCreateResult(example.text, stored.id, False))
        return results

    async def delete_examples(self, ids):
        self._call('delete_examples', list(ids))
        for item_id in ids:
            del self.examples[item_id]

    async def start_training(self):
        self._call('start_training')
        return [TrainingStatus("m1", TrainingState.IN_PROGRESS)]

    async def get_training_status(self):
        self._call('get_training_status')
        if len(self.training_statuses) > 1:
            return self.training_statuses.pop(0)
        return self.training_statuses[0]

    async def publish(self):
        self._call('publish')
        return PublishResult(url="https://luis.example/app")

    async def query(self, text):
        self._call('query', text)
        return self.query_results[text]


@pytest.fixture
def fake_client():
    return FakeLuisClient()


@pytest.fixture
def listener():
    return RecordingListener()
