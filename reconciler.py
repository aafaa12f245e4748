"""
Reconciliation of the remote LUIS collections against the local model.

The service has no update primitive, so a changed item is deleted and
created again. Each collection is reconciled in the same way:

1. read the remote collection
2. compute the items to delete (remote only) and to create (local only)
3. delete, then create
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Dict, Hashable, List, Optional, Sequence

from language_model import Entity, Intent, PhraseList, Utterance
from luis_api.client import LuisApiClient
from luis_api.events import ProgressListener, emit
from luis_api.exceptions import EntityRangeError, StageError
from luis_api.models import (
    EntityLabel, Example, LabeledUtterance, NamedItem, PhraseListMode, RemotePhraseList
)
from tokenizer import resolve_entity_span
from logger import get_logger
from metrics import reconciled_items

logger = get_logger(__name__)


@dataclass
class UpdateStats:
    """Number of items a reconciliation pass creates and deletes"""
    create: int
    delete: int


@dataclass
class Delta:
    to_create: List[Any]
    to_delete: List[Any]


def compute_delta(
    desired: Sequence[Any],
    remote: Sequence[Any],
    desired_key: Callable[[Any], Hashable],
    remote_key: Callable[[Any], Hashable]
) -> Delta:
    """
    Compute the remote items to delete and the desired items to create.

    A desired and a remote item are equal when their keys are equal. Desired
    items sharing a key are created once.
    """
    desired_keys = {desired_key(item) for item in desired}
    remote_keys = {remote_key(item) for item in remote}

    to_delete = [item for item in remote if remote_key(item) not in desired_keys]

    to_create = []
    seen = set()
    for item in desired:
        key = desired_key(item)
        if key in remote_keys or key in seen:
            continue
        seen.add(key)
        to_create.append(item)

    return Delta(to_create=to_create, to_delete=to_delete)


class CollectionAdapter(ABC):
    """Binds the reconciliation algorithm to one remote collection"""

    # Used in progress events (startUpdate<event_name>) and error messages
    event_name: str = ""
    label: str = ""

    def __init__(self, client: LuisApiClient, listener: Optional[ProgressListener] = None):
        self.client = client
        self.listener = listener

    def prepare(self, desired: Sequence[Any]) -> List[Any]:
        """Convert local items into the form compared with the remote ones"""
        return list(desired)

    @abstractmethod
    async def fetch(self) -> List[Any]:
        pass

    @abstractmethod
    def desired_key(self, item: Any) -> Hashable:
        pass

    @abstractmethod
    def remote_key(self, item: Any) -> Hashable:
        pass

    @abstractmethod
    async def delete(self, items: List[Any]):
        pass

    @abstractmethod
    async def create(self, items: List[Any]):
        pass


class IntentAdapter(CollectionAdapter):
    event_name = "Intents"
    label = "intents"

    async def fetch(self) -> List[NamedItem]:
        return await self.client.get_intents()

    def desired_key(self, item: Intent) -> Hashable:
        return item.name

    def remote_key(self, item: NamedItem) -> Hashable:
        return item.name

    async def delete(self, items: List[NamedItem]):
        await self.client.delete_intents([item.id for item in items])

    async def create(self, items: List[Intent]):
        await self.client.create_intents([item.name for item in items])


class EntityAdapter(CollectionAdapter):
    event_name = "Entities"
    label = "entities"

    async def fetch(self) -> List[NamedItem]:
        return await self.client.get_entities()

    def desired_key(self, item: Entity) -> Hashable:
        return item.name

    def remote_key(self, item: NamedItem) -> Hashable:
        return item.name

    async def delete(self, items: List[NamedItem]):
        await self.client.delete_entities([item.id for item in items])

    async def create(self, items: List[Entity]):
        await self.client.create_entities([item.name for item in items])


def phrase_list_to_remote(phrase_list: PhraseList) -> RemotePhraseList:
    return RemotePhraseList(
        name=phrase_list.name,
        mode=PhraseListMode.EXCHANGEABLE if phrase_list.exchangeable else PhraseListMode.NON_EXCHANGEABLE,
        is_active=phrase_list.active,
        phrases=phrase_list.words
    )


def phrase_list_key(phrase_list: RemotePhraseList) -> Hashable:
    # Ignores the service identifier
    return (phrase_list.name, phrase_list.mode, phrase_list.is_active, phrase_list.phrases)


class PhraseListAdapter(CollectionAdapter):
    event_name = "PhraseLists"
    label = "phrase lists"

    def prepare(self, desired: Sequence[PhraseList]) -> List[RemotePhraseList]:
        return [phrase_list_to_remote(phrase_list) for phrase_list in desired]

    async def fetch(self) -> List[RemotePhraseList]:
        return await self.client.get_phrase_lists()

    def desired_key(self, item: RemotePhraseList) -> Hashable:
        return phrase_list_key(item)

    def remote_key(self, item: RemotePhraseList) -> Hashable:
        return phrase_list_key(item)

    async def delete(self, items: List[RemotePhraseList]):
        await self.client.delete_phrase_lists([item.id for item in items])

    async def create(self, items: List[RemotePhraseList]):
        await self.client.create_phrase_lists(items)


def utterance_to_example(utterance: Utterance) -> Example:
    """
    Convert a token-indexed utterance into an uploadable example

    Raises:
        EntityRangeError: when an annotation falls outside the utterance
    """
    labels = []
    for entity in utterance.entities:
        span = resolve_entity_span(utterance.text, entity.start_token, entity.end_token)
        labels.append(EntityLabel(entity.entity_name, span.start_char, span.end_char))
    return Example(text=utterance.text, intent=utterance.intent, entity_labels=labels)


def example_key(example: Example) -> Hashable:
    # Entity order is irrelevant
    return (example.text, example.intent, frozenset(example.entity_labels))


def labeled_utterance_key(utterance: LabeledUtterance) -> Hashable:
    labels = []
    for entity in utterance.entities:
        try:
            span = resolve_entity_span(utterance.text, entity.start_token, entity.end_token)
        except EntityRangeError:
            # Never equal to a local example, so it gets replaced
            logger.debug(f"Stored example {utterance.id} has unresolvable entity {entity}")
            return (utterance.text, utterance.intent, None)
        labels.append(EntityLabel(entity.name, span.start_char, span.end_char))
    return (utterance.text, utterance.intent, frozenset(labels))


class ExampleAdapter(CollectionAdapter):
    """
    Examples are keyed by text, intent and entity spans. A stored example
    whose text is still wanted but whose labels changed is deleted and
    uploaded again with the new labels.
    """
    event_name = "Examples"
    label = "examples"

    def prepare(self, desired: Sequence[Utterance]) -> List[Example]:
        by_text: Dict[str, Utterance] = {}
        for utterance in desired:
            if utterance.text in by_text and by_text[utterance.text] != utterance:
                logger.warning(f"Duplicated example text {utterance.text!r}, keeping the last one")
                # Re-insert so the last occurrence also keeps the last position
                del by_text[utterance.text]
            by_text[utterance.text] = utterance
        return [utterance_to_example(utterance) for utterance in by_text.values()]

    async def fetch(self) -> List[LabeledUtterance]:
        emit(self.listener, 'startGetAllExamples')
        examples = await self.client.get_all_examples()
        emit(self.listener, 'endGetAllExamples', len(examples))
        return examples

    def desired_key(self, item: Example) -> Hashable:
        return example_key(item)

    def remote_key(self, item: LabeledUtterance) -> Hashable:
        return labeled_utterance_key(item)

    async def delete(self, items: List[LabeledUtterance]):
        await self.client.delete_examples([item.id for item in items])

    async def create(self, items: List[Example]):
        await self.client.create_examples(items)


class CollectionReconciler:
    """Applies the minimal delete/create set that makes a remote collection match"""

    def __init__(self, listener: Optional[ProgressListener] = None):
        self.listener = listener

    async def reconcile(self, adapter: CollectionAdapter, desired: Sequence[Any]) -> UpdateStats:
        """
        Reconcile one collection

        Deletions finish before any creation starts. Items already deleted or
        created stay in place when a later request fails; running the pass
        again converges.

        Raises:
            StageError: wrapping whatever made the pass fail
        """
        try:
            prepared = adapter.prepare(desired)
            remote = await adapter.fetch()
            delta = compute_delta(prepared, remote, adapter.desired_key, adapter.remote_key)

            stats = UpdateStats(create=len(delta.to_create), delete=len(delta.to_delete))
            logger.info(f"Updating {adapter.label}: {stats.create} to create, {stats.delete} to delete")
            emit(self.listener, f'startUpdate{adapter.event_name}', stats)

            if delta.to_delete:
                await adapter.delete(delta.to_delete)
                reconciled_items.labels(adapter.label, 'delete').inc(stats.delete)
            if delta.to_create:
                await adapter.create(delta.to_create)
                reconciled_items.labels(adapter.label, 'create').inc(stats.create)

            emit(self.listener, f'endUpdate{adapter.event_name}', stats)
            return stats
        except Exception as e:
            logger.error(f"Failed to update {adapter.label}: {e}")
            raise StageError(f"Error trying to update {adapter.label}", e) from e
