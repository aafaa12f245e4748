"""
Comparison of labeled examples against the predictions of the service.

An example disagrees with its prediction when:
- its intent is not among the top scoring predicted intents (when it is
  among several tied ones the example is flagged as ambiguous instead)
- the predicted entities do not include every labeled entity
- (stored examples only) the service tokenized the text differently
"""
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from language_model import Utterance
from luis_api.client import LuisApiClient, gather_all
from luis_api.events import ProgressListener, emit
from luis_api.models import LabeledUtterance, PredictedIntent, RecognizedEntity
from tokenizer import resolve_entity_span, tokenize
from logger import get_logger

logger = get_logger(__name__)


@dataclass
class PredictionError:
    """
    An example whose prediction disagrees with its labels.

    Only the fields of the detected mismatches are set.
    """
    text: str
    intent: str
    predicted_intents: Optional[List[str]] = None
    ambiguous_predicted_intent: Optional[bool] = None
    tokenized_text: Optional[List[str]] = None
    entities: Optional[List[Any]] = None
    predicted_entities: Optional[List[Any]] = None

    @property
    def has_mismatch(self) -> bool:
        return (self.predicted_intents is not None
                or self.predicted_entities is not None
                or self.tokenized_text is not None)


@dataclass
class IntentStats:
    total: int = 0
    errors: int = 0
    ambiguities: int = 0


@dataclass
class PredictionResult:
    stats: Dict[str, IntentStats] = field(default_factory=dict)
    errors: List[PredictionError] = field(default_factory=list)


def top_predicted_intents(predicted_intents: Iterable[PredictedIntent]) -> List[str]:
    """Return the top scoring intents. On a tie every top one is returned, sorted by name."""
    predicted_intents = list(predicted_intents)
    if not predicted_intents:
        return []
    best = max(predicted.score for predicted in predicted_intents)
    return sorted(predicted.name for predicted in predicted_intents if predicted.score == best)


def match_predicted_entities(labeled: Iterable[Any], predicted: Iterable[Any]) -> bool:
    # Extra predicted entities are fine, missing labeled ones are not
    predicted = set(predicted)
    return all(entity in predicted for entity in labeled)


def compare_example(
    text: str,
    intent: str,
    predicted_intents: List[PredictedIntent],
    entities: List[Any],
    predicted_entities: List[Any],
    tokenized_text: Optional[List[str]] = None
) -> Optional[PredictionError]:
    """
    Classify the mismatches of one example

    Args:
        tokenized_text: Tokenization made by the service, checked against
            the local tokenizer when given

    Returns:
        The PredictionError, or None when prediction and labels agree
    """
    error = PredictionError(text=text, intent=intent)

    top_intents = top_predicted_intents(predicted_intents)
    if intent not in top_intents:
        error.ambiguous_predicted_intent = False
        error.predicted_intents = top_intents
    elif len(top_intents) > 1:
        error.ambiguous_predicted_intent = True
        error.predicted_intents = top_intents

    if not match_predicted_entities(entities, predicted_entities):
        error.entities = list(entities)
        error.predicted_entities = list(predicted_entities)

    if tokenized_text is not None and tokenized_text != tokenize(text):
        error.tokenized_text = list(tokenized_text)

    return error if error.has_mismatch else None


def compute_stats(intents: Iterable[str], errors: Iterable[PredictionError]) -> Dict[str, IntentStats]:
    """Group example, error and ambiguity counts by labeled intent"""
    errors = list(errors)
    totals = Counter(intents)
    intent_errors = Counter(
        error.intent for error in errors
        if error.predicted_intents is not None and not error.ambiguous_predicted_intent
    )
    ambiguities = Counter(
        error.intent for error in errors
        if error.predicted_intents is not None and error.ambiguous_predicted_intent
    )
    return {
        intent: IntentStats(total=total, errors=intent_errors[intent], ambiguities=ambiguities[intent])
        for intent, total in totals.items()
    }


class PredictionComparator:
    """Finds the examples the trained application does not predict as labeled"""

    def __init__(self, client: LuisApiClient, listener: Optional[ProgressListener] = None):
        self.client = client
        self.listener = listener

    @staticmethod
    def _compare_stored(example: LabeledUtterance) -> Optional[PredictionError]:
        return compare_example(
            example.text,
            example.intent,
            example.predicted_intents,
            example.entities,
            example.predicted_entities,
            tokenized_text=example.tokenized_text
        )

    async def check_predictions(self) -> PredictionResult:
        """Check the predictions the service stored for every example"""
        emit(self.listener, 'startGetAllExamples')
        examples = await self.client.get_all_examples()
        emit(self.listener, 'endGetAllExamples', len(examples))

        errors = [error for error in map(self._compare_stored, examples) if error]
        logger.info(f"{len(errors)} of {len(examples)} stored example(s) disagree with their predictions")
        return PredictionResult(
            stats=compute_stats((example.intent for example in examples), errors),
            errors=errors
        )

    async def _test_example(self, utterance: Utterance) -> Optional[PredictionError]:
        entities = []
        for entity in utterance.entities:
            span = resolve_entity_span(utterance.text, entity.start_token, entity.end_token)
            entities.append(RecognizedEntity(entity.entity_name, span.start_char, span.end_char))

        result = await self.client.query(utterance.text)
        return compare_example(
            utterance.text,
            utterance.intent,
            result.predicted_intents,
            entities,
            result.entities
        )

    async def test_examples(self, utterances: List[Utterance]) -> PredictionResult:
        """Query the published application with every utterance and compare"""
        emit(self.listener, 'startTestExamples', len(utterances))
        outcomes = await gather_all(self._test_example(utterance) for utterance in utterances)

        errors = [error for error in outcomes if error]
        logger.info(f"{len(errors)} of {len(utterances)} tested example(s) were not recognized as labeled")
        return PredictionResult(
            stats=compute_stats((utterance.intent for utterance in utterances), errors),
            errors=errors
        )
