"""
LUIS Trainer - keeps a LUIS application in sync with a local language model
"""
from contextlib import contextmanager
from typing import Any, Dict, List, Optional

from config import settings
from language_model import Model, Utterance
from luis_api.client import LuisApiClient, LuisClientConfig
from luis_api.events import ProgressListener, emit
from luis_api.exceptions import CultureMismatch, StageError
from luis_api.models import PublishResult
from prediction_comparator import PredictionComparator, PredictionResult
from reconciler import (
    CollectionReconciler, EntityAdapter, ExampleAdapter, IntentAdapter, PhraseListAdapter, UpdateStats
)
from training_monitor import TrainingMonitor, TrainingResult
from logger import get_logger

logger = get_logger(__name__)


@contextmanager
def stage(message: str):
    """Wrap any failure of the enclosed stage into a StageError"""
    try:
        yield
    except StageError:
        raise
    except Exception as e:
        logger.error(f"{message}: {e}")
        raise StageError(message, e) from e


class LuisTrainer:
    """
    Main entry point: export, update (reconcile, train and publish) and
    prediction checks of one LUIS application
    """

    def __init__(
        self,
        config: Optional[LuisClientConfig] = None,
        listener: Optional[ProgressListener] = None,
        polling_interval: Optional[float] = None,
        client: Optional[LuisApiClient] = None
    ):
        self.config = config or LuisClientConfig.from_settings(settings)
        self.listener = listener or ProgressListener()
        self.client = client or LuisApiClient(self.config, self.listener)
        self.polling_interval = (polling_interval if polling_interval is not None
                                 else settings.get('luis_training_poll_interval', 2.0))
        self.reconciler = CollectionReconciler(self.listener)

    async def close(self):
        await self.client.close()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def export(self) -> Dict[str, Any]:
        """Return the export document of the application"""
        with stage('Error trying to export the app'):
            return await self.client.export()

    async def update(self, model: Model) -> PublishResult:
        """
        Make the application match ``model``, then train and publish it.

        Collections are reconciled in dependency order (intents, entities,
        phrase lists, examples), each against a fresh read of the
        application. Nothing is mutated when the cultures differ.

        Raises:
            StageError: naming the failed stage and chaining its cause
        """
        logger.info(f"Updating application {self.config.application_id}")
        await self.check_culture(model.culture)
        await self.update_intents(model)
        await self.update_entities(model)
        await self.update_phrase_lists(model)
        await self.update_examples(model)
        await self.train()
        return await self.publish()

    async def check_culture(self, culture: str):
        with stage('Error trying to check the culture'):
            app = await self.client.get_app()
            if app.culture != culture:
                raise CultureMismatch(culture, app.culture)

    async def update_intents(self, model: Model) -> UpdateStats:
        return await self.reconciler.reconcile(IntentAdapter(self.client, self.listener), model.intents)

    async def update_entities(self, model: Model) -> UpdateStats:
        return await self.reconciler.reconcile(EntityAdapter(self.client, self.listener), model.entities)

    async def update_phrase_lists(self, model: Model) -> UpdateStats:
        return await self.reconciler.reconcile(PhraseListAdapter(self.client, self.listener), model.phrase_lists)

    async def update_examples(self, model: Model) -> UpdateStats:
        return await self.reconciler.reconcile(ExampleAdapter(self.client, self.listener), model.utterances)

    async def train(self) -> TrainingResult:
        with stage('Error trying to train models'):
            monitor = TrainingMonitor(self.client, self.listener, self.polling_interval)
            return await monitor.train()

    async def publish(self) -> PublishResult:
        with stage('Error trying to publish the app'):
            emit(self.listener, 'startPublish')
            result = await self.client.publish()
            emit(self.listener, 'endPublish', result)
            logger.info(f"Application published at {result.url}")
            return result

    async def check_predictions(self) -> PredictionResult:
        """Compare every stored example with the prediction of the last trained model"""
        with stage('Error trying to check predictions'):
            emit(self.listener, 'startCheckPredictions')
            return await PredictionComparator(self.client, self.listener).check_predictions()

    async def test_examples(self, utterances: List[Utterance]) -> PredictionResult:
        """Query the published application with ``utterances`` and compare with their labels"""
        with stage('Error trying to test examples'):
            return await PredictionComparator(self.client, self.listener).test_examples(utterances)
