"""
Test the LUIS API client: throttling, retries, pagination and batching
"""
import asyncio
import pytest
from unittest.mock import AsyncMock, Mock, call, patch

from config import Settings, SafeSettings
from luis_api.client import LuisApiClient, LuisClientConfig, chunked, gather_all
from luis_api.exceptions import (
    ErrorSeverity, ThrottleExhausted, TransportError, ValidationError
)
from luis_api.models import Example, EntityLabel, PUBLISH_BODY, TrainingState
from luis_api.rate_limiter import RateLimiter


def make_config(**overrides):
    values = dict(
        subscription_key="key",
        application_id="app-id",
        base_url="https://luis.example/prog/apps",
        query_url="https://luis.example/apps",
        requests_per_second=0,
        query_requests_per_second=0,
        page_size=2,
        page_fan_out=3,
        batch_size=100,
        max_retries=5
    )
    values.update(overrides)
    return LuisClientConfig(**values)


def api_example(index):
    return {
        'exampleId': str(index),
        'utteranceText': f"example {index}",
        'tokenizedText': ["example", str(index)],
        'intentLabel': "Greeting",
        'entityLabels': [],
        'intentPredictions': [{'name': "Greeting", 'score': 0.9}],
        'entityPredictions': []
    }


def paginated(data):
    async def fake_send(method, url, params=None, body=None):
        skip, count = params['skip'], params['count']
        return 200, data[skip:skip + count]
    return fake_send


@pytest.fixture
def client(listener):
    return LuisApiClient(make_config(), listener)


class TestRetryPolicy:
    """Test retries on throttled requests"""

    @pytest.mark.asyncio
    async def test_retries_until_accepted(self, client, listener):
        """429, 429, 202 succeeds after two retries with exponential delays"""
        responses = [
            (429, {'error': "Too many requests"}),
            (429, {'error': "Too many requests"}),
            (202, [{'modelId': "m1", 'details': {'status': "In progress"}}])
        ]
        with patch.object(client, '_send', AsyncMock(side_effect=responses)) as send, \
                patch('luis_api.client.asyncio.sleep', new_callable=AsyncMock) as sleep:
            statuses = await client.start_training()

        assert send.await_count == 3
        assert sleep.await_args_list == [call(1.0), call(2.0)]
        assert statuses[0].state == TrainingState.IN_PROGRESS
        assert [args for event, args in listener.events if event == 'rateLimited'] == [
            ('provisioning', 1, 1.0), ('provisioning', 2, 2.0)
        ]

    @pytest.mark.asyncio
    async def test_retry_budget_exhausted(self, listener):
        """Throttling past the retry budget raises ThrottleExhausted"""
        client = LuisApiClient(make_config(max_retries=2, retry_base_delay=0.5, retry_factor=3), listener)
        with patch.object(client, '_send', AsyncMock(return_value=(429, "slow down"))) as send, \
                patch('luis_api.client.asyncio.sleep', new_callable=AsyncMock) as sleep:
            with pytest.raises(ThrottleExhausted) as exc_info:
                await client.get_intents()

        assert send.await_count == 3
        assert sleep.await_args_list == [call(0.5), call(1.5)]
        assert exc_info.value.attempts == 3
        assert exc_info.value.severity == ErrorSeverity.QUOTA
        assert isinstance(exc_info.value, TransportError)

    @pytest.mark.asyncio
    async def test_unexpected_status_fails_immediately(self, client):
        """Other error statuses are not retried and keep the body"""
        body = {'error': {'code': "BadArgument", 'message': "Intent not found"}}
        with patch.object(client, '_send', AsyncMock(return_value=(400, body))) as send, \
                patch('luis_api.client.asyncio.sleep', new_callable=AsyncMock) as sleep:
            with pytest.raises(TransportError) as exc_info:
                await client.delete_intents(["42"])

        assert send.await_count == 1
        sleep.assert_not_awaited()
        assert exc_info.value.status == 400
        assert exc_info.value.body == body
        assert exc_info.value.path == "intents/42"

    @pytest.mark.asyncio
    async def test_timeout_is_transient(self, client):
        """A request timing out raises a retryable TransportError"""
        client.session = Mock(request=Mock(side_effect=asyncio.TimeoutError()))

        with pytest.raises(TransportError) as exc_info:
            await client.get_app()

        assert exc_info.value.severity == ErrorSeverity.TRANSIENT
        assert exc_info.value.is_retryable
        assert isinstance(exc_info.value.original_error, asyncio.TimeoutError)
        assert isinstance(exc_info.value.__cause__, asyncio.TimeoutError)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status,severity", [
        (401, ErrorSeverity.CONFIGURATION),
        (403, ErrorSeverity.CONFIGURATION),
        (503, ErrorSeverity.TRANSIENT),
        (404, ErrorSeverity.FATAL),
    ])
    async def test_error_severity(self, client, status, severity):
        """Error statuses are classified by severity"""
        with patch.object(client, '_send', AsyncMock(return_value=(status, None))):
            with pytest.raises(TransportError) as exc_info:
                await client.get_app()
        assert exc_info.value.severity == severity


class TestPagination:
    """Test reading every example"""

    @pytest.mark.asyncio
    async def test_reads_rounds_until_short_page(self, client, listener):
        """Rounds of concurrent pages stop after a short page"""
        data = [api_example(i) for i in range(7)]
        with patch.object(client, '_send', AsyncMock(side_effect=paginated(data))) as send:
            examples = await client.get_all_examples()

        assert [example.id for example in examples] == [str(i) for i in range(7)]
        # Two rounds of three pages
        assert send.await_count == 6
        skips = sorted(c.kwargs['params']['skip'] for c in send.await_args_list)
        assert skips == [0, 2, 4, 6, 8, 10]
        assert ('getExamples', (6, 7)) in listener.events

    @pytest.mark.asyncio
    async def test_exact_multiple_of_page_size(self, listener):
        """A collection filling whole rounds needs one more round"""
        client = LuisApiClient(make_config(page_fan_out=2), listener)
        data = [api_example(i) for i in range(4)]
        with patch.object(client, '_send', AsyncMock(side_effect=paginated(data))) as send:
            examples = await client.get_all_examples()

        assert len(examples) == 4
        assert send.await_count == 4

    @pytest.mark.asyncio
    async def test_empty_collection(self, client):
        """An empty application is read in one round"""
        with patch.object(client, '_send', AsyncMock(side_effect=paginated([]))) as send:
            assert await client.get_all_examples() == []
        assert send.await_count == 3

    @pytest.mark.asyncio
    async def test_example_mapping(self, client):
        """Examples keep labels and predictions"""
        item = api_example(1)
        item['entityLabels'] = [{'entityName': "number", 'startTokenIndex': 1, 'endTokenIndex': 1}]
        with patch.object(client, '_send', AsyncMock(return_value=(200, [item]))):
            examples = await client.get_examples(0, 2)

        example = examples[0]
        assert example.text == "example 1"
        assert example.intent == "Greeting"
        assert example.tokenized_text == ["example", "1"]
        assert example.entities[0].name == "number"
        assert example.predicted_intents[0].score == 0.9


class TestBatchedWrites:
    """Test batched example creation"""

    @staticmethod
    async def accept_all(method, url, params=None, body=None):
        return 201, [
            {'value': {'exampleId': str(i), 'utteranceText': item['exampleText']}, 'hasError': False}
            for i, item in enumerate(body)
        ]

    @pytest.mark.asyncio
    async def test_chunks_by_batch_size(self, client, listener):
        """250 examples with a cap of 100 take three requests"""
        examples = [Example(f"text {i}", "Greeting") for i in range(250)]
        with patch.object(client, '_send', AsyncMock(side_effect=self.accept_all)) as send:
            results = await client.create_examples(examples)

        assert send.await_count == 3
        assert sorted(len(c.kwargs['body']) for c in send.await_args_list) == [50, 100, 100]
        assert len(results) == 250
        assert sorted(args[0] for event, args in listener.events if event == 'createExampleBunch') == [50, 100, 100]

    @pytest.mark.asyncio
    async def test_errored_items_fail_the_operation(self, client):
        """Items flagged by the service raise ValidationError with the errored subset"""
        async def reject_one(method, url, params=None, body=None):
            return 201, [
                {'value': {'exampleId': None, 'utteranceText': item['exampleText']},
                 'hasError': item['exampleText'] == "bad",
                 'error': "Invalid intent" if item['exampleText'] == "bad" else None}
                for item in body
            ]

        examples = [Example("good", "Greeting"), Example("bad", "Unknown")]
        with patch.object(client, '_send', AsyncMock(side_effect=reject_one)):
            with pytest.raises(ValidationError) as exc_info:
                await client.create_examples(examples)

        assert exc_info.value.failures == [("bad", "Invalid intent")]

    @pytest.mark.asyncio
    async def test_example_payload_uses_character_offsets(self, client):
        """Entity labels are sent with inclusive character offsets"""
        example = Example("fly to New York", "Flight", [EntityLabel("city", 7, 14)])
        with patch.object(client, '_send', AsyncMock(side_effect=self.accept_all)) as send:
            await client.create_examples([example])

        assert send.await_args.kwargs['body'] == [{
            'exampleText': "fly to New York",
            'selectedIntentName': "Flight",
            'entityLabels': [{'entityType': "city", 'startToken': 7, 'endToken': 14}]
        }]

    @pytest.mark.asyncio
    async def test_deletes_emit_progress(self, client, listener):
        """Every deleted example is reported"""
        with patch.object(client, '_send', AsyncMock(return_value=(200, None))) as send:
            await client.delete_examples(["1", "2"])

        assert send.await_count == 2
        assert sorted(args[0] for event, args in listener.events if event == 'deleteExample') == ["1", "2"]


class TestEndpoints:
    """Test URLs, bodies and surfaces"""

    @pytest.mark.asyncio
    async def test_publish_sends_fixed_body(self, client):
        """Publication always sends the mandatory body"""
        response = {'URL': "https://luis.example/app", 'PublishDate': "2017-01-01"}
        with patch.object(client, '_send', AsyncMock(return_value=(201, response))) as send:
            result = await client.publish()

        assert send.await_args.args == ('POST', "https://luis.example/prog/apps/app-id/publish")
        assert send.await_args.kwargs['body'] == PUBLISH_BODY
        assert result.url == "https://luis.example/app"

    @pytest.mark.asyncio
    async def test_query_uses_prediction_surface(self, client, listener):
        """Queries go to the prediction URL with verbose results"""
        response = {
            'query': "hello there",
            'topScoringIntent': {'intent': "Greeting", 'score': 0.8},
            'intents': [{'intent': "Greeting", 'score': 0.8}, {'intent': "None", 'score': 0.1}],
            'entities': [{'entity': "there", 'type': "place", 'startIndex': 6, 'endIndex': 10, 'score': 0.7}]
        }
        with patch.object(client, '_send', AsyncMock(return_value=(200, response))) as send:
            result = await client.query("hello there")

        assert send.await_args.args == ('GET', "https://luis.example/apps/app-id")
        assert send.await_args.kwargs['params'] == {'q': "hello there", 'verbose': 'true'}
        assert [intent.name for intent in result.predicted_intents] == ["Greeting", "None"]
        assert result.entities[0].name == "place"
        assert (result.entities[0].start_char, result.entities[0].end_char) == (6, 10)
        assert ('recognizeSentence', ("hello there",)) in listener.events

    @pytest.mark.asyncio
    async def test_surfaces_have_separate_limiters(self, client):
        """Provisioning and query requests are throttled independently"""
        assert client._limiters['provisioning'] is not client._limiters['query']


class TestRateLimiter:
    """Test request spacing"""

    def test_slots_are_spaced(self):
        """Consecutive reservations are one interval apart"""
        limiter = RateLimiter(4)
        delays = [limiter.reserve() for _ in range(3)]
        assert delays[0] == pytest.approx(0, abs=0.01)
        assert delays[1] == pytest.approx(0.25, abs=0.01)
        assert delays[2] == pytest.approx(0.5, abs=0.01)

    @pytest.mark.asyncio
    async def test_disabled_limiter_never_waits(self):
        """A zero rate admits every request immediately"""
        limiter = RateLimiter(0)
        with patch('luis_api.rate_limiter.asyncio.sleep', new_callable=AsyncMock) as sleep:
            for _ in range(10):
                await limiter.acquire()
        sleep.assert_not_awaited()

    def test_negative_rate_rejected(self):
        with pytest.raises(ValueError):
            RateLimiter(-1)

    @pytest.mark.asyncio
    async def test_context_manager_acquires_a_slot(self):
        """Entering the limiter waits for the next slot"""
        limiter = RateLimiter(4)
        with patch('luis_api.rate_limiter.asyncio.sleep', new_callable=AsyncMock) as sleep:
            async with limiter:
                pass
            async with limiter as entered:
                assert entered is limiter

        sleep.assert_awaited_once()
        assert sleep.await_args.args[0] == pytest.approx(0.25, abs=0.01)


class TestGatherAll:
    """Test concurrent fan-out"""

    @pytest.mark.asyncio
    async def test_returns_results_in_order(self):
        async def value(v):
            return v
        assert await gather_all(value(v) for v in range(3)) == [0, 1, 2]

    @pytest.mark.asyncio
    async def test_first_failure_raised_and_others_logged(self):
        """Every awaitable finishes; later failures are logged"""
        done = []

        async def succeed():
            done.append(True)

        async def fail(message):
            raise RuntimeError(message)

        with patch('luis_api.client.logger') as logger:
            with pytest.raises(RuntimeError, match="first"):
                await gather_all([fail("first"), succeed(), fail("second")])

        assert done == [True]
        logger.warning.assert_called_once()
        assert "second" in logger.warning.call_args.args[0]


class TestConfiguration:
    """Test client configuration from settings"""

    def test_from_settings(self):
        """Settings become an explicit client configuration"""
        settings = SafeSettings(Settings(
            luis_subscription_key="secret",
            luis_application_id="app",
            luis_requests_per_second=2
        ))
        config = LuisClientConfig.from_settings(settings, page_fan_out=4)
        assert config.subscription_key == "secret"
        assert config.application_id == "app"
        assert config.requests_per_second == 2
        assert config.batch_size == 100
        assert config.page_fan_out == 4

    def test_invalid_batch_size(self):
        """The service batch limit is enforced"""
        with pytest.raises(ValueError, match="batch size"):
            Settings(luis_batch_size=500)

    def test_chunked(self):
        assert chunked(list(range(5)), 2) == [[0, 1], [2, 3], [4]]
