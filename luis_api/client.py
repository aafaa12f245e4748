"""
LUIS API client: throttled, retrying access to the provisioning and
prediction surfaces of a LUIS application.
"""
import aiohttp
import asyncio
import json
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Dict, Iterable, List, Optional, Tuple

from luis_api.events import ProgressListener, emit
from luis_api.exceptions import (
    ThrottleExhausted, TransportError, ValidationError, ErrorSeverity, error_for_status
)
from luis_api.models import (
    AppInfo, Example, ExampleCreateResult, LabeledUtterance, NamedItem, PUBLISH_BODY,
    PublishResult, QueryResult, RemotePhraseList, TrainingStatus
)
from luis_api.rate_limiter import RateLimiter
from logger import get_logger
from metrics import request_count, request_duration, throttled_requests

logger = get_logger(__name__)

SUCCESS_STATUSES = {200, 201, 202}
TOO_MANY_REQUESTS = 429

PROVISIONING = "provisioning"
QUERY = "query"


@dataclass
class LuisClientConfig:
    """Connection, throttling and batching parameters of a LuisApiClient"""
    subscription_key: str
    application_id: str
    base_url: str = "https://westus.api.cognitive.microsoft.com/luis/v1.0/prog/apps"
    query_url: str = "https://westus.api.cognitive.microsoft.com/luis/v2.0/apps"
    requests_per_second: float = 5
    query_requests_per_second: float = 10
    page_size: int = 100
    page_fan_out: int = 15
    batch_size: int = 100
    max_retries: int = 5
    retry_base_delay: float = 1.0
    retry_factor: float = 2.0
    timeout: int = 30

    @classmethod
    def from_settings(cls, settings, **overrides) -> 'LuisClientConfig':
        values = dict(
            subscription_key=settings.get('luis_subscription_key'),
            application_id=settings.get('luis_application_id'),
            base_url=settings.get('luis_base_url'),
            query_url=settings.get('luis_query_url'),
            requests_per_second=settings.get('luis_requests_per_second', 5),
            query_requests_per_second=settings.get('luis_query_requests_per_second', 10),
            page_size=settings.get('luis_page_size', 100),
            page_fan_out=settings.get('luis_page_fan_out', 15),
            batch_size=settings.get('luis_batch_size', 100),
            max_retries=settings.get('luis_max_retries', 5),
            retry_base_delay=settings.get('luis_retry_base_delay', 1.0),
            retry_factor=settings.get('luis_retry_factor', 2.0),
            timeout=settings.get('luis_request_timeout', 30)
        )
        values.update(overrides)
        return cls(**values)


def chunked(items: List[Any], size: int) -> List[List[Any]]:
    return [items[i:i + size] for i in range(0, len(items), size)]


async def gather_all(aws: Iterable[Awaitable[Any]]) -> List[Any]:
    """Wait for every awaitable, then raise the first failure if any"""
    results = await asyncio.gather(*aws, return_exceptions=True)
    failures = [result for result in results if isinstance(result, BaseException)]
    if failures:
        for failure in failures[1:]:
            logger.warning(f"Concurrent request also failed: {failure!r}")
        raise failures[0]
    return results


class LuisApiClient:
    """
    Client for one LUIS application

    Every request goes through the rate limiter of its surface and is
    retried with exponential backoff while the service answers 429.
    """

    def __init__(self, config: LuisClientConfig, listener: Optional[ProgressListener] = None):
        self.config = config
        self.listener = listener
        self.session: Optional[aiohttp.ClientSession] = None
        self._limiters = {
            PROVISIONING: RateLimiter(config.requests_per_second, PROVISIONING),
            QUERY: RateLimiter(config.query_requests_per_second, QUERY)
        }

    async def initialize(self):
        """Open the HTTP session"""
        if self.session:
            return
        self.session = aiohttp.ClientSession(
            timeout=aiohttp.ClientTimeout(total=self.config.timeout),
            headers={
                'Ocp-Apim-Subscription-Key': self.config.subscription_key or '',
                'Accept': 'application/json'
            }
        )
        logger.debug(f"LUIS client initialized for application {self.config.application_id}")

    async def close(self):
        """Close HTTP session"""
        if self.session:
            await self.session.close()
            self.session = None
            logger.debug("LUIS client closed")

    async def __aenter__(self):
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    def _url(self, path: str, surface: str) -> str:
        if surface == QUERY:
            return f"{self.config.query_url.rstrip('/')}/{self.config.application_id}"
        url = f"{self.config.base_url.rstrip('/')}/{self.config.application_id}"
        return f"{url}/{path}" if path else url

    async def _send(
        self,
        method: str,
        url: str,
        params: Optional[Dict[str, Any]] = None,
        body: Any = None
    ) -> Tuple[int, Any]:
        """Issue a single HTTP request and return its status and parsed body"""
        await self.initialize()
        try:
            async with self.session.request(method, url, params=params, json=body) as response:
                text = await response.text()
                try:
                    payload = json.loads(text) if text else None
                except ValueError:
                    payload = text
                return response.status, payload
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TransportError(
                f"{method} {url} failed: {e!r}",
                method=method,
                path=url,
                severity=ErrorSeverity.TRANSIENT,
                is_retryable=True,
                original_error=e
            ) from e

    async def _request(
        self,
        method: str,
        path: str = "",
        params: Optional[Dict[str, Any]] = None,
        body: Any = None,
        surface: str = PROVISIONING
    ) -> Any:
        limiter = self._limiters[surface]
        url = self._url(path, surface)
        resource = path.split('/')[0] or surface

        payload = None
        for attempt in range(self.config.max_retries + 1):
            await limiter.acquire()

            start = time.time()
            status, payload = await self._send(method, url, params=params, body=body)
            request_duration.labels(method, resource).observe(time.time() - start)
            request_count.labels(method, resource, status).inc()
            logger.debug(f"{method} {path or '/'} -> {status}")

            if status in SUCCESS_STATUSES:
                return payload
            if status != TOO_MANY_REQUESTS:
                raise error_for_status(status, payload, method, path or '/')
            if attempt == self.config.max_retries:
                break

            delay = self.config.retry_base_delay * self.config.retry_factor ** attempt
            throttled_requests.labels(surface).inc()
            logger.warning(f"{method} {path or '/'} throttled, retry {attempt + 1} in {delay:.1f}s")
            emit(self.listener, 'rateLimited', surface, attempt + 1, delay)
            await asyncio.sleep(delay)

        raise ThrottleExhausted(method, path or '/', self.config.max_retries + 1, payload)

    # Application

    async def get_app(self) -> AppInfo:
        return AppInfo.from_api(await self._request('GET'))

    async def export(self) -> Dict[str, Any]:
        logger.debug(f"Exporting application {self.config.application_id}")
        return await self._request('GET', 'export')

    # Intents and entities

    async def _get_named_items(self, collection: str) -> List[NamedItem]:
        return [NamedItem.from_api(item) for item in await self._request('GET', collection) or []]

    async def _create_named_items(self, collection: str, names: List[str]) -> List[str]:
        return await gather_all(
            self._request('POST', collection, body=NamedItem.to_api(name)) for name in names
        )

    async def _delete_items(self, collection: str, ids: List[str]):
        async def delete(item_id: str):
            await self._request('DELETE', f"{collection}/{item_id}")
            emit(self.listener, 'deleteItem', collection, item_id)

        await gather_all(delete(item_id) for item_id in ids)

    async def get_intents(self) -> List[NamedItem]:
        return await self._get_named_items('intents')

    async def create_intents(self, names: List[str]) -> List[str]:
        return await self._create_named_items('intents', names)

    async def delete_intents(self, ids: List[str]):
        await self._delete_items('intents', ids)

    async def get_entities(self) -> List[NamedItem]:
        return await self._get_named_items('entities')

    async def create_entities(self, names: List[str]) -> List[str]:
        return await self._create_named_items('entities', names)

    async def delete_entities(self, ids: List[str]):
        await self._delete_items('entities', ids)

    # Phrase lists

    async def get_phrase_lists(self) -> List[RemotePhraseList]:
        return [RemotePhraseList.from_api(item) for item in await self._request('GET', 'phraselists') or []]

    async def create_phrase_lists(self, phrase_lists: List[RemotePhraseList]) -> List[Any]:
        return await gather_all(
            self._request('POST', 'phraselists', body=phrase_list.to_api()) for phrase_list in phrase_lists
        )

    async def delete_phrase_lists(self, ids: List[str]):
        await self._delete_items('phraselists', ids)

    # Examples

    async def get_examples(self, skip: int = 0, count: Optional[int] = None) -> List[LabeledUtterance]:
        count = count or self.config.page_size
        page = await self._request('GET', 'examples', params={'skip': skip, 'count': count}) or []
        emit(self.listener, 'getExamples', skip, skip + len(page))
        return [LabeledUtterance.from_api(item) for item in page]

    async def get_all_examples(self) -> List[LabeledUtterance]:
        """
        Read every example of the application

        Pages are requested ``page_fan_out`` at a time. A round containing a
        short page is the last one.
        """
        page_size = self.config.page_size
        examples: List[LabeledUtterance] = []
        skip = 0
        while True:
            offsets = [skip + i * page_size for i in range(self.config.page_fan_out)]
            pages = await gather_all(self.get_examples(offset, page_size) for offset in offsets)
            for page in pages:
                examples.extend(page)
            if any(len(page) < page_size for page in pages):
                logger.debug(f"Read {len(examples)} examples in {skip // page_size + len(pages)} pages")
                return examples
            skip += len(offsets) * page_size

    async def create_examples(self, examples: List[Example]) -> List[ExampleCreateResult]:
        """
        Upload examples in batches of at most ``batch_size``

        Raises:
            ValidationError: when the service flags any example as erroneous
        """
        async def create_batch(batch: List[Example]) -> List[ExampleCreateResult]:
            response = await self._request('POST', 'examples', body=[example.to_api() for example in batch])
            emit(self.listener, 'createExampleBunch', len(batch))
            return [ExampleCreateResult.from_api(item) for item in response or []]

        batches = await gather_all(
            create_batch(batch) for batch in chunked(examples, self.config.batch_size)
        )
        results = [result for batch in batches for result in batch]

        failures = [(result.text, result.error) for result in results if result.has_error]
        if failures:
            raise ValidationError(failures)
        return results

    async def delete_examples(self, ids: List[str]):
        async def delete(example_id: str):
            await self._request('DELETE', f"examples/{example_id}")
            emit(self.listener, 'deleteExample', example_id)

        await gather_all(delete(example_id) for example_id in ids)

    # Training and publication

    async def start_training(self) -> List[TrainingStatus]:
        logger.debug(f"Triggering training for application {self.config.application_id}")
        return [TrainingStatus.from_api(item) for item in await self._request('POST', 'train') or []]

    async def get_training_status(self) -> List[TrainingStatus]:
        return [TrainingStatus.from_api(item) for item in await self._request('GET', 'train') or []]

    async def publish(self) -> PublishResult:
        logger.debug(f"Publishing application {self.config.application_id}")
        return PublishResult.from_api(await self._request('POST', 'publish', body=PUBLISH_BODY) or {})

    # Prediction

    async def query(self, text: str) -> QueryResult:
        """Ask the published application for the intent and entities of ``text``"""
        emit(self.listener, 'recognizeSentence', text)
        response = await self._request('GET', params={'q': text, 'verbose': 'true'}, surface=QUERY)
        return QueryResult.from_api(response or {})
