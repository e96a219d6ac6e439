import backoff
import requests
import singer

from cc_reports.errors import UpstreamShapeError

logger = singer.get_logger()

HTTP_RATE_LIMIT_ERROR = 429
API_RETRY_INTERVAL_SECONDS = 30
# a single try: upstream failures surface to the caller unless api_retry_count is raised
DEFAULT_RETRY_COUNT = 1
DEFAULT_API_HOST = 'https://api.zoom.us/v2'
DEFAULT_PAGE_SIZE = 300
DEFAULT_MAX_PAGES = 1000
DEFAULT_REQUEST_TIMEOUT = 60

STOP_EXHAUSTED = 'exhausted'
STOP_MALFORMED = 'malformed'
STOP_MAX_PAGES = 'max_pages'
STOP_CANCELLED = 'cancelled'


def giveup(error):
    logger.warning("Encountered an error while fetching a page")
    logger.error(error)

    response = getattr(error, 'response', None)
    is_api_error = response is not None
    is_rate_limit_error = is_api_error and response.status_code == HTTP_RATE_LIMIT_ERROR

    logger.debug("Is API Error? {}. Is Rate Limit Error? {}.".format(is_api_error, is_rate_limit_error))

    #  return true if we should *not* retry
    return not is_rate_limit_error


class PageIterator(object):
    """
    Iterates the record arrays of a cursor-paginated endpoint.

    Page N+1 is requested only when the consumer asks for it, after page N
    has been handed over. Iteration ends when the response carries no
    next_page_token, when max_pages pages were produced, or when
    cancel_event is set. A page without its record array raises
    UpstreamShapeError. The reason is kept on stop_reason.
    """

    def __init__(self, client, path, records_key, token, params=None, cancel_event=None):
        self.client = client
        self.path = path
        self.records_key = records_key
        self.token = token
        self.params = params or {}
        self.cancel_event = cancel_event
        self.pages_fetched = 0
        self.stop_reason = None

    def __iter__(self):
        next_page_token = None

        while True:
            if self.cancel_event is not None and self.cancel_event.is_set():
                logger.info("Paging of {} cancelled after {} pages".format(self.path, self.pages_fetched))
                self.stop_reason = STOP_CANCELLED
                return

            if self.pages_fetched >= self.client.max_pages:
                logger.warning("Stopping {} at the {} page safety cap".format(self.path, self.client.max_pages))
                self.stop_reason = STOP_MAX_PAGES
                return

            query = dict(self.params)
            query['page_size'] = self.client.page_size
            if next_page_token:
                query['next_page_token'] = next_page_token

            response = self.client.get(self.path, query, self.token)
            records = response.get(self.records_key) if isinstance(response, dict) else None

            if not isinstance(records, list):
                self.stop_reason = STOP_MALFORMED
                raise UpstreamShapeError(
                    "Expected '{}' array in response from {}".format(self.records_key, self.path))

            self.pages_fetched += 1
            next_page_token = response.get('next_page_token')
            yield records

            if not next_page_token:
                self.stop_reason = STOP_EXHAUSTED
                return


class SourceClient(object):
    """
    Upstream failures are terminal by default. With retry_count above 1,
    HTTP 429 responses are retried on a constant interval.
    """

    def __init__(self, api_host=DEFAULT_API_HOST, session=None, page_size=DEFAULT_PAGE_SIZE,
                 max_pages=DEFAULT_MAX_PAGES, timeout=DEFAULT_REQUEST_TIMEOUT, retry_count=DEFAULT_RETRY_COUNT,
                 retry_interval=API_RETRY_INTERVAL_SECONDS):
        self.api_host = api_host.rstrip('/')
        self.session = session or requests.Session()
        self.page_size = page_size
        self.max_pages = max_pages
        self.timeout = timeout
        self.retry_count = max(int(retry_count), 1)

        self._get_with_retry = backoff.on_exception(backoff.constant,
                                                    requests.exceptions.HTTPError,
                                                    jitter=backoff.random_jitter,
                                                    max_tries=self.retry_count,
                                                    giveup=giveup,
                                                    interval=retry_interval)(self._get)

    def get(self, path: str, params: dict, token: str) -> dict:
        return self._get_with_retry(path, params, token)

    def _get(self, path: str, params: dict, token: str) -> dict:
        url = '{}/{}'.format(self.api_host, path.lstrip('/'))
        headers = {
            'Authorization': 'Bearer {}'.format(token),
            'Content-Type': 'application/json',
        }
        response = self.session.get(url, params=params, headers=headers, timeout=self.timeout)
        response.raise_for_status()
        return response.json()

    def pages(self, path, records_key, token, params=None, cancel_event=None) -> PageIterator:
        return PageIterator(self, path, records_key, token, params=params, cancel_event=cancel_event)
