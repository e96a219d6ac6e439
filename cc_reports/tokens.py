import base64

import requests
import singer

logger = singer.get_logger()

DEFAULT_OAUTH_HOST = 'https://zoom.us'


class StaticTokenProvider(object):
    """Hands out pre-issued tokens keyed by caller id; '*' matches any caller."""

    def __init__(self, tokens: dict):
        self.tokens = dict(tokens)

    def __call__(self, caller_id):
        return self.tokens.get(caller_id) or self.tokens.get('*')


class ClientCredentialsTokenProvider(object):
    """
    Server-to-server OAuth: every caller shares the account's credentials,
    so the caller id only matters for logging.
    """

    def __init__(self, account_id, client_id, client_secret, oauth_host=DEFAULT_OAUTH_HOST,
                 session=None, timeout=30):
        self.account_id = account_id
        self.client_id = client_id
        self.client_secret = client_secret
        self.oauth_host = oauth_host.rstrip('/')
        self.session = session or requests.Session()
        self.timeout = timeout

    def __call__(self, caller_id):
        logger.info("Getting access token for {}".format(caller_id))
        credentials = '{}:{}'.format(self.client_id, self.client_secret).encode('utf-8')
        headers = {
            'Authorization': 'Basic {}'.format(base64.b64encode(credentials).decode('ascii')),
        }
        params = {
            'grant_type': 'account_credentials',
            'account_id': self.account_id,
        }
        response = self.session.post('{}/oauth/token'.format(self.oauth_host),
                                     params=params, headers=headers, timeout=self.timeout)
        response.raise_for_status()
        return response.json().get('access_token')


def build_token_provider(config: dict):
    if config.get('access_token'):
        return StaticTokenProvider({'*': config['access_token']})

    if all(config.get(key) for key in ('account_id', 'client_id', 'client_secret')):
        return ClientCredentialsTokenProvider(
            config['account_id'],
            config['client_id'],
            config['client_secret'],
            oauth_host=config.get('oauth_host', DEFAULT_OAUTH_HOST),
        )

    # no credentials configured; ingestion fails with AuthorizationMissing
    return StaticTokenProvider({})
