"""LLM client wrapper for OpenAI chat completions."""
import os

import openai
import singer

from cc_reports.errors import ReportError

logger = singer.get_logger()

DEFAULT_MODEL = 'gpt-4o-mini'
SYSTEM_PROMPT = 'You help parse reporting queries for a call center database.'


def build_completion(api_key=None, model=None, timeout=None):
    """
    Returns a callable taking the user prompt and returning the raw reply
    text of one zero-temperature chat completion.

    Raises:
        ReportError: if no API key is configured
    """
    api_key = api_key or os.environ.get('OPENAI_API_KEY')
    if not api_key:
        raise ReportError("OpenAI API key not set in config or OPENAI_API_KEY environment variable.")

    model = model or DEFAULT_MODEL
    client = openai.OpenAI(api_key=api_key, timeout=float(timeout) if timeout else openai.DEFAULT_TIMEOUT,
                           max_retries=0)

    def complete(prompt: str) -> str:
        logger.info("Requesting query plan from {}".format(model))
        response = client.chat.completions.create(
            model=model,
            messages=[
                {'role': 'system', 'content': SYSTEM_PROMPT},
                {'role': 'user', 'content': prompt},
            ],
            temperature=0,
        )
        return response.choices[0].message.content or ''

    return complete
