"""
Free-text reporting questions answered through a language-model query plan.

The model only proposes a plan of the form

    {"kind": ..., "method": "findOne" | "findAll", "options": {...}}

and nothing it returns is ever evaluated. Before anything runs, the plan is
narrowed to the reporting kinds in ALLOWED_KINDS, the two read methods, the
operators in OPERATORS and the FUNCTION(COLUMN) descriptors in
AGGREGATE_FUNCTIONS. Everything else is either rejected or, for unknown
operator keys, dropped. The resulting SELECT is executed once, read-only.
"""
import datetime
import json
import re

import singer
import sqlalchemy as sa
from singer import utils
from sqlalchemy.exc import SQLAlchemyError

from cc_reports.errors import (
    PlanError, PlanParseError, PlanStructureError, ForbiddenKindError, QueryExecutionError,
)
from cc_reports.store import KINDS, QUEUE, PERFORMANCE, TIMECARD, ENGAGEMENT, CALL_LOG
from cc_reports.util import safe_json_serialize_deserialize

logger = singer.get_logger()

ALLOWED_KINDS = {
    'Queue': QUEUE,
    'Performance': PERFORMANCE,
    'Timecard': TIMECARD,
    'Engagement': ENGAGEMENT,
    'CallLog': CALL_LOG,
}

FIND_ONE = 'findOne'
FIND_ALL = 'findAll'
READ_METHODS = (FIND_ONE, FIND_ALL)

OPERATOR_NAMESPACE = 'Op'


def _as_list(value):
    return value if isinstance(value, list) else [value]


OPERATORS = {
    'eq': lambda column, value: column == value,
    'ne': lambda column, value: column != value,
    'gt': lambda column, value: column > value,
    'gte': lambda column, value: column >= value,
    'lt': lambda column, value: column < value,
    'lte': lambda column, value: column <= value,
    'like': lambda column, value: column.like(str(value)),
    'in': lambda column, value: column.in_(_as_list(value)),
    'notIn': lambda column, value: column.not_in(_as_list(value)),
}

AGGREGATE_FUNCTIONS = {
    'COUNT': sa.func.count,
    'SUM': sa.func.sum,
    'AVG': sa.func.avg,
    'MIN': sa.func.min,
    'MAX': sa.func.max,
}

FUNCTION_PATTERN = re.compile(r'^([A-Za-z]+)\(([A-Za-z_][A-Za-z0-9_]*)\)$')

MAX_RESULT_ROWS = 10000

TYPE_LABELS = {
    'integer': 'INTEGER',
    'boolean': 'BOOLEAN',
    'string': 'STRING',
}

KIND_GUIDANCE = """IMPORTANT RULES:
- ONLY use these 5 kinds: Timecard, Performance, Engagement, Queue, CallLog
- DO NOT use User, Agent, Team, Role or any other kind
- For agent-specific queries about calls handled, use Performance
- For agent status/login queries, use Timecard
- For individual call details, use Engagement
- For queue statistics, use Queue
- For basic call logs, use CallLog
- All duration fields are in milliseconds
- Use exact column names as listed above
- Fields like transfer_count and voice_mail are specific to Queue and must not be used with Performance
- Use "group" only when comparing multiple agents or entities, never when filtering one specific agent
- When selecting non-aggregated columns together with aggregates, list ALL non-aggregated columns in "group"

Available operators for filters: Op.eq, Op.ne, Op.gt, Op.gte, Op.lt, Op.lte, Op.like, Op.in, Op.notIn
Available functions: COUNT, SUM, AVG, MIN, MAX, written as FUNCTION(column) e.g. "SUM(handled_count)"
Date format: YYYY-MM-DD or YYYY-MM-DD HH:mm:ss"""

PROMPT_TEMPLATE = """You are an assistant for a call center reporting system. Given a user request, output ONE JSON object with keys:
- kind: the record kind (MUST be one of: Timecard, Performance, Engagement, Queue, CallLog)
- method: either "findOne" or "findAll"
- options: an object with optional "where", "attributes", "group", "order" and "limit"

CRITICAL RESTRICTION: You can ONLY use these 5 kinds: Timecard, Performance, Engagement, Queue, CallLog.
DO NOT use: User, Agent, Role, Team, or ANY other kind name. Never produce write operations.

CURRENT DATE CONTEXT:
- Today is: {today}
- Tomorrow is: {tomorrow}
- Yesterday was: {yesterday}
- Last week started: {last_week_start}
- This month started: {this_month_start}
- Next month starts: {next_month_start}
- For "today" queries: use start_time >= "{today}" AND start_time < "{tomorrow}"
- For "yesterday" queries: use start_time >= "{yesterday}" AND start_time < "{today}"
- For "last week" queries: use start_time >= "{last_week_start}" AND start_time < "{tomorrow}"
- For "this month" queries: use start_time >= "{this_month_start}" AND start_time < "{next_month_start}"

SYNTAX:
- Filters: {{"column": value}} for equality, {{"column": {{"Op.gte": value, "Op.lt": value}}}} for operators
- Aggregates: ["FUNCTION(column)", "alias"] inside "attributes"; ordering by an aggregate repeats "FUNCTION(column)"
- Order: [["column or FUNCTION(column)", "ASC" | "DESC"]]
- Output JSON only, no markdown, no explanation

Available kinds and columns (USE ONLY THESE KINDS):

{schema}

{guidance}

Examples:

User request: Show me all agents who were available today
{{"kind": "Timecard", "method": "findAll", "options": {{"where": {{"user_status": "Ready", "start_time": {{"Op.gte": "{today}", "Op.lt": "{tomorrow}"}}}}, "attributes": ["user_id", "user_name", "start_time", "user_status"]}}}}

User request: How many calls were handled by Melissa today
{{"kind": "Performance", "method": "findOne", "options": {{"where": {{"user_name": "Melissa", "start_time": {{"Op.gte": "{today}", "Op.lt": "{tomorrow}"}}}}, "attributes": [["SUM(handled_count)", "total_handled_count"]]}}}}

User request: What was the top handle duration for Melissa yesterday
{{"kind": "Performance", "method": "findOne", "options": {{"where": {{"user_name": "Melissa", "start_time": {{"Op.gte": "{yesterday}", "Op.lt": "{today}"}}}}, "attributes": [["MAX(handle_duration)", "top_handle_duration"]]}}}}

User request: Get the total call summary for the ServiceSG queue this month
{{"kind": "Queue", "method": "findOne", "options": {{"where": {{"queue_name": "ServiceSG", "start_time": {{"Op.gte": "{this_month_start}", "Op.lt": "{next_month_start}"}}}}, "attributes": [["COUNT(id)", "total_calls"], ["SUM(talk_duration)", "total_talk_duration"], ["SUM(waiting_duration)", "total_waiting_duration"], ["SUM(handling_duration)", "total_handling_duration"], ["SUM(transfer_count)", "total_transfer_count"], ["SUM(voice_mail)", "total_voice_mail_count"]]}}}}

User request: Which agent handled the most calls this month
{{"kind": "Performance", "method": "findOne", "options": {{"where": {{"start_time": {{"Op.gte": "{this_month_start}", "Op.lt": "{next_month_start}"}}}}, "attributes": ["user_name", ["SUM(handled_count)", "total_handled_count"]], "group": ["user_name"], "order": [["SUM(handled_count)", "DESC"]]}}}}

User request: Which agent had the longest single conversation last week
{{"kind": "Performance", "method": "findOne", "options": {{"where": {{"start_time": {{"Op.gte": "{last_week_start}", "Op.lt": "{tomorrow}"}}}}, "attributes": ["user_name", "conversation_duration"], "order": [["conversation_duration", "DESC"]]}}}}

REMINDER: ONLY use Timecard, Performance, Engagement, Queue or CallLog!

User request: {query}"""


def date_anchors(now: datetime.datetime) -> dict:
    """Absolute UTC dates that relative phrases ("today", "this month", ...) resolve to."""
    if now.tzinfo is not None:
        now = now.astimezone(datetime.timezone.utc)
    today = now.date()
    this_month_start = today.replace(day=1)
    next_month_start = (this_month_start + datetime.timedelta(days=32)).replace(day=1)

    return {
        'today': today.isoformat(),
        'tomorrow': (today + datetime.timedelta(days=1)).isoformat(),
        'yesterday': (today - datetime.timedelta(days=1)).isoformat(),
        'last_week_start': (today - datetime.timedelta(days=7)).isoformat(),
        'this_month_start': this_month_start.isoformat(),
        'next_month_start': next_month_start.isoformat(),
    }


def describe_schema() -> str:
    sections = []
    for i, (name, kind) in enumerate(ALLOWED_KINDS.items(), start=1):
        record_kind = KINDS[kind]
        lines = [
            "{}. {} ({} table) - {}:".format(i, name, record_kind.table_name, record_kind.schema['description']),
            "   - id (INTEGER, primary key)",
        ]
        for column, prop in record_kind.schema['properties'].items():
            if prop.get('format') == 'date-time':
                label = 'DATE'
            else:
                label = next(TYPE_LABELS[t] for t in prop['type'] if t in TYPE_LABELS)
            unit = ' - in {}'.format(prop['description']) if prop.get('description') else ''
            lines.append("   - {} ({}){}".format(column, label, unit))
        sections.append('\n'.join(lines))
    return '\n\n'.join(sections)


def build_prompt(query: str, anchors: dict) -> str:
    return PROMPT_TEMPLATE.format(schema=describe_schema(), guidance=KIND_GUIDANCE, query=query, **anchors)


def parse_plan(text: str) -> dict:
    stripped = (text or '').strip()
    if stripped.startswith('```'):
        # drop a surrounding markdown fence, keep its body
        stripped = stripped.split('\n', 1)[1] if '\n' in stripped else ''
        stripped = stripped.rsplit('```', 1)[0].strip()

    try:
        plan = json.loads(stripped)
    except ValueError as error:
        logger.warning("Query plan is not valid JSON: {}".format(error))
        raise PlanParseError("Failed to parse the generated query plan as JSON. Please try rephrasing your question.")

    if not isinstance(plan, dict):
        raise PlanStructureError("Generated query plan is not a JSON object. Please try rephrasing your question.")
    return plan


def validate_plan(plan: dict) -> str:
    """Returns the store kind for a structurally valid, read-only plan on an allowed kind."""
    if not plan.get('kind') or not plan.get('method') or plan.get('options') is None:
        raise PlanStructureError("Generated query plan has an invalid structure. Please try rephrasing your question.")

    if not isinstance(plan['kind'], str) or plan['kind'] not in ALLOWED_KINDS:
        logger.warning("Rejected plan for forbidden kind {}".format(plan['kind']))
        raise ForbiddenKindError("Only reporting kinds ({}) are supported. Requested: {}".format(
            ', '.join(ALLOWED_KINDS), plan['kind']))

    if plan.get('operation') not in (None, 'find'):
        raise PlanStructureError("Only find (read) operations are supported.")

    if plan['method'] not in READ_METHODS:
        raise PlanStructureError("Only {} methods are supported. Requested: {}".format(
            ' and '.join(READ_METHODS), plan['method']))

    if not isinstance(plan['options'], dict):
        raise PlanStructureError("Plan options must be an object.")

    return ALLOWED_KINDS[plan['kind']]


def rehydrate_operator(key):
    """Maps 'Op.<name>' to a clause builder; anything else is None and stays inert."""
    namespace, _, name = str(key).partition('.')
    if namespace != OPERATOR_NAMESPACE:
        return None
    return OPERATORS.get(name)


def _column(table, name):
    if not isinstance(name, str) or name not in table.c:
        raise QueryExecutionError("Unknown column '{}' on {}".format(name, table.name))
    return table.c[name]


def rehydrate_descriptor(table, text):
    """
    'SUM(handled_count)' becomes an aggregate over that column when the
    function is in AGGREGATE_FUNCTIONS; any other text is a column name.
    Returns (expression, default alias).
    """
    match = FUNCTION_PATTERN.match(text) if isinstance(text, str) else None
    if match and match.group(1).upper() in AGGREGATE_FUNCTIONS:
        function_name, column_name = match.group(1).upper(), match.group(2)
        expression = AGGREGATE_FUNCTIONS[function_name](_column(table, column_name))
        return expression, '{}_{}'.format(function_name.lower(), column_name)
    return _column(table, text), text


def build_where(table, where) -> list:
    if where is None:
        return []
    if not isinstance(where, dict):
        raise QueryExecutionError("where must be an object")

    clauses = []
    for name, value in where.items():
        column = _column(table, name)
        if isinstance(value, dict):
            for key, operand in value.items():
                operator = rehydrate_operator(key)
                if operator is None:
                    logger.warning("Leaving untranslated operator {} on {} inert".format(key, name))
                    continue
                clauses.append(operator(column, operand))
        elif isinstance(value, list):
            clauses.append(column.in_(value))
        elif value is None:
            clauses.append(column.is_(None))
        else:
            clauses.append(column == value)
    return clauses


def build_attributes(table, attributes):
    if not attributes:
        return list(table.c), {}
    if not isinstance(attributes, list):
        raise QueryExecutionError("attributes must be a list")

    selected = []
    aliases = {}
    for item in attributes:
        if isinstance(item, str):
            expression, alias = rehydrate_descriptor(table, item)
        elif isinstance(item, list) and len(item) == 2 and isinstance(item[1], str):
            expression, _ = rehydrate_descriptor(table, item[0])
            alias = item[1]
        else:
            raise QueryExecutionError("Unsupported attribute: {}".format(item))
        selected.append(expression.label(alias))
        aliases[alias] = expression
    return selected, aliases


def build_order(table, order, aliases) -> list:
    if not order:
        return []
    if not isinstance(order, list):
        raise QueryExecutionError("order must be a list")

    clauses = []
    for item in order:
        if isinstance(item, str):
            field, direction = item, 'ASC'
        elif isinstance(item, list) and len(item) == 2:
            field, direction = item
        else:
            raise QueryExecutionError("Unsupported order item: {}".format(item))

        direction = str(direction).upper()
        if direction not in ('ASC', 'DESC'):
            raise QueryExecutionError("Unsupported order direction: {}".format(direction))

        if isinstance(field, str) and field in aliases:
            expression = aliases[field]
        else:
            expression, _ = rehydrate_descriptor(table, field)
        clauses.append(expression.asc() if direction == 'ASC' else expression.desc())
    return clauses


def _limit(method, options):
    if method == FIND_ONE:
        return 1
    limit = options.get('limit')
    if limit is None:
        return MAX_RESULT_ROWS
    if not isinstance(limit, int) or isinstance(limit, bool) or limit < 1:
        raise QueryExecutionError("limit must be a positive integer")
    return min(limit, MAX_RESULT_ROWS)


def rehydrate(table, method, options: dict):
    """Builds the single SELECT a validated plan describes."""
    selected, aliases = build_attributes(table, options.get('attributes'))
    query = sa.select(*selected).select_from(table).where(*build_where(table, options.get('where')))

    group = options.get('group')
    if group:
        if not isinstance(group, list):
            raise QueryExecutionError("group must be a list")
        query = query.group_by(*[_column(table, name) for name in group])

    return query.order_by(*build_order(table, options.get('order'), aliases)).limit(_limit(method, options))


class NLQueryPlanner(object):
    def __init__(self, store, complete, now=None):
        self.store = store
        self.complete = complete
        self.now = now or utils.now

    def execute(self, kind: str, plan: dict):
        table = self.store.table(kind)
        try:
            query = rehydrate(table, plan['method'], plan['options'])
            rows = self.store.read(query)
        except (SQLAlchemyError, TypeError, ValueError) as error:
            raise QueryExecutionError(str(error))

        rows = safe_json_serialize_deserialize(rows)
        if plan['method'] == FIND_ONE:
            return rows[0] if rows else None
        return rows

    def process(self, query: str) -> dict:
        """At most one read-only query per call; plan and execution problems come back as {'error': ...}."""
        if not query or not query.strip():
            return {'error': 'Query text is required.'}

        anchors = date_anchors(self.now())
        logger.info("Date context: {}".format(anchors))
        text = self.complete(build_prompt(query, anchors))

        try:
            plan = parse_plan(text)
            kind = validate_plan(plan)
        except PlanError as error:
            logger.warning("Rejected query plan for '{}': {}".format(query, error))
            return {'error': str(error)}

        logger.info("Executing {} on {} for '{}'".format(plan['method'], plan['kind'], query))
        try:
            data = self.execute(kind, plan)
        except QueryExecutionError as error:
            logger.warning("Query execution failed for '{}': {}".format(query, error))
            return {'error': 'Query execution failed: {}'.format(error)}

        return {
            'query': query,
            'plan': plan,
            'data': data,
        }
