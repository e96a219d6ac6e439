import collections

import singer
import sqlalchemy as sa
from sqlalchemy.dialects import mysql, postgresql, sqlite

import cc_reports.schemas as schemas

logger = singer.get_logger()

QUEUE = 'queue'
PERFORMANCE = 'performance'
TIMECARD = 'timecard'
ENGAGEMENT = 'engagement'
AGENT = 'agent'
CALL_LOG = 'call_log'

RecordKind = collections.namedtuple('RecordKind', ['table_name', 'schema', 'natural_key', 'ranged'])

KINDS = {
    QUEUE: RecordKind('agent_queue', schemas.agent_queue, ('engagement_id', ), True),
    PERFORMANCE: RecordKind('agent_performance', schemas.agent_performance, ('engagement_id', ), True),
    # a work session spans several status segments
    TIMECARD: RecordKind('agent_timecard', schemas.agent_timecard,
                         ('work_session_id', 'user_status', 'start_time'), True),
    ENGAGEMENT: RecordKind('agent_engagement', schemas.agent_engagement, ('engagement_id', ), True),
    AGENT: RecordKind('agents', schemas.agent, ('user_id', ), False),
    CALL_LOG: RecordKind('call_logs', schemas.call_log, ('call_path_id', ), True),
}


def column_type(prop: dict):
    types = prop['type'] if isinstance(prop['type'], list) else [prop['type']]
    if prop.get('format') == 'date-time':
        return sa.String(19)
    if 'integer' in types:
        return sa.BigInteger()
    if 'boolean' in types:
        return sa.Boolean()
    return sa.String()


def build_table(metadata: sa.MetaData, kind: RecordKind) -> sa.Table:
    columns = [sa.Column('id', sa.Integer, primary_key=True, autoincrement=True)]
    for name, prop in kind.schema['properties'].items():
        columns.append(sa.Column(name, column_type(prop), nullable=True))

    table = sa.Table(
        kind.table_name,
        metadata,
        *columns,
        sa.UniqueConstraint(*kind.natural_key, name='uq_{}_natural_key'.format(kind.table_name)),
    )
    if kind.ranged:
        sa.Index('ix_{}_start_time'.format(kind.table_name), table.c.start_time)
    return table


INSERT_IGNORE_DIALECTS = ('sqlite', 'postgresql', 'mysql', 'mariadb')


def insert_ignore_statement(table: sa.Table, dialect_name: str):
    """INSERT that skips rows whose natural key already exists."""
    if dialect_name == 'sqlite':
        return sqlite.insert(table).on_conflict_do_nothing()
    if dialect_name == 'postgresql':
        return postgresql.insert(table).on_conflict_do_nothing()
    if dialect_name in ('mysql', 'mariadb'):
        return mysql.insert(table).prefix_with('IGNORE')
    raise ValueError("Unsupported database dialect: {}".format(dialect_name))


class RecordStore(object):
    """
    One table per record kind. Rows are only ever added with insert-if-absent
    on the natural key, and only removed by delete_range.
    """

    def __init__(self, database_url=None, engine=None):
        if engine is None:
            engine = sa.create_engine(database_url, pool_pre_ping=True)
        if engine.dialect.name not in INSERT_IGNORE_DIALECTS:
            raise ValueError("Unsupported database dialect: {}".format(engine.dialect.name))
        self.engine = engine
        self.metadata = sa.MetaData()
        self.tables = {name: build_table(self.metadata, kind) for name, kind in KINDS.items()}

    def create_all(self):
        self.metadata.create_all(self.engine)

    def table(self, kind: str) -> sa.Table:
        try:
            return self.tables[kind]
        except KeyError:
            raise ValueError("Unknown record kind: {}".format(kind))

    def range_clause(self, kind: str, from_ts, to_ts):
        return self.table(kind).c.start_time.between(from_ts, to_ts)

    def has_rows(self, kind: str, from_ts=None, to_ts=None) -> bool:
        table = self.table(kind)
        query = sa.select(table.c.id).limit(1)
        if from_ts is not None and to_ts is not None:
            query = query.where(self.range_clause(kind, from_ts, to_ts))

        with self.engine.connect() as connection:
            return connection.execute(query).first() is not None

    def insert_ignore(self, kind: str, records: list) -> int:
        """Bulk insert, silently skipping rows whose natural key already exists."""
        if not records:
            return 0

        table = self.table(kind)
        with self.engine.begin() as connection:
            result = connection.execute(insert_ignore_statement(table, self.engine.dialect.name), records)

        inserted = max(result.rowcount, 0)
        logger.info("Inserted {} of {} {} records".format(inserted, len(records), kind))
        return inserted

    def delete_range(self, kind: str, from_ts, to_ts) -> int:
        table = self.table(kind)
        with self.engine.begin() as connection:
            result = connection.execute(table.delete().where(self.range_clause(kind, from_ts, to_ts)))

        logger.info("Deleted {} {} records between {} and {}".format(result.rowcount, kind, from_ts, to_ts))
        return result.rowcount

    def read(self, query) -> list:
        with self.engine.connect() as connection:
            return [dict(row) for row in connection.execute(query).mappings().all()]

    def scalar(self, query):
        with self.engine.connect() as connection:
            return connection.execute(query).scalar()
