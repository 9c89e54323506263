import collections

import psycopg2
from psycopg2 import sql

from . import core
from .schema import Schema, Column, ScalarKind, LoadMode, NUMERIC_KINDS

GEOMETRY_WIRE_TYPES = ('geometry', 'geography')

# destination column types and the inferred kinds they accept
WIRE_KINDS = {
    'int2' : NUMERIC_KINDS,
    'int4' : NUMERIC_KINDS,
    'int8' : NUMERIC_KINDS,
    'float4' : NUMERIC_KINDS,
    'float8' : NUMERIC_KINDS,
    'text' : {ScalarKind.TEXT},
    'varchar' : {ScalarKind.TEXT},
    'bpchar' : {ScalarKind.TEXT},
    'bool' : {ScalarKind.BOOL},
    '_text' : {ScalarKind.TEXT_ARRAY},
    '_varchar' : {ScalarKind.TEXT_ARRAY},
}


class TableManager:
    '''Creates, drops or reuses the destination table according to the load
    mode and binds the inferred schema to the destination's column layout.'''

    def __init__(self, cursor, table, namespace=None):
        self.cursor = cursor
        self.table = table
        self.namespace = namespace
        if namespace:
            self.tableSQL = sql.Identifier(namespace, table)
            self.namespaceSQL = sql.Literal(namespace)
            self.tablepath = '{}.{}'.format(namespace, table)
        else:
            self.tableSQL = sql.Identifier(table)
            self.namespaceSQL = sql.SQL('current_schema()')
            self.tablepath = table
        self.logger = core.EmptyLogger()

    def logTo(self, logger):
        self.logger = logger

    def execute(self, qry, action):
        self.logger.debug('%s: %s', action, qry)
        try:
            self.cursor.execute(qry)
        except psycopg2.Error as err:
            raise core.DestinationProtocolError(
                'cannot {} {}: {}'.format(action, self.tablepath, str(err).strip())
            ) from err

    def prepare(self, inferred, mode, srid=None):
        mode = LoadMode.parse(mode)
        if not srid:
            srid = core.DEFAULT_SRID
        if mode == LoadMode.APPEND:
            if not self.exists():
                raise core.CannotAppendError('cannot append, table {} does not exist'.format(self.tablepath))
            self.logger.info('appending to existing table %s', self.tablepath)
        else:
            if mode == LoadMode.CREATE_OR_FAIL and self.exists():
                raise core.TableExistsError('table {} already exists'.format(self.tablepath))
            self.createNamespace()
            if mode == LoadMode.OVERWRITE:
                self.drop()
            self.create(inferred, srid)
        bound = self.bind(inferred, self.describe())
        return bound, self.geometrySRID(bound.geometry)

    def exists(self):
        qry = sql.SQL('''SELECT EXISTS (
           SELECT 1 FROM information_schema.tables
           WHERE table_schema = {namespace} AND table_name = {table}
        );''').format(
            namespace=self.namespaceSQL,
            table=sql.Literal(self.table),
        )
        self.execute(qry, 'check existence of')
        result = self.cursor.fetchone()
        return bool(result and result[0])

    def createNamespace(self):
        if self.namespace:
            qry = sql.SQL('CREATE SCHEMA IF NOT EXISTS {};').format(sql.Identifier(self.namespace))
            self.execute(qry, 'create schema for')

    def drop(self):
        qry = sql.SQL('DROP TABLE IF EXISTS {table};').format(table=self.tableSQL)
        self.execute(qry, 'drop')
        self.logger.info('table %s dropped if present', self.tablepath)

    def create(self, schema, srid):
        fieldDefs = sql.SQL(', ').join(
            list(self.createFieldPart(schema.scalars)) +
            [sql.SQL('{geomField} geometry(Geometry, {srid})').format(
                geomField=sql.Identifier(schema.geometry.name),
                srid=sql.Literal(int(srid)),
            )]
        )
        qry = sql.SQL('CREATE TABLE {table} ({fields});').format(
            table=self.tableSQL,
            fields=fieldDefs,
        )
        self.execute(qry, 'create')
        self.logger.info('table %s created with SRID %s', self.tablepath, srid)

    @staticmethod
    def createFieldPart(columns):
        for col in columns:
            yield sql.Identifier(col.name) + sql.SQL(' ') + sql.SQL(col.kind.ddl)

    def describe(self):
        qry = sql.SQL('''
            SELECT column_name, udt_name FROM information_schema.columns
            WHERE table_schema = {namespace} AND table_name = {table}
            ORDER BY ordinal_position;
        ''').format(
            namespace=self.namespaceSQL,
            table=sql.Literal(self.table),
        )
        self.execute(qry, 'describe')
        return collections.OrderedDict(self.cursor.fetchall())

    def bind(self, inferred, layout):
        if not layout:
            raise core.DestinationProtocolError('table {} has no columns'.format(self.tablepath))
        geomName = None
        for name, udt in layout.items():
            if udt in GEOMETRY_WIRE_TYPES:
                geomName = name
                break
        if geomName is None:
            raise core.CannotAppendError('table {} has no geometry column'.format(self.tablepath))
        columns = []
        for col in inferred.scalars:
            udt = layout.get(col.name)
            if udt is None:
                self.logger.warning('column %s not present in %s, its values are left out', col.name, self.tablepath)
            elif udt not in WIRE_KINDS:
                raise core.CannotAppendError('column {} of {} has unsupported type {}'.format(
                    col.name, self.tablepath, udt
                ))
            elif col.kind not in WIRE_KINDS[udt]:
                raise core.CannotAppendError('column {} of {} has type {}, cannot load {} values'.format(
                    col.name, self.tablepath, udt, col.kind.name
                ))
            else:
                columns.append(col._replace(wireType=udt))
        geometry = Column(geomName, ScalarKind.GEOMETRY, layout[geomName])
        self.logger.debug('destination geometry column %s of type %s', geomName, geometry.wireType)
        return Schema(columns, geometry)

    def geometrySRID(self, geometry):
        catalog = geometry.wireType + '_columns'
        qry = sql.SQL('''
            SELECT srid FROM {catalog}
            WHERE f_table_schema = {namespace} AND f_table_name = {table}
            AND {column} = {geomField};
        ''').format(
            catalog=sql.Identifier(catalog),
            namespace=self.namespaceSQL,
            table=sql.Literal(self.table),
            column=sql.Identifier('f_{}_column'.format(geometry.wireType)),
            geomField=sql.Literal(geometry.name),
        )
        self.execute(qry, 'determine SRID of')
        result = self.cursor.fetchone()
        if result and result[0]:
            self.logger.debug('table SRID determined as %s', result[0])
            return result[0]
        return None

    def createSpatialIndex(self, geometry):
        self.logger.debug('creating spatial index for %s', self.tablepath)
        qry = sql.SQL('CREATE INDEX IF NOT EXISTS {indexname} ON {table} USING GIST ({geomcol});').format(
            indexname=sql.Identifier('{}_{}_gix'.format(self.table, geometry.name)),
            table=self.tableSQL,
            geomcol=sql.Identifier(geometry.name),
        )
        self.execute(qry, 'index')
