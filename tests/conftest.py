"""
Shared pytest fixtures and fakes.

Provides an in-memory stand-in for a PostGIS cursor that understands the
catalog queries, DDL and binary COPY statements issued by geobulk.
"""

import re
import json
import struct
import contextlib
import collections

import pytest
import osmium
import osmium.osm.mutable
from psycopg2 import sql

from geobulk import core, binary


DDL_TYPES = {
    'integer' : 'int4',
    'double precision' : 'float8',
    'text' : 'text',
    'boolean' : 'bool',
    'text[]' : '_text',
}
DEFAULT_NAMESPACE = 'public'


def render(query):
    """Render a psycopg2 composable without a database connection."""
    if isinstance(query, str):
        return query
    elif isinstance(query, sql.Composed):
        return ''.join(render(part) for part in query.seq)
    elif isinstance(query, sql.SQL):
        return query.string
    elif isinstance(query, sql.Identifier):
        return '.'.join('"{}"'.format(name) for name in query.strings)
    elif isinstance(query, sql.Literal):
        return repr(query.wrapped)
    raise TypeError('cannot render {!r}'.format(query))


def parseCopy(data):
    """Split a PGCOPY binary payload into rows of raw field bytes."""
    assert data.startswith(binary.HEADER)
    pos = len(binary.HEADER)
    rows = []
    while True:
        (count, ) = struct.unpack_from('!h', data, pos)
        pos += 2
        if count == -1:
            break
        row = []
        for i in range(count):
            (length, ) = struct.unpack_from('!i', data, pos)
            pos += 4
            if length == -1:
                row.append(None)
            else:
                row.append(data[pos:pos+length])
                pos += length
        rows.append(row)
    assert pos == len(data)
    return rows


def parseTableName(ident):
    names = re.findall(r'"([^"]+)"', ident)
    if len(names) == 1:
        return (DEFAULT_NAMESPACE, names[0])
    return tuple(names)


class FakeCursor:
    """Simulates the subset of a PostGIS database used by the loader."""

    def __init__(self, tables=None, srids=None):
        self.tables = {key : collections.OrderedDict(cols) for key, cols in (tables or {}).items()}
        self.srids = dict(srids or {})
        self.statements = []
        self.copies = []
        self.result = []
        self.rowcount = -1
        self.failOn = None
        self.failError = None

    def _namespace(self, text, key):
        match = re.search(key + r" = (?:'([^']*)'|current_schema\(\))", text)
        return match.group(1) or DEFAULT_NAMESPACE

    def _lookup(self, text, schemaKey, tableKey):
        table = re.search(tableKey + r" = '([^']*)'", text).group(1)
        return (self._namespace(text, schemaKey), table)

    def execute(self, query, params=None):
        text = render(query)
        self.statements.append(text)
        if self.failOn and self.failOn in text:
            raise self.failError
        self.result = []
        if 'information_schema.tables' in text:
            key = self._lookup(text, 'table_schema', 'table_name')
            self.result = [(key in self.tables, )]
        elif 'information_schema.columns' in text:
            key = self._lookup(text, 'table_schema', 'table_name')
            self.result = list(self.tables.get(key, {}).items())
        elif 'geometry_columns' in text:
            key = self._lookup(text, 'f_table_schema', 'f_table_name')
            self.result = [(self.srids[key], )] if key in self.srids else []
        elif text.startswith('DROP TABLE'):
            key = parseTableName(text[len('DROP TABLE IF EXISTS '):].split(';')[0])
            self.tables.pop(key, None)
            self.srids.pop(key, None)
        elif text.startswith('CREATE TABLE'):
            match = re.match(r'CREATE TABLE (\S+) \((.*)\);$', text)
            key = parseTableName(match.group(1))
            assert key not in self.tables
            columns = collections.OrderedDict()
            for name, ddl, srid in re.findall(
                r'"([^"]+)" (integer|double precision|text\[\]|text|boolean|geometry\(Geometry, (\d+)\))',
                match.group(2)
            ):
                if srid:
                    columns[name] = 'geometry'
                    self.srids[key] = int(srid)
                else:
                    columns[name] = DDL_TYPES[ddl]
            self.tables[key] = columns

    def fetchone(self):
        return self.result[0] if self.result else None

    def fetchall(self):
        return list(self.result)

    def copy_expert(self, query, stream, size=8192):
        text = render(query)
        self.statements.append(text)
        chunks = []
        while True:
            chunk = stream.read(size)
            if not chunk:
                break
            chunks.append(chunk)
        rows = parseCopy(b''.join(chunks))
        self.copies.append((text, rows))
        self.rowcount = len(rows)

    def ddl(self):
        return [stmt for stmt in self.statements if stmt.startswith(('CREATE', 'DROP'))]


class FakeConnector:
    def __init__(self, cursor):
        self.cursor = cursor
        self.connections = 0
        self.commits = 0
        self.rollbacks = 0

    def logTo(self, logger):
        pass

    @contextlib.contextmanager
    def connect(self, autocommit=False):
        self.connections += 1
        try:
            yield self.cursor
        except Exception:
            self.rollbacks += 1
            raise
        else:
            self.commits += 1


class ListReader:
    """Format reader over an in-memory list of records."""

    fixedColumns = None

    def __init__(self, records, path='memory'):
        self.path = path
        self.items = list(records)
        self.passes = 0

    def records(self):
        self.passes += 1
        return iter(self.items)


@pytest.fixture(autouse=True)
def logPath(tmp_path, monkeypatch):
    monkeypatch.setattr(core, 'LOG_PATH', str(tmp_path / 'log'))


def writeGeoJSON(path, features, **extra):
    document = dict(type='FeatureCollection', features=features, **extra)
    with open(str(path), 'w', encoding='utf8') as outfile:
        json.dump(document, outfile)
    return str(path)


def pointFeature(i, **properties):
    return {
        'type' : 'Feature',
        'properties' : properties,
        'geometry' : {'type' : 'Point', 'coordinates' : [-3.7 + i * 0.1, 40.4 + i * 0.05]},
    }


@pytest.fixture
def spainGeoJSON(tmp_path):
    """19 point features with three text properties."""
    features = [
        pointFeature(i, source='osm', id='node/{}'.format(1000 + i), name='place {}'.format(i))
        for i in range(19)
    ]
    return writeGeoJSON(tmp_path / 'spain.geojson', features)


@pytest.fixture
def osmExtract(tmp_path):
    """PBF extract with a closed way, an open way, a way referencing a
    missing node and a single-node way."""
    path = str(tmp_path / 'extract.osm.pbf')
    writer = osmium.SimpleWriter(path)
    try:
        for nodeID, lon, lat in [(1, 0, 0), (2, 1, 0), (3, 1, 1), (4, 0, 1)]:
            writer.add_node(osmium.osm.mutable.Node(id=nodeID, location=osmium.osm.Location(lon, lat)))
        writer.add_way(osmium.osm.mutable.Way(id=10, nodes=[1, 2, 3, 4, 1], tags={'building' : 'yes'}))
        writer.add_way(osmium.osm.mutable.Way(id=11, nodes=[1, 2, 3], tags={'highway' : 'road'}))
        writer.add_way(osmium.osm.mutable.Way(id=12, nodes=[4], tags={'barrier' : 'gate'}))
        writer.add_way(osmium.osm.mutable.Way(id=13, nodes=[2, 3, 99], tags={'highway' : 'path', 'name' : 'Camino'}))
    finally:
        writer.close()
    return path
