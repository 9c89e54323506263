'''PostgreSQL binary COPY encoding and streaming.

Rows are encoded in the PGCOPY format: a fixed header, one tuple per row
(int16 field count, then int32 length and payload per field, -1 for NULL)
and an int16 -1 trailer that finishes the transfer.'''

import io
import struct
import itertools

import psycopg2
from psycopg2 import sql

from . import core

SIGNATURE = b'PGCOPY\n\xff\r\n\x00'
HEADER = SIGNATURE + struct.pack('!ii', 0, 0)
TRAILER = struct.pack('!h', -1)
NULL_FIELD = struct.pack('!i', -1)

# array element type OIDs
TEXT_OID = 25
VARCHAR_OID = 1043


def integerEncoder(fmt):
    def encode(value):
        if isinstance(value, float):
            if not value.is_integer():
                raise core.DestinationProtocolError('cannot store {} in an integer column'.format(value))
            value = int(value)
        return struct.pack(fmt, value)
    return encode

def floatEncoder(fmt):
    def encode(value):
        return struct.pack(fmt, float(value))
    return encode

def encodeText(value):
    return str(value).encode('utf8')

def encodeBool(value):
    return b'\x01' if value else b'\x00'

def encodeBytes(value):
    return bytes(value)

def textArrayEncoder(elementOID):
    def encode(values):
        hasNull = any(item is None for item in values)
        if not values:
            return struct.pack('!iii', 0, 0, elementOID)
        parts = [struct.pack('!iiiii', 1, int(hasNull), elementOID, len(values), 1)]
        for item in values:
            if item is None:
                parts.append(NULL_FIELD)
            else:
                data = encodeText(item)
                parts.append(struct.pack('!i', len(data)))
                parts.append(data)
        return b''.join(parts)
    return encode

WIRE_ENCODERS = {
    'int2' : integerEncoder('!h'),
    'int4' : integerEncoder('!i'),
    'int8' : integerEncoder('!q'),
    'float4' : floatEncoder('!f'),
    'float8' : floatEncoder('!d'),
    'text' : encodeText,
    'varchar' : encodeText,
    'bpchar' : encodeText,
    'bool' : encodeBool,
    '_text' : textArrayEncoder(TEXT_OID),
    '_varchar' : textArrayEncoder(VARCHAR_OID),
    # PostGIS receive functions take (E)WKB as is
    'geometry' : encodeBytes,
    'geography' : encodeBytes,
}


class RowEncoder:
    def __init__(self, columns):
        self.columns = list(columns)
        try:
            self.encoders = [WIRE_ENCODERS[col.wireType] for col in self.columns]
        except KeyError as err:
            raise core.DestinationProtocolError('no binary encoding for column type {}'.format(err)) from None
        self.fieldCount = struct.pack('!h', len(self.columns))

    def encode(self, record):
        if len(record) != len(self.encoders):
            raise core.DestinationProtocolError('record has {} values, expected {}'.format(
                len(record), len(self.encoders)
            ))
        parts = [self.fieldCount]
        for col, encoder, typed in zip(self.columns, self.encoders, record):
            if typed.value is None:
                parts.append(NULL_FIELD)
                continue
            try:
                data = encoder(typed.value)
            except (struct.error, TypeError, ValueError) as err:
                raise core.DestinationProtocolError(
                    'cannot encode {!r} as {} for column {}: {}'.format(typed.value, col.wireType, col.name, err)
                ) from err
            parts.append(struct.pack('!i', len(data)))
            parts.append(data)
        return b''.join(parts)


class CopyStream(io.RawIOBase):
    '''A file-like object producing a binary COPY payload on demand.

    COPY pulls data through read(), so rows are encoded only as fast as the
    database consumes them. Errors raised while producing rows are kept in
    `error` so that they can be re-raised after the COPY aborts.'''

    def __init__(self, rows):
        super().__init__()
        self.chunks = itertools.chain([HEADER], rows, [TRAILER])
        self.pending = b''
        self.error = None
        self.finished = False

    def readable(self):
        return True

    def readinto(self, buffer):
        while not self.pending:
            try:
                self.pending = memoryview(next(self.chunks))
            except StopIteration:
                self.finished = True
                return 0
            except Exception as exc:
                self.error = exc
                raise
        size = min(len(buffer), len(self.pending))
        buffer[:size] = self.pending[:size]
        self.pending = self.pending[size:]
        return size


class BinaryCopyWriter:
    BUFFER_SIZE = 65536

    def __init__(self, tableSQL, schema):
        self.tableSQL = tableSQL
        self.schema = schema
        self.rowEncoder = RowEncoder(schema.columns)
        self.count = 0
        self.logger = core.EmptyLogger()

    def logTo(self, logger):
        self.logger = logger

    def copyQuery(self):
        return sql.SQL('COPY {table} ({fields}) FROM STDIN WITH (FORMAT BINARY)').format(
            table=self.tableSQL,
            fields=sql.SQL(', ').join([sql.Identifier(name) for name in self.schema.names()]),
        )

    def encodeRows(self, records):
        for record in records:
            data = self.rowEncoder.encode(record)
            self.count += 1
            yield data

    def write(self, cursor, records):
        '''Streams all records in one COPY and returns the number of rows sent.'''
        self.count = 0
        qry = self.copyQuery()
        self.logger.debug('starting binary copy: %s', qry)
        stream = CopyStream(self.encodeRows(records))
        try:
            cursor.copy_expert(qry, stream, size=self.BUFFER_SIZE)
        except psycopg2.Error as err:
            if stream.error is not None:
                raise stream.error from err
            raise core.DestinationProtocolError('binary copy failed: ' + str(err).strip()) from err
        finally:
            stream.close()
        if stream.error is not None:
            raise stream.error
        if not stream.finished:
            raise core.DestinationProtocolError('binary copy ended before the last row')
        if cursor.rowcount is not None and cursor.rowcount >= 0 and cursor.rowcount != self.count:
            raise core.DestinationProtocolError('{} rows sent but {} rows copied'.format(
                self.count, cursor.rowcount
            ))
        self.logger.debug('binary copy finished after %d rows', self.count)
        return self.count
