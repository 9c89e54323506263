'''Column schema and record model shared by the inference and loading stages.'''

import enum
import collections

from . import core

INT32_MIN = -2 ** 31
INT32_MAX = 2 ** 31 - 1

EXCLUDED_NAMES = frozenset(('geom', 'geometry'))


class ScalarKind(enum.Enum):
    INT32 = 'integer'
    FLOAT64 = 'double precision'
    TEXT = 'text'
    BOOL = 'boolean'
    TEXT_ARRAY = 'text[]'
    GEOMETRY = 'geometry'

    @property
    def ddl(self):
        return self.value


NUMERIC_KINDS = frozenset((ScalarKind.INT32, ScalarKind.FLOAT64))


class LoadMode(enum.Enum):
    CREATE_OR_FAIL = 'create'
    OVERWRITE = 'overwrite'
    APPEND = 'append'

    @classmethod
    def parse(cls, value):
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError as err:
            raise core.InvalidParameterError('invalid load mode {!r}, expected one of {}'.format(
                value, ', '.join(mode.value for mode in cls)
            )) from err


Column = collections.namedtuple('Column', ['name', 'kind', 'wireType'], defaults=(None, ))
TypedValue = collections.namedtuple('TypedValue', ['kind', 'value'])
RawRecord = collections.namedtuple('RawRecord', ['properties', 'geometry'])


class Unsupported:
    '''Marker kind for values that map to no column type.'''

    def __repr__(self):
        return 'UNSUPPORTED'

UNSUPPORTED = Unsupported()


def classify(value):
    '''Returns the ScalarKind of a raw attribute value.

    None for nulls, UNSUPPORTED for values without a column type (nested
    objects, dates, binary blobs).'''
    if value is None:
        return None
    elif isinstance(value, bool):
        return ScalarKind.BOOL
    elif isinstance(value, int):
        if INT32_MIN <= value <= INT32_MAX:
            return ScalarKind.INT32
        else:
            return ScalarKind.FLOAT64
    elif isinstance(value, float):
        return ScalarKind.FLOAT64
    elif isinstance(value, str):
        return ScalarKind.TEXT
    elif isinstance(value, (list, tuple)):
        if all(item is None or isinstance(item, str) for item in value):
            return ScalarKind.TEXT_ARRAY
    return UNSUPPORTED


def unify(column, previous, current):
    '''Reconciles two kinds seen for the same column.'''
    if previous is None or previous == current:
        return current
    elif {previous, current} == NUMERIC_KINDS:
        return ScalarKind.FLOAT64
    else:
        raise core.MixedDataTypesError(column, previous, current)


class Schema:
    def __init__(self, columns, geometry=None):
        self.scalars = list(columns)
        names = [col.name for col in self.scalars]
        if len(set(names)) != len(names):
            raise core.InvalidParameterError('duplicate column names in ' + str(names))
        if geometry is None:
            geometry = Column(core.GEOMETRY_FIELD, ScalarKind.GEOMETRY)
        self.geometry = geometry

    @property
    def columns(self):
        return self.scalars + [self.geometry]

    def names(self):
        return [col.name for col in self.columns]

    def __len__(self):
        return len(self.scalars) + 1

    def __iter__(self):
        return iter(self.columns)

    def __eq__(self, other):
        return isinstance(other, Schema) and self.columns == other.columns

    def __repr__(self):
        return 'Schema(' + ', '.join(
            '{}:{}'.format(col.name, col.kind.name) for col in self.columns
        ) + ')'

    def align(self, properties, geometry):
        '''Builds a record aligned with the columns from raw properties and
        encoded geometry bytes.

        Returns the record and the names of columns whose values were
        dropped because their type is not supported.'''
        record = []
        skipped = []
        for col in self.scalars:
            value = properties.get(col.name)
            kind = classify(value)
            if kind is None:
                record.append(TypedValue(col.kind, None))
            elif kind is UNSUPPORTED:
                skipped.append(col.name)
                record.append(TypedValue(col.kind, None))
            else:
                if unify(col.name, col.kind, kind) != col.kind:
                    raise core.MixedDataTypesError(col.name, col.kind, kind)
                if col.kind == ScalarKind.FLOAT64:
                    value = float(value)
                elif col.kind == ScalarKind.TEXT_ARRAY:
                    value = list(value)
                record.append(TypedValue(col.kind, value))
        record.append(TypedValue(ScalarKind.GEOMETRY, geometry))
        return record, skipped
