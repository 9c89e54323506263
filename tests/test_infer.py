import itertools
import collections

import pytest

from geobulk import core
from geobulk.infer import TypeInferencer
from geobulk.schema import Schema, Column, ScalarKind, RawRecord, TypedValue, UNSUPPORTED, classify

from conftest import ListReader


def props(*pairs):
    return collections.OrderedDict(pairs)

def reader(*propertySets):
    return ListReader(RawRecord(properties, None) for properties in propertySets)

def kinds(schema):
    return [(col.name, col.kind) for col in schema.scalars]


@pytest.mark.parametrize('value, kind', [
    (True, ScalarKind.BOOL),
    (7, ScalarKind.INT32),
    (2 ** 31 - 1, ScalarKind.INT32),
    (2 ** 31, ScalarKind.FLOAT64),
    (-2 ** 31 - 1, ScalarKind.FLOAT64),
    (1.5, ScalarKind.FLOAT64),
    ('abc', ScalarKind.TEXT),
    (['a=b', None], ScalarKind.TEXT_ARRAY),
    (None, None),
    ({'nested' : 1}, UNSUPPORTED),
    (b'blob', UNSUPPORTED),
    ([1, 2], UNSUPPORTED),
])
def test_classify(value, kind):
    assert classify(value) is kind


def test_first_seen_order():
    schema = TypeInferencer().infer(reader(
        props(('name', 'a'), ('height', 1.0)),
        props(('height', 2.5), ('lanes', 2), ('name', 'b')),
    ))
    assert kinds(schema) == [
        ('name', ScalarKind.TEXT),
        ('height', ScalarKind.FLOAT64),
        ('lanes', ScalarKind.INT32),
    ]
    assert schema.names() == ['name', 'height', 'lanes', 'geom']


def test_kinds_do_not_depend_on_record_order():
    records = [
        props(('a', 1), ('b', 'x')),
        props(('a', 2.5), ('b', None)),
        props(('a', None), ('b', 'y'), ('c', True)),
    ]
    results = set()
    for permutation in itertools.permutations(records):
        schema = TypeInferencer().infer(reader(*permutation))
        results.add(frozenset(kinds(schema)))
    assert results == {frozenset([
        ('a', ScalarKind.FLOAT64),
        ('b', ScalarKind.TEXT),
        ('c', ScalarKind.BOOL),
    ])}


@pytest.mark.parametrize('first, second', [(1, 1.5), (1.5, 1)])
def test_numeric_kinds_widen(first, second):
    schema = TypeInferencer().infer(reader(props(('v', first)), props(('v', second))))
    assert kinds(schema) == [('v', ScalarKind.FLOAT64)]


def test_mixed_kinds_fail():
    with pytest.raises(core.MixedDataTypesError) as excinfo:
        TypeInferencer().infer(reader(
            props(('name', 'a'), ('ref', 'A1')),
            props(('name', 'b'), ('ref', 12)),
        ))
    assert excinfo.value.column == 'ref'
    assert set(excinfo.value.kinds) == {ScalarKind.TEXT, ScalarKind.INT32}
    assert "'ref'" in str(excinfo.value)


def test_bool_does_not_widen_to_number():
    with pytest.raises(core.MixedDataTypesError):
        TypeInferencer().infer(reader(props(('flag', True)), props(('flag', 1))))


def test_nulls_do_not_determine_kind():
    schema = TypeInferencer().infer(reader(
        props(('a', None), ('b', None)),
        props(('a', 'x'), ('b', None)),
    ))
    assert kinds(schema) == [('a', ScalarKind.TEXT)]


def test_geometry_names_are_excluded():
    schema = TypeInferencer().infer(reader(props(('geom', 'x'), ('geometry', 1), ('name', 'y'))))
    assert kinds(schema) == [('name', ScalarKind.TEXT)]
    assert schema.geometry == Column('geom', ScalarKind.GEOMETRY)


def test_unsupported_values_are_ignored():
    schema = TypeInferencer().infer(reader(
        props(('meta', {'k' : 'v'}), ('name', 'a')),
        props(('meta', 'text'), ('name', 'b')),
    ))
    assert kinds(schema) == [('meta', ScalarKind.TEXT), ('name', ScalarKind.TEXT)]


def test_empty_input_yields_geometry_only():
    schema = TypeInferencer().infer(reader())
    assert schema.scalars == []
    assert len(schema) == 1


def test_fixed_columns_skip_scanning():
    source = reader(props(('a', 1)))
    source.fixedColumns = [Column('tags', ScalarKind.TEXT_ARRAY)]
    schema = TypeInferencer().infer(source)
    assert kinds(schema) == [('tags', ScalarKind.TEXT_ARRAY)]
    assert source.passes == 0


def test_sample_size_limits_scan():
    source = reader(props(('v', 'a')), props(('v', 'b')), props(('v', 3)))
    schema = TypeInferencer(sampleSize=2).infer(source)
    assert kinds(schema) == [('v', ScalarKind.TEXT)]


def test_sample_size_must_be_positive():
    with pytest.raises(core.InvalidParameterError):
        TypeInferencer(sampleSize=0)


class TestSchema:
    def test_duplicate_names_rejected(self):
        with pytest.raises(core.InvalidParameterError):
            Schema([Column('a', ScalarKind.TEXT), Column('a', ScalarKind.INT32)])

    def test_align_fills_missing_and_coerces(self):
        schema = Schema([
            Column('name', ScalarKind.TEXT),
            Column('height', ScalarKind.FLOAT64),
            Column('tags', ScalarKind.TEXT_ARRAY),
        ])
        record, skipped = schema.align(props(('height', 3), ('tags', ('a=b', ))), b'wkb')
        assert record == [
            TypedValue(ScalarKind.TEXT, None),
            TypedValue(ScalarKind.FLOAT64, 3.0),
            TypedValue(ScalarKind.TEXT_ARRAY, ['a=b']),
            TypedValue(ScalarKind.GEOMETRY, b'wkb'),
        ]
        assert isinstance(record[1].value, float)
        assert skipped == []

    def test_align_nulls_unsupported_values(self):
        schema = Schema([Column('meta', ScalarKind.TEXT)])
        record, skipped = schema.align(props(('meta', [1, 2])), None)
        assert record[0] == TypedValue(ScalarKind.TEXT, None)
        assert skipped == ['meta']

    def test_align_rejects_mismatched_kind(self):
        schema = Schema([Column('lanes', ScalarKind.INT32)])
        with pytest.raises(core.MixedDataTypesError):
            schema.align(props(('lanes', 2.5)), None)

    def test_align_ignores_extra_properties(self):
        schema = Schema([Column('a', ScalarKind.INT32)])
        record, skipped = schema.align(props(('b', 'x'), ('a', 1)), None)
        assert [typed.value for typed in record] == [1, None]
