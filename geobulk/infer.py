import collections
import itertools

from . import core
from .schema import Schema, Column, EXCLUDED_NAMES, UNSUPPORTED, classify, unify


class TypeInferencer:
    '''Infers a column schema from the records of a format reader.

    Scans all records unless a sample size is given. Readers with a fixed
    column set (OSM tags) are not scanned at all.'''

    def __init__(self, sampleSize=None):
        if sampleSize is not None and sampleSize < 1:
            raise core.InvalidParameterError('sample size must be positive')
        self.sampleSize = sampleSize
        self.logger = core.EmptyLogger()

    def logTo(self, logger):
        self.logger = logger

    def infer(self, reader):
        if reader.fixedColumns is not None:
            self.logger.debug('using fixed columns for %s', reader.path)
            return Schema(reader.fixedColumns)
        records = reader.records()
        if self.sampleSize:
            records = itertools.islice(records, self.sampleSize)
            self.logger.info('inferring column types from first %d records', self.sampleSize)
        return self.inferFrom(record.properties for record in records)

    def inferFrom(self, propertySets):
        kinds = collections.OrderedDict()
        unsupported = set()
        count = 0
        for properties in propertySets:
            count += 1
            for name, value in properties.items():
                if name in EXCLUDED_NAMES:
                    continue
                if name not in kinds:
                    kinds[name] = None
                kind = classify(value)
                if kind is None:
                    continue
                elif kind is UNSUPPORTED:
                    if name not in unsupported:
                        self.logger.warning('unsupported value type %s in column %s, skipping', type(value).__name__, name)
                        unsupported.add(name)
                    continue
                kinds[name] = unify(name, kinds[name], kind)
        columns = []
        for name, kind in kinds.items():
            if kind is None:
                self.logger.warning('column %s has no typed values, leaving it out', name)
            else:
                columns.append(Column(name, kind))
        self.logger.info('%d columns inferred from %d records', len(columns), count)
        return Schema(columns)
