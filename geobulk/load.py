from . import core, infer, input, geometry, binary
from .table import TableManager
from .schema import LoadMode


class LoadResult:
    def __init__(self, table, schema, srid, recordCount, rowCount, skipped=0):
        self.table = table
        self.schema = schema
        self.srid = srid
        self.recordCount = recordCount
        self.rowCount = rowCount
        self.skipped = skipped

    def __repr__(self):
        return 'LoadResult({}: {} rows, {})'.format(self.table, self.rowCount, self.schema)


class Loader(core.DatabaseTask):
    '''Bulk loads a spatial data file into a single PostGIS table.

    Reads the file twice: once to infer the column types, once to stream
    the encoded rows through a binary COPY. All database work happens in a
    single transaction.'''

    def main(self, path, table, mode=LoadMode.CREATE_OR_FAIL, sourceSRID=None, targetSRID=None,
             batchSize=input.DEFAULT_BATCH_SIZE, sampleSize=None, encoding=None):
        mode = LoadMode.parse(mode)
        reader = input.openReader(path, batchSize=batchSize, encoding=encoding)
        reader.logTo(self.logger)
        if not sourceSRID:
            sourceSRID = reader.detectSRID()
            if not sourceSRID:
                self.logger.info('source SRID unknown, assuming %d', core.DEFAULT_SRID)
                sourceSRID = core.DEFAULT_SRID
        inferencer = infer.TypeInferencer(sampleSize=sampleSize)
        inferencer.logTo(self.logger)
        inferred = inferencer.infer(reader)
        self.logger.info('inferred %s from %s', inferred, path)
        with self._connect() as cur:
            manager = TableManager(cur, table, namespace=self.schema)
            manager.logTo(self.logger)
            schema, tableSRID = manager.prepare(inferred, mode, srid=(targetSRID or sourceSRID))
            encoder = self.createEncoder(sourceSRID, targetSRID, tableSRID)
            writer = binary.BinaryCopyWriter(manager.tableSQL, schema)
            writer.logTo(self.logger)
            self.recordCount = 0
            rowCount = writer.write(cur, self.records(reader, schema, encoder))
            self.logger.info('%d features written to %s', rowCount, manager.tablepath)
            if mode != LoadMode.APPEND:
                manager.createSpatialIndex(schema.geometry)
        skipped = getattr(reader, 'skipped', 0)
        if skipped:
            self.logger.warning('%d source features were not loaded', skipped)
        return LoadResult(manager.tablepath, schema, encoder.srid, self.recordCount, rowCount, skipped)

    def createEncoder(self, sourceSRID, targetSRID, tableSRID):
        if tableSRID:
            if targetSRID and targetSRID != tableSRID:
                raise core.CannotAppendError(
                    'requested SRID {} but the table has SRID {}'.format(targetSRID, tableSRID)
                )
            targetSRID = tableSRID
        elif not targetSRID:
            targetSRID = sourceSRID
        if targetSRID != sourceSRID:
            self.logger.info('reprojecting from SRID %d to %d', sourceSRID, targetSRID)
            return geometry.GeometryEncoder(targetSRID, geometry.Reprojector(sourceSRID, targetSRID))
        else:
            return geometry.GeometryEncoder(targetSRID)

    def records(self, reader, schema, encoder):
        unsupported = set()
        for raw in reader.records():
            self.recordCount += 1
            record, skipped = schema.align(raw.properties, encoder.encode(raw.geometry))
            for name in skipped:
                if name not in unsupported:
                    self.logger.warning('unsupported values in column %s are loaded as NULL', name)
                    unsupported.add(name)
            yield record
