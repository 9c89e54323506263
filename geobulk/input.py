import os
import re
import json
import collections

import fiona
import fiona.errors
import osmium
import pyarrow
import pyarrow.parquet
import shapely.errors
import shapely.wkb

from . import core, geometry
from .schema import Column, RawRecord, ScalarKind

WGS84_SRID = 4326
DEFAULT_BATCH_SIZE = 500

SHAPEFILE = 'shapefile'
GEOJSON = 'geojson'
GEOPARQUET = 'geoparquet'
OSMPBF = 'osmpbf'

FILE_TYPES = collections.OrderedDict([
    ('.shp', SHAPEFILE),
    ('.geojson', GEOJSON),
    ('.json', GEOJSON),
    ('.parquet', GEOPARQUET),
    ('.geoparquet', GEOPARQUET),
    ('.pbf', OSMPBF),
])


def determineFileType(path):
    extension = os.path.splitext(path)[1].lower()
    try:
        return FILE_TYPES[extension]
    except KeyError:
        raise core.UnsupportedFileExtensionError(
            'unsupported file type {!r} of {}'.format(extension, path)
        ) from None


def openReader(path, batchSize=DEFAULT_BATCH_SIZE, encoding=None):
    fileType = determineFileType(path)
    if fileType == SHAPEFILE:
        return ShapefileReader(path, encoding=encoding)
    elif fileType == GEOJSON:
        return GeoJSONReader(path)
    elif fileType == GEOPARQUET:
        return GeoParquetReader(path, batchSize=batchSize)
    else:
        return OSMReader(path)


class Reader:
    '''A format reader. Produces RawRecords through records(), re-reading
    the source on every call.'''

    fixedColumns = None

    def __init__(self, path):
        self.path = path
        self.logger = core.EmptyLogger()

    def logTo(self, logger):
        self.logger = logger

    def records(self):
        raise NotImplementedError

    def detectSRID(self):
        return None

    def __repr__(self):
        return '{}({})'.format(self.__class__.__name__, self.path)


class ShapefileReader(Reader):
    POINT_TYPES = ('Point', )
    LINE_TYPES = ('LineString', 'MultiLineString')
    POLYGON_TYPES = ('Polygon', 'MultiPolygon')

    def __init__(self, path, encoding=None):
        super().__init__(path)
        self.encoding = encoding

    def open(self):
        try:
            return fiona.open(self.path, encoding=self.encoding)
        except fiona.errors.DriverError as err:
            if not os.path.exists(self.path):
                raise core.IOFailureError('cannot open ' + self.path) from err
            raise core.FormatError('cannot read shapefile {}: {}'.format(self.path, err)) from err

    def records(self):
        with self.open() as source:
            self.logger.debug('reading %s with schema %s', self.path, source.schema)
            try:
                for feature in source:
                    yield RawRecord(
                        collections.OrderedDict(feature.properties.items()),
                        self.toNative(feature.geometry)
                    )
            except fiona.errors.FionaError as err:
                raise core.FormatError('malformed shapefile {}: {}'.format(self.path, err)) from err

    def detectSRID(self):
        with self.open() as source:
            if source.crs:
                srid = source.crs.to_epsg()
                if srid:
                    self.logger.info('SRID %d detected on input', srid)
                    return srid
        return None

    @classmethod
    def toNative(cls, geom):
        if geom is None:
            return None
        if hasattr(geom, 'coordinates'):
            geomtype, coords = geom.type, geom.coordinates
        else:
            geomtype, coords = geom['type'], geom.get('coordinates')
        if geomtype in cls.POINT_TYPES:
            return {'type' : 'Point', 'coordinates' : tuple(coords)}
        elif geomtype in cls.LINE_TYPES:
            return cls.flattenLine(coords if geomtype == 'MultiLineString' else [coords])
        elif geomtype in cls.POLYGON_TYPES:
            return cls.mergeRings(coords if geomtype == 'MultiPolygon' else [coords])
        else:
            raise core.UnsupportedShapeTypeError('unsupported shapefile shape type: ' + str(geomtype))

    @staticmethod
    def flattenLine(parts):
        # all polyline parts are chained into a single line
        return {
            'type' : 'LineString',
            'coordinates' : [tuple(pt) for part in parts for pt in part],
        }

    @staticmethod
    def mergeRings(polygons):
        # the first ring of each part is its exterior, the rest are holes
        outer = []
        holes = []
        for rings in polygons:
            for i, ring in enumerate(rings):
                ring = [tuple(pt) for pt in ring]
                if i == 0:
                    outer.extend(ring)
                else:
                    holes.append(ring)
        return {'type' : 'Polygon', 'coordinates' : [outer] + holes}


class GeoJSONReader(Reader):
    CRS_PATTERN = re.compile(r'EPSG:+(\d+)$', re.IGNORECASE)

    def load(self):
        try:
            with open(self.path, encoding='utf8') as infile:
                # all JSON numbers become double precision
                document = json.load(infile, parse_int=float)
        except OSError as err:
            raise core.IOFailureError('cannot read ' + self.path) from err
        except ValueError as err:
            raise core.FormatError('invalid GeoJSON in {}: {}'.format(self.path, err)) from err
        if not isinstance(document, dict):
            raise core.FormatError(self.path + ' is not a GeoJSON object')
        return document

    def features(self, document):
        doctype = document.get('type')
        if doctype == 'FeatureCollection':
            features = document.get('features') or []
            if not isinstance(features, list):
                raise core.FormatError('{}: features member is not an array'.format(self.path))
            return features
        elif doctype == 'Feature':
            return [document]
        else:
            raise core.FormatError('{} is not a feature collection: {}'.format(self.path, doctype))

    def records(self):
        document = self.load()
        for i, feature in enumerate(self.features(document)):
            if not isinstance(feature, dict):
                raise core.FormatError('{}: feature {} is not an object'.format(self.path, i))
            properties = feature.get('properties') or {}
            if not isinstance(properties, dict):
                raise core.FormatError('{}: properties of feature {} are not an object'.format(self.path, i))
            yield RawRecord(collections.OrderedDict(properties), feature.get('geometry'))

    def detectSRID(self):
        crs = self.load().get('crs')
        if isinstance(crs, dict):
            name = (crs.get('properties') or {}).get('name', '')
            match = self.CRS_PATTERN.search(name)
            if match:
                srid = int(match.group(1))
                self.logger.info('SRID %d detected on input', srid)
                return srid
            self.logger.warning('unrecognized GeoJSON crs %s, assuming EPSG:%d', name, WGS84_SRID)
        return WGS84_SRID


class GeoParquetReader(Reader):
    '''Reads a GeoParquet file with WKB geometries.

    The whole file is read into memory at once (in batches) since the
    columnar decoder cannot yield rows lazily; records() replays the
    cached table.'''

    def __init__(self, path, batchSize=DEFAULT_BATCH_SIZE):
        super().__init__(path)
        if batchSize < 1:
            raise core.InvalidParameterError('batch size must be positive')
        self.batchSize = batchSize
        self.table = None
        self.geoMetadata = None

    def read(self):
        if self.table is None:
            try:
                parquetFile = pyarrow.parquet.ParquetFile(self.path)
                self.geoMetadata = self.parseGeoMetadata(parquetFile.schema_arrow.metadata)
                self.logger.info('reading %s in batches of %d rows', self.path, self.batchSize)
                batches = list(parquetFile.iter_batches(batch_size=self.batchSize))
                self.table = pyarrow.Table.from_batches(batches, schema=parquetFile.schema_arrow)
            except OSError as err:
                if not os.path.exists(self.path):
                    raise core.IOFailureError('cannot open ' + self.path) from err
                raise core.FormatError('malformed parquet file {}: {}'.format(self.path, err)) from err
            except pyarrow.ArrowException as err:
                raise core.FormatError('malformed parquet file {}: {}'.format(self.path, err)) from err
            self.logger.debug('%d rows read from %s', self.table.num_rows, self.path)
        return self.table

    def parseGeoMetadata(self, metadata):
        if not metadata or b'geo' not in metadata:
            raise core.FormatError(self.path + ' has no GeoParquet metadata')
        try:
            geo = json.loads(metadata[b'geo'])
            column = geo['primary_column']
            columnMeta = geo['columns'][column]
        except (ValueError, KeyError) as err:
            raise core.FormatError('invalid GeoParquet metadata in ' + self.path) from err
        encoding = columnMeta.get('encoding', 'WKB')
        if encoding.upper() != 'WKB':
            raise core.FormatError('unsupported GeoParquet geometry encoding: ' + encoding)
        return {'column' : column, 'crs' : columnMeta.get('crs')}

    @property
    def geometryColumn(self):
        self.read()
        return self.geoMetadata['column']

    def records(self):
        table = self.read()
        geomColumn = self.geometryColumn
        for batch in table.to_batches():
            for row in batch.to_pylist():
                wkb = row.pop(geomColumn, None)
                yield RawRecord(collections.OrderedDict(row), self.decode(wkb))

    def decode(self, wkb):
        if wkb is None:
            return None
        try:
            return shapely.wkb.loads(wkb)
        except (shapely.errors.ShapelyError, ValueError, TypeError) as err:
            raise core.GeometryEncodingError('invalid WKB geometry in ' + self.path) from err

    def detectSRID(self):
        self.read()
        crs = self.geoMetadata['crs']
        if crs is None:
            return WGS84_SRID
        ident = crs.get('id', {}) if isinstance(crs, dict) else {}
        if ident.get('authority', '').upper() == 'EPSG':
            srid = int(ident['code'])
            self.logger.info('SRID %d detected on input', srid)
            return srid
        elif ident.get('authority', '').upper() == 'OGC' and ident.get('code') == 'CRS84':
            return WGS84_SRID
        self.logger.warning('cannot determine SRID from GeoParquet crs')
        return None


class OSMReader(Reader):
    '''Reads OSM ways from a PBF extract, one record per way with all its
    tags as a key=value text array.'''

    TAGS_FIELD = 'tags'
    fixedColumns = [Column(TAGS_FIELD, ScalarKind.TEXT_ARRAY)]

    def __init__(self, path):
        super().__init__(path)
        self.skipped = 0

    def records(self):
        if not os.path.exists(self.path):
            raise core.IOFailureError('cannot open ' + self.path)
        self.skipped = 0
        try:
            for obj in osmium.FileProcessor(self.path).with_locations():
                if not obj.is_way():
                    continue
                coors = [
                    (node.location.lon, node.location.lat)
                    for node in obj.nodes if node.location.valid()
                ]
                geom = self.wayGeometry(coors)
                if geom is None:
                    self.logger.debug('skipping degenerate way %d', obj.id)
                    self.skipped += 1
                    continue
                tags = ['{}={}'.format(tag.k, tag.v) for tag in obj.tags]
                yield RawRecord({self.TAGS_FIELD : tags}, geom)
        except RuntimeError as err:
            raise core.FormatError('malformed OSM file {}: {}'.format(self.path, err)) from err
        if self.skipped:
            self.logger.info('%d degenerate ways skipped in %s', self.skipped, self.path)

    def detectSRID(self):
        return WGS84_SRID

    @staticmethod
    def wayGeometry(coors):
        if len(coors) > 3 and geometry.isClosed(coors):
            return {'type' : 'Polygon', 'coordinates' : [coors]}
        elif len(coors) > 1:
            return {'type' : 'LineString', 'coordinates' : coors}
        else:
            return None
