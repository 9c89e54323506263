import fiona.crs
import fiona.errors
import fiona.transform
import shapely
import shapely.errors
import shapely.geometry

from . import core

SUPPORTED_TYPES = frozenset((
    'Point', 'LineString', 'Polygon',
    'MultiPoint', 'MultiLineString', 'MultiPolygon',
))
LITTLE_ENDIAN = 1


def isClosed(coords):
    return len(coords) > 1 and tuple(coords[0]) == tuple(coords[-1])

def geometryType(native):
    if native is None:
        return None
    elif hasattr(native, 'geom_type'):
        return native.geom_type
    elif hasattr(native, 'keys'):
        return native.get('type')
    else:
        raise core.GeometryEncodingError('not a geometry: ' + repr(native)[:100])


class Reprojector:
    '''Transforms geometry coordinates between two EPSG-coded systems.

    Uses the GDAL transformation bundled with fiona.'''

    def __init__(self, sourceSRID, targetSRID):
        self.sourceSRID = sourceSRID
        self.targetSRID = targetSRID
        try:
            self.sourceCRS = fiona.crs.CRS.from_epsg(sourceSRID)
            self.targetCRS = fiona.crs.CRS.from_epsg(targetSRID)
        except fiona.errors.FionaError as err:
            raise core.ProjectionError(
                'unknown SRID pair {} -> {}'.format(sourceSRID, targetSRID)
            ) from err

    def transformCoords(self, xs, ys):
        try:
            return fiona.transform.transform(self.sourceCRS, self.targetCRS, list(xs), list(ys))
        except fiona.errors.FionaError as err:
            raise core.ProjectionError(
                'cannot transform coordinates from {} to {}'.format(self.sourceSRID, self.targetSRID)
            ) from err

    def __call__(self, geometry):
        # output is 2D, z values are not carried through
        return shapely.transform(geometry, self.transformCoords, interleaved=False)

    def __repr__(self):
        return 'Reprojector({} -> {})'.format(self.sourceSRID, self.targetSRID)


class GeometryEncoder:
    '''Encodes native geometries as 2D little-endian EWKB tagged with an SRID.

    Native geometries are GeoJSON-like mappings or shapely geometries.'''

    def __init__(self, srid=core.DEFAULT_SRID, reprojector=None):
        self.srid = srid
        self.reprojector = reprojector

    def encode(self, native):
        if native is None:
            return None
        geometry = self.toShape(native)
        if self.reprojector:
            geometry = self.reprojector(geometry)
        try:
            return shapely.to_wkb(
                shapely.set_srid(geometry, self.srid),
                output_dimension=2,
                byte_order=LITTLE_ENDIAN,
                include_srid=True,
            )
        except (shapely.errors.ShapelyError, ValueError, TypeError) as err:
            raise core.GeometryEncodingError('cannot encode {}: {}'.format(geometry.geom_type, err)) from err

    @staticmethod
    def toShape(native):
        geomtype = geometryType(native)
        if geomtype not in SUPPORTED_TYPES:
            raise core.UnsupportedShapeTypeError('unsupported shape type: ' + str(geomtype))
        if hasattr(native, 'geom_type'):
            return native
        try:
            return shapely.geometry.shape(native)
        except (shapely.errors.ShapelyError, ValueError, TypeError, IndexError, KeyError) as err:
            raise core.GeometryEncodingError('malformed {} geometry: {}'.format(geomtype, err)) from err
