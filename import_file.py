'''Import a spatial data file into a PostGIS table.

Reads a shapefile, GeoJSON feature collection, GeoParquet file or OSM PBF
extract, infers the column types from its contents and bulk loads all
features into a single table through a binary COPY. The table is created,
overwritten or appended to according to the load mode.
'''

import sys

import geobulk
import geobulk.input

argparser = geobulk.defaultArgumentParser(__doc__)
argparser.add_argument('-s', '--source-srid', metavar='srid',
    help='SRID of the imported file (default: detect, then 4326)', type=int, default=0
)
argparser.add_argument('-r', '--target-srid', metavar='srid',
    help='reproject the features into this SRID', type=int, default=0
)
argparser.add_argument('-m', '--mode', metavar='mode', default='create',
    choices=[mode.value for mode in geobulk.LoadMode],
    help='create (fail if the table exists), overwrite or append'
)
argparser.add_argument('-b', '--batch-size', metavar='rows', type=int,
    default=geobulk.input.DEFAULT_BATCH_SIZE,
    help='GeoParquet read batch size'
)
argparser.add_argument('-n', '--sample', metavar='records', type=int, default=None,
    help='infer column types from this many records only (default: all)'
)
argparser.add_argument('-C', '--encoding', metavar='encoding',
    help='shapefile attribute character encoding'
)
argparser.add_argument('table', help='target table name')
argparser.add_argument('file', help='shapefile, GeoJSON, GeoParquet or OSM PBF file')

if __name__ == '__main__':
    args = argparser.parse_args()
    try:
        geobulk.validateArgs(args)
        geobulk.Loader.fromArgs(args).run(
            path=args.file,
            table=args.table,
            mode=args.mode,
            sourceSRID=args.source_srid,
            targetSRID=args.target_srid,
            batchSize=args.batch_size,
            sampleSize=args.sample,
            encoding=args.encoding,
        )
    except geobulk.Error as err:
        sys.exit('import failed: {}'.format(err))
