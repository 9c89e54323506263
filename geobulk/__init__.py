import os
import argparse

import fiona.crs
import fiona.errors

from . import core
from .core import Error, InvalidParameterError
from .schema import LoadMode
from .load import Loader

def defaultArgumentParser(description, schema=True):
    argparser = argparse.ArgumentParser(description=description)
    argparser.add_argument('-d', '--dbconf', metavar='conffile', help='database connection configuration file')
    argparser.add_argument('-u', '--uri', metavar='uri', help='PostgreSQL connection URI, overrides the configuration file')
    if schema:
        argparser.add_argument('-S', '--schema', metavar='schema', help='database schema of the target table')
    return argparser

def validateArgs(args):
    if not os.path.isfile(args.file):
        raise InvalidParameterError('input file does not exist: ' + args.file)
    if not args.table or not args.table.strip():
        raise InvalidParameterError('table name is empty')
    if args.uri is not None and not args.uri.strip():
        raise InvalidParameterError('database URI is empty')
    if not args.uri and not os.path.isfile(args.dbconf or core.DEFAULT_DB_CONF_PATH):
        raise InvalidParameterError('no database URI given and connection configuration not found: '
            + (args.dbconf or core.DEFAULT_DB_CONF_PATH)
        )
    if hasattr(args, 'schema') and args.schema is not None and not args.schema.strip():
        raise InvalidParameterError('schema name is empty')
    for srid in (args.source_srid, args.target_srid):
        if srid:
            try:
                fiona.crs.CRS.from_epsg(srid)
            except fiona.errors.FionaError as err:
                raise InvalidParameterError('unknown SRID: ' + str(srid)) from err
    LoadMode.parse(args.mode)
    return args
