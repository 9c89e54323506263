import sys
import os
import logging
import logging.handlers
import contextlib
import json

import psycopg2


ROOT_PATH = os.path.normpath(os.path.join(os.path.dirname(__file__), '..'))
LOG_PATH = os.environ.get('GEOBULK_LOG_PATH', os.path.join(ROOT_PATH, 'log'))
CONFIG_PATH = os.path.join(ROOT_PATH, 'config')

def configPath(filename):
    return os.path.join(CONFIG_PATH, filename)

DEFAULT_DB_CONF_PATH = configPath('dbconn.json')
URI_PREFIXES = ('postgresql://', 'postgres://')

GEOMETRY_FIELD = 'geom'
DEFAULT_SRID = 4326


class Error(Exception):
    pass

class ConfigError(Error):
    pass

class InvalidParameterError(Error):
    pass

class UnsupportedFileExtensionError(Error):
    pass

class FormatError(Error):
    pass

class UnsupportedShapeTypeError(Error):
    pass

class MixedDataTypesError(Error):
    def __init__(self, column, previous, current):
        super().__init__('column {!r} contains mixed data types: {} and {}'.format(
            column, previous.name, current.name
        ))
        self.column = column
        self.kinds = (previous, current)

class TableExistsError(Error):
    pass

class CannotAppendError(Error):
    pass

class IOFailureError(Error):
    pass

class GeometryEncodingError(Error):
    pass

class ProjectionError(Error):
    pass

class DestinationProtocolError(Error):
    pass


class Task:
    activeLoggers = []

    def __init__(self, schema=None):
        self.schema = schema if schema else None
        self._startLogging()

    def _startLogging(self):
        self.logname = 'geobulk.' + self.__class__.__name__.lower()
        if self.schema:
            self.logname += ('.' + self.schema)
        self.logger = logging.getLogger(self.logname)
        if self.logger not in self.activeLoggers:
            self.logger.setLevel(logging.DEBUG)
            os.makedirs(LOG_PATH, exist_ok=True)
            fileHandler = logging.handlers.RotatingFileHandler(
                os.path.join(LOG_PATH, self.logname + '.log'),
                maxBytes=10000000,
                backupCount=3
            )
            fileHandler.setLevel(logging.DEBUG)
            stdoutHandler = logging.StreamHandler(sys.stdout)
            stdoutHandler.setLevel(logging.INFO)
            formatter = logging.Formatter('%(asctime)s %(levelname)s %(name)s: %(message)s')
            for handler in (fileHandler, stdoutHandler):
                handler.setFormatter(formatter)
                self.logger.addHandler(handler)
            self.activeLoggers.append(self.logger)
            self.logger.debug('logging started')

    def run(self, *args, **kwargs):
        self.logger.debug('starting %s', self.logname)
        try:
            result = self.main(*args, **kwargs)
        except Exception as exc:
            self.logger.exception(exc)
            raise
        self.logger.debug('successfully finished %s', self.logname)
        return result

    def main(self, *args, **kwargs):
        raise NotImplementedError


class DatabaseTask(Task):
    def __init__(self, connector, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.connector = connector
        self.connector.logTo(self.logger)

    @contextlib.contextmanager
    def _connect(self, autocommit=False):
        with self.connector.connect(autocommit=autocommit) as cursor:
            yield cursor

    @classmethod
    def fromArgs(cls, args):
        return cls.fromConfig(
            args.uri if getattr(args, 'uri', None) else args.dbconf,
            args.schema if hasattr(args, 'schema') else None
        )

    @classmethod
    def fromConfig(cls, connConfig, schema):
        return cls(Connector.fromConfig(connConfig), schema=schema)


class Connector:
    '''Opens short-lived database connections from a psycopg2 keyword config.

    Every connection lives only for the duration of the `connect()` block:
    committed on success, rolled back on failure and closed on all paths.'''

    def __init__(self, config):
        self.config = config
        self.logger = EmptyLogger()

    def logTo(self, logger):
        self.logger = logger

    @classmethod
    def fromConfig(cls, config):
        if config is None:
            config = DEFAULT_DB_CONF_PATH
        if isinstance(config, str):
            if config.startswith(URI_PREFIXES):
                config = {'dsn' : config}
            else:
                config = loadConfig(config)
        return cls(config)

    def target(self):
        return self.config.get('dbname', self.config.get('dsn', '').rsplit('/', 1)[-1])

    @contextlib.contextmanager
    def connect(self, autocommit=False):
        self.logger.debug('connecting to database %s', self.target())
        try:
            connection = psycopg2.connect(**self.config)
        except psycopg2.Error as err:
            raise DestinationProtocolError('cannot connect to database: ' + str(err).strip()) from err
        try:
            if autocommit:
                connection.autocommit = True
            else:
                self.logger.debug('entering database transaction')
            try:
                yield connection.cursor()
            except Exception:
                if not autocommit:
                    self.logger.debug('rolling back database transaction')
                    connection.rollback()
                raise
            else:
                if not autocommit:
                    self.logger.debug('committing database transaction')
                    try:
                        connection.commit()
                    except psycopg2.Error as err:
                        raise DestinationProtocolError('cannot commit: ' + str(err).strip()) from err
        finally:
            connection.close()


class EmptyLogger:
    def __bool__(self):
        return False

    def info(self, *args, **kwargs):
        pass

    def debug(self, *args, **kwargs):
        pass

    def warning(self, *args, **kwargs):
        pass


def loadConfig(path):
    try:
        with open(path, encoding='utf8') as infile:
            return json.load(infile)
    except OSError as err:
        raise ConfigError('cannot read configuration file ' + path) from err
    except ValueError as err:
        raise ConfigError('invalid configuration file ' + path) from err
