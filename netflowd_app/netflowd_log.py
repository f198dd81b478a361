"""
This module contains the routine that sets up logging and a
routine that provides the current logging object.  The logging
object is derived from the system base module of logging.
"""

import logging
import logging.handlers
import traceback

#
# _theconsole and _thesyslog handlers are kept accessable so we
# can modify them as needed, or remove them.
#

_thelog = logging.getLogger( 'netflowd_app' )
_theconsole = None
_thesyslog = None

def log():
    """
    This routine returns the current log object.  This object
    is derived from the logging class.

    Args:
        None

    Returns:
        An object of class logging.
    """

    return( _thelog )

def set_logging( cmdparse ):

    """
    Sets up logging.  May be called more than once; the second
    call (after argument processing) adjusts the handlers set up
    by the first.

    Args:
        cmdparse    -- The results of argument processing, or None
                       for basic stderr logging.  Attribute log turns
                       on syslog logging, and verbose controls the
                       console logging level.

    Returns
        None
    """

    global _theconsole
    global _thesyslog

    if getattr( cmdparse, 'log', None ):
        if not _thesyslog:
            _thesyslog = logging.handlers.SysLogHandler(
                address = '/dev/log',
                facility = logging.handlers.SysLogHandler.LOG_LOCAL1
            )

            syslog_format = logging.Formatter(
                fmt = '%(processName)s[%(process)d] %(message)s' )
            _thesyslog.setFormatter( syslog_format )

        _thesyslog.setLevel( logging.INFO )
        _thelog.addHandler( _thesyslog )
    elif _thesyslog:
        _thelog.removeHandler( _thesyslog )
        _thesyslog.close()
        _thesyslog = None

    if not _theconsole:
        _theconsole = logging.StreamHandler()
        _thelog.addHandler( _theconsole )

    if getattr( cmdparse, 'verbose', None ):
        _theconsole.setLevel( logging.INFO )
    else:
        _theconsole.setLevel( logging.WARN )

    _thelog.setLevel( logging.INFO )

def log_traceback( exc, logger=None ):

    """
    Writes the traceback of exc to the log, one line per entry.
    Long running threads use this so errors are not lost.
    """

    if logger is None:
        logger = _thelog

    for x in traceback.format_exception( type( exc ), exc,
                                         exc.__traceback__ ):
        logger.error( x.rstrip() )

# End.
