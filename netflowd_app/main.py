"""
This is the main module for netflowd.  It processes the arguments,
starts a listener for every port and waits for a signal.

This program responds to:

    SIGUSR1: Print a status report
    SIGHUP, SIGINT: Graceful shutdown.
    SIGTERM: Same as SIGHUP, logged as a fast stop.

The structure is simple.  Each port gets one listener thread that
reads a datagram, decodes it, and hands every flow record to the
consumer before reading the next one.  The consumer here just logs
the record; anything that wants the records for something else
passes its own consumer to netflowd_app.sockets.Listener.

Records are logged at INFO, so run with --verbose (or --log) to
see them.
"""

import grp
import pwd
import signal
import sys
import threading

import daemon
import daemon.pidfile

import netflowd_app.args
import netflowd_app.netflowd_log
import netflowd_app.sockets
from netflowd_app.netflowd_log import log, log_traceback
from netflowd_app.records import format_record
from netflowd_app.util import set_exit, get_exit

NETFLOWD_MAJOR = 1
NETFLOWD_MINOR = 0
NETFLOWD_PATCH = 0

VERSION = '%d.%02d.%02d' % ( NETFLOWD_MAJOR, NETFLOWD_MINOR, NETFLOWD_PATCH )

listeners = []
_shutdown = threading.Event()

def log_record( listener, record ):

    """
    The default consumer.  Logs one line per flow record.
    """

    log().info( 'INFO: NetFlow record received: %s', format_record( record ) )

def main( argv=None ):

    """
    Main routine.  Call the option parser, and then start the
    listeners.  Set the signal handlers and wait.

    We trap the exit exception, if bad, so it can be logged to
    a syslog, etc.
    """

    netflowd_app.netflowd_log.set_logging( None )   # Basic stderr logging
    cmdparse = netflowd_app.args.parse_args( argv )

    if not cmdparse.nofork:
        daemon_args = {}
        daemon_args[ 'umask' ] = 0o027
        daemon_args[ 'prevent_core' ] = True
        pidfile = daemon.pidfile.TimeoutPIDLockFile( cmdparse.pidfile,
                                                    acquire_timeout=0 )

        # Checked before the fork, while stderr still goes somewhere.
        if pidfile.is_locked():
            log().error( 'ERROR: %s is locked by pid %s, not starting.',
                cmdparse.pidfile, pidfile.read_pid() )
            sys.exit( 1 )

        daemon_args[ 'pidfile' ] = pidfile

        if cmdparse.user:
            daemon_args[ 'uid' ] = pwd.getpwnam( cmdparse.user ).pw_uid
        if cmdparse.group:
            daemon_args[ 'gid' ] = grp.getgrnam( cmdparse.group ).gr_gid

        with daemon.DaemonContext( **daemon_args ):
            try:
                _main( cmdparse )
            except SystemExit:
                pass
            except Exception as e:
                log_traceback( e )
                log().error( 'Daemon aborted.' )
                set_exit( 1 )
        sys.exit( get_exit() )
    else:
        _main( cmdparse )
        sys.exit( get_exit() )

def _main( cmdparse, consumer=log_record ):

    """
    This is the main code that runs after we decide to fork as a
    daemon or not.  Does not matter to this code.  Returns once
    all listeners are stopped.
    """

    netflowd_app.netflowd_log.set_logging( cmdparse )   # Logging set by args

    log().info( 'INFO: netflowd Version: %s', VERSION )

    for p in cmdparse.ports:
        listeners.append( netflowd_app.sockets.Listener( p, consumer,
            listen_address=cmdparse.listen_address,
            poll_interval=cmdparse.poll_interval ) )

    if not start_all_listeners():
        stop_all_listeners()
        return

    signal.signal( signal.SIGUSR1, usr1_handler )   # Set info request
    signal.signal( signal.SIGHUP, hup_handler )     # Gracefull shutdown
    signal.signal( signal.SIGINT, hup_handler )     # Gracefull shutdown
    signal.signal( signal.SIGTERM, term_handler )   # Fast shutdown

    while not _shutdown.is_set():
        _shutdown.wait( 24*60*60 )      # Now, main thread responds to signals

    stop_all_listeners()
    log().info( 'INFO: All threads have stopped.  Shutdown complete.' )

def start_all_listeners():

    """
    Starts every listener.  A listener that can not start is logged
    and sets the exit code.

    Returns:
        True if all of them started.
    """

    for l in listeners:
        try:
            l.start()
        except ( ValueError, RuntimeError, OSError ) as e:
            log().error( 'ERROR: Thread %s did not start: %s', l.name, e )
            set_exit( 1 )
            return( False )

        log().info( 'INFO: Listening on %s port %d', l.listen_address, l.port )

    return( True )

def stop_all_listeners( timeout=10 ):

    """
    Requests all current listeners to stop and waits for them.
    """

    for l in listeners:
        if not l.stop( timeout ):
            log().error( 'ERROR: Thread %s did not stop in %d seconds.',
                l.name, timeout )
            set_exit( 1 )

def usr1_handler( signum, frame ):

    """
    This handler prints some info about the thread states.

    Returns:
        True: Some threads still live
        False: All threads dead
    """

    any_alive = False

    for l in listeners:
        if l.is_alive():
            any_alive = True
            log().info( 'INFO: Thread name: %s is alive, state: %s',
                l.name, l.state.name )
            l.print_metrics()
        elif not l.do_we_know_it_stopped():
            log().error( 'ERROR: Thread Name: %s is NOT alive.', l.name )
            l.know_it_stopped()

    return( any_alive )

def hup_handler( signum, frame ):

    """
    This handler tells the main loop to stop the listeners and
    return.
    """

    log().info( "INFO: It's my time to be going!" )
    _shutdown.set()

def term_handler( signum, frame ):

    """
    There are no queues to clear, so this is the hup handler with
    a different message.
    """

    log().info( 'INFO: Fast stop.' )

    hup_handler( signum, frame )

# End.
