"""
Main socket handling code.  Each port we listen on runs in its
own thread.  Datagrams are read from the network, dispatched by
the version tag in their first two bytes, decoded, and every
decoded record is handed to the consumer before the next read.

There is no queue between the socket and the consumer.  A slow
consumer delays the next read, and the OS receive buffer is all
that absorbs bursts.  We try to make that buffer large.

A datagram that can not be handled is logged and dropped.  Nothing
that happens to one datagram is allowed to stop the thread; only
a stop request does that.

Datagrams are read into one preallocated buffer, so they are never
kept past their own processing.
"""

import enum
import errno
import socket
import threading
import uuid

import netflowd_app.netflow_v5
import netflowd_app.netflowd_thread
from netflowd_app.netflowd_log import log, log_traceback
from netflowd_app.util import check_port, resolve_listen_address, \
    wakeup_address

class ListenerState( enum.Enum ):
    created = 1
    started = 2
    stopped = 3

#
# Version tag to decoder.  A decoder takes ( buffer, address ) and
# returns a list of records or raises DecodeFailure.
#

dispatch = {
    netflowd_app.netflow_v5.NETFLOW_V5_VERSION:
        netflowd_app.netflow_v5.decode
}

class Listener( netflowd_app.netflowd_thread.NetflowdThread ):

    """
    Handles a UDP socket.  Once started, a thread reads datagrams
    from the port and calls consumer( listener, record ) for every
    decoded flow record, in the order they arrive.

    A listener is started once.  Call stop() (or close(), or use it
    as a context manager) to shut it down; stopping is safe whether
    or not it was ever started.
    """

    def __init__( self, port, consumer, listen_address='any', logger=None,
            poll_interval=1.0, buff_size=1024*4 ):

        """
        Returns a listener.  Nothing is opened until start().

        Args:
            port: The UDP port to listen on, 1-65535.  Checked by start.
            consumer: Called as consumer( listener, record ) for each
                FlowRecord.  Exceptions it raises are logged.
            listen_address: 'any' for IPv4, 'ipv6any' for dual stack,
                or a literal address.
            logger: A logging.Logger.  Defaults to the program log.
            poll_interval: Longest time, in seconds, a read blocks
                before the thread looks at the stop request again.
            buff_size: Largest datagram we read.  The biggest valid
                NetFlow v5 datagram is 1464 bytes.
        """

        name = 'Port %s socket reader' % port
        self.port = port
        self.listen_address = listen_address
        self.id = uuid.uuid4()
        self.s = None

        self._consumer = consumer
        self._log = logger if logger is not None else log()
        self._poll_interval = poll_interval
        self._buff_size = buff_size
        self._family = None
        self._bind_address = None
        self._listener_state = ListenerState.created
        self._lifecycle_lock = threading.Lock()
        self._metrics_lock = threading.Lock()

        netflowd_app.netflowd_thread.NetflowdThread.__init__(
                    self, name=name, target=self.read_loop )
        self.daemon = True

        self.metrics_reset()

    @property
    def state( self ):
        return( self._listener_state )

    def __enter__( self ):
        return( self )

    def __exit__( self, exc_type, exc_value, exc_traceback ):
        self.close()

    def start( self ):

        """
        Checks the port, binds the socket and starts the read thread.
        Returns as soon as the thread is running.

        Raises:
            RuntimeError: The listener was already started or stopped.
            ValueError: Bad port or listen address.
            OSError: The socket could not be bound.
        """

        with self._lifecycle_lock:
            if self._listener_state != ListenerState.created:
                raise RuntimeError( 'Thread %s is already %s' %
                    ( self.name, self._listener_state.name ) )

            self.port = check_port( self.port )
            self._make_socket()

            try:
                netflowd_app.netflowd_thread.NetflowdThread.start( self )
            except RuntimeError:
                self._close_socket()
                raise

            self._listener_state = ListenerState.started

        self._log.info( 'INFO: Started thread %s', self.name )

    def stop( self, timeout=None ):

        """
        Asks the read thread to stop, wakes it up, and waits up to
        timeout seconds (forever if None) for it to finish.  The
        socket is closed either way.

        Calling it again after a timed out stop waits again.

        Returns:
            True if the thread is gone, False if the wait timed out.
            The thread will still stop the next time it wakes.
        """

        with self._lifecycle_lock:
            state = self._listener_state
            if state == ListenerState.started:
                self._listener_state = ListenerState.stopped
                self.request_stop()
                self._wakeup()

        if state != ListenerState.started:
            if not self.is_alive():
                return( True )
            if threading.current_thread() is self:
                return( False )
            self.join( timeout )
            return( not self.is_alive() )

        if threading.current_thread() is self:
            stopped = False             # Consumer asked us to stop
        else:
            self.join( timeout )
            stopped = not self.is_alive()
            if not stopped:
                self._log.warning( 'WARN: Thread %s has not stopped yet',
                    self.name )

        with self._lifecycle_lock:
            self._close_socket()

        return( stopped )

    def close( self ):

        """
        Stops the listener if needed and releases the socket.  Can
        be called any number of times.  A closed listener can not
        be started.
        """

        self.stop()

        with self._lifecycle_lock:
            self._close_socket()
            self._listener_state = ListenerState.stopped

    def _make_socket( self ):

        """
        This method sets up the socket.  Sets the instance attribute 's'.
        """

        ( family, bind_address ) = resolve_listen_address(
                                                self.listen_address )

        # No SO_REUSEADDR: a second listener on the port must fail.

        s = socket.socket( family, socket.SOCK_DGRAM )
        self.s = s

        try:
            if family == socket.AF_INET6 and bind_address == '::':
                s.setsockopt( socket.IPPROTO_IPV6, socket.IPV6_V6ONLY, 0 )
            self._set_socket_buffer()
            s.bind( ( bind_address, self.port ) )
        except OSError as e:
            self._log.error( 'ERROR: bind port %d, errno=%s: %s',
                self.port, e.errno, e.strerror )
            self._close_socket()
            raise

        s.settimeout( self._poll_interval )
        self._family = family
        self._bind_address = bind_address

    def _set_socket_buffer( self ):

        """
        This routine attempts to maximize the size of the OS buffer
        associated with the socket.
        """

        size = 2<<24            # 32MB

        while size > 2048:
            try:
                self.s.setsockopt( socket.SOL_SOCKET, socket.SO_RCVBUF, size )
                break
            except OSError:
                size //= 2

        if size <= 2048:
            self._log.error( 'ERROR: Error setting SO_RCVBUF.  Got to 2K.' )
            return

        self._log.info( 'INFO: Set receive buffer for port %d to %d.',
            self.port,
            self.s.getsockopt( socket.SOL_SOCKET, socket.SO_RCVBUF ) )

    def _close_socket( self ):
        if self.s is not None:
            self.s.close()
            self.s = None

    def _wakeup( self ):

        """
        Sends a zero length datagram to our own port so a blocked
        read returns at once.  If that fails we still stop within
        poll_interval.
        """

        address = wakeup_address( self._family, self._bind_address )

        try:
            ws = socket.socket( self._family, socket.SOCK_DGRAM )
            try:
                ws.sendto( bytearray( 0 ), ( address, self.port ) )
            finally:
                ws.close()
        except OSError as e:
            self._log.info( 'INFO: %s: wakeup to %s failed: %s',
                self.name, address, e )

    def metrics_reset( self ):
        self.metric_datagrams = 0
        self.metric_records = 0
        self.metric_short = 0
        self.metric_unsupported = 0
        self.metric_decode_failures = 0
        self.metric_consumer_errors = 0
        self.metric_errors = 0

    def print_metrics( self ):

        """
        Logs the counters since the last call, then resets them.
        Called from the signal handler on the main thread, so the
        read and the reset happen under the metrics lock.
        """

        with self._metrics_lock:
            m = ( self.metric_datagrams,
                  self.metric_records,
                  self.metric_short,
                  self.metric_unsupported,
                  self.metric_decode_failures,
                  self.metric_consumer_errors,
                  self.metric_errors )
            self.metrics_reset()

        self._log.info( 'INFO: %s: datagrams: %d, records: %d, '
            'short: %d, unsupported: %d, decode failures: %d, '
            'consumer errors: %d, errors: %d', self.name, *m )

    def _count( self, metric ):
        with self._metrics_lock:
            setattr( self, metric, getattr( self, metric ) + 1 )

    def read_loop( self ):

        """
        This routine implements the main read loop.  It waits for
        datagrams on the port and processes each one as it comes in.

        The stop request is checked before every read and right after
        every wakeup, whether that was a datagram, the zero length
        datagram stop() sends, or the socket timeout.  Once it is
        seen, we never read again.
        """

        s = self.s
        buff = bytearray( self._buff_size )
        view = memoryview( buff )

        while not self.should_stop():
            try:
                ( nbytes, address ) = s.recvfrom_into( buff, self._buff_size )
            except socket.timeout:
                continue
            except OSError as e:
                if self.should_stop():
                    break
                self._count( 'metric_errors' )
                self._log.error( 'ERROR: %s: recvfrom, errno=%s: %s',
                    self.name, e.errno, e.strerror )
                if e.errno == errno.EBADF or s.fileno() == -1:
                    break               # Socket is gone
                continue

            if self.should_stop():
                break

            self.process_datagram( view[ :nbytes ], address )

        self._log.info( 'INFO: Thread %s stopping by request', self.name )

    def process_datagram( self, p, address ):

        """
        Handles one datagram.  Any error is logged here; nothing is
        raised to the read loop.

        Args:
            p: The datagram, any bytes like object.
            address: The sender, as returned by recvfrom.
        """

        self._count( 'metric_datagrams' )

        try:
            self._process_datagram( p, address )
        except Exception as e:
            self._count( 'metric_errors' )
            self._log.error( 'ERROR: %s: datagram from %s aborted: %s',
                self.name, _host( address ), e )
            log_traceback( e, self._log )

    def _process_datagram( self, p, address ):
        p_len = len( p )

        if p_len < 2:
            self._count( 'metric_short' )
            self._log.info( 'INFO: %s: short packet from %s, len=%d',
                self.name, _host( address ), p_len )
            return

        version = netflowd_app.netflow_v5.netflow_version( p )
        rtn = dispatch.get( version )
        if rtn is None:
            self._count( 'metric_unsupported' )
            self._log.info( 'INFO: %s: unsupported version %d from %s, '
                'len=%d', self.name, version, _host( address ), p_len )
            return

        try:
            records = rtn( p, address )
        except netflowd_app.netflow_v5.DecodeFailure as e:
            self._count( 'metric_decode_failures' )
            self._log.info( 'INFO: %s: dropped datagram from %s: %s',
                self.name, _host( address ), e )
            return

        for r in records:
            self._deliver( r )

    def _deliver( self, r ):
        try:
            self._consumer( self, r )
        except Exception as e:
            self._count( 'metric_consumer_errors' )
            self._log.error( 'ERROR: %s: consumer failed on record from %s: '
                '%s', self.name, r.client_address, e )
            log_traceback( e, self._log )
            return

        self._count( 'metric_records' )

def _host( address ):
    if isinstance( address, tuple ):
        return( address[ 0 ] )
    return( address )

# End.
