import threading

class NetflowdThread( threading.Thread ):

    """
    Parent class we use for the threads in this program.
    Primarily contains the code for stopping the thread in a
    graceful manner.

    To cause a stop, call method request_stop and then wake the
    thread up.  The thread checks should_stop whenever it wakes.
    """

    def __init__( self, **kwargs ):

        """
        Calls the Thread constructor with any arguments needed
        and creates the stop Event.

        Args:
            Any argument, by keyword, to the threading.Thread class.
        """

        threading.Thread.__init__( self, **kwargs )
        self._stop_event = threading.Event()
        self._know_it_stopped = False

    def should_stop( self ):

        """
        Returns True if the thread should stop.
        """

        return( self._stop_event.is_set() )

    def request_stop( self ):

        """
        Call when the thread should stop.  The thread will attempt a
        graceful cleanup the next time it checks should_stop.
        """

        self._stop_event.set()

    def know_it_stopped( self ):

        """
        Marks the thread as known to be stopped, so the caller only
        issues one message about it.  See do_we_know_it_stopped.
        """

        self._know_it_stopped = True

    def do_we_know_it_stopped( self ):

        """
        Returns True if we marked the thread as stopped.
        """

        return( self._know_it_stopped )

# End.
