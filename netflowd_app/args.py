import argparse

from netflowd_app.util import check_port, resolve_listen_address

class ParsePorts( argparse.Action ):

    """
    Collects the --ports values.  Each value is one port, or a comma
    seperated list of them.  Duplicates are dropped, order is kept.
    """

    def __init__(self, option_strings, dest, nargs=None, **kwargs ):
        if nargs is not None:
            raise ValueError( 'nargs not allowed' )

        argparse.Action.__init__( self, option_strings, dest, **kwargs )

    def __call__(self, parser, namespace, values, option_string=None):

        ports = getattr( namespace, self.dest, None )
        if ports is None:
            ports = []

        for p in values.split( ',' ):
            try:
                port = check_port( p.strip() )
            except ValueError as e:
                raise argparse.ArgumentError( self, str( e ) )
            if port not in ports:
                ports.append( port )

        setattr( namespace, self.dest, ports )

def listen_address( value ):

    """
    argparse type for --listen-address.
    """

    try:
        resolve_listen_address( value )
    except ValueError as e:
        raise argparse.ArgumentTypeError( str( e ) )

    return( value )

def positive_float( value ):
    try:
        f = float( value )
    except ValueError:
        raise argparse.ArgumentTypeError( 'not a number: %s' % value )

    if f <= 0:
        raise argparse.ArgumentTypeError( 'must be greater than 0: %s' % value )

    return( f )

def parse_args( argv=None ):

    """
    Parse the arguments.

    Args:
        argv: The argument list, defaults to sys.argv[1:].

    Returns:
        The argparse namespace.  Exits (status 2) on bad arguments.
    """

    p = argparse.ArgumentParser( description =
        "Daemon that receives NetFlow v5 datagrams from routers and "
        "switches and logs the flow records." )

    p.add_argument( '--ports', '-p',
        required=True,
        metavar='port[,port...]',
        action=ParsePorts,
        help='Specifies a UDP port to listen on.  '
            'This option may be specified more than once.' )

    p.add_argument( '--listen-address', '-l',
        default='any',
        type=listen_address,
        help='Address to bind: "any" for all IPv4 interfaces, '
            '"ipv6any" for dual stack, or a literal address.  '
            'Default is "any".' )

    p.add_argument( '--nofork', '-f',
        action='store_true',
        help='Does not fork a daemon process.  Program runs in foreground.')

    p.add_argument( '--user',
        help='The user to run the daemon as.  Must be started as root '
            'and as a daemon.' )

    p.add_argument( '--group',
        help='The group to run the daemon as.  Must be start as root '
            'and as a daemon.' )

    p.add_argument( '--pidfile',
        default='/var/run/netflowd.pid',
        help='The pid file used when running as a daemon.' )

    p.add_argument( '--log',
        action='store_true',
        help = 'Also log to syslog, facility local1.' )

    p.add_argument( '--verbose', '-v',
        action='count',
        default=0,
        help="Turns on verbose output.  Flow records are logged at this "
            "level." )

    p.add_argument( '--poll-interval',
        type=positive_float,
        default=1.0,
        help='Seconds a socket read may block before the stop request '
            'is checked.  Default 1.' )

    return( p.parse_args( argv ) )

# End.
