import socket
import struct
import ipaddress

exit_code = 0

def set_exit( code ):

    global exit_code

    if code > exit_code:
        exit_code = code

def get_exit():
    return( exit_code )

def make_pack_items( l, network_byte_order=True ):

    """
    This function is used to make the pack/unpack items for
    a fixed layout.  All NetFlow v5 values are unsigned, so there
    is no way to express a signed field here.  This routine should
    only be called at module startup.

    Args:
        l: The list of fields to convert.  Each element in the list
            is an indexable item, with 0 being the name and 1 having
            the number of bytes in the field.
        network_byte_order: If True, emit a pack string for network
            byte order, else a native unaligned pack string.

    Returns:
        A tuple of:

        0: A class Struct object that can be used to pack or
            unpack objects
        1: A dict of field names to indexes in the Struct pack
           or unpack iterable.
    """

    if network_byte_order:
        pack_string = '!'
    else:
        pack_string = '='

    d = {}
    for (i,f) in enumerate(l):
        if f[ 1 ] == 1:
            pack_string += 'B'
        elif f[ 1 ] == 2:
            pack_string += 'H'
        elif f[ 1 ] == 4:
            pack_string += 'L'
        elif f[ 1 ] == 8:
            pack_string += 'Q'
        else:
            raise ValueError( 'Unsupported field length %d for %s' %
                ( f[ 1 ], f[ 0 ] ) )

        if f[ 0 ] in d:
            raise ValueError( 'Duplicate field name %s' % f[ 0 ] )
        d[f[0]]=i

    the_struct = struct.Struct( pack_string )

    return( the_struct, d )

def sender_address( address ):

    """
    Converts the address part of a recvfrom() result, or a plain
    address, to an ipaddress object.  IPv4 senders seen on a dual
    stack socket arrive as IPv4 mapped IPv6 addresses; those are
    returned as IPv4.

    Args:
        address: A (host, port, ...) tuple, an address string or
            an ipaddress object.

    Returns:
        An IPv4Address or IPv6Address.
    """

    if isinstance( address, tuple ):
        address = address[ 0 ]

    if isinstance( address, str ):
        address = address.split( '%' )[ 0 ]     # Drop any IPv6 scope id

    ip = ipaddress.ip_address( address )
    if ip.version == 6 and ip.ipv4_mapped:
        ip = ip.ipv4_mapped

    return( ip )

def resolve_listen_address( listen_address ):

    """
    Maps a listen address setting to a socket family and bind address.

        '', 'any', '0.0.0.0': IPv4 on all interfaces
        'ipv6any', '::': dual stack on all interfaces
        anything else: must be a literal IPv4 or IPv6 address

    Returns:
        A tuple ( family, bind_address ).

    Raises:
        ValueError if the address can not be used.
    """

    if listen_address is None:
        listen_address = ''

    a = str( listen_address ).strip()

    if a.lower() in ( '', 'any', '0.0.0.0' ):
        return( socket.AF_INET, '' )
    if a.lower() in ( 'ipv6any', '::' ):
        return( socket.AF_INET6, '::' )

    try:
        ip = ipaddress.ip_address( a )
    except ValueError:
        raise ValueError( 'Invalid listen address: %s' % listen_address )

    if ip.version == 4:
        return( socket.AF_INET, str( ip ) )

    return( socket.AF_INET6, str( ip ) )

def wakeup_address( family, bind_address ):

    """
    Returns the address a zero length datagram should be sent to
    in order to wake a socket bound to bind_address.
    """

    if family == socket.AF_INET6:
        if bind_address in ( '', '::' ):
            return( '::1' )
    elif bind_address in ( '', '0.0.0.0' ):
        return( '127.0.0.1' )

    return( bind_address )

def check_port( port ):

    """
    Returns port as an int if it is a usable UDP port number.

    Raises:
        ValueError if the port is missing or out of the range 1-65535.
    """

    if isinstance( port, bool ):
        raise ValueError( 'port must be in the range 1-65535' )

    try:
        port = int( port )
    except ( TypeError, ValueError ):
        raise ValueError( 'port must be in the range 1-65535' )

    if port < 1 or port > 65535:
        raise ValueError( 'port must be in the range 1-65535' )

    return( port )

# End.
