"""
NetFlow v5 layout and decoder.  From the Cisco export format:

typedef struct {
    uint16_t    version;        /* 00. Always 5 */
    uint16_t    cnt;            /* 02. Cnt of data records (1-30) */
    uint32_t    uptime;         /* 04. Time since boot, in milliseconds */
    uint32_t    unix_secs;      /* 08. Current seconds since 0000 UTC 1970 */
    uint32_t    unix_nsecs;     /* 12. Residual nanoseconds */
    uint32_t    flow_sequence;  /* 16. Sequence counter of total flows seen */
    uint8_t     engine_type;    /* 20. */
    uint8_t     engine_id;      /* 21. */
    uint16_t    sampling;       /* 22. Mode in top 2 bits, interval in 14 */
} flow_header_t;

header size is 24

typedef struct {
    ipv4addr_t  srcIpAddr;      /* 00. Source of flow */
    ipv4addr_t  dstIpAddr;      /* 04. Dest flow */
    ipv4addr_t  ipNextHop;      /* 08. IP address of the next hop router */
    uint16_t    inputIfIndex;   /* 12. Router interface index */
    uint16_t    outputIfIndex;  /* 14. */
    uint32_t    pkts;           /* 16. */
    uint32_t    bytes;          /* 20. */
    uint32_t    startTime;      /* 24. First SysUptime at start of flow */
    uint32_t    endTime;        /* 28. SysUptime when last packet received */
    uint16_t    srcPort;        /* 32. */
    uint16_t    dstPort;        /* 34. */
    uint8_t     pad1;           /* 36  */
    uint8_t     tcpFlags;       /* 37. */
    uint8_t     protocol;       /* 38. */
    uint8_t     tos;            /* 39. Protocol type of service */
    uint16_t    srcAs;          /* 40. Autonomous system numbers */
    uint16_t    dstAs;          /* 42. */
    uint8_t     srcMaskLen;     /* 44. */
    uint8_t     dstMaskLen;     /* 45. */
    uint16_t    pad2;           /* 46. */
} cisco_v5_flow_t;

flow_len is 48

Everything is big endian.  A datagram is never allowed to declare
more than 30 records.  If the datagram ends before a declared
record is complete, we stop there and keep what we have.
"""

import datetime
import ipaddress

from netflowd_app.records import NetFlowHeader, FlowRecord
from netflowd_app.util import make_pack_items, sender_address

NETFLOW_V5_VERSION = 5
NETFLOW_V5_MAX_RECORDS = 30

# 24 bytes.

netflow_v5_header_list = [
    [ 'version', 2 ],
    [ 'record_count', 2 ],
    [ 'client_uptime_millis', 4 ],
    [ 'export_seconds', 4 ],            # Secs since 0000 UTC 1970
    [ 'export_nanoseconds', 4 ],        # Residual nanoseconds
    [ 'sequence_number', 4 ],
    [ 'engine_type', 1 ],
    [ 'engine_id', 1 ],
    [ 'sampling', 2 ]
]

# 48 bytes.  Names match the FlowRecord fields.

netflow_v5_list = [
    [ 'source_address', 4 ],
    [ 'destination_address', 4 ],
    [ 'next_hop_address', 4 ],
    [ 'input_interface_index', 2 ],
    [ 'output_interface_index', 2 ],
    [ 'packet_count', 4 ],
    [ 'total_l3_bytes', 4 ],
    [ 'sys_uptime_at_start', 4 ],
    [ 'sys_uptime_at_last_packet', 4 ],
    [ 'source_port', 2 ],
    [ 'destination_port', 2 ],
    [ 'padding', 1 ],
    [ 'tcp_flags', 1 ],
    [ 'protocol', 1 ],
    [ 'type_of_service', 1 ],
    [ 'source_as_number', 2 ],
    [ 'destination_as_number', 2 ],
    [ 'source_prefix_mask_bits', 1 ],
    [ 'destination_prefix_mask_bits', 1 ],
    [ 'unused', 2 ]
]

(netflow_v5_header_struct, netflow_v5_header_keys) = (
    make_pack_items( netflow_v5_header_list ) )

(netflow_v5_struct, netflow_v5_keys) = (
    make_pack_items( netflow_v5_list ) )

HEADER_LEN = netflow_v5_header_struct.size      # 24
RECORD_LEN = netflow_v5_struct.size             # 48

_address_fields = ( 'source_address', 'destination_address',
    'next_hop_address' )

_epoch = datetime.datetime( 1970, 1, 1, tzinfo=datetime.timezone.utc )

SAMPLING_MODE_MASK = 0xC000
SAMPLING_INTERVAL_MASK = 0x3FFF

class DecodeFailure( ValueError ):

    """
    Base class for a datagram that can not be decoded.  The whole
    datagram is dropped; no records from it are produced.
    """

    def __init__( self, message, length ):
        ValueError.__init__( self, message )
        self.length = length

class TooShortForVersion( DecodeFailure ):

    def __init__( self, length ):
        DecodeFailure.__init__( self,
            'datagram too short to hold a version, len=%d' % length, length )

class UnsupportedVersion( DecodeFailure ):

    def __init__( self, version, length ):
        DecodeFailure.__init__( self,
            'unsupported version %d, len=%d' % ( version, length ), length )
        self.version = version

class HeaderTooShort( DecodeFailure ):

    def __init__( self, length ):
        DecodeFailure.__init__( self,
            'NetFlow v5 header needs %d bytes, len=%d' % ( HEADER_LEN, length ),
            length )

class TooManyRecords( DecodeFailure ):

    def __init__( self, count, length ):
        DecodeFailure.__init__( self,
            'too many records, max is %d, received %d' %
                ( NETFLOW_V5_MAX_RECORDS, count ), length )
        self.count = count

def netflow_version( p ):

    """
    Returns the version tag from the first two bytes of a datagram.
    The caller must make sure there are at least two bytes.
    """

    return( ( p[ 0 ] << 8 ) | p[ 1 ] )

def export_time( seconds, nanoseconds ):

    """
    Rebuilds the export time.  datetime only goes to microseconds,
    so the residual nanoseconds are truncated.
    """

    return( _epoch + datetime.timedelta( seconds=seconds,
        microseconds=nanoseconds // 1000 ) )

def decode_header( p ):

    """
    Decodes the 24 byte header at the start of p.  No checks are
    made here; see decode().

    Returns:
        A NetFlowHeader.
    """

    h = netflow_v5_header_struct.unpack_from( p, 0 )
    k = netflow_v5_header_keys
    sampling = h[ k[ 'sampling' ] ]

    return( NetFlowHeader(
        version = h[ k[ 'version' ] ],
        record_count = h[ k[ 'record_count' ] ],
        client_uptime_millis = h[ k[ 'client_uptime_millis' ] ],
        export_time = export_time( h[ k[ 'export_seconds' ] ],
                                   h[ k[ 'export_nanoseconds' ] ] ),
        export_seconds = h[ k[ 'export_seconds' ] ],
        export_nanoseconds = h[ k[ 'export_nanoseconds' ] ],
        export_time_ns = h[ k[ 'export_seconds' ] ] * 1000000000 +
                         h[ k[ 'export_nanoseconds' ] ],
        sequence_number = h[ k[ 'sequence_number' ] ],
        engine_type = h[ k[ 'engine_type' ] ],
        engine_id = h[ k[ 'engine_id' ] ],
        sampling_mode = ( sampling & SAMPLING_MODE_MASK ) >> 14,
        sampling_interval = sampling & SAMPLING_INTERVAL_MASK ) )

def decode_record( p, offset, header, client_address ):

    """
    Decodes the 48 byte record at offset in p.

    Returns:
        A FlowRecord sharing header.
    """

    fields = dict( zip( netflow_v5_keys,
                        netflow_v5_struct.unpack_from( p, offset ) ) )
    for f in _address_fields:
        fields[ f ] = ipaddress.IPv4Address( fields[ f ] )

    return( FlowRecord( client_address=client_address, header=header,
        export_time=header.export_time, **fields ) )

def decode( p, address ):

    """
    Decodes one NetFlow v5 datagram.

    Args:
        p: The datagram payload, any bytes like object.
        address: The sender.  A recvfrom() address tuple, an address
            string or an ipaddress object.

    Returns:
        A list of FlowRecord objects, in wire order.  It may hold
        fewer records than the header declares if the datagram
        was truncated.

    Raises:
        TooShortForVersion, UnsupportedVersion, HeaderTooShort,
        TooManyRecords.  All are DecodeFailure subclasses.
    """

    p_len = len( p )

    if p_len < 2:
        raise TooShortForVersion( p_len )

    version = netflow_version( p )
    if version != NETFLOW_V5_VERSION:
        raise UnsupportedVersion( version, p_len )

    if p_len < HEADER_LEN:
        raise HeaderTooShort( p_len )

    header = decode_header( p )
    if header.record_count > NETFLOW_V5_MAX_RECORDS:
        raise TooManyRecords( header.record_count, p_len )

    client_address = sender_address( address )

    records = []
    offset = HEADER_LEN
    for i in range( header.record_count ):
        if offset + RECORD_LEN > p_len:
            break                       # Truncated, keep what we have
        records.append( decode_record( p, offset, header, client_address ) )
        offset += RECORD_LEN

    return( records )

def pack_header( record_count, client_uptime_millis=0, export_seconds=0,
        export_nanoseconds=0, sequence_number=0, engine_type=0, engine_id=0,
        sampling_mode=0, sampling_interval=0 ):

    """
    Builds a 24 byte NetFlow v5 header.  Used by the test sender.
    """

    return( netflow_v5_header_struct.pack(
        NETFLOW_V5_VERSION,
        record_count,
        client_uptime_millis,
        export_seconds,
        export_nanoseconds,
        sequence_number,
        engine_type,
        engine_id,
        ( ( sampling_mode & 0x3 ) << 14 ) |
            ( sampling_interval & SAMPLING_INTERVAL_MASK ) ) )

def pack_record( **kwargs ):

    """
    Builds a 48 byte NetFlow v5 record.  Keywords are the names in
    netflow_v5_list; missing ones are zero.  Addresses may be given
    as strings, ints or IPv4Address objects.
    """

    values = []
    for ( name, size ) in netflow_v5_list:
        v = kwargs.pop( name, 0 )
        if name in _address_fields:
            v = int( ipaddress.IPv4Address( v ) )
        values.append( v )

    if kwargs:
        raise TypeError( 'Unknown NetFlow v5 fields: %s' %
            ', '.join( sorted( kwargs ) ) )

    return( netflow_v5_struct.pack( *values ) )

# End.
