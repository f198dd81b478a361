"""
The decoded forms of a NetFlow v5 datagram.  These are plain named
tuples, so they can not be changed once the decoder has built them.
One NetFlowHeader is created per datagram and shared by every
FlowRecord decoded from that datagram.

Address fields hold ipaddress objects.  export_time is a timezone
aware UTC datetime; since datetime stops at microseconds, the raw
export_seconds and export_nanoseconds from the wire are kept on the
header as well, together with export_time_ns, the exact export time
in nanoseconds since the epoch.
"""

from collections import namedtuple

NetFlowHeader = namedtuple( 'NetFlowHeader', [
    'version',
    'record_count',                 # Count declared by the exporter
    'client_uptime_millis',
    'export_time',
    'export_seconds',
    'export_nanoseconds',
    'export_time_ns',               # Nanoseconds since the epoch
    'sequence_number',
    'engine_type',
    'engine_id',
    'sampling_mode',
    'sampling_interval'
] )

FlowRecord = namedtuple( 'FlowRecord', [
    'client_address',               # UDP sender, not from the payload
    'header',
    'source_address',
    'destination_address',
    'next_hop_address',
    'input_interface_index',
    'output_interface_index',
    'packet_count',
    'total_l3_bytes',
    'sys_uptime_at_start',
    'sys_uptime_at_last_packet',
    'source_port',
    'destination_port',
    'padding',
    'tcp_flags',
    'protocol',
    'type_of_service',
    'source_as_number',
    'destination_as_number',
    'source_prefix_mask_bits',
    'destination_prefix_mask_bits',
    'unused',
    'export_time'
] )

def format_record( record ):

    """
    Returns a one line summary of a FlowRecord, suitable for a log.
    """

    return( '%s.%03d %s %s:%d -> %s:%d %d %d packets %d bytes' % (
        record.export_time.strftime( '%Y-%m-%d %H:%M:%S' ),
        record.export_time.microsecond // 1000,
        record.client_address,
        record.source_address, record.source_port,
        record.destination_address, record.destination_port,
        record.protocol,
        record.packet_count,
        record.total_l3_bytes ) )

# End.
