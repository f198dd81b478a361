"""
Test sender.  Sends NetFlow v5 datagrams to a local netflowd.

    python send.py [port [count [records]]]

Defaults are port 2056, datagrams forever, 28 records per datagram.
"""

import sys
import time
import socket

import netflowd_app.netflow_v5

nf0 = netflowd_app.netflow_v5.pack_record(
    source_address = '128.175.2.33',
    destination_address = '128.175.2.35',
    next_hop_address = '128.175.2.34',
    input_interface_index = 1,
    output_interface_index = 2,
    packet_count = 1000,
    total_l3_bytes = 10000,
    sys_uptime_at_start = 0,
    sys_uptime_at_last_packet = 1000,
    source_port = 22,
    destination_port = 22,
    tcp_flags = 0x1b,
    protocol = 6,
    type_of_service = 0,
    source_as_number = 3,
    destination_as_number = 3,
    source_prefix_mask_bits = 24,
    destination_prefix_mask_bits = 24 )

nf1 = netflowd_app.netflow_v5.pack_record(
    source_address = '128.175.2.33',
    destination_address = '128.175.2.36',
    next_hop_address = '128.175.2.34',
    input_interface_index = 1,
    output_interface_index = 2,
    packet_count = 2000,
    total_l3_bytes = 20000,
    sys_uptime_at_start = 1100,
    sys_uptime_at_last_packet = 1400,
    source_port = 23,
    destination_port = 23,
    tcp_flags = 0x1b,
    protocol = 6,
    type_of_service = 0,
    source_as_number = 3,
    destination_as_number = 3,
    source_prefix_mask_bits = 24,
    destination_prefix_mask_bits = 24 )

def main( argv ):
    port = int( argv[ 1 ] ) if len( argv ) > 1 else 2056
    count = int( argv[ 2 ] ) if len( argv ) > 2 else None
    per_datagram = int( argv[ 3 ] ) if len( argv ) > 3 else 28

    s = socket.socket( socket.AF_INET, socket.SOCK_DGRAM )
    s.connect( ( '127.0.0.1', port ) )

    flow_id = 1
    sent = 0
    start = time.monotonic()

    while count is None or sent < count:
        now = time.time()
        nh = netflowd_app.netflow_v5.pack_header(
            per_datagram,
            client_uptime_millis = int( ( time.monotonic() - start ) * 1000 ),
            export_seconds = int( now ),
            export_nanoseconds = int( ( now % 1 ) * 1e9 ),
            sequence_number = flow_id )

        records = [ nf0 if i % 2 == 0 else nf1
                    for i in range( per_datagram ) ]
        s.send( nh + b''.join( records ) )

        flow_id += per_datagram
        sent += 1

        if (sent % 1000) == 0:
            print( '%d flows' % ( flow_id - 1 ) )

        time.sleep( .001 )

    s.close()

if __name__ == '__main__':
    main( sys.argv )

# End.
