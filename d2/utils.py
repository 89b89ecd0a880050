import struct


def read_bytes(f, count):
    """Read exactly count bytes, raising EOFError on a short read"""
    offset = f.tell()
    data = f.read(count)
    if len(data) != count:
        raise EOFError(
            f"Unexpected EOF at offset {offset}: wanted {count} bytes, got {len(data)}"
        )
    return data

def seek(f, offset):
    """Seek to an absolute offset, raising EOFError for a negative target"""
    if offset < 0:
        raise EOFError(f"Unexpected seek to offset {offset}")
    f.seek(offset)

def check_count(name, count):
    """Reject a negative record count read from the file"""
    if count < 0:
        raise EOFError(f"Invalid {name}: {count}")
    return count

def skip(f, count):
    """Consume count reserved bytes without interpreting them"""
    read_bytes(f, count)

# Read functions for signed integers
def read_i16(f):
    """Read signed 16-bit integer"""
    return struct.unpack("<h", read_bytes(f, 2))[0]

def read_i32(f):
    """Read signed 32-bit integer"""
    return struct.unpack("<i", read_bytes(f, 4))[0]

# Read functions for unsigned integers
def read_u8(f):
    """Read unsigned 8-bit integer (byte)"""
    return struct.unpack("<B", read_bytes(f, 1))[0]
