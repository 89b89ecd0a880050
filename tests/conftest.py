import struct

import pytest


TILE_TABLE_OFFSET = 276


def pack_tile_record(tile, headers_pointer, data_length):
    flags = bytes(tile.get("sub_tile_flags", bytes(25)))
    record = struct.pack(
        "<ihBBii4xiiii4x25s7xiii12x",
        tile.get("direction", 0),
        tile.get("roof_height", 0),
        tile.get("sound_index", 0),
        tile.get("animated", 0),
        tile.get("height", 0),
        tile.get("width", 0),
        tile.get("orientation", 0),
        tile.get("main_index", 0),
        tile.get("sub_index", 0),
        tile.get("rarity_or_frame_index", 0),
        flags,
        headers_pointer,
        data_length,
        tile.get("block_count", len(tile.get("blocks", []))),
    )
    assert len(record) == 96
    return record


def pack_block_record(block, file_offset):
    record = struct.pack(
        "<hh2xBBhi2xi",
        block.get("position_x", 0),
        block.get("position_y", 0),
        block.get("grid_x", 0),
        block.get("grid_y", 0),
        block["format"],
        block.get("length", len(block["payload"])),
        file_offset,
    )
    assert len(record) == 20
    return record


def build_dt1(tiles, x1=7, x2=6):
    """
    Lay out a DT1 image: header, tile table, then per tile its block
    headers immediately followed by the block payloads.
    """
    header = struct.pack("<ii", x1, x2) + bytes(268 - 8)
    header += struct.pack("<ii", len(tiles), TILE_TABLE_OFFSET)
    assert len(header) == TILE_TABLE_OFFSET

    cursor = TILE_TABLE_OFFSET + 96 * len(tiles)
    records = b""
    tile_data = b""
    for tile in tiles:
        blocks = tile.get("blocks", [])
        headers_pointer = cursor
        block_headers = b""
        payloads = b""
        payload_offset = 20 * len(blocks)
        for block in blocks:
            block_headers += pack_block_record(block, block.get("file_offset", payload_offset))
            payloads += block["payload"]
            payload_offset += len(block["payload"])
        chunk = block_headers + payloads
        records += pack_tile_record(tile, headers_pointer, len(chunk))
        tile_data += chunk
        cursor += len(chunk)

    return header + records + tile_data


@pytest.fixture
def dt1_bytes():
    return build_dt1
