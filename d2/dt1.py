"""
DT1 (tile graphics) file format parser.

DT1 files hold the floor, wall, roof and shadow tiles of an isometric map.
Each tile is made of blocks, and every block carries a 32x32 canvas of
palette indices packed in one of two encodings.

File format (all integers little-endian):
- Header: x1 (i32), x2 (i32), reserved region up to offset 268,
  tile_count (i32), tile_table_offset (i32)
- Tile table: tile_count records of 96 bytes at tile_table_offset
- Block headers: block_count records of 20 bytes at each tile's
  block_headers_pointer
- Block data: at block_headers_pointer + block.file_offset, either
  diamond packed (format 1, always 256 bytes) or row run-length encoded
"""

import io
import logging
from dataclasses import dataclass, replace
from typing import BinaryIO, Callable, Dict, List, Optional, Tuple

from .utils import check_count, read_bytes, read_i16, read_i32, read_u8, seek, skip

logger = logging.getLogger(__name__)

ReportFunc = Callable[[str, str], None]

# Everything between the anchors and the tile count is unused by the game
HEADER_TILE_COUNT_OFFSET = 268

TILE_HEADER_SIZE = 96
BLOCK_HEADER_SIZE = 20

SUB_TILE_GRID = 5
SUB_TILE_FLAG_COUNT = SUB_TILE_GRID * SUB_TILE_GRID

CANVAS_WIDTH = 32
CANVAS_HEIGHT = 32
PIXEL_COUNT = CANVAS_WIDTH * CANVAS_HEIGHT

FORMAT_DIAMOND = 1
DIAMOND_LENGTH = 256

# Diamond rows: starting column and number of packed pixels per row.
# The runs add up to DIAMOND_LENGTH.
DIAMOND_X_START = (14, 12, 10, 8, 6, 4, 2, 0, 2, 4, 6, 8, 10, 12, 14)
DIAMOND_RUN_LENGTH = (4, 8, 12, 16, 20, 24, 28, 32, 28, 24, 20, 16, 12, 8, 4)

# Reserved runs inside the tile record
TILE_RESERVED_AFTER_SIZE = 4       # zeros after width/height
TILE_RESERVED_AFTER_RARITY = 4     # zeros after rarity / frame index
TILE_RESERVED_AFTER_FLAGS = 7      # pads the 25 sub-tile flags to 32 bytes
TILE_RESERVED_TRAILER = 12         # unknown, trailing pointer-sized fields

# Reserved runs inside the block record
BLOCK_RESERVED_AFTER_POSITION = 2  # zeros after x/y position
BLOCK_RESERVED_AFTER_LENGTH = 2    # zeros after the payload length

EMPTY_PIXELS = bytes(PIXEL_COUNT)


class BlockDecodeError(ValueError):
    """A block payload could not be unpacked into its 32x32 canvas."""

    def __init__(self, reason: str, tile_index: Optional[int] = None,
                 block_index: Optional[int] = None):
        super().__init__(reason)
        self.reason = reason
        self.tile_index = tile_index
        self.block_index = block_index

    def __str__(self):
        if self.tile_index is None:
            return self.reason
        return f"tile {self.tile_index}, block {self.block_index}: {self.reason}"


class BlockLengthError(BlockDecodeError):
    """The payload byte accounting disagrees with the declared block length."""

    def __init__(self, reason: str, expected: int, actual: int,
                 tile_index: Optional[int] = None, block_index: Optional[int] = None):
        super().__init__(reason, tile_index, block_index)
        self.expected = expected
        self.actual = actual


@dataclass(frozen=True)
class Block:
    """One 32x32 piece of a tile."""
    position_x: int
    position_y: int
    grid_x: int
    grid_y: int
    format: int
    length: int
    file_offset: int  # relative to the owning tile's block_headers_pointer
    pixels: bytes = EMPTY_PIXELS

    @property
    def is_diamond(self) -> bool:
        return self.format == FORMAT_DIAMOND

    def pixel(self, x: int, y: int) -> int:
        """Palette index at column x, row y. 0 is also the 'never written' value."""
        if not (0 <= x < CANVAS_WIDTH and 0 <= y < CANVAS_HEIGHT):
            raise IndexError(f"Pixel ({x}, {y}) is outside the {CANVAS_WIDTH}x{CANVAS_HEIGHT} canvas")
        return self.pixels[x + y * CANVAS_WIDTH]

    def rows(self) -> List[bytes]:
        return [self.pixels[y * CANVAS_WIDTH:(y + 1) * CANVAS_WIDTH] for y in range(CANVAS_HEIGHT)]


@dataclass(frozen=True)
class Tile:
    """A placeable map tile and its blocks."""
    direction: int
    roof_height: int
    sound_index: int
    animated: bool
    height: int
    width: int
    orientation: int
    main_index: int
    sub_index: int
    rarity_or_frame_index: int  # frame index for animated floors
    sub_tile_flags: bytes
    block_headers_pointer: int
    block_data_length: int  # block headers + block data of this tile
    block_count: int
    blocks: Tuple[Block, ...] = ()

    @property
    def index_key(self) -> Tuple[int, int, int]:
        return (self.orientation, self.main_index, self.sub_index)

    def sub_tile_flag(self, x: int, y: int) -> int:
        if not (0 <= x < SUB_TILE_GRID and 0 <= y < SUB_TILE_GRID):
            raise IndexError(f"Sub-tile ({x}, {y}) is outside the {SUB_TILE_GRID}x{SUB_TILE_GRID} grid")
        return self.sub_tile_flags[x + y * SUB_TILE_GRID]


@dataclass(frozen=True)
class DT1:
    """
    Decoded DT1 tile catalog.

    Usage:
        dt1 = DT1.load("path/to/floor.dt1")
        for tile in dt1.tiles:
            print(tile.index_key, len(tile.blocks))

    Tiles are identified by their position in `tiles`.
    """
    x1: int
    x2: int
    tile_count: int
    tiles: Tuple[Tile, ...] = ()

    @classmethod
    def load(cls, filepath: str = None, buffer: bytes = None, stream: BinaryIO = None,
             skip_graphics: bool = False, report_func: Optional[ReportFunc] = None) -> "DT1":
        """
        Load a DT1 from exactly one source.

        Args:
            filepath: Path to DT1 file
            buffer: Byte buffer to read from instead of a file
            stream: Open, seekable binary stream (left open)
            skip_graphics: If True, read tile and block headers only
            report_func: Optional callback for reporting messages (level, message)
        """
        sources = [s for s in (filepath, buffer, stream) if s is not None]
        if len(sources) != 1:
            raise ValueError("DT1.load needs exactly one of filepath, buffer or stream")

        if filepath is not None:
            with open(filepath, 'rb') as f:
                return load_dt1(f, skip_graphics, report_func)
        if buffer is not None:
            return load_dt1(io.BytesIO(buffer), skip_graphics, report_func)
        return load_dt1(stream, skip_graphics, report_func)

    def find_tiles(self, orientation: int, main_index: int, sub_index: int) -> List[Tile]:
        """All tiles sharing an index key, in file order (rarity variants or animation frames)."""
        key = (orientation, main_index, sub_index)
        return [tile for tile in self.tiles if tile.index_key == key]

    def tile_lookup(self) -> Dict[Tuple[int, int, int], List[int]]:
        """
        Map each index key to the indices of its tiles.

        Returns:
            Dict where keys are (orientation, main_index, sub_index) and
            values are positions in `tiles`
        """
        lookup = {}
        for tile_index, tile in enumerate(self.tiles):
            lookup.setdefault(tile.index_key, []).append(tile_index)
        return lookup


def _report(report_func: Optional[ReportFunc], level: str, message: str):
    """Report a message through the callback, or the module logger if none is set."""
    if report_func:
        report_func(level, message)
    else:
        logger.log(getattr(logging, level), message)


def read_tile_header(f: BinaryIO, table_offset: int, index: int) -> Tile:
    """Read the 96-byte tile record at table_offset + index * 96. Blocks are left empty."""
    seek(f, table_offset + index * TILE_HEADER_SIZE)

    direction = read_i32(f)
    roof_height = read_i16(f)
    sound_index = read_u8(f)
    animated = read_u8(f) == 1
    height = read_i32(f)
    width = read_i32(f)
    skip(f, TILE_RESERVED_AFTER_SIZE)
    orientation = read_i32(f)
    main_index = read_i32(f)
    sub_index = read_i32(f)
    rarity_or_frame_index = read_i32(f)
    skip(f, TILE_RESERVED_AFTER_RARITY)
    sub_tile_flags = read_bytes(f, SUB_TILE_FLAG_COUNT)
    skip(f, TILE_RESERVED_AFTER_FLAGS)
    block_headers_pointer = read_i32(f)
    block_data_length = read_i32(f)
    block_count = read_i32(f)
    skip(f, TILE_RESERVED_TRAILER)

    return Tile(
        direction=direction,
        roof_height=roof_height,
        sound_index=sound_index,
        animated=animated,
        height=height,
        width=width,
        orientation=orientation,
        main_index=main_index,
        sub_index=sub_index,
        rarity_or_frame_index=rarity_or_frame_index,
        sub_tile_flags=sub_tile_flags,
        block_headers_pointer=block_headers_pointer,
        block_data_length=block_data_length,
        block_count=block_count,
    )


def read_block_header(f: BinaryIO, headers_pointer: int, index: int) -> Block:
    """Read the 20-byte block record at headers_pointer + index * 20. Pixels are left empty."""
    seek(f, headers_pointer + index * BLOCK_HEADER_SIZE)

    position_x = read_i16(f)
    position_y = read_i16(f)
    skip(f, BLOCK_RESERVED_AFTER_POSITION)
    grid_x = read_u8(f)
    grid_y = read_u8(f)
    block_format = read_i16(f)
    length = read_i32(f)
    skip(f, BLOCK_RESERVED_AFTER_LENGTH)
    file_offset = read_i32(f)

    return Block(
        position_x=position_x,
        position_y=position_y,
        grid_x=grid_x,
        grid_y=grid_y,
        format=block_format,
        length=length,
        file_offset=file_offset,
    )


def decode_diamond(f: BinaryIO, length: int) -> bytes:
    """Unpack a 256-byte isometric diamond into the top 15 rows of the canvas."""
    if length != DIAMOND_LENGTH:
        raise BlockLengthError(
            f"Expected exactly {DIAMOND_LENGTH} bytes of data, but got {length} instead",
            expected=DIAMOND_LENGTH, actual=length,
        )

    pixels = bytearray(PIXEL_COUNT)
    for y, (x, run) in enumerate(zip(DIAMOND_X_START, DIAMOND_RUN_LENGTH)):
        start = x + y * CANVAS_WIDTH
        pixels[start:start + run] = read_bytes(f, run)
    return bytes(pixels)


def decode_rle(f: BinaryIO, length: int) -> bytes:
    """
    Unpack a row run-length block.

    The payload is a sequence of (skip, run) byte pairs. A (0, 0) pair ends
    the current row; otherwise `skip` transparent columns are passed over
    and `run` palette indices follow.
    """
    pixels = bytearray(PIXEL_COUNT)
    remaining = length
    x = 0
    y = 0
    while remaining > 0:
        if remaining < 2:
            raise BlockLengthError(
                f"Control pair needs 2 bytes but only {remaining} remain of {length}",
                expected=2, actual=remaining,
            )
        b1 = read_u8(f)
        b2 = read_u8(f)
        remaining -= 2

        if b1 + b2 == 0:
            x = 0
            y += 1
            continue

        x += b1
        if b2 > remaining:
            raise BlockLengthError(
                f"Run of {b2} pixels overruns the block: only {remaining} of {length} bytes remain",
                expected=b2, actual=remaining,
            )
        start = x + y * CANVAS_WIDTH
        if start + b2 > PIXEL_COUNT:
            raise BlockDecodeError(
                f"Run of {b2} pixels at column {x}, row {y} falls outside the "
                f"{CANVAS_WIDTH}x{CANVAS_HEIGHT} canvas"
            )
        pixels[start:start + b2] = read_bytes(f, b2)
        x += b2
        remaining -= b2
    return bytes(pixels)


def decode_block_pixels(f: BinaryIO, block_format: int, length: int) -> bytes:
    """Decode one block payload from the current position of f."""
    if block_format == FORMAT_DIAMOND:
        return decode_diamond(f, length)
    return decode_rle(f, length)


def load_dt1(f: BinaryIO, skip_graphics: bool = False,
             report_func: Optional[ReportFunc] = None) -> DT1:
    """
    Read a DT1 from a seekable binary stream.

    Every stage seeks to offsets read by the stage before it, so tile
    records, block records and block payloads are read in that order.
    """
    seek(f, 0)
    x1 = read_i32(f)
    x2 = read_i32(f)

    seek(f, HEADER_TILE_COUNT_OFFSET)
    tile_count = check_count("tile count", read_i32(f))
    tile_table_offset = read_i32(f)
    _report(report_func, 'INFO',
            f"DT1: x1={x1}, x2={x2}, tile_count={tile_count}, tile_table_offset={tile_table_offset}")

    tiles = [read_tile_header(f, tile_table_offset, i) for i in range(tile_count)]

    for tile_index, tile in enumerate(tiles):
        check_count(f"block count of tile {tile_index}", tile.block_count)
        blocks = tuple(
            read_block_header(f, tile.block_headers_pointer, j) for j in range(tile.block_count)
        )
        tiles[tile_index] = replace(tile, blocks=blocks)
        _report(report_func, 'INFO', f"DT1: tile {tile_index}: {tile.block_count} blocks")

    if skip_graphics:
        _report(report_func, 'INFO', "DT1: skipping block graphics")
    else:
        for tile_index, tile in enumerate(tiles):
            blocks = []
            for block_index, block in enumerate(tile.blocks):
                try:
                    seek(f, tile.block_headers_pointer + block.file_offset)
                    pixels = decode_block_pixels(f, block.format, block.length)
                except BlockDecodeError as e:
                    e.tile_index = tile_index
                    e.block_index = block_index
                    raise
                except EOFError as e:
                    raise EOFError(f"tile {tile_index}, block {block_index}: {e}") from e
                blocks.append(replace(block, pixels=pixels))
            tiles[tile_index] = replace(tile, blocks=tuple(blocks))

    return DT1(x1=x1, x2=x2, tile_count=tile_count, tiles=tuple(tiles))
