from .dt1 import (
    DT1, Tile, Block,
    BlockDecodeError, BlockLengthError,
    load_dt1, read_tile_header, read_block_header,
    decode_block_pixels, decode_diamond, decode_rle,
)
