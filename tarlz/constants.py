from datetime import datetime, timezone


# Access modes
MODE_READ = "r"
MODE_WRITE = "w"

# Tar geometry
TAR_BLOCK_SIZE = 512
TAR_HEADER_SIZE = 512  # one ustar header block per entry
TAR_TRAILER_SIZE = 2 * TAR_BLOCK_SIZE  # end-of-archive marker

# lzip member framing
LZIP_MAGIC = b"LZIP"  # 4 bytes: "LZIP"
LZIP_VERSION = 1
LZIP_HEADER_SIZE = 6  # magic[4], version u8, coded dict size u8
LZIP_TRAILER_SIZE = 20  # crc32 u32, data size u64, member size u64
LZIP_MIN_DICT_SIZE = 1 << 12  # 4 KiB
LZIP_MAX_DICT_SIZE = 1 << 29  # 512 MiB

# lzip fixes the LZMA literal/position parameters
LZIP_LC = 3
LZIP_LP = 0
LZIP_PB = 2

# Compression levels (same scale as xz/lzip presets)
MIN_COMPRESSION_LEVEL = 0
MAX_COMPRESSION_LEVEL = 9
DEFAULT_COMPRESSION_LEVEL = 6

READ_BUFFER_SIZE = 64 * 1024

# Returned for entries that carry no modification time
MIN_TIMESTAMP = datetime.min.replace(tzinfo=timezone.utc)
