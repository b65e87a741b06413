import struct
import sys
from pathlib import Path

from selfhost_core.protocol import FOOTER_FMT, FOOTER_SIZE, HEADER_LEN_FMT, HEADER_LEN_SIZE, MAGIC_END_LEN, MAGIC_START_LEN


def main():
    if len(sys.argv) != 2:
        print("Usage: corrupt_payload.py <container>")
        raise SystemExit(2)

    p = Path(sys.argv[1])
    b = bytearray(p.read_bytes())
    if len(b) < FOOTER_SIZE:
        print("File too small to corrupt safely.")
        raise SystemExit(2)

    # Locate the payload: footer -> start marker -> header length -> payload.
    (offset,) = struct.unpack(FOOTER_FMT, bytes(b[-FOOTER_SIZE:]))
    len_at = offset + MAGIC_START_LEN
    (header_len,) = struct.unpack(HEADER_LEN_FMT, bytes(b[len_at:len_at + HEADER_LEN_SIZE]))
    start = len_at + HEADER_LEN_SIZE + header_len
    end = len(b) - MAGIC_END_LEN - FOOTER_SIZE
    if end - start < 3:
        print("Payload too small to corrupt safely.")
        raise SystemExit(2)

    # Flip 3 bytes in the middle of the payload.
    idx = start + (end - start) // 2 - 1
    for i in range(idx, idx + 3):
        b[i] ^= 0xFF
    p.write_bytes(bytes(b))
    print(f"Corrupted 3 bytes at offset {idx} in {p}")


if __name__ == "__main__":
    main()
