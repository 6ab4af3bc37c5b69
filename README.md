# framecrypt

Building blocks for end-to-end encryption of individual audio and video
frames. The package has three modules.

## `framecrypt.cryptor`

This module does AES-128-GCM with a 16-byte key, a 12-byte nonce and an
authentication tag truncated to 8 bytes.

- `create_cryptor(key)` returns an `AesGcmCryptor`. If the key is unusable,
  for example because it is not 16 bytes long, it logs an error and returns
  `None`.
- `AesGcmCryptor.encrypt(plaintext, nonce, additional_data=b"")` returns
  `(ciphertext, tag)`.
- `AesGcmCryptor.decrypt(ciphertext, tag, nonce, additional_data=b"")`
  returns the plaintext.
  - If authentication fails, it raises `DecryptionError`.
  - If the nonce or tag has the wrong length, it raises `ValueError`.

```python
from framecrypt.cryptor import DecryptionError, create_cryptor

cryptor = create_cryptor(bytes(16))   # all-zero key, for illustration only
nonce = bytes(12)

ciphertext, tag = cryptor.encrypt(b"frame payload", nonce, b"header")
assert cryptor.decrypt(ciphertext, tag, nonce, b"header") == b"frame payload"

try:
    cryptor.decrypt(ciphertext, tag, nonce, b"other header")
except DecryptionError:
    pass
```

## `framecrypt.cryptor_manager`

`CryptorManager(key_ratchet, clock=None)` hands out one cryptor per key
generation. It asks a `KeyRatchet` for the keys, which is an abstract class
with `get_key(generation)` and `delete_key(generation)`. The `clock` is a
callable that returns seconds. If none is given, it defaults to
`time.monotonic`.

- `get_cryptor(generation)` returns the cryptor for a generation. It returns
  `None` in these cases:
  - the generation is older than the oldest generation still kept;
  - the generation is more than `MAX_GENERATION_GAP` past the newest one;
  - the generation is beyond what the ratchet's lifetime allows.
- `report_cryptor_success(generation, nonce)` records a successful
  decryption. Once a newer generation succeeds, the cryptors for older
  generations expire after `CRYPTOR_EXPIRY` seconds. When a generation's
  cryptor expires, its key is deleted from the ratchet.
- `can_process_nonce(generation, nonce)` returns true in two cases: the nonce
  is newer than every nonce seen so far, or it is one of the skipped nonces
  that are still remembered (up to `MAX_MISSING_NONCES`). A replayed nonce
  returns false.
- `compute_wrapped_generation(generation)` expands an 8-bit wrapped
  generation. The module-level functions `compute_wrapped_generation(oldest,
  generation)` and `compute_wrapped_big_nonce(generation, nonce)` do the
  underlying arithmetic.
- `update_expiry(expiry)` and `is_expired()` let the caller retire a manager
  at a given clock time.

```python
from framecrypt.cryptor_manager import CryptorManager, KeyRatchet


class FixedRatchet(KeyRatchet):
    def get_key(self, generation):
        return bytes(16)

    def delete_key(self, generation):
        pass


manager = CryptorManager(FixedRatchet())
cryptor = manager.get_cryptor(0)
```

## `framecrypt.codec_utils`

This module splits a frame into the bytes that must stay in the clear, which
are the headers a packetizer needs, and the bytes to encrypt. The parts are
collected in a `FrameSplit(codec)`. A `FrameSplit` exposes these properties:

- `unencrypted_bytes`
- `encrypted_bytes`
- `unencrypted_ranges`, a tuple of `UnencryptedRange(offset, size)`
- `size`

There is one splitting function for each codec:

- `process_frame_opus` and `process_frame_vp9` encrypt the whole frame.
- `process_frame_vp8` leaves the first 10 bytes of a key frame in the clear,
  or the first byte of a delta frame.
- `process_frame_h264` rewrites every start code as the 4-byte form. It
  leaves non-slice NAL units in the clear. For slice and IDR units, it leaves
  the bytes up to the `pps_id` in the clear; `bytes_covering_h264_pps` does
  that calculation.
- `process_frame_h265` leaves start codes, NAL headers and non-VCL units in
  the clear.
- `process_frame_av1` leaves OBU headers, extension bytes and sizes in the
  clear. It re-encodes sizes in minimal LEB128. It drops temporal delimiter,
  tile list and padding OBUs, and clears the size flag of the last OBU.

If a frame cannot be parsed, the splitting function raises
`MalformedFrameError`, which is a subclass of `ValueError`.

`find_next_h26x_nalu(buffer, start=0)` returns
`(nal_start_index, start_code_size)` for the next NAL unit, or `None` if
there is none.

`validate_encrypted_frame(split, frame)` checks an H.264 or H.265 frame after
encryption. It returns false if a start code appears across an encrypted
section. For other codecs it always returns true.

```python
from framecrypt.codec_utils import Codec, FrameSplit, process_frame_h264

frame = b"\x00\x00\x00\x01\x65\x88\x84\x00\x33\xff\x10\x20"
split = FrameSplit(Codec.H264)
process_frame_h264(split, frame)
clear, secret_part = split.unencrypted_bytes, split.encrypted_bytes
```

## What the package does not do

The package provides the pieces, not a complete pipeline. The following are
left to the caller:

- There is no encryptor or decryptor that puts these parts together. Building
  the encrypted frame layout (tag, nonce, range list and trailing marker) is
  up to the caller.
- There is no group key agreement or session handling.
- No `KeyRatchet` implementation is included.

## Installation

```
pip install .
```

## Running the tests

```
pip install .[test]
pytest
```