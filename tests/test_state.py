"""
Tests for the sync state codec.
"""

import base64
import gzip
import json

import pytest

from tributary.core.state import (
    GLOBAL_STATE_TYPE,
    STATE_FORMAT,
    StateCodec,
    compress,
    decode_state,
    decompress,
    encode_state,
    is_compressed,
    is_global,
    unwrap_global,
)
from tributary.exceptions import StateCodecError

STATE = {"users": {"users": {"cutoff": 1704067200000}}, "commits": {'{"repo": "a"}': {"cutoff": 1}}}


class TestCompression:
    def test_compress_wraps_state(self):
        blob = compress(STATE)
        assert blob["format"] == STATE_FORMAT
        assert isinstance(blob["data"], str)
        assert is_compressed(blob)

    def test_decompress_restores_state(self):
        assert decompress(compress(STATE)) == STATE

    def test_decompress_passes_plain_values_through(self):
        assert decompress(STATE) is STATE
        assert decompress(None) is None

    def test_is_compressed_requires_wrapper_shape(self):
        assert not is_compressed(STATE)
        assert not is_compressed({"format": STATE_FORMAT})
        assert not is_compressed({"format": "zip", "data": "abc"})

    def test_invalid_base64(self):
        with pytest.raises(StateCodecError):
            decompress({"format": STATE_FORMAT, "data": "not base64!"})

    def test_not_gzip(self):
        with pytest.raises(StateCodecError):
            decompress({"format": STATE_FORMAT, "data": "aGVsbG8="})

    def test_corrupt_gzip_body(self):
        raw = bytearray(gzip.compress(json.dumps(STATE).encode("utf-8")))
        # keep the 10-byte gzip header intact, break the deflate stream
        raw[12:20] = b"\xff" * 8
        blob = {"format": STATE_FORMAT, "data": base64.b64encode(bytes(raw)).decode("ascii")}
        with pytest.raises(StateCodecError):
            decompress(blob)

    def test_unserializable_state(self):
        with pytest.raises(StateCodecError):
            compress({"when": object()})


class TestEncodeDecode:
    def test_plain_encode_is_a_copy(self):
        encoded = encode_state(STATE)
        assert encoded == STATE
        assert encoded is not STATE
        encoded["users"]["users"]["cutoff"] = 0
        assert STATE["users"]["users"]["cutoff"] == 1704067200000

    def test_compressed_encode(self):
        assert is_compressed(encode_state(STATE, compress_state=True))

    def test_decode_none_is_empty(self):
        assert decode_state(None) == {}

    def test_decode_accepts_both_forms(self):
        assert decode_state(STATE) == STATE
        assert decode_state(compress(STATE)) == STATE

    def test_decode_returns_fresh_mapping(self):
        decoded = decode_state(STATE)
        decoded["users"] = {}
        assert STATE["users"] == {"users": {"cutoff": 1704067200000}}

    @pytest.mark.parametrize("blob", [[1, 2], "state", 42])
    def test_decode_rejects_non_objects(self, blob):
        with pytest.raises(StateCodecError):
            decode_state(blob)

    def test_decode_rejects_compressed_non_object(self):
        with pytest.raises(StateCodecError):
            decode_state(compress([1, 2]))


class TestStateCodec:
    def test_codec_uses_setting(self):
        assert StateCodec(compress_state=False).encode(STATE) == STATE
        assert is_compressed(StateCodec(compress_state=True).encode(STATE))

    def test_codec_decodes_either_form(self):
        codec = StateCodec(compress_state=False)
        assert codec.decode(compress(STATE)) == STATE


class TestGlobalState:
    def global_state(self, shared_state):
        return {"type": GLOBAL_STATE_TYPE, "global": {"shared_state": shared_state, "stream_states": []}}

    def test_is_global(self):
        assert is_global(self.global_state(STATE))
        assert not is_global(STATE)
        assert not is_global({"type": GLOBAL_STATE_TYPE})

    def test_unwrap_passes_other_values_through(self):
        assert unwrap_global(STATE) is STATE
        assert unwrap_global(None) is None

    def test_decode_compressed_shared_state(self):
        assert decode_state(self.global_state(compress(STATE))) == STATE

    def test_decode_plain_shared_state(self):
        decoded = decode_state(self.global_state(STATE))
        assert decoded == STATE
        assert "type" not in decoded
        assert "global" not in decoded

    def test_decode_empty_shared_state(self):
        assert decode_state({"type": GLOBAL_STATE_TYPE, "global": {"stream_states": []}}) == {}

    def test_codec_decodes_global_state(self):
        assert StateCodec(compress_state=True).decode(self.global_state(compress(STATE))) == STATE
