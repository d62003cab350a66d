"""
Tests for the bit-exact buffer encoders.
"""

import struct
import sys
from pathlib import Path

import numpy as np
import pytest

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from splatpack.clustering import ClusterTable
from splatpack.encoders import (
    create_color_data, create_other_data, create_positions_data, create_sh_data,
    decode_norm11, decode_norm16, decode_norm565, decode_norm655, decode_vectors,
    encode_norm11, encode_norm16, encode_norm565, encode_norm655, encode_vectors,
    pack_rotation, unpack_rotation,
)
from splatpack.errors import InvalidInputError
from splatpack.formats import SHFormat, VectorFormat, get_sh_item_size, next_multiple_of


class TestBitLayouts:
    """Exact bit positions of each packed field."""

    def test_norm11_fields(self):
        assert int(encode_norm11([0, 0, 0])) == 0
        assert int(encode_norm11([1, 1, 1])) == 0xFFFFFFFF
        assert int(encode_norm11([1, 0, 0])) == 2047
        assert int(encode_norm11([0, 1, 0])) == 1023 << 11
        assert int(encode_norm11([0, 0, 1])) == 2047 << 21

    def test_norm16_fields(self):
        assert int(encode_norm16([1, 1, 1])) == 0xFFFFFFFFFFFF
        assert int(encode_norm16([0, 1, 0])) == 0xFFFF << 16

    def test_norm655_fields(self):
        assert int(encode_norm655([1, 1, 1])) == 0xFFFF
        assert int(encode_norm655([1, 0, 0])) == 63
        assert int(encode_norm655([0, 1, 0])) == 31 << 6

    def test_norm565_fields(self):
        assert int(encode_norm565([1, 1, 1])) == 0xFFFF
        assert int(encode_norm565([1, 0, 0])) == 31
        assert int(encode_norm565([0, 1, 0])) == 63 << 5

    def test_values_are_saturated(self):
        # z: int(0.5 * 2047.5) == 1023
        expected = 0 | (1023 << 11) | (1023 << 21)
        assert int(encode_norm11([-0.5, 2.0, 0.5])) == expected

    def test_quantization_truncates(self):
        # 0.9999 * 1023.5 = 1023.39..., truncated to 1023
        assert int(encode_norm11([0, 0.9999, 0])) >> 11 == 1023
        # 0.0004 * 2047.5 = 0.819, truncated to 0
        assert int(encode_norm11([0.0004, 0, 0])) == 0


class TestQuantizationError:
    """Decoded values stay within one quantization step of the input."""

    @pytest.fixture
    def values(self):
        return np.random.default_rng(7).uniform(0, 1, size=(5000, 3)).astype(np.float32)

    def test_norm11_error(self, values):
        err = np.abs(decode_norm11(encode_norm11(values)) - values)
        assert err[:, 0].max() <= 1 / 2047 + 1e-6
        assert err[:, 1].max() <= 1 / 1023 + 1e-6
        assert err[:, 2].max() <= 1 / 2047 + 1e-6

    def test_norm16_error(self, values):
        err = np.abs(decode_norm16(encode_norm16(values)) - values)
        assert err.max() <= 1 / 65535 + 1e-6

    def test_norm655_error(self, values):
        err = np.abs(decode_norm655(encode_norm655(values)) - values)
        assert err[:, 0].max() <= 1 / 63 + 1e-6
        assert err[:, 1:].max() <= 1 / 31 + 1e-6

    def test_norm565_error(self, values):
        err = np.abs(decode_norm565(encode_norm565(values)) - values)
        assert err[:, 1].max() <= 1 / 63 + 1e-6
        assert err[:, [0, 2]].max() <= 1 / 31 + 1e-6


class TestRotationPacking:
    """Smallest-three quaternion packing."""

    def test_identity(self):
        packed = int(pack_rotation([1, 0, 0, 0])[0])
        assert packed == 511 | (511 << 10) | (511 << 20) | (3 << 30)

    def test_input_need_not_be_normalized(self):
        assert pack_rotation([2, 0, 0, 0])[0] == pack_rotation([1, 0, 0, 0])[0]

    def test_zero_quaternion_packs_as_identity(self):
        assert pack_rotation([0, 0, 0, 0])[0] == pack_rotation([1, 0, 0, 0])[0]

    def test_negated_quaternion_packs_identically(self):
        q = np.array([0.3, -0.5, 0.7, 0.2], dtype=np.float32)
        assert pack_rotation(q)[0] == pack_rotation(-q)[0]

    def test_largest_component_index(self):
        # (w, x, y, z) with x largest -> xyzw index 0
        assert int(pack_rotation([0.1, 0.9, 0.1, 0.1])[0]) >> 30 == 0
        assert int(pack_rotation([0.1, 0.1, 0.1, 0.9])[0]) >> 30 == 2

    def test_ties_drop_first_component(self):
        assert int(pack_rotation([0.5, 0.5, 0.5, 0.5])[0]) >> 30 == 0

    def test_round_trip(self):
        rng = np.random.default_rng(3)
        q = rng.normal(size=(2000, 4)).astype(np.float32)
        q /= np.linalg.norm(q, axis=1, keepdims=True)

        decoded = unpack_rotation(pack_rotation(q))

        np.testing.assert_allclose(np.linalg.norm(decoded, axis=1), 1.0, atol=1e-3)
        # q and -q are the same rotation
        dots = np.abs((decoded * q).sum(axis=1))
        assert dots.min() > 0.999


class TestVectorRecords:
    """Per-format vector records."""

    def test_float32_is_raw_ieee(self):
        data = encode_vectors(np.array([[1.0, 2.0, 3.0]], dtype=np.float32), VectorFormat.Float32)
        assert data.tobytes() == struct.pack('<3f', 1.0, 2.0, 3.0)

    def test_norm16_uses_six_bytes(self):
        data = encode_vectors(np.ones((2, 3), dtype=np.float32), VectorFormat.Norm16)
        assert data.shape == (2, 6)
        assert data.tobytes() == b'\xff' * 12

    def test_decode_vectors(self):
        values = np.random.default_rng(1).uniform(0, 1, size=(10, 3)).astype(np.float32)
        for fmt in VectorFormat:
            data = encode_vectors(values, fmt).tobytes()
            decoded = decode_vectors(data, fmt, len(values))
            np.testing.assert_allclose(decoded, values, atol=1 / 31 + 1e-6)

        exact = decode_vectors(encode_vectors(values, VectorFormat.Float32).tobytes(),
                               VectorFormat.Float32, len(values))
        np.testing.assert_array_equal(exact, values)


class TestBufferBuilders:
    """Whole-buffer layout and padding."""

    def test_float32_positions_are_unpadded(self, make_splats):
        splats = make_splats(1)
        data = create_positions_data(splats, VectorFormat.Float32)
        assert data == splats.pos.astype('<f4').tobytes()
        assert len(data) == 12

    def test_float32_positions_keep_word_alignment(self, make_splats):
        assert len(create_positions_data(make_splats(3), VectorFormat.Float32)) == 36
        assert len(create_positions_data(make_splats(4), VectorFormat.Float32)) == 48

    def test_packed_positions_are_padded_to_eight(self, make_splats):
        assert len(create_positions_data(make_splats(1), VectorFormat.Norm11)) == 8
        assert len(create_positions_data(make_splats(1), VectorFormat.Norm16)) == 8
        assert len(create_positions_data(make_splats(3), VectorFormat.Norm6)) == 8

    def test_parallel_matches_serial(self, make_splats):
        splats = make_splats(20000, distinct=False)
        serial = create_positions_data(splats, VectorFormat.Norm11, workers=1)
        threaded = create_positions_data(splats, VectorFormat.Norm11, workers=4)
        assert serial == threaded

    def test_other_data_with_sh_index(self, make_splats):
        splats = make_splats(4)
        indices = np.array([0, 1, 2, 65535])

        data = create_other_data(splats, VectorFormat.Norm11, sh_indices=indices)

        assert len(data) == 40
        records = np.frombuffer(data, dtype=np.uint8).reshape(4, 10)
        np.testing.assert_array_equal(records[:, 8:10].copy().view('<u2').reshape(-1), indices)
        rotations = records[:, 0:4].copy().view('<u4').reshape(-1)
        np.testing.assert_array_equal(rotations, pack_rotation(splats.rot))

    def test_other_data_without_index(self, make_splats):
        data = create_other_data(make_splats(3), VectorFormat.Norm6)
        # 3 * (4 + 2) = 18 -> 24
        assert len(data) == 24

    def test_color_data_is_float_rgba(self, make_splats):
        splats = make_splats(5)
        data = create_color_data(splats)
        rgba = np.frombuffer(data, dtype='<f4').reshape(5, 4)
        np.testing.assert_array_equal(rgba[:, :3], splats.dc0)
        np.testing.assert_array_equal(rgba[:, 3], splats.opacity)

    def test_sh_data_sizes(self, make_splats):
        splats = make_splats(3)
        assert len(create_sh_data(splats, SHFormat.Float32)) == 3 * 192
        assert len(create_sh_data(splats, SHFormat.Float16)) == 3 * 96
        # 180 -> 184
        assert len(create_sh_data(splats, SHFormat.Norm11)) == 184
        assert len(create_sh_data(splats, SHFormat.Norm6)) == 3 * 32

    def test_sh_float16_padding_slot_is_zero(self, make_splats):
        splats = make_splats(2)
        rows = np.frombuffer(create_sh_data(splats, SHFormat.Float16), dtype='<f2').reshape(2, 16, 3)
        assert np.all(rows[:, 15] == 0)
        np.testing.assert_array_equal(rows[:, :15], splats.sh.astype(np.float16))

    def test_cluster_table(self, make_splats):
        splats = make_splats(10)
        centroids = np.arange(2 * 15 * 3, dtype=np.float16).reshape(2, 15, 3)
        table = ClusterTable(centroids=centroids, labels=np.zeros(10, dtype=np.int32))

        data = create_sh_data(splats, SHFormat.Cluster4k, clusters=table)

        assert len(data) == 2 * 96
        rows = np.frombuffer(data, dtype='<f2').reshape(2, 16, 3)
        np.testing.assert_array_equal(rows[:, :15], centroids)

    def test_cluster_format_without_table_rejected(self, make_splats):
        with pytest.raises(InvalidInputError, match="requires a cluster table"):
            create_sh_data(make_splats(2), SHFormat.Cluster4k)

    def test_cluster_table_needs_cluster_format(self, make_splats):
        table = ClusterTable(centroids=np.zeros((2, 15, 3), dtype=np.float16),
                             labels=np.zeros(10, dtype=np.int32))
        with pytest.raises(InvalidInputError, match="does not use a cluster table"):
            create_sh_data(make_splats(10), SHFormat.Norm6, clusters=table)

    def test_sh_records_match_size_table(self, make_splats):
        splats = make_splats(8)
        for fmt in (SHFormat.Float32, SHFormat.Float16, SHFormat.Norm11, SHFormat.Norm6):
            data = create_sh_data(splats, fmt)
            assert len(data) == next_multiple_of(8 * get_sh_item_size(fmt), 8)
