"""
Tests for the body record layout and the double-buffered BodyStore.
"""

import numpy as np
import pytest
import torch

from parabody.body_store import BodyStore, SourceBuffer
from parabody.structures import (
    BODY_DTYPE,
    STEP_CONFIG_DTYPE,
    Body,
    StepConfig,
    as_body_array,
    from_bytes,
    make_bodies,
    records_to_rows,
    rows_to_records,
    to_bytes,
)


@pytest.fixture
def bodies():
    return make_bodies(
        [
            Body(position=(1.0, 2.0, 3.0), velocity=(4.0, 5.0, 6.0), mu=0.5, mass=7.0),
            Body(position=(-1.0, 0.0, 1.0), velocity=(0.0, -2.0, 0.0), mu=2.0),
        ]
    )


class TestLayout:
    def test_body_record_is_32_bytes(self):
        assert BODY_DTYPE.itemsize == 32

    def test_field_offsets(self):
        offsets = {name: BODY_DTYPE.fields[name][1] for name in BODY_DTYPE.names}
        assert offsets == {"position": 0, "mass": 12, "velocity": 16, "mu": 28}

    def test_vectors_are_16_byte_aligned(self):
        assert BODY_DTYPE.fields["position"][1] % 16 == 0
        assert BODY_DTYPE.fields["velocity"][1] % 16 == 0

    def test_step_config_is_16_bytes(self):
        assert STEP_CONFIG_DTYPE.itemsize == 16
        raw = StepConfig(num_bodies=5, dt=0.25).to_bytes()
        assert len(raw) == 16
        assert np.frombuffer(raw[:4], dtype="<u4")[0] == 5
        assert np.frombuffer(raw[4:8], dtype="<f4")[0] == 0.25
        assert raw[8:] == bytes(8)

    def test_step_config_from_bytes(self):
        step = StepConfig.from_bytes(StepConfig(num_bodies=3, dt=0.5).to_bytes())
        assert step.num_bodies == 3
        assert step.dt == 0.5

    def test_step_config_bad_length(self):
        with pytest.raises(ValueError, match="16 bytes"):
            StepConfig.from_bytes(b"\x00" * 8)

    def test_rows_are_byte_identical_to_records(self, bodies):
        rows = records_to_rows(bodies)
        assert rows.shape == (2, 8)
        assert rows.tobytes() == bodies.tobytes()
        np.testing.assert_array_equal(rows[0], [1.0, 2.0, 3.0, 7.0, 4.0, 5.0, 6.0, 0.5])

    def test_tensor_rows_to_records(self, bodies):
        tensor = torch.as_tensor(records_to_rows(bodies).copy())
        back = rows_to_records(tensor)
        assert back.tobytes() == bodies.tobytes()

    def test_raw_bytes(self, bodies):
        data = to_bytes(bodies)
        assert len(data) == 64
        assert from_bytes(data).tobytes() == bodies.tobytes()

    def test_raw_bytes_bad_length(self):
        with pytest.raises(ValueError, match="multiple of 32"):
            from_bytes(b"\x00" * 40)

    def test_body_record_conversion(self, bodies):
        body = Body.from_record(bodies[0])
        assert body.position == (1.0, 2.0, 3.0)
        assert body.velocity == (4.0, 5.0, 6.0)
        assert body.mu == 0.5
        assert body.mass == 7.0

    def test_as_body_array_accepts_body_list(self):
        records = as_body_array([Body(mu=1.0), Body(mu=2.0)])
        assert records.dtype == BODY_DTYPE
        np.testing.assert_array_equal(records["mu"], [1.0, 2.0])

    def test_as_body_array_rejects_unknown(self):
        with pytest.raises(TypeError):
            as_body_array(42)


class TestBodyStore:
    def test_initial_roles(self):
        store = BodyStore(capacity=4)
        assert store.source is SourceBuffer.A
        assert store.read_buffer is store.buffers[0]
        assert store.write_buffer is store.buffers[1]

    def test_swap_flips_roles(self):
        store = BodyStore(capacity=4)
        read, write = store.read_buffer, store.write_buffer
        assert store.swap() is SourceBuffer.B
        assert store.read_buffer is write
        assert store.write_buffer is read
        store.swap()
        assert store.read_buffer is read

    def test_buffers_are_disjoint(self):
        store = BodyStore(capacity=4)
        store.assert_disjoint()
        store.buffers[0][0, 0] = 1.0
        assert store.buffers[1][0, 0] == 0.0

    def test_write_and_read_bodies(self, bodies):
        store = BodyStore(capacity=4)
        assert store.write_bodies(bodies) == 2
        back = store.read_bodies(2)
        assert back.tobytes() == bodies.tobytes()
        # untouched slots stay zero
        assert store.read_bodies()[2:].tobytes() == bytes(64)

    def test_write_at_offset_into_target(self, bodies):
        store = BodyStore(capacity=4)
        store.write_bodies(bodies, start=2, target=SourceBuffer.B)
        assert store.read_bodies(which=SourceBuffer.B)[2:].tobytes() == bodies.tobytes()
        assert store.read_bodies(which=SourceBuffer.A).tobytes() == bytes(128)

    def test_capacity_overflow_rejected(self, bodies):
        store = BodyStore(capacity=1)
        with pytest.raises(ValueError, match="capacity 1"):
            store.write_bodies(bodies)

    def test_negative_mu_rejected(self):
        store = BodyStore(capacity=2)
        with pytest.raises(ValueError, match="mu"):
            store.write_bodies([Body(mu=-1.0)])

    def test_bad_capacity_rejected(self):
        with pytest.raises(ValueError):
            BodyStore(capacity=0)

    def test_read_count_out_of_range(self):
        store = BodyStore(capacity=2)
        with pytest.raises(ValueError):
            store.read_bodies(3)

    def test_snapshot_restore(self, bodies):
        store = BodyStore(capacity=4)
        store.write_bodies(bodies)
        store.swap()
        state = store.snapshot()

        other = BodyStore(capacity=4)
        other.restore(state)
        assert other.source is SourceBuffer.B
        assert torch.equal(other.buffers[0], store.buffers[0])
        assert torch.equal(other.buffers[1], store.buffers[1])

    def test_restore_capacity_mismatch(self, bodies):
        store = BodyStore(capacity=4)
        with pytest.raises(ValueError, match="capacity"):
            BodyStore(capacity=8).restore(store.snapshot())

    def test_clear_resets_roles(self, bodies):
        store = BodyStore(capacity=4)
        store.write_bodies(bodies)
        store.swap()
        store.clear()
        assert store.source is SourceBuffer.A
        assert torch.count_nonzero(store.buffers[0]) == 0

    def test_to_bytes_is_device_layout(self, bodies):
        store = BodyStore(capacity=2)
        store.write_bodies(bodies)
        assert store.to_bytes() == bodies.tobytes()
        assert from_bytes(store.to_bytes()).tobytes() == bodies.tobytes()
