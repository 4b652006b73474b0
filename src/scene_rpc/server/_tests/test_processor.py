from __future__ import annotations

import numpy as np
import pytest

from scene_rpc.memory import MemoryManagerError
from scene_rpc.protocol.envelopes import Status, pack_object, pack_request
from scene_rpc.protocol.messages import MeshData, SetMeshData, SetTime, mesh_from_numpy
from scene_rpc.protocol.parser import MessageParser
from scene_rpc.server.config import ProcessorConfig, ProcessorCtx
from scene_rpc.server.processor import MessageProcessor
from scene_rpc.server.registry import HandlerRegistry


def _triangle() -> MeshData:
    vertices = np.array([[0, 0, 0], [1, 0, 0], [0, 1, 0]], dtype=np.float32)
    return mesh_from_numpy(vertices, np.array([[0, 1, 2]], dtype=np.int32))


def _reply(processor: MessageProcessor, raw: bytes):
    return MessageParser().parse_reply(processor.process(raw))


def _processor(ctx: ProcessorCtx | None = None):
    registry = HandlerRegistry()
    received = []

    @registry.handler("set_mesh_data")
    def _on_mesh(msg):
        received.append(msg)

    @registry.handler("set_time")
    def _on_time(msg):
        received.append(msg)

    return MessageProcessor(registry, ctx), registry, received


def test_valid_triangle_is_dispatched():
    processor, _, received = _processor()
    header, status = _reply(processor, pack_request(SetMeshData(path="/tri", data=_triangle())))

    assert header.msg_id == "status"
    assert status == Status.ok()
    assert len(received) == 1
    assert received[0].path == "/tri"
    assert received[0].data.faces.shape == (1, 3)
    assert processor.stats.requests == 1
    assert processor.stats.replies[0] == 1


def test_unknown_msg_id_gets_status_1():
    processor, _, received = _processor()
    raw = pack_object({"msg_id": "teleport"}) + pack_object({})

    _, status = _reply(processor, raw)
    assert status.code == 1
    assert status.str.startswith("unsupported msg_id")
    assert "teleport" in status.str
    assert received == []


def test_known_schema_without_handler_gets_status_1():
    processor, _, _ = _processor()
    _, status = _reply(processor, pack_request(MeshData()))
    assert status.code == 1


def test_status_is_not_accepted_as_a_request():
    processor, registry, _ = _processor()
    registry.register("status", lambda msg: None)
    _, status = _reply(processor, pack_request(Status.ok()))
    assert status.code == 1


@pytest.mark.parametrize("raw", [b"", b"\xc1", b"\x81\xa6msg_id"])
def test_undecodable_header_gets_status_2(raw):
    processor, _, _ = _processor()
    _, status = _reply(processor, raw)
    assert status.code == 2
    assert status.str.startswith("error during unpacking")


def test_body_type_mismatch_gets_status_2():
    processor, _, received = _processor()
    raw = pack_object({"msg_id": "set_time"}) + pack_object({"time": "noon"})
    _, status = _reply(processor, raw)
    assert status.code == 2
    assert received == []


def test_size_limit_gets_status_2():
    ctx = ProcessorCtx(cfg=ProcessorConfig(max_message_bytes=16))
    processor, _, received = _processor(ctx)
    _, status = _reply(processor, pack_request(SetMeshData(data=_triangle())))
    assert status.code == 2
    assert "exceeds limit" in status.str
    assert received == []


def test_empty_vertices_get_status_3_with_diagnostic():
    processor, _, received = _processor()
    mesh = mesh_from_numpy(np.zeros((0, 3), dtype=np.float32))
    _, status = _reply(processor, pack_request(SetMeshData(path="/empty", data=mesh)))

    assert status.code == 3
    assert status.str.startswith("error while processing message")
    assert "expected non empty array" in status.str
    assert "[0, 3]" in status.str
    assert received == []


def test_byte_length_mismatch():
    body = {
        "path": "/bad",
        "data": {"vertices": {"type": "<f4", "shape": [3, 3], "data": bytes(8)}},
    }
    raw = pack_object({"msg_id": "set_mesh_data"}) + pack_object(body)

    processor, _, received = _processor()
    _, status = _reply(processor, raw)
    assert status.code == 3
    assert "vertices array" in status.str
    assert received == []

    relaxed = ProcessorCtx(cfg=ProcessorConfig(check_byte_length=False))
    processor, _, received = _processor(relaxed)
    _, status = _reply(processor, raw)
    assert status.code == 0
    assert len(received) == 1


def test_lines_validation_follows_config():
    vertices = np.zeros((3, 3), dtype=np.float32)
    mesh = mesh_from_numpy(vertices, lines=np.array([[0], [1]], dtype=np.int32))
    raw = pack_request(SetMeshData(data=mesh))

    processor, _, _ = _processor()
    assert _reply(processor, raw)[1].code == 3

    processor, _, _ = _processor(ProcessorCtx(cfg=ProcessorConfig(validate_lines=False)))
    assert _reply(processor, raw)[1].code == 0


def test_handler_exception_gets_status_3():
    registry = HandlerRegistry()

    def _boom(msg):
        raise RuntimeError("renderer is gone")

    registry.register("set_time", _boom)
    processor = MessageProcessor(registry)
    _, status = _reply(processor, pack_request(SetTime(time=1)))
    assert status.code == 3
    assert "renderer is gone" in status.str


def test_handler_status_and_message_results():
    registry = HandlerRegistry()
    registry.register("set_time", lambda msg: Status(3, "time is frozen"))
    registry.register("get_mesh_data", lambda msg: _triangle())
    processor = MessageProcessor(registry)

    _, status = _reply(processor, pack_request(SetTime(time=1)))
    assert status == Status(3, "time is frozen")

    header, body = _reply(processor, pack_object({"msg_id": "get_mesh_data"}) + pack_object({"path": "/tri"}))
    assert header.msg_id == "mesh_data"
    assert isinstance(body, MeshData)
    assert body.vertices.shape == (3, 3)


def test_handler_returning_garbage_gets_status_3():
    registry = HandlerRegistry()
    registry.register("set_time", lambda msg: 42)
    _, status = _reply(MessageProcessor(registry), pack_request(SetTime()))
    assert status.code == 3
    assert "unsupported int" in status.str


def test_memory_manager_errors_propagate():
    registry = HandlerRegistry()

    def _misuse(msg):
        raise MemoryManagerError("src and dst cannot be None.")

    registry.register("set_time", _misuse)
    with pytest.raises(MemoryManagerError):
        MessageProcessor(registry).process(pack_request(SetTime()))


def test_handle_returns_unpacked_reply():
    processor, _, _ = _processor()
    assert processor.handle(pack_request(SetTime(time=3))) == Status.ok()
    assert processor.handle(b"").code == 2
    assert processor.stats.requests == 2
    assert processor.stats.replies[0] == 1
    assert processor.stats.replies[2] == 1


def test_duplicate_registration_is_rejected():
    registry = HandlerRegistry()
    registry.register("set_time", lambda msg: None)
    with pytest.raises(ValueError):
        registry.register("set_time", lambda msg: None)
    assert "set_time" in registry
    assert registry.msg_ids() == ("set_time",)
    registry.clear()
    assert registry.get_handler("set_time") is None


def test_strict_attributes_with_unchecked_lines_get_validation_status(caplog):
    vertices = np.zeros((3, 3), dtype=np.float32)
    mesh = mesh_from_numpy(vertices, lines=np.zeros((1, 2, 2), dtype=np.int32))
    ctx = ProcessorCtx(cfg=ProcessorConfig(validate_lines=False, strict_attributes=True))
    processor, _, received = _processor(ctx)

    with caplog.at_level("DEBUG", logger="scene_rpc.server.processor"):
        _, status = _reply(processor, pack_request(SetMeshData(data=mesh)))

    assert status.code == 3
    assert "invalid lines array: expected rank to be in (1, 2)" in status.str
    assert received == []
    assert not any(record.exc_info for record in caplog.records)


def test_single_element_texture_is_accepted():
    scale = np.array([1.5], dtype=np.float32)
    mesh = mesh_from_numpy(_triangle().vertices.as_numpy(), textures={"scale": scale})
    processor, _, received = _processor()

    _, status = _reply(processor, pack_request(SetMeshData(path="/scaled", data=mesh)))
    assert status.code == 0
    assert received[0].data.textures["scale"].shape == (1,)
