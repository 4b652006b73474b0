from __future__ import annotations

import math

import numpy as np
import pytest

from scene_rpc.protocol.errors import MessageDecodeError
from scene_rpc.protocol.messages import (
    CameraData,
    CheckOptions,
    GetMeshData,
    MeshData,
    SCENE_MESSAGE_TYPES,
    SetCameraData,
    SetMeshData,
    SetProperties,
    SetTime,
    mesh_from_numpy,
)
from scene_rpc.protocol.validation import ValidationReport


def _triangle(**groups) -> MeshData:
    vertices = np.array([[0, 0, 0], [1, 0, 0], [0, 1, 0]], dtype=np.float32)
    faces = np.array([[0, 1, 2]], dtype=np.int32)
    return mesh_from_numpy(vertices, faces, **groups)


def test_triangle_mesh_is_valid():
    report = ValidationReport()
    assert _triangle().check_message(report)
    assert report.ok


def test_point_cloud_without_faces_is_valid():
    mesh = mesh_from_numpy(np.zeros((5, 3), dtype=np.float64))
    assert mesh.check_message()


def test_empty_vertices_report():
    mesh = mesh_from_numpy(np.zeros((0, 3), dtype=np.float32))
    report = ValidationReport()

    assert not mesh.check_message(report)
    text = report.format()
    assert "expected non empty array" in text
    assert "[0, 3]" in text
    assert report.fields() == ("vertices array", "mesh_data message")


def test_vertices_must_have_three_columns():
    mesh = mesh_from_numpy(np.zeros((4, 2), dtype=np.float32))
    report = ValidationReport()
    assert not mesh.check_vertices(report)
    assert "expected shape [?, 3] but got [4, 2]" in report.format()


def test_faces_rows_need_three_indices():
    vertices = np.zeros((3, 3), dtype=np.float32)
    mesh = mesh_from_numpy(vertices, np.array([[0, 1]], dtype=np.int64))
    report = ValidationReport()

    assert not mesh.check_message(report)
    assert "invalid faces array: expected shape [?, >2] but got [1, 2]" in report.format()
    assert report.format().endswith("invalid mesh_data message")


def test_faces_must_be_integer_index_arrays():
    vertices = np.zeros((3, 3), dtype=np.float32)
    mesh = mesh_from_numpy(vertices, np.array([[0, 1, 2]], dtype=np.float32))
    report = ValidationReport()
    assert not mesh.check_faces(report)
    assert "expected array type to be one of" in report.format()

    mesh = mesh_from_numpy(vertices, np.array([[0, 1, 2]], dtype=np.uint32))
    assert not mesh.check_faces()


def test_faces_rank_and_emptiness():
    vertices = np.zeros((3, 3), dtype=np.float32)
    report = ValidationReport()
    assert not mesh_from_numpy(vertices, np.zeros((1, 3, 1), dtype=np.int32)).check_faces(report)
    assert "rank to be in (1, 2)" in report.format()

    report = ValidationReport()
    assert not mesh_from_numpy(vertices, np.zeros((0,), dtype=np.int32)).check_faces(report)
    assert "expected non empty array" in report.format()


def test_faces_flat_stream_is_accepted():
    vertices = np.zeros((4, 3), dtype=np.float32)
    stream = np.array([3, 0, 1, 2, 4, 0, 1, 2, 3], dtype=np.int32)
    assert mesh_from_numpy(vertices, stream).check_message()


def test_lines_rows_need_two_indices():
    vertices = np.zeros((3, 3), dtype=np.float32)
    mesh = mesh_from_numpy(vertices, lines=np.array([[0], [1]], dtype=np.int32))
    report = ValidationReport()

    assert not mesh.check_message(report)
    assert "invalid lines array: expected shape [?, >1] but got [2, 1]" in report.format()
    assert mesh.check_message(options=CheckOptions(validate_lines=False))

    ok = mesh_from_numpy(vertices, lines=np.array([[0, 1], [1, 2]], dtype=np.int64))
    assert ok.check_message()


def test_attribute_counts_only_checked_when_strict():
    colors = np.zeros((2, 3), dtype=np.uint8)
    mesh = _triangle(vertex_attributes={"colors": colors})
    strict = CheckOptions(strict_attributes=True)

    assert mesh.check_message()
    report = ValidationReport()
    assert not mesh.check_message(report, options=strict)
    assert "vertex_attributes['colors']" in report.fields()

    good = _triangle(
        vertex_attributes={"colors": np.zeros((3, 3), dtype=np.uint8)},
        face_attributes={"normals": np.zeros((1, 3), dtype=np.float32)},
    )
    assert good.check_message(options=strict)


def test_strict_attributes_walk_face_streams():
    vertices = np.zeros((4, 3), dtype=np.float32)
    stream = np.array([3, 0, 1, 2, 4, 0, 1, 2, 3], dtype=np.int32)
    mesh = mesh_from_numpy(vertices, stream, face_attributes={"ids": np.arange(2, dtype=np.int32)})
    assert mesh.check_message(options=CheckOptions(strict_attributes=True))

    truncated = mesh_from_numpy(vertices, np.array([3, 0, 1], dtype=np.int32))
    report = ValidationReport()
    assert not truncated.check_message(report, options=CheckOptions(strict_attributes=True))
    assert "faces array" in report.fields()


def test_mesh_from_numpy_rejects_unknown_groups():
    with pytest.raises(TypeError):
        mesh_from_numpy(np.zeros((1, 3), dtype=np.float32), colors={})


def test_decode_ignores_unknown_keys_and_defaults_missing_ones():
    data = {"path": "/mesh", "unexpected": 1, "data": {"vertices": _triangle().vertices.to_dict()}}
    msg = SetMeshData.from_dict(data)

    assert msg.path == "/mesh"
    assert msg.time == 0
    assert msg.layer == ""
    assert msg.data.faces.shape == ()
    assert msg.data.vertex_attributes == {}

    assert GetMeshData.from_dict({}) == GetMeshData()


def test_decode_type_mismatch_raises():
    with pytest.raises(MessageDecodeError):
        SetTime.from_dict({"time": "soon"})
    with pytest.raises(MessageDecodeError):
        SetTime.from_dict({"time": 2**31})
    with pytest.raises(MessageDecodeError):
        GetMeshData.from_dict({"path": 3})
    with pytest.raises(MessageDecodeError):
        MeshData.from_dict({"vertex_attributes": [1, 2]})
    with pytest.raises(MessageDecodeError):
        MeshData.from_dict("vertices")


def test_mesh_to_dict_roundtrips_arrays():
    mesh = _triangle(textures={"albedo": np.zeros((2, 2, 3), dtype=np.uint8)})
    decoded = MeshData.from_dict(mesh.to_dict())

    np.testing.assert_array_equal(decoded.vertices.as_numpy(), mesh.vertices.as_numpy())
    np.testing.assert_array_equal(decoded.faces.as_numpy(), mesh.faces.as_numpy())
    assert decoded.textures["albedo"].shape == (2, 2, 3)
    assert [name for name, _ in decoded.iter_arrays()] == [
        "vertices",
        "faces",
        "lines",
        "textures['albedo']",
    ]


def test_camera_uses_short_wire_names():
    cam = CameraData(
        rotation=(0.0, 0.0, 0.7071, 0.7071),
        translation=(1.0, 2.0, 3.0),
        intrinsic_model="SIMPLE_RADIAL",
        intrinsic_parameters=(500.0, 320.0, 240.0, 0.01),
        width=640,
        height=480,
    )
    payload = cam.to_dict()
    assert payload["R"] == [0.0, 0.0, 0.7071, 0.7071]
    assert payload["t"] == [1.0, 2.0, 3.0]
    assert CameraData.from_dict(payload) == cam
    assert cam.check_message()


def test_camera_defaults_and_invalid_values():
    cam = CameraData.from_dict({})
    assert cam.rotation == (0.0, 0.0, 0.0, 1.0)
    assert cam.translation == (0.0, 0.0, 0.0)

    with pytest.raises(MessageDecodeError):
        CameraData.from_dict({"R": [1.0, 0.0]})

    report = ValidationReport()
    assert not CameraData(rotation=(0.0, 0.0, 0.0, 0.0)).check_message(report)
    assert "camera_data R" in report.fields()

    report = ValidationReport()
    assert not CameraData(translation=(math.nan, 0.0, 0.0), width=-1).check_message(report)
    assert report.fields() == ("camera_data t", "camera_data width", "camera_data message")


def test_set_camera_data_carries_metadata():
    msg = SetCameraData(path="/cam", time=4, layer="rgb", data=CameraData(width=8, height=6))
    decoded = SetCameraData.from_dict(msg.to_dict())
    assert decoded == msg


def test_set_properties_omits_empty_properties():
    assert SetProperties(path="/a").to_dict() == {"path": "/a"}
    msg = SetProperties(path="/a", properties={"visible": False})
    assert SetProperties.from_dict(msg.to_dict()) == msg
    with pytest.raises(MessageDecodeError):
        SetProperties.from_dict({"path": "/a", "properties": [1]})


def test_message_table_covers_every_schema():
    assert set(SCENE_MESSAGE_TYPES) == {
        "mesh_data",
        "set_mesh_data",
        "get_mesh_data",
        "camera_data",
        "set_camera_data",
        "set_time",
        "set_active_camera",
        "set_properties",
    }
    for msg_id, cls in SCENE_MESSAGE_TYPES.items():
        assert cls.MSG_ID == msg_id


def test_arrays_default_to_empty_instances():
    mesh = MeshData()
    assert mesh.vertices.shape == () and mesh.vertices.nbytes == 0
    assert not mesh.check_message()


def test_short_face_stream_passes_structural_checks():
    vertices = np.zeros((3, 3), dtype=np.float32)
    assert mesh_from_numpy(vertices, np.array([3, 0, 1, 2], dtype=np.int32)).check_faces()


@pytest.mark.parametrize(
    "lines",
    [
        np.array([np.nan, 1.0], dtype=np.float32),
        np.zeros((1, 2, 2), dtype=np.int32),
    ],
)
def test_strict_attributes_report_unchecked_lines(lines):
    vertices = np.zeros((3, 3), dtype=np.float32)
    mesh = mesh_from_numpy(vertices, lines=lines)
    options = CheckOptions(validate_lines=False, strict_attributes=True)
    report = ValidationReport()

    assert not mesh.check_message(report, options=options)
    assert "lines array" in report.fields()
    assert report.format().endswith("invalid mesh_data message")


@pytest.mark.parametrize("value", [[], 0, "", False])
def test_set_properties_rejects_falsy_non_mappings(value):
    with pytest.raises(MessageDecodeError):
        SetProperties.from_dict({"path": "/a", "properties": value})
    assert SetProperties.from_dict({"path": "/a", "properties": None}).properties == {}
