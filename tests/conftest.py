import struct

import pytest
from unittest.mock import MagicMock

from octo.backend import DockerService

FULL_ID = "abc123def456" + "0" * 52


def make_container(cid=FULL_ID, name="/web", state="exited", image="nginx:latest", size=50, **extra):
    raw = {
        'Id': cid,
        'Names': [name],
        'Image': image,
        'ImageID': "sha256:" + "f" * 64,
        'State': state,
        'Status': "Up 2 hours" if state == "running" else "Exited (0) 1 hour ago",
        'Created': 1700000000,
        'Ports': [],
        'SizeRw': size,
        'Labels': {},
        'Mounts': [],
    }
    raw.update(extra)
    return raw


def frame(stream_id: int, payload: bytes) -> bytes:
    """One multiplexed log frame."""
    return struct.pack(">BxxxL", stream_id, len(payload)) + payload


@pytest.fixture
def api():
    """Fake engine: every raw operation is a MagicMock with a benign default."""
    api = MagicMock()
    api.containers.return_value = []
    api.images.return_value = []
    api.volumes.return_value = {'Volumes': []}
    api.networks.return_value = []
    api.df.return_value = {}
    api.prune_containers.return_value = {'SpaceReclaimed': 0}
    api.prune_images.return_value = {'SpaceReclaimed': 0}
    api.prune_volumes.return_value = {'SpaceReclaimed': 0}
    api.prune_networks.return_value = {}
    api.prune_builds.return_value = {'SpaceReclaimed': 0}
    return api


@pytest.fixture
def service(api):
    return DockerService(api)
