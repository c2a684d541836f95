"""Command line tests: the service is a MagicMock patched in place of DockerService.connect."""

import json

import pytest
import yaml
from unittest.mock import MagicMock

from octo import __main__ as cli
from octo.errors import StateChangedError, TransportError
from octo.model import ConfirmationInfo, ContainerInfo, DiskUsageInfo, PruneResult, SafetyTier


@pytest.fixture
def service(mocker):
    service = MagicMock()
    info = ConfirmationInfo(
        tier=SafetyTier.BULK_DESTRUCTIVE,
        title="Prune Stopped Containers?",
        description="Remove 2 stopped container(s), freeing 100 B",
        resources=["stopped containers: 2"],
        reversible=True,
        undo_instructions="Can be recreated from images",
    )
    for name in ("prune_containers_dry_run", "prune_images_dry_run", "prune_volumes_dry_run",
                 "prune_networks_dry_run", "prune_build_cache_dry_run", "remove_container_dry_run",
                 "remove_image_dry_run", "remove_volume_dry_run", "remove_network_dry_run"):
        getattr(service, name).return_value = info
    service.prune_containers.return_value = 100
    service.prune_images.return_value = 200
    service.prune_volumes.return_value = 300
    service.prune_networks.return_value = None
    service.prune_build_cache.return_value = 400
    service.disk_usage.return_value = DiskUsageInfo(100, 50, 0, 30, 80, 180)
    mocker.patch("octo.__main__.DockerService.connect", return_value=service)
    mocker.patch("octo.__main__.setup_logging")
    return service


def test_prune_dry_run_does_not_prune(service):
    assert cli.main(["prune", "containers", "--dry-run"]) == 0
    service.prune_containers_dry_run.assert_called_once()
    service.prune_containers.assert_not_called()
    service.close.assert_called_once()


def test_prune_asks_before_acting(service, mocker):
    mocker.patch("octo.__main__.ask", return_value=False)
    assert cli.main(["prune", "containers"]) == 0
    service.prune_containers.assert_not_called()

    mocker.patch("octo.__main__.ask", return_value=True)
    assert cli.main(["prune", "containers"]) == 0
    service.prune_containers.assert_called_once()


def test_prune_images_all_with_yes(service):
    assert cli.main(["prune", "images", "--all", "--yes"]) == 0
    service.prune_images_dry_run.assert_called_once_with(all=True)
    service.prune_images.assert_called_once_with(all=True)


def test_prune_networks_reports_no_size(service, capsys):
    assert cli.main(["prune", "networks", "--yes"]) == 0
    assert "Pruned networks" in capsys.readouterr().out


def test_structured_prune_requires_yes(service, capsys):
    assert cli.main(["prune", "volumes", "-o", "json"]) == 2
    service.prune_volumes.assert_not_called()
    service.prune_volumes_dry_run.assert_not_called()


def test_structured_prune_dry_run(service, capsys):
    assert cli.main(["prune", "containers", "--dry-run", "-o", "json"]) == 0
    out = json.loads(capsys.readouterr().out)
    assert out["dry_run"] is True
    assert out["confirmation"]["tier"] == "Bulk destructive"


def test_structured_prune_yaml(service, capsys):
    assert cli.main(["prune", "containers", "--yes", "-o", "yaml"]) == 0
    out = yaml.safe_load(capsys.readouterr().out)
    assert out == {"dry_run": False, "kind": "containers", "reclaimed_bytes": 100}


def test_rm_container_with_force(service):
    assert cli.main(["rm", "container", "web", "--force", "--yes"]) == 0
    service.remove_container_dry_run.assert_called_once_with("web")
    service.remove_container.assert_called_once_with("web", force=True)


def test_rm_network_dry_run(service):
    assert cli.main(["rm", "network", "app_net", "--dry-run"]) == 0
    service.remove_network.assert_not_called()


def test_rm_error_exit_code(service):
    service.remove_container.side_effect = StateChangedError("container is running", "web")
    assert cli.main(["rm", "container", "web", "--yes"]) == 1


def test_df(service, capsys):
    service.disk_usage.return_value = DiskUsageInfo(100, 50, 0, 30, 80, 180)
    assert cli.main(["df"]) == 0
    assert "Reclaimable" in capsys.readouterr().out


def test_logs_unknown_container(service):
    service.list_containers.return_value = []
    assert cli.main(["logs", "nope"]) == 1


def test_logs_runs_viewer(service, mocker):
    service.list_containers.return_value = [
        ContainerInfo(id="f" * 64, short_id="f" * 12, name="web", image="nginx", status="Up", state="running"),
    ]
    run = mocker.patch("octo.app.run")

    assert cli.main(["logs", "web", "--tail", "20"]) == 0

    viewer = run.call_args[0][0]
    assert viewer.container_id == "f" * 64
    assert viewer.container_name == "web"
    assert viewer.tail == 20


def test_connect_failure(mocker):
    mocker.patch("octo.__main__.setup_logging")
    mocker.patch("octo.__main__.DockerService.connect", side_effect=TransportError("no socket"))
    assert cli.main(["df"]) == 1


class TestPruneAll:
    """`prune all` runs every category and reports each outcome."""

    def test_partial_failure_is_reported_in_json(self, service, capsys):
        service.prune_system.return_value = [
            PruneResult("containers", 100),
            PruneResult("images", 0, "prune already running"),
            PruneResult("networks", 0),
            PruneResult("build_cache", 400),
        ]

        assert cli.main(["prune", "all", "--yes", "-o", "json"]) == 1

        out = json.loads(capsys.readouterr().out)
        assert out["dry_run"] is False
        assert out["disk_before"]["reclaimable_bytes"] == 80
        assert out["total_reclaimed_bytes"] == 500
        assert out["results"][1] == {"resource": "images", "reclaimed_bytes": 0, "error": "prune already running"}
        assert "error" not in out["results"][0]
        service.prune_system.assert_called_once_with(all=False, volumes=False)

    def test_text_mode_lists_each_category(self, service, capsys):
        service.prune_system.return_value = [
            PruneResult("containers", 100),
            PruneResult("images", 0, "engine busy"),
            PruneResult("volumes", 300),
            PruneResult("networks", 0),
            PruneResult("build_cache", 0),
        ]

        assert cli.main(["prune", "all", "--all", "--volumes", "--yes"]) == 1

        out = capsys.readouterr().out
        assert "images: error: engine busy" in out
        assert "Total space reclaimed: 400 B" in out
        service.prune_system.assert_called_once_with(all=True, volumes=True)

    def test_success_exits_zero(self, service):
        service.prune_system.return_value = [PruneResult("containers", 100), PruneResult("networks", 0)]
        assert cli.main(["prune", "all", "--yes"]) == 0

    def test_dry_run_prunes_nothing(self, service, capsys):
        assert cli.main(["prune", "all", "--dry-run", "-o", "yaml"]) == 0
        out = yaml.safe_load(capsys.readouterr().out)
        assert out["dry_run"] is True
        assert out["results"] == []
        assert out["disk_before"]["total_bytes"] == 180
        service.prune_system.assert_not_called()

    def test_structured_mode_requires_yes(self, service):
        assert cli.main(["prune", "all", "-o", "json"]) == 2
        service.prune_system.assert_not_called()

    def test_declined_prompt_prunes_nothing(self, service, mocker):
        mocker.patch("octo.__main__.ask", return_value=False)
        assert cli.main(["prune", "all"]) == 0
        service.prune_system.assert_not_called()


def test_log_handler_falls_back_to_default_path(tmp_path, mocker):
    default = tmp_path / "octo.log"
    mocker.patch("octo.__main__.get_log_path", return_value=str(default))
    mocker.patch.object(cli.config_manager, "get_custom_log_path",
                        return_value=str(tmp_path / "missing" / "dir" / "octo.log"))

    handler = cli.make_log_handler()
    try:
        assert handler.baseFilename == str(default)
    finally:
        handler.close()
