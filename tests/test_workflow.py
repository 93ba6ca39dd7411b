"""End-to-end tests for template_importer.workflow with an in-memory host."""

from __future__ import annotations

import dataclasses
import subprocess
import tarfile
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from template_importer.catalog import load_catalog
from template_importer.exceptions import ImporterError
from template_importer.models import ProvisionState
from template_importer.workflow import ImportWorkflow

from conftest import FakeHost


def _menu_index(display_name: str) -> str:
    names = [image.display_name for image in load_catalog()]
    return str(names.index(display_name) + 1)


def _write_qcow2(url, destination, **kwargs):
    Path(destination).write_bytes(b"QFI\xfb")


def _write_tar_xz(url, destination, **kwargs):
    raw = Path(destination).parent / "staged-disk.raw"
    raw.write_bytes(b"\0" * 128)
    with tarfile.open(destination, "w:xz") as tf:
        tf.add(raw, arcname="disk.raw")
    raw.unlink()


def _fake_tools(cmd, **kwargs):
    if cmd[0] == "qemu-img":
        Path(cmd[-1]).write_bytes(b"QFI\xfb")
    elif cmd[0] == "7z":
        out_dir = Path(next(arg for arg in cmd if arg.startswith("-o"))[2:])
        (out_dir / "kali-linux-2024.4-qemu-amd64.qcow2").write_bytes(b"QFI\xfb")
    return subprocess.CompletedProcess(args=cmd, returncode=0, stdout="", stderr="")


def _workflow(cfg, host, prompter):
    return ImportWorkflow(cfg, prompter=prompter, host=host, packages=MagicMock())


class TestCloudImport:
    def test_debian_12_to_template(self, importer_config, make_prompter):
        host = FakeHost()
        prompter = make_prompter(
            _menu_index("Debian 12 Bookworm"),
            "n",  # skip virt-customize
            "1",  # local-lvm
            "",  # template name
            "9001",
            "",  # user
            "",  # dns1
            "",  # dns2
            "",  # search domain
            "",  # EFI
            secrets=["s3cret"],
        )
        with patch("template_importer.workflow.download_file_with_retry", side_effect=_write_qcow2) as mock_dl:
            state = _workflow(importer_config, host, prompter).run()

        assert state is ProvisionState.TEMPLATE
        assert mock_dl.call_args.args[0].endswith("debian-12-generic-amd64.qcow2")
        (create,) = host.calls_named("create")
        assert create[1] == 9001
        assert create[2]["name"] == "debian-12-bookworm-template"
        cloud_init = host.calls_named("set")[-1][2]
        assert cloud_init["ciuser"] == "admin"
        assert cloud_init["cipassword"] == "s3cret"
        assert cloud_init["nameserver"] == "1.1.1.1 8.8.8.8"
        assert cloud_init["searchdomain"] == "localdomain"
        assert list(importer_config.work_dir.iterdir()) == []

    def test_tar_xz_cloud_image_is_imported_as_qcow2(self, importer_config, make_prompter):
        host = FakeHost()
        prompter = make_prompter(
            _menu_index("Kali Linux 2024.4 Cloud"),
            "n",
            "1",
            "",
            "",  # suggested id
            "",
            "",
            "",
            "",
            "",
            secrets=["kali"],
        )
        with (
            patch("template_importer.workflow.download_file_with_retry", side_effect=_write_tar_xz),
            patch("template_importer.archive.run", side_effect=_fake_tools),
        ):
            state = _workflow(importer_config, host, prompter).run()

        assert state is ProvisionState.TEMPLATE
        (imported,) = host.calls_named("import_disk")
        assert imported[1] == 100
        assert imported[2].name.endswith(".qcow2")
        assert imported[4] == "qcow2"

    def test_taken_id_is_replaced_before_create(self, importer_config, make_prompter):
        host = FakeHost(identifiers={100}, next_id=100)
        prompter = make_prompter(
            _menu_index("Debian 12 Bookworm"),
            "n",
            "1",
            "",
            "100",  # taken
            "",  # accept the new suggestion
            "",
            "",
            "",
            "",
            "",
            secrets=[""],
        )
        with patch("template_importer.workflow.download_file_with_retry", side_effect=_write_qcow2):
            _workflow(importer_config, host, prompter).run()
        assert [call[1] for call in host.calls_named("create")] == [101]


class TestDesktopImport:
    def test_kali_desktop_defaults(self, importer_config, make_prompter):
        host = FakeHost()
        prompter = make_prompter(
            _menu_index("Kali Linux 2024.4 Desktop"),
            "1",  # storage
            "",  # name -> kali-desktop-template
            "",  # id -> 9000
            "",  # EFI
        )
        with (
            patch("template_importer.workflow.download_file_with_retry", side_effect=_write_qcow2),
            patch("template_importer.archive.run", side_effect=_fake_tools),
        ):
            state = _workflow(importer_config, host, prompter).run()

        assert state is ProvisionState.TEMPLATE
        (create,) = host.calls_named("create")
        assert create[1] == 9000
        assert create[2]["name"] == "kali-desktop-template"
        assert create[2]["vga"] == "std"
        assert len(host.calls_named("set")) == 1


class TestWorkDir:
    def test_keep_download(self, importer_config, make_prompter):
        cfg = dataclasses.replace(importer_config, keep_download=True)
        prompter = make_prompter(
            _menu_index("Debian 12 Bookworm"), "n", "1", "", "9001", "", "", "", "", "", secrets=[""]
        )
        with patch("template_importer.workflow.download_file_with_retry", side_effect=_write_qcow2):
            _workflow(cfg, FakeHost(), prompter).run()
        (kept,) = list(cfg.work_dir.iterdir())
        assert (kept / "debian-12-generic-amd64.qcow2").is_file()

    def test_work_dir_removed_on_failure(self, importer_config, make_prompter):
        host = FakeHost()
        host.fail_steps.add("import disk")
        prompter = make_prompter(
            _menu_index("Debian 12 Bookworm"), "n", "1", "", "9001", "", "", "", "", "", secrets=[""]
        )
        with patch("template_importer.workflow.download_file_with_retry", side_effect=_write_qcow2):
            with pytest.raises(ImporterError):
                _workflow(importer_config, host, prompter).run()
        assert list(importer_config.work_dir.iterdir()) == []


class TestChooseImage:
    def test_invalid_option(self, importer_config, make_prompter):
        workflow = _workflow(importer_config, FakeHost(), make_prompter("99"))
        with pytest.raises(ImporterError, match="Invalid option"):
            workflow.choose_image(load_catalog())

    def test_empty_catalog(self, importer_config, make_prompter):
        workflow = _workflow(importer_config, FakeHost(), make_prompter())
        with pytest.raises(ImporterError, match="catalog is empty"):
            workflow.choose_image([])


class TestTemplateName:
    def _debian(self):
        by_name = {image.display_name: image for image in load_catalog()}
        return by_name["Debian 12 Bookworm"]

    def test_invalid_names_are_asked_again(self, importer_config, make_prompter, capsys):
        prompter = make_prompter("my template", "web_01", "-edge", "", "9001", "", "", "", "", "", secrets=[""])
        workflow = _workflow(importer_config, FakeHost(), prompter)

        target = workflow.collect_target(self._debian(), "local-lvm")

        assert target.template_name == "debian-12-bookworm-template"
        out = capsys.readouterr().out
        assert "'my template' is not a valid VM name" in out
        assert "'web_01' is not a valid VM name" in out
        assert "'-edge' is not a valid VM name" in out

    @pytest.mark.parametrize("name", ["web01", "k8s.node-1", "a"])
    def test_valid_names_accepted(self, importer_config, make_prompter, name):
        workflow = _workflow(importer_config, FakeHost(), make_prompter(name))
        assert workflow.ask_template_name("debian-12-bookworm-template") == name

    def test_bad_name_never_reaches_create(self, importer_config, make_prompter):
        host = FakeHost()
        prompter = make_prompter(
            _menu_index("Debian 12 Bookworm"),
            "n",
            "1",
            "my template",
            "my-template",
            "9001",
            "",
            "",
            "",
            "",
            "",
            secrets=[""],
        )
        with patch("template_importer.workflow.download_file_with_retry", side_effect=_write_qcow2):
            _workflow(importer_config, host, prompter).run()

        (create,) = host.calls_named("create")
        assert create[1] == 9001
        assert create[2]["name"] == "my-template"
