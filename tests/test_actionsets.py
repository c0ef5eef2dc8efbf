import pytest

from conftest import FakeTransport

from prod_control.actionsets import (
    ACTION_SETS,
    DebianActionSet,
    FedoraActionSet,
    create_action_set,
)
from prod_control.config import ControlConfig
from prod_control.credentials import CredentialResolver, StaticPrompt
from prod_control.errors import ScriptError
from prod_control.types import (
    ACTION_KINDS,
    AddGroup,
    AddPackageRepo,
    AddUser,
    ConfigureSshd,
    CopyPath,
    ControlScript,
    CreateDirectory,
    CreateFile,
    DisableSwap,
    Firewall,
    GenericCommand,
    InstallPackages,
    OutcomeStatus,
    RemovePackages,
    SetTimeZone,
    SystemCtl,
    TransmitFile,
)


@pytest.mark.parametrize("action_set_cls", list(ACTION_SETS.values()))
def test_every_action_kind_is_handled_or_rejected(action_set_cls):
    action_set = action_set_cls()
    for action_cls in ACTION_KINDS.values():
        handled = action_set.supports(action_cls)
        rejected = action_cls in action_set_cls.UNSUPPORTED
        assert handled != rejected, f"{action_set_cls.name} {action_cls.kind}"


def test_unknown_provider_is_a_script_error():
    with pytest.raises(ScriptError):
        create_action_set("bsd_openbsd")


def test_fedora_rejects_unsupported_actions(transport):
    outcome = FedoraActionSet().execute(DisableSwap(filename="/swapfile"), transport)
    assert outcome.status is OutcomeStatus.FAILED
    assert "does not support disableSwap" in outcome.details
    assert transport.commands == []


def test_debian_install_updates_then_installs(transport):
    outcome = DebianActionSet().execute(InstallPackages(packages=("fail2ban", "ufw")), transport)

    assert outcome.status is OutcomeStatus.SUCCESS
    assert transport.commands == [
        "env DEBIAN_FRONTEND=noninteractive apt-get -y update",
        "env DEBIAN_FRONTEND=noninteractive apt-get -y install fail2ban ufw",
    ]


def test_fedora_install_without_update(transport):
    FedoraActionSet().execute(InstallPackages(packages=("nginx",), update=False), transport)
    assert transport.commands == ["dnf -y install nginx"]


def test_fedora_remove_packages(transport):
    FedoraActionSet().execute(RemovePackages(packages=("nano",)), transport)
    assert transport.commands == ["dnf -y remove nano"]


def test_param_validation_happens_before_remote_calls(transport):
    debian = DebianActionSet()
    outcomes = [
        debian.execute(InstallPackages(packages=()), transport),
        debian.execute(InstallPackages(packages=("bad name;rm",)), transport),
        debian.execute(SystemCtl(service="nginx", action="explode"), transport),
        debian.execute(CreateDirectory(path="/srv/x", permissions="9z9"), transport),
        debian.execute(Firewall(firewall_type="iptables", rules=("allow ssh",)), transport),
        debian.execute(AddUser(username=""), transport),
    ]
    assert all(o.status is OutcomeStatus.FAILED for o in outcomes)
    assert transport.commands == []


def test_non_zero_exit_becomes_failed_outcome_with_stderr():
    transport = FakeTransport(responses={"systemctl start": (5, "", "Unit nginx.service not found.")})
    outcome = DebianActionSet().execute(SystemCtl(service="nginx", action="start"), transport)

    assert outcome.status is OutcomeStatus.FAILED
    assert "systemctl start nginx" in outcome.details
    assert "not found" in outcome.details
    assert outcome.resource == "nginx"


def test_add_user_sets_password_and_groups_without_logging_secret(transport, caplog):
    caplog.set_level("DEBUG")
    action = AddUser(username="deploy", password="pw123", groups=("sudo", "adm"))

    outcome = DebianActionSet().execute(action, transport)

    assert outcome.status is OutcomeStatus.SUCCESS
    assert transport.commands[0] == "useradd -m -s /bin/bash deploy"
    assert "chpasswd" in transport.commands[1]
    assert transport.commands[2:] == ["usermod -aG sudo deploy", "usermod -aG adm deploy"]
    assert "pw123" not in caplog.text


def test_add_user_prompts_for_sentinel_password(transport):
    resolver = CredentialResolver(
        ControlScript(provider="linux_debian", host="h", user="root"),
        StaticPrompt({"new user 'deploy'": "typed"}),
    )
    action_set = DebianActionSet(resolver=resolver)

    action_set.execute(AddUser(username="deploy", password="$PROMPT", create_home=False), transport)

    assert transport.commands[0] == "useradd -M -s /bin/bash deploy"
    assert "deploy:typed" in transport.commands[1]


def test_add_group_flags(transport):
    DebianActionSet().execute(AddGroup(name="docker", system=True, gid=999), transport)
    assert transport.commands == ["groupadd -r -g 999 docker"]


def test_firewall_enable_order_differs_per_family():
    debian, fedora = FakeTransport(), FakeTransport()
    action = Firewall(rules=("allow ssh", "allow 80/tcp"), enabled=True)

    DebianActionSet().execute(action, debian)
    FedoraActionSet().execute(action, fedora)

    assert debian.commands == ["ufw allow ssh", "ufw allow 80/tcp", "ufw --force enable"]
    assert fedora.commands == ["ufw --force enable", "ufw allow ssh", "ufw allow 80/tcp"]


def test_copy_path_and_directory_commands(transport):
    debian = DebianActionSet()
    debian.execute(CopyPath(source_path="/etc/a", dest_path="/etc/b", recursive=True, update=True), transport)
    debian.execute(
        CreateDirectory(path="/srv/app/data", multi_level=True, permissions="750", owner="app", group="app"),
        transport,
    )
    assert transport.commands == [
        "cp -R -u /etc/a /etc/b",
        "mkdir -p /srv/app/data",
        "chmod 750 /srv/app/data",
        "chown app /srv/app/data",
        "chgrp app /srv/app/data",
    ]


def test_create_file_uploads_content(transport):
    outcome = DebianActionSet().execute(
        CreateFile(path="/etc/caddy/Caddyfile", content="{\n  admin off\n}\n", permissions="644"),
        transport,
    )
    assert outcome.status is OutcomeStatus.SUCCESS
    assert transport.files["/etc/caddy/Caddyfile"] == "{\n  admin off\n}\n"
    assert transport.commands == ["chmod 644 /etc/caddy/Caddyfile"]


def test_escalation_wraps_commands_and_stages_uploads(transport):
    action_set = DebianActionSet(ControlConfig(remote_tmp_dir="/var/tmp"), user="deploy")

    action_set.execute(CreateFile(path="/etc/motd", content="hi\n"), transport)

    staged = transport.uploads[0]
    assert staged.startswith("/var/tmp/prod-control-")
    assert transport.commands[0].startswith("sudo -n sh -c ")
    assert f"mv {staged} /etc/motd" in transport.commands[0]


def test_escalation_none_runs_plain_commands(transport):
    action_set = DebianActionSet(ControlConfig(escalation="none"), user="deploy")
    action_set.execute(GenericCommand(command="uptime"), transport)
    assert transport.commands == ["uptime"]


def test_transmit_file_requires_local_source(transport, tmp_path):
    outcome = DebianActionSet().execute(
        TransmitFile(local_source_path=str(tmp_path / "missing.tar"), remote_dest_path="/tmp/x.tar"),
        transport,
    )
    assert outcome.status is OutcomeStatus.FAILED
    assert transport.uploads == []


def test_transmit_file_extracts_into_existing_dir(transport, local_file):
    source = local_file("bundle.tar", "payload")
    outcome = DebianActionSet().execute(
        TransmitFile(local_source_path=str(source), remote_dest_path="/opt/bundle.tar", extract_dir="/opt"),
        transport,
    )
    assert outcome.status is OutcomeStatus.SUCCESS
    assert transport.files["/opt/bundle.tar"] == "payload"
    assert transport.commands[-2:] == ["test -d /opt", "tar -xf /opt/bundle.tar -C /opt"]


def test_set_time_zone(transport):
    DebianActionSet().execute(SetTimeZone(time_zone="Europe/London"), transport)
    assert transport.commands == ["timedatectl set-timezone Europe/London"]


def test_add_package_repo_fetches_key_and_sources(transport):
    action = AddPackageRepo(
        key_url="https://example.invalid/gpg.key",
        source_list_url="https://example.invalid/debian.deb.txt",
        local_file_prefix="caddy-stable",
    )
    outcome = DebianActionSet().execute(action, transport)

    assert outcome.status is OutcomeStatus.SUCCESS
    assert transport.ran("gpg --batch --yes --dearmor -o /usr/share/keyrings/caddy-stable-archive-keyring.gpg")
    assert transport.ran("-O /etc/apt/sources.list.d/caddy-stable.list")
    assert transport.commands[-1].endswith("apt-get -y update")


def test_disable_swap_comments_fstab_and_removes_file():
    swaps = "Filename Type Size Used Priority\n/swapfile file 1048572 0 -2\n"
    transport = FakeTransport(
        files={"/etc/fstab": "UUID=1 / ext4 defaults 0 1\n/swapfile none swap sw 0 0\n"},
        responses={"cat /proc/swaps": (0, swaps, "")},
    )

    outcome = DebianActionSet().execute(DisableSwap(filename="/swapfile"), transport)

    assert outcome.status is OutcomeStatus.SUCCESS
    assert transport.files["/etc/fstab"] == "UUID=1 / ext4 defaults 0 1\n#/swapfile none swap sw 0 0\n"
    assert transport.ran("swapoff -a")
    assert transport.commands[-1] == "rm /swapfile"


def test_disable_swap_without_active_swap_is_skipped():
    transport = FakeTransport(responses={"cat /proc/swaps": (0, "Filename Type Size Used Priority\n", "")})
    outcome = DebianActionSet().execute(DisableSwap(filename="/swapfile"), transport)
    assert outcome.status is OutcomeStatus.SKIPPED


def test_configure_sshd_validates_and_reloads():
    transport = FakeTransport(files={"/etc/ssh/sshd_config": "#PermitRootLogin yes\nPasswordAuthentication yes\n"})

    outcome = DebianActionSet().execute(
        ConfigureSshd(permit_root_login="prohibit-password", password_authentication=False),
        transport,
    )

    assert outcome.status is OutcomeStatus.SUCCESS
    content = transport.files["/etc/ssh/sshd_config"]
    assert "PermitRootLogin prohibit-password" in content
    assert "PasswordAuthentication no" in content
    assert transport.ran("sshd -t")
    assert transport.commands[-1] == "systemctl reload ssh"


def test_configure_sshd_restores_backup_when_check_fails():
    transport = FakeTransport(
        files={"/etc/ssh/sshd_config": "Port 22\n"},
        responses={"sshd -t": (255, "", "Bad configuration option")},
    )
    outcome = FedoraActionSet().execute(ConfigureSshd(port=2222), transport)

    assert outcome.status is OutcomeStatus.FAILED
    assert transport.ran("mv /etc/ssh/sshd_config.bak /etc/ssh/sshd_config")
    assert not transport.ran("systemctl reload")
