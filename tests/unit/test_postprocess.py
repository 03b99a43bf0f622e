# Copyright 2025 Canonical Ltd.
# See LICENSE file for licensing details.

# pylint: disable=missing-function-docstring
"""Unit tests for the postprocess module."""

import json

import pytest

from openstack_machine import postprocess
from openstack_machine.errors import PostprocessorError, UnknownPostprocessorError

EMPTY_IGNITION = {
    "ignition": {
        "config": {},
        "security": {"tls": {}},
        "timeouts": {},
        "version": "2.2.0",
    },
    "networkd": {},
    "passwd": {},
    "storage": {},
    "systemd": {},
}

CONTAINER_LINUX_CONFIG = """
passwd:
  users:
    - name: core
      ssh_authorized_keys:
        - ssh-ed25519 AAAA core@example
storage:
  files:
    - path: /etc/hostname
      filesystem: root
      mode: 0644
      contents:
        inline: worker 0
  directories:
    - path: /opt/bin
      mode: 0755
  links:
    - path: /usr/local/bin/kubectl
      target: /opt/bin/kubectl
systemd:
  units:
    - name: kubelet.service
      enabled: true
      contents: |
        [Service]
        ExecStart=/opt/bin/kubelet
      dropins:
        - name: 10-env.conf
          contents: |
            [Service]
            Environment=FOO=bar
networkd:
  units:
    - name: 00-eth0.network
      contents: "[Match]\\nName=eth0"
"""


@pytest.mark.parametrize("text", ["", "{}", "# only a comment\n"])
def test_ct_minimal_config(text):
    assert json.loads(postprocess.container_linux_config(text)) == EMPTY_IGNITION


def test_ct_output_is_compact_json():
    assert " " not in postprocess.container_linux_config("")


def test_ct_translates_config():
    ignition = json.loads(postprocess.container_linux_config(CONTAINER_LINUX_CONFIG))

    assert ignition["passwd"]["users"] == [
        {"name": "core", "sshAuthorizedKeys": ["ssh-ed25519 AAAA core@example"]}
    ]
    assert ignition["storage"]["files"] == [
        {
            "filesystem": "root",
            "path": "/etc/hostname",
            "user": {},
            "group": {},
            "mode": 420,
            "contents": {"source": "data:,worker%200", "verification": {}},
        }
    ]
    assert ignition["storage"]["directories"][0]["mode"] == 493
    assert ignition["storage"]["links"][0]["target"] == "/opt/bin/kubectl"

    unit = ignition["systemd"]["units"][0]
    assert unit["name"] == "kubelet.service"
    assert unit["enabled"] is True
    assert unit["contents"].startswith("[Service]")
    assert unit["dropins"][0]["name"] == "10-env.conf"
    assert ignition["networkd"]["units"] == [
        {"name": "00-eth0.network", "contents": "[Match]\nName=eth0"}
    ]


def test_ct_remote_file_contents():
    config = """
storage:
  files:
    - path: /opt/bin/tool
      contents:
        remote:
          url: https://example.com/tool
          verification:
            hash:
              function: sha512
              sum: abc123
"""
    contents = json.loads(postprocess.container_linux_config(config))["storage"]["files"][0][
        "contents"
    ]
    assert contents == {
        "source": "https://example.com/tool",
        "verification": {"hash": "sha512-abc123"},
    }


@pytest.mark.parametrize(
    "config, message",
    [
        ("unknown_section: {}", "unrecognized key: unknown_section"),
        ("- just\n- a list", "expected a mapping"),
        ("storage:\n  files:\n    - path: relative/path", "path not absolute"),
        ("storage:\n  files:\n    - mode: 420", "storage.files.0.path: is required"),
        ("systemd:\n  units:\n    - enabled: yes", "systemd.units.0.name: is required"),
        ("passwd:\n  users:\n    - name: core\n      uid: abc", "expected int"),
        ("storage: [1, 2]", "expected a mapping"),
        ("foo: [unclosed", "Postprocessor error"),
    ],
)
def test_ct_report_entries_are_errors(config, message):
    with pytest.raises(PostprocessorError, match="Postprocessor error") as exc:
        postprocess.container_linux_config(config)
    assert message in str(exc.value)


def test_apply_known_postprocessor():
    assert json.loads(postprocess.apply("ct", "")) == EMPTY_IGNITION


def test_apply_unknown_postprocessor():
    with pytest.raises(UnknownPostprocessorError) as exc:
        postprocess.apply("cloudinit", "")
    assert str(exc.value) == "Postprocessor error: unknown postprocessor: 'cloudinit'"


def test_apply_custom_registry():
    registry = {"upper": str.upper}
    assert postprocess.apply("upper", "abc", registry) == "ABC"
    with pytest.raises(UnknownPostprocessorError):
        postprocess.apply("ct", "abc", registry)
