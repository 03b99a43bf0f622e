# Copyright 2025 Canonical Ltd.
# See LICENSE file for licensing details.

"""Literals for the machine actuator."""

from datetime import timedelta

from openstack_machine.config import option

# Machine API
MACHINE_API_GROUP = "machine.openshift.io"
MACHINE_API_VERSION = "v1beta1"
CONFIG_API_GROUP = "config.openshift.io"
CLUSTER_INFRASTRUCTURE_NAME = "cluster"

# Labels
CLUSTER_NAME_LABEL = "machine.openshift.io/cluster-api-cluster"
MACHINE_ROLE_LABEL = "machine.openshift.io/cluster-api-machine-role"
MACHINE_REGION_LABEL = "machine.openshift.io/region"
MACHINE_AZ_LABEL = "machine.openshift.io/zone"
MACHINE_INSTANCE_TYPE_LABEL = "machine.openshift.io/instance-type"
# wokeignore:rule=master
CONTROL_PLANE_NODE_LABELS = [
    "node-role.kubernetes.io/master",
    "node-role.kubernetes.io/control-plane",
]
# wokeignore:rule=master
CONTROL_PLANE_ROLES = ["master", "control-plane"]

# Annotations
INSTANCE_ID_ANNOTATION = "openstack-resourceId"
INSTANCE_IP_ANNOTATION = "openstack-ip-address"
INSTANCE_STATE_ANNOTATION = "machine.openshift.io/instance-state"
INSTANCE_STATUS_ANNOTATION = "instance-status"
ERROR_STATE = "ERROR"
INSTANCE_ACTIVE = "ACTIVE"

# User data secret keys
USER_DATA_KEY = "userData"
DISABLE_TEMPLATING_KEY = "disableTemplating"
POSTPROCESSOR_KEY = "postprocessor"

# Networking
PRIMARY_NETWORK_TAG_SUFFIX = "-primaryClusterNetwork"

# Timeouts
TIMEOUT_INSTANCE_DELETE = 5  # minutes
RETRY_INTERVAL_INSTANCE_STATUS = timedelta(seconds=10)
MACHINE_UPDATE_ATTEMPTS = 5

# Event actions
CREATE_EVENT_ACTION = "Create"
UPDATE_EVENT_ACTION = "Update"
DELETE_EVENT_ACTION = "Delete"
NO_EVENT_ACTION = ""

# Bootstrap tokens
BOOTSTRAP_TOKEN_NAMESPACE = "kube-system"
BOOTSTRAP_TOKEN_SECRET_PREFIX = "bootstrap-token-"
BOOTSTRAP_TOKEN_SECRET_TYPE = "bootstrap.kubernetes.io/token"
BOOTSTRAP_TOKEN_TTL = timedelta(minutes=60)
BOOTSTRAP_TOKEN_GROUPS = "system:bootstrappers:kubeadm:default-node-token"

# Options
INSTANCE_DELETE_TIMEOUT = option.IntOption(
    "CLUSTER_API_OPENSTACK_INSTANCE_DELETE_TIMEOUT", TIMEOUT_INSTANCE_DELETE
)
EVENT_COMPONENT = option.StrOption(
    "OPENSTACK_MACHINE_EVENT_COMPONENT", "openstack-machine-controller"
)
